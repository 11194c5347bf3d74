import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import comments
import engagement
import feed
import users
import videos
from auth import Identity, optional_user, require_user
from database import close, connect, ensure_indexes, get_db, now
from errors import NotFound
from schemas import (
    AuthResponse,
    Category,
    CommentEdit,
    CommentOut,
    CommentPage,
    CommentRequest,
    FeedPage,
    FollowResult,
    LikeResult,
    LoginRequest,
    Message,
    ProfileUpdate,
    PublicProfile,
    RegisterRequest,
    UserProfile,
    Video,
    VideoDetail,
    VideoOut,
    VideoType,
    parse_tags,
)

logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _viewer(user: Optional[Identity]) -> Optional[str]:
    return user.id if user else None


# -------------------- Users --------------------
user_router = APIRouter(prefix="/api/users", tags=["users"])


@user_router.post("/register", status_code=201, response_model=AuthResponse)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    return users.register(db, payload)


@user_router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return users.login(db, payload)


# Declared before "/{user_id}" so "profile" is not read as an id.
@user_router.get("/profile", response_model=UserProfile)
def get_profile(user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return users.get_profile(db, user.id)


@user_router.put("/profile", response_model=UserProfile)
def update_profile(payload: ProfileUpdate, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return users.update_profile(db, user.id, payload)


@user_router.get("/{user_id}", response_model=PublicProfile, response_model_exclude_none=True)
def get_user(user_id: str, user: Optional[Identity] = Depends(optional_user), db: Database = Depends(get_db)):
    return users.get_public_profile(db, user_id, _viewer(user))


@user_router.post("/{user_id}/follow", response_model=FollowResult)
def follow_user(user_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return engagement.follow(db, user.id, user_id)


@user_router.delete("/{user_id}/follow", response_model=FollowResult)
def unfollow_user(user_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return engagement.unfollow(db, user.id, user_id)


# -------------------- Feeds --------------------
video_router = APIRouter(prefix="/api/videos", tags=["videos"])


# page/limit stay raw strings: bad values fall back to defaults instead of failing.
@video_router.get("/recommended", response_model=FeedPage, response_model_exclude_none=True)
def recommended(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user: Optional[Identity] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    return feed.recommended(db, page, limit, _viewer(user))


@video_router.get("/short", response_model=FeedPage, response_model_exclude_none=True)
def short_videos(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user: Optional[Identity] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    return feed.short_videos(db, page, limit, _viewer(user))


@video_router.get("/long", response_model=FeedPage, response_model_exclude_none=True)
def long_videos(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user: Optional[Identity] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    return feed.long_videos(db, page, limit, _viewer(user))


@video_router.get("/search", response_model=FeedPage, response_model_exclude_none=True)
def search(
    q: Optional[str] = None,
    category: Optional[str] = None,
    video_type: Optional[str] = Query(None, alias="videoType"),
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user: Optional[Identity] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    return feed.search(db, q, category, video_type, page, limit, _viewer(user))


# -------------------- Video lifecycle --------------------
@video_router.post("", status_code=201, response_model=VideoOut, response_model_exclude_none=True)
def upload_video(
    title: str = Form(..., max_length=100),
    description: str = Form("", max_length=500),
    category: Category = Form(Category.OTHER),
    tags: Optional[str] = Form(None),  # comma separated
    video_type: VideoType = Form(VideoType.SHORT, alias="videoType"),
    video_url: str = Form(..., alias="videoUrl"),
    thumbnail_url: str = Form("", alias="thumbnailUrl"),
    duration: float = Form(0, ge=0),
    location: str = Form(""),
    language: str = Form("zh-CN"),
    is_public: bool = Form(True, alias="isPublic"),
    user: Identity = Depends(require_user),
    db: Database = Depends(get_db),
):
    # Media is uploaded and transcoded elsewhere; only its URLs are stored here.
    video = Video(
        creator=user.id,
        title=title.strip(),
        description=description.strip(),
        video_url=video_url.strip(),
        thumbnail_url=thumbnail_url.strip(),
        duration=duration,
        category=category,
        tags=parse_tags(tags),
        is_public=is_public,
        location=location,
        language=language,
        video_type=video_type,
    )
    return videos.create_video(db, user.id, video)


@video_router.get("/{video_id}", response_model=VideoDetail, response_model_exclude_none=True)
def get_video(video_id: str, user: Optional[Identity] = Depends(optional_user), db: Database = Depends(get_db)):
    return videos.get_video(db, video_id, _viewer(user))


@video_router.put("/{video_id}", response_model=VideoOut, response_model_exclude_none=True)
async def update_video(
    video_id: str,
    request: Request,
    user: Identity = Depends(require_user),
    db: Database = Depends(get_db),
):
    # The body stays raw here; it is parsed only once ownership is settled.
    body = await request.body()
    return await run_in_threadpool(videos.update_video, db, video_id, user.id, body)


@video_router.delete("/{video_id}", response_model=Message)
def delete_video(video_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    videos.delete_video(db, video_id, user.id)
    return Message(message="Video removed")


@video_router.post("/{video_id}/like", response_model=LikeResult)
def like_video(video_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return engagement.toggle_like(db, video_id, user.id)


# -------------------- Comments --------------------
@video_router.get("/{video_id}/comments", response_model=CommentPage, response_model_exclude_none=True)
def list_comments(video_id: str, page: Optional[str] = None, limit: Optional[str] = None, db: Database = Depends(get_db)):
    return comments.list_comments(db, video_id, page, limit)


@video_router.post("/{video_id}/comments", status_code=201, response_model=CommentOut, response_model_exclude_none=True)
def add_comment(
    video_id: str,
    payload: CommentRequest,
    user: Identity = Depends(require_user),
    db: Database = Depends(get_db),
):
    return comments.add_comment(db, video_id, user.id, payload)


comment_router = APIRouter(prefix="/api/comments", tags=["comments"])


@comment_router.put("/{comment_id}", response_model=CommentOut, response_model_exclude_none=True)
def edit_comment(
    comment_id: str,
    payload: CommentEdit,
    user: Identity = Depends(require_user),
    db: Database = Depends(get_db),
):
    return comments.edit_comment(db, comment_id, user.id, payload)


@comment_router.delete("/{comment_id}", response_model=Message)
def delete_comment(comment_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    comments.delete_comment(db, comment_id, user.id)
    return Message(message="Comment removed")


@comment_router.post("/{comment_id}/like", response_model=LikeResult)
def like_comment(comment_id: str, user: Identity = Depends(require_user), db: Database = Depends(get_db)):
    return engagement.toggle_comment_like(db, comment_id, user.id)


# -------------------- Basic Routes --------------------
base_router = APIRouter()


@base_router.get("/")
def read_root():
    return {"message": "Short Video Backend is running"}


@base_router.get("/health")
def health(db: Database = Depends(get_db)):
    info = {"status": "OK", "timestamp": now().isoformat(), "database_connected": False, "collections": []}
    try:
        info["collections"] = db.list_collection_names()
        info["database_connected"] = True
    except PyMongoError as e:
        info["status"] = "DEGRADED"
        info["error"] = str(e)
    return info


# -------------------- Errors --------------------
def _error(status_code: int, message: str, exc: Optional[BaseException] = None, **extra) -> JSONResponse:
    body = {"message": message, **extra}
    if exc is not None and APP_ENV == "development":
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(body, status_code=status_code)


async def http_error(request: Request, exc: StarletteHTTPException):
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_error(request: Request, exc):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return _error(400, message, errors=errors)


async def store_error(request: Request, exc: PyMongoError):
    logger.exception("[errors] store failure path=%s", request.url.path)
    return _error(500, "Server error", exc)


async def server_error(request: Request, exc: Exception):
    logger.exception("[errors] unhandled path=%s", request.url.path)
    return _error(500, "Server error", exc)


# -------------------- App --------------------
def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the API. A given ``database`` is used as-is and left open on shutdown."""
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database if database is not None else connect()
        ensure_indexes(db)
        app.state.db = db
        try:
            yield
        finally:
            if database is None:
                close(db)

    app = FastAPI(title="Short Video API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "[access] method=%s path=%s status=%s ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    app.add_exception_handler(StarletteHTTPException, http_error)
    app.add_exception_handler(RequestValidationError, validation_error)
    app.add_exception_handler(ValidationError, validation_error)
    app.add_exception_handler(PyMongoError, store_error)
    app.add_exception_handler(Exception, server_error)

    app.include_router(base_router)
    app.include_router(user_router)
    app.include_router(video_router)
    app.include_router(comment_router)

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
    def route_not_found(path: str):
        raise NotFound("Route not found")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
