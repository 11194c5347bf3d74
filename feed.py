"""
Paginated video feeds.

All feeds share one contract: ``page``/``limit`` come in as raw query strings
and fall back to a default when missing, non-numeric or below 1, the page is
read with skip/limit, and the total is counted by a second query. The count is
best effort: it is not read from the same snapshot as the page, so a video
created or deleted between the two queries can make ``totalPages`` stale for
the next request.
"""

import math
import re
from typing import List, Optional, Tuple

from pymongo.database import Database

from database import find_by_ids
from schemas import CreatorSummary, FeedPage, VideoOut

MAX_LIMIT = 100
MAX_PAGE = 1_000_000

RECOMMENDED_LIMIT = 10
SHORT_LIMIT = 20
LONG_LIMIT = 10
SEARCH_LIMIT = 10


def coerce_int(value, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n >= 1 else default


def pagination(page, limit, default_limit: int) -> Tuple[int, int, int]:
    """Return (page, limit, skip) from raw request values.

    ``limit`` is capped at ``MAX_LIMIT`` and ``page`` at ``MAX_PAGE``; pages echo
    the limit actually applied.
    """
    p = min(coerce_int(page, 1), MAX_PAGE)
    size = min(coerce_int(limit, default_limit), MAX_LIMIT)
    return p, size, (p - 1) * size


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def attach_creators(db: Database, docs: List[dict], viewer_id: Optional[str] = None) -> List[VideoOut]:
    """Join each video with its creator's public fields in one batched lookup."""
    creators = find_by_ids(db, "user", [d.get("creator") for d in docs if d.get("creator")])
    out = []
    for d in docs:
        creator = creators.get(d.get("creator"))
        out.append(VideoOut.from_doc(d, creator=CreatorSummary.from_doc(creator) if creator else None, viewer_id=viewer_id))
    return out


def _page(db: Database, query: dict, docs: List[dict], page: int, limit: int, viewer_id: Optional[str]) -> FeedPage:
    total = db["video"].count_documents(query)
    pages = total_pages(total, limit)
    return FeedPage(
        videos=attach_creators(db, docs, viewer_id),
        current_page=page,
        total_pages=pages,
        total_videos=total,
        limit=limit,
        has_more=page < pages,
    )


def _newest_first(db: Database, query: dict, page, limit, default_limit: int, viewer_id: Optional[str]) -> FeedPage:
    page, limit, skip = pagination(page, limit, default_limit)
    cursor = db["video"].find(query).sort([("created_at", -1), ("_id", -1)]).skip(skip).limit(limit)
    return _page(db, query, list(cursor), page, limit, viewer_id)


def recommended(db: Database, page=None, limit=None, viewer_id: Optional[str] = None) -> FeedPage:
    """Public videos ranked by views, then likes, then recency."""
    page, limit, skip = pagination(page, limit, RECOMMENDED_LIMIT)
    query = {"is_public": True}
    pipeline = [
        {"$match": query},
        {"$addFields": {"like_count": {"$size": "$likes"}}},
        {"$sort": {"views": -1, "like_count": -1, "created_at": -1, "_id": -1}},
        {"$skip": skip},
        {"$limit": limit},
    ]
    docs = list(db["video"].aggregate(pipeline))
    for d in docs:
        d.pop("like_count", None)
    return _page(db, query, docs, page, limit, viewer_id)


def short_videos(db: Database, page=None, limit=None, viewer_id: Optional[str] = None) -> FeedPage:
    return _newest_first(db, {"is_public": True, "video_type": "short"}, page, limit, SHORT_LIMIT, viewer_id)


def long_videos(db: Database, page=None, limit=None, viewer_id: Optional[str] = None) -> FeedPage:
    return _newest_first(db, {"is_public": True, "video_type": "long"}, page, limit, LONG_LIMIT, viewer_id)


def word_pattern(term: str) -> str:
    """Whole-word match for ``term``, also accepting a trailing plural ``s``."""
    return r"(?<!\w)" + re.escape(term) + r"s?(?!\w)"


def text_filter(q: str) -> Optional[dict]:
    """Match any query term as a whole word in the title or description."""
    terms = q.split()
    if not terms:
        return None
    clauses = []
    for term in terms:
        pattern = {"$regex": word_pattern(term), "$options": "i"}
        clauses.append({"title": pattern})
        clauses.append({"description": pattern})
    return {"$or": clauses}


def search_query(q: Optional[str] = None, category: Optional[str] = None, video_type: Optional[str] = None) -> dict:
    query = {"is_public": True}
    if q:
        text = text_filter(q)
        if text:
            query.update(text)
    if category:
        query["category"] = category
    if video_type:
        query["video_type"] = video_type
    return query


def search(
    db: Database,
    q: Optional[str] = None,
    category: Optional[str] = None,
    video_type: Optional[str] = None,
    page=None,
    limit=None,
    viewer_id: Optional[str] = None,
) -> FeedPage:
    return _newest_first(db, search_query(q, category, video_type), page, limit, SEARCH_LIMIT, viewer_id)
