from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext
from pymongo.errors import AutoReconnect

import auth
from main import create_app
from schemas import Video

VIDEO_URL = "https://cdn.example.com/v.mp4"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(auth, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture
def db():
    return mongomock.MongoClient()["shortvideo_test"]


@pytest.fixture
def app(db):
    return create_app(database=db)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(client):
    """Register a user through the API; returns (user_id, auth headers)."""

    def _make(username, password="secret123"):
        r = client.post(
            "/api/users/register",
            json={"username": username, "email": f"{username}@example.com", "password": password},
        )
        assert r.status_code == 201, r.text
        body = r.json()
        return body["id"], {"Authorization": f"Bearer {body['token']}"}

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def upload(client):
    """Create a video through the API; returns the response body."""

    def _upload(headers, title="clip", **fields):
        data = {"title": title, "videoUrl": VIDEO_URL, **fields}
        r = client.post("/api/videos", data=data, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _upload


@pytest.fixture
def seed_videos(db):
    """Insert videos directly, newest first: video 0 is the most recent."""

    def _seed(creator_id, count, **overrides):
        base = datetime.now(timezone.utc)
        ids = []
        for i in range(count):
            fields = {"creator": creator_id, "title": f"video {i}", "video_url": VIDEO_URL, **overrides}
            doc = Video(**fields).model_dump(mode="json")
            doc["created_at"] = base - timedelta(minutes=i)
            doc["updated_at"] = doc["created_at"]
            ids.append(str(db["video"].insert_one(doc).inserted_id))
        return ids

    return _seed


class _WritesFail:
    """Collection proxy whose single-document writes fail."""

    def __init__(self, collection):
        self._collection = collection

    def update_one(self, *args, **kwargs):
        raise AutoReconnect("store unavailable")

    def find_one_and_update(self, *args, **kwargs):
        raise AutoReconnect("store unavailable")

    def __getattr__(self, name):
        return getattr(self._collection, name)


class _DatabaseWithFailingWrites:
    def __init__(self, db, collection_name):
        self._db = db
        self._collection_name = collection_name

    def __getitem__(self, name):
        if name == self._collection_name:
            return _WritesFail(self._db[name])
        return self._db[name]


@pytest.fixture
def failing_writes(db):
    """Wrap the test database so writes to one collection raise a store error."""

    def _wrap(collection_name):
        return _DatabaseWithFailingWrites(db, collection_name)

    return _wrap
