"""
MongoDB access helpers.

The handle is created by ``connect`` and owned by whoever created it (the app
lifespan in production, the test fixtures in tests). Route functions receive it
through the ``get_db`` dependency and pass it down to the services.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import NotFound, ServerError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shortvideo")


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    client = MongoClient(url or DATABASE_URL, tz_aware=True)
    db = client[name or DATABASE_NAME]
    logger.info("[database] connected name=%s", db.name)
    return db


def close(db: Database) -> None:
    db.client.close()
    logger.info("[database] closed name=%s", db.name)


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("username", unique=True)
    db["video"].create_index([("creator", ASCENDING), ("created_at", DESCENDING)])
    db["video"].create_index([("category", ASCENDING), ("created_at", DESCENDING)])
    db["video"].create_index([("is_public", ASCENDING), ("video_type", ASCENDING), ("created_at", DESCENDING)])
    db["video"].create_index("tags")
    db["comment"].create_index([("video", ASCENDING), ("created_at", DESCENDING)])
    db["comment"].create_index("parent_comment")


def get_db(request: Request) -> Database:
    return request.app.state.db


def now() -> datetime:
    return datetime.now(timezone.utc)


def objid(id_str: str, what: str = "Resource") -> ObjectId:
    """Parse a hex id; an id that cannot be parsed cannot resolve either."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def create_document(db: Database, collection_name: str, data: BaseModel) -> dict:
    doc = data.model_dump(mode="json")
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    doc["_id"] = db[collection_name].insert_one(doc).inserted_id
    return doc


def find_by_ids(db: Database, collection_name: str, ids) -> dict:
    """Batch-load documents by hex id, keyed by hex id."""
    oids = [ObjectId(i) for i in set(ids) if ObjectId.is_valid(i)]
    if not oids:
        return {}
    return {str(d["_id"]): d for d in db[collection_name].find({"_id": {"$in": oids}})}


@contextmanager
def compensating(undo, scope: str):
    """Run the second write of a pair; if it fails, undo the first and fail the request.

    Undo operations are idempotent, so applying one is safe whether or not the
    failed write reached the server.
    """
    try:
        yield
    except PyMongoError as e:
        logger.warning("[%s] second write failed, undoing first error=%s", scope, e)
        undo()
        raise ServerError() from e
