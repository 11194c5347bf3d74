"""
Video lifecycle: create, read one, update, delete.

Only the creator may update or delete a video. ``creator`` and ``video_type``
are fixed at creation.
"""

import json
import logging
from typing import Optional, Union

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from comments import attach_authors
from database import compensating, create_document, find_by_ids, now, objid
from errors import BadRequest, Forbidden, NotFound
from feed import attach_creators
from schemas import CreatorSummary, Video, VideoDetail, VideoOut, VideoUpdate, parse_tags

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "category", "is_public")


def _owned(db: Database, video_id: str, user_id: str) -> dict:
    video = db["video"].find_one({"_id": objid(video_id, "Video")})
    if not video:
        raise NotFound("Video not found")
    if video.get("creator") != user_id:
        raise Forbidden("Not authorized to modify this video")
    return video


def create_video(db: Database, user_id: str, video: Video) -> VideoOut:
    doc = create_document(db, "video", video)
    video_id = str(doc["_id"])

    with compensating(lambda: db["video"].delete_one({"_id": doc["_id"]}), "videos"):
        db["user"].update_one({"_id": ObjectId(user_id)}, {"$addToSet": {"videos": video_id}})

    logger.info("[videos] created id=%s creator=%s type=%s", video_id, user_id, doc["video_type"])
    return attach_creators(db, [doc])[0]


def get_video(db: Database, video_id: str, viewer_id: Optional[str] = None) -> VideoDetail:
    """Return one video with creator and comments; every call counts as a view."""
    video = db["video"].find_one_and_update(
        {"_id": objid(video_id, "Video")},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not video:
        raise NotFound("Video not found")

    creator = find_by_ids(db, "user", [video.get("creator")]).get(video.get("creator"))
    comment_ids = [ObjectId(c) for c in video.get("comments", []) if ObjectId.is_valid(c)]
    comment_docs = list(
        db["comment"]
        .find({"_id": {"$in": comment_ids}, "is_deleted": {"$ne": True}})
        .sort([("created_at", -1), ("_id", -1)])
    )
    return VideoDetail.from_doc(
        video,
        creator=CreatorSummary.from_doc(creator, with_followers=True) if creator else None,
        viewer_id=viewer_id,
        comments=attach_authors(db, comment_docs),
    )


def parse_body(body: Union[bytes, dict, None]) -> dict:
    """Decode a raw JSON request body into a field dict; empty means no changes."""
    if isinstance(body, dict):
        return body
    if not body or not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise BadRequest("Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


def update_video(db: Database, video_id: str, user_id: str, body: Union[bytes, dict, None]) -> VideoOut:
    """Apply the fields present in ``body``; ownership is checked before the body is parsed."""
    video = _owned(db, video_id, user_id)
    changes = VideoUpdate.model_validate(parse_body(body)).model_dump(mode="json", exclude_unset=True)

    update = {k: changes[k] for k in UPDATABLE_FIELDS if changes.get(k) is not None}
    if changes.get("tags") is not None:
        update["tags"] = parse_tags(changes["tags"])
    update["updated_at"] = now()

    video = db["video"].find_one_and_update(
        {"_id": video["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not video:
        raise NotFound("Video not found")
    logger.info("[videos] updated id=%s fields=%s", video_id, ",".join(sorted(update)))
    return attach_creators(db, [video], user_id)[0]


def delete_video(db: Database, video_id: str, user_id: str) -> None:
    video = _owned(db, video_id, user_id)
    db["video"].delete_one({"_id": video["_id"]})

    with compensating(lambda: db["video"].replace_one({"_id": video["_id"]}, video, upsert=True), "videos"):
        db["user"].update_one({"_id": ObjectId(user_id)}, {"$pull": {"videos": video_id}})

    # The video is gone; drop the references other documents still hold.
    db["user"].update_many({"likes": video_id}, {"$pull": {"likes": video_id}})
    db["comment"].delete_many({"video": video_id})
    logger.info("[videos] deleted id=%s creator=%s", video_id, user_id)
