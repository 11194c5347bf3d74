"""
Likes and follows.

Membership changes never read-then-write. The direction of a toggle is decided
by a conditional update (add only where absent, else remove only where
present), so concurrent toggles by the same user cannot duplicate an id or
lose one. The mirror write on the user document uses the matching
``$addToSet``/``$pull``; if it fails, the first write is undone.
"""

import logging
from typing import Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from database import compensating, objid
from errors import BadRequest, NotFound, ServerError
from schemas import FollowResult, LikeResult

logger = logging.getLogger(__name__)

TOGGLE_ATTEMPTS = 3


def toggle_membership(collection: Collection, match: dict, field: str, member: str) -> Tuple[Optional[dict], bool]:
    """Atomically flip ``member`` in the ``field`` set of the document matching ``match``.

    Returns the updated document and whether ``member`` is now present, or
    ``(None, False)`` when no document matches.
    """
    for _ in range(TOGGLE_ATTEMPTS):
        doc = collection.find_one_and_update(
            {**match, field: {"$ne": member}},
            {"$addToSet": {field: member}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return doc, True
        doc = collection.find_one_and_update(
            {**match, field: member},
            {"$pull": {field: member}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return doc, False
        # Neither branch matched: the document is gone, or another toggle ran in between.
        if collection.count_documents(match) == 0:
            return None, False
    raise ServerError("Too many concurrent updates, try again")


def toggle_like(db: Database, video_id: str, user_id: str) -> LikeResult:
    oid = objid(video_id, "Video")
    video, liked = toggle_membership(db["video"], {"_id": oid}, "likes", user_id)
    if video is None:
        raise NotFound("Video not found")

    op, undo = ("$addToSet", "$pull") if liked else ("$pull", "$addToSet")
    with compensating(lambda: db["video"].update_one({"_id": oid}, {undo: {"likes": user_id}}), "likes"):
        db["user"].update_one({"_id": ObjectId(user_id)}, {op: {"likes": video_id}})

    logger.info("[likes] video=%s user=%s liked=%s", video_id, user_id, liked)
    return LikeResult(
        message="Video liked" if liked else "Video unliked",
        like_count=len(video.get("likes", [])),
        is_liked=liked,
    )


def toggle_comment_like(db: Database, comment_id: str, user_id: str) -> LikeResult:
    oid = objid(comment_id, "Comment")
    comment, liked = toggle_membership(db["comment"], {"_id": oid, "is_deleted": {"$ne": True}}, "likes", user_id)
    if comment is None:
        raise NotFound("Comment not found")
    logger.info("[likes] comment=%s user=%s liked=%s", comment_id, user_id, liked)
    return LikeResult(
        message="Comment liked" if liked else "Comment unliked",
        like_count=len(comment.get("likes", [])),
        is_liked=liked,
    )


def _target(db: Database, user_id: str, target_id: str, verb: str) -> ObjectId:
    if user_id == target_id:
        raise BadRequest(f"You cannot {verb} yourself")
    target_oid = objid(target_id, "User")
    if not db["user"].find_one({"_id": target_oid}, {"_id": 1}):
        raise NotFound("User not found")
    return target_oid


def follow(db: Database, user_id: str, target_id: str) -> FollowResult:
    target_oid = _target(db, user_id, target_id, "follow")
    me = ObjectId(user_id)

    res = db["user"].update_one({"_id": me, "following": {"$ne": target_id}}, {"$addToSet": {"following": target_id}})
    if res.modified_count == 0:
        raise BadRequest("Already following this user")

    with compensating(lambda: db["user"].update_one({"_id": me}, {"$pull": {"following": target_id}}), "follows"):
        target = db["user"].find_one_and_update(
            {"_id": target_oid},
            {"$addToSet": {"followers": user_id}},
            return_document=ReturnDocument.AFTER,
        )

    logger.info("[follows] user=%s followed=%s", user_id, target_id)
    return FollowResult(
        message="User followed",
        follower_count=len(target.get("followers", [])) if target else 0,
        is_following=True,
    )


def unfollow(db: Database, user_id: str, target_id: str) -> FollowResult:
    target_oid = _target(db, user_id, target_id, "unfollow")
    me = ObjectId(user_id)

    res = db["user"].update_one({"_id": me, "following": target_id}, {"$pull": {"following": target_id}})
    if res.modified_count == 0:
        raise BadRequest("You are not following this user")

    with compensating(lambda: db["user"].update_one({"_id": me}, {"$addToSet": {"following": target_id}}), "follows"):
        target = db["user"].find_one_and_update(
            {"_id": target_oid},
            {"$pull": {"followers": user_id}},
            return_document=ReturnDocument.AFTER,
        )

    logger.info("[follows] user=%s unfollowed=%s", user_id, target_id)
    return FollowResult(
        message="User unfollowed",
        follower_count=len(target.get("followers", [])) if target else 0,
        is_following=False,
    )
