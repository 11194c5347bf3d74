"""
Comments on videos, with replies and soft deletion.
"""

import logging
from typing import List

from pymongo import ReturnDocument
from pymongo.database import Database

from database import compensating, create_document, find_by_ids, now, objid
from errors import BadRequest, Forbidden, NotFound
from feed import pagination, total_pages
from schemas import Comment, CommentEdit, CommentOut, CommentPage, CommentRequest, CreatorSummary

logger = logging.getLogger(__name__)

COMMENT_LIMIT = 20


def attach_authors(db: Database, docs: List[dict]) -> List[CommentOut]:
    authors = find_by_ids(db, "user", [d.get("author") for d in docs if d.get("author")])
    out = []
    for d in docs:
        author = authors.get(d.get("author"))
        out.append(CommentOut.from_doc(d, author=CreatorSummary.from_doc(author) if author else None))
    return out


def add_comment(db: Database, video_id: str, user_id: str, payload: CommentRequest) -> CommentOut:
    video_oid = objid(video_id, "Video")
    if not db["video"].find_one({"_id": video_oid}, {"_id": 1}):
        raise NotFound("Video not found")

    parent_oid = None
    if payload.parent_comment:
        parent_oid = objid(payload.parent_comment, "Parent comment")
        parent = db["comment"].find_one({"_id": parent_oid}, {"video": 1, "is_deleted": 1})
        if not parent or parent.get("is_deleted"):
            raise NotFound("Parent comment not found")
        if parent.get("video") != video_id:
            raise BadRequest("Parent comment belongs to another video")

    doc = create_document(
        db,
        "comment",
        Comment(content=payload.content, author=user_id, video=video_id, parent_comment=payload.parent_comment),
    )
    comment_id = str(doc["_id"])

    with compensating(lambda: db["comment"].delete_one({"_id": doc["_id"]}), "comments"):
        db["video"].update_one({"_id": video_oid}, {"$addToSet": {"comments": comment_id}})
    if parent_oid is not None:
        db["comment"].update_one({"_id": parent_oid}, {"$addToSet": {"replies": comment_id}})

    logger.info("[comments] created id=%s video=%s author=%s", comment_id, video_id, user_id)
    return attach_authors(db, [doc])[0]


def list_comments(db: Database, video_id: str, page=None, limit=None) -> CommentPage:
    """Top-level, non-deleted comments of a video, newest first."""
    if not db["video"].find_one({"_id": objid(video_id, "Video")}, {"_id": 1}):
        raise NotFound("Video not found")

    page, limit, skip = pagination(page, limit, COMMENT_LIMIT)
    query = {"video": video_id, "parent_comment": None, "is_deleted": {"$ne": True}}
    docs = list(db["comment"].find(query).sort([("created_at", -1), ("_id", -1)]).skip(skip).limit(limit))
    total = db["comment"].count_documents(query)
    pages = total_pages(total, limit)
    return CommentPage(
        comments=attach_authors(db, docs),
        current_page=page,
        total_pages=pages,
        total_comments=total,
        limit=limit,
        has_more=page < pages,
    )


def _authored(db: Database, comment_id: str, user_id: str) -> dict:
    comment = db["comment"].find_one({"_id": objid(comment_id, "Comment")})
    if not comment or comment.get("is_deleted"):
        raise NotFound("Comment not found")
    if comment.get("author") != user_id:
        raise Forbidden("Not authorized to modify this comment")
    return comment


def edit_comment(db: Database, comment_id: str, user_id: str, payload: CommentEdit) -> CommentOut:
    comment = _authored(db, comment_id, user_id)
    comment = db["comment"].find_one_and_update(
        {"_id": comment["_id"]},
        {"$set": {"content": payload.content, "is_edited": True, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("[comments] edited id=%s", comment_id)
    return attach_authors(db, [comment])[0]


def delete_comment(db: Database, comment_id: str, user_id: str) -> None:
    """Soft delete: the comment stays referenced by its video but is hidden from reads."""
    comment = _authored(db, comment_id, user_id)
    db["comment"].update_one(
        {"_id": comment["_id"]},
        {"$set": {"is_deleted": True, "updated_at": now()}},
    )
    logger.info("[comments] deleted id=%s", comment_id)
