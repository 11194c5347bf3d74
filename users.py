"""
Registration, login and profiles.
"""

import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import create_token, hash_password, verify_password
from database import create_document, now, objid
from errors import BadRequest, NotFound
from feed import attach_creators
from schemas import AuthResponse, LoginRequest, ProfileUpdate, PublicProfile, RegisterRequest, User, UserProfile

logger = logging.getLogger(__name__)


def _check_unique(db: Database, email: Optional[str] = None, username: Optional[str] = None, exclude=None):
    base = {"_id": {"$ne": exclude}} if exclude is not None else {}
    if email and db["user"].find_one({**base, "email": email}, {"_id": 1}):
        raise BadRequest("Email already in use")
    if username and db["user"].find_one({**base, "username": username}, {"_id": 1}):
        raise BadRequest("Username already in use")


def _auth_response(user: dict) -> AuthResponse:
    profile = UserProfile.from_doc(user)
    return AuthResponse(**profile.model_dump(), token=create_token(profile.id))


def register(db: Database, payload: RegisterRequest) -> AuthResponse:
    email = payload.email.lower()
    _check_unique(db, email=email, username=payload.username)
    user = User(username=payload.username, email=email, password_hash=hash_password(payload.password))
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        # Lost a race against a concurrent registration with the same identity.
        raise BadRequest("User already exists")
    logger.info("[users] registered id=%s username=%s", doc["_id"], payload.username)
    return _auth_response(doc)


def login(db: Database, payload: LoginRequest) -> AuthResponse:
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise BadRequest("Invalid credentials")
    logger.info("[users] login id=%s", user["_id"])
    return _auth_response(user)


def get_profile(db: Database, user_id: str) -> UserProfile:
    user = db["user"].find_one({"_id": objid(user_id, "User")})
    if not user:
        raise NotFound("User not found")
    return UserProfile.from_doc(user)


def update_profile(db: Database, user_id: str, payload: ProfileUpdate) -> UserProfile:
    oid = objid(user_id, "User")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
    _check_unique(db, email=changes.get("email"), username=changes.get("username"), exclude=oid)

    password = changes.pop("password", None)
    if password:
        changes["password_hash"] = hash_password(password)
    changes["updated_at"] = now()

    try:
        user = db["user"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise BadRequest("Email or username already in use")
    if not user:
        raise NotFound("User not found")
    logger.info("[users] profile updated id=%s fields=%s", user_id, ",".join(sorted(changes)))
    return UserProfile.from_doc(user)


def get_public_profile(db: Database, user_id: str, viewer_id: Optional[str] = None) -> PublicProfile:
    """Public fields of a user plus their public videos, newest first."""
    user = db["user"].find_one({"_id": objid(user_id, "User")})
    if not user:
        raise NotFound("User not found")
    docs = list(db["video"].find({"creator": user_id, "is_public": True}).sort([("created_at", -1), ("_id", -1)]))
    return PublicProfile.from_doc(
        user,
        videos=attach_creators(db, docs, viewer_id),
        is_following=(viewer_id in user.get("followers", [])) if viewer_id else None,
    )
