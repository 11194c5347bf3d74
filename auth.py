"""
Password hashing, bearer tokens and the auth dependencies.

Tokens are HS256 JWTs carrying the user id in ``sub``. Nothing is stored
server side, so a token stays valid until it expires.
"""

import logging
import os
from datetime import timedelta
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends, Header
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database

from database import get_db, now
from errors import Unauthorized
from schemas import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-secret-change-me-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "30"))


class Identity(BaseModel):
    id: str
    role: Role = Role.USER


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_token(user_id: str, expires_in: Optional[timedelta] = None) -> str:
    issued = now()
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + (expires_in or timedelta(days=JWT_EXPIRES_DAYS)),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> str:
    """Return the user id a token was issued for."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise Unauthorized("Not authorized, token failed") from e
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise Unauthorized("Not authorized, token failed")
    return user_id


def resolve_identity(db: Database, authorization: Optional[str]) -> Identity:
    if not authorization:
        raise Unauthorized("Not authorized, no token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Not authorized, no token")
    user_id = decode_token(token.strip())
    user = db["user"].find_one({"_id": ObjectId(user_id)}, {"role": 1})
    if not user:
        raise Unauthorized("Not authorized, user not found")
    return Identity(id=str(user["_id"]), role=user.get("role", Role.USER))


def require_user(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> Identity:
    return resolve_identity(db, authorization)


def optional_user(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> Optional[Identity]:
    if not authorization:
        return None
    try:
        return resolve_identity(db, authorization)
    except Unauthorized as e:
        logger.debug("[auth] optional identity dropped reason=%s", e.detail)
        return None
