"""
Database Schemas for the short-video platform

Each storage model maps to a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- User -> user
- Video -> video
- Comment -> comment

References between collections are stored as hex id strings. Request and view
models speak camelCase on the wire; storage keys stay snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    USER = "user"
    CREATOR = "creator"
    ADMIN = "admin"


class Category(str, Enum):
    ENTERTAINMENT = "entertainment"
    EDUCATION = "education"
    SPORTS = "sports"
    MUSIC = "music"
    COMEDY = "comedy"
    LIFESTYLE = "lifestyle"
    NEWS = "news"
    OTHER = "other"


class VideoType(str, Enum):
    SHORT = "short"
    LONG = "long"


# -------------------- Storage --------------------

class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str = Field(..., description="Bcrypt hash")
    avatar: str = ""
    bio: str = Field("", max_length=200)
    is_verified: bool = False
    role: Role = Role.USER
    followers: List[str] = Field(default_factory=list)
    following: List[str] = Field(default_factory=list)
    videos: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)


class Video(BaseModel):
    creator: str = Field(..., description="Owner user id as string")
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    video_url: str = Field(..., min_length=1)
    thumbnail_url: str = ""
    duration: float = Field(0, ge=0)
    views: int = 0
    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list)
    shares: int = 0
    category: Category = Category.OTHER
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    is_monetized: bool = False
    location: str = ""
    language: str = "zh-CN"
    video_type: VideoType = VideoType.SHORT


class Comment(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)
    author: str
    video: str
    parent_comment: Optional[str] = None
    replies: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    is_edited: bool = False
    is_deleted: bool = False


def parse_tags(tags: Optional[str]) -> List[str]:
    """Split a comma separated tag string, dropping blanks."""
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]


# -------------------- Requests --------------------

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class ProfileUpdate(ApiModel):
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None
    bio: Optional[str] = Field(None, max_length=200)
    avatar: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)


class VideoUpdate(ApiModel):
    """Partial update; only fields sent by the client are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[Category] = None
    tags: Optional[str] = Field(None, description="Comma separated")
    is_public: Optional[bool] = None


class CommentRequest(ApiModel):
    content: str = Field(..., min_length=1, max_length=1000)
    parent_comment: Optional[str] = None


class CommentEdit(ApiModel):
    content: str = Field(..., min_length=1, max_length=1000)


# -------------------- Views --------------------

class ViewModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatorSummary(ViewModel):
    id: str
    username: str
    avatar: str = ""
    is_verified: bool = False
    follower_count: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: dict, with_followers: bool = False) -> "CreatorSummary":
        return cls(
            id=str(doc["_id"]),
            username=doc.get("username", ""),
            avatar=doc.get("avatar", ""),
            is_verified=bool(doc.get("is_verified", False)),
            follower_count=len(doc.get("followers", [])) if with_followers else None,
        )


class VideoOut(ViewModel):
    id: str
    title: str
    description: str = ""
    video_url: str
    thumbnail_url: str = ""
    duration: float = 0
    views: int = 0
    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list)
    shares: int = 0
    category: Category = Category.OTHER
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    is_monetized: bool = False
    creator: Optional[CreatorSummary] = None
    location: str = ""
    language: str = "zh-CN"
    video_type: VideoType = VideoType.SHORT
    like_count: int = 0
    comment_count: int = 0
    is_liked: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict, creator: Optional[CreatorSummary] = None, viewer_id: Optional[str] = None, **extra):
        likes = list(doc.get("likes", []))
        comments = list(doc.get("comments", []))
        fields = {k: v for k, v in doc.items() if k in cls.model_fields and k not in ("creator", "id")}
        fields.update(
            id=str(doc["_id"]),
            creator=creator,
            like_count=len(likes),
            comment_count=len(comments),
            is_liked=(viewer_id in likes) if viewer_id else None,
        )
        fields.update(extra)
        return cls(**fields)


class CommentOut(ViewModel):
    id: str
    content: str
    author: Optional[CreatorSummary] = None
    video: str
    parent_comment: Optional[str] = None
    replies: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    is_edited: bool = False
    is_deleted: bool = False
    like_count: int = 0
    reply_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict, author: Optional[CreatorSummary] = None) -> "CommentOut":
        fields = {k: v for k, v in doc.items() if k in cls.model_fields and k not in ("author", "id")}
        fields.update(
            id=str(doc["_id"]),
            author=author,
            like_count=len(doc.get("likes", [])),
            reply_count=len(doc.get("replies", [])),
        )
        return cls(**fields)


class VideoDetail(VideoOut):
    comments: List[CommentOut] = Field(default_factory=list)


class FeedPage(ViewModel):
    videos: List[VideoOut]
    current_page: int
    total_pages: int
    total_videos: int
    limit: int
    has_more: bool


class CommentPage(ViewModel):
    comments: List[CommentOut]
    current_page: int
    total_pages: int
    total_comments: int
    limit: int
    has_more: bool


class LikeResult(ViewModel):
    message: str
    like_count: int
    is_liked: bool


class FollowResult(ViewModel):
    message: str
    follower_count: int
    is_following: bool


class Message(ViewModel):
    message: str


class PublicUser(ViewModel):
    id: str
    username: str
    avatar: str = ""
    bio: str = ""
    is_verified: bool = False
    role: Role = Role.USER
    followers: List[str] = Field(default_factory=list)
    following: List[str] = Field(default_factory=list)
    follower_count: int = 0
    following_count: int = 0
    video_count: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict, **extra):
        fields = {k: v for k, v in doc.items() if k in cls.model_fields and k != "id"}
        fields.update(
            id=str(doc["_id"]),
            follower_count=len(doc.get("followers", [])),
            following_count=len(doc.get("following", [])),
            video_count=len(doc.get("videos", [])),
        )
        fields.update(extra)
        return cls(**fields)


class PublicProfile(PublicUser):
    videos: List[VideoOut] = Field(default_factory=list)
    is_following: Optional[bool] = None


class UserProfile(PublicUser):
    email: str
    videos: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class AuthResponse(UserProfile):
    token: str
