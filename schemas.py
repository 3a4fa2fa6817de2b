"""
Database Schemas for the Blog API

Each Pydantic model maps to a MongoDB collection with the lowercase class name.
- User -> "user"
- Post -> "post"
- Comment -> "comment"

Documents are validated against these models before they are inserted.
"""

from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator

PostStatus = Literal["draft", "published", "archived"]
UserRole = Literal["user", "admin"]

DELETED_COMMENT_CONTENT = "[deleted]"


def collection_name(model: type) -> str:
    return model.__name__.lower()


class User(BaseModel):
    oid: str = Field(..., min_length=1, description="Entra ID object id of the account")
    email: str = Field(..., min_length=3, description="Account email, stored lowercase")
    display_name: str = Field(..., min_length=1, max_length=100)
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-z0-9_-]+$")
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    is_active: bool = True
    role: UserRole = "user"
    last_login_at: Optional[datetime] = None

    @field_validator("email", "username", mode="before")
    @classmethod
    def lower_strip(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("display_name", mode="before")
    @classmethod
    def strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class Post(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, description="Unique URL identifier, never changes")
    content: str = Field(..., min_length=1)
    excerpt: Optional[str] = Field(None, max_length=500)
    author: ObjectId = Field(..., description="_id of the authoring user")
    status: PostStatus = "draft"
    tags: List[str] = Field(default_factory=list)
    featured_image_url: Optional[str] = None
    view_count: int = Field(0, ge=0)
    published_at: Optional[datetime] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("slug", mode="before")
    @classmethod
    def lower_slug(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("tags", mode="before")
    @classmethod
    def lower_tags(cls, v):
        if v is None:
            return []
        return [t.strip().lower() for t in v]


class Comment(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    post: ObjectId
    author: ObjectId
    content: str = Field(..., min_length=1, max_length=2000)
    parent_comment: Optional[ObjectId] = Field(None, description="Set on replies, one level deep")
    is_edited: bool = False
    is_deleted: bool = False
