from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from ember_society.schemas.user import UserSummary
from ember_society.schemas.club import ClubRef


class PostCreate(BaseModel):
    content: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    club_id: int


class PostUpdate(BaseModel):
    content: Optional[str] = None
    image_url: Optional[str] = None


class Post(BaseModel):
    id: int
    content: str
    image_url: Optional[str] = None
    author_id: int
    club_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    author: Optional[UserSummary] = None
    club: Optional[ClubRef] = None
    like_count: int = 0
    comment_count: int = 0
    is_liked_by_user: bool = False


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_id: Optional[int] = None


class Comment(BaseModel):
    id: int
    content: str
    author_id: int
    post_id: int
    parent_id: Optional[int] = None
    created_at: datetime
    author: Optional[UserSummary] = None
