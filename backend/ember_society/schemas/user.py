from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_]+$")
    password: str = Field(..., min_length=8)
    display_name: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str


class UserSummary(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False

    class Config:
        from_attributes = True


class UserProfile(UserSummary):
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    cover_photo_url: Optional[str] = None
    created_at: datetime


class CurrentUser(UserProfile):
    email: str
    is_admin: bool = False
    default_club_id: Optional[int] = None


class ProfileCounts(BaseModel):
    posts: int = 0
    followers: int = 0
    following: int = 0


class PublicProfile(UserProfile):
    counts: ProfileCounts
    is_following: bool = False


class UserUpdate(BaseModel):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_photo_url: Optional[str] = None
    default_club_id: Optional[int] = None
