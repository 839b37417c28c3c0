from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime

from ember_society.models.club import ClubRole
from ember_society.schemas.user import UserSummary


class ClubCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None
    is_private: bool = False
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None


class ClubUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_private: Optional[bool] = None
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None


class ClubRef(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class Club(ClubRef):
    description: Optional[str] = None
    is_private: bool
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None
    creator_id: int
    member_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class ClubMember(BaseModel):
    id: int
    user_id: int
    role: ClubRole
    joined_at: datetime
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


class ClubDetail(Club):
    members: List[ClubMember] = []
    user_membership: Optional[ClubMember] = None


class MemberRoleUpdate(BaseModel):
    role: ClubRole


class InviteCreate(BaseModel):
    email: EmailStr


class ClubInvite(BaseModel):
    id: int
    club_id: int
    email: str
    invited_by: int
    token: str
    accepted: bool
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class InvitePreview(BaseModel):
    club: Club
    email: str
    expires_at: datetime
