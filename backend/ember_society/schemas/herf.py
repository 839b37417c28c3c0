from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from ember_society.models.herf import HerfStatus
from ember_society.schemas.user import UserSummary
from ember_society.schemas.club import ClubRef


class HerfSessionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    max_participants: int = Field(8, ge=2)
    is_private: bool = False
    club_id: Optional[int] = None


class HerfParticipant(BaseModel):
    id: int
    user_id: int
    joined_at: datetime
    left_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


class HerfSession(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    host_id: int
    club_id: Optional[int] = None
    scheduled_for: Optional[datetime] = None
    max_participants: int
    is_private: bool
    status: HerfStatus
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime
    host: Optional[UserSummary] = None
    club: Optional[ClubRef] = None
    participants: List[HerfParticipant] = []


class HerfJoinResponse(BaseModel):
    session_id: int
    is_host: bool


class HerfChatMessage(BaseModel):
    id: int
    session_id: int
    user_id: int
    message: str
    created_at: datetime
    user: Optional[UserSummary] = None
