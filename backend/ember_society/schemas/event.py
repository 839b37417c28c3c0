from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from ember_society.models.event import RSVPStatus
from ember_society.schemas.user import UserSummary
from ember_society.schemas.club import ClubRef


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    is_public: bool = True


class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_public: Optional[bool] = None


class RSVPCreate(BaseModel):
    status: RSVPStatus


class RSVP(BaseModel):
    id: int
    event_id: int
    user_id: int
    status: RSVPStatus
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


class Event(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    is_public: bool
    club_id: int
    creator_id: int
    created_at: datetime
    club: Optional[ClubRef] = None
    rsvps: List[RSVP] = []
    going_count: int = 0
