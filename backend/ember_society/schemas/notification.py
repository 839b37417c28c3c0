from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from ember_society.models.notification_models import NotificationCategory


class Notification(BaseModel):
    id: int
    user_id: int
    type: NotificationCategory
    title: str
    message: str
    link_url: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPreferences(BaseModel):
    push_enabled: bool
    new_follower: bool
    new_post_in_club: bool
    new_comment: bool
    new_reply: bool
    post_mention: bool
    event_reminder: bool
    club_invite: bool
    new_message: bool

    class Config:
        from_attributes = True


class NotificationPreferencesUpdate(BaseModel):
    push_enabled: Optional[bool] = None
    new_follower: Optional[bool] = None
    new_post_in_club: Optional[bool] = None
    new_comment: Optional[bool] = None
    new_reply: Optional[bool] = None
    post_mention: Optional[bool] = None
    event_reminder: Optional[bool] = None
    club_invite: Optional[bool] = None
    new_message: Optional[bool] = None


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: PushKeys
    user_agent: Optional[str] = None


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)


class NotificationPayload(BaseModel):
    """Everything a dispatch needs except the recipient."""
    type: NotificationCategory
    title: str
    message: str
    link_url: Optional[str] = None
