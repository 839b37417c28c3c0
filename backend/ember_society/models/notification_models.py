import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, DateTime, Text, Boolean, Enum
from sqlalchemy.orm import Mapped, mapped_column
from ember_society.core.database import Base


class NotificationCategory(str, enum.Enum):
    NEW_FOLLOWER = "NEW_FOLLOWER"
    NEW_POST_IN_CLUB = "NEW_POST_IN_CLUB"
    NEW_COMMENT = "NEW_COMMENT"
    NEW_REPLY = "NEW_REPLY"
    POST_MENTION = "POST_MENTION"
    EVENT_REMINDER = "EVENT_REMINDER"
    CLUB_INVITE = "CLUB_INVITE"
    NEW_MESSAGE = "NEW_MESSAGE"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    type: Mapped[NotificationCategory] = mapped_column(Enum(NotificationCategory))
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    link_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)

    push_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    new_follower: Mapped[bool] = mapped_column(Boolean, default=True)
    new_post_in_club: Mapped[bool] = mapped_column(Boolean, default=True)
    new_comment: Mapped[bool] = mapped_column(Boolean, default=True)
    new_reply: Mapped[bool] = mapped_column(Boolean, default=True)
    post_mention: Mapped[bool] = mapped_column(Boolean, default=True)
    event_reminder: Mapped[bool] = mapped_column(Boolean, default=True)
    club_invite: Mapped[bool] = mapped_column(Boolean, default=True)
    new_message: Mapped[bool] = mapped_column(Boolean, default=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Category -> NotificationPreference column gating it
PREFERENCE_FIELDS = {
    NotificationCategory.NEW_FOLLOWER: "new_follower",
    NotificationCategory.NEW_POST_IN_CLUB: "new_post_in_club",
    NotificationCategory.NEW_COMMENT: "new_comment",
    NotificationCategory.NEW_REPLY: "new_reply",
    NotificationCategory.POST_MENTION: "post_mention",
    NotificationCategory.EVENT_REMINDER: "event_reminder",
    NotificationCategory.CLUB_INVITE: "club_invite",
    NotificationCategory.NEW_MESSAGE: "new_message",
}


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    endpoint: Mapped[str] = mapped_column(Text, unique=True, index=True)
    p256dh: Mapped[str] = mapped_column(String)
    auth: Mapped[str] = mapped_column(String)

    user_agent: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
