from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from ember_society.schemas.user import UserSummary


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1)


class Message(BaseModel):
    id: int
    content: str
    conversation_id: int
    sender_id: int
    receiver_id: int
    is_read: bool
    created_at: datetime
    sender: Optional[UserSummary] = None


class ConversationSummary(BaseModel):
    id: int
    last_message_at: datetime
    other_participant: Optional[UserSummary] = None
    last_message: Optional[Message] = None
    unread_count: int = 0


class Conversation(BaseModel):
    id: int
    last_message_at: datetime
    other_participant: UserSummary
    messages: List[Message] = []
