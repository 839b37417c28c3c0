from datetime import datetime
from typing import List, Sequence
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.message import Conversation, Message
from ember_society.models.notification_models import NotificationCategory
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user
from ember_society.schemas.message import (
    MessageCreate,
    Message as MessageSchema,
    ConversationSummary,
    Conversation as ConversationSchema,
)
from ember_society.schemas.user import UserSummary
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher
from ember_society.services.user_service import get_user_summaries, get_user_or_404

router = APIRouter(prefix="/messages", tags=["messages"])
logger = logging.getLogger(__name__)


async def _serialize_messages(db: AsyncSession, messages: Sequence[Message]) -> List[MessageSchema]:
    senders = await get_user_summaries(db, (m.sender_id for m in messages))
    return [
        MessageSchema(
            id=m.id,
            content=m.content,
            conversation_id=m.conversation_id,
            sender_id=m.sender_id,
            receiver_id=m.receiver_id,
            is_read=m.is_read,
            created_at=m.created_at,
            sender=senders.get(m.sender_id),
        )
        for m in messages
    ]


async def _find_conversation(db: AsyncSession, user_id: int, other_id: int):
    # Participant order is whatever it was at creation
    result = await db.execute(
        select(Conversation).where(
            or_(
                and_(Conversation.participant1_id == user_id, Conversation.participant2_id == other_id),
                and_(Conversation.participant1_id == other_id, Conversation.participant2_id == user_id),
            )
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create_conversation(db: AsyncSession, user_id: int, other_id: int) -> Conversation:
    conversation = await _find_conversation(db, user_id, other_id)
    if conversation is None:
        conversation = Conversation(participant1_id=user_id, participant2_id=other_id)
        db.add(conversation)
        await db.commit()
        await db.refresh(conversation)
    return conversation


async def _get_other_user(db: AsyncSession, username: str, user: User) -> User:
    other = await get_user_or_404(db, username)
    if other.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot message yourself")
    return other


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(
        select(Conversation)
        .where(or_(Conversation.participant1_id == user.id, Conversation.participant2_id == user.id))
        .order_by(Conversation.last_message_at.desc())
    )
    conversations = result.scalars().all()
    participants = await get_user_summaries(db, (c.other_participant_id(user.id) for c in conversations))

    summaries = []
    for conversation in conversations:
        result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        last = result.scalars().all()
        unread = await db.scalar(
            select(func.count(Message.id)).where(
                Message.conversation_id == conversation.id,
                Message.receiver_id == user.id,
                Message.is_read.is_(False),
            )
        )
        summaries.append(ConversationSummary(
            id=conversation.id,
            last_message_at=conversation.last_message_at,
            other_participant=participants.get(conversation.other_participant_id(user.id)),
            last_message=(await _serialize_messages(db, last))[0] if last else None,
            unread_count=unread or 0,
        ))
    return summaries


@router.get("/conversations/{username}", response_model=ConversationSchema)
async def get_conversation(username: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    other = await _get_other_user(db, username, user)
    conversation = await _get_or_create_conversation(db, user.id, other.id)

    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at, Message.id)
    )
    return ConversationSchema(
        id=conversation.id,
        last_message_at=conversation.last_message_at,
        other_participant=UserSummary.model_validate(other),
        messages=await _serialize_messages(db, result.scalars().all()),
    )


@router.post("/conversations/{username}/messages", response_model=MessageSchema, status_code=201)
async def send_message(
    username: str,
    message_data: MessageCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if not message_data.content.strip():
        raise HTTPException(status_code=400, detail="Message content is required")

    other = await _get_other_user(db, username, user)
    conversation = await _get_or_create_conversation(db, user.id, other.id)

    message = Message(
        content=message_data.content,
        conversation_id=conversation.id,
        sender_id=user.id,
        receiver_id=other.id,
    )
    db.add(message)
    conversation.last_message_at = datetime.utcnow()
    await db.commit()
    await db.refresh(message)

    dispatcher.schedule(
        background_tasks,
        f"direct message {message.id}",
        dispatcher.dispatch,
        other.id,
        NotificationCategory.NEW_MESSAGE,
        "New message",
        f"{user.name} sent you a message",
        f"/messages/{user.username}",
    )
    return (await _serialize_messages(db, [message]))[0]


@router.post("/conversations/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if user.id not in (conversation.participant1_id, conversation.participant2_id):
        raise HTTPException(status_code=403, detail="Not authorized")

    await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.receiver_id == user.id,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
    )
    await db.commit()
    return {"message": "Messages marked as read"}
