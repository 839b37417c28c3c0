from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ember_society.models.herf import HerfSession, HerfParticipant, HerfChatMessage
from ember_society.services.club_service import is_member

CHAT_HISTORY_LIMIT = 100


async def is_participant(db: AsyncSession, session_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(HerfParticipant.id).where(
            HerfParticipant.session_id == session_id,
            HerfParticipant.user_id == user_id,
        )
    )
    return result.first() is not None


async def can_access_session(db: AsyncSession, session: HerfSession, user_id: Optional[int]) -> bool:
    """
    Hosts and participants always get in. Public sessions are open to anyone;
    private ones additionally admit members of the owning club.
    """
    if user_id is None:
        return not session.is_private
    if session.host_id == user_id or await is_participant(db, session.id, user_id):
        return True
    if not session.is_private:
        return True
    if session.club_id is not None:
        return await is_member(db, session.club_id, user_id)
    return False


async def recent_chat_messages(db: AsyncSession, session_id: int, limit: int = CHAT_HISTORY_LIMIT) -> List[HerfChatMessage]:
    """The newest ``limit`` messages, oldest first."""
    result = await db.execute(
        select(HerfChatMessage)
        .where(HerfChatMessage.session_id == session_id)
        .order_by(HerfChatMessage.created_at.desc(), HerfChatMessage.id.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))
