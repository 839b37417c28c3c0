from datetime import datetime
from typing import Dict, List, Optional, Sequence
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.herf import HerfSession, HerfParticipant, HerfStatus, MAX_HERF_PARTICIPANTS
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user, get_optional_user
from ember_society.schemas.herf import (
    HerfSessionCreate,
    HerfSession as HerfSessionSchema,
    HerfParticipant as HerfParticipantSchema,
    HerfJoinResponse,
    HerfChatMessage as HerfChatMessageSchema,
)
from ember_society.services.club_service import is_member
from ember_society.services.herf_service import can_access_session, is_participant, recent_chat_messages
from ember_society.services.post_service import get_club_refs
from ember_society.services.user_service import get_user_summaries

router = APIRouter(prefix="/herf", tags=["herf"])
logger = logging.getLogger(__name__)

SESSION_LIST_LIMIT = 50


async def _serialize(db: AsyncSession, sessions: Sequence[HerfSession]) -> List[HerfSessionSchema]:
    session_ids = [s.id for s in sessions]
    participants: Dict[int, List[HerfParticipant]] = {sid: [] for sid in session_ids}
    if session_ids:
        result = await db.execute(
            select(HerfParticipant)
            .where(HerfParticipant.session_id.in_(session_ids))
            .order_by(HerfParticipant.joined_at)
        )
        for p in result.scalars().all():
            participants[p.session_id].append(p)

    user_ids = {s.host_id for s in sessions}
    user_ids.update(p.user_id for ps in participants.values() for p in ps)
    users = await get_user_summaries(db, user_ids)
    clubs = await get_club_refs(db, (s.club_id for s in sessions))

    return [
        HerfSessionSchema(
            id=s.id,
            title=s.title,
            description=s.description,
            host_id=s.host_id,
            club_id=s.club_id,
            scheduled_for=s.scheduled_for,
            max_participants=s.max_participants,
            is_private=s.is_private,
            status=s.status,
            started_at=s.started_at,
            ended_at=s.ended_at,
            created_at=s.created_at,
            host=users.get(s.host_id),
            club=clubs.get(s.club_id),
            participants=[
                HerfParticipantSchema(
                    id=p.id,
                    user_id=p.user_id,
                    joined_at=p.joined_at,
                    left_at=p.left_at,
                    user=users.get(p.user_id),
                )
                for p in participants[s.id]
            ],
        )
        for s in sessions
    ]


async def _get_session_or_404(db: AsyncSession, session_id: int) -> HerfSession:
    session = await db.get(HerfSession, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Herf session not found")
    return session


async def _get_hosted_session(db: AsyncSession, session_id: int, user: User, action: str) -> HerfSession:
    session = await _get_session_or_404(db, session_id)
    if session.host_id != user.id:
        raise HTTPException(status_code=403, detail=f"Only the host can {action} the session")
    return session


@router.post("/sessions", response_model=HerfSessionSchema, status_code=201)
async def create_session(
    session_data: HerfSessionCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if session_data.club_id is not None and not await is_member(db, session_data.club_id, user.id):
        raise HTTPException(status_code=403, detail="You must be a member of this club")

    data = session_data.model_dump()
    data["max_participants"] = min(data["max_participants"], MAX_HERF_PARTICIPANTS)
    session = HerfSession(**data, host_id=user.id, status=HerfStatus.SCHEDULED)
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info(f"User {user.id} created herf session {session.id}")
    return (await _serialize(db, [session]))[0]


@router.get("/sessions", response_model=List[HerfSessionSchema])
async def list_sessions(
    status: Optional[HerfStatus] = None,
    club_id: Optional[int] = Query(None, alias="clubId"),
    upcoming: bool = False,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    query = select(HerfSession)
    if user is None:
        query = query.where(HerfSession.is_private.is_(False))
    else:
        joined = select(HerfParticipant.session_id).where(HerfParticipant.user_id == user.id)
        query = query.where(or_(
            HerfSession.is_private.is_(False),
            HerfSession.host_id == user.id,
            HerfSession.id.in_(joined),
        ))

    if upcoming:
        query = query.where(
            HerfSession.status.in_((HerfStatus.SCHEDULED, HerfStatus.LIVE)),
            or_(
                HerfSession.scheduled_for >= datetime.utcnow(),
                HerfSession.status == HerfStatus.LIVE,
            ),
        )
    elif status is not None:
        query = query.where(HerfSession.status == status)
    if club_id is not None:
        query = query.where(HerfSession.club_id == club_id)

    result = await db.execute(
        query.order_by(HerfSession.scheduled_for, HerfSession.created_at.desc()).limit(SESSION_LIST_LIMIT)
    )
    return await _serialize(db, result.scalars().all())


@router.get("/sessions/{session_id}", response_model=HerfSessionSchema)
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    session = await _get_session_or_404(db, session_id)
    if not await can_access_session(db, session, user.id if user else None):
        raise HTTPException(status_code=403, detail="You do not have access to this session")
    return (await _serialize(db, [session]))[0]


@router.post("/sessions/{session_id}/start", response_model=HerfSessionSchema)
async def start_session(session_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    session = await _get_hosted_session(db, session_id, user, "start")
    if session.status != HerfStatus.SCHEDULED:
        raise HTTPException(status_code=400, detail="Session has already started or ended")

    session.status = HerfStatus.LIVE
    session.started_at = datetime.utcnow()
    await db.commit()
    logger.info(f"Herf session {session.id} is live")
    return (await _serialize(db, [session]))[0]


@router.post("/sessions/{session_id}/join", response_model=HerfJoinResponse)
async def join_session(session_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    session = await _get_session_or_404(db, session_id)
    if session.status != HerfStatus.LIVE:
        raise HTTPException(status_code=400, detail="Session is not currently live")

    is_host = session.host_id == user.id
    if not is_host and not await is_participant(db, session.id, user.id):
        active = await db.scalar(
            select(func.count(HerfParticipant.id)).where(
                HerfParticipant.session_id == session.id,
                HerfParticipant.left_at.is_(None),
            )
        )
        if (active or 0) >= session.max_participants:
            raise HTTPException(status_code=400, detail="Session is at full capacity")

    if not await can_access_session(db, session, user.id):
        raise HTTPException(status_code=403, detail="You do not have access to this session")

    result = await db.execute(
        select(HerfParticipant).where(
            HerfParticipant.session_id == session.id,
            HerfParticipant.user_id == user.id,
        )
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        db.add(HerfParticipant(session_id=session.id, user_id=user.id))
    else:
        participant.left_at = None
    await db.commit()

    return HerfJoinResponse(session_id=session.id, is_host=is_host)


@router.post("/sessions/{session_id}/leave")
async def leave_session(session_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(
        select(HerfParticipant).where(
            HerfParticipant.session_id == session_id,
            HerfParticipant.user_id == user.id,
        )
    )
    participant = result.scalar_one_or_none()
    if participant is not None:
        participant.left_at = datetime.utcnow()
        await db.commit()
    return {"message": "Left session successfully"}


@router.post("/sessions/{session_id}/end", response_model=HerfSessionSchema)
async def end_session(session_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    session = await _get_hosted_session(db, session_id, user, "end")
    if session.status != HerfStatus.LIVE:
        raise HTTPException(status_code=400, detail="Session is not currently live")

    session.status = HerfStatus.ENDED
    session.ended_at = datetime.utcnow()
    await db.commit()
    logger.info(f"Herf session {session.id} ended")
    return (await _serialize(db, [session]))[0]


@router.delete("/sessions/{session_id}")
async def cancel_session(session_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    session = await _get_hosted_session(db, session_id, user, "cancel")
    if session.status in (HerfStatus.ENDED, HerfStatus.CANCELLED):
        raise HTTPException(status_code=400, detail="Session has already ended")

    session.status = HerfStatus.CANCELLED
    await db.commit()
    return {"message": "Session cancelled successfully"}


@router.get("/sessions/{session_id}/messages", response_model=List[HerfChatMessageSchema])
async def get_session_messages(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    session = await _get_session_or_404(db, session_id)
    if session.host_id != user.id and not await is_participant(db, session.id, user.id):
        raise HTTPException(status_code=403, detail="You do not have access to this session")

    messages = await recent_chat_messages(db, session.id)
    users = await get_user_summaries(db, (m.user_id for m in messages))
    return [
        HerfChatMessageSchema(
            id=m.id,
            session_id=m.session_id,
            user_id=m.user_id,
            message=m.message,
            created_at=m.created_at,
            user=users.get(m.user_id),
        )
        for m in messages
    ]
