from typing import Dict, List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ember_society.models.event import Event, EventRSVP, RSVPStatus
from ember_society.schemas.event import Event as EventSchema, RSVP as RSVPSchema
from ember_society.services.club_service import get_membership, is_manager
from ember_society.services.post_service import get_club_refs
from ember_society.services.user_service import get_user_summaries


async def get_event_or_404(db: AsyncSession, event_id: int) -> Event:
    event = await db.get(Event, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


async def can_manage_event(db: AsyncSession, event: Event, user_id: int) -> bool:
    """Creators and club owners/admins may edit or delete an event."""
    if event.creator_id == user_id:
        return True
    return is_manager(await get_membership(db, event.club_id, user_id))


async def get_rsvp(db: AsyncSession, event_id: int, user_id: int) -> Optional[EventRSVP]:
    result = await db.execute(
        select(EventRSVP).where(EventRSVP.event_id == event_id, EventRSVP.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def serialize_rsvps(db: AsyncSession, rsvps: Sequence[EventRSVP]) -> List[RSVPSchema]:
    users = await get_user_summaries(db, (r.user_id for r in rsvps))
    return [
        RSVPSchema(id=r.id, event_id=r.event_id, user_id=r.user_id, status=r.status, user=users.get(r.user_id))
        for r in rsvps
    ]


async def serialize_events(db: AsyncSession, events: Sequence[Event], include_rsvps: bool = True) -> List[EventSchema]:
    event_ids = [e.id for e in events]
    clubs = await get_club_refs(db, (e.club_id for e in events))

    rsvps_by_event: Dict[int, List[EventRSVP]] = {eid: [] for eid in event_ids}
    if event_ids:
        result = await db.execute(
            select(EventRSVP).where(EventRSVP.event_id.in_(event_ids)).order_by(EventRSVP.id)
        )
        for rsvp in result.scalars().all():
            rsvps_by_event[rsvp.event_id].append(rsvp)

    serialized = []
    for e in events:
        rsvps = rsvps_by_event.get(e.id, [])
        serialized.append(EventSchema(
            id=e.id,
            title=e.title,
            description=e.description,
            location=e.location,
            start_time=e.start_time,
            end_time=e.end_time,
            is_public=e.is_public,
            club_id=e.club_id,
            creator_id=e.creator_id,
            created_at=e.created_at,
            club=clubs.get(e.club_id),
            rsvps=await serialize_rsvps(db, rsvps) if include_rsvps else [],
            going_count=sum(1 for r in rsvps if r.status == RSVPStatus.GOING),
        ))
    return serialized


async def serialize_event(db: AsyncSession, event: Event) -> EventSchema:
    return (await serialize_events(db, [event]))[0]
