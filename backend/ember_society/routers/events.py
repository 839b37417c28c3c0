from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.event import Event, EventRSVP
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user
from ember_society.schemas.event import EventCreate, EventUpdate, Event as EventSchema, RSVPCreate, RSVP as RSVPSchema
from ember_society.services.club_service import get_club_by_slug, is_member
from ember_society.services.event_service import (
    get_event_or_404,
    can_manage_event,
    get_rsvp,
    serialize_events,
    serialize_event,
    serialize_rsvps,
)

router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


@router.get("/clubs/{slug}/events", response_model=List[EventSchema])
async def list_club_events(slug: str, db: AsyncSession = Depends(get_db)):
    club = await get_club_by_slug(db, slug)
    result = await db.execute(select(Event).where(Event.club_id == club.id).order_by(Event.start_time))
    return await serialize_events(db, result.scalars().all())


@router.post("/clubs/{slug}/events", response_model=EventSchema, status_code=201)
async def create_event(
    slug: str,
    event_data: EventCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    club = await get_club_by_slug(db, slug)
    if not await is_member(db, club.id, user.id):
        raise HTTPException(status_code=403, detail="You must be a member of this club to create events")
    if event_data.end_time and event_data.end_time < event_data.start_time:
        raise HTTPException(status_code=400, detail="End time must be after start time")

    event = Event(**event_data.model_dump(), club_id=club.id, creator_id=user.id)
    db.add(event)
    await db.commit()
    await db.refresh(event)
    logger.info(f"User {user.id} created event {event.id} in club {club.slug}")
    return await serialize_event(db, event)


@router.get("/events/{event_id}", response_model=EventSchema)
async def get_event(event_id: int, db: AsyncSession = Depends(get_db)):
    event = await get_event_or_404(db, event_id)
    return await serialize_event(db, event)


@router.patch("/events/{event_id}", response_model=EventSchema)
async def update_event(
    event_id: int,
    update: EventUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    event = await get_event_or_404(db, event_id)
    if not await can_manage_event(db, event, user.id):
        raise HTTPException(status_code=403, detail="You do not have permission to edit this event")

    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(event, field, value)
    await db.commit()
    await db.refresh(event)
    return await serialize_event(db, event)


@router.delete("/events/{event_id}")
async def delete_event(event_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    event = await get_event_or_404(db, event_id)
    if not await can_manage_event(db, event, user.id):
        raise HTTPException(status_code=403, detail="You do not have permission to delete this event")

    await db.execute(delete(EventRSVP).where(EventRSVP.event_id == event.id))
    await db.delete(event)
    await db.commit()
    return {"message": "Event deleted successfully"}


@router.post("/events/{event_id}/rsvp", response_model=RSVPSchema)
async def rsvp_event(
    event_id: int,
    rsvp_data: RSVPCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await get_event_or_404(db, event_id)

    rsvp = await get_rsvp(db, event_id, user.id)
    if rsvp is None:
        rsvp = EventRSVP(event_id=event_id, user_id=user.id, status=rsvp_data.status)
        db.add(rsvp)
    else:
        rsvp.status = rsvp_data.status
    await db.commit()
    await db.refresh(rsvp)
    return (await serialize_rsvps(db, [rsvp]))[0]


@router.delete("/events/{event_id}/rsvp")
async def remove_rsvp(event_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(
        delete(EventRSVP).where(EventRSVP.event_id == event_id, EventRSVP.user_id == user.id)
    )
    await db.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="RSVP not found")
    return {"message": "RSVP removed successfully"}


@router.get("/events/{event_id}/rsvp/me", response_model=Optional[RSVPSchema])
async def get_my_rsvp(event_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    rsvp = await get_rsvp(db, event_id, user.id)
    if rsvp is None:
        return None
    return (await serialize_rsvps(db, [rsvp]))[0]
