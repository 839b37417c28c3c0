import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ember_society.core.config import get_settings
from ember_society.core.database import SessionLocal
from ember_society.models.club import Club
from ember_society.models.event import Event, EventRSVP, EventReminderLog, RSVPStatus, ReminderWindow
from ember_society.models.notification_models import NotificationCategory
from ember_society.schemas.notification import NotificationPayload
from ember_society.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

EVENT_REMINDER_JOB_ID = "event_reminders"

# How far ahead of the start time each reminder goes out
WINDOW_OFFSETS = {
    ReminderWindow.DAY_BEFORE: timedelta(hours=24),
    ReminderWindow.HOUR_BEFORE: timedelta(hours=1),
}

WINDOW_TITLES = {
    ReminderWindow.DAY_BEFORE: ("Event starting in 24 hours", "starts tomorrow"),
    ReminderWindow.HOUR_BEFORE: ("Event starting in 1 hour", "starts soon"),
}


@dataclass
class ReminderSweepResult:
    # Events reminded per window in this run
    events: Dict[ReminderWindow, int] = field(default_factory=dict)
    notifications: int = 0
    skipped_already_sent: int = 0
    failed: bool = False


class EventReminderService:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: async_sessionmaker = SessionLocal,
        tolerance: Optional[timedelta] = None,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        if tolerance is None:
            tolerance = timedelta(minutes=get_settings().EVENT_REMINDER_TOLERANCE_MINUTES)
        self.tolerance = tolerance

    def window_bounds(self, window: ReminderWindow, now: datetime) -> Tuple[datetime, datetime]:
        start = now + WINDOW_OFFSETS[window]
        return start, start + self.tolerance

    async def sweep(self, now: Optional[datetime] = None) -> ReminderSweepResult:
        """Send due 24h and 1h reminders. Never raises."""
        now = now or datetime.utcnow()
        result = ReminderSweepResult()
        try:
            for window in (ReminderWindow.DAY_BEFORE, ReminderWindow.HOUR_BEFORE):
                result.events[window] = await self._sweep_window(window, now, result)
            logger.info(
                f"Event reminders sent: {result.events[ReminderWindow.DAY_BEFORE]} 24h reminders, "
                f"{result.events[ReminderWindow.HOUR_BEFORE]} 1h reminders "
                f"({result.notifications} notifications, {result.skipped_already_sent} already sent)"
            )
        except Exception as e:
            result.failed = True
            logger.error(f"Error sending event reminders: {e}", exc_info=True)
        return result

    async def _sweep_window(self, window: ReminderWindow, now: datetime, result: ReminderSweepResult) -> int:
        start, end = self.window_bounds(window, now)
        async with self.session_factory() as db:
            events = await self._events_between(db, start, end)
            reminded = 0
            for event_id, event_title, club_name in events:
                if not await self._claim(db, event_id, window):
                    result.skipped_already_sent += 1
                    continue
                attendee_ids = await self._going_attendees(db, event_id)
                title, phrase = WINDOW_TITLES[window]
                payload = NotificationPayload(
                    type=NotificationCategory.EVENT_REMINDER,
                    title=title,
                    message=f"{event_title} in {club_name} {phrase}",
                    link_url=f"/events/{event_id}",
                )
                result.notifications += await self.dispatcher.notify_users(attendee_ids, payload)
                reminded += 1
            return reminded

    async def _events_between(self, db: AsyncSession, start: datetime, end: datetime) -> List[Tuple[int, str, str]]:
        result = await db.execute(
            select(Event.id, Event.title, Club.name)
            .join(Club, Club.id == Event.club_id)
            .where(Event.start_time >= start, Event.start_time <= end)
            .order_by(Event.start_time)
        )
        return [tuple(row) for row in result.all()]

    async def _going_attendees(self, db: AsyncSession, event_id: int) -> List[int]:
        result = await db.execute(
            select(EventRSVP.user_id).where(
                EventRSVP.event_id == event_id,
                EventRSVP.status == RSVPStatus.GOING,
            )
        )
        return list(result.scalars().all())

    async def _claim(self, db: AsyncSession, event_id: int, window: ReminderWindow) -> bool:
        """Record that ``window`` reminders for the event go out now. False if some sweep already did."""
        db.add(EventReminderLog(event_id=event_id, window=window))
        try:
            await db.commit()
            return True
        except IntegrityError:
            await db.rollback()
            return False


class EventReminderScheduler:
    """Owns the periodic reminder job so it can be started, stopped and triggered explicitly."""

    def __init__(self, service: EventReminderService, interval_minutes: Optional[int] = None):
        self.service = service
        self.interval_minutes = interval_minutes or get_settings().EVENT_REMINDER_INTERVAL_MINUTES
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self.interval_minutes),
            id=EVENT_REMINDER_JOB_ID,
            next_run_time=datetime.now(),  # run immediately on startup
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Event reminder scheduler started (runs every {self.interval_minutes} minutes)")

    def stop(self) -> None:
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Event reminder scheduler stopped")

    async def run_once(self, now: Optional[datetime] = None) -> ReminderSweepResult:
        return await self.service.sweep(now)
