from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from ember_society.models.event import Event, EventRSVP, EventReminderLog, RSVPStatus, ReminderWindow
from ember_society.models.notification_models import Notification, NotificationCategory
from ember_society.services.event_reminder_service import EventReminderService, EventReminderScheduler

NOW = datetime(2026, 3, 14, 18, 0)


@pytest.fixture
def service(dispatcher, session_factory):
    return EventReminderService(dispatcher, session_factory=session_factory, tolerance=timedelta(minutes=15))


@pytest.fixture
def make_event(session_factory):
    async def _make(club, creator, start_time, title="Cigar night", rsvps=()):
        async with session_factory() as db:
            event = Event(title=title, start_time=start_time, club_id=club.id, creator_id=creator.id)
            db.add(event)
            await db.flush()
            for user, status in rsvps:
                db.add(EventRSVP(event_id=event.id, user_id=user.id, status=status))
            await db.commit()
            await db.refresh(event)
            return event

    return _make


async def _reminders(session_factory):
    async with session_factory() as db:
        result = await db.execute(
            select(Notification).where(Notification.type == NotificationCategory.EVENT_REMINDER).order_by(Notification.id)
        )
        return result.scalars().all()


def test_window_bounds(service):
    assert service.window_bounds(ReminderWindow.DAY_BEFORE, NOW) == (
        NOW + timedelta(hours=24),
        NOW + timedelta(hours=24, minutes=15),
    )
    assert service.window_bounds(ReminderWindow.HOUR_BEFORE, NOW) == (
        NOW + timedelta(hours=1),
        NOW + timedelta(hours=1, minutes=15),
    )


@pytest.mark.asyncio
async def test_day_before_reminder_goes_to_going_attendees_only(service, session_factory, make_user, make_club, make_event):
    host = await make_user("host")
    going = await make_user("going")
    maybe = await make_user("maybe")
    nope = await make_user("nope")
    club = await make_club(host, members=[going, maybe, nope], name="Smoke Ring")
    event = await make_event(
        club,
        host,
        NOW + timedelta(hours=24, minutes=5),
        rsvps=[(going, RSVPStatus.GOING), (maybe, RSVPStatus.MAYBE), (nope, RSVPStatus.NOT_GOING)],
    )

    result = await service.sweep(NOW)

    assert result.failed is False
    assert result.events == {ReminderWindow.DAY_BEFORE: 1, ReminderWindow.HOUR_BEFORE: 0}
    assert result.notifications == 1
    reminders = await _reminders(session_factory)
    assert [r.user_id for r in reminders] == [going.id]
    assert reminders[0].title == "Event starting in 24 hours"
    assert reminders[0].message == "Cigar night in Smoke Ring starts tomorrow"
    assert reminders[0].link_url == f"/events/{event.id}"


@pytest.mark.asyncio
async def test_hour_before_reminder(service, session_factory, make_user, make_club, make_event):
    host = await make_user("host")
    club = await make_club(host, name="Smoke Ring")
    await make_event(club, host, NOW + timedelta(hours=1), title="Herf", rsvps=[(host, RSVPStatus.GOING)])

    result = await service.sweep(NOW)

    assert result.events[ReminderWindow.HOUR_BEFORE] == 1
    reminders = await _reminders(session_factory)
    assert len(reminders) == 1
    assert reminders[0].title == "Event starting in 1 hour"
    assert reminders[0].message == "Herf in Smoke Ring starts soon"


@pytest.mark.asyncio
async def test_events_outside_windows_are_ignored(service, session_factory, make_user, make_club, make_event):
    host = await make_user("host")
    club = await make_club(host)
    for start in (
        NOW + timedelta(minutes=30),
        NOW + timedelta(hours=1, minutes=16),
        NOW + timedelta(hours=12),
        NOW + timedelta(hours=24, minutes=16),
        NOW - timedelta(hours=1),
    ):
        await make_event(club, host, start, rsvps=[(host, RSVPStatus.GOING)])

    result = await service.sweep(NOW)

    assert result.events == {ReminderWindow.DAY_BEFORE: 0, ReminderWindow.HOUR_BEFORE: 0}
    assert await _reminders(session_factory) == []


@pytest.mark.asyncio
async def test_back_to_back_sweeps_do_not_duplicate(service, session_factory, make_user, make_club, make_event):
    host = await make_user("host")
    club = await make_club(host)
    await make_event(club, host, NOW + timedelta(hours=24, minutes=10), rsvps=[(host, RSVPStatus.GOING)])

    first = await service.sweep(NOW)
    second = await service.sweep(NOW + timedelta(minutes=5))

    assert first.notifications == 1
    assert second.notifications == 0
    assert second.skipped_already_sent == 1
    assert len(await _reminders(session_factory)) == 1

    async with session_factory() as db:
        logs = (await db.execute(select(EventReminderLog))).scalars().all()
    assert [log.window for log in logs] == [ReminderWindow.DAY_BEFORE]


@pytest.mark.asyncio
async def test_event_without_attendees_is_still_claimed(service, session_factory, make_user, make_club, make_event):
    host = await make_user("host")
    club = await make_club(host)
    await make_event(club, host, NOW + timedelta(hours=1, minutes=1))

    result = await service.sweep(NOW)

    assert result.events[ReminderWindow.HOUR_BEFORE] == 1
    assert result.notifications == 0


@pytest.mark.asyncio
async def test_sweep_never_raises(dispatcher):
    def broken_factory():
        raise RuntimeError("database unavailable")

    service = EventReminderService(dispatcher, session_factory=broken_factory, tolerance=timedelta(minutes=15))

    result = await service.sweep(NOW)

    assert result.failed is True


@pytest.mark.asyncio
async def test_scheduler_run_once_delegates_to_service(service, make_user, make_club, make_event, session_factory):
    host = await make_user("host")
    club = await make_club(host)
    await make_event(club, host, NOW + timedelta(hours=1, minutes=2), rsvps=[(host, RSVPStatus.GOING)])
    scheduler = EventReminderScheduler(service, interval_minutes=15)

    result = await scheduler.run_once(NOW)

    assert result.notifications == 1
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(service):
    scheduler = EventReminderScheduler(service, interval_minutes=15)

    scheduler.start()
    try:
        assert scheduler.running is True
        scheduler.start()  # idempotent
        assert scheduler.running is True
    finally:
        scheduler.stop()

    assert scheduler.running is False
    scheduler.stop()
