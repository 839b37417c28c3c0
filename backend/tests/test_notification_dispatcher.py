import pytest
from sqlalchemy import select

from ember_society.models.notification_models import (
    Notification,
    NotificationCategory,
    NotificationPreference,
    PushSubscription,
)
from ember_society.services.push import PushGoneError


async def _notifications(session_factory, user_id=None):
    async with session_factory() as db:
        query = select(Notification).order_by(Notification.id)
        if user_id is not None:
            query = query.where(Notification.user_id == user_id)
        return (await db.execute(query)).scalars().all()


async def _add(session_factory, *rows):
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


def _subscription(user, n):
    return PushSubscription(user_id=user.id, endpoint=f"https://push.example/{user.id}/{n}", p256dh="key", auth="secret")


@pytest.mark.asyncio
async def test_dispatch_without_preferences_creates_notification_and_skips_push(
    dispatcher, session_factory, push_sender, make_user
):
    user = await make_user()
    await _add(session_factory, _subscription(user, 1))

    await dispatcher.dispatch(user.id, NotificationCategory.NEW_FOLLOWER, "New follower", "bob followed you", "/u/bob")

    rows = await _notifications(session_factory, user.id)
    assert len(rows) == 1
    assert rows[0].type == NotificationCategory.NEW_FOLLOWER
    assert rows[0].title == "New follower"
    assert rows[0].message == "bob followed you"
    assert rows[0].link_url == "/u/bob"
    assert rows[0].is_read is False
    push_sender.send.assert_not_awaited()

    # Dispatch does not materialize a preference record
    async with session_factory() as db:
        prefs = (await db.execute(select(NotificationPreference))).scalars().all()
    assert prefs == []


@pytest.mark.asyncio
async def test_disabled_category_is_skipped(dispatcher, session_factory, push_sender, make_user):
    user = await make_user()
    await _add(session_factory, NotificationPreference(user_id=user.id, new_comment=False, push_enabled=True))

    await dispatcher.dispatch(user.id, NotificationCategory.NEW_COMMENT, "New comment", "hi")
    await dispatcher.dispatch(user.id, NotificationCategory.NEW_REPLY, "New reply", "hi")

    rows = await _notifications(session_factory, user.id)
    assert [r.type for r in rows] == [NotificationCategory.NEW_REPLY]
    assert push_sender.send.await_count == 0


@pytest.mark.asyncio
async def test_push_payload_and_gone_subscription_cleanup(dispatcher, session_factory, push_sender, make_user):
    user = await make_user()
    await _add(
        session_factory,
        NotificationPreference(user_id=user.id, push_enabled=True),
        _subscription(user, 1),
        _subscription(user, 2),
    )

    async def send(endpoint, p256dh, auth, payload):
        if endpoint.endswith("/1"):
            raise PushGoneError(endpoint, 410)

    push_sender.send.side_effect = send

    await dispatcher.dispatch(user.id, NotificationCategory.NEW_MESSAGE, "New message", "psst", "/messages/bob")

    assert push_sender.send.await_count == 2
    payload = push_sender.send.await_args.args[3]
    notification = (await _notifications(session_factory, user.id))[0]
    assert payload == {"title": "New message", "body": "psst", "url": "/messages/bob", "id": notification.id}

    async with session_factory() as db:
        endpoints = (await db.execute(select(PushSubscription.endpoint))).scalars().all()
    assert endpoints == [f"https://push.example/{user.id}/2"]


@pytest.mark.asyncio
async def test_other_push_failures_keep_subscription(dispatcher, session_factory, push_sender, make_user):
    user = await make_user()
    await _add(session_factory, NotificationPreference(user_id=user.id, push_enabled=True), _subscription(user, 1))
    push_sender.send.side_effect = RuntimeError("push service down")

    await dispatcher.dispatch(user.id, NotificationCategory.NEW_FOLLOWER, "t", "b")

    assert len(await _notifications(session_factory, user.id)) == 1
    async with session_factory() as db:
        assert len((await db.execute(select(PushSubscription))).scalars().all()) == 1


@pytest.mark.asyncio
async def test_unconfigured_push_is_skipped(dispatcher, session_factory, push_sender, make_user):
    user = await make_user()
    await _add(session_factory, NotificationPreference(user_id=user.id, push_enabled=True), _subscription(user, 1))
    push_sender.configured = False

    await dispatcher.dispatch(user.id, NotificationCategory.NEW_FOLLOWER, "t", "b")

    assert len(await _notifications(session_factory, user.id)) == 1
    push_sender.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_storage_failure_is_swallowed(session_factory, push_sender, runner):
    from ember_society.services.notification_service import NotificationDispatcher

    def broken_factory():
        raise RuntimeError("database unavailable")

    dispatcher = NotificationDispatcher(session_factory=broken_factory, push_sender=push_sender, runner=runner)

    await dispatcher.dispatch(1, NotificationCategory.NEW_FOLLOWER, "t", "b")
    push_sender.send.assert_not_awaited()
