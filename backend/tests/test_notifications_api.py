import pytest
from sqlalchemy import select

from ember_society.models.notification_models import Notification, NotificationCategory, PushSubscription

SUBSCRIPTION = {
    "endpoint": "https://push.example/abc",
    "keys": {"p256dh": "BNcR", "auth": "tBHI"},
}


async def _seed(session_factory, user, count):
    async with session_factory() as db:
        db.add_all([
            Notification(user_id=user.id, type=NotificationCategory.NEW_FOLLOWER, title=f"n{i}", message="m")
            for i in range(count)
        ])
        await db.commit()


@pytest.mark.asyncio
async def test_list_and_read_notifications(client, auth, session_factory, make_user):
    ash = await make_user("ash")
    bo = await make_user("bo")
    await _seed(session_factory, ash, 3)
    await _seed(session_factory, bo, 1)

    listed = await client.get("/api/notifications", headers=auth(ash))
    assert listed.status_code == 200
    assert len(listed.json()) == 3
    assert (await client.get("/api/notifications/unread-count", headers=auth(ash))).json() == {"count": 3}

    first_id = listed.json()[0]["id"]
    assert (await client.patch(f"/api/notifications/{first_id}/read", headers=auth(ash))).status_code == 200
    assert (await client.get("/api/notifications/unread-count", headers=auth(ash))).json() == {"count": 2}

    # Another user's notification is invisible
    async with session_factory() as db:
        bo_note = (await db.execute(select(Notification.id).where(Notification.user_id == bo.id))).scalar_one()
    assert (await client.patch(f"/api/notifications/{bo_note}/read", headers=auth(ash))).status_code == 404

    assert (await client.post("/api/notifications/mark-all-read", headers=auth(ash))).status_code == 200
    assert (await client.get("/api/notifications/unread-count", headers=auth(ash))).json() == {"count": 0}
    assert (await client.get("/api/notifications/unread-count", headers=auth(bo))).json() == {"count": 1}


@pytest.mark.asyncio
async def test_preferences_default_and_update(client, auth, make_user):
    ash = await make_user("ash")

    prefs = await client.get("/api/notifications/preferences", headers=auth(ash))
    assert prefs.status_code == 200
    body = prefs.json()
    assert body["push_enabled"] is False
    assert all(value is True for key, value in body.items() if key != "push_enabled")

    updated = await client.patch(
        "/api/notifications/preferences",
        json={"push_enabled": True, "new_follower": False},
        headers=auth(ash),
    )
    assert updated.json()["push_enabled"] is True
    assert updated.json()["new_follower"] is False
    assert updated.json()["new_comment"] is True


@pytest.mark.asyncio
async def test_disabled_preference_stops_follow_notifications(client, auth, session_factory, make_user):
    ash = await make_user("ash")
    bo = await make_user("bo")
    await client.patch("/api/notifications/preferences", json={"new_follower": False}, headers=auth(bo))

    await client.post("/api/users/bo/follow", headers=auth(ash))

    assert (await client.get("/api/notifications", headers=auth(bo))).json() == []


@pytest.mark.asyncio
async def test_push_subscribe_lifecycle(client, auth, session_factory, make_user):
    ash = await make_user("ash")
    bo = await make_user("bo")

    first = await client.post("/api/notifications/push/subscribe", json=SUBSCRIPTION, headers=auth(ash))
    assert first.json() == {"message": "Successfully subscribed to push notifications"}
    again = await client.post("/api/notifications/push/subscribe", json=SUBSCRIPTION, headers=auth(ash))
    assert again.json() == {"message": "Already subscribed"}

    # Same browser, different account
    await client.post("/api/notifications/push/subscribe", json=SUBSCRIPTION, headers=auth(bo))
    async with session_factory() as db:
        subs = (await db.execute(select(PushSubscription))).scalars().all()
    assert [(s.user_id, s.endpoint) for s in subs] == [(bo.id, SUBSCRIPTION["endpoint"])]

    gone = await client.post(
        "/api/notifications/push/unsubscribe", json={"endpoint": SUBSCRIPTION["endpoint"]}, headers=auth(bo)
    )
    assert gone.status_code == 200
    async with session_factory() as db:
        assert (await db.execute(select(PushSubscription))).scalars().all() == []


@pytest.mark.asyncio
async def test_push_subscribe_validation(client, auth, make_user):
    ash = await make_user("ash")

    response = await client.post(
        "/api/notifications/push/subscribe",
        json={"endpoint": "https://push.example/x", "keys": {"p256dh": "", "auth": "a"}},
        headers=auth(ash),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_notifications_require_auth(client):
    assert (await client.get("/api/notifications")).status_code == 401
