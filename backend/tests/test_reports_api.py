import pytest
from sqlalchemy import select

from ember_society.models.user import User
from promote_user import promote_user


@pytest.mark.asyncio
async def test_report_user_and_admin_review(client, auth, make_user):
    reporter = await make_user("reporter")
    troll = await make_user("troll")
    admin = await make_user("admin", is_admin=True)

    created = await client.post(
        "/api/reports",
        json={"reason": "HARASSMENT", "description": "rude", "reported_user_id": troll.id},
        headers=auth(reporter),
    )
    assert created.status_code == 201
    report = created.json()
    assert report["status"] == "PENDING"
    assert report["reported_user"]["username"] == "troll"

    assert (await client.get("/api/reports", headers=auth(reporter))).status_code == 403

    listed = await client.get("/api/reports", params={"status": "PENDING"}, headers=auth(admin))
    assert [r["id"] for r in listed.json()] == [report["id"]]

    resolved = await client.patch(f"/api/reports/{report['id']}", json={"status": "RESOLVED"}, headers=auth(admin))
    assert resolved.json()["status"] == "RESOLVED"
    assert (await client.get("/api/reports", params={"status": "PENDING"}, headers=auth(admin))).json() == []

    assert (await client.delete(f"/api/reports/{report['id']}", headers=auth(admin))).status_code == 200
    assert (await client.get(f"/api/reports/{report['id']}", headers=auth(admin))).status_code == 404


@pytest.mark.asyncio
async def test_report_needs_an_existing_target(client, auth, make_user):
    reporter = await make_user("reporter")

    nothing = await client.post("/api/reports", json={"reason": "SPAM"}, headers=auth(reporter))
    assert nothing.status_code == 400
    missing = await client.post("/api/reports", json={"reason": "SPAM", "reported_post_id": 42}, headers=auth(reporter))
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Reported post not found"


@pytest.mark.asyncio
async def test_promote_user(session_factory, make_user):
    await make_user("mod")

    assert await promote_user("mod@example.com", session_factory=session_factory) == 1
    assert await promote_user("ghost@example.com", session_factory=session_factory) == 0

    async with session_factory() as db:
        user = (await db.execute(select(User).where(User.username == "mod"))).scalar_one()
    assert user.is_admin is True
