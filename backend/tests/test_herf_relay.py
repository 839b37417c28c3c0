from datetime import datetime, timedelta

import pytest
from starlette.websockets import WebSocketDisconnect
from sqlalchemy import select

from ember_society.core.security import create_access_token
from ember_society.models.herf import HerfSession, HerfParticipant, HerfChatMessage
from ember_society.realtime.herf_socket import (
    HerfRelay,
    RelayConnection,
    SessionMembershipRegistry,
    authenticate_socket,
    CHAT_HISTORY,
    ERROR,
    NEW_MESSAGE,
    USER_JOINED,
    USER_LEFT,
    USER_STOP_TYPING,
    USER_TYPING,
)


class RecordingConnection(RelayConnection):
    def __init__(self, user, connection_id=None):
        super().__init__(user.id, user.username, connection_id)
        self.frames = []

    async def emit(self, event, data):
        self.frames.append((event, data))

    def events(self, name=None):
        return [data for event, data in self.frames if name is None or event == name]


class BrokenConnection(RecordingConnection):
    async def emit(self, event, data):
        raise ConnectionError("socket closed")


@pytest.fixture
def relay(session_factory):
    return HerfRelay(session_factory=session_factory)


@pytest.fixture
def make_session(session_factory):
    async def _make(host, **fields):
        fields.setdefault("title", "Friday herf")
        async with session_factory() as db:
            session = HerfSession(host_id=host.id, **fields)
            db.add(session)
            await db.commit()
            await db.refresh(session)
            return session

    return _make


def test_registry_tracks_memberships():
    registry = SessionMembershipRegistry()
    a = RelayConnection(1, "a", "conn-a")
    b = RelayConnection(2, "b", "conn-b")

    registry.add(a, 10)
    registry.add(a, 11)
    registry.add(b, 10)

    assert registry.is_member("conn-a", 10)
    assert {c.connection_id for c in registry.members(10)} == {"conn-a", "conn-b"}
    assert sorted(registry.sessions_of("conn-a")) == [10, 11]

    assert registry.remove("conn-b", 10) is True
    assert registry.remove("conn-b", 10) is False
    assert sorted(registry.drop_connection("conn-a")) == [10, 11]
    assert registry.members(10) == []
    assert registry.sessions_of("conn-a") == []


@pytest.mark.asyncio
async def test_join_sends_history_and_announces(relay, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest", display_name="The Guest")
    session = await make_session(host)
    host_conn = RecordingConnection(host)
    guest_conn = RecordingConnection(guest)

    assert await relay.join(host_conn, session.id) is True
    assert host_conn.events(CHAT_HISTORY) == [{"messages": []}]

    assert await relay.join(guest_conn, session.id) is True
    joined = host_conn.events(USER_JOINED)
    assert len(joined) == 1
    assert joined[0]["user"]["username"] == "guest"
    assert joined[0]["user"]["display_name"] == "The Guest"
    assert isinstance(joined[0]["timestamp"], datetime)
    # Joiner is not told about itself
    assert guest_conn.events(USER_JOINED) == []


@pytest.mark.asyncio
async def test_join_unknown_session(relay, make_user):
    user = await make_user()
    conn = RecordingConnection(user)

    assert await relay.join(conn, 404) is False
    assert conn.frames == [(ERROR, {"message": "Session not found"})]


@pytest.mark.asyncio
async def test_private_session_denies_strangers(relay, make_user, make_club, make_session):
    host = await make_user("host")
    member = await make_user("member")
    stranger = await make_user("stranger")
    club = await make_club(host, members=[member])
    session = await make_session(host, is_private=True, club_id=club.id)

    stranger_conn = RecordingConnection(stranger)
    assert await relay.join(stranger_conn, session.id) is False
    assert stranger_conn.frames == [(ERROR, {"message": "Access denied"})]
    assert relay.registry.members(session.id) == []

    assert await relay.join(RecordingConnection(member), session.id) is True


@pytest.mark.asyncio
async def test_private_session_admits_participants(relay, session_factory, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    session = await make_session(host, is_private=True)
    async with session_factory() as db:
        db.add(HerfParticipant(session_id=session.id, user_id=guest.id))
        await db.commit()

    assert await relay.join(RecordingConnection(guest), session.id) is True


@pytest.mark.asyncio
async def test_chat_requires_join(relay, session_factory, make_user, make_session):
    host = await make_user("host")
    session = await make_session(host)
    conn = RecordingConnection(host)

    assert await relay.chat(conn, session.id, "hello") is None
    assert conn.frames == [(ERROR, {"message": "You must join the session first"})]
    async with session_factory() as db:
        assert (await db.execute(select(HerfChatMessage))).scalars().all() == []


@pytest.mark.asyncio
async def test_chat_persists_and_broadcasts_to_everyone(relay, session_factory, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    session = await make_session(host)
    host_conn = RecordingConnection(host)
    guest_conn = RecordingConnection(guest)
    await relay.join(host_conn, session.id)
    await relay.join(guest_conn, session.id)

    payload = await relay.chat(guest_conn, session.id, "  nice maduro  ")

    assert payload["message"] == "nice maduro"
    assert payload["user"]["username"] == "guest"
    assert host_conn.events(NEW_MESSAGE) == [{"message": payload}]
    assert guest_conn.events(NEW_MESSAGE) == [{"message": payload}]
    async with session_factory() as db:
        stored = (await db.execute(select(HerfChatMessage))).scalars().all()
    assert [(m.user_id, m.message) for m in stored] == [(guest.id, "nice maduro")]


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["", "   ", None, 42])
async def test_empty_or_invalid_messages_are_ignored(relay, make_user, make_session, message):
    host = await make_user("host")
    session = await make_session(host)
    conn = RecordingConnection(host)
    await relay.join(conn, session.id)
    conn.frames.clear()

    assert await relay.chat(conn, session.id, message) is None
    assert conn.frames == []


@pytest.mark.asyncio
async def test_history_is_capped_and_oldest_first(relay, session_factory, make_user, make_session):
    host = await make_user("host")
    session = await make_session(host)
    base = datetime(2026, 1, 1, 20, 0)
    async with session_factory() as db:
        db.add_all([
            HerfChatMessage(
                session_id=session.id,
                user_id=host.id,
                message=f"msg {i}",
                created_at=base + timedelta(seconds=i),
            )
            for i in range(105)
        ])
        await db.commit()
    conn = RecordingConnection(host)

    await relay.join(conn, session.id)

    messages = conn.events(CHAT_HISTORY)[0]["messages"]
    assert len(messages) == 100
    assert messages[0]["message"] == "msg 5"
    assert messages[-1]["message"] == "msg 104"


@pytest.mark.asyncio
async def test_typing_goes_to_other_members_only(relay, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    outsider = await make_user("outsider")
    session = await make_session(host)
    other = await make_session(host, title="Other room")
    host_conn = RecordingConnection(host)
    guest_conn = RecordingConnection(guest)
    outsider_conn = RecordingConnection(outsider)
    await relay.join(host_conn, session.id)
    await relay.join(guest_conn, session.id)
    await relay.join(outsider_conn, other.id)

    await relay.typing(guest_conn, session.id)
    await relay.stop_typing(guest_conn, session.id)
    # Not a member of the first session: nothing is relayed
    await relay.typing(outsider_conn, session.id)

    assert host_conn.events(USER_TYPING) == [{"userId": guest.id, "username": "guest"}]
    assert host_conn.events(USER_STOP_TYPING) == [{"userId": guest.id, "username": "guest"}]
    assert guest_conn.events(USER_TYPING) == []
    assert outsider_conn.events(USER_TYPING) == []


@pytest.mark.asyncio
async def test_leave_announces_once(relay, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    session = await make_session(host)
    host_conn = RecordingConnection(host)
    guest_conn = RecordingConnection(guest)
    await relay.join(host_conn, session.id)
    await relay.join(guest_conn, session.id)

    await relay.leave(guest_conn, session.id)
    await relay.leave(guest_conn, session.id)

    left = host_conn.events(USER_LEFT)
    assert len(left) == 1
    assert left[0]["user"]["username"] == "guest"
    assert not relay.registry.is_member(guest_conn.connection_id, session.id)


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room(relay, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    first = await make_session(host)
    second = await make_session(host, title="Late herf")
    host_conn = RecordingConnection(host)
    guest_conn = RecordingConnection(guest)
    for session in (first, second):
        await relay.join(host_conn, session.id)
        await relay.join(guest_conn, session.id)

    await relay.disconnect(guest_conn)

    assert len(host_conn.events(USER_LEFT)) == 2
    assert relay.registry.sessions_of(guest_conn.connection_id) == []
    assert [c.connection_id for c in relay.registry.members(first.id)] == [host_conn.connection_id]


@pytest.mark.asyncio
async def test_broadcast_survives_broken_member(relay, make_user, make_session):
    host = await make_user("host")
    guest = await make_user("guest")
    session = await make_session(host)
    host_conn = RecordingConnection(host)
    broken = BrokenConnection(guest)
    await relay.join(host_conn, session.id)
    relay.registry.add(broken, session.id)

    payload = await relay.chat(host_conn, session.id, "still here")

    assert host_conn.events(NEW_MESSAGE) == [{"message": payload}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "frame, expected",
    [
        ("not a dict", "Malformed frame"),
        ({"event": "join-session", "data": "oops"}, "Malformed frame"),
        ({"event": "join-session", "data": {}}, "A valid sessionId is required"),
        ({"event": "join-session", "data": {"sessionId": "abc"}}, "A valid sessionId is required"),
        ({"event": "dance", "data": {"sessionId": 1}}, "Unknown event: dance"),
    ],
)
async def test_handle_rejects_bad_frames(relay, make_user, frame, expected):
    user = await make_user()
    conn = RecordingConnection(user)

    await relay.handle(conn, frame)

    assert conn.frames == [(ERROR, {"message": expected})]


@pytest.mark.asyncio
async def test_handle_routes_frames(relay, make_user, make_session):
    host = await make_user("host")
    session = await make_session(host)
    conn = RecordingConnection(host)

    await relay.handle(conn, {"event": "join-session", "data": {"sessionId": str(session.id)}})
    await relay.handle(conn, {"event": "chat-message", "data": {"sessionId": session.id, "message": "hi"}})
    await relay.handle(conn, {"event": "leave-session", "data": {"sessionId": session.id}})

    assert [event for event, _ in conn.frames] == [CHAT_HISTORY, NEW_MESSAGE]
    assert relay.registry.sessions_of(conn.connection_id) == []


def test_authenticate_socket():
    token = create_access_token(7, "ash")

    assert authenticate_socket(token, None) == (7, "ash")
    assert authenticate_socket(None, f"Bearer {token}") == (7, "ash")
    assert authenticate_socket(None, f"Basic {token}") is None
    assert authenticate_socket("garbage", None) is None
    assert authenticate_socket(None, None) is None


def test_socket_without_token_is_closed():
    from fastapi.testclient import TestClient
    from ember_society.main import app

    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/herf"):
            pass
    assert exc_info.value.code == 1008
