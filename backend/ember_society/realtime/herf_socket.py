"""
Real-time chat relay for herf sessions.

Each authenticated socket may join any number of session rooms. Room
membership lives in ``SessionMembershipRegistry`` rather than inside the
transport, so access checks and disconnect cleanup are plain data operations.

Wire format, both directions: ``{"event": "<name>", "data": {...}}``.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import async_sessionmaker

from ember_society.core.database import SessionLocal
from ember_society.core.security import decode_access_token, InvalidTokenError
from ember_society.models.herf import HerfSession, HerfChatMessage
from ember_society.models.user import User
from ember_society.schemas.herf import HerfChatMessage as HerfChatMessageSchema
from ember_society.schemas.user import UserSummary
from ember_society.services.herf_service import can_access_session, recent_chat_messages
from ember_society.services.user_service import get_user_summaries

logger = logging.getLogger(__name__)

router = APIRouter()

# Client -> server
JOIN_SESSION = "join-session"
LEAVE_SESSION = "leave-session"
CHAT_MESSAGE = "chat-message"
TYPING = "typing"
STOP_TYPING = "stop-typing"

# Server -> client
ERROR = "error"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
CHAT_HISTORY = "chat-history"
NEW_MESSAGE = "new-message"
USER_TYPING = "user-typing"
USER_STOP_TYPING = "user-stop-typing"


class RelayConnection:
    """One authenticated client. Subclasses decide how frames reach the wire."""

    def __init__(self, user_id: int, username: str, connection_id: Optional[str] = None):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id = user_id
        self.username = username

    async def emit(self, event: str, data: Any) -> None:
        raise NotImplementedError


class WebSocketConnection(RelayConnection):
    def __init__(self, websocket: WebSocket, user_id: int, username: str):
        super().__init__(user_id, username)
        self.websocket = websocket

    async def emit(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": jsonable_encoder(data)})


class SessionMembershipRegistry:
    """Which connections are in which session rooms, keyed by ``(connection_id, session_id)``."""

    def __init__(self):
        self._memberships: Dict[Tuple[str, int], RelayConnection] = {}
        self._rooms: Dict[int, Dict[str, RelayConnection]] = {}

    def add(self, conn: RelayConnection, session_id: int) -> None:
        self._memberships[(conn.connection_id, session_id)] = conn
        self._rooms.setdefault(session_id, {})[conn.connection_id] = conn

    def remove(self, connection_id: str, session_id: int) -> bool:
        if self._memberships.pop((connection_id, session_id), None) is None:
            return False
        room = self._rooms.get(session_id, {})
        room.pop(connection_id, None)
        if not room:
            self._rooms.pop(session_id, None)
        return True

    def is_member(self, connection_id: str, session_id: int) -> bool:
        return (connection_id, session_id) in self._memberships

    def members(self, session_id: int) -> List[RelayConnection]:
        return list(self._rooms.get(session_id, {}).values())

    def sessions_of(self, connection_id: str) -> List[int]:
        return [sid for (cid, sid) in self._memberships if cid == connection_id]

    def drop_connection(self, connection_id: str) -> List[int]:
        """Forget every room of a connection; returns the session ids it was in."""
        session_ids = self.sessions_of(connection_id)
        for session_id in session_ids:
            self.remove(connection_id, session_id)
        return session_ids


class HerfRelay:
    def __init__(
        self,
        session_factory: async_sessionmaker = SessionLocal,
        registry: Optional[SessionMembershipRegistry] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry or SessionMembershipRegistry()

    async def handle(self, conn: RelayConnection, frame: Any) -> None:
        """Route one client frame to its handler."""
        if not isinstance(frame, dict) or not isinstance(frame.get("data", {}), dict):
            await conn.emit(ERROR, {"message": "Malformed frame"})
            return

        event = frame.get("event")
        data = frame.get("data") or {}
        session_id = _parse_session_id(data.get("sessionId"))
        if session_id is None:
            await conn.emit(ERROR, {"message": "A valid sessionId is required"})
            return

        if event == JOIN_SESSION:
            await self.join(conn, session_id)
        elif event == LEAVE_SESSION:
            await self.leave(conn, session_id)
        elif event == CHAT_MESSAGE:
            await self.chat(conn, session_id, data.get("message"))
        elif event == TYPING:
            await self.typing(conn, session_id)
        elif event == STOP_TYPING:
            await self.stop_typing(conn, session_id)
        else:
            await conn.emit(ERROR, {"message": f"Unknown event: {event}"})

    async def join(self, conn: RelayConnection, session_id: int) -> bool:
        try:
            async with self.session_factory() as db:
                session = await db.get(HerfSession, session_id)
                if session is None:
                    await conn.emit(ERROR, {"message": "Session not found"})
                    return False

                if not await can_access_session(db, session, conn.user_id):
                    await conn.emit(ERROR, {"message": "Access denied"})
                    return False

                user = await self._user_card(db, conn.user_id)
                history = await recent_chat_messages(db, session_id)
                history_payload = await self._serialize_messages(db, history)

            self.registry.add(conn, session_id)
            await self.broadcast(session_id, USER_JOINED, {
                "user": user,
                "timestamp": datetime.utcnow(),
            }, exclude=conn)
            await conn.emit(CHAT_HISTORY, {"messages": history_payload})

            logger.info(f"User {conn.username} joined session {session_id}")
            return True
        except Exception as e:
            logger.error(f"Join session error: {e}")
            await conn.emit(ERROR, {"message": "Failed to join session"})
            return False

    async def leave(self, conn: RelayConnection, session_id: int) -> None:
        if not self.registry.remove(conn.connection_id, session_id):
            return
        await self._announce_departure(conn, session_id)
        logger.info(f"User {conn.username} left session {session_id}")

    async def chat(self, conn: RelayConnection, session_id: int, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, str) or not message.strip():
            return None

        if not self.registry.is_member(conn.connection_id, session_id):
            await conn.emit(ERROR, {"message": "You must join the session first"})
            return None

        try:
            async with self.session_factory() as db:
                chat_message = HerfChatMessage(
                    session_id=session_id,
                    user_id=conn.user_id,
                    message=message.strip(),
                )
                db.add(chat_message)
                await db.commit()
                await db.refresh(chat_message)
                payload = (await self._serialize_messages(db, [chat_message]))[0]
        except Exception as e:
            logger.error(f"Chat message error: {e}")
            await conn.emit(ERROR, {"message": "Failed to send message"})
            return None

        # Sender included so every client renders the server's ordering
        await self.broadcast(session_id, NEW_MESSAGE, {"message": payload})
        return payload

    async def typing(self, conn: RelayConnection, session_id: int) -> None:
        await self._typing_signal(conn, session_id, USER_TYPING)

    async def stop_typing(self, conn: RelayConnection, session_id: int) -> None:
        await self._typing_signal(conn, session_id, USER_STOP_TYPING)

    async def _typing_signal(self, conn: RelayConnection, session_id: int, event: str) -> None:
        if not self.registry.is_member(conn.connection_id, session_id):
            return
        await self.broadcast(session_id, event, {
            "userId": conn.user_id,
            "username": conn.username,
        }, exclude=conn)

    async def disconnect(self, conn: RelayConnection) -> None:
        for session_id in self.registry.drop_connection(conn.connection_id):
            await self._announce_departure(conn, session_id)
        logger.info(f"User {conn.username} disconnected from herf relay")

    async def broadcast(self, session_id: int, event: str, data: Any, exclude: Optional[RelayConnection] = None) -> None:
        for member in self.registry.members(session_id):
            if exclude is not None and member.connection_id == exclude.connection_id:
                continue
            try:
                await member.emit(event, data)
            except Exception as e:
                logger.warning(f"Dropping {event} for connection {member.connection_id}: {e}")

    async def _announce_departure(self, conn: RelayConnection, session_id: int) -> None:
        try:
            async with self.session_factory() as db:
                user = await self._user_card(db, conn.user_id)
        except Exception as e:
            logger.error(f"Leave session error: {e}")
            user = {"id": conn.user_id, "username": conn.username}
        await self.broadcast(session_id, USER_LEFT, {
            "user": user,
            "timestamp": datetime.utcnow(),
        })

    async def _user_card(self, db, user_id: int) -> Optional[Dict[str, Any]]:
        user = await db.get(User, user_id)
        if user is None:
            return None
        return UserSummary.model_validate(user).model_dump()

    async def _serialize_messages(self, db, messages: List[HerfChatMessage]) -> List[Dict[str, Any]]:
        users = await get_user_summaries(db, (m.user_id for m in messages))
        return [
            HerfChatMessageSchema(
                id=m.id,
                session_id=m.session_id,
                user_id=m.user_id,
                message=m.message,
                created_at=m.created_at,
                user=users.get(m.user_id),
            ).model_dump()
            for m in messages
        ]


def _parse_session_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def authenticate_socket(token: Optional[str], authorization: Optional[str]) -> Optional[Tuple[int, str]]:
    """Resolve the bearer credential presented at handshake, as a query field or header."""
    if not token and authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            token = value.strip()
    if not token:
        return None
    try:
        return decode_access_token(token)
    except InvalidTokenError as e:
        logger.info(f"Rejected herf socket: {e}")
        return None


_relay: Optional[HerfRelay] = None


def get_relay() -> HerfRelay:
    global _relay
    if _relay is None:
        _relay = HerfRelay()
    return _relay


@router.websocket("/ws/herf")
async def herf_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    identity = authenticate_socket(token, websocket.headers.get("authorization"))
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    conn = WebSocketConnection(websocket, *identity)
    relay = get_relay()
    logger.info(f"User {conn.username} connected to herf relay")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await conn.emit(ERROR, {"message": "Malformed frame"})
                continue
            # One frame at a time keeps this connection's events in arrival order
            await relay.handle(conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(conn)
