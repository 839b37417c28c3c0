import itertools
import os
import tempfile

# Settings are read once at import time; keep tests off the real database and scheduler
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RUN_EVENT_REMINDERS", "false")
os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "ember-society-test-uploads"))

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from ember_society.core.database import get_db, init_db
from ember_society.core.security import get_password_hash, create_access_token
from ember_society.models.club import Club, ClubMember, ClubRole
from ember_society.models.user import User
from ember_society.services.best_effort import BestEffort
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher

PASSWORD = "password123"
PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def push_sender():
    sender = MagicMock()
    sender.configured = True
    sender.send = AsyncMock()
    return sender


@pytest.fixture
def failures():
    """(label, exception) pairs reported by the best-effort runner."""
    return []


@pytest.fixture
def runner(failures):
    return BestEffort(observer=lambda label, exc: failures.append((label, exc)))


@pytest.fixture
def dispatcher(session_factory, push_sender, runner):
    return NotificationDispatcher(session_factory=session_factory, push_sender=push_sender, runner=runner)


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(username=None, **fields):
        username = username or f"user{next(counter)}"
        fields.setdefault("email", f"{username}@example.com")
        async with session_factory() as session:
            user = User(username=username, hashed_password=PASSWORD_HASH, **fields)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


@pytest.fixture
def make_club(session_factory):
    counter = itertools.count(1)

    async def _make(owner, members=(), **fields):
        n = next(counter)
        fields.setdefault("name", f"Club {n}")
        fields.setdefault("slug", f"club-{n}")
        async with session_factory() as session:
            club = Club(creator_id=owner.id, member_count=1 + len(members), **fields)
            session.add(club)
            await session.flush()
            session.add(ClubMember(club_id=club.id, user_id=owner.id, role=ClubRole.OWNER))
            for member in members:
                session.add(ClubMember(club_id=club.id, user_id=member.id, role=ClubRole.MEMBER))
            await session.commit()
            await session.refresh(club)
            return club

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


@pytest.fixture
def auth():
    return auth_headers


@pytest_asyncio.fixture
async def client(session_factory, dispatcher):
    from ember_society.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
