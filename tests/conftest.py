"""Shared pytest fixtures for Orbit tests.

Service tests run against an in-memory SQLite database so the real unique
constraints, savepoints and conditional updates are exercised.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import orbit.models  # noqa: F401  registers every table on Base.metadata
from orbit.database import Base
from orbit.models.profile import Profile, UserType
from orbit.services.conversation_service import ConversationService
from orbit.services.match_service import MatchService
from orbit.services.notification_service import NotificationPolicy
from orbit.services.sneak_peek_service import SneakPeekService

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the services accept in place of ``utcnow``."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy
    # emit BEGIN itself.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
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
def make_profile(db, clock):
    async def _make(
        user_type: UserType = UserType.SINGLE,
        *,
        sponsor: Profile | None = None,
        name: str | None = None,
        photos: list[str] | None = None,
        last_sign_in_at: datetime | None = None,
    ) -> Profile:
        if photos is None and user_type == UserType.SINGLE:
            photos = [f"https://cdn.orbit.test/{uuid.uuid4().hex}.jpg"]
        profile = Profile(
            id=uuid.uuid4(),
            user_type=user_type.value,
            name=name,
            photos=photos,
            sponsored_by_id=sponsor.id if sponsor is not None else None,
            last_sign_in_at=last_sign_in_at,
            created_at=clock(),
        )
        db.add(profile)
        await db.flush()
        return profile

    return _make


@pytest_asyncio.fixture
async def cast(make_profile):
    """Two sponsors, each with one single: Sx sponsors P1, Sy sponsors P2."""
    sx = await make_profile(UserType.MATCHMAKR, name="Sam")
    sy = await make_profile(UserType.MATCHMAKR, name="Yara")
    p1 = await make_profile(sponsor=sx, name="Priya")
    p2 = await make_profile(sponsor=sy, name="Pavel")
    return {"sx": sx, "sy": sy, "p1": p1, "p2": p2}


@pytest.fixture
def notifications(clock):
    return NotificationPolicy(clock=clock)


@pytest.fixture
def match_service(clock):
    return MatchService(clock=clock)


@pytest.fixture
def conversations(match_service, notifications, clock):
    return ConversationService(
        match_service=match_service, notifications=notifications, clock=clock
    )


@pytest.fixture
def sneak_peeks(clock):
    return SneakPeekService(clock=clock)
