"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are created as-is;
the change feed is the in-process backend.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.config import Settings
from src.domain.entities import Booking
from src.domain.enums import ActorRole, Channel
from src.domain.errors import TransportError
from src.domain import transitions as tx
from src.infrastructure.change_feed import LocalChangeFeed
from src.infrastructure.database import Base
from src.infrastructure.models import UserModel
from src.infrastructure.repositories import SqlPersistence
from src.runtime import Runtime, build_runtime
from src.sync.store import BookingStore


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite://"
# Test runtimes share one SQLite connection; feed following stays off there.
TEST_SETTINGS = Settings(change_feed_backend="local", follow_change_feed=False)

PASSENGER_ID = "p-1"
DRIVER_ID = "d-1"


class TickingClock:
    """Deterministic clock: every call moves one second forward."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class RecordingTransport:
    """Collects sends; raises ``TransportError`` for channels in *failing*."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    async def send(self, recipient_id, channel, message) -> bool:
        if channel in self.failing:
            raise TransportError(f"{channel.value} down")
        self.sent.append((recipient_id, channel, message))
        return True

    def phases_for(self, recipient_id, channel=Channel.IN_APP):
        return [m.phase for r, c, m in self.sent if r == recipient_id and c is channel]


def make_draft(clock: TickingClock, **overrides) -> Booking:
    fields = dict(
        id="",
        passenger_id=PASSENGER_ID,
        pickup_location="Terminal 5, Arrivals",
        dropoff_location="22 Kensington Road",
        pickup_time=clock.now + timedelta(days=2),
        vehicle_type="sedan",
        flight_info="BA117",
        estimated_price=90.0,
    )
    fields.update(overrides)
    return Booking(**fields)


async def walk_to(store: BookingStore, booking_id: str, *names: str) -> None:
    """Apply *names* in order with the usual actor for each."""
    actors = {
        tx.OFFER_SENT: ActorRole.DRIVER,
        tx.OFFER_ACCEPTED: ActorRole.PASSENGER,
        tx.OFFER_DECLINED: ActorRole.PASSENGER,
        tx.PAYMENT_SENT: ActorRole.PASSENGER,
        tx.PAYMENT_CONFIRMED: ActorRole.SYSTEM,
        tx.RIDE_STAGE_ADVANCE: ActorRole.DRIVER,
        tx.CANCELLED: ActorRole.PASSENGER,
    }
    for name in names:
        extra = {"driver_id": DRIVER_ID, "price": 120.0} if name == tx.OFFER_SENT else None
        await store.apply_transition(booking_id, name, extra=extra, actor=actors[name])


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test, tables created from the models."""
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(UserModel(id=PASSENGER_ID, name="Pat Rider", email="pat@example.com", role=ActorRole.PASSENGER))
        session.add(UserModel(id=DRIVER_ID, name="Dee Driver", email="dee@example.com", role=ActorRole.DRIVER))
        await session.commit()
    return factory


@pytest.fixture
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def persistence(session_factory, feed) -> SqlPersistence:
    return SqlPersistence(session_factory, feed)


@pytest_asyncio.fixture
async def store(persistence, feed, clock) -> AsyncGenerator[BookingStore, None]:
    store = BookingStore(persistence, feed, clock=clock)
    yield store
    await store.teardown_all()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def runtime(session_factory, feed, transport, clock) -> AsyncGenerator[Runtime, None]:
    runtime = await build_runtime(
        session_factory, feed, transport, config=TEST_SETTINGS, clock=clock
    )
    yield runtime
    await runtime.close()
