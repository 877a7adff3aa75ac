import fnmatch
import os
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tripsync.models  # noqa: F401
from tripsync.core.cache import RedisCache
from tripsync.core.clock import FixedClock
from tripsync.core.database import Base
from tripsync.models.circles.circle_model import Circle
from tripsync.models.trips.trip_member import MemberStatus, TripMember, TripRole
from tripsync.models.trips.trip_model import Trip, TripMode, TripStatus
from tripsync.models.user.user import User
from tripsync.services.nudges.nudge_store import NudgeStore

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for RedisCache."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan(self, cursor=0, match: str | None = None, count: int | None = None):
        keys = [k for k in self.store if match is None or fnmatch.fnmatch(k, match)]
        return 0, keys


class BrokenRedis(FakeRedis):
    async def get(self, key: str) -> str | None:
        raise ConnectionError("redis is down")

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        raise ConnectionError("redis is down")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return RedisCache(fake_redis)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def nudge_store(cache, clock):
    return NudgeStore(cache, clock)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def trip_factory(db):
    """Create a trip with a leader (user 1) and travelers 2..member_count.

    Returns the Trip; user ids are 1..member_count.
    """

    async def _create(
        member_count: int = 3,
        mode: TripMode = TripMode.collaborative,
        circle_owner_id: int | None = None,
        locked_dates=None,
        extra_users: int = 0,
    ) -> Trip:
        total_users = member_count + extra_users + (1 if circle_owner_id else 0)
        for user_id in range(1, total_users + 1):
            if await db.get(User, user_id) is None:
                db.add(User(id=user_id, email=f"user{user_id}@example.com", username=f"user{user_id}"))
        await db.flush()

        circle_id = None
        if circle_owner_id:
            circle = Circle(name="Friends", owner_id=circle_owner_id)
            db.add(circle)
            await db.flush()
            circle_id = circle.id

        trip = Trip(title="Lake weekend", creator_id=1, circle_id=circle_id, mode=mode, date_proposal_seq=0)
        if locked_dates:
            trip.status = TripStatus.locked
            trip.locked_start_date, trip.locked_end_date = locked_dates
        db.add(trip)
        await db.flush()

        for user_id in range(1, member_count + 1):
            db.add(
                TripMember(
                    trip_id=trip.id,
                    user_id=user_id,
                    role=TripRole.OWNER if user_id == 1 else TripRole.MEMBER,
                    status=MemberStatus.ACTIVE,
                )
            )
        await db.commit()
        await db.refresh(trip)
        return trip

    return _create


@pytest.fixture
def broken_nudge_store(clock):
    return NudgeStore(RedisCache(BrokenRedis()), clock)
