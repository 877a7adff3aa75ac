"""Nudge events on Redis: cooldown lookups and "last shown" recency.

Events are a cache, not a ledger. Each (trip, user, dedupe key, status)
has exactly one key, so recording the same event twice overwrites it
with a fresh timestamp instead of adding a second record. Keys expire
after NUDGE_EVENT_TTL_SECONDS.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from tripsync.core.cache import RedisCache
from tripsync.core.clock import Clock, system_clock
from tripsync.core.config import settings
from tripsync.core.logger import logger
from tripsync.schemas.nudges.nudge import Nudge, NudgeEventRecord, NudgeStatus

SUPPRESSING_STATUSES = (NudgeStatus.SHOWN, NudgeStatus.DISMISSED)


class NudgeStore:
    def __init__(self, cache: RedisCache, clock: Clock = system_clock):
        self.cache = cache
        self.clock = clock

    @staticmethod
    def event_key(trip_id: int, user_id: int, dedupe_key: str, status: NudgeStatus) -> str:
        return RedisCache.build_key("nudges", "event", trip_id, user_id, dedupe_key, NudgeStatus(status).value)

    @staticmethod
    def last_shown_key(trip_id: int, user_id: int) -> str:
        return RedisCache.build_key("nudges", "last_shown", trip_id, user_id)

    async def record_nudge_event(
        self,
        trip_id: int,
        user_id: int,
        nudge: Nudge,
        status: NudgeStatus,
        now: Optional[datetime] = None,
    ) -> NudgeEventRecord:
        record = NudgeEventRecord(
            trip_id=trip_id,
            user_id=user_id,
            nudge_id=nudge.id,
            nudge_type=nudge.type,
            dedupe_key=nudge.dedupe_key,
            status=status,
            channel=nudge.channel,
            created_at=now or self.clock.now(),
        )
        data = record.model_dump(mode="json")
        ttl = settings.NUDGE_EVENT_TTL_SECONDS
        await self.cache.set(self.event_key(trip_id, user_id, nudge.dedupe_key, status), data, expire=ttl)
        if record.status == NudgeStatus.SHOWN:
            await self.cache.set(self.last_shown_key(trip_id, user_id), data, expire=ttl)
        logger.info(f"Nudge {nudge.type.value} {record.status.value} for user {user_id} on trip {trip_id}")
        return record

    async def record_nudges_shown(
        self, trip_id: int, user_id: int, nudges: Iterable[Nudge], now: Optional[datetime] = None
    ) -> None:
        for nudge in nudges:
            await self.record_nudge_event(trip_id, user_id, nudge, NudgeStatus.SHOWN, now)

    async def get_nudge_event(
        self, trip_id: int, user_id: int, dedupe_key: str, status: NudgeStatus
    ) -> Optional[NudgeEventRecord]:
        data = await self.cache.get(self.event_key(trip_id, user_id, dedupe_key, status))
        if not data:
            return None
        return NudgeEventRecord.model_validate(data)

    async def get_most_recent_shown(self, trip_id: int, user_id: int) -> Optional[NudgeEventRecord]:
        data = await self.cache.get(self.last_shown_key(trip_id, user_id))
        if not data:
            return None
        return NudgeEventRecord.model_validate(data)

    async def was_nudge_suppressed(
        self,
        trip_id: int,
        user_id: int,
        dedupe_key: str,
        cooldown_hours: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if this key was shown or dismissed for the user within its cooldown."""
        cutoff = (now or self.clock.now()) - timedelta(hours=cooldown_hours)
        for status in SUPPRESSING_STATUSES:
            event = await self.get_nudge_event(trip_id, user_id, dedupe_key, status)
            if event is not None and event.created_at >= cutoff:
                return True
        return False


async def filter_suppressed_nudges(
    store: NudgeStore,
    trip_id: int,
    user_id: int,
    nudges: Iterable[Nudge],
    now: Optional[datetime] = None,
) -> List[Nudge]:
    # One lookup per candidate: each nudge type has its own cooldown
    surviving = []
    for nudge in nudges:
        suppressed = await store.was_nudge_suppressed(
            trip_id, user_id, nudge.dedupe_key, nudge.cooldown_hours, now
        )
        if not suppressed:
            surviving.append(nudge)
    return surviving
