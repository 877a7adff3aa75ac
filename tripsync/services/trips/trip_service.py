from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from fastapi import HTTPException, status
from tripsync.core.clock import Clock, system_clock
from tripsync.core.config import settings
from tripsync.core.logger import logger
from tripsync.core.cache import RedisCache
from tripsync.models.trips.trip_model import Trip, TripMode, TripStatus
from tripsync.models.trips.trip_member import TripMember, TripRole
from tripsync.schemas.trip.trip_schema import TripCreate
from tripsync.services.scheduling.roster import build_trip_roster, get_trip_roster
from typing import Optional

class TripService:
    def __init__(self, cache: RedisCache, clock: Clock = system_clock):
        self.cache = cache
        self.clock = clock

    async def _invalidate_trip_caches(self, trip_id: int, user_id: Optional[int] = None):
        """Invalidate all caches related to a trip"""
        patterns = [f"trips:id:{trip_id}"]
        if user_id:
            patterns.append(f"trips:user:{user_id}:*")

        for pattern in patterns:
            await self.cache.delete_pattern(pattern)

    async def create_trip(self, db: AsyncSession, trip_data: TripCreate, user_id: int) -> Trip:
        new_trip = Trip(
            title=trip_data.title,
            circle_id=trip_data.circle_id,
            creator_id=user_id,
            mode=trip_data.mode,
            status=TripStatus.active,
            date_proposal_seq=0,
        )
        if trip_data.mode == TripMode.hosted:
            # Hosted trips skip scheduling: dates are fixed from the start
            new_trip.status = TripStatus.locked
            new_trip.locked_start_date = trip_data.start_date
            new_trip.locked_end_date = trip_data.end_date
            new_trip.locked_at = self.clock.now()
        else:
            new_trip.start_bound = trip_data.start_date
            new_trip.end_bound = trip_data.end_date

        db.add(new_trip)
        await db.flush()

        new_member = TripMember(
            user_id=user_id,
            trip_id=new_trip.id,
            role=TripRole.OWNER
        )
        db.add(new_member)

        await db.commit()
        await db.refresh(new_trip)

        await self._invalidate_trip_caches(new_trip.id, user_id)

        logger.info(f"{new_trip.mode.value.capitalize()} trip {new_trip.id} created by user {user_id}")
        return new_trip

    async def get_trip_by_id(self, db: AsyncSession, user_id: int, trip_id: int) -> dict:
        cache_key = self.cache.build_key("trips", "id", trip_id)
        cached_trip = await self.cache.get(cache_key)

        if cached_trip:
            logger.info(f"Trip ID {trip_id} retrieved from cache")
            trip_dict = cached_trip
        else:
            result = await db.execute(select(Trip).where(Trip.id == trip_id))
            trip = result.scalar_one_or_none()

            if not trip:
                logger.warning(f"Trip not found: ID {trip_id} for user {user_id}")
                raise HTTPException(status_code=404, detail="Trip not Found")

            trip_dict = trip.to_dict()
            await self.cache.set(cache_key, trip_dict, expire=settings.TRIP_CACHE_TTL_SECONDS)
            logger.info(f"Trip ID {trip_id} retrieved from database")

        # Membership is never cached; check it fresh
        roster = await build_trip_roster(db, trip_id, trip_dict["creator_id"], trip_dict["circle_id"])
        if not roster.is_leader(user_id) and not roster.is_active(user_id):
            logger.warning(f"Unauthorized access attempt: ID {trip_id} for user {user_id}")
            raise HTTPException(status_code=404, detail="Trip not Found")

        return trip_dict

    async def cancel_trip(self, db: AsyncSession, trip_id: int, user_id: int) -> Trip:
        result = await db.execute(select(Trip).where(Trip.id == trip_id))
        trip = result.scalar_one_or_none()

        if not trip:
            logger.warning(f"Cancel attempt on missing trip: ID {trip_id}, user {user_id}")
            raise HTTPException(status_code=404, detail="Trip not Found")

        roster = await get_trip_roster(db, trip)
        if not roster.is_leader(user_id):
            logger.warning(f"Unauthorized cancel attempt: ID {trip_id}, user {user_id}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the trip leader can cancel the trip")

        if trip.status == TripStatus.canceled:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Trip is already canceled")

        # Locked dates stay as they were; cancelling only ends the trip
        trip.status = TripStatus.canceled
        await db.commit()
        await db.refresh(trip)

        await self._invalidate_trip_caches(trip_id, user_id)

        logger.info(f"Trip ID {trip_id} canceled by user {user_id}")
        return trip
