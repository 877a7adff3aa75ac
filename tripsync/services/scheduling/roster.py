from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tripsync.models.circles.circle_model import Circle
from tripsync.models.trips.trip_member import TripMember, MemberStatus
from tripsync.models.trips.trip_model import Trip


class TripRoster(BaseModel):
    """Who is on a trip right now. Never cached; thresholds are recomputed from it."""
    leader_id: int
    circle_owner_id: Optional[int] = None
    active_user_ids: List[int] = []

    @property
    def traveler_count(self) -> int:
        return len(self.active_user_ids)

    def is_leader(self, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return user_id == self.leader_id or user_id == self.circle_owner_id

    def is_active(self, user_id: Optional[int]) -> bool:
        return user_id in self.active_user_ids


async def build_trip_roster(
    db: AsyncSession, trip_id: int, creator_id: int, circle_id: Optional[int] = None
) -> TripRoster:
    result = await db.execute(
        select(TripMember.user_id)
        .where(TripMember.trip_id == trip_id, TripMember.status == MemberStatus.ACTIVE)
        .order_by(TripMember.user_id)
    )
    active_user_ids = list(result.scalars().all())

    circle_owner_id = None
    if circle_id is not None:
        owner = await db.execute(select(Circle.owner_id).where(Circle.id == circle_id))
        circle_owner_id = owner.scalar_one_or_none()

    return TripRoster(
        leader_id=creator_id,
        circle_owner_id=circle_owner_id,
        active_user_ids=active_user_ids,
    )


async def get_trip_roster(db: AsyncSession, trip: Trip) -> TripRoster:
    return await build_trip_roster(db, trip.id, trip.creator_id, trip.circle_id)
