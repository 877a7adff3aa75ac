from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tripsync.schemas.trip.trip_schema import TripCreate, TripResponse
from tripsync.models.user.user import User
from tripsync.core.clock import get_clock
from tripsync.core.database import get_db
from tripsync.core.redis_lifecycle import get_cache
from tripsync.dependencies.auth import get_current_user
from tripsync.services.trips.trip_service import TripService

router = APIRouter(prefix="/trips", tags=['Trips'])

async def get_trip_service(
    cache=Depends(get_cache),
    clock=Depends(get_clock)
) -> TripService:
    return TripService(cache, clock)

@router.post("/create-trip", response_model=TripResponse)
async def create_trip_route(
    trip: TripCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    trip_service: TripService = Depends(get_trip_service)
):
    return await trip_service.create_trip(db, trip, current_user.id)

@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: int,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    trip_service: TripService = Depends(get_trip_service)
):
    return await trip_service.get_trip_by_id(session, current_user.id, trip_id)

@router.post("/{trip_id}/cancel", response_model=TripResponse)
async def cancel_trip_route(
    trip_id: int,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    trip_service: TripService = Depends(get_trip_service)
):
    return await trip_service.cancel_trip(session, trip_id, current_user.id)
