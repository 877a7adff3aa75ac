from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tripsync.core.clock import get_clock
from tripsync.core.database import get_db
from tripsync.core.redis_lifecycle import get_cache
from tripsync.dependencies.auth import get_current_user
from tripsync.models.user.user import User
from tripsync.schemas.scheduling.date_proposal import (
    DateProposalCreate,
    DateProposalOut,
    DateReactionOut,
    DateReactionSet,
    LockRequest,
)
from tripsync.schemas.scheduling.snapshot import LockResponse, SchedulingSnapshotOut
from tripsync.schemas.scheduling.window import (
    NormalizedWindow,
    NormalizeRequest,
    SuggestWindowResponse,
    WindowContext,
    WindowCreate,
    WindowPreferenceOut,
    WindowPreferenceSet,
)
from tripsync.core.exceptions import ErrorCode, SchedulingError
from tripsync.services.nudges.nudge_service import NudgeService
from tripsync.services.nudges.nudge_store import NudgeStore
from tripsync.services.scheduling.funnel_state import FunnelState
from tripsync.services.scheduling.scheduling_service import SchedulingService
from tripsync.services.scheduling.window_normalizer import normalize_window

router = APIRouter(prefix="/trips/{trip_id}/scheduling", tags=["Scheduling"])


async def get_scheduling_service(
    cache=Depends(get_cache),
    clock=Depends(get_clock),
) -> SchedulingService:
    return SchedulingService(clock, cache)


async def get_nudge_service(
    cache=Depends(get_cache),
    clock=Depends(get_clock),
) -> NudgeService:
    return NudgeService(NudgeStore(cache, clock), SchedulingService(clock))


@router.get("", response_model=SchedulingSnapshotOut)
async def get_scheduling_snapshot(
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    return await scheduling.get_snapshot(db, trip_id, current_user.id)


@router.post("/normalize", response_model=NormalizedWindow)
async def preview_window(
    trip_id: int,
    body: NormalizeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
):
    """Parse window text without saving it, so the client can show what it understood."""
    trip = await scheduling.get_trip_for_viewer(db, trip_id, current_user.id)
    result = normalize_window(
        body.text,
        WindowContext(start_bound=trip.start_bound, end_bound=trip.end_bound),
        scheduling.clock,
    )
    if not result.ok:
        raise SchedulingError(ErrorCode.INVALID_WINDOW, result.error)
    return result


@router.post("/windows", response_model=SuggestWindowResponse)
async def suggest_window(
    trip_id: int,
    body: WindowCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    nudges: NudgeService = Depends(get_nudge_service),
):
    response = await scheduling.suggest_window(db, trip_id, current_user.id, body.text)
    await nudges.process_trip_update(db, trip_id, current_user.id, "suggest_window")
    return response


@router.put("/windows/{window_id}/preference", response_model=WindowPreferenceOut)
async def set_window_preference(
    trip_id: int,
    window_id: int,
    body: WindowPreferenceSet,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    nudges: NudgeService = Depends(get_nudge_service),
):
    pref = await scheduling.set_window_preference(
        db, trip_id, window_id, current_user.id, body.preference, body.note
    )
    response = WindowPreferenceOut.model_validate(pref)
    await nudges.process_trip_update(db, trip_id, current_user.id, "set_window_preference")
    return response


@router.post("/proposal", response_model=DateProposalOut)
async def propose_dates(
    trip_id: int,
    body: DateProposalCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    nudges: NudgeService = Depends(get_nudge_service),
):
    proposal = await scheduling.propose_dates(
        db, trip_id, current_user.id, body.start_date, body.end_date, body.note, body.force
    )
    response = DateProposalOut.model_validate(proposal)
    await nudges.process_trip_update(db, trip_id, current_user.id, "propose_dates")
    return response


@router.put("/proposal/reaction", response_model=DateReactionOut)
async def react_to_dates(
    trip_id: int,
    body: DateReactionSet,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    nudges: NudgeService = Depends(get_nudge_service),
):
    reaction = await scheduling.react_to_dates(db, trip_id, current_user.id, body.reaction, body.note)
    response = DateReactionOut.model_validate(reaction)
    await nudges.process_trip_update(db, trip_id, current_user.id, "react_to_dates")
    return response


@router.post("/lock", response_model=LockResponse)
async def lock_dates(
    trip_id: int,
    body: LockRequest = LockRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    nudges: NudgeService = Depends(get_nudge_service),
):
    trip = await scheduling.lock_dates(db, trip_id, current_user.id, body.override)
    response = LockResponse(
        trip_id=trip.id,
        state=FunnelState.DATES_LOCKED,
        locked_start_date=trip.locked_start_date,
        locked_end_date=trip.locked_end_date,
    )
    await nudges.process_trip_update(db, trip_id, current_user.id, "lock_dates")
    return response
