from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tripsync.core.database import get_db
from tripsync.dependencies.auth import get_current_user
from tripsync.models.user.user import User
from tripsync.routes.trip.scheduling import get_nudge_service
from tripsync.schemas.nudges.nudge import NudgeInteraction, NudgesResponse
from tripsync.services.nudges.nudge_service import NudgeService

router = APIRouter(prefix="/trips/{trip_id}/nudges", tags=["Nudges"])


@router.get("", response_model=NudgesResponse)
async def get_nudges(
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    nudges: NudgeService = Depends(get_nudge_service),
):
    visible = await nudges.get_nudges_for_viewer(db, trip_id, current_user.id)
    return NudgesResponse(trip_id=trip_id, nudges=visible)


@router.post("/click")
async def click_nudge(
    trip_id: int,
    body: NudgeInteraction,
    current_user: User = Depends(get_current_user),
    nudges: NudgeService = Depends(get_nudge_service),
):
    await nudges.record_click(trip_id, current_user.id, body)
    return {"msg": "Nudge click recorded"}


@router.post("/dismiss")
async def dismiss_nudge(
    trip_id: int,
    body: NudgeInteraction,
    current_user: User = Depends(get_current_user),
    nudges: NudgeService = Depends(get_nudge_service),
):
    await nudges.record_dismiss(trip_id, current_user.id, body)
    return {"msg": "Nudge dismissed"}
