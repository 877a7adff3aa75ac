from pydantic import BaseModel
from typing import List, Optional
from datetime import date
from tripsync.schemas.scheduling.window import WindowWithPreferences
from tripsync.schemas.scheduling.date_proposal import DateProposalWithReactions
from tripsync.services.scheduling.funnel_state import FunnelState
from tripsync.services.scheduling.window_overlap import OverlapRange


class SchedulingSnapshotOut(BaseModel):
    trip_id: int
    state: FunnelState
    is_leader: bool
    traveler_count: int
    respondent_count: int
    windows: List[WindowWithPreferences] = []
    proposal: Optional[DateProposalWithReactions] = None
    best_overlap: Optional[OverlapRange] = None
    user_window_count: int = 0
    max_windows: int
    locked_start_date: Optional[date] = None
    locked_end_date: Optional[date] = None


class LockResponse(BaseModel):
    trip_id: int
    state: FunnelState
    locked_start_date: date
    locked_end_date: date
