from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
from uuid import uuid4
import enum


class NudgeType(str, enum.Enum):
    # Celebratory
    FIRST_AVAILABILITY_SUBMITTED = "first_availability_submitted"
    AVAILABILITY_HALF_SUBMITTED = "availability_half_submitted"
    STRONG_OVERLAP_DETECTED = "strong_overlap_detected"
    DATES_LOCKED = "dates_locked"

    # Leader actions
    LEADER_READY_TO_PROPOSE = "leader_ready_to_propose"
    LEADER_CAN_LOCK_DATES = "leader_can_lock_dates"

    # Traveler guidance
    TRAVELER_TOO_MANY_WINDOWS = "traveler_too_many_windows"

    # Confirmation
    LEADER_PROPOSING_LOW_COVERAGE = "leader_proposing_low_coverage"


CELEBRATORY_TYPES = (
    NudgeType.FIRST_AVAILABILITY_SUBMITTED,
    NudgeType.AVAILABILITY_HALF_SUBMITTED,
    NudgeType.STRONG_OVERLAP_DETECTED,
    NudgeType.DATES_LOCKED,
)


class NudgeChannel(str, enum.Enum):
    CHAT_CARD = "chat_card"
    BANNER = "banner"
    CTA_HIGHLIGHT = "cta_highlight"
    INLINE_HINT = "inline_hint"
    CONFIRM_DIALOG = "confirm_dialog"


class NudgeAudience(str, enum.Enum):
    LEADER = "leader"
    TRAVELER = "traveler"
    ALL = "all"


class NudgePriority(int, enum.Enum):
    """Lower number sorts first."""
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class NudgeStatus(str, enum.Enum):
    SHOWN = "shown"
    CLICKED = "clicked"
    DISMISSED = "dismissed"
    PUSHED = "pushed"


class DateRangeLabel(BaseModel):
    start: date
    end: date
    label: str


class CoverageInfo(BaseModel):
    count: int
    total: int
    percentage: int


class NudgePayload(BaseModel):
    title: Optional[str] = None
    message: str = ""
    cta_label: Optional[str] = None
    cta_action: Optional[str] = None
    date_range: Optional[DateRangeLabel] = None
    coverage: Optional[CoverageInfo] = None
    window_count: Optional[int] = None
    max_windows: Optional[int] = None
    traveler_name: Optional[str] = None
    traveler_count: Optional[int] = None


class Nudge(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: NudgeType
    channel: NudgeChannel
    audience: NudgeAudience
    priority: NudgePriority
    payload: NudgePayload
    dedupe_key: str
    cooldown_hours: int


class TripMetrics(BaseModel):
    """Derived per request; never persisted."""
    traveler_count: int = 0
    availability_submitted_count: int = 0
    availability_completion_pct: int = 0

    overlap_best_range: Optional[DateRangeLabel] = None
    overlap_best_coverage_count: int = 0
    overlap_best_coverage_pct: int = 0

    has_active_proposal: bool = False
    proposal_range: Optional[DateRangeLabel] = None
    approvals: int = 0
    required_approvals: int = 1
    approval_threshold_met: bool = False

    funnel_state: str = "NO_DATES"
    locked_dates: Optional[DateRangeLabel] = None

    viewer_window_count: int = 0


class ViewerContext(BaseModel):
    user_id: int
    is_leader: bool = False
    is_participant: bool = False
    has_submitted_availability: bool = False
    window_count: int = 0


class InlineHintContext(BaseModel):
    action: str  # "add_window" | "propose_dates"
    current_window_count: Optional[int] = None
    proposed_coverage: Optional[int] = None
    proposed_total: Optional[int] = None


class ComputeNudgesResult(BaseModel):
    nudges: List[Nudge] = []
    action_nudge: Optional[Nudge] = None
    celebratory_nudge: Optional[Nudge] = None


class NudgeEventRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    trip_id: int
    user_id: int
    nudge_id: str
    nudge_type: NudgeType
    dedupe_key: str
    status: NudgeStatus
    channel: NudgeChannel
    created_at: datetime


class NudgeInteraction(BaseModel):
    """Client report that a nudge was clicked or dismissed."""
    nudge_id: str
    nudge_type: NudgeType
    dedupe_key: str
    channel: NudgeChannel


class NudgesResponse(BaseModel):
    trip_id: int
    nudges: List[Nudge] = []
