"""Scheduling funnel: stage derivation and action legality.

The stage is never stored. It is recomputed from the trip row plus its
window, proposal and reaction records on every call, so there is no
status column that can drift from what actually happened.
"""
import enum
import math
from datetime import date
from typing import Iterable, List, Optional

from fastapi import status
from pydantic import BaseModel

from tripsync.core.exceptions import ErrorCode, SchedulingError
from tripsync.models.scheduling.date_proposal import DateReactionType
from tripsync.models.scheduling.window_models import WindowPreferenceType
from tripsync.models.trips.trip_model import TripMode, TripStatus
from tripsync.schemas.scheduling.window import PreferenceCounts
from tripsync.services.scheduling.roster import TripRoster


class FunnelState(str, enum.Enum):
    NO_DATES = "NO_DATES"
    WINDOWS_OPEN = "WINDOWS_OPEN"
    DATE_PROPOSED = "DATE_PROPOSED"
    READY_TO_LOCK = "READY_TO_LOCK"
    DATES_LOCKED = "DATES_LOCKED"
    HOSTED_LOCKED = "HOSTED_LOCKED"


LOCKED_STATES = (FunnelState.DATES_LOCKED, FunnelState.HOSTED_LOCKED)
VOTING_STATES = (FunnelState.DATE_PROPOSED, FunnelState.READY_TO_LOCK)


class SchedulingAction(str, enum.Enum):
    SUGGEST_WINDOW = "suggest_window"
    SET_WINDOW_PREFERENCE = "set_window_preference"
    PROPOSE_DATES = "propose_dates"
    REACT_TO_DATES = "react_to_dates"
    LOCK_DATES = "lock_dates"


ACTION_ALIASES = {
    "open_voting": SchedulingAction.PROPOSE_DATES,
    "lock": SchedulingAction.LOCK_DATES,
}

LEADER_ONLY_ACTIONS = (SchedulingAction.PROPOSE_DATES, SchedulingAction.LOCK_DATES)

# Stage-block reasons; clients show these verbatim
FROZEN_MESSAGE = "Availability is frozen while voting is open."
CLOSED_MESSAGE = "Dates are locked; scheduling is closed."
ALREADY_LOCKED_MESSAGE = "Trip is already locked"
HOSTED_MESSAGE = "Dates are fixed for this hosted trip."
NO_WINDOWS_MESSAGE = "There are no date windows to respond to yet."
NO_AVAILABILITY_MESSAGE = "Dates can only be proposed once availability has been shared."
READY_TO_LOCK_MESSAGE = "These dates already have enough approvals; lock them instead."
NO_PROPOSAL_MESSAGE = "There is no date proposal to react to."
NOT_ENOUGH_APPROVALS_MESSAGE = "Not enough travelers have approved these dates yet."
NOTHING_TO_LOCK_MESSAGE = "No dates are proposed to lock."


class SchedulingSnapshot(BaseModel):
    """The handful of facts the stage is derived from."""
    mode: TripMode = TripMode.collaborative
    status: TripStatus = TripStatus.active
    locked_start_date: Optional[date] = None
    locked_end_date: Optional[date] = None
    active_window_count: int = 0
    has_active_proposal: bool = False
    approvals: int = 0
    traveler_count: int = 0


class StageCheck(BaseModel):
    ok: bool
    status: Optional[int] = None
    code: Optional[str] = None
    message: Optional[str] = None

    def raise_for_error(self) -> None:
        if not self.ok:
            raise SchedulingError(self.code, self.message, status_code=self.status)


def required_approvals(traveler_count: int) -> int:
    """WORKS reactions needed before the leader can lock: a simple majority."""
    if traveler_count <= 0:
        return 1
    return math.ceil(traveler_count / 2)


def _value(member):
    return getattr(member, "value", member)


def count_approvals(reactions: Iterable, active_user_ids: Optional[Iterable[int]] = None) -> int:
    """Count WORKS reactions, optionally only from travelers still on the trip."""
    allowed = set(active_user_ids) if active_user_ids is not None else None
    count = 0
    for reaction in reactions or []:
        if _value(reaction.reaction) != DateReactionType.WORKS.value:
            continue
        if allowed is not None and reaction.user_id not in allowed:
            continue
        count += 1
    return count


def aggregate_window_preferences(window_id: int, preferences: Iterable) -> PreferenceCounts:
    counts = PreferenceCounts()
    for pref in preferences or []:
        if pref.window_id != window_id:
            continue
        value = _value(pref.preference)
        if value == WindowPreferenceType.WORKS.value:
            counts.works += 1
        elif value == WindowPreferenceType.MAYBE.value:
            counts.maybe += 1
        elif value == WindowPreferenceType.NO.value:
            counts.no += 1
    return counts


def score_preferences(counts: PreferenceCounts) -> int:
    # +3 works, +1 maybe, -2 no
    return counts.works * 3 + counts.maybe - counts.no * 2


def score_window_proposals(windows: Iterable, preferences: Iterable) -> List[tuple]:
    """(window, counts, score) for active windows, best first."""
    preferences = list(preferences or [])
    scored = []
    for window in windows or []:
        if getattr(window, "archived", False):
            continue
        counts = aggregate_window_preferences(window.id, preferences)
        scored.append((window, counts, score_preferences(counts)))
    scored.sort(key=lambda item: item[2], reverse=True)
    return scored


def derive_funnel_state(snapshot: SchedulingSnapshot) -> FunnelState:
    if snapshot.mode == TripMode.hosted:
        return FunnelState.HOSTED_LOCKED

    if snapshot.locked_start_date and snapshot.locked_end_date:
        return FunnelState.DATES_LOCKED

    if snapshot.has_active_proposal:
        if snapshot.approvals >= required_approvals(snapshot.traveler_count):
            return FunnelState.READY_TO_LOCK
        return FunnelState.DATE_PROPOSED

    if snapshot.active_window_count > 0:
        return FunnelState.WINDOWS_OPEN

    return FunnelState.NO_DATES


def resolve_action(action: str) -> Optional[SchedulingAction]:
    if isinstance(action, SchedulingAction):
        return action
    if action in ACTION_ALIASES:
        return ACTION_ALIASES[action]
    try:
        return SchedulingAction(action)
    except ValueError:
        return None


def _blocked(message: str) -> StageCheck:
    return StageCheck(
        ok=False,
        status=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.STAGE_BLOCKED,
        message=message,
    )


def _check_stage(action: SchedulingAction, state: FunnelState, override: bool) -> StageCheck:
    if state == FunnelState.HOSTED_LOCKED:
        if action == SchedulingAction.LOCK_DATES:
            return _blocked(ALREADY_LOCKED_MESSAGE)
        return _blocked(HOSTED_MESSAGE)

    if state == FunnelState.DATES_LOCKED:
        if action == SchedulingAction.LOCK_DATES:
            return _blocked(ALREADY_LOCKED_MESSAGE)
        return _blocked(CLOSED_MESSAGE)

    if action == SchedulingAction.SUGGEST_WINDOW:
        if state in VOTING_STATES:
            return _blocked(FROZEN_MESSAGE)

    elif action == SchedulingAction.SET_WINDOW_PREFERENCE:
        if state == FunnelState.NO_DATES:
            return _blocked(NO_WINDOWS_MESSAGE)
        if state in VOTING_STATES:
            return _blocked(FROZEN_MESSAGE)

    elif action == SchedulingAction.PROPOSE_DATES:
        if state == FunnelState.NO_DATES:
            return _blocked(NO_AVAILABILITY_MESSAGE)
        if state == FunnelState.READY_TO_LOCK:
            return _blocked(READY_TO_LOCK_MESSAGE)

    elif action == SchedulingAction.REACT_TO_DATES:
        if state not in VOTING_STATES:
            return _blocked(NO_PROPOSAL_MESSAGE)

    elif action == SchedulingAction.LOCK_DATES:
        if state == FunnelState.DATE_PROPOSED and not override:
            return _blocked(NOT_ENOUGH_APPROVALS_MESSAGE)
        if state not in VOTING_STATES:
            return _blocked(NOTHING_TO_LOCK_MESSAGE)

    return StageCheck(ok=True)


def validate_stage_action(
    trip,
    action: str,
    actor_id: Optional[int],
    roster: Optional[TripRoster],
    state: Optional[FunnelState],
    override: bool = False,
) -> StageCheck:
    """Decide whether actor may perform action on trip in its current stage.

    Checks run in a fixed order so the most fundamental problem wins:
    missing trip, cancelled trip, unknown action, leader gate (in every
    stage), participation, then the stage rules.
    """
    if trip is None:
        return StageCheck(
            ok=False,
            status=status.HTTP_404_NOT_FOUND,
            code=ErrorCode.TRIP_NOT_FOUND,
            message="Trip not found",
        )

    if trip.status == TripStatus.canceled:
        return StageCheck(
            ok=False,
            status=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.TRIP_CANCELED,
            message="This trip has been canceled and cannot be modified",
        )

    resolved = resolve_action(action)
    if resolved is None:
        return StageCheck(
            ok=False,
            status=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.UNKNOWN_ACTION,
            message=f"Unknown action: {action}",
        )

    is_leader = roster.is_leader(actor_id) if roster else actor_id == trip.creator_id
    if resolved in LEADER_ONLY_ACTIONS and not is_leader:
        verb = "propose dates" if resolved == SchedulingAction.PROPOSE_DATES else "lock the trip"
        return StageCheck(
            ok=False,
            status=status.HTTP_403_FORBIDDEN,
            code=ErrorCode.LEADER_ONLY,
            message=f"Only the trip creator or circle owner can {verb}",
        )

    if not is_leader and (roster is None or not roster.is_active(actor_id)):
        return StageCheck(
            ok=False,
            status=status.HTTP_403_FORBIDDEN,
            code=ErrorCode.NOT_A_PARTICIPANT,
            message="You are not an active traveler on this trip",
        )

    if state is None:
        state = FunnelState.NO_DATES
    return _check_stage(resolved, state, override)
