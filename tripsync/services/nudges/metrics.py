from datetime import date
from typing import Iterable, Optional

from tripsync.schemas.nudges.nudge import DateRangeLabel, TripMetrics, ViewerContext
from tripsync.services.nudges.copy import format_date_range, should_include_year
from tripsync.services.scheduling.funnel_state import (
    SchedulingSnapshot,
    count_approvals,
    derive_funnel_state,
    required_approvals,
)
from tripsync.services.scheduling.roster import TripRoster
from tripsync.services.scheduling.window_overlap import find_best_overlap_range


def percent(count: int, total: int) -> int:
    """Whole percent, halves rounded up."""
    if total <= 0:
        return 0
    return int(count * 100 / total + 0.5)


def _label(start: date, end: date, today: date) -> DateRangeLabel:
    return DateRangeLabel(
        start=start,
        end=end,
        label=format_date_range(start, end, should_include_year(end, today)),
    )


def compute_trip_metrics(
    trip,
    windows: Iterable,
    roster: TripRoster,
    proposal=None,
    reactions: Optional[Iterable] = None,
    viewer_id: Optional[int] = None,
    today: Optional[date] = None,
) -> TripMetrics:
    """Everything the nudge engine needs to know about a trip, in one pass.

    windows should include archived ones: archiving closes a window for
    new preferences, it does not erase the availability it recorded.
    """
    windows = list(windows)
    today = today or date.today()
    active_ids = set(roster.active_user_ids)
    traveler_count = roster.traveler_count

    respondents = {w.user_id for w in windows if w.user_id in active_ids}
    best = find_best_overlap_range(windows)
    best_count = best.coverage_count if best else 0

    approvals = 0
    proposal_range = None
    if proposal is not None:
        approvals = count_approvals(reactions or [], active_ids)
        proposal_range = _label(proposal.start_date, proposal.end_date, today)
    required = required_approvals(traveler_count)

    snapshot = SchedulingSnapshot(
        mode=trip.mode,
        status=trip.status,
        locked_start_date=trip.locked_start_date,
        locked_end_date=trip.locked_end_date,
        active_window_count=sum(1 for w in windows if not getattr(w, "archived", False)),
        has_active_proposal=proposal is not None,
        approvals=approvals,
        traveler_count=traveler_count,
    )

    locked_dates = None
    if trip.locked_start_date and trip.locked_end_date:
        locked_dates = _label(trip.locked_start_date, trip.locked_end_date, today)

    return TripMetrics(
        traveler_count=traveler_count,
        availability_submitted_count=len(respondents),
        availability_completion_pct=percent(len(respondents), traveler_count),
        overlap_best_range=_label(best.start, best.end, today) if best else None,
        overlap_best_coverage_count=best_count,
        overlap_best_coverage_pct=percent(best_count, traveler_count),
        has_active_proposal=proposal is not None,
        proposal_range=proposal_range,
        approvals=approvals,
        required_approvals=required,
        approval_threshold_met=proposal is not None and approvals >= required,
        funnel_state=derive_funnel_state(snapshot).value,
        locked_dates=locked_dates,
        viewer_window_count=sum(
            1 for w in windows if w.user_id == viewer_id and not getattr(w, "archived", False)
        ),
    )


def build_viewer_context(viewer_id: int, roster: TripRoster, windows: Iterable) -> ViewerContext:
    windows = [w for w in windows if w.user_id == viewer_id]
    return ViewerContext(
        user_id=viewer_id,
        is_leader=roster.is_leader(viewer_id),
        is_participant=roster.is_active(viewer_id),
        has_submitted_availability=bool(windows),
        window_count=sum(1 for w in windows if not getattr(w, "archived", False)),
    )
