"""Decide which nudges a viewer should see. Pure: no database, cache or clock.

compute_nudges returns at most one action nudge and one celebratory nudge.
Suppression (cooldowns) is applied afterwards by the store.
"""
from typing import Optional

from tripsync.core.config import settings
from tripsync.schemas.nudges.nudge import (
    CELEBRATORY_TYPES,
    ComputeNudgesResult,
    CoverageInfo,
    InlineHintContext,
    Nudge,
    NudgeAudience,
    NudgeChannel,
    NudgePayload,
    NudgePriority,
    NudgeType,
    TripMetrics,
    ViewerContext,
)
from tripsync.models.trips.trip_model import TripMode
from tripsync.services.nudges.copy import get_nudge_copy
from tripsync.services.nudges.metrics import percent
from tripsync.services.scheduling.funnel_state import FunnelState

LOCKED_STATES = (FunnelState.DATES_LOCKED.value, FunnelState.HOSTED_LOCKED.value)


def dedupe_key_for(nudge_type: NudgeType, trip_id) -> str:
    return f"{nudge_type.value}:{trip_id}"


def build_nudge(
    nudge_type: NudgeType,
    channel: NudgeChannel,
    audience: NudgeAudience,
    priority: NudgePriority,
    payload: NudgePayload,
    trip_id,
    cooldown_hours: int,
) -> Nudge:
    copy = get_nudge_copy(nudge_type, payload)
    payload.title = copy.title
    payload.message = copy.message
    payload.cta_label = copy.cta_label
    return Nudge(
        type=nudge_type,
        channel=channel,
        audience=audience,
        priority=priority,
        payload=payload,
        dedupe_key=dedupe_key_for(nudge_type, trip_id),
        cooldown_hours=cooldown_hours,
    )


def _is_locked(metrics: TripMetrics) -> bool:
    return metrics.funnel_state in LOCKED_STATES


def _overlap_coverage(metrics: TripMetrics) -> CoverageInfo:
    return CoverageInfo(
        count=metrics.overlap_best_coverage_count,
        total=metrics.traveler_count,
        percentage=metrics.overlap_best_coverage_pct,
    )


def evaluate_first_availability(trip, metrics: TripMetrics, traveler_name: Optional[str] = None) -> Optional[Nudge]:
    if metrics.availability_submitted_count != 1:
        return None
    if metrics.funnel_state != FunnelState.WINDOWS_OPEN.value:
        return None
    return build_nudge(
        NudgeType.FIRST_AVAILABILITY_SUBMITTED,
        NudgeChannel.CHAT_CARD,
        NudgeAudience.ALL,
        NudgePriority.LOW,
        NudgePayload(traveler_name=traveler_name),
        trip.id,
        settings.COOLDOWN_CELEBRATORY_HOURS,
    )


def evaluate_availability_half(trip, metrics: TripMetrics) -> Optional[Nudge]:
    if metrics.availability_completion_pct < settings.AVAILABILITY_HALF_THRESHOLD:
        return None
    if _is_locked(metrics):
        return None
    payload = NudgePayload(
        traveler_count=metrics.availability_submitted_count,
        coverage=CoverageInfo(
            count=metrics.availability_submitted_count,
            total=metrics.traveler_count,
            percentage=metrics.availability_completion_pct,
        ),
    )
    return build_nudge(
        NudgeType.AVAILABILITY_HALF_SUBMITTED,
        NudgeChannel.CHAT_CARD,
        NudgeAudience.ALL,
        NudgePriority.LOW,
        payload,
        trip.id,
        settings.COOLDOWN_CELEBRATORY_HOURS,
    )


def evaluate_strong_overlap(trip, metrics: TripMetrics) -> Optional[Nudge]:
    if metrics.overlap_best_range is None:
        return None
    if metrics.overlap_best_coverage_pct < settings.STRONG_OVERLAP_THRESHOLD:
        return None
    if _is_locked(metrics):
        return None
    payload = NudgePayload(date_range=metrics.overlap_best_range, coverage=_overlap_coverage(metrics))
    return build_nudge(
        NudgeType.STRONG_OVERLAP_DETECTED,
        NudgeChannel.CHAT_CARD,
        NudgeAudience.ALL,
        NudgePriority.LOW,
        payload,
        trip.id,
        settings.COOLDOWN_CELEBRATORY_HOURS,
    )


def evaluate_dates_locked(trip, metrics: TripMetrics) -> Optional[Nudge]:
    if metrics.funnel_state != FunnelState.DATES_LOCKED.value or metrics.locked_dates is None:
        return None
    return build_nudge(
        NudgeType.DATES_LOCKED,
        NudgeChannel.CHAT_CARD,
        NudgeAudience.ALL,
        NudgePriority.LOW,
        NudgePayload(date_range=metrics.locked_dates),
        trip.id,
        settings.COOLDOWN_CELEBRATORY_HOURS,
    )


def evaluate_leader_ready_to_propose(trip, metrics: TripMetrics, viewer: ViewerContext) -> Optional[Nudge]:
    if not viewer.is_leader:
        return None
    if metrics.overlap_best_range is None or metrics.has_active_proposal or _is_locked(metrics):
        return None
    if metrics.overlap_best_coverage_pct < settings.LOW_COVERAGE_THRESHOLD:
        return None
    payload = NudgePayload(
        date_range=metrics.overlap_best_range,
        coverage=_overlap_coverage(metrics),
        cta_action="propose_dates",
    )
    return build_nudge(
        NudgeType.LEADER_READY_TO_PROPOSE,
        NudgeChannel.CTA_HIGHLIGHT,
        NudgeAudience.LEADER,
        NudgePriority.MEDIUM,
        payload,
        trip.id,
        settings.COOLDOWN_LEADER_ACTION_HOURS,
    )


def evaluate_leader_can_lock(trip, metrics: TripMetrics, viewer: ViewerContext) -> Optional[Nudge]:
    if not viewer.is_leader:
        return None
    if not metrics.has_active_proposal or not metrics.approval_threshold_met or _is_locked(metrics):
        return None
    payload = NudgePayload(
        date_range=metrics.proposal_range,
        coverage=CoverageInfo(
            count=metrics.approvals,
            total=metrics.traveler_count,
            percentage=percent(metrics.approvals, metrics.traveler_count),
        ),
        cta_action="lock_dates",
    )
    return build_nudge(
        NudgeType.LEADER_CAN_LOCK_DATES,
        NudgeChannel.CTA_HIGHLIGHT,
        NudgeAudience.LEADER,
        NudgePriority.HIGH,
        payload,
        trip.id,
        settings.COOLDOWN_LEADER_ACTION_HOURS,
    )


def evaluate_too_many_windows(context: InlineHintContext, trip_id) -> Optional[Nudge]:
    """Inline hint shown when a traveler tries to add a window past the quota."""
    if context.action != "add_window":
        return None
    max_windows = settings.MAX_WINDOWS_PER_USER
    if (context.current_window_count or 0) < max_windows:
        return None
    payload = NudgePayload(window_count=context.current_window_count, max_windows=max_windows)
    return build_nudge(
        NudgeType.TRAVELER_TOO_MANY_WINDOWS,
        NudgeChannel.INLINE_HINT,
        NudgeAudience.TRAVELER,
        NudgePriority.MEDIUM,
        payload,
        trip_id,
        settings.COOLDOWN_TRAVELER_HINT_HOURS,
    )


def evaluate_low_coverage_proposal(context: InlineHintContext, trip_id, traveler_count: int) -> Optional[Nudge]:
    """Confirm dialog shown when the leader proposes dates few travelers can make."""
    if context.action != "propose_dates":
        return None
    coverage = context.proposed_coverage or 0
    total = context.proposed_total or traveler_count
    coverage_pct = percent(coverage, total)
    if coverage_pct >= settings.LOW_COVERAGE_THRESHOLD:
        return None
    payload = NudgePayload(coverage=CoverageInfo(count=coverage, total=total, percentage=coverage_pct))
    return build_nudge(
        NudgeType.LEADER_PROPOSING_LOW_COVERAGE,
        NudgeChannel.CONFIRM_DIALOG,
        NudgeAudience.LEADER,
        NudgePriority.CRITICAL,
        payload,
        trip_id,
        settings.COOLDOWN_CONFIRMATION_HOURS,
    )


def compute_nudges(trip, metrics: TripMetrics, viewer: ViewerContext) -> ComputeNudgesResult:
    # Hosted trips never enter the scheduling funnel
    if trip.mode == TripMode.hosted:
        return ComputeNudgesResult()

    candidates = [
        evaluate_first_availability(trip, metrics),
        evaluate_availability_half(trip, metrics),
        evaluate_strong_overlap(trip, metrics),
        evaluate_dates_locked(trip, metrics),
        evaluate_leader_ready_to_propose(trip, metrics, viewer),
        evaluate_leader_can_lock(trip, metrics, viewer),
    ]
    candidates = sorted((n for n in candidates if n is not None), key=lambda n: n.priority)

    action_nudge = next((n for n in candidates if n.type not in CELEBRATORY_TYPES), None)
    celebratory_nudge = next((n for n in candidates if n.type in CELEBRATORY_TYPES), None)

    nudges = [n for n in (action_nudge, celebratory_nudge) if n is not None]
    return ComputeNudgesResult(
        nudges=nudges,
        action_nudge=action_nudge,
        celebratory_nudge=celebratory_nudge,
    )
