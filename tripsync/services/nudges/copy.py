"""User-facing text for nudges.

Tone: calm and friendly. Celebrate progress, never guilt anyone into acting.
"""
from datetime import date
from typing import Optional

from pydantic import BaseModel

from tripsync.schemas.nudges.nudge import NudgePayload, NudgeType


class NudgeCopy(BaseModel):
    title: Optional[str] = None
    message: str
    cta_label: Optional[str] = None


NUDGE_EMOJI = {
    NudgeType.FIRST_AVAILABILITY_SUBMITTED: "🎉",
    NudgeType.AVAILABILITY_HALF_SUBMITTED: "📊",
    NudgeType.STRONG_OVERLAP_DETECTED: "✨",
    NudgeType.DATES_LOCKED: "🔒",
    NudgeType.LEADER_READY_TO_PROPOSE: "📅",
    NudgeType.LEADER_CAN_LOCK_DATES: "✅",
    NudgeType.TRAVELER_TOO_MANY_WINDOWS: "💡",
    NudgeType.LEADER_PROPOSING_LOW_COVERAGE: "⚠️",
}
DEFAULT_EMOJI = "📌"


def format_date_label(value: date, include_year: bool = False) -> str:
    label = f"{value.strftime('%b')} {value.day}"
    if include_year:
        label = f"{label}, {value.year}"
    return label


def format_date_range(start: date, end: date, include_year: bool = False) -> str:
    """Format as "Feb 7 – Feb 9"; include_year appends the year to the end date."""
    return f"{format_date_label(start)} – {format_date_label(end, include_year)}"


def should_include_year(value: date, today: date) -> bool:
    return value.year != today.year


def get_nudge_copy(nudge_type: NudgeType, payload: NudgePayload) -> NudgeCopy:
    label = payload.date_range.label if payload.date_range else None
    coverage = payload.coverage

    if nudge_type == NudgeType.FIRST_AVAILABILITY_SUBMITTED:
        who = payload.traveler_name or "Someone"
        return NudgeCopy(
            title="Things are moving!",
            message=f"{who} shared their availability. The trip is getting started!",
        )

    if nudge_type == NudgeType.AVAILABILITY_HALF_SUBMITTED:
        count = payload.traveler_count or "Several"
        return NudgeCopy(
            title="Halfway there!",
            message=f"{count} people have shared their dates. Momentum is building.",
        )

    if nudge_type == NudgeType.STRONG_OVERLAP_DETECTED:
        if label:
            count = coverage.count if coverage else "most"
            message = f"{label} works for {count} people!"
        else:
            message = "There's a date range that works for most people!"
        return NudgeCopy(title="A winner emerges", message=message)

    if nudge_type == NudgeType.DATES_LOCKED:
        if label:
            message = f"The trip is happening {label}. Time to plan the fun stuff!"
        else:
            message = "The dates are locked. Time to plan the fun stuff!"
        return NudgeCopy(title="It's official!", message=message)

    if nudge_type == NudgeType.LEADER_READY_TO_PROPOSE:
        if label:
            message = f"{label} looks promising. You can propose it whenever you're ready."
        else:
            message = "There's a popular date option. You can propose it whenever you're ready."
        return NudgeCopy(title="Ready when you are", message=message, cta_label="Propose dates")

    if nudge_type == NudgeType.LEADER_CAN_LOCK_DATES:
        if label:
            message = f"{label} has support. Lock it in when you're confident."
        else:
            message = "The proposed dates have support. Lock them in when you're confident."
        return NudgeCopy(title="Ready to lock?", message=message, cta_label="Lock dates")

    if nudge_type == NudgeType.TRAVELER_TOO_MANY_WINDOWS:
        count = payload.window_count or 2
        return NudgeCopy(
            message=f"You've already shared {count} date options. "
            "Adding more might make it harder to find overlap.",
        )

    if nudge_type == NudgeType.LEADER_PROPOSING_LOW_COVERAGE:
        if coverage:
            message = (
                f"Only {coverage.count} of {coverage.total} people can make this date range. "
                "Still want to propose it?"
            )
        else:
            message = "Not everyone can make this date range. Still want to propose it?"
        return NudgeCopy(title="Heads up", message=message, cta_label="Propose anyway")

    return NudgeCopy(message="Something is happening with your trip.")


def get_nudge_emoji(nudge_type: NudgeType) -> str:
    return NUDGE_EMOJI.get(nudge_type, DEFAULT_EMOJI)


def build_nudge_message(nudge_type: NudgeType, payload: NudgePayload) -> str:
    copy = get_nudge_copy(nudge_type, payload)
    emoji = get_nudge_emoji(nudge_type)
    if copy.title:
        return f"{emoji} **{copy.title}** {copy.message}"
    return f"{emoji} {copy.message}"


def build_chat_message(nudge_type: NudgeType, payload: NudgePayload) -> str:
    # Chat cards skip the title
    return f"{get_nudge_emoji(nudge_type)} {get_nudge_copy(nudge_type, payload).message}"
