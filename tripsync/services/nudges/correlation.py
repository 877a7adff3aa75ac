from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tripsync.core.config import settings
from tripsync.core.logger import logger
from tripsync.models.nudges.nudge_models import NudgeCorrelation
from tripsync.services.nudges.nudge_store import NudgeStore

# Actions worth attributing to a nudge
TRACKED_ACTIONS = (
    "suggest_window",
    "set_window_preference",
    "propose_dates",
    "react_to_dates",
    "lock_dates",
)


async def check_nudge_correlation(
    db: AsyncSession,
    store: NudgeStore,
    trip_id: int,
    user_id: int,
    action_type: str,
    now: Optional[datetime] = None,
) -> Optional[NudgeCorrelation]:
    """Record that action_type followed the user's most recent nudge, if recent enough.

    Telemetry only: any failure is logged and None is returned so the
    action that triggered this is never affected.
    """
    try:
        now = now or store.clock.now()
        shown = await store.get_most_recent_shown(trip_id, user_id)
        if shown is None:
            return None

        window = timedelta(minutes=settings.NUDGE_CORRELATION_WINDOW_MINUTES)
        if shown.created_at < now - window or shown.created_at > now:
            return None

        correlation = NudgeCorrelation(
            trip_id=trip_id,
            user_id=user_id,
            nudge_type=shown.nudge_type.value,
            dedupe_key=shown.dedupe_key,
            action_type=action_type,
            nudge_shown_at=shown.created_at,
            latency_seconds=int((now - shown.created_at).total_seconds()),
            created_at=now,
        )
        db.add(correlation)
        await db.commit()
        logger.info(
            f"Nudge {shown.nudge_type.value} correlated with {action_type} "
            f"for user {user_id} on trip {trip_id} after {correlation.latency_seconds}s"
        )
        return correlation
    except Exception as e:
        logger.error(f"Nudge correlation failed for trip {trip_id}, user {user_id}: {e}")
        try:
            await db.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback after correlation failure also failed: {rollback_error}")
        return None
