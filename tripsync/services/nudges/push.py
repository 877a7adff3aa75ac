"""Hand-off of push-style nudges to an external delivery service.

This module builds the payload and decides who gets it. Delivery (APNs,
FCM, ...) belongs to whatever PushSink is plugged in; the default one
only logs.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel

from tripsync.core.logger import logger
from tripsync.schemas.nudges.nudge import Nudge, NudgeStatus, NudgeType
from tripsync.services.nudges.copy import get_nudge_copy
from tripsync.services.nudges.nudge_store import NudgeStore
from tripsync.services.scheduling.roster import TripRoster


class PushPayload(BaseModel):
    title: str
    body: str
    user_ids: List[int]
    data: Dict[str, Any] = {}


class PushSink(Protocol):
    async def send(self, payload: PushPayload) -> None:
        ...


class LoggingPushSink:
    async def send(self, payload: PushPayload) -> None:
        logger.info(f"Push '{payload.title}' queued for users {payload.user_ids}")


def push_recipients(nudge: Nudge, roster: TripRoster) -> List[int]:
    if nudge.type == NudgeType.LEADER_CAN_LOCK_DATES:
        return [roster.leader_id]
    if nudge.type == NudgeType.DATES_LOCKED:
        return list(roster.active_user_ids)
    return []


def build_push_payload(trip_id: int, nudge: Nudge, user_ids: List[int]) -> PushPayload:
    copy = get_nudge_copy(nudge.type, nudge.payload)
    return PushPayload(
        title=copy.title or "Trip update",
        body=copy.message,
        user_ids=user_ids,
        data={"trip_id": trip_id, "nudge_type": nudge.type.value, "dedupe_key": nudge.dedupe_key},
    )


async def push_nudge(
    sink: PushSink,
    store: NudgeStore,
    trip_id: int,
    nudge: Nudge,
    roster: TripRoster,
    now: Optional[datetime] = None,
) -> Optional[PushPayload]:
    """Push nudge to its recipients, skipping anyone already pushed this key.

    Never raises; a failed push is logged and dropped.
    """
    try:
        recipients = []
        for user_id in push_recipients(nudge, roster):
            already = await store.get_nudge_event(trip_id, user_id, nudge.dedupe_key, NudgeStatus.PUSHED)
            if already is None:
                recipients.append(user_id)
        if not recipients:
            return None

        payload = build_push_payload(trip_id, nudge, recipients)
        await sink.send(payload)
        for user_id in recipients:
            await store.record_nudge_event(trip_id, user_id, nudge, NudgeStatus.PUSHED, now)
        return payload
    except Exception as e:
        logger.error(f"Push for {nudge.dedupe_key} on trip {trip_id} failed: {e}")
        return None
