from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tripsync.core.logger import logger
from tripsync.schemas.nudges.nudge import (
    Nudge,
    NudgeChannel,
    NudgeEventRecord,
    NudgeInteraction,
    NudgePayload,
    NudgePriority,
    NudgeAudience,
    NudgeStatus,
    NudgeType,
)
from tripsync.services.nudges.chat_sink import create_chat_card_message
from tripsync.services.nudges.correlation import check_nudge_correlation
from tripsync.services.nudges.metrics import build_viewer_context, compute_trip_metrics
from tripsync.services.nudges.nudge_engine import compute_nudges
from tripsync.services.nudges.nudge_store import NudgeStore, filter_suppressed_nudges
from tripsync.services.nudges.push import LoggingPushSink, PushSink, push_nudge
from tripsync.services.scheduling.scheduling_service import SchedulingRecords, SchedulingService

PUSHED_TYPES = (NudgeType.LEADER_CAN_LOCK_DATES, NudgeType.DATES_LOCKED)


class NudgeService:
    def __init__(
        self,
        store: NudgeStore,
        scheduling: Optional[SchedulingService] = None,
        push_sink: Optional[PushSink] = None,
    ):
        self.store = store
        self.scheduling = scheduling or SchedulingService(store.clock)
        self.push_sink = push_sink or LoggingPushSink()

    @property
    def clock(self):
        return self.store.clock

    def _evaluate(self, records: SchedulingRecords, viewer_id: int):
        metrics = compute_trip_metrics(
            records.trip,
            records.windows,
            records.roster,
            proposal=records.proposal,
            reactions=records.reactions,
            viewer_id=viewer_id,
            today=self.clock.today(),
        )
        viewer = build_viewer_context(viewer_id, records.roster, records.windows)
        return compute_nudges(records.trip, metrics, viewer)

    async def _render_chat_cards(self, db: AsyncSession, trip_id: int, nudges: List[Nudge]) -> None:
        for nudge in nudges:
            if nudge.channel != NudgeChannel.CHAT_CARD:
                continue
            try:
                await create_chat_card_message(db, trip_id, nudge)
            except Exception as e:
                logger.error(f"Chat card {nudge.dedupe_key} failed on trip {trip_id}: {e}")
                try:
                    await db.rollback()
                except Exception as rollback_error:
                    logger.error(f"Rollback after chat card failure also failed: {rollback_error}")

    async def get_nudges_for_viewer(
        self, db: AsyncSession, trip_id: int, viewer_id: int, now: Optional[datetime] = None
    ) -> List[Nudge]:
        """Nudges to show viewer right now, recorded as shown.

        Read-only for the caller: nudge bookkeeping failures are logged and
        whatever survived suppression is still returned.
        """
        records = await self.scheduling.load_records(db, trip_id)
        if not records.roster.is_leader(viewer_id) and not records.roster.is_active(viewer_id):
            return []

        now = now or self.clock.now()
        result = self._evaluate(records, viewer_id)
        try:
            visible = await filter_suppressed_nudges(self.store, trip_id, viewer_id, result.nudges, now)
            await self.store.record_nudges_shown(trip_id, viewer_id, visible, now)
        except Exception as e:
            logger.error(f"Nudge store unavailable for trip {trip_id}: {e}")
            visible = result.nudges

        await self._render_chat_cards(db, trip_id, visible)
        return visible

    async def process_trip_update(
        self,
        db: AsyncSession,
        trip_id: int,
        actor_id: int,
        action_type: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Best-effort follow-up after a committed scheduling action.

        Attributes the action to a recent nudge, posts any new chat cards
        and pushes the leader/all-traveler milestones. Never raises.
        """
        now = now or self.clock.now()
        await check_nudge_correlation(db, self.store, trip_id, actor_id, action_type, now)

        try:
            records = await self.scheduling.load_records(db, trip_id)
            leader_result = self._evaluate(records, records.roster.leader_id)
        except Exception as e:
            logger.error(f"Nudge evaluation after {action_type} failed on trip {trip_id}: {e}")
            return

        await self._render_chat_cards(db, trip_id, leader_result.nudges)
        for nudge in leader_result.nudges:
            if nudge.type in PUSHED_TYPES:
                await push_nudge(self.push_sink, self.store, trip_id, nudge, records.roster, now)

    async def _record_interaction(
        self,
        trip_id: int,
        user_id: int,
        interaction: NudgeInteraction,
        status: NudgeStatus,
        now: Optional[datetime] = None,
    ) -> NudgeEventRecord:
        nudge = Nudge(
            id=interaction.nudge_id,
            type=interaction.nudge_type,
            channel=interaction.channel,
            audience=NudgeAudience.ALL,
            priority=NudgePriority.LOW,
            payload=NudgePayload(),
            dedupe_key=interaction.dedupe_key,
            cooldown_hours=0,
        )
        return await self.store.record_nudge_event(trip_id, user_id, nudge, status, now)

    async def record_click(self, trip_id: int, user_id: int, interaction: NudgeInteraction, now: Optional[datetime] = None):
        return await self._record_interaction(trip_id, user_id, interaction, NudgeStatus.CLICKED, now)

    async def record_dismiss(self, trip_id: int, user_id: int, interaction: NudgeInteraction, now: Optional[datetime] = None):
        return await self._record_interaction(trip_id, user_id, interaction, NudgeStatus.DISMISSED, now)
