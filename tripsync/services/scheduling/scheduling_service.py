from datetime import date
from typing import List, Optional

from fastapi import status
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tripsync.core.cache import RedisCache
from tripsync.core.clock import Clock, system_clock
from tripsync.core.config import settings
from tripsync.core.exceptions import ErrorCode, SchedulingError
from tripsync.core.logger import logger
from tripsync.models.scheduling.date_proposal import DateProposal, DateReaction, DateReactionType
from tripsync.models.scheduling.window_models import (
    WindowPreference,
    WindowPreferenceType,
    WindowProposal,
)
from tripsync.models.trips.trip_model import Trip, TripStatus
from tripsync.schemas.nudges.nudge import InlineHintContext
from tripsync.schemas.scheduling.date_proposal import DateProposalWithReactions, DateReactionOut
from tripsync.schemas.scheduling.snapshot import SchedulingSnapshotOut
from tripsync.schemas.scheduling.window import (
    SuggestWindowResponse,
    WindowContext,
    WindowOut,
    WindowWithPreferences,
)
from tripsync.services.nudges.metrics import percent
from tripsync.services.nudges.nudge_engine import (
    evaluate_low_coverage_proposal,
    evaluate_too_many_windows,
)
from tripsync.services.scheduling.funnel_state import (
    FunnelState,
    SchedulingAction,
    SchedulingSnapshot,
    aggregate_window_preferences,
    count_approvals,
    derive_funnel_state,
    required_approvals,
    score_preferences,
    validate_stage_action,
)
from tripsync.services.scheduling.roster import TripRoster, get_trip_roster
from tripsync.services.scheduling.window_normalizer import normalize_window, validate_window_bounds
from tripsync.services.scheduling.window_overlap import (
    compute_range_coverage,
    find_best_overlap_range,
    get_most_similar_window,
)


class SchedulingRecords:
    """A trip plus every scheduling record the stage is derived from, read in one go."""

    def __init__(
        self,
        trip: Trip,
        roster: TripRoster,
        windows: List[WindowProposal],
        preferences: List[WindowPreference],
        proposal: Optional[DateProposal],
        reactions: List[DateReaction],
    ):
        self.trip = trip
        # As read; a later refresh of trip must not move the write guard
        self.proposal_seq = trip.date_proposal_seq or 0
        self.roster = roster
        self.windows = windows
        self.preferences = preferences
        self.proposal = proposal
        self.reactions = reactions

    @property
    def active_windows(self) -> List[WindowProposal]:
        return [w for w in self.windows if not w.archived]

    @property
    def approvals(self) -> int:
        return count_approvals(self.reactions, self.roster.active_user_ids)

    def user_window_count(self, user_id: int) -> int:
        return sum(1 for w in self.active_windows if w.user_id == user_id)

    @property
    def snapshot(self) -> SchedulingSnapshot:
        return SchedulingSnapshot(
            mode=self.trip.mode,
            status=self.trip.status,
            locked_start_date=self.trip.locked_start_date,
            locked_end_date=self.trip.locked_end_date,
            active_window_count=len(self.active_windows),
            has_active_proposal=self.proposal is not None,
            approvals=self.approvals,
            traveler_count=self.roster.traveler_count,
        )

    @property
    def state(self) -> FunnelState:
        return derive_funnel_state(self.snapshot)


class SchedulingService:
    def __init__(self, clock: Clock = system_clock, cache: Optional[RedisCache] = None):
        self.clock = clock
        self.cache = cache

    async def get_trip(self, db: AsyncSession, trip_id: int) -> Trip:
        result = await db.execute(
            select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
        )
        trip = result.scalar_one_or_none()
        if not trip:
            logger.warning(f"Trip not found: ID {trip_id}")
            raise SchedulingError(ErrorCode.TRIP_NOT_FOUND, "Trip not found", status.HTTP_404_NOT_FOUND)
        return trip

    async def load_records(self, db: AsyncSession, trip_id: int) -> SchedulingRecords:
        trip = await self.get_trip(db, trip_id)
        roster = await get_trip_roster(db, trip)

        windows = await db.execute(
            select(WindowProposal)
            .where(WindowProposal.trip_id == trip_id)
            .order_by(WindowProposal.id)
            .execution_options(populate_existing=True)
        )
        preferences = await db.execute(
            select(WindowPreference)
            .where(WindowPreference.trip_id == trip_id)
            .execution_options(populate_existing=True)
        )
        proposal_result = await db.execute(
            select(DateProposal)
            .where(DateProposal.trip_id == trip_id, DateProposal.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        proposal = proposal_result.scalar_one_or_none()

        reactions = []
        if proposal is not None:
            reaction_result = await db.execute(
                select(DateReaction)
                .where(DateReaction.proposal_id == proposal.id)
                .order_by(DateReaction.id)
                .execution_options(populate_existing=True)
            )
            reactions = list(reaction_result.scalars().all())

        return SchedulingRecords(
            trip=trip,
            roster=roster,
            windows=list(windows.scalars().all()),
            preferences=list(preferences.scalars().all()),
            proposal=proposal,
            reactions=reactions,
        )

    def _ensure_allowed(self, records: SchedulingRecords, action: SchedulingAction, user_id: int, override: bool = False):
        check = validate_stage_action(records.trip, action, user_id, records.roster, records.state, override)
        if not check.ok:
            logger.warning(
                f"Blocked {action.value} by user {user_id} on trip {records.trip.id}: {check.code} {check.message}"
            )
            check.raise_for_error()

    def _cap_reached(self, trip_id: int, window_count: int) -> SchedulingError:
        hint = evaluate_too_many_windows(
            InlineHintContext(action="add_window", current_window_count=window_count), trip_id
        )
        return SchedulingError(
            ErrorCode.USER_WINDOW_CAP_REACHED,
            f"You can only have {settings.MAX_WINDOWS_PER_USER} date options at a time.",
            status.HTTP_400_BAD_REQUEST,
            extra={
                "user_window_count": window_count,
                "max_windows": settings.MAX_WINDOWS_PER_USER,
                "nudge": hint.model_dump(mode="json") if hint else None,
            },
        )

    def _ensure_participant(self, roster: TripRoster, trip_id: int, viewer_id: int):
        if not roster.is_leader(viewer_id) and not roster.is_active(viewer_id):
            logger.warning(f"Unauthorized scheduling access: trip {trip_id} by user {viewer_id}")
            raise SchedulingError(
                ErrorCode.NOT_A_PARTICIPANT,
                "You are not an active traveler on this trip",
                status.HTTP_403_FORBIDDEN,
            )

    async def get_trip_for_viewer(self, db: AsyncSession, trip_id: int, viewer_id: int) -> Trip:
        trip = await self.get_trip(db, trip_id)
        self._ensure_participant(await get_trip_roster(db, trip), trip_id, viewer_id)
        return trip

    async def get_snapshot(self, db: AsyncSession, trip_id: int, viewer_id: int) -> SchedulingSnapshotOut:
        records = await self.load_records(db, trip_id)
        roster = records.roster
        self._ensure_participant(roster, trip_id, viewer_id)

        windows = []
        for window in records.windows:
            counts = aggregate_window_preferences(window.id, records.preferences)
            viewer_pref = next(
                (p.preference for p in records.preferences if p.window_id == window.id and p.user_id == viewer_id),
                None,
            )
            windows.append(
                WindowWithPreferences(
                    **WindowOut.model_validate(window).model_dump(),
                    preferences=counts,
                    score=score_preferences(counts),
                    viewer_preference=viewer_pref,
                )
            )
        windows.sort(key=lambda w: (w.archived, -w.score, w.id))

        proposal_out = None
        if records.proposal is not None:
            proposal = records.proposal
            proposal_out = DateProposalWithReactions(
                id=proposal.id,
                trip_id=proposal.trip_id,
                start_date=proposal.start_date,
                end_date=proposal.end_date,
                proposed_by=proposal.proposed_by,
                note=proposal.note,
                is_active=proposal.is_active,
                created_at=proposal.created_at,
                reactions=[DateReactionOut.model_validate(r) for r in records.reactions],
                approvals=records.approvals,
                required_approvals=required_approvals(roster.traveler_count),
                viewer_reaction=next((r.reaction for r in records.reactions if r.user_id == viewer_id), None),
            )

        active_ids = set(roster.active_user_ids)
        return SchedulingSnapshotOut(
            trip_id=trip_id,
            state=records.state,
            is_leader=roster.is_leader(viewer_id),
            traveler_count=roster.traveler_count,
            respondent_count=len({w.user_id for w in records.windows if w.user_id in active_ids}),
            windows=windows,
            proposal=proposal_out,
            best_overlap=find_best_overlap_range(records.windows),
            user_window_count=records.user_window_count(viewer_id),
            max_windows=settings.MAX_WINDOWS_PER_USER,
            locked_start_date=records.trip.locked_start_date,
            locked_end_date=records.trip.locked_end_date,
        )

    async def suggest_window(self, db: AsyncSession, trip_id: int, user_id: int, text: str) -> SuggestWindowResponse:
        records = await self.load_records(db, trip_id)
        trip = records.trip
        self._ensure_allowed(records, SchedulingAction.SUGGEST_WINDOW, user_id)

        context = WindowContext(start_bound=trip.start_bound, end_bound=trip.end_bound)
        result = normalize_window(text, context, self.clock)
        if not result.ok:
            raise SchedulingError(ErrorCode.INVALID_WINDOW, result.error)

        bounds_error = validate_window_bounds(result.start_date, result.end_date, trip.start_bound, trip.end_bound)
        if bounds_error:
            raise SchedulingError(ErrorCode.INVALID_WINDOW, bounds_error)

        mine = [w for w in records.active_windows if w.user_id == user_id]
        if len(mine) >= settings.MAX_WINDOWS_PER_USER:
            logger.warning(f"User {user_id} hit the window cap on trip {trip_id}")
            raise self._cap_reached(trip_id, len(mine))

        taken = {w.slot for w in mine}
        slot = next(s for s in range(1, settings.MAX_WINDOWS_PER_USER + 1) if s not in taken)

        others = [w for w in records.active_windows if w.user_id != user_id]
        similar = get_most_similar_window(result, others)

        window = WindowProposal(
            trip_id=trip_id,
            user_id=user_id,
            source_text=" ".join(text.split()),
            start_date=result.start_date,
            end_date=result.end_date,
            precision=result.precision,
            is_bare_month=result.is_bare_month,
            slot=slot,
            archived=False,
        )
        db.add(window)
        try:
            await db.commit()
        except IntegrityError:
            # Another request from this user took the slot first
            await db.rollback()
            count_result = await db.execute(
                select(WindowProposal.id).where(
                    WindowProposal.trip_id == trip_id,
                    WindowProposal.user_id == user_id,
                    WindowProposal.archived.is_(False),
                )
            )
            current = len(count_result.all())
            if current >= settings.MAX_WINDOWS_PER_USER:
                raise self._cap_reached(trip_id, current)
            raise SchedulingError(
                ErrorCode.WINDOW_CONFLICT,
                "Another date option was added at the same time. Please try again.",
                status.HTTP_409_CONFLICT,
            )
        await db.refresh(window)

        logger.info(f"Window {window.id} ({window.start_date} - {window.end_date}) added by user {user_id} to trip {trip_id}")
        return SuggestWindowResponse(
            window=WindowOut.model_validate(window),
            similar_window_id=similar.window_id if similar else None,
            similarity_score=similar.score if similar else None,
            user_window_count=len(mine) + 1,
            max_windows=settings.MAX_WINDOWS_PER_USER,
        )

    async def set_window_preference(
        self,
        db: AsyncSession,
        trip_id: int,
        window_id: int,
        user_id: int,
        preference: WindowPreferenceType,
        note: Optional[str] = None,
    ) -> WindowPreference:
        records = await self.load_records(db, trip_id)
        self._ensure_allowed(records, SchedulingAction.SET_WINDOW_PREFERENCE, user_id)

        window = next((w for w in records.active_windows if w.id == window_id), None)
        if window is None:
            raise SchedulingError(ErrorCode.WINDOW_NOT_FOUND, "Date option not found", status.HTTP_404_NOT_FOUND)

        pref = next(
            (p for p in records.preferences if p.window_id == window_id and p.user_id == user_id),
            None,
        )
        if pref is None:
            pref = WindowPreference(
                trip_id=trip_id, window_id=window_id, user_id=user_id, preference=preference, note=note
            )
            db.add(pref)
        else:
            pref.preference = preference
            pref.note = note

        try:
            await db.commit()
        except IntegrityError:
            # Concurrent first write for the same (window, user); last write wins
            await db.rollback()
            existing = await db.execute(
                select(WindowPreference).where(
                    WindowPreference.window_id == window_id, WindowPreference.user_id == user_id
                )
            )
            pref = existing.scalar_one()
            pref.preference = preference
            pref.note = note
            await db.commit()
        await db.refresh(pref)

        logger.info(f"User {user_id} set {preference.value} on window {window_id} (trip {trip_id})")
        return pref

    async def propose_dates(
        self,
        db: AsyncSession,
        trip_id: int,
        leader_id: int,
        start_date: date,
        end_date: date,
        note: Optional[str] = None,
        force: bool = False,
    ) -> DateProposal:
        records = await self.load_records(db, trip_id)
        trip = records.trip
        self._ensure_allowed(records, SchedulingAction.PROPOSE_DATES, leader_id)

        if end_date < start_date:
            raise SchedulingError(ErrorCode.INVALID_DATE_RANGE, "End date must be on or after start date.")
        bounds_error = validate_window_bounds(start_date, end_date, trip.start_bound, trip.end_bound)
        if bounds_error:
            raise SchedulingError(ErrorCode.INVALID_DATE_RANGE, bounds_error)

        traveler_count = records.roster.traveler_count
        coverage = compute_range_coverage(records.windows, start_date, end_date)
        if not force:
            warning = evaluate_low_coverage_proposal(
                InlineHintContext(
                    action="propose_dates",
                    proposed_coverage=coverage.count,
                    proposed_total=traveler_count,
                ),
                trip_id,
                traveler_count,
            )
            if warning is not None:
                logger.info(f"Low coverage proposal on trip {trip_id} needs confirmation ({coverage.count}/{traveler_count})")
                raise SchedulingError(
                    ErrorCode.LOW_COVERAGE_CONFIRM_REQUIRED,
                    warning.payload.message,
                    status.HTTP_409_CONFLICT,
                    extra={
                        "coverage": {
                            "count": coverage.count,
                            "total": traveler_count,
                            "percentage": percent(coverage.count, traveler_count),
                        },
                        "nudge": warning.model_dump(mode="json"),
                    },
                )

        now = self.clock.now()
        seq = records.proposal_seq
        guard = await db.execute(
            update(Trip)
            .where(
                Trip.id == trip_id,
                Trip.date_proposal_seq == seq,
                Trip.status == TripStatus.active,
                Trip.locked_start_date.is_(None),
            )
            .values(date_proposal_seq=seq + 1)
        )
        if guard.rowcount == 0:
            await db.rollback()
            logger.warning(f"Concurrent date proposal lost on trip {trip_id} by user {leader_id}")
            raise SchedulingError(
                ErrorCode.INVALID_STAGE_TRANSITION,
                "The dates were just changed by someone else. Refresh and try again.",
                status.HTTP_409_CONFLICT,
            )

        await db.execute(
            update(DateProposal)
            .where(DateProposal.trip_id == trip_id, DateProposal.is_active.is_(True))
            .values(is_active=False, retired_at=now)
        )
        await db.execute(
            update(WindowProposal)
            .where(WindowProposal.trip_id == trip_id, WindowProposal.archived.is_(False))
            .values(archived=True, archived_at=now)
        )

        proposal = DateProposal(
            trip_id=trip_id,
            start_date=start_date,
            end_date=end_date,
            proposed_by=leader_id,
            note=note,
            is_active=True,
            created_at=now,
        )
        db.add(proposal)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise SchedulingError(
                ErrorCode.INVALID_STAGE_TRANSITION,
                "The dates were just changed by someone else. Refresh and try again.",
                status.HTTP_409_CONFLICT,
            )
        await db.refresh(proposal)

        logger.info(f"Dates {start_date} - {end_date} proposed on trip {trip_id} by user {leader_id}")
        return proposal

    async def react_to_dates(
        self,
        db: AsyncSession,
        trip_id: int,
        user_id: int,
        reaction: DateReactionType,
        note: Optional[str] = None,
    ) -> DateReaction:
        records = await self.load_records(db, trip_id)
        self._ensure_allowed(records, SchedulingAction.REACT_TO_DATES, user_id)
        proposal = records.proposal

        existing = next((r for r in records.reactions if r.user_id == user_id), None)
        if existing is None:
            existing = DateReaction(
                trip_id=trip_id, proposal_id=proposal.id, user_id=user_id, reaction=reaction, note=note
            )
            db.add(existing)
        else:
            existing.reaction = reaction
            existing.note = note

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            again = await db.execute(
                select(DateReaction).where(
                    DateReaction.proposal_id == proposal.id, DateReaction.user_id == user_id
                )
            )
            existing = again.scalar_one()
            existing.reaction = reaction
            existing.note = note
            await db.commit()
        await db.refresh(existing)

        logger.info(f"User {user_id} reacted {reaction.value} to proposal {proposal.id} (trip {trip_id})")
        return existing

    async def lock_dates(self, db: AsyncSession, trip_id: int, leader_id: int, override: bool = False) -> Trip:
        records = await self.load_records(db, trip_id)
        trip = records.trip
        self._ensure_allowed(records, SchedulingAction.LOCK_DATES, leader_id, override)
        proposal = records.proposal
        proposal_id = proposal.id

        now = self.clock.now()
        still_active = (
            select(DateProposal.id)
            .where(DateProposal.id == proposal_id, DateProposal.is_active.is_(True))
            .exists()
        )
        # At most once, and only to the proposal this request read
        result = await db.execute(
            update(Trip)
            .where(
                Trip.id == trip_id,
                Trip.status == TripStatus.active,
                Trip.locked_start_date.is_(None),
                Trip.date_proposal_seq == records.proposal_seq,
                still_active,
            )
            .values(
                status=TripStatus.locked,
                locked_start_date=proposal.start_date,
                locked_end_date=proposal.end_date,
                locked_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            current = await self.get_trip(db, trip_id)
            if current.status == TripStatus.locked:
                logger.warning(f"Double lock attempt on trip {trip_id} by user {leader_id}")
                raise SchedulingError(ErrorCode.STAGE_BLOCKED, "Trip is already locked")
            if current.status == TripStatus.canceled:
                logger.warning(f"Lock lost to cancel on trip {trip_id} by user {leader_id}")
                raise SchedulingError(ErrorCode.TRIP_CANCELED, "This trip has been canceled and cannot be modified")
            logger.warning(f"Lock on stale proposal {proposal_id} rejected on trip {trip_id} by user {leader_id}")
            raise SchedulingError(
                ErrorCode.INVALID_STAGE_TRANSITION,
                "The dates were just changed by someone else. Refresh and try again.",
                status.HTTP_409_CONFLICT,
            )

        await db.commit()
        await db.refresh(trip)
        if self.cache is not None:
            try:
                await self.cache.delete(self.cache.build_key("trips", "id", trip_id))
            except Exception as e:
                logger.error(f"Trip cache invalidation failed after lock on trip {trip_id}: {e}")
        logger.info(f"Trip {trip_id} locked to {trip.locked_start_date} - {trip.locked_end_date} by user {leader_id}")
        return trip
