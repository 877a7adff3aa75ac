from datetime import date

import pytest
from sqlalchemy import func, select, update

from tripsync.core.exceptions import ErrorCode, SchedulingError
from tripsync.models.scheduling.date_proposal import DateProposal, DateReactionType
from tripsync.models.scheduling.window_models import (
    WindowPrecision,
    WindowPreference,
    WindowPreferenceType,
    WindowProposal,
)
from tripsync.models.trips.trip_model import Trip, TripMode, TripStatus
from tripsync.services.scheduling import scheduling_service as scheduling_module
from tripsync.services.scheduling.funnel_state import (
    ALREADY_LOCKED_MESSAGE,
    FROZEN_MESSAGE,
    HOSTED_MESSAGE,
    NOT_ENOUGH_APPROVALS_MESSAGE,
    READY_TO_LOCK_MESSAGE,
    FunnelState,
    StageCheck,
)
from tripsync.services.scheduling.scheduling_service import SchedulingService
from tripsync.services.trips.trip_service import TripService

MAR_3, MAR_4, MAR_5, MAR_6 = (date(2026, 3, d) for d in (3, 4, 5, 6))


@pytest.fixture
def service(clock):
    return SchedulingService(clock)


async def open_windows(service, db, trip, users=(1, 2), text="Mar 3-6"):
    for user_id in users:
        await service.suggest_window(db, trip.id, user_id, text)


async def test_first_window_opens_the_funnel(service, db, trip_factory):
    trip = await trip_factory()

    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.state == FunnelState.NO_DATES

    response = await service.suggest_window(db, trip.id, 2, "  Mar   3-6 ")

    assert response.window.start_date == MAR_3
    assert response.window.end_date == MAR_6
    assert response.window.source_text == "Mar 3-6"
    assert response.user_window_count == 1
    assert response.max_windows == 2

    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.state == FunnelState.WINDOWS_OPEN
    assert snapshot.respondent_count == 1
    assert snapshot.user_window_count == 1


async def test_similar_window_is_pointed_out(service, db, trip_factory):
    trip = await trip_factory()
    first = await service.suggest_window(db, trip.id, 1, "Mar 3-6")

    second = await service.suggest_window(db, trip.id, 2, "Mar 2-7")

    assert second.similar_window_id == first.window.id
    assert second.similarity_score == 1.0


async def test_window_cap_returns_hint(service, db, trip_factory):
    trip = await trip_factory()
    await service.suggest_window(db, trip.id, 2, "Mar 1-3")
    await service.suggest_window(db, trip.id, 2, "Mar 10-12")

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "Mar 20-22")

    detail = exc.value.detail
    assert exc.value.status_code == 400
    assert detail["code"] == ErrorCode.USER_WINDOW_CAP_REACHED
    assert detail["user_window_count"] == 2
    assert detail["max_windows"] == 2
    assert detail["nudge"]["type"] == "traveler_too_many_windows"

    count = await db.scalar(select(func.count(WindowProposal.id)).where(WindowProposal.user_id == 2))
    assert count == 2


async def test_unparseable_and_out_of_bounds_windows(service, db, trip_factory):
    trip = await trip_factory()
    trip.start_bound = date(2026, 3, 5)
    trip.end_bound = date(2026, 3, 31)
    await db.commit()

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "whenever works")
    assert exc.value.detail["code"] == ErrorCode.INVALID_WINDOW

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "Mar 1-3")
    assert exc.value.detail["code"] == ErrorCode.INVALID_WINDOW
    assert "before" in exc.value.detail["message"]


async def test_window_preferences_upsert(service, db, trip_factory):
    trip = await trip_factory()
    window = (await service.suggest_window(db, trip.id, 1, "Mar 3-6")).window

    await service.set_window_preference(db, trip.id, window.id, 2, WindowPreferenceType.MAYBE)
    await service.set_window_preference(db, trip.id, window.id, 2, WindowPreferenceType.WORKS, "works for me")

    rows = (await db.execute(select(WindowPreference))).scalars().all()
    assert len(rows) == 1
    assert rows[0].preference == WindowPreferenceType.WORKS

    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.windows[0].preferences.works == 1
    assert snapshot.windows[0].score == 3
    assert snapshot.windows[0].viewer_preference == WindowPreferenceType.WORKS


async def test_preference_on_missing_window(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)

    with pytest.raises(SchedulingError) as exc:
        await service.set_window_preference(db, trip.id, 999, 2, WindowPreferenceType.NO)

    assert exc.value.status_code == 404
    assert exc.value.detail["code"] == ErrorCode.WINDOW_NOT_FOUND


async def test_propose_archives_windows_and_freezes_availability(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)

    proposal = await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5, note="Long weekend")

    assert proposal.is_active
    snapshot = await service.get_snapshot(db, trip.id, 1)
    assert snapshot.state == FunnelState.DATE_PROPOSED
    assert all(w.archived for w in snapshot.windows)
    assert snapshot.proposal.required_approvals == 2
    # archived windows still describe who is available
    assert snapshot.best_overlap.coverage_count == 2

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 3, "Mar 10-12")
    assert exc.value.detail["message"] == FROZEN_MESSAGE


async def test_only_leader_can_propose(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)

    with pytest.raises(SchedulingError) as exc:
        await service.propose_dates(db, trip.id, 2, MAR_4, MAR_5)

    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == ErrorCode.LEADER_ONLY


async def test_circle_owner_can_propose(service, db, trip_factory):
    trip = await trip_factory(member_count=3, circle_owner_id=4)
    await open_windows(service, db, trip)

    proposal = await service.propose_dates(db, trip.id, 4, MAR_4, MAR_5)

    assert proposal.proposed_by == 4


async def test_low_coverage_proposal_needs_confirmation(service, db, trip_factory):
    trip = await trip_factory(member_count=4)
    await open_windows(service, db, trip, users=(2,))

    with pytest.raises(SchedulingError) as exc:
        await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)

    assert exc.value.status_code == 409
    detail = exc.value.detail
    assert detail["code"] == ErrorCode.LOW_COVERAGE_CONFIRM_REQUIRED
    assert detail["coverage"] == {"count": 1, "total": 4, "percentage": 25}
    assert detail["nudge"]["type"] == "leader_proposing_low_coverage"

    proposal = await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5, force=True)
    assert proposal.is_active


async def test_reproposing_resets_reactions(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    first = await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)
    await service.react_to_dates(db, trip.id, 2, DateReactionType.WORKS)

    second = await service.propose_dates(db, trip.id, 1, MAR_5, MAR_6)

    proposals = (await db.execute(select(DateProposal).order_by(DateProposal.id))).scalars().all()
    assert [p.is_active for p in proposals] == [False, True]
    assert proposals[0].id == first.id

    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.proposal.id == second.id
    assert snapshot.proposal.approvals == 0
    assert snapshot.proposal.viewer_reaction is None
    assert snapshot.state == FunnelState.DATE_PROPOSED


async def test_react_and_lock(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)

    await service.react_to_dates(db, trip.id, 2, DateReactionType.CAVEAT)
    await service.react_to_dates(db, trip.id, 2, DateReactionType.WORKS)
    with pytest.raises(SchedulingError) as exc:
        await service.lock_dates(db, trip.id, 1)
    assert exc.value.detail["message"] == NOT_ENOUGH_APPROVALS_MESSAGE

    await service.react_to_dates(db, trip.id, 3, DateReactionType.WORKS)
    snapshot = await service.get_snapshot(db, trip.id, 1)
    assert snapshot.state == FunnelState.READY_TO_LOCK
    assert snapshot.proposal.approvals == 2

    with pytest.raises(SchedulingError) as exc:
        await service.propose_dates(db, trip.id, 1, MAR_3, MAR_4)
    assert exc.value.detail["message"] == READY_TO_LOCK_MESSAGE

    locked = await service.lock_dates(db, trip.id, 1)

    assert locked.status == TripStatus.locked
    assert (locked.locked_start_date, locked.locked_end_date) == (MAR_4, MAR_5)
    assert locked.locked_at is not None
    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.state == FunnelState.DATES_LOCKED


async def test_leader_override_locks_early(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)

    locked = await service.lock_dates(db, trip.id, 1, override=True)

    assert locked.locked_start_date == MAR_4


async def test_second_lock_is_rejected(service, db, trip_factory):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)
    await service.lock_dates(db, trip.id, 1, override=True)

    with pytest.raises(SchedulingError) as exc:
        await service.lock_dates(db, trip.id, 1, override=True)

    assert exc.value.detail["code"] == ErrorCode.STAGE_BLOCKED
    assert exc.value.detail["message"] == ALREADY_LOCKED_MESSAGE


async def test_lock_race_loser_sees_already_locked(service, db, trip_factory, monkeypatch):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)
    await service.lock_dates(db, trip.id, 1, override=True)

    # A request that passed the stage check before the first lock committed
    monkeypatch.setattr(scheduling_module, "validate_stage_action", lambda *args, **kwargs: StageCheck(ok=True))
    with pytest.raises(SchedulingError) as exc:
        await service.lock_dates(db, trip.id, 1, override=True)

    assert exc.value.detail["code"] == ErrorCode.STAGE_BLOCKED
    assert exc.value.detail["message"] == "Trip is already locked"
    refreshed = await service.get_trip(db, trip.id)
    assert (refreshed.locked_start_date, refreshed.locked_end_date) == (MAR_4, MAR_5)


async def test_concurrent_propose_loser_gets_conflict(service, db, trip_factory, monkeypatch):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    original = service.load_records

    async def load_then_race(session, trip_id):
        records = await original(session, trip_id)
        # Someone else proposes between our read and our write
        await session.execute(
            update(Trip)
            .where(Trip.id == trip_id)
            .values(date_proposal_seq=Trip.date_proposal_seq + 1)
            .execution_options(synchronize_session=False)
        )
        return records

    monkeypatch.setattr(service, "load_records", load_then_race)
    with pytest.raises(SchedulingError) as exc:
        await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)

    assert exc.value.status_code == 409
    assert exc.value.detail["code"] == ErrorCode.INVALID_STAGE_TRANSITION
    count = await db.scalar(select(func.count(DateProposal.id)))
    assert count == 0


async def test_lock_after_repropose_is_rejected(service, db, clock, trip_factory, monkeypatch):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)
    original = service.load_records

    async def load_then_repropose(session, trip_id):
        records = await original(session, trip_id)
        # The leader's other tab swaps the proposal before this lock writes
        await SchedulingService(clock).propose_dates(session, trip_id, 1, MAR_3, MAR_5, force=True)
        return records

    monkeypatch.setattr(service, "load_records", load_then_repropose)
    with pytest.raises(SchedulingError) as exc:
        await service.lock_dates(db, trip.id, 1, override=True)

    assert exc.value.status_code == 409
    assert exc.value.detail["code"] == ErrorCode.INVALID_STAGE_TRANSITION
    current = await service.get_trip(db, trip.id)
    assert current.status == TripStatus.active
    assert current.locked_start_date is None
    active = (await db.execute(select(DateProposal).where(DateProposal.is_active.is_(True)))).scalar_one()
    assert (active.start_date, active.end_date) == (MAR_3, MAR_5)


async def test_lock_racing_cancel_keeps_trip_canceled(service, db, trip_factory, monkeypatch):
    trip = await trip_factory()
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)
    original = service.load_records

    async def load_then_cancel(session, trip_id):
        records = await original(session, trip_id)
        await session.execute(
            update(Trip)
            .where(Trip.id == trip_id)
            .values(status=TripStatus.canceled)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return records

    monkeypatch.setattr(service, "load_records", load_then_cancel)
    with pytest.raises(SchedulingError) as exc:
        await service.lock_dates(db, trip.id, 1, override=True)

    assert exc.value.detail["code"] == ErrorCode.TRIP_CANCELED
    current = await service.get_trip(db, trip.id)
    assert current.status == TripStatus.canceled
    assert current.locked_start_date is None


async def test_lock_refreshes_cached_trip(db, cache, clock, trip_factory):
    trip = await trip_factory()
    trips = TripService(cache, clock)
    service = SchedulingService(clock, cache)
    await open_windows(service, db, trip)
    await service.propose_dates(db, trip.id, 1, MAR_4, MAR_5)

    before = await trips.get_trip_by_id(db, 1, trip.id)
    assert before["status"] == "active"

    await service.lock_dates(db, trip.id, 1, override=True)

    after = await trips.get_trip_by_id(db, 1, trip.id)
    assert after["status"] == "locked"
    assert after["locked_start_date"] == "2026-03-04"
    assert after["locked_end_date"] == "2026-03-05"


@pytest.mark.parametrize(
    "already_held,expected_code",
    [
        (0, ErrorCode.WINDOW_CONFLICT),
        (1, ErrorCode.USER_WINDOW_CAP_REACHED),
    ],
)
async def test_concurrent_window_loser_never_exceeds_cap(
    service, db, trip_factory, monkeypatch, already_held, expected_code
):
    trip = await trip_factory()
    if already_held:
        await service.suggest_window(db, trip.id, 2, "Mar 3-6")
    original = service.load_records

    async def load_then_race(session, trip_id):
        records = await original(session, trip_id)
        # Same user, another request: takes the slot this one is about to use
        session.add(
            WindowProposal(
                trip_id=trip_id,
                user_id=2,
                source_text="Mar 10-12",
                start_date=date(2026, 3, 10),
                end_date=date(2026, 3, 12),
                precision=WindowPrecision.exact,
                is_bare_month=False,
                slot=already_held + 1,
                archived=False,
            )
        )
        await session.commit()
        return records

    monkeypatch.setattr(service, "load_records", load_then_race)
    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "Mar 20-22")

    assert exc.value.detail["code"] == expected_code
    held = await db.scalar(
        select(func.count(WindowProposal.id)).where(
            WindowProposal.user_id == 2, WindowProposal.archived.is_(False)
        )
    )
    assert held == already_held + 1
    assert held <= 2


async def test_canceled_trip_rejects_actions(service, db, trip_factory):
    trip = await trip_factory()
    trip.status = TripStatus.canceled
    await db.commit()

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "Mar 3-6")

    assert exc.value.detail["code"] == ErrorCode.TRIP_CANCELED


async def test_hosted_trip_skips_scheduling(service, db, trip_factory):
    trip = await trip_factory(mode=TripMode.hosted, locked_dates=(MAR_4, MAR_5))

    snapshot = await service.get_snapshot(db, trip.id, 2)
    assert snapshot.state == FunnelState.HOSTED_LOCKED

    with pytest.raises(SchedulingError) as exc:
        await service.suggest_window(db, trip.id, 2, "Mar 3-6")
    assert exc.value.detail["message"] == HOSTED_MESSAGE


async def test_outsider_cannot_read_snapshot(service, db, trip_factory):
    trip = await trip_factory(extra_users=1)

    with pytest.raises(SchedulingError) as exc:
        await service.get_snapshot(db, trip.id, 4)

    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == ErrorCode.NOT_A_PARTICIPANT


async def test_missing_trip(service, db):
    with pytest.raises(SchedulingError) as exc:
        await service.get_snapshot(db, 404, 1)

    assert exc.value.status_code == 404


async def test_trip_for_viewer_requires_participant(service, db, trip_factory):
    trip = await trip_factory(extra_users=1)

    assert (await service.get_trip_for_viewer(db, trip.id, 2)).id == trip.id
    with pytest.raises(SchedulingError) as exc:
        await service.get_trip_for_viewer(db, trip.id, 4)

    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == ErrorCode.NOT_A_PARTICIPANT
