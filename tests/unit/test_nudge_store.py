from datetime import datetime, timedelta, timezone

from tripsync.schemas.nudges.nudge import (
    Nudge,
    NudgeAudience,
    NudgeChannel,
    NudgePayload,
    NudgePriority,
    NudgeStatus,
    NudgeType,
)
from tripsync.services.nudges.nudge_store import NudgeStore, filter_suppressed_nudges

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def make_nudge(nudge_type=NudgeType.LEADER_CAN_LOCK_DATES, cooldown_hours=72):
    return Nudge(
        type=nudge_type,
        channel=NudgeChannel.CTA_HIGHLIGHT,
        audience=NudgeAudience.LEADER,
        priority=NudgePriority.HIGH,
        payload=NudgePayload(message="Ready to lock?"),
        dedupe_key=f"{nudge_type.value}:7",
        cooldown_hours=cooldown_hours,
    )


async def test_shown_nudge_is_suppressed_within_cooldown(nudge_store):
    nudge = make_nudge()
    await nudge_store.record_nudge_event(7, 1, nudge, NudgeStatus.SHOWN, NOW)

    assert await nudge_store.was_nudge_suppressed(7, 1, nudge.dedupe_key, 72, NOW + timedelta(hours=71))
    assert not await nudge_store.was_nudge_suppressed(7, 1, nudge.dedupe_key, 72, NOW + timedelta(hours=73))


async def test_suppression_is_per_user_and_trip(nudge_store):
    nudge = make_nudge()
    await nudge_store.record_nudge_event(7, 1, nudge, NudgeStatus.SHOWN, NOW)

    assert not await nudge_store.was_nudge_suppressed(7, 2, nudge.dedupe_key, 72, NOW)
    assert not await nudge_store.was_nudge_suppressed(8, 1, nudge.dedupe_key, 72, NOW)


async def test_dismissed_suppresses_but_clicked_does_not(nudge_store):
    dismissed, clicked = make_nudge(), make_nudge(NudgeType.LEADER_READY_TO_PROPOSE)
    await nudge_store.record_nudge_event(7, 1, dismissed, NudgeStatus.DISMISSED, NOW)
    await nudge_store.record_nudge_event(7, 1, clicked, NudgeStatus.CLICKED, NOW)

    assert await nudge_store.was_nudge_suppressed(7, 1, dismissed.dedupe_key, 72, NOW)
    assert not await nudge_store.was_nudge_suppressed(7, 1, clicked.dedupe_key, 72, NOW)


async def test_recording_twice_keeps_one_event(nudge_store, fake_redis):
    nudge = make_nudge()
    await nudge_store.record_nudge_event(7, 1, nudge, NudgeStatus.SHOWN, NOW)
    await nudge_store.record_nudge_event(7, 1, nudge, NudgeStatus.SHOWN, NOW + timedelta(hours=1))

    event_keys = [k for k in fake_redis.store if k.startswith("nudges:event:")]
    assert event_keys == ["nudges:event:7:1:leader_can_lock_dates:7:shown"]

    event = await nudge_store.get_nudge_event(7, 1, nudge.dedupe_key, NudgeStatus.SHOWN)
    assert event.created_at == NOW + timedelta(hours=1)


async def test_events_expire_after_ttl(nudge_store, fake_redis):
    await nudge_store.record_nudge_event(7, 1, make_nudge(), NudgeStatus.SHOWN, NOW)

    assert set(fake_redis.ttls.values()) == {604800}


async def test_most_recent_shown(nudge_store):
    assert await nudge_store.get_most_recent_shown(7, 1) is None

    first, second = make_nudge(), make_nudge(NudgeType.STRONG_OVERLAP_DETECTED)
    await nudge_store.record_nudges_shown(7, 1, [first, second], NOW)

    latest = await nudge_store.get_most_recent_shown(7, 1)
    assert latest.nudge_id == second.id
    assert latest.nudge_type == NudgeType.STRONG_OVERLAP_DETECTED


async def test_filter_suppressed_nudges_uses_each_cooldown(nudge_store):
    short = make_nudge(NudgeType.TRAVELER_TOO_MANY_WINDOWS, cooldown_hours=24)
    long = make_nudge(NudgeType.STRONG_OVERLAP_DETECTED, cooldown_hours=8760)
    fresh = make_nudge(NudgeType.LEADER_CAN_LOCK_DATES)
    await nudge_store.record_nudges_shown(7, 1, [short, long], NOW)

    later = NOW + timedelta(days=2)
    surviving = await filter_suppressed_nudges(nudge_store, 7, 1, [short, long, fresh], later)

    assert [n.type for n in surviving] == [NudgeType.TRAVELER_TOO_MANY_WINDOWS, NudgeType.LEADER_CAN_LOCK_DATES]


async def test_store_defaults_to_its_clock(cache, clock):
    store = NudgeStore(cache, clock)
    nudge = make_nudge()

    record = await store.record_nudge_event(7, 1, nudge, NudgeStatus.SHOWN)

    assert record.created_at == NOW
    assert await store.was_nudge_suppressed(7, 1, nudge.dedupe_key, 72)
