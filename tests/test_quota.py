import asyncio
from datetime import datetime, timezone

import pytest

from vouchbot.core import ValidationError
from vouchbot.utils.day_time import day_key

from conftest import DAY


@pytest.mark.asyncio
async def test_concurrent_increments_never_exceed_limit(store):
    results = await asyncio.gather(*(
        store.try_increment_quota("u-1", "als", "raids", 3, date=DAY) for _ in range(12)
    ))

    assert sum(r.success for r in results) == 3
    assert await store.get_quota_usage("u-1", "als", "raids", DAY) == 3
    assert max(r.current_usage for r in results) == 3


@pytest.mark.asyncio
async def test_limit_reached_then_other_gamemode_still_free(store):
    first = await store.try_increment_quota("u-1", "als", "raids", 2, user_tag="carry#1", date=DAY)
    second = await store.try_increment_quota("u-1", "als", "raids", 2, date=DAY)
    third = await store.try_increment_quota("u-1", "als", "raids", 2, date=DAY)
    other = await store.try_increment_quota("u-1", "als", "story", 6, date=DAY)

    assert (first.success, first.current_usage) == (True, 1)
    assert (second.success, second.current_usage) == (True, 2)
    assert (third.success, third.current_usage) == (False, 2)
    assert (other.success, other.current_usage) == (True, 1)
    assert await store.get_quota_usage("u-1", "als", "raids", DAY) == 2


@pytest.mark.asyncio
async def test_usage_read_reflects_latest_increment(store):
    assert await store.get_quota_usage("u-1", "av", "story", DAY) == 0
    await store.try_increment_quota("u-1", "av", "story", 5, date=DAY)
    assert await store.get_quota_usage("u-1", "av", "story", DAY) == 1
    await store.try_increment_quota("u-1", "av", "story", 5, date=DAY)
    assert await store.get_quota_usage("u-1", "av", "story", DAY) == 2


@pytest.mark.asyncio
async def test_usage_is_per_user_and_per_day(store):
    await store.try_increment_quota("u-1", "av", "story", 1, date=DAY)
    other_user = await store.try_increment_quota("u-2", "av", "story", 1, date=DAY)
    next_day = await store.try_increment_quota("u-1", "av", "story", 1, date="2026-03-15")

    assert other_user.success
    assert next_day.success
    assert await store.get_quota_usage("u-1", "av", "story", DAY) == 1


@pytest.mark.asyncio
async def test_zero_limit_never_succeeds(store):
    result = await store.try_increment_quota("u-1", "av", "rift", 0, date=DAY)
    assert not result.success
    assert result.current_usage == 0


@pytest.mark.asyncio
async def test_increment_requires_keys(store):
    with pytest.raises(ValidationError):
        await store.try_increment_quota("", "av", "story", 1, date=DAY)


@pytest.mark.asyncio
async def test_release_hands_back_a_slot_and_floors_at_zero(store):
    await store.try_increment_quota("u-1", "als", "breach", 1, date=DAY)
    assert not (await store.try_increment_quota("u-1", "als", "breach", 1, date=DAY)).success

    assert await store.release_quota("u-1", "als", "breach", DAY) == 0
    assert await store.release_quota("u-1", "als", "breach", DAY) == 0
    assert await store.release_quota("u-9", "als", "breach", DAY) == 0
    assert (await store.try_increment_quota("u-1", "als", "breach", 1, date=DAY)).success


@pytest.mark.asyncio
async def test_usage_by_date_lists_every_gamemode(store):
    await store.try_increment_quota("u-1", "als", "story", 6, user_tag="carry#1", date=DAY)
    await store.try_increment_quota("u-1", "als", "raids", 5, user_tag="carry#1", date=DAY)
    await store.try_increment_quota("u-1", "als", "raids", 5, user_tag="carry#1", date=DAY)

    rows = await store.get_quota_usage_by_date("u-1", DAY)

    assert [(r.game, r.gamemode, r.usage_count) for r in rows] == [("als", "raids", 2), ("als", "story", 1)]
    assert rows[0].user_tag == "carry#1"


@pytest.mark.asyncio
async def test_reservation_needs_message_activity(store):
    result = await store.check_and_reserve_free_carry("u-1", "carry#1", "als", "raids", DAY)
    assert not result.eligible
    assert result.reason == "No message activity found today"


@pytest.mark.asyncio
async def test_reservation_needs_enough_messages(store):
    for _ in range(3):
        await store.increment_user_messages("u-1", "carry#1", DAY)

    result = await store.check_and_reserve_free_carry("u-1", "carry#1", "als", "raids", DAY)

    assert not result.eligible
    assert result.reason == "Need at least 5 messages today (currently 3)"


@pytest.mark.asyncio
async def test_reservation_uses_configured_limits(store):
    await store.quota.increment_messages("u-1", "carry#1", DAY, inc=5)

    unsupported = await store.check_and_reserve_free_carry("u-1", "carry#1", "als", "towers", DAY)
    first = await store.check_and_reserve_free_carry("u-1", "carry#1", "als", "breach", DAY)
    second = await store.check_and_reserve_free_carry("u-1", "carry#1", "als", "breach", DAY)

    assert unsupported.reason == "This gamemode does not support free carries"
    assert first.eligible and (first.limit, first.used) == (1, 1)
    assert not second.eligible
    assert second.reason == "Daily limit reached for this gamemode (1/1)"
    assert await store.get_quota_usage("u-1", "als", "breach", DAY) == 1


@pytest.mark.asyncio
async def test_daily_activity_read_after_write(store):
    await store.increment_user_messages("u-1", "carry#1", DAY)
    first = await store.get_daily_activity("u-1", DAY)
    await store.increment_user_messages("u-1", "carry#1", DAY)
    await store.increment_free_requests("u-1", DAY)
    second = await store.get_daily_activity("u-1", DAY)

    assert first.message_count == 1
    assert second.message_count == 2
    assert second.free_carry_requests_used == 1


@pytest.mark.asyncio
async def test_free_request_counter_creates_row(store):
    await store.increment_free_requests("u-2", DAY)
    activity = await store.get_daily_activity("u-2", DAY)
    assert (activity.message_count, activity.free_carry_requests_used) == (0, 1)


def test_day_key_uses_reference_timezone():
    late_evening = int(datetime(2026, 7, 1, 23, 30, tzinfo=timezone.utc).timestamp() * 1000)

    assert day_key(late_evening) == "2026-07-01"
    assert day_key(late_evening, "Europe/London") == "2026-07-02"
    assert day_key(0) == "1970-01-01"
