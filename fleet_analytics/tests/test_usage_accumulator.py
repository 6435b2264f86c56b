"""
Bucket accumulation tests.

Covers window assignment, additive merging, efficiency recomputation,
order independence and the concurrent upsert path.
"""

import asyncio
import itertools
import pytest
from datetime import datetime, timedelta, timezone

from fleet_analytics.app.core.exceptions import DataValidationError
from fleet_analytics.app.domain.analytics.time_windows import hour_window
from fleet_analytics.app.models.metric_enums import UsageRankingField
from fleet_analytics.app.services.usage_stats import UsageDelta, UsageStatsService, compute_efficiency

DAY = datetime(2024, 1, 1)
WINDOW_START = DAY
WINDOW_END = DAY + timedelta(days=1)


def at(hour, minute=0):
    return DAY.replace(hour=hour, minute=minute)


def test_hour_window_floors_to_hour():
    start, end = hour_window(datetime(2024, 1, 1, 10, 59, 59, 999999))
    assert start == datetime(2024, 1, 1, 10)
    assert end == datetime(2024, 1, 1, 11)


def test_hour_window_converts_aware_to_utc():
    plus_two = timezone(timedelta(hours=2))
    start, _ = hour_window(datetime(2024, 1, 1, 12, 30, tzinfo=plus_two))
    assert start == datetime(2024, 1, 1, 10)


def test_hour_window_out_of_range():
    with pytest.raises(DataValidationError):
        hour_window(datetime(9999, 12, 31, 23, 30))


def test_compute_efficiency():
    assert compute_efficiency(50.0, 5.0) == 10.0
    assert compute_efficiency(0.0, 5.0) == 0.0
    assert compute_efficiency(50.0, 0.0) is None
    assert compute_efficiency(50.0, None) is None


@pytest.mark.asyncio
async def test_readings_merge_into_hour_buckets(db_session):
    """10:05 and 10:40 share a bucket, 11:10 opens the next one."""
    await UsageStatsService.apply_reading(
        db_session, "V1", at(10, 5), UsageDelta(distance_traveled=10.0, fuel_consumed=1.0)
    )
    await UsageStatsService.apply_reading(
        db_session, "V1", at(10, 40), UsageDelta(distance_traveled=15.0, fuel_consumed=1.0)
    )
    await UsageStatsService.apply_reading(
        db_session, "V1", at(11, 10), UsageDelta(distance_traveled=20.0, fuel_consumed=2.0)
    )
    await db_session.commit()

    buckets = await UsageStatsService.get_vehicle_usage_stats(db_session, "V1")
    assert len(buckets) == 2

    eleven, ten = buckets  # newest first
    assert ten.window_start == at(10)
    assert ten.window_end == at(11)
    assert ten.distance_traveled == pytest.approx(25.0)
    assert ten.fuel_consumed == pytest.approx(2.0)
    assert ten.efficiency == pytest.approx(12.5)

    assert eleven.window_start == at(11)
    assert eleven.distance_traveled == pytest.approx(20.0)
    assert eleven.fuel_consumed == pytest.approx(2.0)
    assert eleven.efficiency == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_apply_returns_post_increment_bucket(db_session):
    first = await UsageStatsService.apply_reading(
        db_session, "V1", at(9), UsageDelta(hours_operated=0.01, idle_time=0.01)
    )
    second = await UsageStatsService.apply_reading(
        db_session, "V1", at(9, 30), UsageDelta(hours_operated=0.01, idle_time=0.0)
    )

    assert first.id == second.id
    assert second.hours_operated == pytest.approx(0.02)
    assert second.idle_time == pytest.approx(0.01)
    assert second.distance_traveled == 0.0
    assert second.fuel_consumed is None
    assert second.efficiency is None


@pytest.mark.asyncio
async def test_efficiency_uses_totals_not_latest_reading(db_session):
    # Engine-only reading first, fuel data later in the same hour
    await UsageStatsService.apply_reading(db_session, "V1", at(8), UsageDelta(hours_operated=0.01))
    bucket = await UsageStatsService.apply_reading(
        db_session, "V1", at(8, 20), UsageDelta(distance_traveled=12.0, fuel_consumed=3.0)
    )
    assert bucket.efficiency == pytest.approx(4.0)

    bucket = await UsageStatsService.apply_reading(
        db_session, "V1", at(8, 40), UsageDelta(distance_traveled=0.0, fuel_consumed=1.0)
    )
    assert bucket.efficiency == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_order_independence(session_factory):
    deltas = [
        (at(10, 5), UsageDelta(distance_traveled=50.0, fuel_consumed=5.0)),
        (at(10, 40), UsageDelta(distance_traveled=30.0, fuel_consumed=3.0)),
        (at(10, 50), UsageDelta(hours_operated=0.01, idle_time=0.01)),
    ]

    results = []
    for index, ordering in enumerate(itertools.permutations(deltas)):
        vehicle_id = f"V{index}"
        async with session_factory() as db:
            for ts, delta in ordering:
                bucket = await UsageStatsService.apply_reading(db, vehicle_id, ts, delta)
            await db.commit()
        results.append((
            round(bucket.distance_traveled, 6),
            round(bucket.fuel_consumed, 6),
            round(bucket.hours_operated, 6),
            round(bucket.idle_time, 6),
            round(bucket.efficiency, 6),
        ))

    assert len(set(results)) == 1
    assert results[0] == (80.0, 8.0, 0.01, 0.01, 10.0)


@pytest.mark.asyncio
async def test_concurrent_increments_lose_nothing(session_factory):
    """Separate sessions hitting the same bucket all land in one row."""

    async def apply_one():
        async with session_factory() as db:
            await UsageStatsService.apply_reading(db, "V1", at(14, 15), UsageDelta(hours_operated=0.01))
            await db.commit()

    await asyncio.gather(*(apply_one() for _ in range(10)))

    async with session_factory() as db:
        buckets = await UsageStatsService.get_vehicle_usage_stats(db, "V1")

    assert len(buckets) == 1
    assert buckets[0].hours_operated == pytest.approx(0.1)


@pytest.mark.asyncio
@pytest.mark.parametrize("delta", [
    UsageDelta(distance_traveled=-1.0),
    UsageDelta(fuel_consumed=float("nan")),
    UsageDelta(hours_operated=float("inf")),
    UsageDelta(),
])
async def test_invalid_deltas_rejected(db_session, delta):
    with pytest.raises(DataValidationError):
        await UsageStatsService.apply_reading(db_session, "V1", at(10), delta)

    assert await UsageStatsService.get_vehicle_usage_stats(db_session, "V1") == []


@pytest.mark.asyncio
async def test_aggregate_and_fleet_stats(db_session):
    await UsageStatsService.apply_reading(
        db_session, "V1", at(10), UsageDelta(hours_operated=1.0, distance_traveled=40.0, fuel_consumed=4.0)
    )
    await UsageStatsService.apply_reading(
        db_session, "V1", at(11), UsageDelta(hours_operated=2.0, distance_traveled=60.0, fuel_consumed=10.0)
    )
    await UsageStatsService.apply_reading(
        db_session, "V2", at(10), UsageDelta(hours_operated=0.5, idle_time=0.25)
    )
    await db_session.commit()

    v1 = await UsageStatsService.get_aggregate_vehicle_stats(db_session, "V1", WINDOW_START, WINDOW_END)
    assert v1.total_hours == pytest.approx(3.0)
    assert v1.total_distance == pytest.approx(100.0)
    assert v1.total_fuel == pytest.approx(14.0)
    assert v1.record_count == 2
    assert v1.avg_efficiency == pytest.approx((10.0 + 6.0) / 2)

    fleet = await UsageStatsService.get_fleet_usage_stats(db_session, WINDOW_START, WINDOW_END)
    assert fleet.unique_vehicles == 2
    assert fleet.record_count == 3
    assert fleet.total_hours == pytest.approx(3.5)
    assert fleet.total_idle == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_stats_are_zero_for_empty_window(db_session):
    stats = await UsageStatsService.get_aggregate_vehicle_stats(db_session, "V404", WINDOW_START, WINDOW_END)
    assert stats.total_hours == 0
    assert stats.record_count == 0
    assert stats.avg_efficiency == 0

    fleet = await UsageStatsService.get_fleet_usage_stats(db_session, WINDOW_START, WINDOW_END)
    assert fleet.unique_vehicles == 0


@pytest.mark.asyncio
async def test_window_excludes_partial_buckets(db_session):
    await UsageStatsService.apply_reading(db_session, "V1", at(10, 30), UsageDelta(hours_operated=1.0))
    await db_session.commit()

    # Bucket [10:00, 11:00) is not inside [10:30, 12:00]
    stats = await UsageStatsService.get_aggregate_vehicle_stats(db_session, "V1", at(10, 30), at(12))
    assert stats.record_count == 0

    stats = await UsageStatsService.get_aggregate_vehicle_stats(db_session, "V1", at(10), at(11))
    assert stats.record_count == 1


@pytest.mark.asyncio
async def test_top_vehicles_by_metric(db_session):
    for vehicle_id, hours in [("V1", 1.0), ("V2", 3.0), ("V3", 2.0), ("V4", 3.0)]:
        await UsageStatsService.apply_reading(db_session, vehicle_id, at(10), UsageDelta(hours_operated=hours))
    await db_session.commit()

    top = await UsageStatsService.get_top_vehicles_by_metric(
        db_session, UsageRankingField.HOURS_OPERATED, WINDOW_START, WINDOW_END, limit=3
    )
    assert [r.vehicle_id for r in top] == ["V2", "V4", "V3"]
    assert top[0].total == pytest.approx(3.0)
