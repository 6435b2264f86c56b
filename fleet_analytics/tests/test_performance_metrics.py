"""
Metric recorder and aggregation query tests.
"""

import pytest
from datetime import datetime, timedelta

from fleet_analytics.app.core.exceptions import DataValidationError, ImmutableRecordError
from fleet_analytics.app.models.metric_enums import MetricType, TrendInterval
from fleet_analytics.app.services.performance_metrics import PerformanceMetricService

START = datetime(2024, 1, 1)
END = datetime(2024, 3, 1)


async def record_all(db, rows):
    for vehicle_id, metric_type, ts, value in rows:
        await PerformanceMetricService.record(db, vehicle_id, metric_type, ts, value)
    await db.commit()


@pytest.mark.asyncio
async def test_record_appends_duplicates(db_session):
    ts = datetime(2024, 1, 2, 10)
    await PerformanceMetricService.record(db_session, "V1", "fuelEfficiency", ts, 9.5, "km/l")
    await PerformanceMetricService.record(db_session, "V1", MetricType.FUEL_EFFICIENCY, ts, 9.5, "km/l")
    await db_session.commit()

    rows = await PerformanceMetricService.get_vehicle_metrics(db_session, "V1", MetricType.FUEL_EFFICIENCY)
    assert len(rows) == 2
    assert {r.unit for r in rows} == {"km/l"}


@pytest.mark.asyncio
@pytest.mark.parametrize("metric_type,value", [
    ("speed", 1.0),
    ("fuelEfficiency", float("nan")),
    ("utilization", float("inf")),
    ("utilization", True),
    ("utilization", "0.5"),
])
async def test_record_rejects_invalid_input(db_session, metric_type, value):
    with pytest.raises(DataValidationError):
        await PerformanceMetricService.record(db_session, "V1", metric_type, START, value)


@pytest.mark.asyncio
async def test_observations_are_immutable(db_session):
    observation = await PerformanceMetricService.record(
        db_session, "V1", MetricType.UTILIZATION, START, 0.4
    )
    await db_session.commit()

    observation.value = 0.9
    with pytest.raises(ImmutableRecordError):
        await db_session.flush()


@pytest.mark.asyncio
async def test_vehicle_metrics_newest_first_and_limited(db_session):
    rows = [("V1", MetricType.UTILIZATION, START + timedelta(hours=h), h / 10) for h in range(5)]
    await record_all(db_session, rows)

    metrics = await PerformanceMetricService.get_vehicle_metrics(
        db_session, "V1", MetricType.UTILIZATION, limit=3
    )
    assert [m.value for m in metrics] == [0.4, 0.3, 0.2]


@pytest.mark.asyncio
async def test_daily_trend(db_session):
    await record_all(db_session, [
        ("V1", MetricType.FUEL_EFFICIENCY, datetime(2024, 1, 1, 8), 10.0),
        ("V1", MetricType.FUEL_EFFICIENCY, datetime(2024, 1, 1, 18), 12.0),
        ("V1", MetricType.FUEL_EFFICIENCY, datetime(2024, 1, 2, 9), 11.005),
        ("V1", MetricType.FUEL_EFFICIENCY, datetime(2024, 1, 4, 9), 9.0),
        ("V2", MetricType.FUEL_EFFICIENCY, datetime(2024, 1, 1, 9), 50.0),
    ])

    trend = await PerformanceMetricService.get_metric_trend(
        db_session, "V1", MetricType.FUEL_EFFICIENCY, START, END, TrendInterval.DAY
    )

    assert [t.period for t in trend] == ["2024-01-01", "2024-01-02", "2024-01-04"]
    assert trend[0].value == pytest.approx(11.0)
    assert trend[0].change == 0
    assert trend[0].trend == "stable"
    assert trend[0].count == 2
    assert trend[0].min_value == 10.0
    assert trend[0].max_value == 12.0
    # A change of 0.005 is inside the threshold
    assert trend[1].trend == "stable"
    assert trend[2].change == pytest.approx(-2.005)
    assert trend[2].trend == "down"


@pytest.mark.asyncio
async def test_weekly_and_monthly_labels(db_session):
    await record_all(db_session, [
        # 2024-12-30 belongs to ISO week 1 of 2025
        ("V1", MetricType.UTILIZATION, datetime(2024, 12, 30, 10), 0.5),
        ("V1", MetricType.UTILIZATION, datetime(2025, 1, 8, 10), 0.8),
    ])
    start, end = datetime(2024, 12, 1), datetime(2025, 2, 1)

    weekly = await PerformanceMetricService.get_metric_trend(
        db_session, "V1", MetricType.UTILIZATION, start, end, "week"
    )
    assert [t.period for t in weekly] == ["2025-W01", "2025-W02"]
    assert weekly[1].trend == "up"

    monthly = await PerformanceMetricService.get_metric_trend(
        db_session, "V1", MetricType.UTILIZATION, start, end, "month"
    )
    assert [t.period for t in monthly] == ["2024-12", "2025-01"]


@pytest.mark.asyncio
async def test_trend_rejects_unknown_interval(db_session):
    with pytest.raises(DataValidationError):
        await PerformanceMetricService.get_metric_trend(
            db_session, "V1", MetricType.UTILIZATION, START, END, "hour"
        )


@pytest.mark.asyncio
async def test_fleet_averages_empty_window(db_session):
    stats = await PerformanceMetricService.get_fleet_metric_averages(
        db_session, MetricType.UTILIZATION, START, END
    )
    assert stats.avg_value == 0
    assert stats.min_value == 0
    assert stats.max_value == 0
    assert stats.std_dev == 0
    assert stats.count == 0


@pytest.mark.asyncio
async def test_fleet_averages_and_comparison(db_session):
    ts = datetime(2024, 1, 10)
    await record_all(db_session, [
        ("V1", MetricType.UTILIZATION, ts, 0.5),
        ("V2", MetricType.UTILIZATION, ts, 0.7),
        ("V3", MetricType.UTILIZATION, ts, 0.9),
    ])

    stats = await PerformanceMetricService.get_fleet_metric_averages(
        db_session, MetricType.UTILIZATION, START, END
    )
    assert stats.avg_value == pytest.approx(0.7)
    assert stats.min_value == pytest.approx(0.5)
    assert stats.max_value == pytest.approx(0.9)
    assert stats.std_dev == pytest.approx(0.163299, abs=1e-5)
    assert stats.count == 3

    comparison = await PerformanceMetricService.compare_vehicle_to_fleet(
        db_session, "V2", MetricType.UTILIZATION, START, END
    )
    assert comparison.vehicle_avg == pytest.approx(0.7)
    assert comparison.difference == pytest.approx(0.0, abs=1e-9)
    assert comparison.percentile_rank == pytest.approx(50.0)

    top = await PerformanceMetricService.compare_vehicle_to_fleet(
        db_session, "V3", MetricType.UTILIZATION, START, END
    )
    assert top.percentile_rank == pytest.approx(100.0)
    assert top.percent_difference == pytest.approx((0.9 - 0.7) / 0.7 * 100)


@pytest.mark.asyncio
async def test_compare_vehicle_without_observations(db_session):
    await record_all(db_session, [("V1", MetricType.UTILIZATION, datetime(2024, 1, 10), 0.5)])

    comparison = await PerformanceMetricService.compare_vehicle_to_fleet(
        db_session, "V9", MetricType.UTILIZATION, START, END
    )
    assert comparison.vehicle_avg == 0
    assert comparison.difference == 0
    assert comparison.percentile_rank == 0
    assert comparison.fleet_avg == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_single_vehicle_rank_is_zero(db_session):
    await record_all(db_session, [("V1", MetricType.UTILIZATION, datetime(2024, 1, 10), 0.5)])

    comparison = await PerformanceMetricService.compare_vehicle_to_fleet(
        db_session, "V1", MetricType.UTILIZATION, START, END
    )
    assert comparison.percentile_rank == 0
    assert comparison.percent_difference == 0


@pytest.mark.asyncio
async def test_rank_ties_break_on_vehicle_id(db_session):
    ts = datetime(2024, 1, 10)
    await record_all(db_session, [
        ("VB", MetricType.COST_PER_HOUR, ts, 25.0),
        ("VA", MetricType.COST_PER_HOUR, ts, 25.0),
    ])

    a = await PerformanceMetricService.compare_vehicle_to_fleet(db_session, "VA", "costPerHour", START, END)
    b = await PerformanceMetricService.compare_vehicle_to_fleet(db_session, "VB", "costPerHour", START, END)
    assert a.percentile_rank == 0
    assert b.percentile_rank == 100
