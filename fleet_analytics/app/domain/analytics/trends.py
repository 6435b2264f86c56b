"""
Trend rollups of metric observations.

Observations are grouped by calendar interval, then each interval is
compared with the previous one to tag the direction of change.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Iterable, List, Tuple

from fleet_analytics.app.models.metric_enums import TrendInterval
from fleet_analytics.app.schemas.analytics import TrendPoint, MetricTrend

# Changes within +/- this value are reported as "stable". Fixtures depend on it.
TREND_CHANGE_THRESHOLD = 0.01


def interval_key(ts: datetime, interval: TrendInterval) -> Tuple[str, tuple]:
    """
    Return (label, sort-independent group key) for a timestamp.

    day   -> "YYYY-MM-DD"
    week  -> "YYYY-Www" (ISO 8601 week of the ISO year)
    month -> "YYYY-MM"
    """
    if interval == TrendInterval.DAY:
        return ts.strftime("%Y-%m-%d"), (ts.year, ts.month, ts.day)
    if interval == TrendInterval.WEEK:
        iso_year, iso_week, _ = ts.isocalendar()
        return f"{iso_year}-W{iso_week:02d}", (iso_year, iso_week)
    return ts.strftime("%Y-%m"), (ts.year, ts.month)


def group_observations(
    rows: Iterable[Tuple[datetime, float]],
    interval: TrendInterval
) -> List[TrendPoint]:
    """Group (timestamp, value) rows into one TrendPoint per interval with data."""
    groups: "OrderedDict[tuple, dict]" = OrderedDict()
    for ts, value in rows:
        label, key = interval_key(ts, interval)
        group = groups.get(key)
        if group is None:
            groups[key] = {
                "period": label,
                "sum": value,
                "min": value,
                "max": value,
                "count": 1,
                "first": ts,
            }
            continue
        group["sum"] += value
        group["min"] = min(group["min"], value)
        group["max"] = max(group["max"], value)
        group["count"] += 1
        if ts < group["first"]:
            group["first"] = ts

    points = [
        TrendPoint(
            period=g["period"],
            avg_value=g["sum"] / g["count"],
            min_value=g["min"],
            max_value=g["max"],
            count=g["count"],
            first_timestamp=g["first"],
        )
        for g in groups.values()
    ]
    points.sort(key=lambda p: p.first_timestamp)
    return points


def classify_change(change: float) -> str:
    if change > TREND_CHANGE_THRESHOLD:
        return "up"
    if change < -TREND_CHANGE_THRESHOLD:
        return "down"
    return "stable"


def transform_trend_data(points: List[TrendPoint]) -> List[MetricTrend]:
    """
    Add change and direction to each interval.

    The first interval always has change 0 and is "stable".
    """
    trends = []
    previous = None
    for point in points:
        change = point.avg_value - previous.avg_value if previous is not None else 0.0
        trends.append(MetricTrend(
            period=point.period,
            value=point.avg_value,
            change=change,
            trend=classify_change(change),
            count=point.count,
            min_value=point.min_value,
            max_value=point.max_value,
            first_timestamp=point.first_timestamp,
        ))
        previous = point
    return trends
