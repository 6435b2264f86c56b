"""
Performance Metric Service.

Records metric observations and answers trend, fleet statistics and
vehicle comparison queries over them. Every query recomputes from the
stored observations.
"""

import math
import logging
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.core.exceptions import DataValidationError
from fleet_analytics.app.domain.analytics.time_windows import to_utc_naive
from fleet_analytics.app.domain.analytics import statistics
from fleet_analytics.app.domain.analytics.trends import group_observations, transform_trend_data
from fleet_analytics.app.models.metric_enums import MetricType, TrendInterval
from fleet_analytics.app.models.metric_observation import MetricObservation
from fleet_analytics.app.schemas.analytics import (
    MetricObservationResponse, MetricTrend, FleetMetricStats, VehicleFleetComparison, VehicleRanking
)

logger = logging.getLogger("fleet_analytics.metrics")


def parse_metric_type(metric_type: Union[str, MetricType]) -> MetricType:
    try:
        return MetricType(metric_type)
    except ValueError:
        raise DataValidationError(
            f"Unrecognized metric type '{metric_type}'",
            details={"allowed": [m.value for m in MetricType]}
        )


def parse_interval(interval: Union[str, TrendInterval]) -> TrendInterval:
    try:
        return TrendInterval(interval)
    except ValueError:
        raise DataValidationError(
            f"Unsupported trend interval '{interval}'",
            details={"allowed": [i.value for i in TrendInterval]}
        )


def _window(start: Optional[datetime], end: Optional[datetime]) -> list:
    conditions = []
    if start:
        conditions.append(MetricObservation.timestamp >= to_utc_naive(start))
    if end:
        conditions.append(MetricObservation.timestamp <= to_utc_naive(end))
    return conditions


class PerformanceMetricService:

    @staticmethod
    async def record(
        db: AsyncSession,
        vehicle_id: str,
        metric_type: Union[str, MetricType],
        timestamp: datetime,
        value: float,
        unit: Optional[str] = None
    ) -> MetricObservation:
        """
        Append one observation.

        Observations are never merged: two records with the same vehicle,
        type and timestamp both persist.

        Raises:
            DataValidationError: Unknown metric type or non-finite value
        """
        metric = parse_metric_type(metric_type)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise DataValidationError(
                "Metric value must be a finite number",
                details={"metric_type": metric.value, "value": repr(value)}
            )

        observation = MetricObservation(
            vehicle_id=vehicle_id,
            metric_type=metric.value,
            timestamp=to_utc_naive(timestamp),
            value=float(value),
            unit=unit,
        )
        db.add(observation)
        await db.flush()

        logger.debug(
            "Recorded metric",
            extra={"vehicle_id": vehicle_id, "metric_type": metric.value, "value": value}
        )
        return observation

    @staticmethod
    async def get_vehicle_metrics(
        db: AsyncSession,
        vehicle_id: str,
        metric_type: Union[str, MetricType],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100
    ) -> List[MetricObservationResponse]:
        metric = parse_metric_type(metric_type)
        stmt = select(MetricObservation).where(
            MetricObservation.vehicle_id == vehicle_id,
            MetricObservation.metric_type == metric.value,
            *_window(start, end)
        ).order_by(MetricObservation.timestamp.desc(), MetricObservation.id.desc()).limit(limit)

        result = await db.execute(stmt)
        return [MetricObservationResponse.model_validate(o) for o in result.scalars().all()]

    @staticmethod
    async def get_metric_trend(
        db: AsyncSession,
        vehicle_id: str,
        metric_type: Union[str, MetricType],
        start: datetime,
        end: datetime,
        interval: Union[str, TrendInterval] = TrendInterval.DAY
    ) -> List[MetricTrend]:
        """
        Per-interval averages for one vehicle with the change between
        consecutive intervals. Intervals without observations are omitted.
        """
        metric = parse_metric_type(metric_type)
        interval = parse_interval(interval)

        stmt = select(MetricObservation.timestamp, MetricObservation.value).where(
            MetricObservation.vehicle_id == vehicle_id,
            MetricObservation.metric_type == metric.value,
            *_window(start, end)
        ).order_by(MetricObservation.timestamp)

        result = await db.execute(stmt)
        points = group_observations(result.all(), interval)
        return transform_trend_data(points)

    @staticmethod
    async def get_fleet_metric_averages(
        db: AsyncSession,
        metric_type: Union[str, MetricType],
        start: datetime,
        end: datetime
    ) -> FleetMetricStats:
        """Fleet-wide statistics with population standard deviation."""
        metric = parse_metric_type(metric_type)
        value = MetricObservation.value

        stmt = select(
            func.count(MetricObservation.id).label("count"),
            func.sum(value).label("total"),
            func.sum(value * value).label("total_squares"),
            func.avg(value).label("avg_value"),
            func.min(value).label("min_value"),
            func.max(value).label("max_value"),
        ).where(
            MetricObservation.metric_type == metric.value,
            *_window(start, end)
        )

        row = (await db.execute(stmt)).one()
        if not row.count:
            return FleetMetricStats()

        return FleetMetricStats(
            avg_value=row.avg_value,
            min_value=row.min_value,
            max_value=row.max_value,
            std_dev=statistics.population_std_dev(row.count, row.total, row.total_squares),
            count=row.count,
        )

    @staticmethod
    async def compare_vehicle_to_fleet(
        db: AsyncSession,
        vehicle_id: str,
        metric_type: Union[str, MetricType],
        start: datetime,
        end: datetime
    ) -> VehicleFleetComparison:
        """
        Compare a vehicle's average to the fleet average.

        The percentile rank places the vehicle among all vehicles with
        observations, sorted ascending by their own average.
        """
        metric = parse_metric_type(metric_type)
        vehicle_avg = func.avg(MetricObservation.value).label("avg_value")

        stmt = select(MetricObservation.vehicle_id, vehicle_avg).where(
            MetricObservation.metric_type == metric.value,
            *_window(start, end)
        ).group_by(MetricObservation.vehicle_id).order_by(vehicle_avg, MetricObservation.vehicle_id)

        ranked = (await db.execute(stmt)).all()
        fleet = await PerformanceMetricService.get_fleet_metric_averages(db, metric, start, end)

        averages = {row.vehicle_id: row.avg_value for row in ranked}
        if vehicle_id not in averages:
            return VehicleFleetComparison(fleet_avg=fleet.avg_value)

        own = averages[vehicle_id]
        return VehicleFleetComparison(
            vehicle_avg=own,
            fleet_avg=fleet.avg_value,
            difference=own - fleet.avg_value,
            percent_difference=statistics.percent_difference(own, fleet.avg_value),
            percentile_rank=statistics.percentile_rank([row.vehicle_id for row in ranked], vehicle_id),
        )

    @staticmethod
    async def get_top_vehicles_by_metric_total(
        db: AsyncSession,
        metric_type: Union[str, MetricType],
        start: datetime,
        end: datetime,
        limit: int = 5
    ) -> List[VehicleRanking]:
        """Vehicles ranked by the sum of their observations, highest first."""
        metric = parse_metric_type(metric_type)
        total = func.sum(MetricObservation.value).label("total")

        stmt = select(MetricObservation.vehicle_id, total).where(
            MetricObservation.metric_type == metric.value,
            *_window(start, end)
        ).group_by(MetricObservation.vehicle_id).order_by(
            total.desc(), MetricObservation.vehicle_id
        ).limit(limit)

        result = await db.execute(stmt)
        return [VehicleRanking(vehicle_id=row.vehicle_id, total=row.total) for row in result]
