"""
Usage Stats Service.

Accumulates sensor readings into hourly usage buckets and answers usage
queries over them.
"""

import math
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func, case, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.core.exceptions import DataValidationError
from fleet_analytics.app.db.upsert import upsert_insert
from fleet_analytics.app.domain.analytics.time_windows import hour_window, to_utc_naive
from fleet_analytics.app.domain.analytics.statistics import zero_if_none
from fleet_analytics.app.models.metric_enums import UsageRankingField
from fleet_analytics.app.models.usage_stats_bucket import UsageStatsBucket
from fleet_analytics.app.schemas.analytics import (
    UsageBucketResponse, AggregateUsageStats, FleetUsageStats, VehicleRanking
)
from fleet_analytics.app.services.sequence_guard import claim_sequence

logger = logging.getLogger("fleet_analytics.usage_stats")


@dataclass(frozen=True)
class UsageDelta:
    """Increment carried by one reading. None means "not reported"."""
    hours_operated: Optional[float] = None
    distance_traveled: Optional[float] = None
    fuel_consumed: Optional[float] = None
    idle_time: Optional[float] = None

    def present(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def validate(self) -> None:
        values = self.present()
        if not values:
            raise DataValidationError("Usage delta carries no fields")
        for name, value in values.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise DataValidationError(f"{name} must be a finite number", details={name: value})
            if value < 0:
                raise DataValidationError(f"{name} cannot be negative", details={name: value})


def compute_efficiency(distance: Optional[float], fuel: Optional[float]) -> Optional[float]:
    """distance / fuel when fuel > 0, else undefined."""
    if fuel is None or fuel <= 0:
        return None
    return (distance or 0.0) / fuel


def _in_window(start: Optional[datetime], end: Optional[datetime]) -> list:
    conditions = []
    if start:
        conditions.append(UsageStatsBucket.window_start >= to_utc_naive(start))
    if end:
        conditions.append(UsageStatsBucket.window_end <= to_utc_naive(end))
    return conditions


class UsageStatsService:

    @staticmethod
    async def apply_reading(
        db: AsyncSession,
        vehicle_id: str,
        timestamp: datetime,
        delta: UsageDelta,
        sequence: Optional[int] = None
    ) -> Optional[UsageBucketResponse]:
        """
        Add a reading's delta to the vehicle's bucket for the reading's hour.

        The bucket is created or incremented by a single
        INSERT .. ON CONFLICT DO UPDATE .. RETURNING statement, so concurrent
        readings for the same vehicle and hour never lose updates.
        Efficiency is recomputed from the new totals in the same statement.

        Args:
            db: Database session (caller commits)
            vehicle_id: Vehicle the reading belongs to
            timestamp: Reading time; selects the hour window
            delta: Fields to add
            sequence: Optional producer sequence for the duplicate guard

        Returns:
            The bucket after the increment, or None when the sequence was stale

        Raises:
            DataValidationError: If a delta field is negative or not finite
        """
        delta.validate()

        if sequence is not None and not await claim_sequence(db, vehicle_id, sequence):
            return None

        window_start, window_end = hour_window(timestamp)
        table = UsageStatsBucket.__table__
        present = delta.present()

        stmt = upsert_insert(db, table).values(
            vehicle_id=vehicle_id,
            window_start=window_start,
            window_end=window_end,
            hours_operated=delta.hours_operated or 0.0,
            distance_traveled=delta.distance_traveled or 0.0,
            fuel_consumed=delta.fuel_consumed,
            idle_time=delta.idle_time,
            efficiency=compute_efficiency(delta.distance_traveled, delta.fuel_consumed),
        )

        # Totals after this increment, expressed against the existing row
        totals = {}
        set_ = {"updated_at": func.now()}
        for name in ("hours_operated", "distance_traveled", "fuel_consumed", "idle_time"):
            if name in present:
                totals[name] = func.coalesce(table.c[name], 0.0) + stmt.excluded[name]
                set_[name] = totals[name]
            else:
                totals[name] = table.c[name]

        fuel_total = totals["fuel_consumed"]
        set_["efficiency"] = case(
            (fuel_total > 0, func.coalesce(totals["distance_traveled"], 0.0) / fuel_total),
            else_=None,
        )

        stmt = stmt.on_conflict_do_update(
            index_elements=["vehicle_id", "window_start", "window_end"],
            set_=set_,
        ).returning(*table.c)

        result = await db.execute(stmt)
        row = result.one()

        logger.debug(
            "Accumulated reading",
            extra={"vehicle_id": vehicle_id, "window_start": window_start.isoformat(), **present}
        )
        return UsageBucketResponse.model_validate(dict(row._mapping))

    @staticmethod
    async def get_vehicle_usage_stats(
        db: AsyncSession,
        vehicle_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 10
    ) -> List[UsageBucketResponse]:
        """Buckets for one vehicle, newest window first."""
        stmt = select(UsageStatsBucket).where(
            UsageStatsBucket.vehicle_id == vehicle_id,
            *_in_window(start, end)
        ).order_by(UsageStatsBucket.window_start.desc()).limit(limit)

        result = await db.execute(stmt)
        return [UsageBucketResponse.model_validate(b) for b in result.scalars().all()]

    @staticmethod
    async def get_aggregate_vehicle_stats(
        db: AsyncSession,
        vehicle_id: str,
        start: datetime,
        end: datetime
    ) -> AggregateUsageStats:
        """Usage totals for one vehicle. All zeros when it has no buckets."""
        stmt = select(
            func.sum(UsageStatsBucket.hours_operated).label("total_hours"),
            func.sum(UsageStatsBucket.distance_traveled).label("total_distance"),
            func.sum(UsageStatsBucket.fuel_consumed).label("total_fuel"),
            func.sum(UsageStatsBucket.idle_time).label("total_idle"),
            func.count(UsageStatsBucket.id).label("record_count"),
            func.avg(UsageStatsBucket.efficiency).label("avg_efficiency"),
        ).where(
            UsageStatsBucket.vehicle_id == vehicle_id,
            *_in_window(start, end)
        )

        row = (await db.execute(stmt)).one()
        return AggregateUsageStats(
            total_hours=zero_if_none(row.total_hours),
            total_distance=zero_if_none(row.total_distance),
            total_fuel=zero_if_none(row.total_fuel),
            total_idle=zero_if_none(row.total_idle),
            record_count=row.record_count or 0,
            avg_efficiency=zero_if_none(row.avg_efficiency),
        )

    @staticmethod
    async def get_fleet_usage_stats(
        db: AsyncSession,
        start: datetime,
        end: datetime
    ) -> FleetUsageStats:
        """Usage totals across every vehicle, with the number of distinct vehicles."""
        stmt = select(
            func.sum(UsageStatsBucket.hours_operated).label("total_hours"),
            func.sum(UsageStatsBucket.distance_traveled).label("total_distance"),
            func.sum(UsageStatsBucket.fuel_consumed).label("total_fuel"),
            func.sum(UsageStatsBucket.idle_time).label("total_idle"),
            func.count(UsageStatsBucket.id).label("record_count"),
            func.avg(UsageStatsBucket.efficiency).label("avg_efficiency"),
            func.count(distinct(UsageStatsBucket.vehicle_id)).label("unique_vehicles"),
        ).where(*_in_window(start, end))

        row = (await db.execute(stmt)).one()
        return FleetUsageStats(
            total_hours=zero_if_none(row.total_hours),
            total_distance=zero_if_none(row.total_distance),
            total_fuel=zero_if_none(row.total_fuel),
            total_idle=zero_if_none(row.total_idle),
            record_count=row.record_count or 0,
            avg_efficiency=zero_if_none(row.avg_efficiency),
            unique_vehicles=row.unique_vehicles or 0,
        )

    @staticmethod
    async def get_top_vehicles_by_metric(
        db: AsyncSession,
        metric: UsageRankingField,
        start: datetime,
        end: datetime,
        limit: int = 5
    ) -> List[VehicleRanking]:
        """Vehicles ranked by the summed bucket column, highest first."""
        column = UsageStatsBucket.__table__.c[UsageRankingField(metric).value]
        total = func.coalesce(func.sum(column), 0.0).label("total")

        stmt = select(UsageStatsBucket.vehicle_id, total).where(
            *_in_window(start, end)
        ).group_by(UsageStatsBucket.vehicle_id).order_by(
            total.desc(), UsageStatsBucket.vehicle_id
        ).limit(limit)

        result = await db.execute(stmt)
        return [VehicleRanking(vehicle_id=row.vehicle_id, total=row.total) for row in result]
