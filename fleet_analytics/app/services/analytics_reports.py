"""
Analytics Report Compiler.

Gathers aggregates from the usage and metric services (and vehicle
metadata from the registry), compiles them into a report payload and
persists it as an immutable snapshot.

Flow: REQUESTED -> GATHERING -> COMPILING -> PERSISTED
"""

import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_analytics.app.core.config import settings as default_settings
from fleet_analytics.app.core.exceptions import CollaboratorUnavailableError, DataValidationError
from fleet_analytics.app.domain.analytics.time_windows import resolve_window, utc_now
from fleet_analytics.app.domain.reports import report_builder
from fleet_analytics.app.models.analytics_report import AnalyticsReport
from fleet_analytics.app.models.metric_enums import (
    MetricType, ReportPeriod, ReportType, TrendInterval, UsageRankingField
)
from fleet_analytics.app.schemas.reports import ReportResponse
from fleet_analytics.app.services.audit import AuditAction, log_event
from fleet_analytics.app.services.performance_metrics import PerformanceMetricService
from fleet_analytics.app.services.usage_stats import UsageStatsService
from fleet_analytics.app.services.vehicle_registry import VehicleRegistryClient

logger = logging.getLogger("fleet_analytics.reports")

TOP_PERFORMERS_LIMIT = 10
MOST_SERVICED_LIMIT = 5


class ReportStage(str, enum.Enum):
    REQUESTED = "REQUESTED"
    GATHERING = "GATHERING"
    COMPILING = "COMPILING"
    PERSISTED = "PERSISTED"


class ReportCompiler:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: VehicleRegistryClient,
        settings=None
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.settings = settings or default_settings

    def _stage(self, stage: ReportStage, report_type: ReportType, **extra):
        logger.info(
            f"Report {stage.value}",
            extra={"stage": stage.value, "report_type": report_type.value, **extra}
        )

    async def _fetch(self, query: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        # AsyncSession is not safe for concurrent use, so each gathered
        # query runs on its own session.
        async with self.session_factory() as db:
            return await query(db, *args, **kwargs)

    async def _from_registry(
        self,
        call: Callable[[], Awaitable[Any]],
        placeholder: Any
    ) -> Tuple[Any, bool]:
        """Returns (value, complete). Registry outages degrade to the placeholder."""
        try:
            return await call(), True
        except CollaboratorUnavailableError as e:
            logger.warning("Registry unavailable, using placeholder", extra={"error": e.message})
            return placeholder, False

    async def generate(
        self,
        report_type: Union[str, ReportType],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        period: Union[str, ReportPeriod] = ReportPeriod.CUSTOM,
        vehicle_id: Optional[str] = None
    ) -> ReportResponse:
        """
        Generate and persist one report.

        Args:
            report_type: fleet, vehicle, utilization, cost or maintenance
            start: Window start (defaults to 30 days before end)
            end: Window end (defaults to now)
            period: Label stored with the report
            vehicle_id: Required for vehicle reports

        Raises:
            DataValidationError: Unknown report type or period, or a vehicle
                report without vehicle_id
        """
        try:
            report_type = ReportType(report_type)
            period = ReportPeriod(period)
        except ValueError as e:
            raise DataValidationError(str(e))

        start, end = resolve_window(start, end)
        if start > end:
            raise DataValidationError("Report window start must not be after end")
        if report_type == ReportType.VEHICLE and not vehicle_id:
            raise DataValidationError("vehicle_id is required for vehicle reports")

        self._stage(ReportStage.REQUESTED, report_type, vehicle_id=vehicle_id)

        compile_report = {
            ReportType.FLEET: self.generate_fleet_report,
            ReportType.VEHICLE: self.generate_vehicle_report,
            ReportType.UTILIZATION: self.generate_utilization_report,
            ReportType.COST: self.generate_cost_report,
            ReportType.MAINTENANCE: self.generate_maintenance_report,
        }[report_type]

        if report_type == ReportType.VEHICLE:
            data = await compile_report(vehicle_id, start, end)
        else:
            data = await compile_report(start, end)

        report = await self._persist(report_type, period, start, end, vehicle_id, data)
        self._stage(ReportStage.PERSISTED, report_type, report_id=report.id)
        return report

    async def _persist(
        self,
        report_type: ReportType,
        period: ReportPeriod,
        start: datetime,
        end: datetime,
        vehicle_id: Optional[str],
        data: dict
    ) -> ReportResponse:
        async with self.session_factory() as db:
            report = AnalyticsReport(
                report_type=report_type.value,
                period=period.value,
                window_start=start,
                window_end=end,
                vehicle_id=vehicle_id,
                data=data,
                generated_at=utc_now(),
            )
            db.add(report)
            await db.flush()

            await log_event(
                db,
                AuditAction.REPORT_GENERATED,
                metadata={
                    "report_id": report.id,
                    "report_type": report_type.value,
                    "period": period.value,
                    "vehicle_id": vehicle_id,
                    "enrichment": data.get("enrichment"),
                },
                commit=False,
            )
            await db.commit()
            return ReportResponse.model_validate(report)

    async def generate_fleet_report(self, start: datetime, end: datetime) -> dict:
        self._stage(ReportStage.GATHERING, ReportType.FLEET)
        (fleet_counts, complete), usage, fuel, utilization, cost = await asyncio.gather(
            self._from_registry(self.registry.get_fleet_counts, report_builder.EMPTY_FLEET_COUNTS),
            self._fetch(UsageStatsService.get_fleet_usage_stats, start, end),
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.FUEL_EFFICIENCY, start, end),
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.UTILIZATION, start, end),
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.COST_PER_HOUR, start, end),
        )

        self._stage(ReportStage.COMPILING, ReportType.FLEET)
        return report_builder.compile_fleet_report_data(
            fleet_counts, usage, fuel, utilization, cost,
            generated_at=utc_now(),
            enrichment_complete=complete,
        )

    async def generate_vehicle_report(self, vehicle_id: str, start: datetime, end: datetime) -> dict:
        self._stage(ReportStage.GATHERING, ReportType.VEHICLE, vehicle_id=vehicle_id)
        metrics = PerformanceMetricService
        (
            (details, complete), usage, fuel, utilization, cost,
            fuel_comparison, utilization_comparison, fuel_trend, utilization_trend
        ) = await asyncio.gather(
            self._from_registry(
                lambda: self.registry.get_vehicle(vehicle_id),
                report_builder.vehicle_placeholder(vehicle_id)
            ),
            self._fetch(UsageStatsService.get_aggregate_vehicle_stats, vehicle_id, start, end),
            self._fetch(metrics.get_vehicle_metrics, vehicle_id, MetricType.FUEL_EFFICIENCY, start, end),
            self._fetch(metrics.get_vehicle_metrics, vehicle_id, MetricType.UTILIZATION, start, end),
            self._fetch(metrics.get_vehicle_metrics, vehicle_id, MetricType.COST_PER_HOUR, start, end),
            self._fetch(metrics.compare_vehicle_to_fleet, vehicle_id, MetricType.FUEL_EFFICIENCY, start, end),
            self._fetch(metrics.compare_vehicle_to_fleet, vehicle_id, MetricType.UTILIZATION, start, end),
            self._fetch(metrics.get_metric_trend, vehicle_id, MetricType.FUEL_EFFICIENCY, start, end, TrendInterval.DAY),
            self._fetch(metrics.get_metric_trend, vehicle_id, MetricType.UTILIZATION, start, end, TrendInterval.DAY),
        )

        self._stage(ReportStage.COMPILING, ReportType.VEHICLE, vehicle_id=vehicle_id)
        return report_builder.compile_vehicle_report_data(
            details or report_builder.vehicle_placeholder(vehicle_id),
            usage, fuel, utilization, cost,
            fuel_comparison, utilization_comparison,
            maintenance_cost_ratio=self.settings.maintenance_cost_ratio,
            generated_at=utc_now(),
            enrichment_complete=complete,
            trends={"fuel_efficiency": fuel_trend, "utilization": utilization_trend},
        )

    async def generate_utilization_report(self, start: datetime, end: datetime) -> dict:
        self._stage(ReportStage.GATHERING, ReportType.UTILIZATION)
        usage, utilization, by_hours, by_distance = await asyncio.gather(
            self._fetch(UsageStatsService.get_fleet_usage_stats, start, end),
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.UTILIZATION, start, end),
            self._fetch(
                UsageStatsService.get_top_vehicles_by_metric,
                UsageRankingField.HOURS_OPERATED, start, end, TOP_PERFORMERS_LIMIT
            ),
            self._fetch(
                UsageStatsService.get_top_vehicles_by_metric,
                UsageRankingField.DISTANCE_TRAVELED, start, end, TOP_PERFORMERS_LIMIT
            ),
        )

        self._stage(ReportStage.COMPILING, ReportType.UTILIZATION)
        return report_builder.compile_utilization_report_data(
            usage, utilization, by_hours, by_distance, generated_at=utc_now()
        )

    async def generate_cost_report(self, start: datetime, end: datetime) -> dict:
        self._stage(ReportStage.GATHERING, ReportType.COST)
        cost_per_hour, cost_per_km = await asyncio.gather(
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.COST_PER_HOUR, start, end),
            self._fetch(PerformanceMetricService.get_fleet_metric_averages, MetricType.COST_PER_KM, start, end),
        )

        self._stage(ReportStage.COMPILING, ReportType.COST)
        return report_builder.compile_cost_report_data(cost_per_hour, cost_per_km, generated_at=utc_now())

    async def generate_maintenance_report(self, start: datetime, end: datetime) -> dict:
        self._stage(ReportStage.GATHERING, ReportType.MAINTENANCE)
        frequency, most_serviced = await asyncio.gather(
            self._fetch(
                PerformanceMetricService.get_fleet_metric_averages,
                MetricType.MAINTENANCE_FREQUENCY, start, end
            ),
            self._fetch(
                PerformanceMetricService.get_top_vehicles_by_metric_total,
                MetricType.MAINTENANCE_FREQUENCY, start, end, MOST_SERVICED_LIMIT
            ),
        )

        self._stage(ReportStage.COMPILING, ReportType.MAINTENANCE)
        return report_builder.compile_maintenance_report_data(frequency, most_serviced, generated_at=utc_now())

    @staticmethod
    async def list_reports(
        db: AsyncSession,
        report_type: Optional[Union[str, ReportType]] = None,
        period: Optional[Union[str, ReportPeriod]] = None,
        vehicle_id: Optional[str] = None,
        limit: int = 10
    ) -> List[ReportResponse]:
        """Stored reports, most recent window first."""
        stmt = select(AnalyticsReport)
        if report_type:
            stmt = stmt.where(AnalyticsReport.report_type == ReportType(report_type).value)
        if period:
            stmt = stmt.where(AnalyticsReport.period == ReportPeriod(period).value)
        if vehicle_id:
            stmt = stmt.where(AnalyticsReport.vehicle_id == vehicle_id)
        stmt = stmt.order_by(
            AnalyticsReport.window_end.desc(), AnalyticsReport.generated_at.desc(), AnalyticsReport.id.desc()
        ).limit(limit)

        result = await db.execute(stmt)
        return [ReportResponse.model_validate(r) for r in result.scalars().all()]

    @staticmethod
    async def get_report(db: AsyncSession, report_id: int) -> Optional[ReportResponse]:
        report = await db.get(AnalyticsReport, report_id)
        return ReportResponse.model_validate(report) if report else None
