"""
Analytics API Endpoints.

Report generation plus read access to usage buckets, metric observations
and fleet aggregates.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.db.session import get_db
from fleet_analytics.app.core.dependencies import get_report_compiler
from fleet_analytics.app.core.exceptions import ResourceNotFoundError
from fleet_analytics.app.domain.analytics.time_windows import resolve_window
from fleet_analytics.app.models.metric_enums import MetricType, ReportPeriod, ReportType, TrendInterval
from fleet_analytics.app.services.analytics_reports import ReportCompiler
from fleet_analytics.app.services.performance_metrics import PerformanceMetricService
from fleet_analytics.app.services.usage_stats import UsageStatsService
from fleet_analytics.app.schemas.analytics import (
    UsageBucketResponse, MetricObservationResponse, MetricTrend,
    FleetMetricStats, VehicleFleetComparison
)
from fleet_analytics.app.schemas.reports import ReportResponse

router = APIRouter(prefix="/analytics", tags=["Analytics"])


# --- Reports ---

@router.get("/fleet", response_model=ReportResponse)
async def get_fleet_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: ReportPeriod = ReportPeriod.CUSTOM,
    compiler: ReportCompiler = Depends(get_report_compiler)
):
    """Generate a fleet-wide overview report."""
    return await compiler.generate(ReportType.FLEET, start, end, period)


@router.get("/utilization", response_model=ReportResponse)
async def get_utilization_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: ReportPeriod = ReportPeriod.CUSTOM,
    compiler: ReportCompiler = Depends(get_report_compiler)
):
    """Generate a utilization report with top performers."""
    return await compiler.generate(ReportType.UTILIZATION, start, end, period)


@router.get("/cost", response_model=ReportResponse)
async def get_cost_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: ReportPeriod = ReportPeriod.CUSTOM,
    compiler: ReportCompiler = Depends(get_report_compiler)
):
    """Generate a cost report."""
    return await compiler.generate(ReportType.COST, start, end, period)


@router.get("/maintenance", response_model=ReportResponse)
async def get_maintenance_report(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: ReportPeriod = ReportPeriod.CUSTOM,
    compiler: ReportCompiler = Depends(get_report_compiler)
):
    """Generate a maintenance frequency report."""
    return await compiler.generate(ReportType.MAINTENANCE, start, end, period)


@router.get("/vehicles/{vehicle_id}", response_model=ReportResponse)
async def get_vehicle_report(
    vehicle_id: str = Path(..., min_length=1),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: ReportPeriod = ReportPeriod.CUSTOM,
    compiler: ReportCompiler = Depends(get_report_compiler)
):
    """Generate a report for a single vehicle."""
    return await compiler.generate(ReportType.VEHICLE, start, end, period, vehicle_id=vehicle_id)


@router.get("/reports", response_model=List[ReportResponse])
async def list_reports(
    report_type: Optional[ReportType] = None,
    period: Optional[ReportPeriod] = None,
    vehicle_id: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """List stored reports, most recent window first."""
    return await ReportCompiler.list_reports(db, report_type, period, vehicle_id, limit)


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db)
):
    report = await ReportCompiler.get_report(db, report_id)
    if report is None:
        raise ResourceNotFoundError("Report", report_id)
    return report


# --- Usage and metrics ---

@router.get("/usage/{vehicle_id}", response_model=List[UsageBucketResponse])
async def get_vehicle_usage(
    vehicle_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Hourly usage buckets for a vehicle, newest first."""
    return await UsageStatsService.get_vehicle_usage_stats(db, vehicle_id, start, end, limit)


@router.get("/metrics/{vehicle_id}", response_model=List[MetricObservationResponse])
async def get_vehicle_metrics(
    vehicle_id: str,
    metric_type: MetricType,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await PerformanceMetricService.get_vehicle_metrics(db, vehicle_id, metric_type, start, end, limit)


@router.get("/trends/{vehicle_id}", response_model=List[MetricTrend])
async def get_metric_trend(
    vehicle_id: str,
    metric_type: MetricType,
    interval: TrendInterval = TrendInterval.DAY,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db)
):
    """Per-interval averages with change against the previous interval."""
    start, end = resolve_window(start, end)
    return await PerformanceMetricService.get_metric_trend(db, vehicle_id, metric_type, start, end, interval)


@router.get("/fleet-stats", response_model=FleetMetricStats)
async def get_fleet_stats(
    metric_type: MetricType,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db)
):
    start, end = resolve_window(start, end)
    return await PerformanceMetricService.get_fleet_metric_averages(db, metric_type, start, end)


@router.get("/compare/{vehicle_id}", response_model=VehicleFleetComparison)
async def compare_vehicle(
    vehicle_id: str,
    metric_type: MetricType,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db)
):
    """Compare a vehicle's average with the fleet and rank it."""
    start, end = resolve_window(start, end)
    return await PerformanceMetricService.compare_vehicle_to_fleet(db, vehicle_id, metric_type, start, end)
