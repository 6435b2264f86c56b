"""
Report data compilation.

Pure functions that merge gathered aggregates into the `data` payload of an
analytics report. Every input is already an aggregate; empty inputs compile
to zeros, never to errors.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from fleet_analytics.app.domain.analytics.statistics import mean_or_zero
from fleet_analytics.app.schemas.analytics import (
    AggregateUsageStats, FleetUsageStats, FleetMetricStats,
    MetricObservationResponse, MetricTrend, VehicleFleetComparison, VehicleRanking
)

EMPTY_FLEET_COUNTS = {"countByType": {}, "countByStatus": {}}


def vehicle_placeholder(vehicle_id: str) -> Dict[str, Any]:
    """Minimal vehicle details used when the registry cannot be reached."""
    return {"id": vehicle_id}


def _finish(data: Dict[str, Any], generated_at: datetime, enrichment_complete: bool = True) -> Dict[str, Any]:
    data["generated_at"] = generated_at
    data["enrichment"] = "complete" if enrichment_complete else "partial"
    return jsonable_encoder(data)


def compile_fleet_report_data(
    fleet_counts: Optional[Dict[str, Any]],
    usage_stats: FleetUsageStats,
    fuel_efficiency: FleetMetricStats,
    utilization: FleetMetricStats,
    cost_per_hour: FleetMetricStats,
    generated_at: datetime,
    enrichment_complete: bool = True
) -> Dict[str, Any]:
    counts = fleet_counts or EMPTY_FLEET_COUNTS
    by_type = counts.get("countByType") or {}
    by_status = counts.get("countByStatus") or {}
    return _finish({
        "fleet_overview": {
            "total_vehicles": sum(by_type.values()),
            "vehicles_by_type": by_type,
            "vehicles_by_status": by_status,
        },
        "usage_stats": usage_stats,
        "performance_metrics": {
            "fuel_efficiency": fuel_efficiency,
            "utilization": utilization,
            "cost_per_hour": cost_per_hour,
        },
    }, generated_at, enrichment_complete)


def summarize_vehicle(
    usage_stats: AggregateUsageStats,
    fuel_efficiency: List[MetricObservationResponse],
    utilization: List[MetricObservationResponse],
    cost_per_hour: List[MetricObservationResponse],
    maintenance_cost_ratio: float
) -> Dict[str, float]:
    """Key figures for a single vehicle over the report window."""
    avg_cost_per_hour = mean_or_zero([m.value for m in cost_per_hour])
    total_distance = usage_stats.total_distance
    total_hours = usage_stats.total_hours
    total_cost = total_hours * avg_cost_per_hour
    return {
        "total_distance": total_distance,
        "total_fuel_consumption": usage_stats.total_fuel,
        "fuel_efficiency": mean_or_zero([m.value for m in fuel_efficiency]),
        "utilization_rate": mean_or_zero([m.value for m in utilization]),
        "total_hours": total_hours,
        "total_cost": total_cost,
        "cost_per_km": total_cost / total_distance if total_distance > 0 else 0.0,
        "maintenance_cost": total_cost * maintenance_cost_ratio,
        "idle_time": usage_stats.total_idle,
    }


def compile_vehicle_report_data(
    vehicle_details: Dict[str, Any],
    usage_stats: AggregateUsageStats,
    fuel_efficiency: List[MetricObservationResponse],
    utilization: List[MetricObservationResponse],
    cost_per_hour: List[MetricObservationResponse],
    fuel_comparison: VehicleFleetComparison,
    utilization_comparison: VehicleFleetComparison,
    maintenance_cost_ratio: float,
    generated_at: datetime,
    enrichment_complete: bool = True,
    trends: Optional[Dict[str, List[MetricTrend]]] = None
) -> Dict[str, Any]:
    return _finish({
        "vehicle_details": vehicle_details,
        "usage_stats": usage_stats,
        "performance_metrics": {
            "fuel_efficiency": {
                "metrics": fuel_efficiency,
                "fleet_comparison": fuel_comparison,
            },
            "utilization": {
                "metrics": utilization,
                "fleet_comparison": utilization_comparison,
            },
            "cost_metrics": {
                "metrics": cost_per_hour,
            },
        },
        "trends": trends or {},
        "summary": summarize_vehicle(
            usage_stats, fuel_efficiency, utilization, cost_per_hour, maintenance_cost_ratio
        ),
    }, generated_at, enrichment_complete)


def compile_utilization_report_data(
    usage_stats: FleetUsageStats,
    utilization_average: FleetMetricStats,
    top_by_hours: List[VehicleRanking],
    top_by_distance: List[VehicleRanking],
    generated_at: datetime
) -> Dict[str, Any]:
    fleet_utilization = usage_stats.model_dump()
    fleet_utilization["utilization_average"] = utilization_average
    return _finish({
        "fleet_utilization": fleet_utilization,
        "top_performers": {
            "by_hours": top_by_hours,
            "by_distance": top_by_distance,
        },
    }, generated_at)


def compile_cost_report_data(
    cost_per_hour: FleetMetricStats,
    cost_per_km: FleetMetricStats,
    generated_at: datetime
) -> Dict[str, Any]:
    return _finish({
        "cost_metrics": {
            "cost_per_hour": cost_per_hour,
            "cost_per_km": cost_per_km,
        },
    }, generated_at)


def compile_maintenance_report_data(
    maintenance_frequency: FleetMetricStats,
    most_serviced: List[VehicleRanking],
    generated_at: datetime
) -> Dict[str, Any]:
    return _finish({
        "maintenance": {
            "frequency": maintenance_frequency,
            "total_events": maintenance_frequency.avg_value * maintenance_frequency.count,
            "most_serviced_vehicles": most_serviced,
        },
    }, generated_at)
