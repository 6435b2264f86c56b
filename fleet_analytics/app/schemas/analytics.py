"""
Analytics Schemas.
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class UsageBucketResponse(BaseModel):
    """One hourly usage bucket."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: str
    window_start: datetime
    window_end: datetime
    hours_operated: float
    distance_traveled: float
    fuel_consumed: Optional[float] = None
    idle_time: Optional[float] = None
    efficiency: Optional[float] = None


class AggregateUsageStats(BaseModel):
    """Usage totals for one vehicle over a window."""
    total_hours: float = 0.0
    total_distance: float = 0.0
    total_fuel: float = 0.0
    total_idle: float = 0.0
    record_count: int = 0
    avg_efficiency: float = 0.0


class FleetUsageStats(AggregateUsageStats):
    """Usage totals across the fleet."""
    unique_vehicles: int = 0


class VehicleRanking(BaseModel):
    vehicle_id: str
    total: float


class MetricObservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: str
    metric_type: str
    timestamp: datetime
    value: float
    unit: Optional[str] = None


class TrendPoint(BaseModel):
    """Observations of one interval, before change detection."""
    period: str
    avg_value: float
    min_value: float
    max_value: float
    count: int
    first_timestamp: datetime


class MetricTrend(BaseModel):
    """Trend point with change against the previous interval."""
    period: str
    value: float
    change: float
    trend: str  # up | down | stable
    count: int
    min_value: float
    max_value: float
    first_timestamp: datetime


class FleetMetricStats(BaseModel):
    """Fleet-wide statistics for one metric type. All zeros when empty."""
    avg_value: float = 0.0
    min_value: float = 0.0
    max_value: float = 0.0
    std_dev: float = 0.0
    count: int = 0


class VehicleFleetComparison(BaseModel):
    vehicle_avg: float = 0.0
    fleet_avg: float = 0.0
    difference: float = 0.0
    percent_difference: float = 0.0
    percentile_rank: float = 0.0
