"""
Enumerations shared by metric observations and analytics reports.
"""

import enum


class MetricType(str, enum.Enum):
    """
    Recognized performance metric types.

    The metric type decides how observations are aggregated downstream,
    so unknown types are rejected rather than stored.
    """
    FUEL_EFFICIENCY = "fuelEfficiency"
    UTILIZATION = "utilization"
    COST_PER_HOUR = "costPerHour"
    COST_PER_KM = "costPerKm"
    MAINTENANCE_FREQUENCY = "maintenanceFrequency"
    ENGINE_HOURS = "engineHours"


class ReportType(str, enum.Enum):
    FLEET = "fleet"
    VEHICLE = "vehicle"
    UTILIZATION = "utilization"
    COST = "cost"
    MAINTENANCE = "maintenance"


class ReportPeriod(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class TrendInterval(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class UsageRankingField(str, enum.Enum):
    """Bucket columns vehicles can be ranked by."""
    HOURS_OPERATED = "hours_operated"
    DISTANCE_TRAVELED = "distance_traveled"
    EFFICIENCY = "efficiency"
