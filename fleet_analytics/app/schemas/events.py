"""
Stream event schemas.

Payload shapes for the topics the analytics service consumes. Field names
follow the producers' camelCase; models accept either spelling.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Any, Dict, Optional

MAX_SEQUENCE = 2**63 - 1


class StreamPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("vehicle_id", mode="before", check_fields=False)
    @classmethod
    def _vehicle_id_as_str(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class SensorReading(StreamPayload):
    """Common fields of every sensor-data message."""
    vehicle_id: str = Field(..., alias="vehicleId", min_length=1)
    timestamp: datetime
    sensor_type: str = Field(..., alias="sensorType")
    # Producer-assigned, increasing per vehicle. Optional. Bounded by the BIGINT cursor column.
    sequence: Optional[int] = Field(None, ge=0, le=MAX_SEQUENCE)


class EngineReading(SensorReading):
    is_running: bool = Field(False, alias="isRunning")
    rpm: Optional[float] = None
    hours_operated: Optional[float] = Field(None, alias="hoursOperated")


class FuelReading(SensorReading):
    fuel_consumed: Optional[float] = Field(None, alias="fuelConsumed")
    distance_since_last_reading: Optional[float] = Field(None, alias="distanceSinceLastReading")


class UtilizationReading(SensorReading):
    utilization_rate: Optional[float] = Field(None, alias="utilizationRate")


class MaintenanceEvent(StreamPayload):
    vehicle_id: str = Field(..., alias="vehicleId", min_length=1)
    event_type: str = Field(..., alias="eventType")
    timestamp: datetime
    maintenance_record: Optional[Dict[str, Any]] = Field(None, alias="maintenanceRecord")


class EventEnvelope(BaseModel):
    """Schema for pushing a single event over HTTP."""
    topic: str = Field(..., min_length=1)
    payload: Any = None


class EventHandleResponse(BaseModel):
    """Response after handling an event."""
    topic: str
    outcome: str
