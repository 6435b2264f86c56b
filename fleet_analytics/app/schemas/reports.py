"""
Report Schemas.
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime

from fleet_analytics.app.models.dlq import DLQStatus


class ReportResponse(BaseModel):
    """Persisted analytics report snapshot."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    report_type: str
    period: str
    window_start: datetime
    window_end: datetime
    vehicle_id: Optional[str] = None
    data: Dict[str, Any]
    generated_at: datetime


class DLQItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_name: str
    error_code: Optional[str] = None
    error_message: str
    payload: Optional[Any] = None
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime] = None


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    actor: str
    meta_data: Optional[Dict[str, Any]] = None
    timestamp: datetime


class AuditTrailResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
