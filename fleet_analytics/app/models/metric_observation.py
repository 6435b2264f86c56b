"""
Metric Observation database model.

Immutable time-series points for performance metrics.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Index, event
from sqlalchemy.sql import func
from fleet_analytics.app.db.session import Base
from fleet_analytics.app.core.exceptions import ImmutableRecordError


class MetricObservation(Base):
    """
    Metric Observation model.

    Several observations may share (vehicle_id, metric_type, timestamp);
    each is an independent sample.
    """
    __tablename__ = "metric_observations"
    __table_args__ = (
        Index("ix_metric_obs_vehicle_type_ts", "vehicle_id", "metric_type", "timestamp"),
        Index("ix_metric_obs_type_ts", "metric_type", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(String(64), nullable=False, index=True)
    metric_type = Column(String(50), nullable=False)  # MetricType value
    timestamp = Column(DateTime, nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<MetricObservation(vehicle_id='{self.vehicle_id}', type='{self.metric_type}', value={self.value})>"


@event.listens_for(MetricObservation, "before_update")
def _reject_observation_update(mapper, connection, target):
    raise ImmutableRecordError("MetricObservation")
