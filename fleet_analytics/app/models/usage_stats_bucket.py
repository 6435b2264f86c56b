"""
Usage Stats Bucket database model.

One row per vehicle per clock-hour window, accumulated from sensor readings.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint, Index
from sqlalchemy.sql import func
from fleet_analytics.app.db.session import Base


class UsageStatsBucket(Base):
    """
    Usage Stats Bucket model.

    Rows are created and incremented only through the atomic upsert in
    UsageStatsService.apply_reading. Totals are additive; efficiency is
    recomputed from the totals on every increment.
    """
    __tablename__ = "usage_stats_buckets"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "window_start", "window_end", name="uq_usage_bucket_window"),
        Index("ix_usage_buckets_window", "window_start", "window_end"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vehicle_id = Column(String(64), nullable=False, index=True)

    # Hour window, naive UTC, window_end = window_start + 1h
    window_start = Column(DateTime, nullable=False)
    window_end = Column(DateTime, nullable=False)

    # Accumulated totals
    hours_operated = Column(Float, nullable=False, default=0.0)
    distance_traveled = Column(Float, nullable=False, default=0.0)
    fuel_consumed = Column(Float, nullable=True)
    idle_time = Column(Float, nullable=True)

    # distance / fuel when fuel > 0
    efficiency = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<UsageStatsBucket(vehicle_id='{self.vehicle_id}', window_start={self.window_start}, "
            f"hours={self.hours_operated}, distance={self.distance_traveled})>"
        )
