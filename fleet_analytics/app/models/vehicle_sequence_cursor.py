"""
Vehicle Sequence Cursor database model.

Highest producer sequence number applied per vehicle.
"""

from sqlalchemy import Column, String, BigInteger, DateTime
from sqlalchemy.sql import func
from fleet_analytics.app.db.session import Base


class VehicleSequenceCursor(Base):
    """
    Per-vehicle cursor for the duplicate-delivery guard.

    Only advanced through the conditional upsert in
    services.sequence_guard.claim_sequence.
    """
    __tablename__ = "vehicle_sequence_cursors"

    vehicle_id = Column(String(64), primary_key=True)
    last_sequence = Column(BigInteger, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<VehicleSequenceCursor(vehicle_id='{self.vehicle_id}', last_sequence={self.last_sequence})>"
