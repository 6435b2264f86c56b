"""
Audit Log Database Model.

Tracks report generation and operator actions on the dead letter queue.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from fleet_analytics.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - REPORT_GENERATED
    - DLQ_RETRIED / DLQ_ARCHIVED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who performed it ("system" for the compiler and consumer)
    actor = Column(String(100), nullable=False, default="system")

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor='{self.actor}')>"
