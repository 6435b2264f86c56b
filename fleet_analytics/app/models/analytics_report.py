"""
Analytics Report database model.

Immutable report snapshots produced by the report compiler.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, event
from fleet_analytics.app.db.session import Base
from fleet_analytics.app.core.exceptions import ImmutableRecordError


class AnalyticsReport(Base):
    """
    Analytics Report model.

    A report is never edited; regenerating produces a new row with a new
    generated_at.
    """
    __tablename__ = "analytics_reports"
    __table_args__ = (
        Index("ix_reports_type_period_end", "report_type", "period", "window_end"),
        Index("ix_reports_vehicle_type", "vehicle_id", "report_type"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    report_type = Column(String(20), nullable=False)  # ReportType value
    period = Column(String(20), nullable=False)  # ReportPeriod value
    window_start = Column(DateTime, nullable=False)
    window_end = Column(DateTime, nullable=False)
    vehicle_id = Column(String(64), nullable=True)

    data = Column(JSON, nullable=False)

    generated_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<AnalyticsReport(id={self.id}, type='{self.report_type}', period='{self.period}')>"


@event.listens_for(AnalyticsReport, "before_update")
def _reject_report_update(mapper, connection, target):
    raise ImmutableRecordError("AnalyticsReport")
