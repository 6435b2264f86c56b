"""
Audit logging service for report generation and dead letter operations.

Provides a centralized trail of actions that change what consumers see.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from fleet_analytics.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    REPORT_GENERATED = "REPORT_GENERATED"

    # Dead letter queue operations
    DLQ_RETRIED = "DLQ_RETRIED"
    DLQ_ARCHIVED = "DLQ_ARCHIVED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: str = "system",
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Who performed it ("system" for background work)
        metadata: Additional context as JSON
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        actor=actor,
        meta_data=metadata,
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
