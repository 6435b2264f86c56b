"""
Admin Operations API Endpoints.

Inspect and replay events held in the Dead Letter Queue, and read the
audit trail of report generation and queue operations.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.db.session import get_db
from fleet_analytics.app.core.dependencies import get_event_dispatcher
from fleet_analytics.app.models.dlq import DeadLetterQueue, DLQStatus
from fleet_analytics.app.schemas.reports import AuditLogResponse, AuditTrailResponse, DLQItemResponse
from fleet_analytics.app.services.audit import log_event, AuditAction, get_audit_trail
from fleet_analytics.app.services.dead_letters import list_dead_letters, mark_retry
from fleet_analytics.app.services.event_dispatcher import EventDispatcher, HandleOutcome

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


async def _get_item(db: AsyncSession, dlq_id: int) -> DeadLetterQueue:
    item = await db.get(DeadLetterQueue, dlq_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="DLQ item not found")
    return item


@router.get("/dlq", response_model=List[DLQItemResponse])
async def list_dlq_items(
    status_filter: Optional[DLQStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List dead-lettered events, newest first."""
    return await list_dead_letters(db, status_filter, limit)


@router.post("/dlq/{dlq_id}/retry", response_model=DLQItemResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    db: AsyncSession = Depends(get_db),
    dispatcher: EventDispatcher = Depends(get_event_dispatcher)
):
    """
    Replay a dead-lettered event through the dispatcher.

    The item becomes PROCESSED when the replay is no longer rejected,
    otherwise it stays FAILED with its retry count incremented.
    """
    item = await _get_item(db, dlq_id)
    if item.status == DLQStatus.ARCHIVED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="DLQ item is archived")

    outcome = await dispatcher.handle(item.task_name, item.payload, dead_letter=False)
    item = await mark_retry(db, item, succeeded=outcome != HandleOutcome.REJECTED)

    await log_event(
        db,
        AuditAction.DLQ_RETRIED,
        metadata={"dlq_id": item.id, "topic": item.task_name, "outcome": outcome.value},
    )
    return item


@router.post("/dlq/{dlq_id}/archive", response_model=DLQItemResponse)
async def archive_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    db: AsyncSession = Depends(get_db)
):
    """Give up on a dead-lettered event."""
    item = await _get_item(db, dlq_id)
    item.status = DLQStatus.ARCHIVED
    await db.commit()
    await db.refresh(item)

    await log_event(db, AuditAction.DLQ_ARCHIVED, metadata={"dlq_id": item.id, "topic": item.task_name})
    return item


@router.get("/audit-logs", response_model=AuditTrailResponse)
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records to return"),
    db: AsyncSession = Depends(get_db)
):
    """Audit trail, most recent first."""
    logs = await get_audit_trail(db, action=action, limit=limit)
    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )
