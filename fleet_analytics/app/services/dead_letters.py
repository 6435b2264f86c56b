"""
Dead Letter Queue service.

Stores rejected stream events so an operator can inspect and replay them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.core.exceptions import AppException
from fleet_analytics.app.models.dlq import DeadLetterQueue, DLQStatus

logger = logging.getLogger("fleet_analytics.dlq")


async def record_dead_letter(
    db: AsyncSession,
    topic: str,
    payload: Any,
    error: AppException
) -> DeadLetterQueue:
    """Persist a rejected event. Commits."""
    item = DeadLetterQueue(
        task_name=topic or "unknown",
        error_code=error.error_code,
        error_message=error.message,
        payload=jsonable_encoder(payload),
        status=DLQStatus.FAILED,
    )
    db.add(item)
    await db.commit()

    logger.warning(
        "Event dead-lettered",
        extra={"dlq_id": item.id, "topic": topic, "error_code": error.error_code}
    )
    return item


async def list_dead_letters(
    db: AsyncSession,
    status: Optional[DLQStatus] = None,
    limit: int = 50
) -> List[DeadLetterQueue]:
    query = select(DeadLetterQueue).order_by(desc(DeadLetterQueue.created_at), desc(DeadLetterQueue.id))
    if status:
        query = query.where(DeadLetterQueue.status == status)
    result = await db.execute(query.limit(limit))
    return result.scalars().all()


async def mark_retry(db: AsyncSession, item: DeadLetterQueue, succeeded: bool) -> DeadLetterQueue:
    """Record the outcome of a replay attempt. Commits."""
    item.retry_count = (item.retry_count or 0) + 1
    item.last_retry_at = datetime.now(timezone.utc)
    item.status = DLQStatus.PROCESSED if succeeded else DLQStatus.FAILED
    await db.commit()
    await db.refresh(item)
    return item
