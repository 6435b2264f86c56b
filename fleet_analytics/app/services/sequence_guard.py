"""
Duplicate-delivery guard.

Producers may stamp readings with an increasing per-vehicle sequence number.
A reading is applied only if its sequence is above the last one applied for
that vehicle.
"""

import logging

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_analytics.app.db.upsert import upsert_insert
from fleet_analytics.app.models.vehicle_sequence_cursor import VehicleSequenceCursor

logger = logging.getLogger("fleet_analytics.sequence_guard")


async def claim_sequence(
    db: AsyncSession,
    vehicle_id: str,
    sequence: int
) -> bool:
    """
    Atomically advance the vehicle's cursor to `sequence`.

    The cursor row is inserted or moved forward in one conditional upsert,
    so two workers claiming the same sequence cannot both succeed.

    Args:
        db: Database session (caller commits)
        vehicle_id: Vehicle the reading belongs to
        sequence: Producer-assigned sequence number

    Returns:
        True if the sequence was claimed, False if it is stale or a duplicate
    """
    table = VehicleSequenceCursor.__table__
    stmt = upsert_insert(db, table).values(vehicle_id=vehicle_id, last_sequence=sequence)
    stmt = stmt.on_conflict_do_update(
        index_elements=["vehicle_id"],
        set_={"last_sequence": stmt.excluded.last_sequence, "updated_at": func.now()},
        where=table.c.last_sequence < stmt.excluded.last_sequence,
    ).returning(table.c.vehicle_id)

    result = await db.execute(stmt)
    claimed = result.scalar_one_or_none() is not None
    if not claimed:
        logger.info(
            "Rejected stale sequence",
            extra={"vehicle_id": vehicle_id, "sequence": sequence}
        )
    return claimed


async def get_last_sequence(db: AsyncSession, vehicle_id: str) -> int | None:
    cursor = await db.get(VehicleSequenceCursor, vehicle_id)
    return cursor.last_sequence if cursor else None
