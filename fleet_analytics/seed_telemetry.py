"""
Database seeding script for demo telemetry.

Feeds a day of engine, fuel and utilization readings for a few vehicles
through the event dispatcher, so dashboards and reports have data.
Run this script after the database is set up.
"""

import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fleet_analytics.app.db.session import AsyncSessionLocal, engine, Base
from fleet_analytics.app.services.event_dispatcher import EventDispatcher, HandleOutcome

# Import models to ensure they are registered with Base
from fleet_analytics.app.models.usage_stats_bucket import UsageStatsBucket
from fleet_analytics.app.models.metric_observation import MetricObservation
from fleet_analytics.app.models.vehicle_sequence_cursor import VehicleSequenceCursor
from fleet_analytics.app.models.dlq import DeadLetterQueue

VEHICLES = ["TRK-001", "TRK-002", "VAN-101"]


def readings_for(vehicle_id: str, day_start: datetime, rng: random.Random):
    """One engine, fuel and utilization reading every 15 minutes of a 10 hour shift."""
    sequence = 0
    for quarter in range(40):
        ts = (day_start + timedelta(hours=7, minutes=15 * quarter)).isoformat()
        base = {"vehicleId": vehicle_id, "timestamp": ts}

        sequence += 1
        yield "sensor-data", dict(
            base, sensorType="engine", isRunning=True,
            rpm=rng.choice([750, 1400, 1800, 2200]), hoursOperated=1200 + quarter * 0.25, sequence=sequence
        )

        distance = round(rng.uniform(5, 20), 2)
        sequence += 1
        yield "sensor-data", dict(
            base, sensorType="fuel", distanceSinceLastReading=distance,
            fuelConsumed=round(distance / rng.uniform(6, 12), 3), sequence=sequence
        )

        if quarter % 4 == 0:
            sequence += 1
            yield "sensor-data", dict(
                base, sensorType="utilization", utilizationRate=round(rng.uniform(0.4, 0.95), 2), sequence=sequence
            )


async def seed_telemetry():
    """
    Seed demo telemetry.

    Sequence numbers make the script safe to re-run: replayed readings come
    back as duplicates and are not counted twice.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    dispatcher = EventDispatcher(AsyncSessionLocal)
    day_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=1)
    rng = random.Random(42)

    print("🌱 Starting telemetry seeding...")
    for vehicle_id in VEHICLES:
        outcomes = {}
        for topic, payload in readings_for(vehicle_id, day_start, rng):
            outcome = await dispatcher.handle(topic, payload)
            outcomes[outcome] = outcomes.get(outcome, 0) + 1
        applied = outcomes.get(HandleOutcome.APPLIED, 0)
        duplicates = outcomes.get(HandleOutcome.DUPLICATE, 0)
        print(f"✅ {vehicle_id}: {applied} applied, {duplicates} duplicates")

    await engine.dispose()
    print("🎉 Seeding complete")


if __name__ == "__main__":
    asyncio.run(seed_telemetry())
