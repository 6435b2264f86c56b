"""
Event Dispatcher.

Routes classified stream events to the accumulator and the metric recorder.
Each event is applied in a single transaction: the sequence claim, the
bucket increment and the metric observations commit together or not at all.

Outcomes:
- APPLIED: state changed
- DUPLICATE: stale sequence, nothing written
- IGNORED: event has no analytics effect
- REJECTED: malformed or invalid, written to the dead letter queue
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fleet_analytics.app.core.config import settings as default_settings
from fleet_analytics.app.core.exceptions import (
    AppException, DataValidationError, MalformedEventError, StorageUnavailableError, UnprocessableEventError
)
from fleet_analytics.app.domain.telemetry.event_classifier import (
    ClassifiedEvent, EventKind, Unrecognized, classify
)
from fleet_analytics.app.models.metric_enums import MetricType
from fleet_analytics.app.schemas.events import (
    EngineReading, FuelReading, MaintenanceEvent, SensorReading, StreamPayload, UtilizationReading
)
from fleet_analytics.app.services.dead_letters import record_dead_letter
from fleet_analytics.app.services.performance_metrics import PerformanceMetricService
from fleet_analytics.app.services.sequence_guard import claim_sequence
from fleet_analytics.app.services.usage_stats import UsageDelta, UsageStatsService

logger = logging.getLogger("fleet_analytics.dispatcher")


class HandleOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass
class EventEffects:
    """What one event writes: an optional bucket delta plus observations."""
    vehicle_id: str
    timestamp: Any
    delta: Optional[UsageDelta] = None
    metrics: List[Tuple[MetricType, float, str]] = field(default_factory=list)
    sequence: Optional[int] = None

    @property
    def empty(self) -> bool:
        return self.delta is None and not self.metrics


def parse_payload(model: Type[StreamPayload], payload: Any) -> StreamPayload:
    if not isinstance(payload, dict):
        raise MalformedEventError("Event payload must be an object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(
            f"Invalid {model.__name__} payload",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)}
        )


class EventDispatcher:

    def __init__(self, session_factory: async_sessionmaker, settings=None):
        self.session_factory = session_factory
        self.settings = settings or default_settings

        self.handlers: Dict[EventKind, Callable] = {
            EventKind.VEHICLE_LIFECYCLE: self._log_only,
            EventKind.LOCATION: self._log_only,
            EventKind.SENSOR_READING: self._sensor_effects,
            EventKind.MAINTENANCE: self._maintenance_effects,
        }
        self.sensor_handlers: Dict[str, Tuple[Type[SensorReading], Callable]] = {
            "engine": (EngineReading, self._engine_effects),
            "fuel": (FuelReading, self._fuel_effects),
            "utilization": (UtilizationReading, self._utilization_effects),
        }

    async def handle(self, topic: str, payload: Any, dead_letter: bool = True) -> HandleOutcome:
        """
        Apply one stream event.

        Rejected events are written to the dead letter queue unless
        dead_letter is False (replays of an existing entry).

        Raises:
            StorageUnavailableError: Transient storage failure; safe to retry
        """
        try:
            classified = classify((topic, payload))
            if isinstance(classified, Unrecognized):
                logger.warning("Unrecognized topic", extra={"topic": classified.topic})
                return HandleOutcome.IGNORED

            effects = self.handlers[classified.kind](classified)
            if effects is None or effects.empty:
                return HandleOutcome.IGNORED

            return await self._apply(effects)

        except (MalformedEventError, DataValidationError) as e:
            logger.warning(
                "Rejected event",
                extra={"topic": topic, "error_code": e.error_code, "reason": e.message}
            )
            if dead_letter:
                await self._dead_letter(topic, payload, e)
            return HandleOutcome.REJECTED

        except (OperationalError, InterfaceError) as e:
            logger.error("Storage unavailable while handling event", extra={"topic": topic})
            raise StorageUnavailableError(str(e.orig or e)) from e

        except Exception as e:
            logger.exception("Unexpected failure while handling event", extra={"topic": topic})
            if dead_letter:
                await self._dead_letter(
                    topic, payload,
                    UnprocessableEventError(f"{type(e).__name__}: {e}", details={"exception": type(e).__name__})
                )
            return HandleOutcome.REJECTED

    async def _apply(self, effects: EventEffects) -> HandleOutcome:
        async with self.session_factory() as db:
            if (
                self.settings.sequence_guard_enabled
                and effects.sequence is not None
                and not await claim_sequence(db, effects.vehicle_id, effects.sequence)
            ):
                await db.rollback()
                return HandleOutcome.DUPLICATE

            if effects.delta is not None:
                await UsageStatsService.apply_reading(db, effects.vehicle_id, effects.timestamp, effects.delta)

            for metric_type, value, unit in effects.metrics:
                await PerformanceMetricService.record(
                    db, effects.vehicle_id, metric_type, effects.timestamp, value, unit
                )

            await db.commit()
        return HandleOutcome.APPLIED

    async def _dead_letter(self, topic: str, payload: Any, error: AppException) -> None:
        try:
            async with self.session_factory() as db:
                await record_dead_letter(db, topic, payload, error)
        except (OperationalError, InterfaceError) as e:
            raise StorageUnavailableError(str(e.orig or e)) from e

    # Handlers: classified event -> effects (or None when nothing applies)

    def _log_only(self, event: ClassifiedEvent) -> None:
        logger.debug("No analytics effect", extra={"topic": event.topic, "kind": event.kind.value})
        return None

    def _sensor_effects(self, event: ClassifiedEvent) -> Optional[EventEffects]:
        reading = parse_payload(SensorReading, event.payload)
        handler = self.sensor_handlers.get(reading.sensor_type)
        if handler is None:
            logger.debug("Unhandled sensor type", extra={"sensor_type": reading.sensor_type})
            return None

        model, build = handler
        return build(parse_payload(model, event.payload))

    def _engine_effects(self, reading: EngineReading) -> Optional[EventEffects]:
        if not reading.is_running:
            return None
        increment = self.settings.engine_increment_hours
        idle = increment if reading.rpm is not None and reading.rpm < self.settings.idle_rpm_threshold else 0.0
        return EventEffects(
            vehicle_id=reading.vehicle_id,
            timestamp=reading.timestamp,
            sequence=reading.sequence,
            delta=UsageDelta(hours_operated=increment, idle_time=idle),
            metrics=[(MetricType.ENGINE_HOURS, reading.hours_operated or 0.0, "hours")],
        )

    def _fuel_effects(self, reading: FuelReading) -> Optional[EventEffects]:
        fuel = reading.fuel_consumed
        distance = reading.distance_since_last_reading
        if fuel is None or not distance:
            return None

        effects = EventEffects(
            vehicle_id=reading.vehicle_id,
            timestamp=reading.timestamp,
            sequence=reading.sequence,
            delta=UsageDelta(distance_traveled=distance, fuel_consumed=fuel),
        )
        if fuel > 0 and distance > 0:
            effects.metrics.append((MetricType.FUEL_EFFICIENCY, distance / fuel, "km/l"))
        return effects

    def _utilization_effects(self, reading: UtilizationReading) -> Optional[EventEffects]:
        rate = reading.utilization_rate
        if rate is None:
            return None
        return EventEffects(
            vehicle_id=reading.vehicle_id,
            timestamp=reading.timestamp,
            sequence=reading.sequence,
            metrics=[
                (MetricType.UTILIZATION, rate, "percent"),
                (MetricType.COST_PER_HOUR, self.settings.cost_per_hour_at_full_utilization * rate, "usd"),
            ],
        )

    def _maintenance_effects(self, event: ClassifiedEvent) -> Optional[EventEffects]:
        maintenance = parse_payload(MaintenanceEvent, event.payload)
        logger.info(
            "Maintenance event",
            extra={"vehicle_id": maintenance.vehicle_id, "event_type": maintenance.event_type}
        )
        record = maintenance.maintenance_record or {}
        if maintenance.event_type != "maintenance_performed" or not record.get("cost"):
            return None
        return EventEffects(
            vehicle_id=maintenance.vehicle_id,
            timestamp=maintenance.timestamp,
            metrics=[(MetricType.MAINTENANCE_FREQUENCY, 1.0, "events")],
        )
