"""
Event Classifier.

Maps a raw stream envelope to the kind of event it carries. Pure: no I/O,
no validation of the payload beyond locating it.
"""

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Union

from fleet_analytics.app.core.exceptions import MalformedEventError


class EventKind(str, enum.Enum):
    VEHICLE_LIFECYCLE = "vehicle_lifecycle"
    LOCATION = "location"
    SENSOR_READING = "sensor_reading"
    MAINTENANCE = "maintenance"


TOPIC_KINDS = {
    "vehicle-events": EventKind.VEHICLE_LIFECYCLE,
    "vehicle-status": EventKind.VEHICLE_LIFECYCLE,
    "vehicle-location": EventKind.LOCATION,
    "sensor-data": EventKind.SENSOR_READING,
    "maintenance-events": EventKind.MAINTENANCE,
}


@dataclass(frozen=True)
class ClassifiedEvent:
    kind: EventKind
    topic: str
    payload: Any


@dataclass(frozen=True)
class Unrecognized:
    topic: str


Classification = Union[ClassifiedEvent, Unrecognized]


def classify(envelope: Union[Mapping[str, Any], tuple]) -> Classification:
    """
    Classify an envelope given as {"topic", "payload"} or (topic, payload).

    Raises:
        MalformedEventError: If the envelope has no topic.
    """
    if isinstance(envelope, tuple) and len(envelope) == 2:
        topic, payload = envelope
    elif isinstance(envelope, Mapping):
        topic = envelope.get("topic") or envelope.get("type")
        payload = envelope.get("payload")
    else:
        raise MalformedEventError("Envelope must be a mapping or a (topic, payload) pair")

    if not isinstance(topic, str) or not topic:
        raise MalformedEventError("Envelope is missing a topic", details={"topic": topic})

    kind = TOPIC_KINDS.get(topic)
    if kind is None:
        return Unrecognized(topic=topic)
    return ClassifiedEvent(kind=kind, topic=topic, payload=payload)
