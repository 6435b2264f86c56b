"""
Event ingestion endpoint.

Accepts a single stream envelope over HTTP and runs it through the same
dispatcher the Kafka consumer uses.
"""

from fastapi import APIRouter, Depends

from fleet_analytics.app.core.dependencies import get_event_dispatcher
from fleet_analytics.app.schemas.events import EventEnvelope, EventHandleResponse
from fleet_analytics.app.services.event_dispatcher import EventDispatcher

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=EventHandleResponse)
async def ingest_event(
    envelope: EventEnvelope,
    dispatcher: EventDispatcher = Depends(get_event_dispatcher)
):
    """
    Handle one event.

    Returns the outcome: applied, duplicate, ignored or rejected.
    Rejected events are kept in the dead letter queue.
    """
    outcome = await dispatcher.handle(envelope.topic, envelope.payload)
    return EventHandleResponse(topic=envelope.topic, outcome=outcome.value)
