from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from app.core.config import ORDER_EVENTS_QUEUE
from app.core.exceptions import EventDecodeError, UnknownEventTypeError
from app.events.order_events import ORDER_SUBMITTED, OrderSubmitted
from app.models.outbox import OutboxEvent, OutboxStatus

# event_type -> (body model, destination queue)
EVENT_REGISTRY: Dict[str, Tuple[Type[BaseModel], str]] = {
    ORDER_SUBMITTED: (OrderSubmitted, ORDER_EVENTS_QUEUE),
}


async def create_outbox_event(
    event: OrderSubmitted,
    event_type: str,
    correlation_id: Optional[str] = None,
    conn: Any = None
) -> OutboxEvent:
    """
    Creates a new Outbox event record using the provided database connection (transaction).

    CRITICAL: Passing 'conn' ensures the event is created atomically with the business data.
    """
    return await OutboxEvent.create(
        event_id=event.message_id,
        event_type=event_type,
        payload=event.model_dump_json(),
        occurred_at=event.occurred_at,
        status=OutboxStatus.PENDING,
        correlation_id=correlation_id,
        attempts=0,
        using_db=conn
    )


def decode_outbox_event(outbox: OutboxEvent) -> Tuple[BaseModel, str]:
    """Returns the typed event body and the queue it is published to."""
    entry = EVENT_REGISTRY.get(outbox.event_type)
    if entry is None:
        raise UnknownEventTypeError(outbox.event_id, outbox.event_type, "no handler registered")

    model, queue = entry
    try:
        event = model.model_validate_json(outbox.payload)
    except ValidationError as e:
        raise EventDecodeError(outbox.event_id, outbox.event_type, f"payload does not match schema: {e}") from e

    # The body must carry the same identity as the row it came from
    message_id = getattr(event, "message_id", None)
    if message_id is not None and message_id != outbox.event_id:
        raise EventDecodeError(outbox.event_id, outbox.event_type, f"payload message_id {message_id} does not match")
    return event, queue
