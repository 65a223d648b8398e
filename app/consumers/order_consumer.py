import logging
from typing import Optional

from faststream.exceptions import NackMessage
from faststream.rabbit.annotations import RabbitMessage

from app.core.broker import broker
from app.core.config import ORDER_EVENTS_QUEUE
from app.core.correlation import CORRELATION_HEADER, reset_correlation_id, set_correlation_id
from app.consumers.idempotency import process_once
from app.events.order_events import OrderSubmitted

log = logging.getLogger(__name__)

CONSUMER_NAME = "order_submitted_consumer"


async def consume_order_submitted(event: OrderSubmitted, correlation_id: Optional[str] = None) -> bool:
    """
    Consumer logic for 'order.submitted.v1'. A pure dedup gate: the only
    write is the ledger row. Returns False for a redelivered event.
    """
    token = set_correlation_id(correlation_id or event.correlation_id)
    try:
        processed = await process_once(CONSUMER_NAME, event.message_id)
        if processed:
            log.info(f"Order {event.order_id} accepted for {event.customer_name} ({event.amount}).")
        return processed
    finally:
        reset_correlation_id(token)


async def dispatch_order_submitted(event: OrderSubmitted, headers: Optional[dict] = None) -> None:
    """
    Runs the consumer for one delivery. Any failure is turned into a nack with
    requeue so the broker redelivers; duplicates return normally and are acked.
    """
    correlation_id = (headers or {}).get(CORRELATION_HEADER)
    try:
        await consume_order_submitted(event, correlation_id)
    except Exception as e:
        log.exception(f"Failed to process event {event.message_id}; requeueing for redelivery.")
        raise NackMessage(requeue=True) from e


@broker.subscriber(ORDER_EVENTS_QUEUE)
async def handle_order_submitted(event: OrderSubmitted, message: RabbitMessage) -> None:
    """Broker entry point."""
    await dispatch_order_submitted(event, message.headers)
