"""
Outbox publisher: drains PENDING outbox rows to RabbitMQ.

One cycle reads a batch (no transaction), publishes each row in
``occurred_at`` order, then commits every status change in a single
transaction. A failure anywhere aborts the cycle without committing, so the
whole batch is published again on the next tick. Rows already on the broker
from the aborted cycle get delivered twice; consumers dedupe on event_id.
"""
import asyncio
import logging
from typing import Any, List, Optional

from tortoise import timezone
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from app.core.broker import broker as default_broker, close_broker, start_broker
from app.core.config import BATCH_SIZE, MAX_ATTEMPTS, POLLING_INTERVAL
from app.core.correlation import CORRELATION_HEADER
from app.core.db import close_db, init_db
from app.core.exceptions import OutboxDispatchError
from app.core.logging_config import setup_logging
from app.events.outbox_utility import decode_outbox_event
from app.models.outbox import OutboxEvent, OutboxStatus

log = logging.getLogger(__name__)


async def fetch_pending_batch(batch_size: int = BATCH_SIZE, max_attempts: int = MAX_ATTEMPTS) -> List[OutboxEvent]:
    """Oldest-first PENDING rows that have not been parked."""
    return await (
        OutboxEvent.filter(status=OutboxStatus.PENDING, attempts__lt=max_attempts)
        .order_by("occurred_at", "id")
        .limit(batch_size)
    )


async def publish_outbox_event(broker: Any, outbox: OutboxEvent, event: Any, queue: str) -> None:
    """Sends one event; the broker message id is the outbox event_id."""
    headers = {CORRELATION_HEADER: outbox.correlation_id} if outbox.correlation_id else None
    await broker.publish(
        event,
        queue=queue,
        message_id=str(outbox.event_id),
        correlation_id=outbox.correlation_id,
        headers=headers,
    )


async def commit_batch(sent: List[OutboxEvent], failed: List[OutboxEvent]) -> None:
    """
    Persists one cycle's outcome in a single transaction.

    Updates are guarded on status=PENDING so a row another publisher already
    marked SENT keeps its original published_at.
    """
    if not sent and not failed:
        return

    async with in_transaction() as conn:
        for outbox in sent:
            await OutboxEvent.filter(id=outbox.id, status=OutboxStatus.PENDING).using_db(conn).update(
                status=OutboxStatus.SENT,
                published_at=outbox.published_at,
            )
        for outbox in failed:
            await OutboxEvent.filter(id=outbox.id, status=OutboxStatus.PENDING).using_db(conn).update(
                attempts=F("attempts") + 1,
                last_error=outbox.last_error,
            )


async def publish_pending_events(
    broker: Any,
    batch_size: int = BATCH_SIZE,
    max_attempts: int = MAX_ATTEMPTS,
) -> int:
    """Runs one publisher cycle and returns how many events were sent."""
    events = await fetch_pending_batch(batch_size, max_attempts)

    if not events:
        return 0

    sent: List[OutboxEvent] = []
    failed: List[OutboxEvent] = []

    for outbox in events:
        try:
            event, queue = decode_outbox_event(outbox)
        except OutboxDispatchError as e:
            # Skip-and-alert: never mark an undeliverable row as sent
            log.error(
                f"Outbox event {outbox.event_id} ({outbox.event_type}) cannot be dispatched: {e.reason}. "
                f"Attempt {outbox.attempts + 1} of {max_attempts}."
            )
            outbox.attempts += 1
            outbox.last_error = e.reason
            failed.append(outbox)
            continue

        # Broker errors propagate: nothing from this cycle is committed
        await publish_outbox_event(broker, outbox, event, queue)

        outbox.status = OutboxStatus.SENT
        outbox.published_at = timezone.now()
        sent.append(outbox)
        log.debug(f"Published {outbox.event_type} (ID: {outbox.event_id.hex[:8]}...) to '{queue}'")

    await commit_batch(sent, failed)
    return len(sent)


async def run_outbox_poller(
    broker: Any,
    stop_event: asyncio.Event,
    interval: float = POLLING_INTERVAL,
    batch_size: int = BATCH_SIZE,
    max_attempts: int = MAX_ATTEMPTS,
) -> None:
    """
    Main loop for the publisher. Errors are logged and the batch is retried on
    the next tick; only ``stop_event`` (or task cancellation) ends the loop.
    A batch that has started always runs to completion.
    """
    log.info(f"--- Outbox Poller Started (interval={interval}s, batch={batch_size}) ---")

    while not stop_event.is_set():
        try:
            published = await publish_pending_events(broker, batch_size, max_attempts)
            if published:
                log.info(f"Outbox poller published {published} event(s).")
        except Exception:
            log.exception("Outbox dispatch failed; the batch will be retried on the next tick.")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    log.info("--- Outbox Poller Stopped ---")


async def start_outbox_poller(stop_event: Optional[asyncio.Event] = None):
    """Entry point for running the publisher as its own process."""
    await init_db()
    await start_broker()
    try:
        await run_outbox_poller(default_broker, stop_event or asyncio.Event())
    finally:
        await close_broker()
        await close_db()


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(start_outbox_poller())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
