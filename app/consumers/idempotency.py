"""
Dedup gate for consumers: turns at-least-once delivery into one effect per
(consumer_name, event_id).

The existence check is only a fast path. Two deliveries racing past it are
settled by the unique constraint on the ledger: the loser's insert fails with
IntegrityError, which is reported as a duplicate, never as a retryable error.
"""
import logging
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from app.core.exceptions import DuplicateEventError
from app.models.processed_event import ProcessedEvent

log = logging.getLogger(__name__)

SideEffect = Callable[[Any], Awaitable[None]]


async def is_processed(consumer_name: str, event_id: UUID) -> bool:
    return await ProcessedEvent.filter(consumer_name=consumer_name, event_id=event_id).exists()


async def record_and_apply(consumer_name: str, event_id: UUID, side_effect: Optional[SideEffect] = None) -> None:
    """
    Inserts the ledger row and runs the side effect in one transaction.

    The ledger row goes first so a concurrent duplicate fails before doing
    any work. Raises DuplicateEventError if the row already exists.
    """
    async with in_transaction() as conn:
        try:
            await ProcessedEvent.create(consumer_name=consumer_name, event_id=event_id, using_db=conn)
        except IntegrityError as e:
            raise DuplicateEventError(consumer_name, event_id) from e

        if side_effect is not None:
            await side_effect(conn)


async def process_once(consumer_name: str, event_id: UUID, side_effect: Optional[SideEffect] = None) -> bool:
    """
    Applies ``side_effect`` at most once for this consumer and event.

    Returns True when the effect ran, False for a duplicate. Any other error
    propagates so the message is not acknowledged and gets redelivered.
    """
    # Idempotency Check
    if await is_processed(consumer_name, event_id):
        log.info(f"Idempotency: {consumer_name} skipping duplicate event {event_id}.")
        return False

    try:
        await record_and_apply(consumer_name, event_id, side_effect)
    except DuplicateEventError:
        log.info(f"Idempotency: {consumer_name} lost the race for event {event_id}; already processed.")
        return False

    log.info(f"Event {event_id} marked as processed by {consumer_name}.")
    return True
