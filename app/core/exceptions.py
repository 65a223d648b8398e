"""Domain errors raised by the outbox publisher and the idempotent consumers."""
from uuid import UUID


class OutboxDispatchError(Exception):
    """An outbox row cannot be turned into a broker message.

    These failures are deterministic: retrying the same row will fail the
    same way, so the publisher counts them against ``attempts`` instead of
    retrying forever.
    """

    def __init__(self, event_id: UUID, event_type: str, reason: str):
        self.event_id = event_id
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"{event_type} ({event_id}): {reason}")


class UnknownEventTypeError(OutboxDispatchError):
    pass


class EventDecodeError(OutboxDispatchError):
    pass


class DuplicateEventError(Exception):
    """The (consumer_name, event_id) ledger row already exists."""

    def __init__(self, consumer_name: str, event_id: UUID):
        self.consumer_name = consumer_name
        self.event_id = event_id
        super().__init__(f"{consumer_name} already processed {event_id}")
