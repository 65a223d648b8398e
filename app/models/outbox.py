from enum import Enum
from tortoise import fields, models


class OutboxStatus(str, Enum):
    PENDING = "PENDING"  # Written with the business record, not yet on the broker
    SENT = "SENT"  # Broker acknowledged; terminal


class OutboxEvent(models.Model):
    """
    The Outbox table stores events atomically with the database transaction.
    This is the core of the Transactional Outbox Pattern.

    A row moves PENDING -> SENT exactly once. ``published_at`` is the audit
    timestamp of that transition and is never cleared.
    """
    id = fields.BigIntField(primary_key=True)  # Storage order only, never exposed
    event_id = fields.UUIDField(unique=True)  # End-to-end dedup key, equals the broker message id
    event_type = fields.CharField(max_length=128)  # e.g., 'order.submitted.v1'
    payload = fields.TextField()  # Serialized event body, opaque to the store
    occurred_at = fields.DatetimeField()  # Publish-order key
    status = fields.CharEnumField(OutboxStatus, default=OutboxStatus.PENDING)
    published_at = fields.DatetimeField(null=True)
    correlation_id = fields.CharField(max_length=64, null=True)
    attempts = fields.IntField(default=0)  # Non-transient dispatch failures only
    last_error = fields.TextField(null=True)

    class Meta:
        table = "outbox_events"
        indexes = [
            ("status", "occurred_at"),  # Pending scan, oldest first
            ("published_at",),
        ]

    @property
    def is_sent(self) -> bool:
        return self.status == OutboxStatus.SENT
