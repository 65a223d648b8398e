from tortoise import fields, models


class ProcessedEvent(models.Model):
    """
    Ledger used for Idempotency in Consumers. One row per (consumer, event):
    the same event can be handled once by each distinct consumer.

    The unique constraint is what resolves concurrent deliveries; rows are
    never updated or deleted.
    """
    id = fields.BigIntField(primary_key=True)
    event_id = fields.UUIDField()
    consumer_name = fields.CharField(max_length=128)
    processed_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
        unique_together = (("consumer_name", "event_id"),)
