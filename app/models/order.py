from tortoise import fields, models
import uuid


class Order(models.Model):
    """Business record co-written with its OrderSubmitted outbox event."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    customer_name = fields.CharField(max_length=120)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "orders"
        indexes = [
            ("created_at",),  # Time-based queries
        ]
