# app/models/__init__.py
from .order import Order
from .outbox import OutboxEvent, OutboxStatus
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "Order",
    "OutboxEvent",
    "OutboxStatus",
    "ProcessedEvent",
]
