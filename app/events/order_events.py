import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class OrderSubmitted(BaseModel):
    """Broker body for a newly created order. ``message_id`` is the outbox event_id."""
    message_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    order_id: uuid.UUID
    customer_name: str
    amount: Decimal
    occurred_at: datetime
    correlation_id: Optional[str] = None


ORDER_SUBMITTED = "order.submitted.v1"
