from pydantic import BaseModel, Field
import uuid
from decimal import Decimal


class OrderRequest(BaseModel):
    """Schema for the order creation request body."""
    customer_name: str = Field(..., min_length=1, max_length=120, description="Name of the ordering customer.")
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2, description="Order total.")


class OrderPlacementResponse(BaseModel):
    """Response schema for a newly placed order (202 Accepted)."""
    order_id: uuid.UUID
    event_id: uuid.UUID
    message: str


class PendingOutboxResponse(BaseModel):
    pending: int
    stalled: int


class ProcessedEventsResponse(BaseModel):
    processed: int
