from typing import Optional

from fastapi import APIRouter

from app.core.config import MAX_ATTEMPTS
from app.schemas.order import PendingOutboxResponse, ProcessedEventsResponse
from app.schemas.response import SuccessResponse
from app.services.order_service import count_pending_events, count_processed_events, count_stalled_events

router = APIRouter()


@router.get("/outbox/pending", response_model=SuccessResponse)
async def pending_outbox_endpoint():
    """Outbox rows not yet on the broker; ``stalled`` ones are parked after repeated dispatch failures."""
    data = PendingOutboxResponse(
        pending=await count_pending_events(),
        stalled=await count_stalled_events(MAX_ATTEMPTS),
    ).model_dump()
    return SuccessResponse(data=data)


@router.get("/messages/processed", response_model=SuccessResponse)
async def processed_messages_endpoint(consumer_name: Optional[str] = None):
    """Count of processed-event ledger rows, optionally for one consumer."""
    data = ProcessedEventsResponse(processed=await count_processed_events(consumer_name)).model_dump()
    return SuccessResponse(data=data)
