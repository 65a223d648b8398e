import logging
from fastapi import APIRouter, HTTPException, Response, status
from app.core.correlation import get_correlation_id
from app.schemas.response import SuccessResponse
from app.services.order_service import place_order
from app.schemas.order import OrderRequest, OrderPlacementResponse

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderRequest, response: Response):
    """
    Places a new order. Returns 202 Accepted because the OrderSubmitted
    event is delivered asynchronously by the outbox poller.
    """
    try:
        order, event = await place_order(
            customer_name=request_data.customer_name,
            amount=request_data.amount,
            correlation_id=get_correlation_id(),
        )
    except ValueError as e:
        log.error(f"Value error placing order: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    log.info(f"Order {order.id} placed with event {event.message_id}.")
    response.headers["Location"] = f"/api/v1/orders/{order.id}"
    data = OrderPlacementResponse(
        order_id=order.id,
        event_id=event.message_id,
        message="Order Accepted and is being processed."
    ).model_dump(mode="json")
    return SuccessResponse(data=data)
