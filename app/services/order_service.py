from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from tortoise import timezone
from tortoise.transactions import in_transaction

from app.events.order_events import ORDER_SUBMITTED, OrderSubmitted
from app.events.outbox_utility import create_outbox_event
from app.models.order import Order
from app.models.outbox import OutboxEvent, OutboxStatus
from app.models.processed_event import ProcessedEvent

MAX_AMOUNT = Decimal(10) ** 12


def _validate(customer_name: str, amount) -> Tuple[str, Decimal]:
    name = (customer_name or "").strip()
    if not name:
        raise ValueError("customer_name is required.")
    if len(name) > 120:
        raise ValueError("customer_name must be at most 120 characters.")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError):
        raise ValueError(f"amount is not a valid number: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValueError("amount must be greater than zero.")
    try:
        value = value.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError(f"amount cannot be represented with two decimals: {amount!r}")
    # orders.amount is decimal(14,2): at most 12 integer digits
    if value >= MAX_AMOUNT:
        raise ValueError(f"amount must be less than {MAX_AMOUNT}.")
    return name, value


async def place_order(customer_name: str, amount, correlation_id: Optional[str] = None) -> Tuple[Order, OrderSubmitted]:
    """
    FAST PATH: Creates the Order and its OrderSubmitted OutboxEvent atomically.
    Delivery to the broker happens later in the outbox poller; callers only
    get the guarantee that it will eventually happen.
    """
    name, value = _validate(customer_name, amount)

    async with in_transaction() as conn:
        # 1. Create the business record
        order = await Order.create(customer_name=name, amount=value, using_db=conn)

        event = OrderSubmitted(
            order_id=order.id,
            customer_name=order.customer_name,
            amount=order.amount,
            occurred_at=timezone.now(),
            correlation_id=correlation_id,
        )

        # 2. ATOMIC EVENT: same transaction as the order insert
        await create_outbox_event(
            event=event,
            event_type=ORDER_SUBMITTED,
            correlation_id=correlation_id,
            conn=conn
        )

    return order, event


async def count_pending_events() -> int:
    return await OutboxEvent.filter(status=OutboxStatus.PENDING).count()


async def count_stalled_events(max_attempts: int) -> int:
    """Pending events parked after repeated dispatch failures."""
    return await OutboxEvent.filter(status=OutboxStatus.PENDING, attempts__gte=max_attempts).count()


async def count_processed_events(consumer_name: Optional[str] = None) -> int:
    query = ProcessedEvent.all()
    if consumer_name:
        query = query.filter(consumer_name=consumer_name)
    return await query.count()
