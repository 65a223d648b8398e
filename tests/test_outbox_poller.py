import asyncio
import pytest
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from tortoise import timezone

from app.consumers.outbox_poller import commit_batch, fetch_pending_batch, publish_pending_events, run_outbox_poller
from app.core.correlation import CORRELATION_HEADER
from app.events.order_events import ORDER_SUBMITTED, OrderSubmitted
from app.models.outbox import OutboxEvent, OutboxStatus
from app.services.order_service import place_order


def make_broker():
    broker = AsyncMock()
    broker.publish = AsyncMock()
    return broker


async def add_outbox_row(occurred_at, event_type=ORDER_SUBMITTED, payload=None, correlation_id=None):
    event = OrderSubmitted(
        order_id=uuid.uuid4(),
        customer_name="Ada",
        amount=Decimal("1.00"),
        occurred_at=occurred_at,
        correlation_id=correlation_id,
    )
    return await OutboxEvent.create(
        event_id=event.message_id,
        event_type=event_type,
        payload=payload if payload is not None else event.model_dump_json(),
        occurred_at=occurred_at,
        correlation_id=correlation_id,
    )


def published_ids(broker):
    return [c.kwargs["message_id"] for c in broker.publish.call_args_list]


@pytest.mark.asyncio
async def test_cycle_publishes_pending_event_and_marks_it_sent(db):
    _, event = await place_order("Ada", "42.50", correlation_id="corr-42")
    broker = make_broker()

    assert await publish_pending_events(broker, batch_size=20) == 1

    broker.publish.assert_awaited_once()
    args, kwargs = broker.publish.call_args
    assert isinstance(args[0], OrderSubmitted)
    assert args[0].message_id == event.message_id
    assert kwargs["message_id"] == str(event.message_id)
    assert kwargs["correlation_id"] == "corr-42"
    assert kwargs["headers"] == {CORRELATION_HEADER: "corr-42"}

    outbox = await OutboxEvent.get(event_id=event.message_id)
    assert outbox.status == OutboxStatus.SENT
    assert outbox.published_at is not None


@pytest.mark.asyncio
async def test_no_correlation_header_when_event_has_none(db):
    await place_order("Ada", "1.00")
    broker = make_broker()

    await publish_pending_events(broker)

    assert broker.publish.call_args.kwargs["headers"] is None


@pytest.mark.asyncio
async def test_batch_is_published_oldest_first(db):
    now = timezone.now()
    t3 = await add_outbox_row(now)
    t1 = await add_outbox_row(now - timedelta(seconds=20))
    t2 = await add_outbox_row(now - timedelta(seconds=10))
    broker = make_broker()

    await publish_pending_events(broker, batch_size=20)

    assert published_ids(broker) == [str(t1.event_id), str(t2.event_id), str(t3.event_id)]


@pytest.mark.asyncio
async def test_batch_size_bounds_one_cycle(db):
    now = timezone.now()
    rows = [await add_outbox_row(now + timedelta(seconds=i)) for i in range(5)]
    broker = make_broker()

    assert await publish_pending_events(broker, batch_size=2) == 2
    assert published_ids(broker) == [str(rows[0].event_id), str(rows[1].event_id)]
    assert await OutboxEvent.filter(status=OutboxStatus.PENDING).count() == 3


@pytest.mark.asyncio
async def test_sent_events_are_not_published_again(db):
    await place_order("Ada", "1.00")
    broker = make_broker()

    await publish_pending_events(broker)
    outbox = await OutboxEvent.first()
    first_published_at = outbox.published_at

    assert await publish_pending_events(broker) == 0
    broker.publish.assert_awaited_once()

    await outbox.refresh_from_db()
    assert outbox.status == OutboxStatus.SENT
    assert outbox.published_at == first_published_at


@pytest.mark.asyncio
async def test_broker_failure_commits_nothing_and_batch_is_retried(db):
    now = timezone.now()
    first = await add_outbox_row(now - timedelta(seconds=1))
    second = await add_outbox_row(now)
    broker = make_broker()
    broker.publish.side_effect = [None, ConnectionError("broker down")]

    with pytest.raises(ConnectionError):
        await publish_pending_events(broker)

    # The first publish reached the broker but was never committed
    assert await OutboxEvent.filter(status=OutboxStatus.PENDING).count() == 2

    broker.publish.side_effect = None
    broker.publish.reset_mock()
    assert await publish_pending_events(broker) == 2
    assert published_ids(broker) == [str(first.event_id), str(second.event_id)]


@pytest.mark.asyncio
async def test_commit_failure_republishes_on_next_cycle(db):
    """Broker got the message but the commit failed: at-least-once, not at-most-once."""
    _, event = await place_order("Ada", "1.00")
    broker = make_broker()

    with patch('app.consumers.outbox_poller.commit_batch', new_callable=AsyncMock) as mock_commit:
        mock_commit.side_effect = RuntimeError("db gone")
        with pytest.raises(RuntimeError):
            await publish_pending_events(broker)

    assert await publish_pending_events(broker) == 1
    assert published_ids(broker) == [str(event.message_id), str(event.message_id)]
    assert (await OutboxEvent.get(event_id=event.message_id)).status == OutboxStatus.SENT


@pytest.mark.asyncio
async def test_unknown_event_type_is_skipped_and_stays_pending(db):
    now = timezone.now()
    unknown = await add_outbox_row(now - timedelta(seconds=1), event_type="order.mystery.v1")
    known = await add_outbox_row(now)
    broker = make_broker()

    assert await publish_pending_events(broker, max_attempts=5) == 1
    assert published_ids(broker) == [str(known.event_id)]

    await unknown.refresh_from_db()
    assert unknown.status == OutboxStatus.PENDING
    assert unknown.published_at is None
    assert unknown.attempts == 1
    assert "no handler registered" in unknown.last_error


@pytest.mark.asyncio
async def test_undecodable_event_is_parked_after_max_attempts(db):
    broken = await add_outbox_row(timezone.now(), payload='{"not": "an order"}')
    broker = make_broker()

    for _ in range(3):
        await publish_pending_events(broker, max_attempts=2)

    await broken.refresh_from_db()
    assert broken.attempts == 2
    assert broken.status == OutboxStatus.PENDING
    broker.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_poller_survives_errors_and_stops_on_signal(db):
    await place_order("Ada", "1.00")
    broker = make_broker()
    broker.publish.side_effect = [ConnectionError("broker down"), None]
    stop_event = asyncio.Event()

    task = asyncio.create_task(run_outbox_poller(broker, stop_event, interval=0.01))
    for _ in range(200):
        if await OutboxEvent.filter(status=OutboxStatus.SENT).count() == 1:
            break
        await asyncio.sleep(0.01)

    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert broker.publish.await_count == 2
    assert await OutboxEvent.filter(status=OutboxStatus.SENT).count() == 1


@pytest.mark.asyncio
async def test_stop_signal_interrupts_the_sleep(db):
    broker = make_broker()
    stop_event = asyncio.Event()

    task = asyncio.create_task(run_outbox_poller(broker, stop_event, interval=60))
    await asyncio.sleep(0.05)
    stop_event.set()

    await asyncio.wait_for(task, timeout=1)
    assert task.done()


@pytest.mark.asyncio
async def test_commit_does_not_overwrite_a_row_another_publisher_sent(db):
    await place_order("Ada", "1.00")
    [row] = await fetch_pending_batch()

    # A second publisher commits first, with its own timestamp
    await OutboxEvent.filter(id=row.id).update(
        status=OutboxStatus.SENT,
        published_at=timezone.now() - timedelta(minutes=5),
    )
    first_published_at = (await OutboxEvent.get(id=row.id)).published_at

    row.status = OutboxStatus.SENT
    row.published_at = timezone.now()
    row.last_error = "late failure"
    await commit_batch([row], [row])

    stored = await OutboxEvent.get(id=row.id)
    assert stored.is_sent
    assert stored.published_at == first_published_at
    assert stored.attempts == 0
    assert stored.last_error is None
