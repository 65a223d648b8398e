import logging

from faststream.rabbit import RabbitBroker

from app.core.config import RABBITMQ_URL

log = logging.getLogger(__name__)

# Shared broker; subscribers register on import of app.consumers.order_consumer.
# Creating it does not connect, start_broker() does.
broker = RabbitBroker(RABBITMQ_URL, logger=logging.getLogger("faststream"))


async def start_broker():
    """Connects to RabbitMQ and starts all registered subscribers."""
    try:
        await broker.start()
        log.info("RabbitMQ broker started.")
    except Exception as e:
        log.critical(f"Could not connect to RabbitMQ. Error: {e}")
        raise


async def close_broker():
    await broker.close()
    log.info("RabbitMQ broker closed.")
