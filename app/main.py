import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from app.core.db import init_db, close_db
from app.core.broker import broker, start_broker, close_broker
from app.core.config import PROJECT_NAME, VERSION, PUBLISHER_ENABLED
from app.core.correlation import correlation_id_middleware
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging_config import setup_logging
from app.api.v1.orders import router as orders_router
from app.api.v1.outbox import router as outbox_router
from app.consumers import order_consumer  # noqa: F401  registers broker subscribers
from app.consumers.outbox_poller import run_outbox_poller

setup_logging()
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()  # Connect to DB and generate schemas
    try:
        await start_broker()
    except Exception:
        await close_db()
        raise

    stop_event = asyncio.Event()
    poller_task = None
    if PUBLISHER_ENABLED:
        poller_task = asyncio.create_task(run_outbox_poller(broker, stop_event), name="outbox-poller")

    yield

    # Let an in-flight batch finish before tearing down connections
    stop_event.set()
    if poller_task is not None:
        await poller_task
    await close_broker()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.middleware("http")(correlation_id_middleware)

# Include routers for modular API structure
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Management"])
app.include_router(outbox_router, prefix="/api/v1", tags=["Outbox Monitoring"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
