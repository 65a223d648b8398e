import pytest_asyncio
from tortoise import Tortoise

from app.core.db import MODELS_MODULES


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test; unique constraints behave as in Postgres."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()
