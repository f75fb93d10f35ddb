"""Shared test configuration: must be loaded before src modules."""

import os

# Override database URL and secrets before any src modules are imported.
os.environ["WEBHOOK_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)
os.environ.pop("QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN", None)

import pytest
from src.database import engine, Base
from src.models import webhook_event, webhook_queue  # noqa: F401


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
