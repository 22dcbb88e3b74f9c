from __future__ import annotations

import os

# Settings are read at import time by the engine module; pin the test environment first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SYNC_PROVIDER"] = "fake"
os.environ["LLM_PROVIDER"] = "fake"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
# In-memory SQLite shares one connection, so units of work run one at a time.
os.environ["SYNC_MAX_CONCURRENCY"] = "1"
os.environ["DRAFT_MAX_CONCURRENCY"] = "1"
os.environ.pop("CRON_SECRET", None)

import pytest  # noqa: E402

from reviewflow.core.config import get_settings  # noqa: E402
from reviewflow.domain.models import Base  # noqa: E402
from reviewflow.persistence.db import engine  # noqa: E402
from reviewflow.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from an empty schema and a clean settings cache.
    get_settings.cache_clear()
    reset_telemetry()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
    get_settings.cache_clear()
