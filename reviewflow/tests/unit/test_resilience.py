from __future__ import annotations

import asyncio

import pytest

from reviewflow.core.errors import GenerationError
from reviewflow.services.resilience import Bulkhead, RetryPolicy, retry_async, single_attempt_policy
from reviewflow.services.telemetry import get_counter


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
    )
    assert result == "ok"
    assert calls["count"] == 2
    assert get_counter("external_retries_total") == 1


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_domain_errors() -> None:
    calls = {"count": 0}

    async def rejected() -> str:
        calls["count"] += 1
        raise GenerationError("quota exceeded")

    with pytest.raises(GenerationError):
        await retry_async(rejected, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_single_attempt_policy_enforces_timeout() -> None:
    async def slow() -> str:
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(TimeoutError):
        await retry_async(slow, policy=single_attempt_policy(0.01))


@pytest.mark.asyncio
async def test_bulkhead_caps_concurrency() -> None:
    bulkhead = Bulkhead("test", 2)
    state = {"active": 0, "peak": 0}

    async def work() -> None:
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1

    await asyncio.gather(*(bulkhead.run(work) for _ in range(6)))
    assert state["peak"] == 2
    assert bulkhead.limit == 2
