from __future__ import annotations

import logging

import pytest

from wallet_agent.execution_kernel import exponential_delay, run_async_with_retry


async def _no_sleep(delay: float) -> None:
    return None


def test_exponential_delay() -> None:
    assert [exponential_delay(a, 0.5) for a in range(3)] == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_run_async_with_retry_retries_and_succeeds() -> None:
    attempts: list[int] = []
    retries: list[tuple[int, float]] = []

    async def invoke(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 1:
            raise RuntimeError("transient")
        return "ok"

    result = await run_async_with_retry(
        caller="test",
        max_retries=2,
        invoke=invoke,
        should_retry=lambda exc: isinstance(exc, RuntimeError),
        compute_delay=lambda attempt, exc: exponential_delay(attempt, 0.25),
        logger=logging.getLogger("test_execution_kernel"),
        on_retry=lambda attempt, exc, delay: retries.append((attempt, delay)),
        sleep=_no_sleep,
    )

    assert result == "ok"
    assert attempts == [0, 1]
    assert retries == [(0, 0.25)]


@pytest.mark.asyncio
async def test_run_async_with_retry_stops_on_non_retryable() -> None:
    attempts: list[int] = []
    errors: list[int] = []

    async def invoke(attempt: int) -> str:
        attempts.append(attempt)
        raise ValueError("permanent")

    with pytest.raises(ValueError, match="permanent"):
        await run_async_with_retry(
            caller="test",
            max_retries=3,
            invoke=invoke,
            should_retry=lambda exc: isinstance(exc, RuntimeError),
            compute_delay=lambda attempt, exc: 0.0,
            logger=logging.getLogger("test_execution_kernel"),
            on_error=lambda exc, attempt: errors.append(attempt),
            sleep=_no_sleep,
        )

    assert attempts == [0]
    assert errors == [0]


@pytest.mark.asyncio
async def test_run_async_with_retry_exhausts_budget() -> None:
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    async def invoke(attempt: int) -> str:
        raise RuntimeError(f"fail {attempt}")

    with pytest.raises(RuntimeError, match="fail 2"):
        await run_async_with_retry(
            caller="test",
            max_retries=2,
            invoke=invoke,
            should_retry=lambda exc: True,
            compute_delay=lambda attempt, exc: exponential_delay(attempt, 0.5),
            logger=logging.getLogger("test_execution_kernel"),
            sleep=sleep,
        )

    assert delays == [0.5, 1.0]
