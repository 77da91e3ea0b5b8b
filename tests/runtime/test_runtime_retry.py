from __future__ import annotations

import asyncio

import pytest

from courier.runtime import RetryExhaustedError, RetryPolicy, call_with_retry


def run_async(coro):
    return asyncio.run(coro)


async def _no_sleep(_: float) -> None:
    return None


def test_transient_failures_are_retried_until_success():
    async def scenario() -> None:
        calls = 0
        retries: list[tuple[int, str]] = []

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionResetError("connection reset by peer")
            return "done"

        result = await call_with_retry(
            flaky,
            policy=RetryPolicy(max_retries=2),
            sleep=_no_sleep,
            on_retry=lambda attempt, info, delay: retries.append((attempt, info.code)),
        )
        assert result == "done"
        assert calls == 3
        assert retries == [(0, "gateway_connection"), (1, "gateway_connection")]

    run_async(scenario())


def test_permanent_failure_stops_immediately():
    async def scenario() -> None:
        calls = 0

        async def denied() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("401 unauthorized")

        with pytest.raises(RetryExhaustedError) as excinfo:
            await call_with_retry(denied, policy=RetryPolicy(max_retries=5), sleep=_no_sleep)
        assert calls == 1
        assert excinfo.value.info.code == "auth_failure"
        assert excinfo.value.attempts == 1
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    run_async(scenario())


def test_retry_budget_is_bounded():
    async def scenario() -> None:
        calls = 0
        delays: list[float] = []

        async def record_sleep(delay_s: float) -> None:
            delays.append(delay_s)

        async def always_timeout() -> None:
            nonlocal calls
            calls += 1
            raise TimeoutError("timed out")

        with pytest.raises(RetryExhaustedError) as excinfo:
            await call_with_retry(
                always_timeout,
                policy=RetryPolicy(max_retries=2, backoff_base_ms=10, backoff_max_ms=40),
                sleep=record_sleep,
            )
        assert calls == 3
        assert excinfo.value.attempts == 3
        assert len(delays) == 2
        assert all(0.005 <= delay <= 0.04 for delay in delays)

    run_async(scenario())
