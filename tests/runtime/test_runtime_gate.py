from __future__ import annotations

import asyncio

import pytest

from courier.errors import ConcurrencyLimitError
from courier.observability.metrics import InMemoryCoordinationMetrics
from courier.runtime import ConcurrencyGate, GatePolicy


def run_async(coro):
    return asyncio.run(coro)


def test_acquire_under_limit_is_immediate():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=2))
        await gate.acquire("peer-a")
        await gate.acquire("peer-a")
        assert gate.active_count("peer-a") == 2
        assert gate.active_count("peer-b") == 0

    run_async(scenario())


def test_excess_acquire_blocks_until_release():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=1, queue_timeout_s=5))
        await gate.acquire("peer-a")

        waiter = asyncio.create_task(gate.acquire("peer-a", flow_id="second"))
        await asyncio.sleep(0.01)
        assert not waiter.done()
        assert gate.queued_count("peer-a") == 1

        gate.release("peer-a")
        await asyncio.wait_for(waiter, timeout=1)
        assert gate.active_count("peer-a") == 1
        assert gate.queued_count("peer-a") == 0

        gate.release("peer-a")
        assert gate.active_count("peer-a") == 0

    run_async(scenario())


def test_blocked_acquire_times_out_with_diagnostics():
    async def scenario() -> None:
        metrics = InMemoryCoordinationMetrics()
        gate = ConcurrencyGate(
            GatePolicy(max_concurrent_flows=1, queue_timeout_s=0.05),
            metrics=metrics,
        )
        await gate.acquire("peer-a")
        with pytest.raises(ConcurrencyLimitError, match="peer-a") as excinfo:
            await gate.acquire("peer-a", flow_id="job_2")
        error = excinfo.value
        assert error.key == "peer-a"
        assert error.flow_id == "job_2"
        assert error.active_count == 1
        assert error.timeout_s == pytest.approx(0.05)
        assert gate.queued_count("peer-a") == 0
        assert metrics.total("courier_gate_throttled_total") == 1
        assert metrics.total("courier_gate_timeouts_total") == 1

    run_async(scenario())


def test_waiters_are_served_in_fifo_order():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=1, queue_timeout_s=5))
        order: list[str] = []
        await gate.acquire("k")

        async def worker(name: str) -> None:
            await gate.acquire("k", flow_id=name)
            order.append(name)
            gate.release("k")

        tasks = []
        for name in ("first", "second", "third"):
            tasks.append(asyncio.create_task(worker(name)))
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        gate.release("k")
        await asyncio.gather(*tasks)
        assert order == ["first", "second", "third"]
        assert gate.active_count("k") == 0

    run_async(scenario())


def test_each_blocked_caller_either_succeeds_or_times_out():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=1, queue_timeout_s=0.2))
        await gate.acquire("k")

        async def attempt(timeout_s: float) -> str:
            try:
                await gate.acquire("k", timeout_s=timeout_s)
            except ConcurrencyLimitError:
                return "timeout"
            gate.release("k")
            return "acquired"

        quick = asyncio.create_task(attempt(0.02))
        patient = asyncio.create_task(attempt(1.0))
        await asyncio.sleep(0.05)
        gate.release("k")
        results = await asyncio.gather(quick, patient)
        assert results == ["timeout", "acquired"]
        assert gate.active_count("k") == 0

    run_async(scenario())


def test_slot_releases_on_error():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=1))
        with pytest.raises(RuntimeError, match="boom"):
            async with gate.slot("k"):
                assert gate.active_count("k") == 1
                raise RuntimeError("boom")
        assert gate.active_count("k") == 0
        async with gate.slot("k"):
            assert gate.active_count("k") == 1

    run_async(scenario())


def test_cancelled_waiter_does_not_leak_a_slot():
    async def scenario() -> None:
        gate = ConcurrencyGate(GatePolicy(max_concurrent_flows=1, queue_timeout_s=5))
        await gate.acquire("k")
        waiter = asyncio.create_task(gate.acquire("k"))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        gate.release("k")
        assert gate.active_count("k") == 0
        assert gate.queued_count("k") == 0

    run_async(scenario())


def test_policy_rejects_invalid_limits():
    with pytest.raises(ValueError, match="max_concurrent_flows"):
        GatePolicy(max_concurrent_flows=0)
    with pytest.raises(ValueError, match="queue_timeout_s"):
        GatePolicy(queue_timeout_s=-1)
