"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Per-key concurrency gate for A2A exchange flows.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from ..errors import ConcurrencyLimitError
from ..observability.metrics import CoordinationMetrics, NoOpCoordinationMetrics

logger = logging.getLogger("courier.runtime.gate")


@dataclass(frozen=True, slots=True)
class GatePolicy:
    """Concurrency limits applied independently to every gate key."""

    max_concurrent_flows: int = 3
    queue_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        if self.max_concurrent_flows < 1:
            raise ValueError("max_concurrent_flows must be >= 1")
        if self.queue_timeout_s < 0:
            raise ValueError("queue_timeout_s must be >= 0")


class ConcurrencyGate:
    """
    Per-key semaphore with a FIFO wait list and bounded waits.

    Each key keeps an independent active count. When a slot is released while
    callers are waiting, the slot is handed directly to the longest waiter so
    the active count never dips below the limit under contention.
    """

    def __init__(
        self,
        policy: GatePolicy | None = None,
        *,
        metrics: CoordinationMetrics | None = None,
    ) -> None:
        self._policy = policy or GatePolicy()
        self._metrics: CoordinationMetrics = metrics or NoOpCoordinationMetrics()
        self._active: dict[str, int] = {}
        self._waiters: dict[str, deque[asyncio.Future[None]]] = {}

    @property
    def policy(self) -> GatePolicy:
        return self._policy

    def active_count(self, key: str) -> int:
        return self._active.get(key, 0)

    def queued_count(self, key: str) -> int:
        queue = self._waiters.get(key)
        if not queue:
            return 0
        return sum(1 for waiter in queue if not waiter.done())

    async def acquire(
        self,
        key: str,
        *,
        flow_id: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        """
        Take one slot for `key`, waiting up to `timeout_s` when saturated.

        Raises:
            ConcurrencyLimitError: When no slot frees before the deadline.
        """
        timeout = self._policy.queue_timeout_s if timeout_s is None else timeout_s
        current = self._active.get(key, 0)
        if current < self._policy.max_concurrent_flows and not self.queued_count(key):
            self._active[key] = current + 1
            return

        logger.info(
            "Throttling flow %s for key %s (active=%d, queued=%d)",
            flow_id or "-",
            key,
            current,
            self.queued_count(key),
        )
        self._metrics.incr("courier_gate_throttled_total", tags={"key": key})

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, deque()).append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            # A release may have handed us the slot as the deadline fired.
            if waiter.done() and not waiter.cancelled():
                return
            self._discard_waiter(key, waiter)
            logger.warning(
                "Gate timeout for flow %s on key %s after %.3fs",
                flow_id or "-",
                key,
                timeout,
            )
            self._metrics.incr("courier_gate_timeouts_total", tags={"key": key})
            raise ConcurrencyLimitError(
                key,
                active_count=self.active_count(key),
                timeout_s=timeout,
                flow_id=flow_id,
            ) from None
        except asyncio.CancelledError:
            self._discard_waiter(key, waiter)
            if waiter.done() and not waiter.cancelled():
                self.release(key)
            raise

    def release(self, key: str) -> None:
        """Return one slot for `key`, waking the longest waiter if present."""
        queue = self._waiters.get(key)
        while queue:
            waiter = queue.popleft()
            if waiter.done():
                continue
            if not queue:
                self._waiters.pop(key, None)
            # Slot ownership moves to the waiter; active count is unchanged.
            waiter.set_result(None)
            return
        self._waiters.pop(key, None)

        current = self._active.get(key, 0)
        if current <= 1:
            self._active.pop(key, None)
        else:
            self._active[key] = current - 1

    @asynccontextmanager
    async def slot(
        self,
        key: str,
        *,
        flow_id: str | None = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        await self.acquire(key, flow_id=flow_id, timeout_s=timeout_s)
        try:
            yield
        finally:
            self.release(key)

    def reset(self) -> None:
        """Drop all state and cancel pending waiters."""
        for queue in self._waiters.values():
            for waiter in queue:
                if not waiter.done():
                    waiter.cancel()
        self._waiters.clear()
        self._active.clear()

    def _discard_waiter(self, key: str, waiter: asyncio.Future[None]) -> None:
        queue = self._waiters.get(key)
        if queue is None:
            return
        try:
            queue.remove(waiter)
        except ValueError:
            pass
        if not queue:
            self._waiters.pop(key, None)
