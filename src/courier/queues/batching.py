"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Debounced per-key batching queue for outbound notifications.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable

from ..observability.metrics import CoordinationMetrics, NoOpCoordinationMetrics
from ..utils import Clock, now_ms
from .helpers import (
    apply_drop_policy,
    build_summary_prompt,
    clear_summary,
    debounce_remaining_ms,
    has_cross_channel_items,
    is_stale,
    render_collected,
)
from .types import DeliverItemFn, QueueItem, QueueSettings, QueueState

logger = logging.getLogger("courier.queues.batching")


class BatchingQueue:
    """
    Registry of per-key notification queues, each with one drain task.

    Bursts of ``enqueue`` calls for a key are coalesced: the drain task waits
    until ``debounce_ms`` has passed since the last enqueue, then delivers the
    backlog one item at a time (``individual``) or merged into one message
    (``collect``). A key's state is discarded once its backlog is empty.
    """

    def __init__(
        self,
        *,
        clock: Clock = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: CoordinationMetrics | None = None,
        failure_backoff_s: float = 1.0,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._metrics: CoordinationMetrics = metrics or NoOpCoordinationMetrics()
        self._failure_backoff_s = failure_backoff_s
        self._states: dict[str, QueueState] = {}
        self._drains: dict[str, asyncio.Task[None]] = {}

    def keys(self) -> list[str]:
        return list(self._states)

    def size(self, key: str) -> int:
        state = self._states.get(key)
        return len(state.items) if state is not None else 0

    def dropped_count(self, key: str) -> int:
        state = self._states.get(key)
        return state.dropped_count if state is not None else 0

    def summary_lines(self, key: str) -> list[str]:
        state = self._states.get(key)
        return list(state.summary_lines) if state is not None else []

    def is_draining(self, key: str) -> bool:
        state = self._states.get(key)
        return state is not None and state.draining

    async def enqueue(
        self,
        key: str,
        item: QueueItem,
        settings: QueueSettings,
        deliver: DeliverItemFn,
    ) -> bool:
        """
        Queue `item` for `key` and make sure a drain task is running.

        Returns:
            False when the item was rejected by the ``drop_new`` policy.
        """
        state = self._states.get(key)
        if state is None:
            state = QueueState(deliver=deliver)
            self._states[key] = state
        else:
            state.deliver = deliver
        state.apply(settings)
        now = self._clock()
        state.last_enqueued_at_ms = now

        dropped_before = state.dropped_count
        accepted = apply_drop_policy(state)
        dropped = state.dropped_count - dropped_before
        if dropped:
            self._metrics.incr(
                "courier_queue_dropped_total", dropped, tags={"policy": state.drop_policy}
            )
        if not accepted:
            logger.debug("queue %s at cap, rejected incoming item", key)
            self._schedule(key)
            return False

        if item.enqueued_at_ms is None:
            item = replace(item, enqueued_at_ms=now)
        state.items.append(item)
        self._schedule(key)
        return True

    async def aclose(self) -> None:
        """Cancel drain tasks and drop every queued item."""
        tasks = list(self._drains.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.reset()

    def reset(self) -> None:
        for task in self._drains.values():
            task.cancel()
        self._drains.clear()
        self._states.clear()

    async def wait_idle(self) -> None:
        """Wait until every drain task has finished."""
        while self._drains:
            await asyncio.gather(*list(self._drains.values()), return_exceptions=True)

    def _schedule(self, key: str) -> None:
        state = self._states.get(key)
        if state is None or state.draining:
            return
        state.draining = True
        task = asyncio.create_task(self._drain(key, state), name=f"courier-drain-{key}")
        self._drains[key] = task

    async def _drain(self, key: str, state: QueueState) -> None:
        force_individual = False
        try:
            while state.items or state.summary_lines:
                await self._wait_debounce(state)
                if not state.items:
                    logger.warning(
                        "queue %s: discarding overflow summary with no item to carry it", key
                    )
                    clear_summary(state)
                    break
                try:
                    if state.mode == "collect":
                        if not force_individual and has_cross_channel_items(state.items):
                            force_individual = True
                        if force_individual:
                            await self._deliver_next(key, state)
                        else:
                            await self._deliver_collected(key, state)
                    else:
                        await self._deliver_next(key, state)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("queue %s: delivery failed, will retry", key)
                    state.last_enqueued_at_ms = self._clock()
                    await self._sleep(self._failure_backoff_s)
        finally:
            state.draining = False
            if self._drains.get(key) is asyncio.current_task():
                self._drains.pop(key, None)
            if self._states.get(key) is state and not state.items:
                del self._states[key]

    async def _wait_debounce(self, state: QueueState) -> None:
        while True:
            remaining = debounce_remaining_ms(state, self._clock())
            if remaining <= 0:
                return
            await self._sleep(remaining / 1000.0)

    async def _deliver_next(self, key: str, state: QueueState) -> None:
        item = state.items.pop(0)
        if is_stale(state, item, self._clock()):
            self._skip_stale(key, 1)
            return
        summary, dropped, lines = self._take_summary(state)
        outgoing = replace(item, text=f"{summary}\n\n{item.text}") if summary else item
        try:
            await state.deliver(outgoing)
        except BaseException:
            self._restore(state, [item], dropped, lines)
            raise
        self._metrics.incr("courier_queue_delivered_total", tags={"mode": "individual"})

    async def _deliver_collected(self, key: str, state: QueueState) -> None:
        batch = list(state.items)
        state.items.clear()
        now = self._clock()
        fresh = [item for item in batch if not is_stale(state, item, now)]
        if len(fresh) < len(batch):
            self._skip_stale(key, len(batch) - len(fresh))
        if not fresh:
            return
        summary, dropped, lines = self._take_summary(state)
        last = fresh[-1]
        merged = replace(
            last,
            text=render_collected(fresh, summary=summary),
            high_priority=any(item.high_priority for item in fresh),
        )
        try:
            await state.deliver(merged)
        except BaseException:
            self._restore(state, fresh, dropped, lines)
            raise
        self._metrics.incr("courier_queue_delivered_total", tags={"mode": "collect"})

    @staticmethod
    def _take_summary(state: QueueState) -> tuple[str | None, int, list[str]]:
        # In-flight items and their digest stay out of `state` until delivery settles.
        summary = build_summary_prompt(state)
        if summary is None:
            return None, 0, []
        dropped, lines = state.dropped_count, list(state.summary_lines)
        clear_summary(state)
        return summary, dropped, lines

    @staticmethod
    def _restore(
        state: QueueState, items: list[QueueItem], dropped: int, lines: list[str]
    ) -> None:
        state.items[:0] = items
        state.dropped_count += dropped
        state.summary_lines[:0] = lines

    def _skip_stale(self, key: str, count: int) -> None:
        logger.info("queue %s: skipped %d stale item(s)", key, count)
        self._metrics.incr("courier_queue_stale_skipped_total", count)
