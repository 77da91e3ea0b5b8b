"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Runtime bootstrap: one explicit registry of coordination components per process.
"""

from __future__ import annotations

import logging

from .delegation.ledger import DelegationLedger
from .jobs.flow import DeliverFn, ExchangeFlow, Flow
from .jobs.orchestrator import JobOrchestrator
from .jobs.reaper import JobReaper, ReaperResult
from .jobs.store import JobStore
from .observability.bus import EventBus
from .observability.metrics import (
    CoordinationMetrics,
    InMemoryCoordinationMetrics,
    NoOpCoordinationMetrics,
    PrometheusCoordinationMetrics,
)
from .observability.sinks import JSONLEventLog
from .queues.batching import BatchingQueue
from .runtime.gate import ConcurrencyGate
from .settings import CourierSettings

logger = logging.getLogger("courier.bootstrap")


def create_metrics(backend: str) -> CoordinationMetrics:
    """Build the metrics sink named by `backend` (noop, memory or prometheus)."""
    if backend == "noop":
        return NoOpCoordinationMetrics()
    if backend == "memory":
        return InMemoryCoordinationMetrics()
    if backend == "prometheus":
        return PrometheusCoordinationMetrics()
    raise ValueError(f"Unknown metrics backend: {backend!r}")


class CourierRuntime:
    """
    Owns the gate, job store, orchestrator, queue and ledger for one process.

    Consumers receive the runtime (or its parts) by reference; nothing here is
    module-global, so tests can build and discard runtimes freely.
    """

    def __init__(
        self,
        settings: CourierSettings,
        *,
        flow: Flow,
        bus: EventBus,
        metrics: CoordinationMetrics,
    ) -> None:
        self.settings = settings
        self.bus = bus
        self.metrics = metrics
        self.gate = ConcurrencyGate(settings.gate_policy(), metrics=metrics)
        self.store = JobStore(
            settings.jobs_dir,
            stale_threshold_ms=settings.stale_job_threshold_ms,
            finished_ttl_ms=settings.finished_job_ttl_ms,
        )
        self.reaper = JobReaper(self.store, bus=bus)
        self.orchestrator = JobOrchestrator(
            flow,
            store=self.store,
            gate=self.gate,
            bus=bus,
            metrics=metrics,
        )
        self.queue = BatchingQueue(metrics=metrics)
        self.ledger = DelegationLedger(settings.delegations_dir, bus=bus)
        self.event_log = (
            JSONLEventLog(settings.event_log_path) if settings.event_log_path else None
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> tuple[ReaperResult, int]:
        """
        Prepare storage and resume work interrupted by the previous process.

        Returns:
            The reaper sweep result and the number of flows resumed.
        """
        if self.event_log is not None:
            self.event_log.start(self.bus)
        await self.store.init()
        result = await self.reaper.run_on_startup()
        resumable = await self.reaper.get_resumable_jobs()
        resumed = await self.orchestrator.resume_flows(resumable)
        self._started = True
        logger.info(
            "courier runtime started (state_dir=%s, resumed=%d, abandoned=%d)",
            self.settings.state_dir,
            resumed,
            result.abandoned,
        )
        return result, resumed

    async def aclose(self) -> None:
        """Cancel queue drain loops and wait for in-flight flows."""
        await self.queue.aclose()
        await self.orchestrator.wait_idle()
        if self.event_log is not None:
            self.event_log.stop()
        self._started = False
        logger.info("courier runtime closed")


def create_runtime(
    settings: CourierSettings | None = None,
    *,
    flow: Flow | None = None,
    deliver: DeliverFn | None = None,
    bus: EventBus | None = None,
    metrics: CoordinationMetrics | None = None,
) -> CourierRuntime:
    """
    Construct a runtime from settings (``CourierSettings.from_env()`` by default).

    Pass either a ready-made ``flow`` or a ``deliver`` function, which is
    wrapped in an ``ExchangeFlow`` using the configured retry policy.
    """
    if (flow is None) == (deliver is None):
        raise ValueError("create_runtime requires exactly one of `flow` or `deliver`")
    settings = settings or CourierSettings.from_env()
    if bus is None:
        bus = EventBus()
    if metrics is None:
        metrics = create_metrics(settings.metrics_backend)
    if flow is None:
        assert deliver is not None
        flow = ExchangeFlow(deliver, retry_policy=settings.retry_policy(), bus=bus)
    return CourierRuntime(settings, flow=flow, bus=bus, metrics=metrics)
