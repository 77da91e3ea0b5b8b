"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Job orchestrator: durable launch, checkpointing and resume of exchange flows.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Iterable

from ..errors import ConcurrencyLimitError, ExchangeCancelledError
from ..observability.bus import EventBus
from ..observability.events import ExchangeComplete, ExchangeResponse
from ..observability.metrics import CoordinationMetrics, NoOpCoordinationMetrics
from ..runtime.gate import ConcurrencyGate
from ..utils import new_id, now_ms
from .flow import Flow, FlowContext
from .store import JobStore
from .types import JobRecord, JobRequest

logger = logging.getLogger("courier.jobs.orchestrator")


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


class JobOrchestrator:
    """
    Launch exchange flows as supervised background tasks.

    The launch call returns as soon as the job is persisted; progress and the
    final outcome are observable only through the job store. Every flow holds
    a gate slot for its target key while it runs. Without a store the
    orchestrator runs flows directly, without checkpoints or cancellation.
    """

    def __init__(
        self,
        flow: Flow,
        *,
        store: JobStore | None = None,
        gate: ConcurrencyGate | None = None,
        bus: EventBus | None = None,
        metrics: CoordinationMetrics | None = None,
    ) -> None:
        self._flow = flow
        self._store = store
        self._gate = gate or ConcurrencyGate()
        self._bus = bus
        self._metrics: CoordinationMetrics = metrics or NoOpCoordinationMetrics()
        self._tasks: set[asyncio.Task[None]] = set()
        self._cancel_events: dict[str, asyncio.Event] = {}
        if store is None:
            logger.warning("JobOrchestrator has no job store; flows run without durability")

    @property
    def durable(self) -> bool:
        return self._store is not None

    @property
    def active_flow_count(self) -> int:
        return len(self._tasks)

    async def create_and_start_flow(self, request: JobRequest) -> str:
        """
        Persist a PENDING job and start its flow without waiting for it.

        Returns:
            The job id.
        """
        if self._store is None:
            job = self._ephemeral_job(request)
            logger.warning("running flow %s without durability", job.job_id)
            self._spawn(self._run_direct(job), name=f"courier-flow-{job.job_id}")
            return job.job_id

        job = await self._store.create_job(request)
        self._spawn(self._run_job(job, start_turn=0), name=f"courier-flow-{job.job_id}")
        return job.job_id

    async def resume_flows(self, jobs: Iterable[JobRecord]) -> int:
        """Restart flows from each job's last checkpoint; returns the count started."""
        if self._store is None:
            logger.warning("cannot resume flows without a job store")
            return 0
        resumed = 0
        for job in jobs:
            logger.info(
                "resuming job %s from turn %d (resume_count=%d)",
                job.job_id,
                job.current_turn,
                job.resume_count,
            )
            self._spawn(
                self._run_job(job, start_turn=job.current_turn),
                name=f"courier-flow-{job.job_id}",
            )
            resumed += 1
        if resumed:
            self._metrics.incr("courier_jobs_resumed_total", resumed)
        return resumed

    def cancel(self, job_id: str) -> bool:
        """Signal a running flow to stop at its next turn boundary."""
        event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        return True

    async def wait_idle(self) -> None:
        """Wait until every launched flow has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro, *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "flow task %s crashed",
                task.get_name(),
                exc_info=(type(error), error, error.__traceback__),
            )

    def _ephemeral_job(self, request: JobRequest) -> JobRecord:
        now = now_ms()
        job_id = request.job_id or new_id("job")
        return JobRecord(
            job_id=job_id,
            target_key=request.target_key,
            display_label=request.display_label or request.target_key,
            payload=request.payload,
            conversation_id=request.conversation_id or job_id,
            max_turns=max(0, request.max_turns),
            per_turn_timeout_s=request.per_turn_timeout_s,
            created_at_ms=now,
            updated_at_ms=now,
            requester_key=request.requester_key,
            task_id=request.task_id,
            metadata=dict(request.metadata),
        )

    async def _run_job(self, job: JobRecord, *, start_turn: int) -> None:
        assert self._store is not None
        store = self._store
        cancel_event = asyncio.Event()
        self._cancel_events[job.job_id] = cancel_event
        try:
            async with self._gate.slot(job.target_key, flow_id=job.job_id):
                if await store.update_status(job.job_id, "running") is None:
                    logger.warning("job %s vanished before launch, skipping flow", job.job_id)
                    return
                ctx = FlowContext(
                    start_turn=start_turn,
                    cancel_event=cancel_event,
                    on_turn_complete=functools.partial(
                        store.record_turn_progress, job.job_id
                    ),
                )
                try:
                    await self._flow(job, ctx)
                except ExchangeCancelledError as error:
                    await store.abandon_job(job.job_id, reason=_error_text(error))
                    logger.info("job %s cancelled at turn %d", job.job_id, error.turn)
                    return
                except asyncio.CancelledError:
                    # Left RUNNING so the next startup sweep can resume it.
                    raise
                except Exception as error:
                    await self._record_failure(job, error)
                    return
                await store.complete_job(job.job_id)
                self._metrics.incr("courier_jobs_completed_total")
        except ConcurrencyLimitError as error:
            self._emit_blocked(job, error)
            await store.abandon_job(job.job_id, reason=f"blocked: {error}")
        finally:
            self._cancel_events.pop(job.job_id, None)

    async def _run_direct(self, job: JobRecord) -> None:
        try:
            async with self._gate.slot(job.target_key, flow_id=job.job_id):
                try:
                    await self._flow(job, FlowContext(start_turn=0))
                except asyncio.CancelledError:
                    raise
                except Exception as error:
                    await self._record_failure(job, error)
                    return
                self._metrics.incr("courier_jobs_completed_total")
        except ConcurrencyLimitError as error:
            self._emit_blocked(job, error)

    async def _record_failure(self, job: JobRecord, error: Exception) -> None:
        message = _error_text(error)
        if self._store is not None:
            await self._store.fail_job(job.job_id, message)
        self._metrics.incr("courier_jobs_failed_total")
        logger.warning("job %s flow failed: %s", job.job_id, message)
        self._emit(
            ExchangeComplete(
                agent_id=job.agent_id,
                data={
                    "job_id": job.job_id,
                    "target_key": job.target_key,
                    "conversation_id": job.conversation_id,
                    "outcome": "failed",
                    "error": message,
                },
            )
        )

    def _emit_blocked(self, job: JobRecord, error: ConcurrencyLimitError) -> None:
        logger.warning("job %s blocked by concurrency gate: %s", job.job_id, error)
        data = {
            "job_id": job.job_id,
            "target_key": job.target_key,
            "conversation_id": job.conversation_id,
            "active_count": error.active_count,
            "queue_timeout_s": error.timeout_s,
        }
        self._emit(ExchangeResponse(agent_id=job.agent_id, data={**data, "outcome": "blocked"}))
        self._emit(
            ExchangeComplete(
                agent_id=job.agent_id,
                data={**data, "outcome": "blocked", "concurrency_blocked": True},
            )
        )

    def _emit(self, event: ExchangeResponse | ExchangeComplete) -> None:
        if self._bus is not None:
            self._bus.emit(event)
