"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Turn-driven exchange flow launched by the job orchestrator.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from ..errors import ExchangeCancelledError, ExchangeTurnError
from ..observability.bus import EventBus
from ..observability.events import ExchangeComplete, ExchangeResponse, ExchangeStarted
from ..runtime.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from .types import JobRecord

logger = logging.getLogger("courier.jobs.flow")

TurnCheckpoint = Callable[[int], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ExchangeTurn:
    """One message handed to the delivery function."""

    job_id: str
    target_key: str
    conversation_id: str
    turn: int
    max_turns: int
    message: str
    timeout_s: float


DeliverFn = Callable[[ExchangeTurn], Awaitable[str | None]]


@dataclass(slots=True)
class FlowContext:
    """
    Durability hooks handed to a running flow.

    ``on_turn_complete`` receives the number of completed turns; the
    cancellation event is checked at turn boundaries only.
    """

    start_turn: int = 0
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    on_turn_complete: TurnCheckpoint | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class Flow(Protocol):
    """Contract for anything the orchestrator can run for a job."""

    async def __call__(self, job: JobRecord, ctx: FlowContext) -> None: ...


class ExchangeFlow:
    """
    Drive an exchange one turn at a time through ``deliver``.

    Each turn is bounded by the job's per-turn timeout and retried according
    to the classifier verdict. The peer's reply becomes the next turn's
    message; an empty reply ends the exchange early.
    """

    def __init__(
        self,
        deliver: DeliverFn,
        *,
        retry_policy: RetryPolicy | None = None,
        bus: EventBus | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._deliver = deliver
        self._retry_policy = retry_policy or RetryPolicy()
        self._bus = bus
        self._sleep = sleep

    async def __call__(self, job: JobRecord, ctx: FlowContext) -> None:
        self._emit(
            ExchangeStarted(
                agent_id=job.agent_id,
                data={
                    "job_id": job.job_id,
                    "target_key": job.target_key,
                    "conversation_id": job.conversation_id,
                    "start_turn": ctx.start_turn,
                    "resumed": ctx.start_turn > 0,
                },
            )
        )
        message = job.payload
        completed = ctx.start_turn
        for turn in range(ctx.start_turn, job.max_turns):
            if ctx.cancelled:
                raise ExchangeCancelledError(job.job_id, turn=turn)
            exchange_turn = ExchangeTurn(
                job_id=job.job_id,
                target_key=job.target_key,
                conversation_id=job.conversation_id,
                turn=turn,
                max_turns=job.max_turns,
                message=message,
                timeout_s=job.per_turn_timeout_s,
            )
            reply = await self._run_turn(exchange_turn)
            completed = turn + 1
            self._emit(
                ExchangeResponse(
                    agent_id=job.agent_id,
                    data={
                        "job_id": job.job_id,
                        "conversation_id": job.conversation_id,
                        "turn": turn,
                        "outcome": "reply" if reply else "no_reply",
                        "reply_chars": len(reply or ""),
                    },
                )
            )
            if ctx.on_turn_complete is not None:
                await ctx.on_turn_complete(completed)
            if not reply:
                logger.debug("exchange %s ended early at turn %d", job.job_id, turn)
                break
            message = reply

        self._emit(
            ExchangeComplete(
                agent_id=job.agent_id,
                data={
                    "job_id": job.job_id,
                    "target_key": job.target_key,
                    "conversation_id": job.conversation_id,
                    "outcome": "completed",
                    "turns": completed,
                },
            )
        )

    async def _run_turn(self, turn: ExchangeTurn) -> str | None:
        try:
            return await call_with_retry(
                functools.partial(self._deliver_once, turn),
                policy=self._retry_policy,
                sleep=self._sleep,
            )
        except RetryExhaustedError as error:
            raise ExchangeTurnError(
                error.info,
                turn=turn.turn,
                attempts=error.attempts,
            ) from error.__cause__

    async def _deliver_once(self, turn: ExchangeTurn) -> str | None:
        return await asyncio.wait_for(self._deliver(turn), timeout=turn.timeout_s)

    def _emit(self, event: ExchangeStarted | ExchangeResponse | ExchangeComplete) -> None:
        if self._bus is not None:
            self._bus.emit(event)
