"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Startup recovery for jobs interrupted by a process restart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..observability.bus import EventBus
from ..observability.events import JobAbandoned
from .store import JobStore
from .types import JobRecord

logger = logging.getLogger("courier.jobs.reaper")


@dataclass(frozen=True, slots=True)
class ReaperResult:
    """Counts produced by one startup sweep."""

    reset_to_pending: int = 0
    abandoned: int = 0
    cleaned_up: int = 0
    total_incomplete: int = 0


class JobReaper:
    """
    Sweep incomplete jobs left behind by a previous process.

    Stale RUNNING jobs become ABANDONED, the rest of the RUNNING jobs go back
    to PENDING with ``resume_count + 1``, PENDING jobs are untouched and
    finished jobs past retention are deleted.
    """

    def __init__(self, store: JobStore, *, bus: EventBus | None = None) -> None:
        self._store = store
        self._bus = bus

    async def run_on_startup(self) -> ReaperResult:
        incomplete = await self._store.get_incomplete_jobs()
        if incomplete:
            logger.info("found %d incomplete jobs on startup", len(incomplete))
        else:
            logger.debug("no incomplete jobs found on startup")

        reset = 0
        abandoned = 0
        for job in incomplete:
            if job.status != "running":
                continue
            if self._store.is_stale(job):
                await self._store.abandon_job(
                    job.job_id,
                    reason=f"stale: no progress since {job.updated_at_ms}",
                )
                abandoned += 1
                logger.info("abandoned stale job %s (target=%s)", job.job_id, job.target_key)
                if self._bus is not None:
                    self._bus.emit(
                        JobAbandoned(
                            agent_id=job.agent_id,
                            data={
                                "job_id": job.job_id,
                                "target_key": job.target_key,
                                "current_turn": job.current_turn,
                                "last_updated_ms": job.updated_at_ms,
                            },
                        )
                    )
            else:
                await self._store.update_status(
                    job.job_id,
                    "pending",
                    resume_count=job.resume_count + 1,
                )
                reset += 1
                logger.info(
                    "reset job %s to pending (turn=%d, resume_count=%d)",
                    job.job_id,
                    job.current_turn,
                    job.resume_count + 1,
                )

        cleaned = await self._store.cleanup_finished_jobs()
        result = ReaperResult(
            reset_to_pending=reset,
            abandoned=abandoned,
            cleaned_up=cleaned,
            total_incomplete=len(incomplete),
        )
        if abandoned or reset or cleaned:
            logger.info("job reaper completed: %s", result)
        return result

    async def get_resumable_jobs(self) -> list[JobRecord]:
        return [job for job in await self._store.get_incomplete_jobs() if job.status == "pending"]
