"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

File-backed durable job store.

Each job lives in its own ``job-<id>.json`` file so writes to different jobs
never contend. Writes go through a temp file and ``os.replace``; mutations of
one job are serialized by a per-job ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..errors import JobNotFoundError
from ..utils import Clock, IdFactory, atomic_write_json, new_id, now_ms, read_json
from .types import (
    DEFAULT_FINISHED_TTL_MS,
    DEFAULT_STALE_THRESHOLD_MS,
    FINISHED_JOB_STATES,
    INCOMPLETE_JOB_STATES,
    JobRecord,
    JobRequest,
    JobStatus,
)

logger = logging.getLogger("courier.jobs.store")

JOB_FILE_PREFIX = "job-"
JOB_FILE_SUFFIX = ".json"

_SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9_.-]+$")
_UNSET: Any = object()

UNKNOWN_FAILURE = "failed without error detail"


def _default_job_id() -> str:
    return new_id("job")


class JobStore:
    """Durable job records for agent-to-agent exchanges."""

    def __init__(
        self,
        jobs_dir: str | Path,
        *,
        clock: Clock = now_ms,
        id_factory: IdFactory = _default_job_id,
        stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS,
        finished_ttl_ms: int = DEFAULT_FINISHED_TTL_MS,
    ) -> None:
        self._dir = Path(jobs_dir)
        self._clock = clock
        self._id_factory = id_factory
        self._stale_threshold_ms = stale_threshold_ms
        self._finished_ttl_ms = finished_ttl_ms
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def jobs_dir(self) -> Path:
        return self._dir

    @property
    def stale_threshold_ms(self) -> int:
        return self._stale_threshold_ms

    async def init(self) -> None:
        """Create the jobs directory (idempotent)."""
        await asyncio.to_thread(self._dir.mkdir, parents=True, exist_ok=True)

    async def create_job(self, request: JobRequest) -> JobRecord:
        """Persist a new PENDING job and return it."""
        job_id = request.job_id or self._id_factory()
        path = self._path(job_id)
        now = self._clock()
        job = JobRecord(
            job_id=job_id,
            target_key=request.target_key,
            display_label=request.display_label or request.target_key,
            payload=request.payload,
            conversation_id=request.conversation_id or job_id,
            max_turns=max(0, request.max_turns),
            per_turn_timeout_s=request.per_turn_timeout_s,
            status="pending",
            current_turn=0,
            resume_count=0,
            created_at_ms=now,
            updated_at_ms=now,
            requester_key=request.requester_key,
            task_id=request.task_id,
            metadata=dict(request.metadata),
        )
        async with self._lock(job_id):
            await asyncio.to_thread(atomic_write_json, path, job.to_dict())
        logger.info("job created: %s -> %s", job_id, job.target_key)
        return job

    async def read_job(self, job_id: str) -> JobRecord | None:
        return await asyncio.to_thread(self._read_file, self._path(job_id))

    async def require_job(self, job_id: str) -> JobRecord:
        job = await self.read_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        last_error: str | None = _UNSET,
        finished_at_ms: int | None = _UNSET,
        current_turn: int = _UNSET,
        resume_count: int = _UNSET,
    ) -> JobRecord | None:
        """
        Change a job's status, merging the supplied extra fields.

        Finished statuses always carry ``finished_at_ms`` (stamped now when
        not supplied) and ``failed`` always carries ``last_error``. Returns None
        (and creates nothing) when the job does not exist.
        """
        async with self._lock(job_id):
            job = await self.read_job(job_id)
            if job is None:
                logger.warning("cannot update status of missing job %s -> %s", job_id, status)
                return None
            changes: dict[str, Any] = {"status": status}
            if last_error is not _UNSET:
                changes["last_error"] = last_error
            if status in INCOMPLETE_JOB_STATES:
                changes["finished_at_ms"] = None
            elif finished_at_ms is _UNSET or finished_at_ms is None:
                changes["finished_at_ms"] = self._clock()
            else:
                changes["finished_at_ms"] = finished_at_ms
            if status == "failed" and not changes.get("last_error", job.last_error):
                changes["last_error"] = UNKNOWN_FAILURE
            if current_turn is not _UNSET:
                changes["current_turn"] = min(max(0, current_turn), job.max_turns)
            if resume_count is not _UNSET:
                changes["resume_count"] = resume_count
            updated = self._touch(replace(job, **changes))
            await self._persist(updated)
        logger.debug("job %s status -> %s", job_id, status)
        return updated

    async def record_turn_progress(self, job_id: str, turn: int) -> None:
        """
        Checkpoint completed turns. Missing jobs are ignored.

        Checkpoints never move backwards and never exceed ``max_turns``.
        """
        async with self._lock(job_id):
            job = await self.read_job(job_id)
            if job is None:
                return
            next_turn = min(max(job.current_turn, turn), job.max_turns)
            await self._persist(self._touch(replace(job, current_turn=next_turn)))

    async def complete_job(self, job_id: str) -> JobRecord | None:
        job = await self.update_status(job_id, "completed", finished_at_ms=self._clock())
        if job is not None:
            logger.info("job completed: %s", job_id)
        return job

    async def fail_job(self, job_id: str, error: str) -> JobRecord | None:
        job = await self.update_status(
            job_id,
            "failed",
            last_error=error,
            finished_at_ms=self._clock(),
        )
        if job is not None:
            logger.info("job failed: %s (%s)", job_id, error)
        return job

    async def abandon_job(self, job_id: str, reason: str | None = None) -> JobRecord | None:
        if reason is None:
            job = await self.update_status(job_id, "abandoned", finished_at_ms=self._clock())
        else:
            job = await self.update_status(
                job_id,
                "abandoned",
                last_error=reason,
                finished_at_ms=self._clock(),
            )
        if job is not None:
            logger.info("job abandoned: %s", job_id)
        return job

    async def get_incomplete_jobs(self) -> list[JobRecord]:
        return [job for job in await self.get_all_jobs() if job.status in INCOMPLETE_JOB_STATES]

    async def get_all_jobs(self) -> list[JobRecord]:
        return await asyncio.to_thread(self._read_all)

    async def delete_job(self, job_id: str) -> None:
        """Remove one job file; absent jobs are ignored."""
        path = self._path(job_id)
        async with self._lock(job_id):
            await asyncio.to_thread(path.unlink, missing_ok=True)
        self._locks.pop(job_id, None)

    async def cleanup_finished_jobs(self) -> int:
        """Delete finished jobs older than the retention window; returns the count."""
        now = self._clock()
        cleaned = 0
        for job in await self.get_all_jobs():
            if job.status not in FINISHED_JOB_STATES or job.finished_at_ms is None:
                continue
            if now - job.finished_at_ms > self._finished_ttl_ms:
                await self.delete_job(job.job_id)
                cleaned += 1
        if cleaned:
            logger.info("cleaned up %d finished jobs", cleaned)
        return cleaned

    def is_stale(self, job: JobRecord) -> bool:
        if job.status != "running":
            return False
        return self._clock() - job.updated_at_ms > self._stale_threshold_ms

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    def _path(self, job_id: str) -> Path:
        if not _SAFE_JOB_ID.match(job_id):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self._dir / f"{JOB_FILE_PREFIX}{job_id}{JOB_FILE_SUFFIX}"

    def _touch(self, job: JobRecord) -> JobRecord:
        return replace(job, updated_at_ms=max(self._clock(), job.created_at_ms))

    async def _persist(self, job: JobRecord) -> None:
        await asyncio.to_thread(atomic_write_json, self._path(job.job_id), job.to_dict())

    def _read_file(self, path: Path) -> JobRecord | None:
        try:
            payload = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("unreadable job file %s: %s", path.name, exc)
            return None
        if payload is None:
            return None
        try:
            return JobRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("malformed job record %s: %s", path.name, exc)
            return None

    def _read_all(self) -> list[JobRecord]:
        if not self._dir.is_dir():
            return []
        jobs: list[JobRecord] = []
        for path in sorted(self._dir.glob(f"{JOB_FILE_PREFIX}*{JOB_FILE_SUFFIX}")):
            job = self._read_file(path)
            if job is not None:
                jobs.append(job)
        return jobs
