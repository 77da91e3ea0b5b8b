"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Durable job record contracts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..types import JSONValue

JobStatus = Literal["pending", "running", "completed", "failed", "abandoned"]

INCOMPLETE_JOB_STATES: frozenset[JobStatus] = frozenset({"pending", "running"})
FINISHED_JOB_STATES: frozenset[JobStatus] = frozenset(
    {"completed", "failed", "abandoned"}
)

DEFAULT_STALE_THRESHOLD_MS = 60 * 60 * 1000
DEFAULT_FINISHED_TTL_MS = 7 * 24 * 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class JobRequest:
    """
    Parameters for creating one exchange job.

    Attributes:
        target_key: Destination identity (peer session key).
        payload: Opaque opening message.
        display_label: Human-readable destination label.
        conversation_id: Groups multi-turn exchanges; defaults to the job id.
        max_turns: Upper bound on exchange turns.
        per_turn_timeout_s: Deadline for one delivered turn.
        requester_key: Identity of the initiating agent, when known.
        task_id: Owning task, when the job backs a delegation.
        job_id: Explicit job id; generated when omitted.
    """

    target_key: str
    payload: str
    display_label: str | None = None
    conversation_id: str | None = None
    max_turns: int = 5
    per_turn_timeout_s: float = 30.0
    requester_key: str | None = None
    task_id: str | None = None
    job_id: str | None = None
    metadata: dict[str, JSONValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class JobRecord:
    """One persisted agent-to-agent exchange."""

    job_id: str
    target_key: str
    display_label: str
    payload: str
    conversation_id: str
    max_turns: int
    per_turn_timeout_s: float
    status: JobStatus = "pending"
    current_turn: int = 0
    resume_count: int = 0
    created_at_ms: int = 0
    updated_at_ms: int = 0
    finished_at_ms: int | None = None
    last_error: str | None = None
    requester_key: str | None = None
    task_id: str | None = None
    metadata: dict[str, JSONValue] = field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_JOB_STATES

    @property
    def agent_id(self) -> str:
        """Subject id used for exchange events."""
        return self.requester_key or self.target_key

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "job_id": self.job_id,
            "target_key": self.target_key,
            "display_label": self.display_label,
            "payload": self.payload,
            "conversation_id": self.conversation_id,
            "max_turns": self.max_turns,
            "per_turn_timeout_s": self.per_turn_timeout_s,
            "status": self.status,
            "current_turn": self.current_turn,
            "resume_count": self.resume_count,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
            "finished_at_ms": self.finished_at_ms,
            "last_error": self.last_error,
            "requester_key": self.requester_key,
            "task_id": self.task_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> JobRecord:
        status = payload.get("status", "pending")
        if status not in INCOMPLETE_JOB_STATES | FINISHED_JOB_STATES:
            raise ValueError(f"Unknown job status: {status!r}")
        finished_at = payload.get("finished_at_ms")
        return cls(
            job_id=str(payload["job_id"]),
            target_key=str(payload["target_key"]),
            display_label=str(payload.get("display_label") or payload["target_key"]),
            payload=str(payload.get("payload", "")),
            conversation_id=str(payload.get("conversation_id") or payload["job_id"]),
            max_turns=int(payload.get("max_turns", 0)),
            per_turn_timeout_s=float(payload.get("per_turn_timeout_s", 30.0)),
            status=status,
            current_turn=int(payload.get("current_turn", 0)),
            resume_count=int(payload.get("resume_count", 0)),
            created_at_ms=int(payload.get("created_at_ms", 0)),
            updated_at_ms=int(payload.get("updated_at_ms", 0)),
            finished_at_ms=None if finished_at is None else int(finished_at),
            last_error=payload.get("last_error"),
            requester_key=payload.get("requester_key"),
            task_id=payload.get("task_id"),
            metadata=dict(payload.get("metadata") or {}),
        )
