"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Delegation lifecycle contracts and transition table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..observability.events import DelegationEvent
from ..types import JSONValue

DelegationStatus = Literal[
    "spawned",
    "running",
    "completed",
    "verified",
    "rejected",
    "failed",
    "retrying",
    "abandoned",
]

DELEGATION_STATUSES: tuple[DelegationStatus, ...] = (
    "spawned",
    "running",
    "completed",
    "verified",
    "rejected",
    "failed",
    "retrying",
    "abandoned",
)

TERMINAL_DELEGATION_STATES: frozenset[DelegationStatus] = frozenset(
    {"verified", "abandoned"}
)

ACTIVE_DELEGATION_STATES: frozenset[DelegationStatus] = frozenset(
    {"spawned", "running", "retrying"}
)

VALID_DELEGATION_TRANSITIONS: dict[DelegationStatus, tuple[DelegationStatus, ...]] = {
    "spawned": ("running", "failed", "abandoned"),
    "running": ("completed", "failed"),
    "completed": ("verified", "rejected"),
    "verified": (),
    "rejected": ("retrying", "abandoned"),
    "failed": ("retrying", "abandoned"),
    "retrying": ("spawned",),
    "abandoned": (),
}

MAX_SNAPSHOT_BYTES = 10_000
DEFAULT_MAX_RETRIES = 3
ABSOLUTE_MAX_RETRIES = 10


@dataclass(frozen=True, slots=True)
class ResultSnapshot:
    """Captured output of a completed delegation, size-capped at write time."""

    content: str
    outcome_status: str
    captured_at_ms: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "content": self.content,
            "outcome_status": self.outcome_status,
            "captured_at_ms": self.captured_at_ms,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ResultSnapshot:
        return cls(
            content=str(payload.get("content", "")),
            outcome_status=str(payload.get("outcome_status", "")),
            captured_at_ms=int(payload.get("captured_at_ms", 0)),
        )


@dataclass(slots=True)
class Delegation:
    """
    One unit of work handed to another agent.

    Attributes:
        delegation_id: Unique delegation identifier.
        run_id: Correlates the delegation with the job running it.
        target_agent_id: Agent executing the delegated work.
        task: Opaque description of the delegated work.
        status: Current lifecycle status.
        retry_count: Retries performed so far.
        max_retries: Retry budget, clamped to ``ABSOLUTE_MAX_RETRIES``.
        previous_errors: Append-only error history across attempts.
        result_snapshot: Captured result once completed.
        verification_note: Note recorded by the verifier on accept/reject.
        label: Optional display label.
    """

    delegation_id: str
    run_id: str
    target_agent_id: str
    task: str
    status: DelegationStatus = "spawned"
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    previous_errors: list[str] = field(default_factory=list)
    result_snapshot: ResultSnapshot | None = None
    verification_note: str | None = None
    label: str | None = None
    created_at_ms: int = 0
    updated_at_ms: int = 0
    completed_at_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DELEGATION_STATES

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "delegation_id": self.delegation_id,
            "run_id": self.run_id,
            "target_agent_id": self.target_agent_id,
            "task": self.task,
            "status": self.status,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "previous_errors": list(self.previous_errors),
            "result_snapshot": (
                self.result_snapshot.to_dict() if self.result_snapshot else None
            ),
            "verification_note": self.verification_note,
            "label": self.label,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
            "completed_at_ms": self.completed_at_ms,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Delegation:
        status = payload.get("status", "spawned")
        if status not in VALID_DELEGATION_TRANSITIONS:
            raise ValueError(f"Unknown delegation status: {status!r}")
        snapshot = payload.get("result_snapshot")
        completed_at = payload.get("completed_at_ms")
        return cls(
            delegation_id=str(payload["delegation_id"]),
            run_id=str(payload["run_id"]),
            target_agent_id=str(payload["target_agent_id"]),
            task=str(payload.get("task", "")),
            status=status,
            retry_count=int(payload.get("retry_count", 0)),
            max_retries=int(payload.get("max_retries", DEFAULT_MAX_RETRIES)),
            previous_errors=[str(e) for e in payload.get("previous_errors") or []],
            result_snapshot=(
                ResultSnapshot.from_dict(snapshot) if isinstance(snapshot, dict) else None
            ),
            verification_note=payload.get("verification_note"),
            label=payload.get("label"),
            created_at_ms=int(payload.get("created_at_ms", 0)),
            updated_at_ms=int(payload.get("updated_at_ms", 0)),
            completed_at_ms=None if completed_at is None else int(completed_at),
        )


@dataclass(frozen=True, slots=True)
class SnapshotInput:
    """Raw result content offered when a delegation completes."""

    content: str
    outcome_status: str = "ok"


@dataclass(frozen=True, slots=True)
class DelegationUpdate:
    """Requested status change plus optional side-effect payloads."""

    status: DelegationStatus
    result_snapshot: SnapshotInput | None = None
    verification_note: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DelegationChange:
    """Outcome of one create/update: the new record and its lifecycle event."""

    delegation: Delegation
    event: DelegationEvent


@dataclass(frozen=True, slots=True)
class DelegationSummary:
    """Aggregate counts of delegations under one task."""

    total: int = 0
    completed: int = 0
    verified: int = 0
    failed: int = 0
    running: int = 0
    rejected: int = 0
    all_settled: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total": self.total,
            "completed": self.completed,
            "verified": self.verified,
            "failed": self.failed,
            "running": self.running,
            "rejected": self.rejected,
            "all_settled": self.all_settled,
        }
