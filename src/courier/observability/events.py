"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Typed lifecycle events emitted by exchanges, jobs and delegations.

Each event type is its own frozen dataclass so every emission site names the
exact variant it produces. Events are append-only telemetry and are never read
back by the coordination engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, TypeAlias

from ..types import JSONValue
from ..utils import now_ms

EventType = Literal[
    "exchange.started",
    "exchange.response",
    "exchange.complete",
    "job.abandoned",
    "delegation.spawned",
    "delegation.running",
    "delegation.completed",
    "delegation.failed",
    "delegation.verified",
    "delegation.rejected",
    "delegation.retrying",
    "delegation.abandoned",
]


# ---------------------------------------------------------------------------
# Exchange / job events (subject: agent id)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _AgentEvent:
    agent_id: str
    data: dict[str, JSONValue] = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=now_ms)

    type: ClassVar[EventType]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "type": self.type,
            "agent_id": self.agent_id,
            "timestamp_ms": self.timestamp_ms,
            "data": dict(self.data),
        }


@dataclass(frozen=True, slots=True)
class ExchangeStarted(_AgentEvent):
    """An exchange flow began (or resumed) for one job."""

    type: ClassVar[EventType] = "exchange.started"


@dataclass(frozen=True, slots=True)
class ExchangeResponse(_AgentEvent):
    """One exchange step produced an outcome (reply, blocked, error)."""

    type: ClassVar[EventType] = "exchange.response"


@dataclass(frozen=True, slots=True)
class ExchangeComplete(_AgentEvent):
    """An exchange reached its final outcome."""

    type: ClassVar[EventType] = "exchange.complete"


@dataclass(frozen=True, slots=True)
class JobAbandoned(_AgentEvent):
    """The reaper abandoned a stale running job."""

    type: ClassVar[EventType] = "job.abandoned"


# ---------------------------------------------------------------------------
# Delegation events (subject: delegation id)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _DelegationEvent:
    delegation_id: str
    run_id: str
    data: dict[str, JSONValue] = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=now_ms)

    type: ClassVar[EventType]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "type": self.type,
            "delegation_id": self.delegation_id,
            "run_id": self.run_id,
            "timestamp_ms": self.timestamp_ms,
            "data": dict(self.data),
        }


@dataclass(frozen=True, slots=True)
class DelegationSpawned(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.spawned"


@dataclass(frozen=True, slots=True)
class DelegationRunning(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.running"


@dataclass(frozen=True, slots=True)
class DelegationCompleted(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.completed"


@dataclass(frozen=True, slots=True)
class DelegationFailed(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.failed"


@dataclass(frozen=True, slots=True)
class DelegationVerified(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.verified"


@dataclass(frozen=True, slots=True)
class DelegationRejected(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.rejected"


@dataclass(frozen=True, slots=True)
class DelegationRetrying(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.retrying"


@dataclass(frozen=True, slots=True)
class DelegationAbandoned(_DelegationEvent):
    type: ClassVar[EventType] = "delegation.abandoned"


ExchangeEvent: TypeAlias = ExchangeStarted | ExchangeResponse | ExchangeComplete | JobAbandoned

DelegationEvent: TypeAlias = (
    DelegationSpawned
    | DelegationRunning
    | DelegationCompleted
    | DelegationFailed
    | DelegationVerified
    | DelegationRejected
    | DelegationRetrying
    | DelegationAbandoned
)

CoordinationEvent: TypeAlias = ExchangeEvent | DelegationEvent

EVENT_CLASSES: dict[str, type[Any]] = {
    cls.type: cls
    for cls in (
        ExchangeStarted,
        ExchangeResponse,
        ExchangeComplete,
        JobAbandoned,
        DelegationSpawned,
        DelegationRunning,
        DelegationCompleted,
        DelegationFailed,
        DelegationVerified,
        DelegationRejected,
        DelegationRetrying,
        DelegationAbandoned,
    )
}


def event_from_dict(payload: dict[str, Any]) -> CoordinationEvent:
    """
    Rebuild a typed event from its ``to_dict()`` form.

    Raises:
        ValueError: If ``type`` is missing or not part of the vocabulary.
    """
    event_type = payload.get("type")
    cls = EVENT_CLASSES.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        raise ValueError(f"Unknown coordination event type: {event_type!r}")
    data = dict(payload.get("data") or {})
    timestamp_ms = int(payload.get("timestamp_ms", now_ms()))
    if issubclass(cls, _DelegationEvent):
        return cls(
            delegation_id=str(payload["delegation_id"]),
            run_id=str(payload["run_id"]),
            data=data,
            timestamp_ms=timestamp_ms,
        )
    return cls(agent_id=str(payload["agent_id"]), data=data, timestamp_ms=timestamp_ms)
