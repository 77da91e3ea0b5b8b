"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Exception hierarchy for coordination failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .runtime.classification import A2AErrorInfo


class CourierError(RuntimeError):
    """Base error for all coordination-engine failures."""


class ConcurrencyLimitError(CourierError):
    """
    Raised when a concurrency gate permit could not be obtained in time.

    Callers should report the exchange as blocked rather than failed.
    """

    def __init__(
        self,
        key: str,
        *,
        active_count: int,
        timeout_s: float,
        flow_id: str | None = None,
    ) -> None:
        self.key = key
        self.flow_id = flow_id
        self.active_count = active_count
        self.timeout_s = timeout_s
        super().__init__(
            f"A2A concurrency limit exceeded for '{key}': "
            f"{active_count} active flows, timed out after {timeout_s:g}s"
        )


class InvalidTransitionError(CourierError, ValueError):
    """Raised when a delegation status change is not in the transition table."""

    def __init__(
        self,
        from_status: str,
        to_status: str,
        allowed: Sequence[str],
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = tuple(allowed)
        allowed_text = ", ".join(self.allowed) if self.allowed else "none (terminal state)"
        super().__init__(
            f"Invalid delegation transition: {from_status} -> {to_status}. "
            f"Allowed from {from_status}: {allowed_text}"
        )


class JobNotFoundError(CourierError, KeyError):
    """Raised by strict job accessors when the job record does not exist."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' not found")

    def __str__(self) -> str:
        return self.args[0]


class DelegationNotFoundError(CourierError, KeyError):
    """Raised when a delegation or its owning task ledger is missing."""

    def __init__(self, task_id: str, delegation_id: str | None = None) -> None:
        self.task_id = task_id
        self.delegation_id = delegation_id
        if delegation_id is None:
            message = f"Delegation ledger for task '{task_id}' not found"
        else:
            message = f"Delegation '{delegation_id}' not found in task '{task_id}'"
        super().__init__(message)

    def __str__(self) -> str:
        return self.args[0]


class ExchangeCancelledError(CourierError):
    """Raised by an exchange flow that observed its cancellation handle."""

    def __init__(self, job_id: str, *, turn: int) -> None:
        self.job_id = job_id
        self.turn = turn
        super().__init__(f"Exchange '{job_id}' cancelled before turn {turn}")


class ExchangeTurnError(CourierError):
    """Raised when one exchange turn fails and is not (or no longer) retried."""

    def __init__(self, info: A2AErrorInfo, *, turn: int, attempts: int) -> None:
        self.info = info
        self.turn = turn
        self.attempts = attempts
        super().__init__(
            f"Exchange turn {turn} failed after {attempts} attempt(s) "
            f"[{info.category}/{info.code}]: {info.reason}"
        )
