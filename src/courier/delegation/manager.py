"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Pure delegation state machine.

Every function here is side-effect free: updates return a new ``Delegation``
plus the lifecycle event describing the change, and leave the input untouched.
Persisting the result is the ledger's job.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from ..errors import InvalidTransitionError
from ..observability.events import (
    DelegationAbandoned,
    DelegationCompleted,
    DelegationEvent,
    DelegationFailed,
    DelegationRejected,
    DelegationRetrying,
    DelegationRunning,
    DelegationSpawned,
    DelegationVerified,
)
from ..types import JSONValue
from ..utils import Clock, IdFactory, new_id, now_ms, truncate_utf8
from .types import (
    ABSOLUTE_MAX_RETRIES,
    DEFAULT_MAX_RETRIES,
    MAX_SNAPSHOT_BYTES,
    TERMINAL_DELEGATION_STATES,
    VALID_DELEGATION_TRANSITIONS,
    Delegation,
    DelegationChange,
    DelegationStatus,
    DelegationSummary,
    DelegationUpdate,
    ResultSnapshot,
)

_EVENT_FOR_STATUS: dict[DelegationStatus, type[DelegationEvent]] = {
    "spawned": DelegationSpawned,
    "running": DelegationRunning,
    "completed": DelegationCompleted,
    "failed": DelegationFailed,
    "verified": DelegationVerified,
    "rejected": DelegationRejected,
    "retrying": DelegationRetrying,
    "abandoned": DelegationAbandoned,
}

# Statuses that settle a task: nothing further happens without a new decision.
_SETTLED_STATES: frozenset[DelegationStatus] = TERMINAL_DELEGATION_STATES | {"rejected"}


def _default_delegation_id() -> str:
    return new_id("delegation")


def clamp_max_retries(value: int | None) -> int:
    if value is None:
        return DEFAULT_MAX_RETRIES
    return min(max(0, int(value)), ABSOLUTE_MAX_RETRIES)


def is_valid_transition(from_status: DelegationStatus, to_status: DelegationStatus) -> bool:
    return to_status in VALID_DELEGATION_TRANSITIONS.get(from_status, ())


def create_delegation(
    *,
    run_id: str,
    target_agent_id: str,
    task: str,
    label: str | None = None,
    max_retries: int | None = None,
    clock: Clock = now_ms,
    id_factory: IdFactory = _default_delegation_id,
) -> DelegationChange:
    """
    Build a fresh ``spawned`` delegation and its ``delegation.spawned`` event.

    Args:
        run_id: Job/run the delegation belongs to.
        target_agent_id: Agent executing the work.
        task: Description of the delegated work.
        label: Optional display label.
        max_retries: Retry budget; defaults to ``DEFAULT_MAX_RETRIES`` and is
            clamped to ``[0, ABSOLUTE_MAX_RETRIES]``.
        clock: Epoch-ms time source.
        id_factory: Delegation id generator.
    """
    now = clock()
    delegation = Delegation(
        delegation_id=id_factory(),
        run_id=run_id,
        target_agent_id=target_agent_id,
        task=task,
        status="spawned",
        max_retries=clamp_max_retries(max_retries),
        label=label,
        created_at_ms=now,
        updated_at_ms=now,
    )
    data: dict[str, JSONValue] = {
        "target_agent_id": target_agent_id,
        "task": task,
    }
    if label:
        data["label"] = label
    event = DelegationSpawned(
        delegation_id=delegation.delegation_id,
        run_id=run_id,
        data=data,
        timestamp_ms=now,
    )
    return DelegationChange(delegation=delegation, event=event)


def update_delegation(
    delegation: Delegation,
    update: DelegationUpdate,
    *,
    clock: Clock = now_ms,
) -> DelegationChange:
    """
    Apply one status transition.

    Side effects on the returned copy:

    - ``completed``/``failed`` stamp ``completed_at_ms``.
    - a supplied result snapshot is truncated to ``MAX_SNAPSHOT_BYTES``.
    - a supplied error (or, for ``rejected``, the verification note) is
      appended to ``previous_errors``.
    - ``retrying`` increments ``retry_count`` and clears ``completed_at_ms``.

    Raises:
        InvalidTransitionError: If ``update.status`` is not reachable from
            the delegation's current status.
    """
    current = delegation.status
    target = update.status
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(
            current,
            target,
            VALID_DELEGATION_TRANSITIONS.get(current, ()),
        )

    now = clock()
    previous_errors = list(delegation.previous_errors)
    retry_count = delegation.retry_count
    completed_at_ms = delegation.completed_at_ms
    snapshot = delegation.result_snapshot
    note = delegation.verification_note

    if target in ("completed", "failed"):
        completed_at_ms = now
    if update.result_snapshot is not None:
        snapshot = ResultSnapshot(
            content=truncate_utf8(update.result_snapshot.content, MAX_SNAPSHOT_BYTES),
            outcome_status=update.result_snapshot.outcome_status,
            captured_at_ms=now,
        )
    if update.verification_note is not None:
        note = update.verification_note

    error = update.error
    if error is None and target == "rejected" and update.verification_note:
        error = f"rejected: {update.verification_note}"
    if error:
        previous_errors.append(error)

    if target == "retrying":
        retry_count += 1
        completed_at_ms = None

    updated = replace(
        delegation,
        status=target,
        retry_count=retry_count,
        previous_errors=previous_errors,
        result_snapshot=snapshot,
        verification_note=note,
        updated_at_ms=now,
        completed_at_ms=completed_at_ms,
    )

    data: dict[str, JSONValue] = {"previous_status": current}
    if update.result_snapshot is not None:
        data["has_result"] = True
    if update.error:
        data["error"] = update.error
    if update.verification_note is not None:
        data["note"] = update.verification_note
    if target == "retrying":
        data["retry_count"] = retry_count

    event = _EVENT_FOR_STATUS[target](
        delegation_id=delegation.delegation_id,
        run_id=delegation.run_id,
        data=data,
        timestamp_ms=now,
    )
    return DelegationChange(delegation=updated, event=event)


def compute_delegation_summary(delegations: Sequence[Delegation]) -> DelegationSummary:
    """
    Count delegations per bucket.

    ``running`` counts every active status (spawned, running, retrying).
    ``all_settled`` is False for an empty task.
    """
    completed = verified = failed = running = rejected = 0
    for item in delegations:
        if item.status == "completed":
            completed += 1
        elif item.status == "verified":
            verified += 1
        elif item.status in ("failed", "abandoned"):
            failed += 1
        elif item.status == "rejected":
            rejected += 1
        else:
            running += 1
    all_settled = bool(delegations) and all(
        item.status in _SETTLED_STATES for item in delegations
    )
    return DelegationSummary(
        total=len(delegations),
        completed=completed,
        verified=verified,
        failed=failed,
        running=running,
        rejected=rejected,
        all_settled=all_settled,
    )


def can_retry(delegation: Delegation) -> bool:
    """True when the delegation is failed/rejected with budget left."""
    return (
        delegation.status in ("failed", "rejected")
        and delegation.retry_count < delegation.max_retries
    )


def find_delegation_by_run_id(
    delegations: Iterable[Delegation], run_id: str
) -> Delegation | None:
    for item in delegations:
        if item.run_id == run_id:
            return item
    return None


def find_latest_completed_delegation(
    delegations: Iterable[Delegation],
) -> Delegation | None:
    """Most recently completed delegation still awaiting verification."""
    latest: Delegation | None = None
    for item in delegations:
        if item.status != "completed":
            continue
        if latest is None or (item.completed_at_ms or 0) >= (latest.completed_at_ms or 0):
            latest = item
    return latest
