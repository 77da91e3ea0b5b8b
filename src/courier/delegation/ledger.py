"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

File-backed delegation ledger: one JSON document per task.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import DelegationNotFoundError
from ..observability.bus import EventBus
from ..observability.events import DelegationEvent, event_from_dict
from ..types import JSONValue
from ..utils import Clock, atomic_write_json, now_ms, read_json
from .manager import compute_delegation_summary, update_delegation
from .types import Delegation, DelegationSummary, DelegationUpdate

logger = logging.getLogger("courier.delegation.ledger")

_SAFE_TASK_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(slots=True)
class TaskDelegations:
    """Persisted delegation state for one task."""

    task_id: str
    delegations: list[Delegation] = field(default_factory=list)
    events: list[DelegationEvent] = field(default_factory=list)
    summary: DelegationSummary = field(default_factory=DelegationSummary)

    def get(self, delegation_id: str) -> Delegation | None:
        for item in self.delegations:
            if item.delegation_id == delegation_id:
                return item
        return None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "delegations": [item.to_dict() for item in self.delegations],
            "events": [event.to_dict() for event in self.events],
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> TaskDelegations:
        delegations = [Delegation.from_dict(row) for row in payload.get("delegations") or []]
        events = [event_from_dict(row) for row in payload.get("events") or []]
        return cls(
            task_id=str(payload["task_id"]),
            delegations=delegations,
            events=events,  # type: ignore[arg-type]
            summary=compute_delegation_summary(delegations),
        )


class DelegationLedger:
    """
    Durable record of delegations grouped by task id.

    Each mutation is a locked read-modify-write of ``task-<id>.json`` with an
    atomic replace, so concurrent updates to one task serialize and updates
    to different tasks never contend. The summary is recomputed on every write.
    """

    def __init__(
        self,
        root_dir: str | Path,
        *,
        bus: EventBus | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._root = Path(root_dir)
        self._bus = bus
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def root_dir(self) -> Path:
        return self._root

    def _path(self, task_id: str) -> Path:
        if not _SAFE_TASK_ID.match(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")
        return self._root / f"task-{task_id}.json"

    def _lock(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    async def _load(self, task_id: str) -> TaskDelegations | None:
        payload = await asyncio.to_thread(read_json, self._path(task_id))
        if payload is None:
            return None
        return TaskDelegations.from_dict(payload)

    async def _save(self, doc: TaskDelegations) -> None:
        doc.summary = compute_delegation_summary(doc.delegations)
        await asyncio.to_thread(atomic_write_json, self._path(doc.task_id), doc.to_dict())

    def _publish(self, event: DelegationEvent) -> None:
        if self._bus is not None:
            self._bus.emit(event)

    async def append(
        self,
        task_id: str,
        delegation: Delegation,
        event: DelegationEvent,
    ) -> None:
        """Add a new delegation (creating the task document when missing)."""
        async with self._lock(task_id):
            doc = await self._load(task_id) or TaskDelegations(task_id=task_id)
            if doc.get(delegation.delegation_id) is not None:
                raise ValueError(
                    f"Delegation '{delegation.delegation_id}' already recorded for task '{task_id}'"
                )
            doc.delegations.append(delegation)
            doc.events.append(event)
            await self._save(doc)
        self._publish(event)

    async def update(
        self,
        task_id: str,
        delegation: Delegation,
        event: DelegationEvent,
    ) -> bool:
        """Replace a stored delegation; False when the task or delegation is unknown."""
        async with self._lock(task_id):
            doc = await self._load(task_id)
            if doc is None:
                return False
            for index, item in enumerate(doc.delegations):
                if item.delegation_id == delegation.delegation_id:
                    doc.delegations[index] = delegation
                    break
            else:
                return False
            doc.events.append(event)
            await self._save(doc)
        self._publish(event)
        return True

    async def transition(
        self,
        task_id: str,
        delegation_id: str,
        update: DelegationUpdate,
    ) -> Delegation:
        """
        Apply one state-machine update to a stored delegation and persist it.

        Raises:
            DelegationNotFoundError: If the task or delegation is unknown.
            InvalidTransitionError: If the transition is not allowed.
        """
        async with self._lock(task_id):
            doc = await self._load(task_id)
            if doc is None:
                raise DelegationNotFoundError(task_id)
            current = doc.get(delegation_id)
            if current is None:
                raise DelegationNotFoundError(task_id, delegation_id)
            change = update_delegation(current, update, clock=self._clock)
            doc.delegations = [
                change.delegation if item.delegation_id == delegation_id else item
                for item in doc.delegations
            ]
            doc.events.append(change.event)
            await self._save(doc)
        logger.debug(
            "delegation %s: %s -> %s",
            delegation_id,
            current.status,
            change.delegation.status,
        )
        self._publish(change.event)
        return change.delegation

    async def read(self, task_id: str) -> TaskDelegations | None:
        return await self._load(task_id)

    async def require(self, task_id: str) -> TaskDelegations:
        doc = await self._load(task_id)
        if doc is None:
            raise DelegationNotFoundError(task_id)
        return doc

    async def find_by_run_id(self, task_id: str, run_id: str) -> Delegation | None:
        doc = await self._load(task_id)
        if doc is None:
            return None
        for item in doc.delegations:
            if item.run_id == run_id:
                return item
        return None
