"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Event sinks: in-memory capture and an append-only JSONL event log.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .bus import WILDCARD, EventBus
from .events import CoordinationEvent

logger = logging.getLogger("courier.observability.sinks")

DEFAULT_MAX_LOG_BYTES = 10 * 1024 * 1024


class InMemoryEventSink:
    """Event sink that stores emitted events in process memory."""

    def __init__(self) -> None:
        self._events: list[CoordinationEvent] = []

    def __call__(self, event: CoordinationEvent) -> None:
        self._events.append(event)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(WILDCARD, self)

    def events(self, event_type: str | None = None) -> list[CoordinationEvent]:
        if event_type is None:
            return list(self._events)
        return [event for event in self._events if event.type == event_type]

    def types(self) -> list[str]:
        return [event.type for event in self._events]


class JSONLEventLog:
    """
    Append coordination events to a JSONL file with process-local lock.

    When the active file grows past `max_bytes` it is renamed to a timestamped
    archive next to it and a fresh file is started.
    """

    def __init__(self, path: str | Path, *, max_bytes: int = DEFAULT_MAX_LOG_BYTES) -> None:
        self._path = Path(path)
        self._max_bytes = max_bytes
        self._lock = threading.Lock()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def start(self, bus: EventBus) -> None:
        """Subscribe to every event on `bus`. Calling twice is a no-op."""
        if self._unsubscribe is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._unsubscribe = bus.subscribe(WILDCARD, self.write)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def write(self, event: CoordinationEvent) -> None:
        line = json.dumps(event.to_dict(), ensure_ascii=True)
        with self._lock:
            self._rotate_if_needed()
            try:
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                logger.warning("Failed to append event %s to %s", event.type, self._path)

    def read_all(self) -> list[dict[str, Any]]:
        """Read all events from the active log file."""
        if not self._path.exists():
            return []
        out: list[dict[str, Any]] = []
        with self._path.open("r", encoding="utf-8") as handle:
            for line in handle:
                row = line.strip()
                if not row:
                    continue
                out.append(json.loads(row))
        return out

    def archives(self) -> list[Path]:
        pattern = f"{self._path.stem}-*{self._path.suffix}"
        return sorted(self._path.parent.glob(pattern))

    def _rotate_if_needed(self) -> None:
        try:
            size = self._path.stat().st_size
        except FileNotFoundError:
            return
        if size <= self._max_bytes:
            return
        stamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        archive = self._path.with_name(
            f"{self._path.stem}-{stamp}-{time.time_ns() % 1_000_000:06d}{self._path.suffix}"
        )
        try:
            self._path.rename(archive)
        except OSError:
            logger.warning("Failed to rotate event log %s", self._path)
