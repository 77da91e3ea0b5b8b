"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Batching queue contracts.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal

QueueMode = Literal["individual", "collect"]
DropPolicy = Literal["drop_new", "drop_old", "summarize"]

DEFAULT_DEBOUNCE_MS = 1000
DEFAULT_CAP = 20
DEFAULT_DROP_POLICY: DropPolicy = "summarize"
DEFAULT_MAX_AGE_MS = 10 * 60 * 1000


@dataclass(frozen=True, slots=True)
class DeliveryOrigin:
    """Where a queued notification should be delivered back to."""

    channel: str | None = None
    to: str | None = None
    account_id: str | None = None
    thread_id: str | None = None

    @property
    def key(self) -> str | None:
        """Stable routing key, or None when channel/recipient are unknown."""
        channel = (self.channel or "").strip().lower()
        to = (self.to or "").strip()
        if not channel or not to:
            return None
        account = (self.account_id or "").strip()
        thread = (self.thread_id or "").strip()
        return "|".join((channel, to, account, thread))


@dataclass(frozen=True, slots=True)
class QueueItem:
    """
    One queued notification.

    Attributes:
        text: Opaque payload handed to the delivery function.
        summary_line: Short digest used when the item is dropped.
        enqueued_at_ms: Enqueue time; stamped by the queue when omitted.
        origin: Delivery origin, used to avoid merging unrelated channels.
        high_priority: Exempts the item from age-based dropping.
    """

    text: str
    summary_line: str | None = None
    enqueued_at_ms: int | None = None
    origin: DeliveryOrigin | None = None
    high_priority: bool = False


DeliverItemFn = Callable[[QueueItem], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class QueueSettings:
    """Per-key queue behavior; re-applied on every enqueue for that key."""

    mode: QueueMode = "collect"
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    cap: int = DEFAULT_CAP
    drop_policy: DropPolicy = DEFAULT_DROP_POLICY
    max_age_ms: int = DEFAULT_MAX_AGE_MS

    def __post_init__(self) -> None:
        if self.mode not in ("individual", "collect"):
            raise ValueError(f"Unknown queue mode: {self.mode!r}")
        if self.drop_policy not in ("drop_new", "drop_old", "summarize"):
            raise ValueError(f"Unknown drop policy: {self.drop_policy!r}")


@dataclass(slots=True)
class QueueState:
    """Mutable per-key queue state owned by ``BatchingQueue``."""

    deliver: DeliverItemFn
    mode: QueueMode = "collect"
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    cap: int = DEFAULT_CAP
    drop_policy: DropPolicy = DEFAULT_DROP_POLICY
    max_age_ms: int = DEFAULT_MAX_AGE_MS
    items: list[QueueItem] = field(default_factory=list)
    draining: bool = False
    last_enqueued_at_ms: int = 0
    dropped_count: int = 0
    summary_lines: list[str] = field(default_factory=list)

    def apply(self, settings: QueueSettings) -> None:
        self.mode = settings.mode
        self.debounce_ms = max(0, int(settings.debounce_ms))
        self.cap = int(settings.cap) if settings.cap > 0 else DEFAULT_CAP
        self.drop_policy = settings.drop_policy
        self.max_age_ms = max(0, int(settings.max_age_ms))
