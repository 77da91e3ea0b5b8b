"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Debounced batching queue for outbound notifications.
"""

from .batching import BatchingQueue
from .helpers import (
    COLLECT_TITLE,
    apply_drop_policy,
    build_summary_prompt,
    has_cross_channel_items,
    render_collected,
)
from .types import (
    DEFAULT_CAP,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_DROP_POLICY,
    DEFAULT_MAX_AGE_MS,
    DeliverItemFn,
    DeliveryOrigin,
    DropPolicy,
    QueueItem,
    QueueMode,
    QueueSettings,
    QueueState,
)

__all__ = [
    "COLLECT_TITLE",
    "DEFAULT_CAP",
    "DEFAULT_DEBOUNCE_MS",
    "DEFAULT_DROP_POLICY",
    "DEFAULT_MAX_AGE_MS",
    "BatchingQueue",
    "DeliverItemFn",
    "DeliveryOrigin",
    "DropPolicy",
    "QueueItem",
    "QueueMode",
    "QueueSettings",
    "QueueState",
    "apply_drop_policy",
    "build_summary_prompt",
    "has_cross_channel_items",
    "render_collected",
]
