"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Pure helpers for queue overflow, staleness and message rendering.
"""

from __future__ import annotations

from typing import Callable, Sequence

from .types import QueueItem, QueueState

SUMMARY_LINE_LIMIT = 160
COLLECT_TITLE = "[Queued messages while agent was busy]"


def elide(text: str, limit: int = SUMMARY_LINE_LIMIT) -> str:
    """Collapse whitespace and cut `text` to `limit` characters."""
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: max(0, limit - 1)].rstrip() + "…"


def summarize_item(item: QueueItem) -> str:
    return elide((item.summary_line or "").strip() or item.text.strip())


def apply_drop_policy(
    state: QueueState,
    summarize: Callable[[QueueItem], str] = summarize_item,
) -> bool:
    """
    Make room for one incoming item.

    Returns False when the incoming item must be rejected (``drop_new`` at
    cap). ``drop_old`` and ``summarize`` evict the oldest items instead;
    ``summarize`` also keeps a digest line per evicted item, bounded by cap.
    """
    cap = state.cap
    if cap <= 0 or len(state.items) < cap:
        return True
    if state.drop_policy == "drop_new":
        state.dropped_count += 1
        return False

    drop_count = len(state.items) - cap + 1
    dropped = state.items[:drop_count]
    del state.items[:drop_count]
    state.dropped_count += len(dropped)
    if state.drop_policy == "summarize":
        state.summary_lines.extend(summarize(item) for item in dropped)
        if len(state.summary_lines) > cap:
            del state.summary_lines[: len(state.summary_lines) - cap]
    return True


def build_summary_prompt(state: QueueState, noun: str = "message") -> str | None:
    """Digest of dropped items, or None when nothing is pending."""
    if not state.summary_lines:
        return None
    count = max(state.dropped_count, len(state.summary_lines))
    plural = "" if count == 1 else "s"
    lines = [f"[Queue overflow] Dropped {count} {noun}{plural} due to cap.", "Summary:"]
    lines.extend(f"- {line}" for line in state.summary_lines)
    return "\n".join(lines)


def clear_summary(state: QueueState) -> None:
    state.dropped_count = 0
    state.summary_lines.clear()


def render_collected(
    items: Sequence[QueueItem],
    *,
    summary: str | None = None,
    title: str = COLLECT_TITLE,
) -> str:
    """Render several queued items as one numbered, delimited message."""
    blocks = [title]
    if summary:
        blocks.append(summary)
    for index, item in enumerate(items):
        blocks.append(f"---\nQueued #{index + 1}\n{item.text}".strip())
    return "\n\n".join(blocks)


def has_cross_channel_items(items: Sequence[QueueItem]) -> bool:
    """
    True when merging `items` would mix delivery origins.

    Items without an origin only merge with each other. An origin lacking a
    routing key counts as mixed, as does any keyed/unkeyed mix or a second key.
    """
    keys: set[str] = set()
    has_unkeyed = False
    for item in items:
        if item.origin is None:
            has_unkeyed = True
            continue
        key = item.origin.key
        if key is None:
            return True
        keys.add(key)
    if not keys:
        return False
    if has_unkeyed:
        return True
    return len(keys) > 1


def is_stale(state: QueueState, item: QueueItem, now_ms: int) -> bool:
    if item.high_priority or state.max_age_ms <= 0:
        return False
    enqueued = item.enqueued_at_ms if item.enqueued_at_ms is not None else now_ms
    return now_ms - enqueued > state.max_age_ms


def debounce_remaining_ms(state: QueueState, now_ms: int) -> int:
    """Milliseconds left before the quiet period since the last enqueue elapses."""
    if state.debounce_ms <= 0:
        return 0
    return max(0, state.debounce_ms - (now_ms - state.last_enqueued_at_ms))
