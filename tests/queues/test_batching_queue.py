from __future__ import annotations

import asyncio

from courier.observability import InMemoryCoordinationMetrics
from courier.queues import (
    COLLECT_TITLE,
    BatchingQueue,
    DeliveryOrigin,
    QueueItem,
    QueueSettings,
    has_cross_channel_items,
)
from courier.utils import now_ms


def run_async(coro):
    return asyncio.run(coro)


class _Recorder:
    def __init__(self, failures: int = 0) -> None:
        self.items: list[QueueItem] = []
        self.failures = failures

    async def __call__(self, item: QueueItem) -> None:
        if self.failures:
            self.failures -= 1
            raise ConnectionResetError("connection reset")
        self.items.append(item)

    @property
    def texts(self) -> list[str]:
        return [item.text for item in self.items]


DISCORD = DeliveryOrigin(channel="discord", to="channel:1")
SLACK = DeliveryOrigin(channel="slack", to="C42")


def test_collect_mode_merges_a_burst_into_one_message():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="collect", debounce_ms=20)
        for text in ("first", "second", "third"):
            await queue.enqueue("lead", QueueItem(text=text, origin=DISCORD), settings, deliver)
        await queue.wait_idle()

        assert len(deliver.items) == 1
        merged = deliver.items[0]
        assert merged.text.startswith(COLLECT_TITLE)
        assert "---\nQueued #1\nfirst" in merged.text
        assert "---\nQueued #3\nthird" in merged.text
        assert merged.origin == DISCORD
        assert queue.keys() == []

    run_async(scenario())


def test_individual_mode_delivers_in_enqueue_order():
    async def scenario() -> None:
        metrics = InMemoryCoordinationMetrics()
        queue = BatchingQueue(metrics=metrics)
        deliver = _Recorder()
        settings = QueueSettings(mode="individual", debounce_ms=10)
        for text in ("a", "b", "c"):
            await queue.enqueue("k", QueueItem(text=text), settings, deliver)
        await queue.wait_idle()
        assert deliver.texts == ["a", "b", "c"]
        assert metrics.total("courier_queue_delivered_total") == 3

    run_async(scenario())


def test_drop_new_at_cap_rejects_and_counts():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="individual", debounce_ms=500, cap=2, drop_policy="drop_new")
        assert await queue.enqueue("k", QueueItem(text="a"), settings, deliver) is True
        assert await queue.enqueue("k", QueueItem(text="b"), settings, deliver) is True
        assert await queue.enqueue("k", QueueItem(text="c"), settings, deliver) is False
        assert queue.size("k") == 2
        assert queue.dropped_count("k") == 1
        assert queue.is_draining("k")
        await queue.aclose()
        assert deliver.items == []
        assert queue.keys() == []

    run_async(scenario())


def test_drop_old_evicts_oldest_item():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="individual", debounce_ms=10, cap=2, drop_policy="drop_old")
        for text in ("a", "b", "c"):
            assert await queue.enqueue("k", QueueItem(text=text), settings, deliver) is True
        assert queue.size("k") == 2
        await queue.wait_idle()
        assert deliver.texts == ["b", "c"]

    run_async(scenario())


def test_summarize_surfaces_digest_of_dropped_items():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="individual", debounce_ms=10, cap=2, drop_policy="summarize")
        await queue.enqueue("k", QueueItem(text="alpha body", summary_line="alpha"), settings, deliver)
        await queue.enqueue("k", QueueItem(text="beta body"), settings, deliver)
        await queue.enqueue("k", QueueItem(text="gamma body"), settings, deliver)
        assert queue.summary_lines("k") == ["alpha"]
        await queue.wait_idle()

        assert len(deliver.items) == 2
        first = deliver.texts[0]
        assert "[Queue overflow] Dropped 1 message due to cap." in first
        assert "- alpha" in first
        assert first.endswith("beta body")
        assert deliver.texts[1] == "gamma body"

    run_async(scenario())


def test_collect_mode_summary_is_part_of_merged_message():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="collect", debounce_ms=10, cap=1, drop_policy="summarize")
        await queue.enqueue("k", QueueItem(text="old news"), settings, deliver)
        await queue.enqueue("k", QueueItem(text="latest"), settings, deliver)
        await queue.wait_idle()
        assert len(deliver.items) == 1
        assert "- old news" in deliver.texts[0]
        assert "Queued #1\nlatest" in deliver.texts[0]

    run_async(scenario())


def test_stale_items_are_skipped_unless_high_priority():
    async def scenario() -> None:
        metrics = InMemoryCoordinationMetrics()
        queue = BatchingQueue(metrics=metrics)
        deliver = _Recorder()
        settings = QueueSettings(mode="individual", debounce_ms=0, max_age_ms=60_000)
        old = now_ms() - 120_000
        await queue.enqueue("k", QueueItem(text="stale", enqueued_at_ms=old), settings, deliver)
        await queue.enqueue(
            "k",
            QueueItem(text="urgent", enqueued_at_ms=old, high_priority=True),
            settings,
            deliver,
        )
        await queue.enqueue("k", QueueItem(text="fresh"), settings, deliver)
        await queue.wait_idle()
        assert deliver.texts == ["urgent", "fresh"]
        assert metrics.total("courier_queue_stale_skipped_total") == 1

    run_async(scenario())


def test_collect_mode_never_merges_different_origins():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _Recorder()
        settings = QueueSettings(mode="collect", debounce_ms=10)
        await queue.enqueue("k", QueueItem(text="to discord", origin=DISCORD), settings, deliver)
        await queue.enqueue("k", QueueItem(text="to slack", origin=SLACK), settings, deliver)
        await queue.enqueue("k", QueueItem(text="discord again", origin=DISCORD), settings, deliver)
        await queue.wait_idle()
        assert deliver.texts == ["to discord", "to slack", "discord again"]
        assert [item.origin for item in deliver.items] == [DISCORD, SLACK, DISCORD]

    run_async(scenario())


def test_failed_delivery_keeps_item_and_retries():
    async def scenario() -> None:
        queue = BatchingQueue(failure_backoff_s=0.01)
        deliver = _Recorder(failures=1)
        settings = QueueSettings(mode="individual", debounce_ms=0)
        await queue.enqueue("k", QueueItem(text="important"), settings, deliver)
        await asyncio.wait_for(queue.wait_idle(), timeout=2)
        assert deliver.texts == ["important"]

    run_async(scenario())


class _BlockingRecorder(_Recorder):
    """Holds the first delivery open until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, item: QueueItem) -> None:
        if not self.started.is_set():
            self.started.set()
            await self.release.wait()
        await super().__call__(item)


def test_enqueue_at_cap_during_delivery_keeps_undelivered_items():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _BlockingRecorder()
        settings = QueueSettings(mode="individual", debounce_ms=0, cap=2, drop_policy="drop_old")
        await queue.enqueue("k", QueueItem(text="A"), settings, deliver)
        await queue.enqueue("k", QueueItem(text="B"), settings, deliver)
        await asyncio.wait_for(deliver.started.wait(), timeout=2)

        await queue.enqueue("k", QueueItem(text="C"), settings, deliver)
        assert queue.size("k") == 2
        assert queue.dropped_count("k") == 0

        deliver.release.set()
        await asyncio.wait_for(queue.wait_idle(), timeout=2)
        assert deliver.texts == ["A", "B", "C"]

    run_async(scenario())


def test_summarize_during_collect_delivery_only_digests_undelivered_items():
    async def scenario() -> None:
        queue = BatchingQueue()
        deliver = _BlockingRecorder()
        settings = QueueSettings(mode="collect", debounce_ms=0, cap=2, drop_policy="summarize")
        await queue.enqueue("k", QueueItem(text="A"), settings, deliver)
        await queue.enqueue("k", QueueItem(text="B"), settings, deliver)
        await asyncio.wait_for(deliver.started.wait(), timeout=2)

        for text in ("C", "D", "E"):
            await queue.enqueue("k", QueueItem(text=text), settings, deliver)
        assert queue.summary_lines("k") == ["C"]
        assert queue.dropped_count("k") == 1

        deliver.release.set()
        await asyncio.wait_for(queue.wait_idle(), timeout=2)
        assert len(deliver.items) == 2
        first, second = deliver.texts
        assert "Queued #1\nA" in first and "Queued #2\nB" in first
        assert "[Queue overflow]" not in first
        assert "[Queue overflow] Dropped 1 message due to cap." in second
        assert "- C" in second
        assert "Queued #1\nD" in second and "Queued #2\nE" in second

    run_async(scenario())


def test_failed_collect_delivery_restores_batch_ahead_of_new_items():
    async def scenario() -> None:
        queue = BatchingQueue(failure_backoff_s=0.01)
        attempts: list[str] = []
        release = asyncio.Event()

        async def deliver(item: QueueItem) -> None:
            attempts.append(item.text)
            if len(attempts) == 1:
                await release.wait()
                raise ConnectionResetError("connection reset")

        settings = QueueSettings(mode="collect", debounce_ms=0, cap=5)
        await queue.enqueue("k", QueueItem(text="A"), settings, deliver)
        while not attempts:
            await asyncio.sleep(0)
        await queue.enqueue("k", QueueItem(text="B"), settings, deliver)
        release.set()
        await asyncio.wait_for(queue.wait_idle(), timeout=2)

        assert len(attempts) == 2
        retried = attempts[1]
        assert retried.index("Queued #1\nA") < retried.index("Queued #2\nB")

    run_async(scenario())


def test_keys_are_independent():
    async def scenario() -> None:
        queue = BatchingQueue()
        first = _Recorder()
        second = _Recorder()
        settings = QueueSettings(mode="collect", debounce_ms=10)
        await queue.enqueue("a", QueueItem(text="for a"), settings, first)
        await queue.enqueue("b", QueueItem(text="for b"), settings, second)
        await queue.wait_idle()
        assert len(first.items) == 1 and "for a" in first.texts[0]
        assert len(second.items) == 1 and "for b" in second.texts[0]

    run_async(scenario())


def test_cross_channel_detection_rules():
    unkeyed = QueueItem(text="x")
    partial = QueueItem(text="y", origin=DeliveryOrigin(channel="discord"))
    assert has_cross_channel_items([unkeyed, unkeyed]) is False
    assert has_cross_channel_items([QueueItem(text="a", origin=DISCORD)] * 2) is False
    assert has_cross_channel_items([QueueItem(text="a", origin=DISCORD), unkeyed]) is True
    assert has_cross_channel_items([partial]) is True
    assert (
        has_cross_channel_items(
            [QueueItem(text="a", origin=DISCORD), QueueItem(text="b", origin=SLACK)]
        )
        is True
    )
