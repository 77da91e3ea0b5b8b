from __future__ import annotations

import pytest

from courier.observability import (
    EVENT_CLASSES,
    DelegationRejected,
    EventBus,
    ExchangeComplete,
    ExchangeStarted,
    InMemoryCoordinationMetrics,
    InMemoryEventSink,
    JSONLEventLog,
    NoOpCoordinationMetrics,
    PrometheusCoordinationMetrics,
    event_from_dict,
)


def test_event_vocabulary_is_closed():
    assert set(EVENT_CLASSES) == {
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
    }


def test_events_rebuild_from_json_form():
    exchange = ExchangeComplete(agent_id="lead", data={"outcome": "completed"}, timestamp_ms=5)
    delegation = DelegationRejected(
        delegation_id="delegation_1",
        run_id="run_1",
        data={"previous_status": "completed", "note": "wrong"},
        timestamp_ms=6,
    )
    assert event_from_dict(exchange.to_dict()) == exchange
    assert event_from_dict(delegation.to_dict()) == delegation


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError, match="Unknown coordination event type"):
        event_from_dict({"type": "exchange.exploded", "agent_id": "x"})


def test_bus_fans_out_and_isolates_failing_listeners(caplog):
    bus = EventBus()
    sink = InMemoryEventSink()
    typed: list[str] = []

    def broken(_event) -> None:
        raise RuntimeError("listener bug")

    sink.attach(bus)
    bus.subscribe("exchange.started", broken)
    unsubscribe = bus.subscribe("exchange.started", lambda event: typed.append(event.agent_id))

    bus.emit(ExchangeStarted(agent_id="lead"))
    unsubscribe()
    bus.emit(ExchangeStarted(agent_id="other"))

    assert typed == ["lead"]
    assert sink.types() == ["exchange.started", "exchange.started"]
    assert "Event listener failed" in caplog.text

    bus.reset()
    bus.emit(ExchangeStarted(agent_id="ignored"))
    assert len(sink.events()) == 2


def test_jsonl_event_log_appends_and_rotates(tmp_path):
    bus = EventBus()
    log = JSONLEventLog(tmp_path / "events" / "coordination.jsonl", max_bytes=300)
    log.start(bus)
    log.start(bus)
    for index in range(3):
        bus.emit(ExchangeStarted(agent_id=f"agent-{index}", data={"job_id": f"job_{index}"}))

    rows = log.read_all()
    assert [row["agent_id"] for row in rows] == ["agent-0", "agent-1", "agent-2"]

    for index in range(10):
        bus.emit(ExchangeStarted(agent_id=f"more-{index}", data={"padding": "x" * 50}))
    assert log.archives()

    log.stop()
    before = len(log.read_all())
    bus.emit(ExchangeStarted(agent_id="after-stop"))
    assert len(log.read_all()) == before


def test_in_memory_metrics_totals_across_tags():
    metrics = InMemoryCoordinationMetrics()
    metrics.incr("courier_queue_dropped_total", tags={"policy": "drop_new"})
    metrics.incr("courier_queue_dropped_total", 2, tags={"policy": "summarize"})
    assert metrics.total("courier_queue_dropped_total") == 3
    assert metrics.total("courier_queue_delivered_total") == 0
    NoOpCoordinationMetrics().incr("anything", 5, tags={"k": "v"})


def test_prometheus_metrics_use_supplied_registry():
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusCoordinationMetrics(registry=registry)
    metrics.incr("courier_gate_throttled_total", tags={"key": "peer-a"})
    metrics.incr("courier_gate_throttled_total", tags={"key": "peer-a"})
    metrics.incr("courier_jobs_completed_total")
    assert (
        registry.get_sample_value("courier_gate_throttled_total", {"key": "peer-a"}) == 2.0
    )
    assert registry.get_sample_value("courier_jobs_completed_total") == 1.0
