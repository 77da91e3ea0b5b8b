"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Observability for the coordination engine: typed lifecycle events, an event
bus with in-memory and JSONL sinks, and counter metrics adapters.

Quick start::

    from courier.observability import EventBus, JSONLEventLog

    bus = EventBus()
    JSONLEventLog("state/coordination-events.jsonl").start(bus)
"""

from .bus import WILDCARD, EventBus, EventListener
from .events import (
    EVENT_CLASSES,
    CoordinationEvent,
    DelegationAbandoned,
    DelegationCompleted,
    DelegationEvent,
    DelegationFailed,
    DelegationRejected,
    DelegationRetrying,
    DelegationRunning,
    DelegationSpawned,
    DelegationVerified,
    EventType,
    ExchangeComplete,
    ExchangeEvent,
    ExchangeResponse,
    ExchangeStarted,
    JobAbandoned,
    event_from_dict,
)
from .metrics import (
    CoordinationMetrics,
    InMemoryCoordinationMetrics,
    NoOpCoordinationMetrics,
    PrometheusCoordinationMetrics,
)
from .sinks import InMemoryEventSink, JSONLEventLog

__all__ = [
    "EventBus",
    "EventListener",
    "WILDCARD",
    "EventType",
    "CoordinationEvent",
    "ExchangeEvent",
    "DelegationEvent",
    "ExchangeStarted",
    "ExchangeResponse",
    "ExchangeComplete",
    "JobAbandoned",
    "DelegationSpawned",
    "DelegationRunning",
    "DelegationCompleted",
    "DelegationFailed",
    "DelegationVerified",
    "DelegationRejected",
    "DelegationRetrying",
    "DelegationAbandoned",
    "EVENT_CLASSES",
    "event_from_dict",
    "CoordinationMetrics",
    "NoOpCoordinationMetrics",
    "InMemoryCoordinationMetrics",
    "PrometheusCoordinationMetrics",
    "InMemoryEventSink",
    "JSONLEventLog",
]
