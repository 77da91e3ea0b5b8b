"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Counter metrics for gate, queue and job instrumentation.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class CoordinationMetrics(Protocol):
    """Minimal metrics interface used by coordination components."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""


class NoOpCoordinationMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags


class InMemoryCoordinationMetrics:
    """Metrics sink that keeps running totals in process memory."""

    def __init__(self) -> None:
        self._totals: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        key = (name, tuple(sorted((tags or {}).items())))
        self._totals[key] = self._totals.get(key, 0) + int(value)

    def total(self, name: str) -> int:
        """Sum of all increments for `name` across every tag combination."""
        return sum(v for (metric, _), v in self._totals.items() if metric == name)


class PrometheusCoordinationMetrics:
    """
    Prometheus-backed metrics adapter.

    Requires `prometheus_client` package.
    """

    def __init__(self, *, namespace: str = "courier", registry: Any | None = None) -> None:
        try:
            from prometheus_client import REGISTRY, Counter
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusCoordinationMetrics requires `prometheus_client` to be installed."
            ) from exc

        self._Counter = Counter
        self._namespace = namespace
        self._registry = registry if registry is not None else REGISTRY
        self._counters: dict[str, Any] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        label_names = tuple(sorted((tags or {}).keys()))
        metric_name = name.removeprefix(f"{self._namespace}_")
        key = f"{metric_name}|{','.join(label_names)}"
        counter = self._counters.get(key)
        if counter is None:
            counter = self._Counter(
                name=metric_name,
                documentation=f"Courier coordination metric {metric_name}",
                namespace=self._namespace,
                labelnames=label_names,
                registry=self._registry,
            )
            self._counters[key] = counter

        if label_names:
            label_values = [str((tags or {})[label]) for label in label_names]
            counter.labels(*label_values).inc(value)
        else:
            counter.inc(value)
