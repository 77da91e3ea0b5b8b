"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Coordination engine settings and environment loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .jobs.types import DEFAULT_FINISHED_TTL_MS, DEFAULT_STALE_THRESHOLD_MS
from .queues.types import (
    DEFAULT_CAP,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_DROP_POLICY,
    DEFAULT_MAX_AGE_MS,
    DropPolicy,
    QueueMode,
    QueueSettings,
)
from .runtime.classification import DEFAULT_BACKOFF_BASE_MS, DEFAULT_BACKOFF_MAX_MS
from .runtime.gate import GatePolicy
from .runtime.retry import RetryPolicy

JOBS_DIRNAME = "a2a-jobs"
DELEGATIONS_DIRNAME = "delegations"

_METRICS_BACKENDS = ("noop", "memory", "prometheus")


def _env_first(*names: str, default: str | None = None) -> str | None:
    """
    Return the first non-empty environment variable in `names`.

    Args:
        *names: Environment variable names to check in order.
        default: Value returned if no non-empty variable is found.
    """
    for name in names:
        raw = os.getenv(name)
        if raw is None:
            continue
        value = raw.strip()
        if value:
            return value
    return default


def _env_int(name: str, default: int) -> int:
    raw = _env_first(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env_first(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (_env_first(name) or default).lower().replace("-", "_")
    if raw not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {raw!r}")
    return raw


@dataclass(frozen=True, slots=True)
class CourierSettings:
    """Explicit settings for one coordination runtime."""

    state_dir: Path = Path("~/.courier").expanduser()

    max_concurrent_flows: int = 3
    queue_timeout_s: float = 30.0

    stale_job_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS
    finished_job_ttl_ms: int = DEFAULT_FINISHED_TTL_MS

    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS
    max_turn_retries: int = 2

    queue_mode: QueueMode = "collect"
    queue_debounce_ms: int = DEFAULT_DEBOUNCE_MS
    queue_cap: int = DEFAULT_CAP
    queue_drop_policy: DropPolicy = DEFAULT_DROP_POLICY
    queue_max_age_ms: int = DEFAULT_MAX_AGE_MS

    event_log_path: Path | None = None
    metrics_backend: str = "noop"

    @staticmethod
    def from_env() -> "CourierSettings":
        """Load settings from `COURIER_*` environment variables."""
        state_dir = Path(_env_first("COURIER_STATE_DIR", default="~/.courier") or "~/.courier")
        event_log = _env_first("COURIER_EVENT_LOG_PATH")
        return CourierSettings(
            state_dir=state_dir.expanduser(),
            max_concurrent_flows=max(1, _env_int("COURIER_A2A_MAX_CONCURRENT_FLOWS", 3)),
            queue_timeout_s=max(0.0, _env_float("COURIER_A2A_QUEUE_TIMEOUT_S", 30.0)),
            stale_job_threshold_ms=_env_int(
                "COURIER_STALE_JOB_THRESHOLD_MS", DEFAULT_STALE_THRESHOLD_MS
            ),
            finished_job_ttl_ms=_env_int("COURIER_FINISHED_JOB_TTL_MS", DEFAULT_FINISHED_TTL_MS),
            backoff_base_ms=_env_int("COURIER_BACKOFF_BASE_MS", DEFAULT_BACKOFF_BASE_MS),
            backoff_max_ms=_env_int("COURIER_BACKOFF_MAX_MS", DEFAULT_BACKOFF_MAX_MS),
            max_turn_retries=max(0, _env_int("COURIER_MAX_TURN_RETRIES", 2)),
            queue_mode=_env_choice(  # type: ignore[arg-type]
                "COURIER_QUEUE_MODE", "collect", ("individual", "collect")
            ),
            queue_debounce_ms=max(0, _env_int("COURIER_QUEUE_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS)),
            queue_cap=max(1, _env_int("COURIER_QUEUE_CAP", DEFAULT_CAP)),
            queue_drop_policy=_env_choice(  # type: ignore[arg-type]
                "COURIER_QUEUE_DROP_POLICY",
                DEFAULT_DROP_POLICY,
                ("drop_new", "drop_old", "summarize"),
            ),
            queue_max_age_ms=max(0, _env_int("COURIER_QUEUE_MAX_AGE_MS", DEFAULT_MAX_AGE_MS)),
            event_log_path=Path(event_log).expanduser() if event_log else None,
            metrics_backend=_env_choice("COURIER_METRICS_BACKEND", "noop", _METRICS_BACKENDS),
        )

    @property
    def jobs_dir(self) -> Path:
        return self.state_dir / JOBS_DIRNAME

    @property
    def delegations_dir(self) -> Path:
        return self.state_dir / DELEGATIONS_DIRNAME

    def gate_policy(self) -> GatePolicy:
        return GatePolicy(
            max_concurrent_flows=max(1, self.max_concurrent_flows),
            queue_timeout_s=max(0.0, self.queue_timeout_s),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_turn_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_max_ms=self.backoff_max_ms,
        )

    def queue_settings(self) -> QueueSettings:
        return QueueSettings(
            mode=self.queue_mode,
            debounce_ms=self.queue_debounce_ms,
            cap=self.queue_cap,
            drop_policy=self.queue_drop_policy,
            max_age_ms=self.queue_max_age_ms,
        )
