"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Runtime primitives: error classification, backoff, retry and concurrency gate.
"""

from .classification import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_MAX_MS,
    A2AErrorCategory,
    A2AErrorInfo,
    PeerResponseError,
    WaitResponse,
    calculate_backoff_ms,
    classify_a2a_error,
)
from .gate import ConcurrencyGate, GatePolicy
from .retry import RetryExhaustedError, RetryPolicy, call_with_retry

__all__ = [
    "A2AErrorCategory",
    "A2AErrorInfo",
    "PeerResponseError",
    "WaitResponse",
    "classify_a2a_error",
    "calculate_backoff_ms",
    "DEFAULT_BACKOFF_BASE_MS",
    "DEFAULT_BACKOFF_MAX_MS",
    "ConcurrencyGate",
    "GatePolicy",
    "RetryPolicy",
    "RetryExhaustedError",
    "call_with_retry",
]
