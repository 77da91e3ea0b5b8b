"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

A2A error classification and jittered exponential backoff.

Two failure shapes are classified:

- transport failures raised while talking to a peer (any ``BaseException``),
- application-level wait responses shaped like ``{"status": ..., "error": ...}``.
"""

from __future__ import annotations

import asyncio
import math
import random
import re
import socket
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

A2AErrorCategory = Literal["transient", "permanent", "unknown"]

DEFAULT_BACKOFF_BASE_MS = 2_000
DEFAULT_BACKOFF_MAX_MS = 60_000

_TRANSPORT_TRANSIENT = re.compile(
    r"timeout|timed out|econnreset|connection reset|socket hang up|"
    r"econnrefused|connection refused|dns|getaddrinfo|name or service not known|"
    r"fetch failed",
    re.IGNORECASE,
)
_TRANSPORT_AUTH = re.compile(r"unauthorized|forbidden|\b401\b|\b403\b", re.IGNORECASE)

_RATE_LIMIT = re.compile(r"rate.?limit|429|too many requests", re.IGNORECASE)
_CONTEXT_EXCEEDED = re.compile(
    r"context.?length|token.?limit|too.?long|maximum.?context|context.?exceeded",
    re.IGNORECASE,
)
_OVERLOAD = re.compile(
    r"overload|529|capacity|server.?error|\b5\d\d\b", re.IGNORECASE
)
_REJECTED = re.compile(r"not.?found|invalid|denied|forbidden", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class A2AErrorInfo:
    """Classification verdict for one failure."""

    category: A2AErrorCategory
    code: str
    reason: str
    retriable: bool


@dataclass(frozen=True, slots=True)
class WaitResponse:
    """Application-level response returned by a peer wait call."""

    status: str
    error: str | None = None


class PeerResponseError(Exception):
    """Raised when a peer answered with a non-ok wait response."""

    def __init__(self, response: WaitResponse) -> None:
        self.response = response
        super().__init__(response.error or f"peer responded with status {response.status}")


def _transport_info(error: BaseException) -> A2AErrorInfo:
    message = str(error) or type(error).__name__
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, socket.timeout)):
        return A2AErrorInfo("transient", "gateway_connection", message, True)
    if isinstance(error, (ConnectionResetError, ConnectionRefusedError, socket.gaierror)):
        return A2AErrorInfo("transient", "gateway_connection", message, True)
    if _TRANSPORT_TRANSIENT.search(message):
        return A2AErrorInfo("transient", "gateway_connection", message, True)
    if isinstance(error, PermissionError) or _TRANSPORT_AUTH.search(message):
        return A2AErrorInfo("permanent", "auth_failure", message, False)
    return A2AErrorInfo("unknown", "gateway_unknown", message, True)


def _error_status_info(error_text: str | None) -> A2AErrorInfo:
    text = error_text or ""
    if _RATE_LIMIT.search(text):
        return A2AErrorInfo("transient", "rate_limit", text or "rate limit", True)
    if _CONTEXT_EXCEEDED.search(text):
        return A2AErrorInfo(
            "permanent", "context_exceeded", text or "context exceeded", False
        )
    if _OVERLOAD.search(text):
        return A2AErrorInfo("transient", "server_overload", text or "server overload", True)
    if _REJECTED.search(text):
        return A2AErrorInfo(
            "permanent", "request_rejected", text or "request rejected", False
        )
    return A2AErrorInfo("unknown", "error_unknown", text or "unknown error", True)


def _coerce_response(value: Any) -> tuple[str | None, str | None]:
    if isinstance(value, Mapping):
        status = value.get("status")
        error = value.get("error")
    else:
        status = getattr(value, "status", None)
        error = getattr(value, "error", None)
    return (
        None if status is None else str(status),
        None if error is None else str(error),
    )


def classify_a2a_error(
    failure: BaseException | WaitResponse | Mapping[str, Any],
) -> A2AErrorInfo:
    """
    Classify a transport exception or a wait response.

    Rules are evaluated in order, with case-insensitive pattern matching on the
    failure message. Every verdict carries ``category``, ``code``, ``reason``
    and ``retriable``.
    """
    if isinstance(failure, PeerResponseError):
        failure = failure.response
    if isinstance(failure, BaseException):
        return _transport_info(failure)

    status, error = _coerce_response(failure)
    if status == "ok":
        return A2AErrorInfo("transient", "ok", "not an error", False)
    if status == "not_found":
        return A2AErrorInfo(
            "permanent", "run_not_found", error or "run id not found on peer", False
        )
    if status == "timeout":
        return A2AErrorInfo(
            "transient",
            "wait_chunk_timeout",
            "wait chunk timed out (peer still working)",
            True,
        )
    if status == "error":
        return _error_status_info(error)
    return A2AErrorInfo("unknown", "unexpected_status", f"unexpected status: {status}", True)


def calculate_backoff_ms(
    attempt: int,
    *,
    base_ms: int = DEFAULT_BACKOFF_BASE_MS,
    max_ms: int = DEFAULT_BACKOFF_MAX_MS,
    rng: Callable[[], float] = random.random,
) -> int:
    """
    Exponential backoff with decorrelated jitter.

    ``min(max_ms, base_ms * 2**attempt) * uniform(0.5, 1.0)``, floored to whole
    milliseconds. Each call draws fresh jitter.
    """
    attempt = max(0, int(attempt))
    # 2**attempt overflows float conversion for very large attempts.
    exponent = min(attempt, 62)
    exponential = min(float(max_ms), float(base_ms) * math.pow(2, exponent))
    return int(math.floor(exponential * (0.5 + rng() * 0.5)))
