from __future__ import annotations

import socket
import statistics

import pytest

from courier.runtime import (
    PeerResponseError,
    WaitResponse,
    calculate_backoff_ms,
    classify_a2a_error,
)


def test_connection_refused_message_is_transient_gateway_connection():
    info = classify_a2a_error(RuntimeError("connect ECONNREFUSED 127.0.0.1:1"))
    assert info.category == "transient"
    assert info.code == "gateway_connection"
    assert info.retriable is True


@pytest.mark.parametrize(
    "error",
    [
        TimeoutError(),
        ConnectionResetError("peer reset"),
        socket.gaierror("lookup failed"),
        RuntimeError("socket hang up"),
        RuntimeError("fetch failed"),
        RuntimeError("getaddrinfo ENOTFOUND gateway.local"),
    ],
)
def test_transport_failures_classified_as_gateway_connection(error):
    info = classify_a2a_error(error)
    assert info.code == "gateway_connection"
    assert info.retriable is True


@pytest.mark.parametrize("message", ["401 Unauthorized", "Forbidden", "HTTP 403"])
def test_auth_failures_are_permanent(message):
    info = classify_a2a_error(RuntimeError(message))
    assert info.category == "permanent"
    assert info.code == "auth_failure"
    assert info.retriable is False


def test_other_transport_failure_is_unknown_but_retriable():
    info = classify_a2a_error(RuntimeError("something odd happened"))
    assert info.category == "unknown"
    assert info.code == "gateway_unknown"
    assert info.retriable is True


def test_ok_response_is_not_an_error():
    info = classify_a2a_error(WaitResponse(status="ok"))
    assert info.code == "ok"
    assert info.retriable is False


def test_not_found_response_is_permanent():
    info = classify_a2a_error({"status": "not_found"})
    assert info.category == "permanent"
    assert info.code == "run_not_found"
    assert info.retriable is False


def test_timeout_response_means_peer_still_working():
    info = classify_a2a_error({"status": "timeout"})
    assert info.category == "transient"
    assert info.code == "wait_chunk_timeout"
    assert info.retriable is True


@pytest.mark.parametrize(
    ("error", "category", "code"),
    [
        ("429 too many requests", "transient", "rate_limit"),
        ("Rate limit reached", "transient", "rate_limit"),
        ("maximum context length exceeded", "permanent", "context_exceeded"),
        ("upstream overloaded", "transient", "server_overload"),
        ("HTTP 503 from upstream", "transient", "server_overload"),
        ("invalid session key", "permanent", "request_rejected"),
        ("access denied", "permanent", "request_rejected"),
        ("the model said no", "unknown", "error_unknown"),
    ],
)
def test_error_responses_are_sub_classified(error, category, code):
    info = classify_a2a_error(WaitResponse(status="error", error=error))
    assert info.category == category
    assert info.code == code


def test_unexpected_status_is_unknown():
    info = classify_a2a_error({"status": "weird"})
    assert info.category == "unknown"
    assert info.code == "unexpected_status"
    assert info.retriable is True


def test_peer_response_error_classified_by_its_response():
    error = PeerResponseError(WaitResponse(status="error", error="429 slow down"))
    info = classify_a2a_error(error)
    assert info.code == "rate_limit"
    assert str(error) == "429 slow down"


def test_backoff_first_attempt_within_default_window():
    for _ in range(200):
        delay = calculate_backoff_ms(0)
        assert 1000 <= delay <= 2000


def test_backoff_grows_with_attempts():
    first = statistics.mean(calculate_backoff_ms(0) for _ in range(500))
    fourth = statistics.mean(calculate_backoff_ms(3) for _ in range(500))
    assert fourth > 3 * first


def test_backoff_never_exceeds_max():
    for attempt in (20, 100, 10_000):
        assert calculate_backoff_ms(attempt) <= 60_000


def test_backoff_jitter_bounds_are_deterministic_with_injected_rng():
    assert calculate_backoff_ms(2, base_ms=100, max_ms=10_000, rng=lambda: 0.0) == 200
    assert calculate_backoff_ms(2, base_ms=100, max_ms=10_000, rng=lambda: 1.0) == 400
    assert calculate_backoff_ms(-3, base_ms=100, rng=lambda: 1.0) == 100
