"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Bounded retry loop driven by A2A error classification.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .classification import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_MAX_MS,
    A2AErrorInfo,
    calculate_backoff_ms,
    classify_a2a_error,
)

T = TypeVar("T")

logger = logging.getLogger("courier.runtime.retry")

RetryCallback = Callable[[int, A2AErrorInfo, int], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry budget and backoff curve for one call site."""

    max_retries: int = 2
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS


class RetryExhaustedError(Exception):
    """Raised when a call fails with a verdict that stops the retry loop."""

    def __init__(self, info: A2AErrorInfo, *, attempts: int) -> None:
        self.info = info
        self.attempts = attempts
        super().__init__(info.reason)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: RetryCallback | None = None,
) -> T:
    """
    Execute `fn` with classifier-driven retries.

    Non-retriable verdicts stop immediately; retriable ones are retried up to
    `policy.max_retries` times after a jittered backoff. The final failure is
    raised as `RetryExhaustedError` chained to the original exception.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            info = classify_a2a_error(error)
            if not info.retriable or attempt >= policy.max_retries:
                raise RetryExhaustedError(info, attempts=attempt + 1) from error
            delay_ms = calculate_backoff_ms(
                attempt,
                base_ms=policy.backoff_base_ms,
                max_ms=policy.backoff_max_ms,
            )
            logger.info(
                "Retrying after %s/%s failure in %dms (attempt %d/%d)",
                info.category,
                info.code,
                delay_ms,
                attempt + 1,
                policy.max_retries,
            )
            if on_retry is not None:
                maybe = on_retry(attempt, info, delay_ms)
                if maybe is not None:
                    await maybe
            await sleep(delay_ms / 1000.0)
            attempt += 1
