# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-process retry with exponential backoff for vendor calls.

The delay before retry number ``n`` (counting the first attempt as 1) is
``base_delay_ms * 2 ** (failed_attempt - 1)``: with the defaults the worker
waits 1s after the first failure and 2s after the second, then gives up.

Only transient errors are retried: AWS throttling and service-unavailable
codes, HTTP 5xx responses, and connection-level failures. Everything else
aborts immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .logger import get_logger
from .result import Err, Ok, Result

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000

TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalFailure",
        "InternalError",
    }
)


def classify_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is worth retrying."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error") or {}
        if error.get("Code") in TRANSIENT_ERROR_CODES:
            return True
        status = (exc.response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
        return isinstance(status, int) and status >= 500
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    status = getattr(exc, "http_status", None) or getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


@dataclass
class RetryFailure:
    """Last error of an operation that never succeeded."""

    error: Exception
    attempts: int
    retryable: bool


class RetryPolicy:
    """Run an async operation up to ``max_attempts`` times.

    Args:
        max_attempts: Total attempts, first one included. At least 1.
        base_delay_ms: Delay before the first retry.
        classify: Predicate deciding whether an error is transient.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        *,
        classify: Callable[[BaseException], bool] = classify_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None,
    ):
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_ms = max(0, int(base_delay_ms))
        self.classify = classify
        self._sleep = sleep
        self.logger = logger or get_logger("relay_worker.retry")

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        return self.base_delay_ms * (2 ** (max(1, attempt) - 1)) / 1000.0

    def should_retry(self, attempt: int, exc: BaseException) -> bool:
        return attempt < self.max_attempts and self.classify(exc)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        on_attempt: Callable[[int], None] | None = None,
    ) -> Result[T, RetryFailure]:
        """Call ``operation`` until it succeeds, fails permanently or attempts run out."""
        attempt = 0
        while True:
            attempt += 1
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                return Ok(await operation())
            except Exception as exc:
                if not self.should_retry(attempt, exc):
                    transient = self.classify(exc)
                    if transient:
                        self.logger.error("%s failed after %s attempt(s): %s", label, attempt, exc)
                    else:
                        self.logger.error("%s failed with non-retryable error: %s", label, exc)
                    return Err(RetryFailure(error=exc, attempts=attempt, retryable=transient))
                delay = self.calculate_delay(attempt)
                self.logger.warning(
                    "%s attempt %s/%s failed: %s - retrying in %.3fs",
                    label,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)
