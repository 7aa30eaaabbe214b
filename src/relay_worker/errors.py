# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error values and exception types used across the worker.

``StoreError`` and ``ProviderError`` are plain values carried inside
:class:`relay_worker.result.Err`. The exception classes are raised only when
the process cannot continue (startup) or when a store failure must abort the
current message attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def describe_exception(exc: BaseException | None) -> dict[str, Any] | None:
    """Return a JSON-safe summary of ``exc`` for event details and logs."""
    if exc is None:
        return None
    summary: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error") or {}
        metadata = response.get("ResponseMetadata") or {}
        if error.get("Code"):
            summary["code"] = error["Code"]
        if metadata.get("HTTPStatusCode"):
            summary["httpStatus"] = metadata["HTTPStatusCode"]
        if metadata.get("RequestId"):
            summary["requestId"] = metadata["RequestId"]
    return summary


@dataclass
class StoreError:
    """A database read or write that did not complete."""

    message: str
    cause: BaseException | None = None

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


@dataclass
class ProviderError:
    """A provider adapter refusal or vendor failure.

    Attributes:
        message: Human-readable reason, stored as the message status reason.
        code: Short machine-readable classification (``invalid_credentials``,
            ``send_failed``...).
        retryable: Whether the last underlying error was transient.
        cause: The last underlying exception, if any.
        details: Extra vendor context (attempt count, vendor error code).
    """

    message: str
    code: str = "provider_error"
    retryable: bool = False
    cause: BaseException | None = None
    details: dict[str, Any] | None = field(default=None)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "cause": describe_exception(self.cause),
        }


class WorkerStartupError(RuntimeError):
    """Raised when the queue backend or the consumer group cannot be prepared."""

    def __init__(self, message: str = "Worker startup failed"):
        super().__init__(message)
        self.code = "startup_failed"


class MessageStoreError(RuntimeError):
    """Raised when a store operation fails inside a message transaction."""

    def __init__(self, error: StoreError):
        super().__init__(str(error))
        self.error = error
        self.code = "store_error"
