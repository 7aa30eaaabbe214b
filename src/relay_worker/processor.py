# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-message delivery: guard, validate, dispatch, record, acknowledge.

For every stream entry :meth:`MessageProcessor.handle_message`:

1. fetches the message with its resolved provider association;
2. in one transaction, re-reads the status and returns early when the
   message is already ``sent`` or ``delivered``, marks structurally
   incomplete messages ``malformed``, otherwise moves it to ``processing``;
3. calls the provider adapter for the message channel outside any
   transaction;
4. records ``sent`` or ``failed`` with the matching event in a second
   transaction;
5. whatever happened, acknowledges the stream entry.

An exception anywhere in steps 1-4 marks the message ``failed`` in a fresh
transaction, so no message stays in ``processing`` after a crash.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import MessageStoreError, StoreError, describe_exception
from .logger import get_logger
from .models import TERMINAL_SUCCESS, MessageDetails, MessageStatus
from .prometheus import WorkerMetrics
from .providers.base import SendOutcome
from .providers.registry import ProviderRegistry
from .result import Err, Ok, Result

MISSING_ASSOCIATION = "Missing project provider association for message."
MISSING_CREDENTIAL = "Missing provider credential on project provider association."
MISSING_CONFIG = "Missing config on project provider association."
MISSING_CONTENT = "Missing payload or recipient for message."
SEND_FAILED_WITHOUT_DETAILS = "Provider send failed without details"


def validate_structure(details: MessageDetails) -> str | None:
    """Return the reason a message cannot be dispatched, or None when complete."""
    association = details.association
    if association is None:
        return MISSING_ASSOCIATION
    if association.provider_credential is None:
        return MISSING_CREDENTIAL
    if association.config is None:
        return MISSING_CONFIG
    if not details.payload or not details.recipient:
        return MISSING_CONTENT
    return None


@dataclass
class DispatchResult:
    """Outcome of the provider call as recorded on the message."""

    success: bool
    provider_details: dict[str, Any] | None = None
    reason: str | None = None
    provider_error: dict[str, Any] | None = None


class MessageProcessor:
    """Delivers one message per call and always acknowledges its stream entry."""

    def __init__(
        self,
        store,
        registry: ProviderRegistry,
        queue,
        *,
        metrics: WorkerMetrics | None = None,
        logger=None,
    ):
        self.store = store
        self.registry = registry
        self.queue = queue
        self.metrics = metrics or WorkerMetrics()
        self.logger = logger or get_logger("relay_worker.processor")

    async def handle_message(self, message_id: str, stream_id: str, group: str) -> None:
        details: MessageDetails | None = None
        self.metrics.inflight.inc()
        try:
            match await self.store.fetch_message_details(message_id):
                case Err(error):
                    self.logger.error(
                        "Could not load message %s (entry %s): %s", message_id, stream_id, error
                    )
                    self.metrics.inc_message("missing")
                    return
                case Ok(found):
                    details = found
            outcome = await self._process(details)
            self.metrics.inc_message(outcome)
        except Exception as exc:
            self.logger.exception("Unexpected error processing message %s (entry %s): %s", message_id, stream_id, exc)
            self.metrics.inc_message("error")
            if details is not None:
                await self._mark_failed_after_error(message_id, exc)
        finally:
            await self._acknowledge(message_id, stream_id, group)
            self.metrics.inflight.dec()

    # ------------------------------------------------------------ internals
    @staticmethod
    def _unwrap(result: Result[Any, StoreError]) -> Any:
        match result:
            case Ok(value):
                return value
            case Err(error):
                raise MessageStoreError(error)

    async def _process(self, details: MessageDetails) -> str:
        message_id = details.id
        async with self.store.transaction() as tx:
            status = self._unwrap(await self.store.get_message_status(tx, message_id))
            if status in TERMINAL_SUCCESS:
                self.logger.info("Message %s already %s, skipping", message_id, status.value)
                return "skipped"

            reason = validate_structure(details)
            if reason is not None:
                self._unwrap(await self.store.update_message_status(tx, message_id, MessageStatus.MALFORMED, reason))
                self._unwrap(
                    await self.store.log_message_event(tx, message_id, MessageStatus.MALFORMED, {"reason": reason})
                )
                self.logger.warning("Message %s is malformed: %s", message_id, reason)
                return MessageStatus.MALFORMED.value

            self._unwrap(await self.store.update_message_status(tx, message_id, MessageStatus.PROCESSING))
            self._unwrap(await self.store.log_message_event(tx, message_id, MessageStatus.PROCESSING))

        result = await self._dispatch(details)

        async with self.store.transaction() as tx:
            if result.success:
                self._unwrap(await self.store.update_message_status(tx, message_id, MessageStatus.SENT))
                self._unwrap(
                    await self.store.log_message_event(
                        tx, message_id, MessageStatus.SENT, {"providerDetails": result.provider_details}
                    )
                )
            else:
                self._unwrap(
                    await self.store.update_message_status(tx, message_id, MessageStatus.FAILED, result.reason)
                )
                self._unwrap(
                    await self.store.log_message_event(
                        tx,
                        message_id,
                        MessageStatus.FAILED,
                        {
                            "reason": result.reason,
                            "providerDetails": result.provider_details,
                            "providerError": result.provider_error,
                        },
                    )
                )

        if result.success:
            self.logger.info("Message %s sent via %s: %s", message_id, details.channel, result.provider_details)
            return MessageStatus.SENT.value
        self.logger.warning("Message %s failed: %s", message_id, result.reason)
        return MessageStatus.FAILED.value

    async def _dispatch(self, details: MessageDetails) -> DispatchResult:
        adapter = self.registry.get(details.channel)
        if adapter is None:
            return DispatchResult(
                success=False,
                reason=f"No provider adapter registered for channel '{details.channel}'",
            )
        association = details.association
        match await adapter.send(
            association.provider_credential.credentials,
            details.payload,
            association.config,
            details.recipient,
        ):
            case Ok(SendOutcome(success=True, details=provider_details)):
                return DispatchResult(success=True, provider_details=provider_details)
            case Ok(SendOutcome(details=provider_details)):
                reason = json.dumps(provider_details, default=str) if provider_details else SEND_FAILED_WITHOUT_DETAILS
                return DispatchResult(success=False, provider_details=provider_details, reason=reason)
            case Err(error):
                return DispatchResult(
                    success=False,
                    provider_details=error.details,
                    reason=error.message or SEND_FAILED_WITHOUT_DETAILS,
                    provider_error=error.to_dict(),
                )

    async def _mark_failed_after_error(self, message_id: str, exc: Exception) -> None:
        reason = str(exc) or type(exc).__name__
        try:
            async with self.store.transaction() as tx:
                self._unwrap(await self.store.update_message_status(tx, message_id, MessageStatus.FAILED, reason))
                self._unwrap(
                    await self.store.log_message_event(
                        tx,
                        message_id,
                        MessageStatus.FAILED,
                        {"error": reason, "errorType": type(exc).__name__, "exception": describe_exception(exc)},
                    )
                )
        except Exception as nested:
            self.logger.critical(
                "Could not mark message %s as failed after error %r: %s", message_id, exc, nested
            )

    async def _acknowledge(self, message_id: str, stream_id: str, group: str) -> None:
        try:
            result = await self.queue.acknowledge(stream_id, group)
        except Exception as exc:
            result = Err(exc)
        match result:
            case Ok(_):
                self.metrics.inc_ack()
            case Err(error):
                self.metrics.inc_ack_failure()
                self.logger.critical(
                    "Failed to acknowledge entry %s (message %s) in group %s: %s",
                    stream_id,
                    message_id,
                    group,
                    error,
                )
