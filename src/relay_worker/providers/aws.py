# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared flow for adapters backed by an AWS service through aioboto3.

Subclasses declare the service name and implement three hooks:

- ``validate_config``: parse the association config into the vendor model
- ``build_request``: validate the payload, return the API parameters
- ``call``: invoke the client method and return the vendor response

The base class checks the stored credential and config shapes, decrypts the
credential, validates the decrypted document, builds the request, then runs
``call`` under the retry policy with one client per send.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable
from typing import Any

import aioboto3
from pydantic import ValidationError

from ..crypto import decrypt_record
from ..errors import ProviderError, describe_exception
from ..logger import get_logger
from ..models import AwsCredentials, has_aws_credential_shape
from ..result import Err, Ok, Result
from ..retry import RetryPolicy
from .base import ProviderAdapter, SendOutcome


def validation_summary(exc: ValidationError) -> str:
    """Flatten pydantic errors into ``field: message`` pairs."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "value"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class AwsProviderAdapter(ProviderAdapter):
    """Base adapter for SES and SNS."""

    service_name: str = ""
    vendor: str = "AWS"

    def __init__(
        self,
        *,
        encryption_key: bytes,
        retry: RetryPolicy | None = None,
        session_factory: Callable[[], Any] = aioboto3.Session,
        metrics=None,
        logger=None,
    ):
        self.encryption_key = encryption_key
        self.retry = retry or RetryPolicy()
        self.session_factory = session_factory
        self.metrics = metrics
        self.logger = logger or get_logger(f"relay_worker.providers.{self.service_name}")

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> Result[Any, ProviderError]:
        ...

    @abstractmethod
    def build_request(
        self, payload: dict[str, Any], config: Any, recipient: str
    ) -> Result[dict[str, Any], ProviderError]:
        ...

    @abstractmethod
    async def call(self, client: Any, params: dict[str, Any]) -> dict[str, Any]:
        ...

    def _invalid(self, message: str, code: str, cause: BaseException | None = None) -> Err[ProviderError]:
        self.logger.warning("%s rejected message before sending: %s", self.vendor, message)
        return Err(ProviderError(message=message, code=code, retryable=False, cause=cause))

    def _count_attempt(self, attempt: int) -> None:
        if self.metrics is not None:
            self.metrics.inc_provider_attempt(self.channel)

    async def send(
        self,
        credentials: dict[str, Any],
        payload: dict[str, Any],
        config: dict[str, Any],
        recipient: str,
    ) -> Result[SendOutcome, ProviderError]:
        if not has_aws_credential_shape(credentials):
            return self._invalid(f"Invalid credentials structure for {self.vendor}", "invalid_credentials")

        match self.validate_config(config):
            case Err() as refused:
                return refused
            case Ok(vendor_config):
                pass

        match decrypt_record(credentials, self.encryption_key):
            case Err(error):
                return self._invalid(
                    f"Failed to decrypt {self.vendor} credentials: {error}", "decryption_failed", error
                )
            case Ok(decrypted):
                pass

        try:
            aws = AwsCredentials.model_validate(decrypted)
        except ValidationError as exc:
            return self._invalid(
                f"Invalid {self.vendor} credentials: {validation_summary(exc)}", "invalid_credentials", exc
            )

        match self.build_request(payload, vendor_config, recipient):
            case Err() as refused:
                return refused
            case Ok(params):
                pass

        session = self.session_factory()
        async with session.client(
            self.service_name,
            region_name=aws.region,
            aws_access_key_id=aws.access_key_id,
            aws_secret_access_key=aws.secret_access_key,
        ) as client:
            result = await self.retry.run(
                lambda: self.call(client, params),
                label=f"{self.vendor} send to {recipient}",
                on_attempt=self._count_attempt,
            )

        match result:
            case Ok(response):
                return Ok(SendOutcome(success=True, details=self.describe_response(response)))
            case Err(failure):
                return Err(
                    ProviderError(
                        message=(
                            f"Failed to send {self.channel} via {self.vendor} after "
                            f"{failure.attempts} attempt(s): {failure.error}"
                        ),
                        code="send_failed",
                        retryable=failure.retryable,
                        cause=failure.error,
                        details={"attempts": failure.attempts, "lastError": describe_exception(failure.error)},
                    )
                )

    def describe_response(self, response: dict[str, Any]) -> dict[str, Any]:
        details: dict[str, Any] = {"messageId": response.get("MessageId")}
        request_id = (response.get("ResponseMetadata") or {}).get("RequestId")
        if request_id:
            details["requestId"] = request_id
        return details
