# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Email delivery through Amazon SES (``SendEmail``)."""

from __future__ import annotations

from email.utils import formataddr
from typing import Any

from pydantic import ValidationError

from ..errors import ProviderError
from ..models import EmailPayload, SesConfig
from ..result import Ok, Result
from .aws import AwsProviderAdapter, validation_summary

CHARSET = "UTF-8"


class SesAdapter(AwsProviderAdapter):
    """Sends the ``email`` channel with SES ``SendEmail``."""

    channel = "email"
    service_name = "ses"
    vendor = "SES"

    def validate_config(self, config: dict[str, Any]) -> Result[SesConfig, ProviderError]:
        try:
            return Ok(SesConfig.model_validate(config or {}))
        except ValidationError as exc:
            return self._invalid(f"Invalid SES configuration: {validation_summary(exc)}", "invalid_config", exc)

    def build_request(
        self, payload: dict[str, Any], ses_config: SesConfig, recipient: str
    ) -> Result[dict[str, Any], ProviderError]:
        if not (payload or {}).get("subject"):
            return self._invalid("Subject is required for SES", "invalid_payload")
        try:
            email = EmailPayload.model_validate(payload)
        except ValidationError as exc:
            return self._invalid(f"Invalid email payload: {validation_summary(exc)}", "invalid_payload", exc)

        source = ses_config.sender_email
        if ses_config.sender_name:
            source = formataddr((ses_config.sender_name, ses_config.sender_email))

        params: dict[str, Any] = {
            "Source": source,
            "Destination": {"ToAddresses": [recipient]},
            "Message": {
                "Subject": {"Data": email.subject, "Charset": CHARSET},
                "Body": {part: {"Data": data, "Charset": CHARSET} for part, data in email.parts().items()},
            },
        }
        if ses_config.reply_to:
            params["ReplyToAddresses"] = list(ses_config.reply_to)
        if ses_config.configuration_set:
            params["ConfigurationSetName"] = ses_config.configuration_set
        return Ok(params)

    async def call(self, client: Any, params: dict[str, Any]) -> dict[str, Any]:
        return await client.send_email(**params)
