# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMS delivery through Amazon SNS (``Publish`` to a phone number)."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ..errors import ProviderError
from ..models import SmsPayload, SnsConfig
from ..result import Ok, Result
from .aws import AwsProviderAdapter, validation_summary


class SnsAdapter(AwsProviderAdapter):
    """Sends the ``sms`` channel with SNS ``Publish``."""

    channel = "sms"
    service_name = "sns"
    vendor = "SNS"

    def validate_config(self, config: dict[str, Any]) -> Result[SnsConfig, ProviderError]:
        try:
            return Ok(SnsConfig.model_validate(config or {}))
        except ValidationError as exc:
            return self._invalid(f"Invalid SNS configuration: {validation_summary(exc)}", "invalid_config", exc)

    def build_request(
        self, payload: dict[str, Any], sns_config: SnsConfig, recipient: str
    ) -> Result[dict[str, Any], ProviderError]:
        try:
            sms = SmsPayload.model_validate(payload or {})
        except ValidationError as exc:
            return self._invalid(f"Invalid SMS payload: {validation_summary(exc)}", "invalid_payload", exc)

        attributes: dict[str, Any] = {}
        if sns_config.sender_name:
            attributes["AWS.SNS.SMS.SenderID"] = {"DataType": "String", "StringValue": sns_config.sender_name}
        sms_type = sms.sms_type or sns_config.sms_type
        if sms_type:
            attributes["AWS.SNS.SMS.SMSType"] = {"DataType": "String", "StringValue": sms_type}

        params: dict[str, Any] = {"PhoneNumber": recipient, "Message": sms.content}
        if attributes:
            params["MessageAttributes"] = attributes
        return Ok(params)

    async def call(self, client: Any, params: dict[str, Any]) -> dict[str, Any]:
        return await client.publish(**params)
