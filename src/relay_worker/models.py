# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for messages, provider associations and vendor settings.

Models:
    - MessageStatus: lifecycle states of a message
    - ProviderCredential / ProjectProviderAssociation: resolved delivery route
    - MessageDetails: a message joined with its resolved association
    - AwsCredentials: decrypted AWS credential document
    - SesConfig / SnsConfig: per-project vendor configuration
    - EmailPayload / SmsPayload: channel payloads
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AWS_REGIONS = (
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "ca-central-1",
    "ca-west-1",
    "mx-central-1",
    "eu-west-1",
    "eu-central-1",
    "eu-central-2",
    "eu-west-2",
    "eu-west-3",
    "eu-north-1",
    "eu-south-1",
    "eu-south-2",
    "ap-east-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-northeast-3",
    "ap-south-1",
    "ap-south-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-southeast-3",
    "ap-southeast-4",
    "ap-southeast-5",
    "ap-southeast-7",
    "il-central-1",
    "me-central-1",
    "me-south-1",
    "af-south-1",
    "sa-east-1",
)


class MessageStatus(str, Enum):
    """Message lifecycle states.

    Attributes:
        QUEUED: Accepted by the API and pushed to the stream.
        PROCESSING: Claimed by a worker, provider call in progress.
        SENT: Accepted by the vendor.
        FAILED: Vendor refused or every attempt failed.
        DELIVERED: Confirmed by a vendor callback (set outside the worker).
        MALFORMED: Missing data that makes delivery impossible.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"
    MALFORMED = "malformed"


TERMINAL_SUCCESS = frozenset({MessageStatus.SENT, MessageStatus.DELIVERED})


class ProviderCredential(BaseModel):
    """Stored vendor credential; string leaves are encrypted except ``unencrypted``."""

    id: str
    channel: str
    provider_type: str
    credentials: dict[str, Any]
    is_active: bool = True


class ProjectProviderAssociation(BaseModel):
    """Link between a project and a credential with its vendor config."""

    id: str
    priority: int = 0
    config: dict[str, Any] | None = None
    provider_credential: ProviderCredential | None = None


class MessageDetails(BaseModel):
    """A message row together with the association resolved for it."""

    id: str
    project_id: str
    channel: str
    provider_type: str
    status: MessageStatus
    status_reason: str | None = None
    payload: dict[str, Any] | None = None
    recipient: str | None = None
    source: str | None = None
    association: ProjectProviderAssociation | None = None


class AwsRegion(BaseModel):
    region: Annotated[str, Field(description="AWS region code")]

    @field_validator("region")
    @classmethod
    def known_region(cls, v: str) -> str:
        if v not in AWS_REGIONS:
            raise ValueError("Invalid region")
        return v


class AwsCredentials(BaseModel):
    """Decrypted AWS credential document."""

    model_config = ConfigDict(populate_by_name=True)

    unencrypted: AwsRegion
    access_key_id: Annotated[
        str,
        Field(alias="accessKeyId", min_length=1, description="Access Key ID is required"),
    ]
    secret_access_key: Annotated[
        str,
        Field(alias="secretAccessKey", min_length=1, description="Secret Access Key is required"),
    ]

    @property
    def region(self) -> str:
        return self.unencrypted.region


def has_aws_credential_shape(credentials: Any) -> bool:
    """Check the stored (still encrypted) document has the AWS fields."""
    if not isinstance(credentials, dict):
        return False
    unencrypted = credentials.get("unencrypted")
    return (
        isinstance(unencrypted, dict)
        and "region" in unencrypted
        and "accessKeyId" in credentials
        and "secretAccessKey" in credentials
    )


class SesConfig(BaseModel):
    """SES sender settings stored on the association."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender_email: Annotated[
        str,
        Field(alias="senderEmail", min_length=3, description="Verified SES sender address"),
    ]
    sender_name: Annotated[
        str | None,
        Field(default=None, alias="senderName", description="Display name for the From header"),
    ]
    configuration_set: Annotated[
        str | None,
        Field(default=None, alias="configurationSet", description="SES configuration set name"),
    ]
    reply_to: Annotated[
        list[str] | None,
        Field(default=None, alias="replyTo", description="Reply-To addresses"),
    ]

    @field_validator("sender_email")
    @classmethod
    def looks_like_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("senderEmail must be an email address")
        return v


class SnsConfig(BaseModel):
    """SNS SMS settings stored on the association."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender_name: Annotated[
        str | None,
        Field(default=None, alias="senderName", max_length=11, description="Alphanumeric sender ID"),
    ]
    sms_type: Annotated[
        Literal["Transactional", "Promotional"] | None,
        Field(default=None, alias="smsType", description="Default SMS type"),
    ]


class EmailPayload(BaseModel):
    """Email content.

    Accepts either ``body`` plus ``type`` or explicit ``html`` / ``text`` parts.
    """

    model_config = ConfigDict(extra="ignore")

    subject: str | None = None
    body: str | None = None
    type: Literal["text", "html"] = "text"
    html: str | None = None
    text: str | None = None

    @model_validator(mode="after")
    def has_content(self) -> EmailPayload:
        if not (self.body or self.html or self.text):
            raise ValueError("Email payload requires body, html or text")
        return self

    def parts(self) -> dict[str, str]:
        """Return ``{"Html": ..., "Text": ...}`` with only the present parts."""
        parts: dict[str, str] = {}
        if self.html:
            parts["Html"] = self.html
        if self.text:
            parts["Text"] = self.text
        if self.body and not parts:
            parts["Html" if self.type == "html" else "Text"] = self.body
        return parts


class SmsPayload(BaseModel):
    """SMS content; ``body`` and ``text`` are interchangeable."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    body: str | None = None
    text: str | None = None
    sms_type: Annotated[
        Literal["Transactional", "Promotional"] | None,
        Field(default=None, alias="smsType"),
    ]

    @model_validator(mode="after")
    def has_content(self) -> SmsPayload:
        if not (self.body or self.text):
            raise ValueError("SMS payload requires body or text")
        return self

    @property
    def content(self) -> str:
        return self.body or self.text or ""
