# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Interface implemented by concrete provider adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..errors import ProviderError
from ..result import Result


@dataclass(frozen=True)
class SendOutcome:
    """Vendor answer for one delivered message.

    ``success=False`` is a refusal reported without an error value; the
    processor records it as ``failed`` just like an ``Err``.
    """

    success: bool
    details: dict[str, Any] | None = None


class ProviderAdapter(ABC):
    """Turns a credential, config, payload and recipient into a vendor call."""

    channel: str = ""
    """Channel served by the adapter (``email``, ``sms``)."""

    @abstractmethod
    async def send(
        self,
        credentials: dict[str, Any],
        payload: dict[str, Any],
        config: dict[str, Any],
        recipient: str,
    ) -> Result[SendOutcome, ProviderError]:
        """Deliver one message; never raises for vendor or validation errors."""
        raise NotImplementedError
