# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Channel to adapter lookup, built once when the worker starts."""

from __future__ import annotations

from collections.abc import Iterable

from ..config import WorkerSettings
from ..crypto import load_key
from ..retry import RetryPolicy
from .base import ProviderAdapter
from .ses import SesAdapter
from .sns import SnsAdapter


class ProviderRegistry:
    """Maps a channel name to the adapter that delivers it."""

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter, channel: str | None = None) -> None:
        name = channel or adapter.channel
        if not name:
            raise ValueError(f"Adapter {type(adapter).__name__} does not declare a channel")
        self._adapters[name] = adapter

    def get(self, channel: str) -> ProviderAdapter | None:
        return self._adapters.get(channel)

    def channels(self) -> list[str]:
        return sorted(self._adapters)


def build_default_registry(settings: WorkerSettings, metrics=None) -> ProviderRegistry:
    """Register the SES and SNS adapters with the configured key and retry policy.

    Raises:
        CryptoError: If ``CREDENTIAL_ENCRYPTION_KEY`` is missing or malformed.
    """
    key = load_key(settings.encryption_key)
    retry = RetryPolicy(settings.retry.max_attempts, settings.retry.base_delay_ms)
    return ProviderRegistry(
        [
            SesAdapter(encryption_key=key, retry=retry, metrics=metrics),
            SnsAdapter(encryption_key=key, retry=retry, metrics=metrics),
        ]
    )
