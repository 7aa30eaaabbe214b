# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider adapters delivering messages through third-party vendors.

Channels:
- email: Amazon SES (:class:`SesAdapter`)
- sms: Amazon SNS (:class:`SnsAdapter`)
"""

from .base import ProviderAdapter, SendOutcome
from .registry import ProviderRegistry, build_default_registry
from .ses import SesAdapter
from .sns import SnsAdapter

__all__ = [
    "ProviderAdapter",
    "ProviderRegistry",
    "SendOutcome",
    "SesAdapter",
    "SnsAdapter",
    "build_default_registry",
]
