# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tagged success/failure values returned by the store and the provider adapters.

Operations that can fail for expected reasons (a missing row, a vendor
rejection) return ``Ok(value)`` or ``Err(error)`` instead of raising, so the
caller can branch with ``match``::

    match await store.fetch_message_details(message_id):
        case Ok(details):
            ...
        case Err(error):
            logger.error("Fetch failed: %s", error.message)

Exceptions stay reserved for bugs and unrecoverable infrastructure failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeAlias, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying ``value``."""

    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failed outcome carrying ``error``."""

    error: E


Result: TypeAlias = Union[Ok[T], Err[E]]

__all__ = ["Ok", "Err", "Result"]
