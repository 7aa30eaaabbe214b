# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""AES-256-GCM helpers for provider credentials.

Encrypted values are stored as ``"<iv>:<ciphertext>:<tag>"`` with every part
hex-encoded (12-byte IV, 16-byte authentication tag). Credential documents
are encrypted leaf by leaf: every string value is encrypted, except the
``unencrypted`` sub-document which is kept in clear (it holds non-secret
data such as the AWS region).
"""

from __future__ import annotations

import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .result import Err, Ok, Result

IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32
DELIMITER = ":"
UNENCRYPTED_KEY = "unencrypted"


class CryptoError(ValueError):
    """Invalid key, malformed ciphertext or failed authentication."""


def load_key(key_hex: str | None) -> bytes:
    """Decode a hex key, raising :class:`CryptoError` unless it is exactly 32 bytes."""
    if not key_hex:
        raise CryptoError("CREDENTIAL_ENCRYPTION_KEY is not set.")
    try:
        key = bytes.fromhex(key_hex.strip())
    except ValueError as exc:
        raise CryptoError("CREDENTIAL_ENCRYPTION_KEY is not valid hex.") from exc
    if len(key) != KEY_LENGTH:
        raise CryptoError(f"CREDENTIAL_ENCRYPTION_KEY must be {KEY_LENGTH * 2} hex characters long.")
    return key


def encrypt(text: str, key: bytes) -> str:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return DELIMITER.join((iv.hex(), ciphertext.hex(), tag.hex()))


def decrypt(token: str, key: bytes) -> str:
    """Decrypt one ``iv:ciphertext:tag`` token.

    Raises:
        CryptoError: If the token is malformed or authentication fails.
    """
    parts = token.split(DELIMITER)
    if len(parts) != 3:
        raise CryptoError("Invalid encrypted text format.")
    try:
        iv, ciphertext, tag = (bytes.fromhex(part) for part in parts)
    except ValueError as exc:
        raise CryptoError("Encrypted text is not valid hex.") from exc
    if len(iv) != IV_LENGTH:
        raise CryptoError("Invalid IV length.")
    if len(tag) != AUTH_TAG_LENGTH:
        raise CryptoError("Invalid authTag length.")
    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CryptoError("Decryption failed. Data may be corrupt or key incorrect.") from exc
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CryptoError("Decrypted value is not valid UTF-8.") from exc


def _transform(record: dict[str, Any], leaf) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in record.items():
        if name == UNENCRYPTED_KEY:
            out[name] = value
        elif isinstance(value, dict):
            out[name] = _transform(value, leaf)
        elif isinstance(value, str):
            out[name] = leaf(value)
        else:
            out[name] = value
    return out


def encrypt_record(record: dict[str, Any], key: bytes) -> Result[dict[str, Any], CryptoError]:
    try:
        return Ok(_transform(record, lambda value: encrypt(value, key)))
    except CryptoError as exc:
        return Err(exc)


def decrypt_record(record: dict[str, Any], key: bytes) -> Result[dict[str, Any], CryptoError]:
    """Decrypt every string leaf of ``record`` outside ``unencrypted``.

    The first failing field aborts the whole record.
    """
    try:
        return Ok(_transform(record, lambda value: decrypt(value, key)))
    except CryptoError as exc:
        return Err(exc)
