# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclasses and loader for the relay worker.

Settings are grouped the same way they are consumed:
- settings.queue.read_count
- settings.retry.base_delay_ms
- settings.recovery.min_idle_time_ms

:func:`load_settings` reads an optional INI file (path from
``WORKER_CONFIG``, default ``config.ini``) and falls back to environment
variables for every option.
"""

from __future__ import annotations

import configparser
import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .logger import get_logger

logger = get_logger("relay_worker.config")

DEFAULT_STREAM = "messageQueue"
DEFAULT_CONSUMER_GROUP = "message_consumers"
MESSAGE_ID_FIELD = "messageId"


def default_consumer_name() -> str:
    return f"worker_consumer_{uuid.uuid4()}"


@dataclass
class QueueConfig:
    """Redis Streams connection and read settings."""

    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL."""

    stream: str = DEFAULT_STREAM
    """Stream holding one entry per queued message."""

    consumer_group: str = DEFAULT_CONSUMER_GROUP
    """Consumer group shared by every worker process."""

    consumer_name: str = field(default_factory=default_consumer_name)
    """Name of this consumer inside the group; must be unique per process."""

    read_count: int = 10
    """Maximum entries requested per XREADGROUP call."""

    block_timeout_ms: int = 5000
    """How long a read blocks before returning empty."""


@dataclass
class RetryConfig:
    """Provider retry behaviour."""

    max_attempts: int = 3
    """Vendor calls per message, first attempt included."""

    base_delay_ms: int = 1000
    """Delay before the first retry; doubled for each further retry."""


@dataclass
class RecoveryConfig:
    """Pending-entry recovery for entries left unacknowledged by dead consumers."""

    enabled: bool = True
    """Run the recovery pass at startup and periodically."""

    min_idle_time_ms: int = 300_000
    """Only entries idle at least this long are claimed."""

    check_interval_ms: int = 30_000
    """Interval between recovery passes."""

    max_claim_count: int = 5
    """Maximum entries claimed per pass."""


@dataclass
class ServerConfig:
    """Optional ops endpoint exposing /health and /metrics."""

    host: str = "0.0.0.0"
    port: int | None = None
    """Listening port; the endpoint is disabled when unset."""

    api_token: str | None = None
    """Token required in X-API-Token to read /metrics."""


@dataclass
class WorkerSettings:
    """Complete worker configuration."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    db_url: str = "/data/relay_worker.db"
    """SQLite path, ``sqlite:<path>`` or ``postgresql://...`` DSN."""
    encryption_key: str | None = None
    """Hex-encoded AES-256 key used to decrypt provider credentials."""
    log_level: str = "INFO"
    loop_error_delay: float = 1.0
    """Pause after a failed read before the loop tries again."""


def load_settings(environ: Mapping[str, str] | None = None) -> WorkerSettings:
    """Load worker settings from an INI file with environment variables as fallbacks.

    Environment variables:
      WORKER_CONFIG - Path to config.ini file (default: config.ini)
      REDIS_URL - Redis connection URL
      WORKER_STREAM - Stream name (default: messageQueue)
      WORKER_CONSUMER_GROUP_NAME - Consumer group (default: message_consumers)
      WORKER_CONSUMER_NAME - Consumer name (default: worker_consumer_<uuid>)
      WORKER_READ_COUNT - Entries per read (default: 10)
      WORKER_BLOCK_TIMEOUT_MS - Read block timeout (default: 5000)
      WORKER_MAX_RETRY_ATTEMPTS - Vendor attempts per message (default: 3)
      WORKER_BASE_RETRY_DELAY_MS - First retry delay (default: 1000)
      WORKER_PENDING_RECOVERY - Enable pending recovery (default: true)
      WORKER_MIN_IDLE_TIME_MS - Minimum idle time before claiming (default: 300000)
      WORKER_PENDING_CHECK_INTERVAL_MS - Recovery interval (default: 30000)
      WORKER_MAX_CLAIM_COUNT - Entries claimed per pass (default: 5)
      WORKER_DB_URL - Database location (default: /data/relay_worker.db)
      CREDENTIAL_ENCRYPTION_KEY - 64 hex characters
      WORKER_LOG_LEVEL - Logging level (default: INFO)
      WORKER_HTTP_HOST / WORKER_HTTP_PORT - Ops endpoint binding
      WORKER_API_TOKEN - Token protecting /metrics

    Config file sections/keys:
      [queue] redis_url, stream, consumer_group, consumer_name, read_count, block_timeout_ms
      [retry] max_attempts, base_delay_ms
      [recovery] enabled, min_idle_time_ms, check_interval_ms, max_claim_count
      [storage] db_url
      [security] encryption_key
      [logging] level
      [server] host, port, api_token

    Integers that do not parse fall back to their defaults.
    """
    env = os.environ if environ is None else environ
    config_path = Path(env.get("WORKER_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(config_path)

    def get(section: str, option: str, env_name: str, default: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        value = env.get(env_name)
        if value is None or value == "":
            return default
        return value

    def get_int(section: str, option: str, env_name: str, default: int | None) -> int | None:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer for %s: %r, using %s", env_name, value, default)
            return default

    def get_bool(section: str, option: str, env_name: str, default: bool) -> bool:
        value = get(section, option, env_name)
        if value is None:
            return default
        normalized = str(value).strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return default

    defaults = WorkerSettings()
    queue = QueueConfig(
        redis_url=get("queue", "redis_url", "REDIS_URL", defaults.queue.redis_url),
        stream=get("queue", "stream", "WORKER_STREAM", DEFAULT_STREAM),
        consumer_group=get("queue", "consumer_group", "WORKER_CONSUMER_GROUP_NAME", DEFAULT_CONSUMER_GROUP),
        consumer_name=get("queue", "consumer_name", "WORKER_CONSUMER_NAME") or default_consumer_name(),
        read_count=max(1, get_int("queue", "read_count", "WORKER_READ_COUNT", 10)),
        block_timeout_ms=max(1, get_int("queue", "block_timeout_ms", "WORKER_BLOCK_TIMEOUT_MS", 5000)),
    )
    retry = RetryConfig(
        max_attempts=max(1, get_int("retry", "max_attempts", "WORKER_MAX_RETRY_ATTEMPTS", 3)),
        base_delay_ms=max(0, get_int("retry", "base_delay_ms", "WORKER_BASE_RETRY_DELAY_MS", 1000)),
    )
    recovery = RecoveryConfig(
        enabled=get_bool("recovery", "enabled", "WORKER_PENDING_RECOVERY", True),
        min_idle_time_ms=get_int("recovery", "min_idle_time_ms", "WORKER_MIN_IDLE_TIME_MS", 300_000),
        check_interval_ms=get_int("recovery", "check_interval_ms", "WORKER_PENDING_CHECK_INTERVAL_MS", 30_000),
        max_claim_count=max(1, get_int("recovery", "max_claim_count", "WORKER_MAX_CLAIM_COUNT", 5)),
    )
    server = ServerConfig(
        host=get("server", "host", "WORKER_HTTP_HOST", defaults.server.host),
        port=get_int("server", "port", "WORKER_HTTP_PORT", None),
        api_token=get("server", "api_token", "WORKER_API_TOKEN"),
    )
    return WorkerSettings(
        queue=queue,
        retry=retry,
        recovery=recovery,
        server=server,
        db_url=get("storage", "db_url", "WORKER_DB_URL", defaults.db_url),
        encryption_key=get("security", "encryption_key", "CREDENTIAL_ENCRYPTION_KEY"),
        log_level=(get("logging", "level", "WORKER_LOG_LEVEL", "INFO") or "INFO").upper(),
    )


__all__ = [
    "DEFAULT_CONSUMER_GROUP",
    "DEFAULT_STREAM",
    "MESSAGE_ID_FIELD",
    "QueueConfig",
    "RecoveryConfig",
    "RetryConfig",
    "ServerConfig",
    "WorkerSettings",
    "load_settings",
]
