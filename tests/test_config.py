# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for load_settings."""

from relay_worker.config import DEFAULT_CONSUMER_GROUP, DEFAULT_STREAM, load_settings


def env_for(tmp_path, **values):
    env = {"WORKER_CONFIG": str(tmp_path / "missing.ini")}
    env.update(values)
    return env


class TestDefaults:
    """Tests for values used when nothing is configured."""

    def test_defaults(self, tmp_path):
        settings = load_settings(env_for(tmp_path))
        assert settings.queue.stream == DEFAULT_STREAM == "messageQueue"
        assert settings.queue.consumer_group == DEFAULT_CONSUMER_GROUP == "message_consumers"
        assert settings.queue.consumer_name.startswith("worker_consumer_")
        assert settings.queue.read_count == 10
        assert settings.queue.block_timeout_ms == 5000
        assert settings.retry.max_attempts == 3
        assert settings.retry.base_delay_ms == 1000
        assert settings.recovery.enabled is True
        assert settings.recovery.min_idle_time_ms == 300000
        assert settings.server.port is None
        assert settings.encryption_key is None
        assert settings.log_level == "INFO"

    def test_consumer_names_are_unique(self, tmp_path):
        first = load_settings(env_for(tmp_path)).queue.consumer_name
        second = load_settings(env_for(tmp_path)).queue.consumer_name
        assert first != second


class TestEnvironment:
    """Tests for environment variable overrides."""

    def test_env_overrides(self, tmp_path):
        settings = load_settings(
            env_for(
                tmp_path,
                REDIS_URL="redis://cache:6380/2",
                WORKER_CONSUMER_NAME="worker-7",
                WORKER_READ_COUNT="25",
                WORKER_MAX_RETRY_ATTEMPTS="5",
                WORKER_BASE_RETRY_DELAY_MS="200",
                WORKER_PENDING_RECOVERY="false",
                WORKER_DB_URL="postgresql://relay@db/relay",
                CREDENTIAL_ENCRYPTION_KEY="ab" * 32,
                WORKER_LOG_LEVEL="debug",
                WORKER_HTTP_PORT="9100",
                WORKER_API_TOKEN="secret",
            )
        )
        assert settings.queue.redis_url == "redis://cache:6380/2"
        assert settings.queue.consumer_name == "worker-7"
        assert settings.queue.read_count == 25
        assert settings.retry.max_attempts == 5
        assert settings.retry.base_delay_ms == 200
        assert settings.recovery.enabled is False
        assert settings.db_url == "postgresql://relay@db/relay"
        assert settings.encryption_key == "ab" * 32
        assert settings.log_level == "DEBUG"
        assert settings.server.port == 9100
        assert settings.server.api_token == "secret"

    def test_invalid_integers_fall_back(self, tmp_path):
        settings = load_settings(env_for(tmp_path, WORKER_READ_COUNT="ten", WORKER_MAX_RETRY_ATTEMPTS="many"))
        assert settings.queue.read_count == 10
        assert settings.retry.max_attempts == 3

    def test_values_are_clamped(self, tmp_path):
        env = env_for(tmp_path, WORKER_READ_COUNT="0", WORKER_MAX_RETRY_ATTEMPTS="-1", WORKER_BLOCK_TIMEOUT_MS="0")
        settings = load_settings(env)
        assert settings.queue.read_count == 1
        assert settings.retry.max_attempts == 1
        assert settings.queue.block_timeout_ms == 1

    def test_empty_values_are_ignored(self, tmp_path):
        settings = load_settings(env_for(tmp_path, WORKER_STREAM="", CREDENTIAL_ENCRYPTION_KEY=""))
        assert settings.queue.stream == "messageQueue"
        assert settings.encryption_key is None


class TestConfigFile:
    """Tests for the INI file layer."""

    def test_file_wins_over_environment(self, tmp_path):
        config = tmp_path / "worker.ini"
        config.write_text(
            "[queue]\n"
            "stream = notifications\n"
            "read_count = 50\n"
            "[retry]\n"
            "base_delay_ms = 500\n"
            "[storage]\n"
            "db_url = sqlite:/var/lib/relay.db\n"
            "[server]\n"
            "port = 8080\n"
        )
        settings = load_settings(
            {"WORKER_CONFIG": str(config), "WORKER_STREAM": "ignored", "WORKER_MAX_RETRY_ATTEMPTS": "4"}
        )
        assert settings.queue.stream == "notifications"
        assert settings.queue.read_count == 50
        assert settings.retry.base_delay_ms == 500
        assert settings.retry.max_attempts == 4
        assert settings.db_url == "sqlite:/var/lib/relay.db"
        assert settings.server.port == 8080
