# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the SES and SNS provider adapters."""

import pytest
from botocore.exceptions import ClientError

from relay_worker.config import WorkerSettings
from relay_worker.crypto import CryptoError, encrypt_record
from relay_worker.providers import ProviderRegistry, SesAdapter, SnsAdapter, build_default_registry
from relay_worker.result import Err, Ok
from relay_worker.retry import RetryPolicy

KEY_HEX = "0123456789abcdef" * 4
KEY = bytes.fromhex(KEY_HEX)
PLAIN_CREDENTIALS = {
    "unencrypted": {"region": "eu-west-1"},
    "accessKeyId": "AKIAEXAMPLE",
    "secretAccessKey": "s3cr3t",
}
CREDENTIALS = encrypt_record(PLAIN_CREDENTIALS, KEY).value


def client_error(code: str, status: int = 400, operation: str = "SendEmail") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": f"{code} happened"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class DummyClient:
    """Fake aioboto3 client replaying scripted outcomes."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [{"MessageId": "v-123", "ResponseMetadata": {"RequestId": "req-1"}}])
        self.calls = []

    async def send_email(self, **params):
        return self._next("send_email", params)

    async def publish(self, **params):
        return self._next("publish", params)

    def _next(self, method, params):
        self.calls.append((method, params))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class DummyClientContext:
    def __init__(self, client):
        self._client = client

    async def __aenter__(self):
        return self._client

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    def __init__(self, client):
        self._client = client
        self.opened = []

    def client(self, service_name, **kwargs):
        self.opened.append((service_name, kwargs))
        return DummyClientContext(self._client)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class DummyMetrics:
    def __init__(self):
        self.attempts = []

    def inc_provider_attempt(self, channel):
        self.attempts.append(channel)


def make_adapter(cls, client, *, max_attempts=3, base_delay_ms=1000, metrics=None):
    sleep = SleepRecorder()
    session = DummySession(client)
    adapter = cls(
        encryption_key=KEY,
        retry=RetryPolicy(max_attempts, base_delay_ms, sleep=sleep),
        session_factory=lambda: session,
        metrics=metrics,
    )
    return adapter, session, sleep


class TestSesAdapter:
    """Tests for SesAdapter."""

    @pytest.mark.asyncio
    async def test_send_email_success(self):
        client = DummyClient()
        adapter, session, sleep = make_adapter(SesAdapter, client)
        result = await adapter.send(
            CREDENTIALS,
            {"subject": "Hi", "body": "<p>Hello</p>", "type": "html"},
            {"senderEmail": "noreply@example.com", "senderName": "Acme", "configurationSet": "tracking"},
            "user@example.com",
        )
        assert isinstance(result, Ok)
        assert result.value.success is True
        assert result.value.details == {"messageId": "v-123", "requestId": "req-1"}
        assert session.opened == [
            (
                "ses",
                {
                    "region_name": "eu-west-1",
                    "aws_access_key_id": "AKIAEXAMPLE",
                    "aws_secret_access_key": "s3cr3t",
                },
            )
        ]
        method, params = client.calls[0]
        assert method == "send_email"
        assert params["Source"] == "Acme <noreply@example.com>"
        assert params["Destination"] == {"ToAddresses": ["user@example.com"]}
        assert params["Message"]["Subject"] == {"Data": "Hi", "Charset": "UTF-8"}
        assert params["Message"]["Body"] == {"Html": {"Data": "<p>Hello</p>", "Charset": "UTF-8"}}
        assert params["ConfigurationSetName"] == "tracking"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_text_and_html_parts(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        await adapter.send(
            CREDENTIALS,
            {"subject": "Hi", "html": "<b>x</b>", "text": "x"},
            {"senderEmail": "noreply@example.com", "replyTo": ["help@example.com"]},
            "user@example.com",
        )
        params = client.calls[0][1]
        assert set(params["Message"]["Body"]) == {"Html", "Text"}
        assert params["Source"] == "noreply@example.com"
        assert params["ReplyToAddresses"] == ["help@example.com"]

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        """Two throttling errors then success: three calls, delays of 1s and 2s."""
        metrics = DummyMetrics()
        client = DummyClient(
            [client_error("Throttling"), client_error("ServiceUnavailable", 503), {"MessageId": "v-9"}]
        )
        adapter, _, sleep = make_adapter(SesAdapter, client, metrics=metrics)
        result = await adapter.send(
            CREDENTIALS, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com"
        )
        assert isinstance(result, Ok)
        assert result.value.details == {"messageId": "v-9"}
        assert len(client.calls) == 3
        assert sleep.delays == [1.0, 2.0]
        assert metrics.attempts == ["email", "email", "email"]

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self):
        client = DummyClient([client_error("Throttling")])
        adapter, _, sleep = make_adapter(SesAdapter, client, base_delay_ms=10)
        result = await adapter.send(
            CREDENTIALS, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com"
        )
        assert isinstance(result, Err)
        assert len(client.calls) == 3
        assert sleep.delays == [0.01, 0.02]
        error = result.error
        assert error.code == "send_failed"
        assert error.retryable is True
        assert error.message.startswith("Failed to send email via SES after 3 attempt(s):")
        assert error.details["attempts"] == 3
        assert error.details["lastError"]["code"] == "Throttling"

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        client = DummyClient([client_error("MessageRejected")])
        adapter, _, sleep = make_adapter(SesAdapter, client)
        result = await adapter.send(
            CREDENTIALS, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com"
        )
        assert isinstance(result, Err)
        assert result.error.retryable is False
        assert len(client.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(CREDENTIALS, {"body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com")
        assert result.error.message == "Subject is required for SES"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_invalid_config(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(CREDENTIALS, {"subject": "Hi", "body": "x"}, {}, "user@example.com")
        assert result.error.message.startswith("Invalid SES configuration:")
        assert result.error.code == "invalid_config"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_invalid_credential_shape(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(
            {"accessKeyId": "x"}, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com"
        )
        assert result.error.message == "Invalid credentials structure for SES"
        assert result.error.code == "invalid_credentials"

    @pytest.mark.asyncio
    async def test_decryption_failure(self):
        client = DummyClient()
        adapter, session, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(
            PLAIN_CREDENTIALS, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com"
        )
        assert result.error.message.startswith("Failed to decrypt SES credentials:")
        assert result.error.code == "decryption_failed"
        assert session.opened == []

    @pytest.mark.asyncio
    async def test_credentials_are_checked_before_payload(self):
        """An undecryptable credential is reported even when the payload is also invalid."""
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(PLAIN_CREDENTIALS, {"body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com")
        assert result.error.message.startswith("Failed to decrypt SES credentials:")
        assert result.error.code == "decryption_failed"

        bad_region = encrypt_record({**PLAIN_CREDENTIALS, "unencrypted": {"region": "mars-1"}}, KEY).value
        result = await adapter.send(bad_region, {"body": "x"}, {"senderEmail": "a@b.c"}, "user@example.com")
        assert result.error.message.startswith("Invalid SES credentials:")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_config_is_checked_before_decryption(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SnsAdapter, client)
        result = await adapter.send(PLAIN_CREDENTIALS, {}, {"senderName": "A" * 12}, "+10000000000")
        assert result.error.code == "invalid_config"

    @pytest.mark.asyncio
    async def test_unknown_region(self):
        bad = encrypt_record({**PLAIN_CREDENTIALS, "unencrypted": {"region": "mars-1"}}, KEY).value
        client = DummyClient()
        adapter, _, _ = make_adapter(SesAdapter, client)
        result = await adapter.send(bad, {"subject": "Hi", "body": "x"}, {"senderEmail": "a@b.c"}, "u@example.com")
        assert result.error.message.startswith("Invalid SES credentials:")
        assert "Invalid region" in result.error.message


class TestSnsAdapter:
    """Tests for SnsAdapter."""

    @pytest.mark.asyncio
    async def test_publish_with_attributes(self):
        client = DummyClient([{"MessageId": "sns-1"}])
        adapter, session, _ = make_adapter(SnsAdapter, client)
        result = await adapter.send(
            CREDENTIALS,
            {"body": "Your code is 1234", "smsType": "Transactional"},
            {"senderName": "ACME", "smsType": "Promotional"},
            "+391234567890",
        )
        assert result.value.details == {"messageId": "sns-1"}
        assert session.opened[0][0] == "sns"
        method, params = client.calls[0]
        assert method == "publish"
        assert params["PhoneNumber"] == "+391234567890"
        assert params["Message"] == "Your code is 1234"
        assert params["MessageAttributes"] == {
            "AWS.SNS.SMS.SenderID": {"DataType": "String", "StringValue": "ACME"},
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        }

    @pytest.mark.asyncio
    async def test_text_alias_and_no_attributes(self):
        client = DummyClient([{"MessageId": "sns-2"}])
        adapter, _, _ = make_adapter(SnsAdapter, client)
        await adapter.send(CREDENTIALS, {"text": "hello"}, {}, "+10000000000")
        params = client.calls[0][1]
        assert params == {"PhoneNumber": "+10000000000", "Message": "hello"}

    @pytest.mark.asyncio
    async def test_sender_name_too_long(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SnsAdapter, client)
        result = await adapter.send(CREDENTIALS, {"body": "x"}, {"senderName": "A" * 12}, "+10000000000")
        assert result.error.message.startswith("Invalid SNS configuration:")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_empty_payload(self):
        client = DummyClient()
        adapter, _, _ = make_adapter(SnsAdapter, client)
        result = await adapter.send(CREDENTIALS, {}, {}, "+10000000000")
        assert result.error.message.startswith("Invalid SMS payload:")


class TestRegistry:
    """Tests for ProviderRegistry."""

    def test_register_and_lookup(self):
        ses = SesAdapter(encryption_key=KEY)
        registry = ProviderRegistry([ses])
        assert registry.get("email") is ses
        assert registry.get("push") is None
        assert registry.channels() == ["email"]

    def test_default_registry(self):
        settings = WorkerSettings(encryption_key=KEY_HEX)
        registry = build_default_registry(settings)
        assert registry.channels() == ["email", "sms"]
        assert isinstance(registry.get("sms"), SnsAdapter)
        assert registry.get("email").retry.max_attempts == 3

    def test_default_registry_requires_key(self):
        with pytest.raises(CryptoError):
            build_default_registry(WorkerSettings(encryption_key=None))
