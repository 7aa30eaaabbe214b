# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the relay worker.

All metrics use the ``rw_`` prefix (relay worker).

Metrics exposed:
    - ``rw_messages_total``: Counter of processed messages by final outcome.
    - ``rw_acks_total`` / ``rw_ack_failures_total``: Stream acknowledgements.
    - ``rw_batches_total`` / ``rw_batch_failures_total``: Read batches and
      entries whose processing raised.
    - ``rw_claimed_total``: Entries reclaimed from idle consumers.
    - ``rw_provider_attempts_total``: Vendor calls per channel.
    - ``rw_inflight_messages``: Gauge of messages being processed.

Example:
    Accessing metrics via the ops endpoint::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class WorkerMetrics:
    """Prometheus metrics collector for the relay worker.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A new one is
                created when omitted, so tests never share counters.
        """
        self.registry = registry or CollectorRegistry()
        self.messages = Counter(
            "rw_messages_total",
            "Processed messages by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.acks = Counter(
            "rw_acks_total",
            "Stream entries acknowledged",
            registry=self.registry,
        )
        self.ack_failures = Counter(
            "rw_ack_failures_total",
            "Stream acknowledgements that failed",
            registry=self.registry,
        )
        self.batches = Counter(
            "rw_batches_total",
            "Non-empty batches read from the stream",
            registry=self.registry,
        )
        self.batch_failures = Counter(
            "rw_batch_failures_total",
            "Batch entries whose processing raised",
            registry=self.registry,
        )
        self.claimed = Counter(
            "rw_claimed_total",
            "Pending entries claimed from idle consumers",
            registry=self.registry,
        )
        self.provider_attempts = Counter(
            "rw_provider_attempts_total",
            "Vendor calls attempted",
            ["channel"],
            registry=self.registry,
        )
        self.inflight = Gauge(
            "rw_inflight_messages",
            "Messages currently being processed",
            registry=self.registry,
        )

    def inc_message(self, outcome: str) -> None:
        """Count one message outcome (sent, failed, malformed, skipped, error)."""
        self.messages.labels(outcome=outcome or "unknown").inc()

    def inc_ack(self) -> None:
        self.acks.inc()

    def inc_ack_failure(self) -> None:
        self.ack_failures.inc()

    def inc_batch(self, failures: int = 0) -> None:
        self.batches.inc()
        if failures:
            self.batch_failures.inc(failures)

    def inc_claimed(self, count: int) -> None:
        if count:
            self.claimed.inc(count)

    def inc_provider_attempt(self, channel: str) -> None:
        self.provider_attempts.labels(channel=channel or "unknown").inc()

    def generate_latest(self) -> bytes:
        """Return the metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
