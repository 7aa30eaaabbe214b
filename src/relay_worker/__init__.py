# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Notification delivery worker for multi-tenant messaging projects.

This package consumes a Redis Stream of queued message identifiers and
delivers each message through the provider configured for its project:

- Consumer-group reads with pending-entry recovery
- Idempotent per-message processing with a durable event trail
- AWS SES (email) and AWS SNS (SMS) adapters with exponential backoff
- AES-256-GCM credential decryption
- SQLite or PostgreSQL persistence
- Prometheus metrics and a small health endpoint

Example:
    Running the worker from code::

        from relay_worker.config import load_settings
        from relay_worker.worker import build_worker

        settings = load_settings()
        worker = build_worker(settings)
        await worker.startup()
        await worker.run(stop_event)

Authors:
    Softwell S.r.l.
"""

__version__ = "0.1.0"
