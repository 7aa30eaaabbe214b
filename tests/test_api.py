# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the ops HTTP endpoint."""

import pytest
from fastapi.testclient import TestClient

from relay_worker.api import API_TOKEN_HEADER_NAME, create_app
from relay_worker.prometheus import WorkerMetrics


class DummyWorker:
    def __init__(self):
        self.consumer = "worker_consumer_test"
        self.stopping = False
        self.processed_count = 4
        self.metrics = WorkerMetrics()


@pytest.fixture
def worker():
    return DummyWorker()


class TestHealth:
    """Tests for GET /health."""

    def test_health_without_token(self, worker):
        client = TestClient(create_app(worker, api_token="secret"))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "consumer": "worker_consumer_test",
            "stopping": False,
            "processed": 4,
        }

    def test_health_reports_shutdown(self, worker):
        worker.stopping = True
        client = TestClient(create_app(worker))
        assert client.get("/health").json()["stopping"] is True


class TestMetrics:
    """Tests for GET /metrics."""

    def test_requires_token(self, worker):
        client = TestClient(create_app(worker, api_token="secret"))
        assert client.get("/metrics").status_code == 401
        assert client.get("/metrics", headers={API_TOKEN_HEADER_NAME: "wrong"}).status_code == 401

    def test_exposes_prometheus_text(self, worker):
        worker.metrics.inc_message("sent")
        client = TestClient(create_app(worker, api_token="secret"))
        response = client.get("/metrics", headers={API_TOKEN_HEADER_NAME: "secret"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'rw_messages_total{outcome="sent"} 1.0' in response.text

    def test_open_when_no_token_configured(self, worker):
        client = TestClient(create_app(worker))
        assert client.get("/metrics").status_code == 200
