# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Ops HTTP endpoint for the relay worker.

Exposes two routes for container orchestration and scraping:

- ``GET /health``: liveness plus the consumer name and shutdown state
  (no authentication)
- ``GET /metrics``: Prometheus text format, protected by the
  ``X-API-Token`` header when a token is configured

Example:
    Serving the endpoint next to the worker loop::

        app = create_app(worker, api_token="secret")
        await serve_ops(app, "0.0.0.0", 9100, stop_event)
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import Response
from fastapi.security import APIKeyHeader

from .logger import get_logger

logger = get_logger("relay_worker.api")

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the ``X-API-Token`` header against the token given to :func:`create_app`.

    When no token is configured the dependency is bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


def create_app(worker: Any, api_token: str | None = None) -> FastAPI:
    """Create the ops application for ``worker``.

    Parameters
    ----------
    worker:
        Object exposing ``consumer``, ``stopping``, ``processed_count`` and
        ``metrics`` (a :class:`relay_worker.prometheus.WorkerMetrics`).
    api_token:
        Optional secret required on ``/metrics``.
    """
    api = FastAPI(title="Relay Worker")
    api.state.worker = worker
    api.state.api_token = api_token

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {
            "status": "ok",
            "consumer": worker.consumer,
            "stopping": bool(worker.stopping),
            "processed": worker.processed_count,
        }

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the worker."""
        return Response(content=worker.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGTERM/SIGINT to the worker process."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


async def serve_ops(app: FastAPI, host: str, port: int, stop: asyncio.Event) -> None:
    """Run uvicorn in the current event loop until ``stop`` is set."""
    server = EmbeddedServer(uvicorn.Config(app, host=host, port=port, log_level="warning", lifespan="off"))
    task = asyncio.create_task(server.serve(), name="ops-http-server")
    logger.info("Ops endpoint listening on %s:%s", host, port)
    try:
        await stop.wait()
    finally:
        server.should_exit = True
        await asyncio.gather(task, return_exceptions=True)
