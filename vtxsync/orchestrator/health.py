"""HTTP health endpoint.

Exposes the :class:`~vtxsync.orchestrator.status.StatusTracker` snapshot as
``GET /health`` on a small FastAPI app, served by uvicorn inside the
scheduler's event loop.  The endpoint always answers 200; orchestration
health is carried in the body's ``status`` field so that a failing export
does not get the container restarted.
"""

from __future__ import annotations

import logging
from typing import Any

import uvicorn
from fastapi import FastAPI

from vtxsync.orchestrator.status import StatusTracker

__all__ = ["create_app", "serve_health"]

logger = logging.getLogger(__name__)


def create_app(tracker: StatusTracker) -> FastAPI:
    """Build the health app bound to *tracker*."""
    app = FastAPI(title="VTX Sync", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return tracker.snapshot()

    return app


async def serve_health(app: FastAPI, host: str, port: int) -> None:
    """Serve *app* until cancelled."""
    config = uvicorn.Config(app, host=host, port=port, log_config=None, access_log=False)
    server = uvicorn.Server(config)
    logger.info("Health endpoint listening on http://%s:%d/health", host, port)
    await server.serve()
