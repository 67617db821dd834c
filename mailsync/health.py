"""FastAPI health and control endpoints."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import IngestionService


def create_health_app(service: IngestionService) -> FastAPI:
    """Build the FastAPI app with ``/health``, ``/ready``, ``/sync`` and ``/reindex``.

    The *service* reference is used to read runtime status and to
    delegate control operations to its orchestrator.
    """
    app = FastAPI(title="mailsync", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        orchestrator = service.orchestrator
        status = HealthStatus(
            status=service.status,
            uptime_seconds=time.monotonic() - service.start_time,
            readiness=orchestrator.readiness(),
            watchers=orchestrator.statuses(),
        )
        code = 200 if service.status in (ServiceStatus.RUNNING, ServiceStatus.STARTING) else 503
        return JSONResponse(content=status.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        readiness = service.orchestrator.readiness()
        is_ready = service.status == ServiceStatus.RUNNING and readiness.monitoring > 0
        return JSONResponse(
            content={"ready": is_ready, **readiness.model_dump()},
            status_code=200 if is_ready else 503,
        )

    @app.post("/sync")
    async def sync() -> dict[str, int]:
        connected = await service.orchestrator.resync()
        return {"accounts_connected": connected}

    @app.post("/reindex")
    async def reindex() -> dict[str, int]:
        result = await service.orchestrator.reindex_all()
        return result.model_dump()

    return app
