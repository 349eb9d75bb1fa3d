from __future__ import annotations

import os
import time
import uuid

from fastapi import FastAPI, Request
from pydantic import BaseModel

from autotown_core.config import Config

CORRELATION_HEADER = "x-correlation-id"


class BackendStatus(BaseModel):
    store: str
    queue: str
    cache: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str
    backends: BackendStatus | None = None


def add_correlation_id_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def _add_correlation_id(request: Request, call_next):
        corr = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = corr
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = corr
        return response


def build_health_response(
    service_name: str,
    *,
    config: Config | None = None,
) -> HealthResponse:
    """Liveness payload; backends are reported once configuration loads."""
    backends = None
    if config is not None:
        backends = BackendStatus(
            store=config.store_backend,
            queue=config.queue_backend,
            cache=config.cache_backend,
        )
    return HealthResponse(
        status="ok",
        service=service_name,
        version=os.getenv("AUTOTOWN_VERSION", "dev"),
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        backends=backends,
    )
