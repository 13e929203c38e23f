"""
GrowSync Backend - Health & Readiness Routes
=============================================

What:  Liveness (/health) and readiness (/ready) probes.
How:   /health answers as long as the process serves requests. /ready also
       reports whether the record store is configured; an unconfigured store
       gives 503 so load balancers keep traffic away until it is fixed.
       Neither probe calls the store or spends its rate limit.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from growsync import __version__
from growsync.config import Settings
from growsync.dependencies import ServiceContainer, get_services, get_settings
from growsync.schemas.analyze import HealthResponse, ReadinessResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        timestamp=_now_iso(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse, "description": "Store not configured"}},
    summary="Readiness probe",
)
async def readiness_check(
    settings: Settings = Depends(get_settings),
    services: ServiceContainer = Depends(get_services),
):
    configured = not settings.missing_store_settings and await services.store.health_check()
    notion = "configured" if configured else "not_configured"
    ready = notion == "configured"
    body = ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=_now_iso(),
        checks={"server": "ok", "notion": notion},
    )
    if not ready:
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
