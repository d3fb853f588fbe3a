"""
Health Check Endpoints

Liveness, readiness and a development-only detailed view. Readiness
checks the PostgreSQL store (connection plus btree_gist) when it backs
scheduling, and Redis for conversation sessions.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

# Check results that do not make the service unready
HEALTHY_RESULTS = ("ok", "skipped", "disabled")

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Record process start. Called once from the lifespan."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: Optional[float]
    checks: dict[str, str]
    config: dict[str, str]


async def _probe(name: str, check: Callable[[], Awaitable[bool]]) -> str:
    try:
        if await check():
            return "ok"
        logger.warning(f"Health check: {name} unhealthy")
        return "failed"
    except Exception as e:
        logger.error(f"Health check: {name} error - {e}")
        return "error"


async def _run_checks() -> dict[str, str]:
    """Dependency name -> ok / failed / error / skipped / disabled."""
    return {
        "database": (
            await _probe("database", check_db_health)
            if settings.store_backend == "postgres"
            else "skipped"
        ),
        "redis": await _probe("redis", check_redis_health),
        "messaging": "ok" if settings.messaging_configured else "disabled",
    }


def _all_ok(checks: dict[str, str]) -> bool:
    return all(result in HEALTHY_RESULTS for result in checks.values())


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    description="200 while the process runs. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="Checks the store and Redis. 503 if any of them is unavailable.",
    responses={
        200: {"description": "Ready to take traffic"},
        503: {"description": "A dependency is unavailable"},
    },
)
async def ready() -> ReadyResponse:
    checks = await _run_checks()
    response = ReadyResponse(
        status="ready" if _all_ok(checks) else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    if response.status != "ready":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    summary="Liveness probe",
)
async def live() -> LiveResponse:
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    description="Checks plus non-secret configuration. Development only.",
    include_in_schema=settings.is_development,
)
async def detailed() -> DetailedHealthResponse:
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    checks = await _run_checks()
    return DetailedHealthResponse(
        status="healthy" if _all_ok(checks) else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
        checks=checks,
        config={
            "app_name": settings.app_name,
            "debug": str(settings.debug),
            "store_backend": settings.store_backend,
            "slot_defaults": (
                f"{settings.default_slot_minutes}/"
                f"{settings.default_lead_time_minutes}/"
                f"{settings.default_buffer_minutes}"
            ),
            "session_ttl_seconds": str(settings.session_ttl_seconds),
        },
    )
