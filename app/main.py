"""
Clinic Booking API

FastAPI entry point: lifespan, CORS, error mapping and routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.routes import appointments, conversations, health, schedule
from app.core.scheduling.errors import (
    NotFoundError,
    SchedulingError,
    SlotUnavailable,
    StructuralConflict,
    TransientDependencyError,
    ValidationError,
)
from app.infra.database import close_db, init_db
from app.infra.messaging import close_messaging_channel
from app.infra.redis import RedisClient


def setup_logging() -> None:
    """Root logging from settings; third-party loggers kept quiet."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # === STARTUP ===
    setup_logging()
    logger.info(
        f"Starting {settings.app_name} in {settings.app_env} mode "
        f"with the {settings.store_backend} store"
    )
    health.set_start_time()

    # Schema is created here in development only; production uses migrations
    if settings.is_development and settings.store_backend == "postgres":
        try:
            await init_db()
            logger.info("Database schema ready")
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    if await RedisClient.get_client() is None:
        logger.warning("Redis unavailable - conversation sessions kept in process memory")

    if not settings.messaging_configured:
        logger.warning("WhatsApp credentials missing - replies will not be delivered")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down")
    await close_messaging_channel()
    await RedisClient.close()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Clinic Booking API",
    description="""
    Multi-clinic appointment scheduling.

    - Doctor availability from working hours, blocked periods and bookings
    - Overlap-free booking under concurrent requests
    - WhatsApp booking conversations

    Every endpoint except health requires the clinic id in the `X-Tenant-ID`
    header. `X-User-Id` is recorded on appointment changes.
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Scheduling error -> (status, error label); checked in order
ERROR_STATUS = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not found"),
    (SlotUnavailable, status.HTTP_409_CONFLICT, "Slot unavailable"),
    (StructuralConflict, status.HTTP_409_CONFLICT, "Slot unavailable"),
    (TransientDependencyError, status.HTTP_503_SERVICE_UNAVAILABLE, "Service unavailable"),
)


def _error_response(status_code: int, error: str, detail, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail, **extra},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without their non-serializable ``ctx``."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", jsonable_errors(exc)
    )


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(
    request: Request,
    exc: SchedulingError,
) -> JSONResponse:
    """Scheduling failures to HTTP; 409 bodies carry the reason."""
    for error_type, status_code, label in ERROR_STATUS:
        if not isinstance(exc, error_type):
            continue
        extra = {}
        if isinstance(exc, SlotUnavailable):
            extra["reason"] = exc.reason.value
        elif isinstance(exc, StructuralConflict):
            logger.warning(f"Structural conflict for doctor {exc.doctor_id}")
            extra["reason"] = "structural_conflict"
        elif isinstance(exc, TransientDependencyError):
            logger.error(f"Dependency unavailable on {request.url.path}: {exc.message}")
        return _error_response(status_code, label, exc.message, **extra)

    logger.exception(f"Unhandled scheduling error: {exc}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", exc.message
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    # Internal details only outside production-like environments
    detail = str(exc) if settings.is_development else "Internal server error"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", detail)


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Debug-level request duration log."""
    started = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        if settings.debug:
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {time.perf_counter() - started:.3f}s"
            )


app.include_router(health.router)
app.include_router(schedule.router)
app.include_router(appointments.router)
app.include_router(conversations.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
