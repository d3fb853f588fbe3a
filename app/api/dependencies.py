"""
FastAPI dependencies.

Tenant headers, the configured store backend and the services built on it.
Stores, directory and engine are process-wide singletons; tests replace
them through ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.core.patients.directory import InMemoryPatientDirectory, PatientDirectory
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.booking import BookingService
from app.core.scheduling.engine import ConversationEngine, create_conversation_engine
from app.core.scheduling.schedule import ScheduleService
from app.core.scheduling.store import InMemoryScheduleStore, ScheduleStore
from app.infra.messaging import get_messaging_channel

_store: Optional[ScheduleStore] = None
_directory: Optional[PatientDirectory] = None
_engine: Optional[ConversationEngine] = None


async def get_clinic_id(
    x_tenant_id: str = Header(
        ...,
        alias="X-Tenant-ID",
        description="Clinic/tenant identifier",
    ),
) -> str:
    """Clinic id from the X-Tenant-ID header."""
    if not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return x_tenant_id.strip()


async def get_user_id(
    x_user_id: Optional[str] = Header(
        default=None,
        alias="X-User-Id",
        description="Acting user, recorded as created_by/updated_by",
    ),
) -> Optional[str]:
    return x_user_id


def get_store() -> ScheduleStore:
    """Schedule store for the configured backend."""
    global _store
    if _store is None:
        if settings.store_backend == "postgres":
            from app.core.scheduling.sql_store import SqlScheduleStore
            from app.infra.database import async_session_factory

            _store = SqlScheduleStore(async_session_factory)
        else:
            _store = InMemoryScheduleStore()
    return _store


def get_directory() -> PatientDirectory:
    """Patient directory for the configured backend."""
    global _directory
    if _directory is None:
        if settings.store_backend == "postgres":
            from app.core.patients.sql_directory import SqlPatientDirectory
            from app.infra.database import async_session_factory

            _directory = SqlPatientDirectory(async_session_factory)
        else:
            _directory = InMemoryPatientDirectory()
    return _directory


def get_availability(store: ScheduleStore = Depends(get_store)) -> AvailabilityGenerator:
    return AvailabilityGenerator(store)


def get_booking_service(
    store: ScheduleStore = Depends(get_store),
    directory: PatientDirectory = Depends(get_directory),
) -> BookingService:
    return BookingService(store, directory)


def get_schedule_service(store: ScheduleStore = Depends(get_store)) -> ScheduleService:
    return ScheduleService(store)


def get_conversation_engine() -> ConversationEngine:
    """Shared engine over the configured store, directory and channel."""
    global _engine
    if _engine is None:
        _engine = create_conversation_engine(
            get_store(),
            get_directory(),
            channel=get_messaging_channel(),
        )
    return _engine
