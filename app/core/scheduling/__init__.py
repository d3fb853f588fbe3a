"""
Scheduling Module

Time-range scheduling for clinic doctors: availability, booking and the
per-doctor schedule configuration.

Usage:
    from app.core.scheduling import (
        AvailabilityGenerator,
        InMemoryScheduleStore,
        TimeRange,
    )

    store = InMemoryScheduleStore()
    generator = AvailabilityGenerator(store)
    slots = await generator.generate_slots(clinic_id, doctor_id, date(2025, 11, 20))

The booking service, conversation flow and engine are imported from their
own modules (app.core.scheduling.booking, .flow, .engine).
"""

# Types
from app.core.scheduling.types import (
    ACTIVE_STATUSES,
    AppointmentRecord,
    AppointmentStatus,
    BlockedInterval,
    Doctor,
    DoctorSettings,
    Slot,
    TimeRange,
    WorkingHourRule,
)

# Errors
from app.core.scheduling.errors import (
    NotFoundError,
    SchedulingError,
    SlotUnavailable,
    StructuralConflict,
    TransientDependencyError,
    UnavailableReason,
    ValidationError,
)

# Stores
from app.core.scheduling.store import InMemoryScheduleStore, ScheduleStore, read_retry

# Availability and configuration
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.schedule import ScheduleService

__all__ = [
    # Types
    "ACTIVE_STATUSES",
    "AppointmentRecord",
    "AppointmentStatus",
    "BlockedInterval",
    "Doctor",
    "DoctorSettings",
    "Slot",
    "TimeRange",
    "WorkingHourRule",
    # Errors
    "NotFoundError",
    "SchedulingError",
    "SlotUnavailable",
    "StructuralConflict",
    "TransientDependencyError",
    "UnavailableReason",
    "ValidationError",
    # Stores
    "InMemoryScheduleStore",
    "ScheduleStore",
    "read_retry",
    # Services
    "AvailabilityGenerator",
    "ScheduleService",
]
