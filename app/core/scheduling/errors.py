"""Typed failures raised by the scheduling core.

The availability generator and booking service raise these unchanged;
only the conversation flow turns them into user-facing prompts, and the
API layer maps them to HTTP responses.
"""

from enum import Enum
from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(SchedulingError):
    """Malformed input (bad date, empty range, invalid settings)."""


class NotFoundError(SchedulingError):
    """Doctor, patient or appointment missing or outside the clinic."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        if resource_id:
            message = f"{resource} {resource_id} not found in this clinic"
        else:
            message = f"{resource} not found in this clinic"
        super().__init__(message)


class UnavailableReason(str, Enum):
    """Why a requested range cannot be booked."""

    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    LEAD_TIME = "lead_time"
    BLOCKED = "blocked"
    OVERLAPS_APPOINTMENT = "overlaps_appointment"


_REASON_MESSAGES = {
    UnavailableReason.OUTSIDE_WORKING_HOURS: "Not in working hours",
    UnavailableReason.LEAD_TIME: "Too close to the current time",
    UnavailableReason.BLOCKED: "Doctor is unavailable",
    UnavailableReason.OVERLAPS_APPOINTMENT: "Slot overlaps with existing appointment",
}


class SlotUnavailable(SchedulingError):
    """The requested range fails the availability pre-check."""

    def __init__(self, reason: UnavailableReason):
        self.reason = reason
        super().__init__(f"Slot not available: {_REASON_MESSAGES[reason]}")


class StructuralConflict(SchedulingError):
    """The store rejected a write that passed the pre-check (race lost)."""

    def __init__(self, doctor_id: str):
        self.doctor_id = doctor_id
        super().__init__("Appointment overlaps with another booking")


class TransientDependencyError(SchedulingError):
    """Store, Redis or messaging channel temporarily unreachable."""
