"""
Scheduling domain types.

All ranges are half-open ``[start, end)`` with timezone-aware datetimes.
``TimeRange.overlaps`` is the single overlap definition used by the
availability generator, the booking pre-check and the in-memory store;
the PostgreSQL store uses ``tstzrange(start, end, '[)') && ...`` which has
the same semantics.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.errors import ValidationError


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that occupy the doctor's time
ACTIVE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("start and end must be timezone-aware")
        if self.start >= self.end:
            raise ValidationError("start must be before end")

    def overlaps(self, other: "TimeRange") -> bool:
        """Half-open overlap: touching ranges do not overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expand(self, minutes: int) -> "TimeRange":
        """Widen by ``minutes`` on both sides."""
        if not minutes:
            return self
        pad = timedelta(minutes=minutes)
        return TimeRange(self.start - pad, self.end + pad)

    def to_utc(self) -> "TimeRange":
        return TimeRange(
            self.start.astimezone(timezone.utc),
            self.end.astimezone(timezone.utc),
        )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class Doctor:
    """Doctor belonging to exactly one clinic."""

    id: str
    clinic_id: str
    full_name: str
    specialization: Optional[str] = None
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "doctor_id": self.id,
            "full_name": self.full_name,
            "specialization": self.specialization,
        }


@dataclass
class WorkingHourRule:
    """Recurring weekly window. ``day_of_week`` is 0 for Sunday through 6 for Saturday."""

    doctor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    id: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.day_of_week <= 6:
            raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if self.start_time >= self.end_time:
            raise ValidationError("working hour start must be before end")

    def window_on(self, day, tz: ZoneInfo) -> TimeRange:
        """Absolute range this rule covers on ``day`` in ``tz``."""
        start = datetime.combine(day, self.start_time, tzinfo=tz)
        end = datetime.combine(day, self.end_time, tzinfo=tz)
        return TimeRange(start.astimezone(timezone.utc), end.astimezone(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


@dataclass
class DoctorSettings:
    """Per-doctor slot policy."""

    doctor_id: str
    slot_minutes: int = 15
    lead_time_minutes: int = 60
    buffer_minutes: int = 0

    def __post_init__(self):
        if self.slot_minutes <= 0:
            raise ValidationError("slot_minutes must be positive")
        if self.lead_time_minutes < 0:
            raise ValidationError("lead_time_minutes cannot be negative")
        if self.buffer_minutes < 0:
            raise ValidationError("buffer_minutes cannot be negative")

    def merged(
        self,
        slot_minutes: Optional[int] = None,
        lead_time_minutes: Optional[int] = None,
        buffer_minutes: Optional[int] = None,
    ) -> "DoctorSettings":
        """Copy with the given fields replaced (None keeps the current value)."""
        return replace(
            self,
            slot_minutes=self.slot_minutes if slot_minutes is None else slot_minutes,
            lead_time_minutes=(
                self.lead_time_minutes if lead_time_minutes is None else lead_time_minutes
            ),
            buffer_minutes=self.buffer_minutes if buffer_minutes is None else buffer_minutes,
        )

    def to_dict(self) -> dict:
        return {
            "doctor_id": self.doctor_id,
            "slot_minutes": self.slot_minutes,
            "lead_time_minutes": self.lead_time_minutes,
            "buffer_minutes": self.buffer_minutes,
        }


@dataclass
class BlockedInterval:
    """One-off unavailability (leave, holiday)."""

    doctor_id: str
    range: TimeRange
    reason: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "start": self.range.start.isoformat(),
            "end": self.range.end.isoformat(),
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AppointmentRecord:
    """Stored appointment."""

    clinic_id: str
    doctor_id: str
    patient_id: str
    range: TimeRange
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    mode: str = "offline"
    source: str = "manual"
    notes: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return {
            "appointment_id": self.id,
            "clinic_id": self.clinic_id,
            "doctor_id": self.doctor_id,
            "patient_id": self.patient_id,
            "start": self.range.start.isoformat(),
            "end": self.range.end.isoformat(),
            "status": self.status.value,
            "mode": self.mode,
            "source": self.source,
            "notes": self.notes,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Slot:
    """Bookable candidate, expressed in the clinic's local time."""

    start: datetime
    end: datetime
    slot_minutes: int

    @property
    def range(self) -> TimeRange:
        return TimeRange(self.start, self.end)

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(timezone.utc)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "start_utc": self.start_utc.isoformat(),
            "end_utc": self.end_utc.isoformat(),
            "slot_minutes": self.slot_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Slot":
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            slot_minutes=data["slot_minutes"],
        )
