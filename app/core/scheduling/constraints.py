"""
Constraint evaluation shared by the availability generator and the booking
service, so that every offered slot passes the same checks a booking does.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.core.scheduling.errors import UnavailableReason, ValidationError
from app.core.scheduling.store import ScheduleStore
from app.core.scheduling.types import (
    AppointmentRecord,
    BlockedInterval,
    DoctorSettings,
    TimeRange,
    WorkingHourRule,
)


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown clinic time zone: {name}")


def default_settings(doctor_id: str) -> DoctorSettings:
    return DoctorSettings(
        doctor_id=doctor_id,
        slot_minutes=settings.default_slot_minutes,
        lead_time_minutes=settings.default_lead_time_minutes,
        buffer_minutes=settings.default_buffer_minutes,
    )


async def effective_settings(store: ScheduleStore, doctor_id: str) -> DoctorSettings:
    """Stored settings, or the defaults when the doctor has none."""
    stored = await store.get_settings(doctor_id)
    return stored or default_settings(doctor_id)


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    return moment.astimezone(tz).date()


def day_of_week(day: date) -> int:
    """Weekday number used by working-hour rules: Sunday = 0 ... Saturday = 6."""
    return day.isoweekday() % 7


def rule_windows(rules: Iterable[WorkingHourRule], day: date, tz: ZoneInfo) -> list[TimeRange]:
    """Absolute windows of the rules that apply on ``day``."""
    weekday = day_of_week(day)
    return [rule.window_on(day, tz) for rule in rules if rule.day_of_week == weekday]


def within_working_hours(
    time_range: TimeRange, rules: Iterable[WorkingHourRule], tz: ZoneInfo
) -> bool:
    """True when a single rule window fully contains the range."""
    day = local_date(time_range.start, tz)
    return any(window.contains(time_range) for window in rule_windows(rules, day, tz))


def meets_lead_time(time_range: TimeRange, now: datetime, lead_time_minutes: int) -> bool:
    return time_range.start >= now + timedelta(minutes=lead_time_minutes)


def hits_blocked(time_range: TimeRange, blocked: Iterable[BlockedInterval]) -> bool:
    return any(time_range.overlaps(interval.range) for interval in blocked)


def hits_appointment(
    time_range: TimeRange,
    appointments: Iterable[AppointmentRecord],
    buffer_minutes: int,
) -> bool:
    """Overlap with any active appointment after widening by the buffer."""
    padded = time_range.expand(buffer_minutes)
    return any(
        appointment.is_active and padded.overlaps(appointment.range)
        for appointment in appointments
    )


def evaluate(
    time_range: TimeRange,
    *,
    now: datetime,
    doctor_settings: DoctorSettings,
    tz: ZoneInfo,
    rules: Iterable[WorkingHourRule],
    blocked: Iterable[BlockedInterval],
    appointments: Iterable[AppointmentRecord],
) -> Optional[UnavailableReason]:
    """
    First failing constraint for ``time_range``, or None when bookable.

    Checked in order: working hours, lead time, blocked intervals,
    buffer-expanded appointment overlap.
    """
    if not within_working_hours(time_range, rules, tz):
        return UnavailableReason.OUTSIDE_WORKING_HOURS
    if not meets_lead_time(time_range, now, doctor_settings.lead_time_minutes):
        return UnavailableReason.LEAD_TIME
    if hits_blocked(time_range, blocked):
        return UnavailableReason.BLOCKED
    if hits_appointment(time_range, appointments, doctor_settings.buffer_minutes):
        return UnavailableReason.OVERLAPS_APPOINTMENT
    return None
