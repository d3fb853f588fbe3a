"""
Booking Service

Converts a requested time range into a durable appointment.

The pre-check uses the same constraint functions as the availability
generator and reports a typed reason. The final say belongs to the store:
if a concurrent writer wins between pre-check and insert, the store's
rejection surfaces as StructuralConflict.
"""

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from app.core.patients.directory import PatientDirectory
from app.core.scheduling import constraints
from app.core.scheduling.errors import (
    NotFoundError,
    SlotUnavailable,
    StructuralConflict,
    ValidationError,
)
from app.core.scheduling.store import ScheduleStore, read_retry
from app.core.scheduling.types import (
    AppointmentRecord,
    AppointmentStatus,
    TimeRange,
)


logger = logging.getLogger(__name__)

APPOINTMENT_MODES = ("offline", "online")

# Fields accepted by update_appointment
UPDATABLE_FIELDS = frozenset({"start", "end", "status", "notes", "mode", "updated_by"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_range(start: datetime, end: datetime) -> TimeRange:
    """Validated half-open range (raises ValidationError)."""
    if start is None or end is None:
        raise ValidationError("start and end are required")
    return TimeRange(start, end)


class BookingService:
    """
    Creates and updates appointments for one store.

    Usage:
        service = BookingService(store, directory)
        record = await service.create_appointment(
            clinic_id, doctor_id, patient_id,
            TimeRange(start, end),
            {"source": "whatsapp", "notes": "Booked via WhatsApp"},
        )
    """

    def __init__(
        self,
        store: ScheduleStore,
        directory: PatientDirectory,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.directory = directory
        self.clock = clock

    async def _precheck(
        self,
        clinic_id: str,
        doctor_id: str,
        time_range: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> None:
        tz = constraints.load_zone(await self.store.get_clinic_timezone(clinic_id))
        doctor_settings = await constraints.effective_settings(self.store, doctor_id)
        weekday = constraints.day_of_week(constraints.local_date(time_range.start, tz))
        rules = await self.store.list_working_hours(doctor_id, day_of_week=weekday)
        padded = time_range.expand(doctor_settings.buffer_minutes)
        blocked = await self.store.list_blocked(doctor_id, within=time_range)
        appointments = await self.store.list_active_appointments(
            doctor_id, within=padded, exclude_id=exclude_id
        )

        reason = constraints.evaluate(
            time_range,
            now=self.clock(),
            doctor_settings=doctor_settings,
            tz=tz,
            rules=rules,
            blocked=blocked,
            appointments=appointments,
        )
        if reason is not None:
            logger.info(f"Slot unavailable for doctor {doctor_id}: {reason.value}")
            raise SlotUnavailable(reason)

    async def create_appointment(
        self,
        clinic_id: str,
        doctor_id: str,
        patient_id: str,
        time_range: TimeRange,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AppointmentRecord:
        """
        Book ``time_range`` with the doctor.

        Args:
            metadata: optional mode, source, notes, created_by

        Raises:
            ValidationError: bad range or metadata
            NotFoundError: doctor or patient outside the clinic
            SlotUnavailable: pre-check failed (reason attached)
            StructuralConflict: store rejected the insert (race lost)
        """
        metadata = metadata or {}
        mode = metadata.get("mode") or "offline"
        if mode not in APPOINTMENT_MODES:
            raise ValidationError(f"mode must be one of {', '.join(APPOINTMENT_MODES)}")

        await self.store.get_doctor(clinic_id, doctor_id)
        if not await self.directory.patient_exists(clinic_id, patient_id):
            raise NotFoundError("Patient", patient_id)

        await self._precheck(clinic_id, doctor_id, time_range)

        now = self.clock()
        record = AppointmentRecord(
            clinic_id=clinic_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            range=time_range.to_utc(),
            status=AppointmentStatus.SCHEDULED,
            mode=mode,
            source=metadata.get("source") or "manual",
            notes=metadata.get("notes"),
            created_by=metadata.get("created_by"),
            updated_by=metadata.get("created_by"),
            created_at=now,
            updated_at=now,
        )
        try:
            stored = await self.store.insert_appointment(record)
        except StructuralConflict:
            logger.warning(
                f"Booking race lost for doctor {doctor_id} at {time_range.start.isoformat()}"
            )
            raise

        logger.info(
            f"Appointment {stored.id} booked: doctor={doctor_id} "
            f"start={stored.range.start.isoformat()} source={stored.source}"
        )
        return stored

    async def update_appointment(
        self,
        clinic_id: str,
        appointment_id: str,
        changes: dict[str, Any],
    ) -> AppointmentRecord:
        """
        Apply partial changes.

        A range change needs both start and end and is re-checked against
        every constraint, ignoring the appointment itself.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")

        current = await self.get_appointment(clinic_id, appointment_id)
        updated = current

        has_start = changes.get("start") is not None
        has_end = changes.get("end") is not None
        if has_start != has_end:
            raise ValidationError("start and end must be changed together")
        if has_start:
            new_range = build_range(changes["start"], changes["end"])
            await self._precheck(
                clinic_id, current.doctor_id, new_range, exclude_id=current.id
            )
            updated = replace(updated, range=new_range.to_utc())

        if changes.get("status") is not None:
            try:
                status = AppointmentStatus(changes["status"])
            except ValueError:
                raise ValidationError(f"Unknown status: {changes['status']}")
            updated = replace(updated, status=status)

        if changes.get("mode") is not None:
            if changes["mode"] not in APPOINTMENT_MODES:
                raise ValidationError(
                    f"mode must be one of {', '.join(APPOINTMENT_MODES)}"
                )
            updated = replace(updated, mode=changes["mode"])

        if "notes" in changes:
            updated = replace(updated, notes=changes["notes"])

        updated = replace(
            updated,
            updated_by=changes.get("updated_by", current.updated_by),
            updated_at=self.clock(),
        )
        try:
            stored = await self.store.save_appointment(updated)
        except StructuralConflict:
            logger.warning(f"Update of appointment {appointment_id} lost a race")
            raise

        logger.info(f"Appointment {appointment_id} updated (status={stored.status.value})")
        return stored

    @read_retry
    async def get_appointment(self, clinic_id: str, appointment_id: str) -> AppointmentRecord:
        record = await self.store.get_appointment(clinic_id, appointment_id)
        if record is None:
            raise NotFoundError("Appointment", appointment_id)
        return record

    @read_retry
    async def list_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        on_date: Optional[date] = None,
    ) -> list[AppointmentRecord]:
        """Appointments of the clinic ordered by start, optionally for one local date."""
        if doctor_id is not None:
            await self.store.get_doctor(clinic_id, doctor_id)
        within = None
        if on_date is not None:
            tz = constraints.load_zone(await self.store.get_clinic_timezone(clinic_id))
            day_start = datetime.combine(on_date, datetime.min.time(), tzinfo=tz)
            day_end = datetime.combine(on_date + timedelta(days=1), datetime.min.time(), tzinfo=tz)
            within = TimeRange(day_start, day_end)
        return await self.store.list_appointments(
            clinic_id, doctor_id=doctor_id, status=status, within=within
        )
