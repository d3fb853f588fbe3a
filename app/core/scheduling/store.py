"""
Time-Range Store

Durable source of truth for doctors, schedule rules, blocked periods and
appointments. The store itself rejects overlapping active appointments
for the same doctor; callers never rely on their own pre-check alone.

Implementations:
    - InMemoryScheduleStore: process-local, check-and-insert under a
      per-doctor asyncio.Lock (development and tests)
    - SqlScheduleStore (app.core.scheduling.sql_store): PostgreSQL with an
      exclusion constraint
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import time
from typing import Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.core.scheduling.errors import (
    NotFoundError,
    StructuralConflict,
    TransientDependencyError,
    ValidationError,
)
from app.core.scheduling.types import (
    ACTIVE_STATUSES,
    AppointmentRecord,
    AppointmentStatus,
    BlockedInterval,
    Doctor,
    DoctorSettings,
    TimeRange,
    WorkingHourRule,
)


logger = logging.getLogger(__name__)


# Retry policy for read paths. Writes surface TransientDependencyError directly.
read_retry = retry(
    retry=retry_if_exception_type(TransientDependencyError),
    stop=stop_after_attempt(settings.read_retry_attempts),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    reraise=True,
)


class ScheduleStore(ABC):
    """Storage boundary for the scheduling core."""

    # Clinics and doctors

    @abstractmethod
    async def get_clinic_timezone(self, clinic_id: str) -> str:
        """IANA time zone name of the clinic. Raises NotFoundError."""

    @abstractmethod
    async def get_doctor(self, clinic_id: str, doctor_id: str) -> Doctor:
        """Doctor inside the clinic. Raises NotFoundError otherwise."""

    @abstractmethod
    async def list_doctors(self, clinic_id: str, active_only: bool = True) -> list[Doctor]:
        """Doctors of the clinic ordered by name then id."""

    # Settings

    @abstractmethod
    async def get_settings(self, doctor_id: str) -> Optional[DoctorSettings]:
        ...

    @abstractmethod
    async def upsert_settings(self, doctor_settings: DoctorSettings) -> DoctorSettings:
        ...

    # Working hours

    @abstractmethod
    async def list_working_hours(
        self, doctor_id: str, day_of_week: Optional[int] = None
    ) -> list[WorkingHourRule]:
        ...

    @abstractmethod
    async def add_working_hour(self, rule: WorkingHourRule) -> WorkingHourRule:
        """Insert a rule. Raises ValidationError on a duplicate rule."""

    @abstractmethod
    async def delete_working_hour(self, doctor_id: str, rule_id: str) -> bool:
        ...

    # Blocked intervals

    @abstractmethod
    async def list_blocked(
        self, doctor_id: str, within: Optional[TimeRange] = None
    ) -> list[BlockedInterval]:
        """Blocked intervals, optionally only those overlapping ``within``."""

    @abstractmethod
    async def add_blocked(self, interval: BlockedInterval) -> BlockedInterval:
        ...

    @abstractmethod
    async def delete_blocked(self, doctor_id: str, blocked_id: str) -> bool:
        ...

    # Appointments

    @abstractmethod
    async def list_active_appointments(
        self,
        doctor_id: str,
        within: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> list[AppointmentRecord]:
        """Scheduled/confirmed appointments overlapping ``within``."""

    @abstractmethod
    async def insert_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        """Atomically insert. Raises StructuralConflict on overlap."""

    @abstractmethod
    async def save_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        """Atomically replace an existing appointment. Raises StructuralConflict on overlap."""

    @abstractmethod
    async def get_appointment(
        self, clinic_id: str, appointment_id: str
    ) -> Optional[AppointmentRecord]:
        ...

    @abstractmethod
    async def list_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        within: Optional[TimeRange] = None,
    ) -> list[AppointmentRecord]:
        """Appointments of the clinic ordered by start."""


class InMemoryScheduleStore(ScheduleStore):
    """
    Process-local store.

    Appointment writes for one doctor are serialized by an asyncio.Lock,
    so the overlap check and the insert happen as one step.
    """

    def __init__(self):
        self._clinics: dict[str, str] = {}
        self._doctors: dict[str, Doctor] = {}
        self._settings: dict[str, DoctorSettings] = {}
        self._working_hours: dict[str, WorkingHourRule] = {}
        self._blocked: dict[str, BlockedInterval] = {}
        self._appointments: dict[str, AppointmentRecord] = {}
        self._doctor_locks: dict[str, asyncio.Lock] = {}

    # Seeding helpers (synchronous, for setup code and tests)

    def add_clinic(self, clinic_id: str, timezone: str = "UTC") -> None:
        self._clinics[clinic_id] = timezone

    def add_doctor(
        self,
        clinic_id: str,
        full_name: str,
        specialization: Optional[str] = None,
        doctor_id: Optional[str] = None,
        is_active: bool = True,
    ) -> Doctor:
        doctor = Doctor(
            id=doctor_id or str(uuid.uuid4()),
            clinic_id=clinic_id,
            full_name=full_name,
            specialization=specialization,
            is_active=is_active,
        )
        self._doctors[doctor.id] = doctor
        return doctor

    def seed_working_hour(
        self, doctor_id: str, day_of_week: int, start: time, end: time
    ) -> WorkingHourRule:
        rule = WorkingHourRule(
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            id=str(uuid.uuid4()),
        )
        self._working_hours[rule.id] = rule
        return rule

    def seed_settings(self, doctor_settings: DoctorSettings) -> None:
        self._settings[doctor_settings.doctor_id] = doctor_settings

    def _lock_for(self, doctor_id: str) -> asyncio.Lock:
        lock = self._doctor_locks.get(doctor_id)
        if lock is None:
            lock = asyncio.Lock()
            self._doctor_locks[doctor_id] = lock
        return lock

    # Clinics and doctors

    async def get_clinic_timezone(self, clinic_id: str) -> str:
        if clinic_id not in self._clinics:
            raise NotFoundError("Clinic", clinic_id)
        return self._clinics[clinic_id]

    async def get_doctor(self, clinic_id: str, doctor_id: str) -> Doctor:
        doctor = self._doctors.get(doctor_id)
        if doctor is None or doctor.clinic_id != clinic_id:
            raise NotFoundError("Doctor", doctor_id)
        return doctor

    async def list_doctors(self, clinic_id: str, active_only: bool = True) -> list[Doctor]:
        doctors = [
            d for d in self._doctors.values()
            if d.clinic_id == clinic_id and (d.is_active or not active_only)
        ]
        return sorted(doctors, key=lambda d: (d.full_name, d.id))

    # Settings

    async def get_settings(self, doctor_id: str) -> Optional[DoctorSettings]:
        return self._settings.get(doctor_id)

    async def upsert_settings(self, doctor_settings: DoctorSettings) -> DoctorSettings:
        self._settings[doctor_settings.doctor_id] = doctor_settings
        return doctor_settings

    # Working hours

    async def list_working_hours(
        self, doctor_id: str, day_of_week: Optional[int] = None
    ) -> list[WorkingHourRule]:
        rules = [
            r for r in self._working_hours.values()
            if r.doctor_id == doctor_id
            and (day_of_week is None or r.day_of_week == day_of_week)
        ]
        return sorted(rules, key=lambda r: (r.day_of_week, r.start_time, r.end_time))

    async def add_working_hour(self, rule: WorkingHourRule) -> WorkingHourRule:
        for existing in self._working_hours.values():
            if (
                existing.doctor_id == rule.doctor_id
                and existing.day_of_week == rule.day_of_week
                and existing.start_time == rule.start_time
                and existing.end_time == rule.end_time
            ):
                raise ValidationError("Working hour rule already exists")
        stored = replace(rule, id=str(uuid.uuid4()))
        self._working_hours[stored.id] = stored
        return stored

    async def delete_working_hour(self, doctor_id: str, rule_id: str) -> bool:
        rule = self._working_hours.get(rule_id)
        if rule is None or rule.doctor_id != doctor_id:
            return False
        del self._working_hours[rule_id]
        return True

    # Blocked intervals

    async def list_blocked(
        self, doctor_id: str, within: Optional[TimeRange] = None
    ) -> list[BlockedInterval]:
        blocked = [
            b for b in self._blocked.values()
            if b.doctor_id == doctor_id and (within is None or b.range.overlaps(within))
        ]
        return sorted(blocked, key=lambda b: b.range.start)

    async def add_blocked(self, interval: BlockedInterval) -> BlockedInterval:
        stored = replace(interval, id=str(uuid.uuid4()))
        self._blocked[stored.id] = stored
        return stored

    async def delete_blocked(self, doctor_id: str, blocked_id: str) -> bool:
        interval = self._blocked.get(blocked_id)
        if interval is None or interval.doctor_id != doctor_id:
            return False
        del self._blocked[blocked_id]
        return True

    # Appointments

    def _conflicts(
        self, doctor_id: str, time_range: TimeRange, exclude_id: Optional[str]
    ) -> list[AppointmentRecord]:
        return [
            a for a in self._appointments.values()
            if a.doctor_id == doctor_id
            and a.status in ACTIVE_STATUSES
            and a.id != exclude_id
            and a.range.overlaps(time_range)
        ]

    async def list_active_appointments(
        self,
        doctor_id: str,
        within: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> list[AppointmentRecord]:
        return sorted(
            self._conflicts(doctor_id, within, exclude_id),
            key=lambda a: a.range.start,
        )

    async def insert_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        async with self._lock_for(record.doctor_id):
            if record.status in ACTIVE_STATUSES and self._conflicts(
                record.doctor_id, record.range, None
            ):
                raise StructuralConflict(record.doctor_id)
            stored = replace(record, id=record.id or str(uuid.uuid4()))
            self._appointments[stored.id] = stored
            return stored

    async def save_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        if record.id not in self._appointments:
            raise NotFoundError("Appointment", record.id)
        async with self._lock_for(record.doctor_id):
            if record.status in ACTIVE_STATUSES and self._conflicts(
                record.doctor_id, record.range, record.id
            ):
                raise StructuralConflict(record.doctor_id)
            self._appointments[record.id] = record
            return record

    async def get_appointment(
        self, clinic_id: str, appointment_id: str
    ) -> Optional[AppointmentRecord]:
        record = self._appointments.get(appointment_id)
        if record is None or record.clinic_id != clinic_id:
            return None
        return record

    async def list_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        within: Optional[TimeRange] = None,
    ) -> list[AppointmentRecord]:
        records = [
            a for a in self._appointments.values()
            if a.clinic_id == clinic_id
            and (doctor_id is None or a.doctor_id == doctor_id)
            and (status is None or a.status == status)
            and (within is None or a.range.overlaps(within))
        ]
        return sorted(records, key=lambda a: a.range.start)
