"""
PostgreSQL Time-Range Store

Implements ScheduleStore on SQLAlchemy async sessions. Overlap between
active appointments of one doctor is rejected by the database exclusion
constraint; the rejection surfaces as StructuralConflict.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import Range, insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.scheduling.errors import (
    NotFoundError,
    StructuralConflict,
    TransientDependencyError,
    ValidationError,
)
from app.core.scheduling.store import ScheduleStore
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
from app.models.database import (
    NO_OVERLAP_CONSTRAINT,
    Appointment,
    BlockedSlot,
    Clinic,
    Doctor as DoctorRow,
    DoctorSettings as DoctorSettingsRow,
    WorkingHour,
)


logger = logging.getLogger(__name__)

EXCLUSION_VIOLATION = "23P01"
UNIQUE_VIOLATION = "23505"


def parse_uuid(value: str, resource: str) -> uuid.UUID:
    """Parse an id; malformed ids are treated as missing records."""
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(resource, value)


def in_clinic(row_clinic_id: uuid.UUID, clinic_id: str) -> bool:
    """Compare as UUIDs so the textual form of ``clinic_id`` does not matter."""
    try:
        return row_clinic_id == uuid.UUID(str(clinic_id))
    except ValueError:
        return False


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_exclusion_violation(exc: IntegrityError) -> bool:
    return _sqlstate(exc) == EXCLUSION_VIOLATION or NO_OVERLAP_CONSTRAINT in str(exc.orig)


def _to_range(time_range: TimeRange) -> Range:
    return Range(time_range.start, time_range.end, bounds="[)")


def _from_range(value: Range) -> TimeRange:
    return TimeRange(value.lower, value.upper)


def _doctor(row: DoctorRow) -> Doctor:
    return Doctor(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        full_name=row.full_name,
        specialization=row.specialization,
        is_active=row.is_active,
    )


def _rule(row: WorkingHour) -> WorkingHourRule:
    return WorkingHourRule(
        id=str(row.id),
        doctor_id=str(row.doctor_id),
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
    )


def _blocked(row: BlockedSlot) -> BlockedInterval:
    return BlockedInterval(
        id=str(row.id),
        doctor_id=str(row.doctor_id),
        range=_from_range(row.blocked_ts),
        reason=row.reason,
        created_at=row.created_at,
    )


def _appointment(row: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=str(row.id),
        clinic_id=str(row.clinic_id),
        doctor_id=str(row.doctor_id),
        patient_id=str(row.patient_id),
        range=_from_range(row.appointment_ts),
        status=AppointmentStatus(row.status),
        mode=row.mode,
        source=row.source,
        notes=row.notes,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlScheduleStore(ScheduleStore):
    """ScheduleStore backed by PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session with commit/rollback; connectivity errors become transient."""
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except (
            OperationalError, InterfaceError, OSError, TimeoutError, asyncio.TimeoutError
        ) as e:
            await session.rollback()
            logger.error(f"Store unreachable: {e}")
            raise TransientDependencyError("Schedule store unavailable") from e
        except DBAPIError as e:
            await session.rollback()
            if e.connection_invalidated:
                logger.error(f"Store connection lost: {e}")
                raise TransientDependencyError("Schedule store unavailable") from e
            raise
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # Clinics and doctors

    async def get_clinic_timezone(self, clinic_id: str) -> str:
        clinic_uuid = parse_uuid(clinic_id, "Clinic")
        async with self._session() as session:
            tz = await session.scalar(select(Clinic.timezone).where(Clinic.id == clinic_uuid))
        if tz is None:
            raise NotFoundError("Clinic", clinic_id)
        return tz

    async def get_doctor(self, clinic_id: str, doctor_id: str) -> Doctor:
        doctor_uuid = parse_uuid(doctor_id, "Doctor")
        clinic_uuid = parse_uuid(clinic_id, "Clinic")
        async with self._session() as session:
            row = await session.scalar(
                select(DoctorRow).where(
                    DoctorRow.id == doctor_uuid,
                    DoctorRow.clinic_id == clinic_uuid,
                )
            )
            if row is None:
                raise NotFoundError("Doctor", doctor_id)
            return _doctor(row)

    async def list_doctors(self, clinic_id: str, active_only: bool = True) -> list[Doctor]:
        clinic_uuid = parse_uuid(clinic_id, "Clinic")
        query = select(DoctorRow).where(DoctorRow.clinic_id == clinic_uuid)
        if active_only:
            query = query.where(DoctorRow.is_active.is_(True))
        query = query.order_by(DoctorRow.full_name, DoctorRow.id)
        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            return [_doctor(row) for row in rows]

    # Settings

    async def get_settings(self, doctor_id: str) -> Optional[DoctorSettings]:
        doctor_uuid = parse_uuid(doctor_id, "Doctor")
        async with self._session() as session:
            row = await session.get(DoctorSettingsRow, doctor_uuid)
            if row is None:
                return None
            return DoctorSettings(
                doctor_id=doctor_id,
                slot_minutes=row.slot_minutes,
                lead_time_minutes=row.lead_time_minutes,
                buffer_minutes=row.buffer_minutes,
            )

    async def upsert_settings(self, doctor_settings: DoctorSettings) -> DoctorSettings:
        doctor_uuid = parse_uuid(doctor_settings.doctor_id, "Doctor")
        values = {
            "slot_minutes": doctor_settings.slot_minutes,
            "lead_time_minutes": doctor_settings.lead_time_minutes,
            "buffer_minutes": doctor_settings.buffer_minutes,
        }
        statement = pg_insert(DoctorSettingsRow).values(doctor_id=doctor_uuid, **values)
        statement = statement.on_conflict_do_update(
            index_elements=[DoctorSettingsRow.doctor_id],
            set_=values,
        )
        async with self._session() as session:
            await session.execute(statement)
        return doctor_settings

    # Working hours

    async def list_working_hours(
        self, doctor_id: str, day_of_week: Optional[int] = None
    ) -> list[WorkingHourRule]:
        doctor_uuid = parse_uuid(doctor_id, "Doctor")
        query = select(WorkingHour).where(WorkingHour.doctor_id == doctor_uuid)
        if day_of_week is not None:
            query = query.where(WorkingHour.day_of_week == day_of_week)
        query = query.order_by(
            WorkingHour.day_of_week, WorkingHour.start_time, WorkingHour.end_time
        )
        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            return [_rule(row) for row in rows]

    async def add_working_hour(self, rule: WorkingHourRule) -> WorkingHourRule:
        row = WorkingHour(
            doctor_id=parse_uuid(rule.doctor_id, "Doctor"),
            day_of_week=rule.day_of_week,
            start_time=rule.start_time,
            end_time=rule.end_time,
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                stored = _rule(row)
        except IntegrityError as e:
            if _sqlstate(e) == UNIQUE_VIOLATION:
                raise ValidationError("Working hour rule already exists") from e
            raise
        return stored

    async def delete_working_hour(self, doctor_id: str, rule_id: str) -> bool:
        statement = delete(WorkingHour).where(
            WorkingHour.id == parse_uuid(rule_id, "Working hour"),
            WorkingHour.doctor_id == parse_uuid(doctor_id, "Doctor"),
        )
        async with self._session() as session:
            result = await session.execute(statement)
        return result.rowcount > 0

    # Blocked intervals

    async def list_blocked(
        self, doctor_id: str, within: Optional[TimeRange] = None
    ) -> list[BlockedInterval]:
        query = select(BlockedSlot).where(
            BlockedSlot.doctor_id == parse_uuid(doctor_id, "Doctor")
        )
        if within is not None:
            query = query.where(BlockedSlot.blocked_ts.overlaps(_to_range(within)))
        query = query.order_by(BlockedSlot.blocked_ts)
        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            return [_blocked(row) for row in rows]

    async def add_blocked(self, interval: BlockedInterval) -> BlockedInterval:
        row = BlockedSlot(
            doctor_id=parse_uuid(interval.doctor_id, "Doctor"),
            blocked_ts=_to_range(interval.range),
            reason=interval.reason,
            created_at=interval.created_at,
        )
        async with self._session() as session:
            session.add(row)
            await session.flush()
            return _blocked(row)

    async def delete_blocked(self, doctor_id: str, blocked_id: str) -> bool:
        statement = delete(BlockedSlot).where(
            BlockedSlot.id == parse_uuid(blocked_id, "Blocked slot"),
            BlockedSlot.doctor_id == parse_uuid(doctor_id, "Doctor"),
        )
        async with self._session() as session:
            result = await session.execute(statement)
        return result.rowcount > 0

    # Appointments

    async def list_active_appointments(
        self,
        doctor_id: str,
        within: TimeRange,
        exclude_id: Optional[str] = None,
    ) -> list[AppointmentRecord]:
        query = select(Appointment).where(
            Appointment.doctor_id == parse_uuid(doctor_id, "Doctor"),
            Appointment.status.in_(list(ACTIVE_STATUSES)),
            Appointment.appointment_ts.overlaps(_to_range(within)),
        )
        if exclude_id is not None:
            query = query.where(Appointment.id != parse_uuid(exclude_id, "Appointment"))
        query = query.order_by(Appointment.appointment_ts)
        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            return [_appointment(row) for row in rows]

    async def insert_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        row = Appointment(
            clinic_id=parse_uuid(record.clinic_id, "Clinic"),
            doctor_id=parse_uuid(record.doctor_id, "Doctor"),
            patient_id=parse_uuid(record.patient_id, "Patient"),
            appointment_ts=_to_range(record.range),
            status=record.status,
            mode=record.mode,
            source=record.source,
            notes=record.notes,
            created_by=record.created_by,
            updated_by=record.updated_by,
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                await session.refresh(row)
                stored = _appointment(row)
        except IntegrityError as e:
            if is_exclusion_violation(e):
                raise StructuralConflict(record.doctor_id) from e
            raise
        return stored

    async def save_appointment(self, record: AppointmentRecord) -> AppointmentRecord:
        appointment_uuid = parse_uuid(record.id, "Appointment")
        try:
            async with self._session() as session:
                row = await session.get(Appointment, appointment_uuid)
                if row is None or not in_clinic(row.clinic_id, record.clinic_id):
                    raise NotFoundError("Appointment", record.id)
                row.appointment_ts = _to_range(record.range)
                row.status = record.status
                row.mode = record.mode
                row.notes = record.notes
                row.updated_by = record.updated_by
                row.updated_at = record.updated_at
                await session.flush()
                stored = _appointment(row)
        except IntegrityError as e:
            if is_exclusion_violation(e):
                raise StructuralConflict(record.doctor_id) from e
            raise
        return stored

    async def get_appointment(
        self, clinic_id: str, appointment_id: str
    ) -> Optional[AppointmentRecord]:
        try:
            appointment_uuid = parse_uuid(appointment_id, "Appointment")
        except NotFoundError:
            return None
        async with self._session() as session:
            row = await session.get(Appointment, appointment_uuid)
            if row is None or not in_clinic(row.clinic_id, clinic_id):
                return None
            return _appointment(row)

    async def list_appointments(
        self,
        clinic_id: str,
        doctor_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        within: Optional[TimeRange] = None,
    ) -> list[AppointmentRecord]:
        query = select(Appointment).where(
            Appointment.clinic_id == parse_uuid(clinic_id, "Clinic")
        )
        if doctor_id is not None:
            query = query.where(Appointment.doctor_id == parse_uuid(doctor_id, "Doctor"))
        if status is not None:
            query = query.where(Appointment.status == status)
        if within is not None:
            query = query.where(Appointment.appointment_ts.overlaps(_to_range(within)))
        query = query.order_by(Appointment.appointment_ts)
        async with self._session() as session:
            rows = (await session.scalars(query)).all()
            return [_appointment(row) for row in rows]
