"""Tests for the PostgreSQL store mapping (no database required)."""

import asyncio
import uuid
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.schema import CreateTable

from app.core.scheduling.errors import NotFoundError, StructuralConflict, TransientDependencyError
from app.core.scheduling.sql_store import (
    SqlScheduleStore,
    _from_range,
    in_clinic,
    _to_range,
    is_exclusion_violation,
    parse_uuid,
)
from app.core.scheduling.types import AppointmentRecord, AppointmentStatus, TimeRange
from app.models.database import NO_OVERLAP_CONSTRAINT, Appointment, BlockedSlot


def utc(hour, minute=0):
    return datetime(2025, 3, 3, hour, minute, tzinfo=timezone.utc)


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


def make_store(flush_error):
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock(side_effect=flush_error)
    return SqlScheduleStore(MagicMock(return_value=session)), session


def make_record():
    return AppointmentRecord(
        clinic_id=str(uuid.uuid4()),
        doctor_id=str(uuid.uuid4()),
        patient_id=str(uuid.uuid4()),
        range=TimeRange(utc(9), utc(9, 30)),
    )


class TestSchema:
    """Test the generated DDL."""

    def test_appointments_exclusion_constraint(self):
        ddl = str(CreateTable(Appointment.__table__).compile(dialect=postgresql.dialect()))

        assert "EXCLUDE USING gist" in ddl
        assert "doctor_id WITH =" in ddl
        assert "appointment_ts WITH &&" in ddl
        assert "status IN ('scheduled', 'confirmed')" in ddl
        assert NO_OVERLAP_CONSTRAINT in ddl
        assert "TSTZRANGE" in ddl

    def test_blocked_slots_use_ranges(self):
        ddl = str(CreateTable(BlockedSlot.__table__).compile(dialect=postgresql.dialect()))

        assert "TSTZRANGE" in ddl


class TestHelpers:
    def test_parse_uuid(self):
        value = uuid.uuid4()

        assert parse_uuid(str(value), "Doctor") == value

    def test_malformed_id_is_not_found(self):
        with pytest.raises(NotFoundError) as exc_info:
            parse_uuid("doc-1", "Doctor")

        assert exc_info.value.resource == "Doctor"

    def test_range_round_trip_is_half_open(self):
        time_range = TimeRange(utc(9), utc(10))

        pg_range = _to_range(time_range)

        assert pg_range.bounds == "[)"
        assert _from_range(pg_range) == time_range

    def test_exclusion_violation_by_sqlstate(self):
        exc = IntegrityError("INSERT", {}, FakeDriverError("conflict", sqlstate="23P01"))

        assert is_exclusion_violation(exc)

    def test_exclusion_violation_by_constraint_name(self):
        exc = IntegrityError(
            "INSERT", {}, FakeDriverError(f'violates exclusion constraint "{NO_OVERLAP_CONSTRAINT}"')
        )

        assert is_exclusion_violation(exc)

    def test_other_integrity_error(self):
        exc = IntegrityError("INSERT", {}, FakeDriverError("fk violation", sqlstate="23503"))

        assert not is_exclusion_violation(exc)


class TestErrorMapping:
    """Test driver errors surface as scheduling errors."""

    @pytest.mark.asyncio
    async def test_exclusion_violation_is_structural_conflict(self):
        error = IntegrityError("INSERT", {}, FakeDriverError("conflict", sqlstate="23P01"))
        store, session = make_store(error)
        record = make_record()

        with pytest.raises(StructuralConflict) as exc_info:
            await store.insert_appointment(record)

        assert exc_info.value.doctor_id == record.doctor_id
        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_integrity_error_propagates(self):
        error = IntegrityError("INSERT", {}, FakeDriverError("fk violation", sqlstate="23503"))
        store, _ = make_store(error)

        with pytest.raises(IntegrityError):
            await store.insert_appointment(make_record())

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self):
        error = OperationalError("INSERT", {}, FakeDriverError("connection refused"))
        store, session = make_store(error)

        with pytest.raises(TransientDependencyError):
            await store.insert_appointment(make_record())

        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_appointment_id_reads_as_missing(self):
        store, _ = make_store(None)

        assert await store.get_appointment(str(uuid.uuid4()), "not-a-uuid") is None

    @pytest.mark.asyncio
    async def test_driver_timeout_is_transient(self):
        store, session = make_store(asyncio.TimeoutError())

        with pytest.raises(TransientDependencyError):
            await store.insert_appointment(make_record())

        session.rollback.assert_awaited_once()


class TestClinicScoping:
    """Test appointment lookups are scoped by clinic UUID."""

    def test_in_clinic_ignores_text_case(self):
        clinic = uuid.uuid4()

        assert in_clinic(clinic, str(clinic).upper())
        assert not in_clinic(clinic, str(uuid.uuid4()))
        assert not in_clinic(clinic, "clinic-1")

    @pytest.mark.asyncio
    async def test_get_appointment_with_uppercase_clinic_id(self):
        clinic = uuid.uuid4()
        row = Appointment(
            id=uuid.uuid4(),
            clinic_id=clinic,
            doctor_id=uuid.uuid4(),
            patient_id=uuid.uuid4(),
            appointment_ts=_to_range(TimeRange(utc(9), utc(9, 30))),
            status=AppointmentStatus.SCHEDULED,
            mode="offline",
            source="manual",
            created_at=utc(8),
            updated_at=utc(8),
        )
        store, session = make_store(None)
        session.get = AsyncMock(return_value=row)

        found = await store.get_appointment(str(clinic).upper(), str(row.id))
        foreign = await store.get_appointment(str(uuid.uuid4()), str(row.id))

        assert found.id == str(row.id)
        assert foreign is None
