"""Tests for the booking service."""

import asyncio
import pytest
from unittest.mock import AsyncMock
from datetime import date, datetime, time, timezone

from app.core.patients.directory import InMemoryPatientDirectory
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.booking import BookingService, build_range
from app.core.scheduling.errors import (
    NotFoundError,
    SchedulingError,
    SlotUnavailable,
    StructuralConflict,
    UnavailableReason,
    ValidationError,
)
from app.core.scheduling.store import InMemoryScheduleStore
from app.core.scheduling.types import (
    AppointmentStatus,
    BlockedInterval,
    DoctorSettings,
    TimeRange,
)

CLINIC = "clinic-1"
MONDAY = date(2025, 3, 3)


def utc(hour, minute=0, day=3):
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


def slot(hour, minute=0, length=30):
    start = utc(hour, minute)
    end_minutes = hour * 60 + minute + length
    return TimeRange(start, utc(end_minutes // 60, end_minutes % 60))


class TestBookingService:
    """Test appointment creation and updates."""

    @pytest.fixture
    def store(self):
        store = InMemoryScheduleStore()
        store.add_clinic(CLINIC, "UTC")
        store.add_clinic("clinic-2", "UTC")
        return store

    @pytest.fixture
    def doctor(self, store):
        doctor = store.add_doctor(CLINIC, "Ayesha Siddiqui", "General")
        store.seed_working_hour(doctor.id, 1, time(9), time(12))
        store.seed_settings(
            DoctorSettings(doctor.id, slot_minutes=30, lead_time_minutes=60, buffer_minutes=0)
        )
        return doctor

    @pytest.fixture
    def directory(self):
        return InMemoryPatientDirectory()

    @pytest.fixture
    def patient(self, directory):
        return directory.add_patient(CLINIC, "Ali Raza", phone="923001234567")

    @pytest.fixture
    def service(self, store, directory):
        return BookingService(store, directory, clock=lambda: utc(0, day=2))

    @pytest.mark.asyncio
    async def test_create_appointment(self, service, doctor, patient):
        record = await service.create_appointment(
            CLINIC,
            doctor.id,
            patient.patient_id,
            slot(10),
            {"source": "whatsapp", "notes": "Booked via WhatsApp", "created_by": "user-1"},
        )

        assert record.id is not None
        assert record.status == AppointmentStatus.SCHEDULED
        assert record.mode == "offline"
        assert record.source == "whatsapp"
        assert record.created_by == "user-1"
        assert record.range == slot(10)

    @pytest.mark.asyncio
    async def test_defaults_to_manual_source(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        assert record.source == "manual"

    @pytest.mark.asyncio
    async def test_outside_working_hours(self, service, doctor, patient):
        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(13))

        assert exc_info.value.reason == UnavailableReason.OUTSIDE_WORKING_HOURS

    @pytest.mark.asyncio
    async def test_range_crossing_shift_end(self, service, doctor, patient):
        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(
                CLINIC, doctor.id, patient.patient_id, slot(11, 45)
            )

        assert exc_info.value.reason == UnavailableReason.OUTSIDE_WORKING_HOURS

    @pytest.mark.asyncio
    async def test_lead_time(self, store, directory, doctor, patient):
        service = BookingService(store, directory, clock=lambda: utc(9, 30))

        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        assert exc_info.value.reason == UnavailableReason.LEAD_TIME

    @pytest.mark.asyncio
    async def test_blocked(self, store, service, doctor, patient):
        await store.add_blocked(
            BlockedInterval(doctor_id=doctor.id, range=TimeRange(utc(10), utc(11)))
        )

        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10, 30))

        assert exc_info.value.reason == UnavailableReason.BLOCKED

    @pytest.mark.asyncio
    async def test_overlapping_appointment(self, service, doctor, patient):
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(
                CLINIC, doctor.id, patient.patient_id, slot(10, 15)
            )

        assert exc_info.value.reason == UnavailableReason.OVERLAPS_APPOINTMENT

    @pytest.mark.asyncio
    async def test_touching_appointments_allowed(self, service, doctor, patient):
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))
        second = await service.create_appointment(
            CLINIC, doctor.id, patient.patient_id, slot(10, 30)
        )

        assert second.range.start == utc(10, 30)

    @pytest.mark.asyncio
    async def test_buffer_applies_to_booking(self, store, service, doctor, patient):
        store.seed_settings(
            DoctorSettings(doctor.id, slot_minutes=30, lead_time_minutes=0, buffer_minutes=15)
        )
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(SlotUnavailable) as exc_info:
            await service.create_appointment(
                CLINIC, doctor.id, patient.patient_id, slot(10, 30)
            )

        assert exc_info.value.reason == UnavailableReason.OVERLAPS_APPOINTMENT

    @pytest.mark.asyncio
    async def test_concurrent_creates_one_wins(self, service, doctor, patient):
        results = await asyncio.gather(
            service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10)),
            service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10, 15)),
            return_exceptions=True,
        )

        booked = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(booked) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], (SlotUnavailable, StructuralConflict))

    @pytest.mark.asyncio
    async def test_store_rejection_is_structural_conflict(self, service, doctor, patient):
        """A stale pre-check still cannot produce an overlap."""
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))
        service._precheck = AsyncMock(return_value=None)

        with pytest.raises(StructuralConflict):
            await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

    @pytest.mark.asyncio
    async def test_naive_range_rejected(self, service, doctor, patient):
        with pytest.raises(ValidationError):
            await service.create_appointment(
                CLINIC,
                doctor.id,
                patient.patient_id,
                build_range(datetime(2025, 3, 3, 10), datetime(2025, 3, 3, 10, 30)),
            )

    @pytest.mark.asyncio
    async def test_invalid_mode(self, service, doctor, patient):
        with pytest.raises(ValidationError):
            await service.create_appointment(
                CLINIC, doctor.id, patient.patient_id, slot(10), {"mode": "carrier-pigeon"}
            )

    @pytest.mark.asyncio
    async def test_doctor_of_other_clinic(self, service, doctor, directory):
        other = directory.add_patient("clinic-2", "Sana Iqbal")

        with pytest.raises(NotFoundError):
            await service.create_appointment("clinic-2", doctor.id, other.patient_id, slot(10))

    @pytest.mark.asyncio
    async def test_unknown_patient(self, service, doctor):
        with pytest.raises(NotFoundError):
            await service.create_appointment(CLINIC, doctor.id, "missing", slot(10))

    @pytest.mark.asyncio
    async def test_every_generated_slot_is_bookable(self, store, service, doctor, patient):
        generator = AvailabilityGenerator(store, clock=lambda: utc(0, day=2))
        slots = await generator.generate_slots(CLINIC, doctor.id, MONDAY)

        for s in slots:
            await service.create_appointment(CLINIC, doctor.id, patient.patient_id, s.range)

        assert await generator.generate_slots(CLINIC, doctor.id, MONDAY) == []
        assert len(await service.list_appointments(CLINIC, doctor_id=doctor.id)) == 6


class TestUpdateAppointment:
    """Test rescheduling and status changes."""

    @pytest.fixture
    def store(self):
        store = InMemoryScheduleStore()
        store.add_clinic(CLINIC, "UTC")
        store.add_clinic("clinic-2", "UTC")
        return store

    @pytest.fixture
    def doctor(self, store):
        doctor = store.add_doctor(CLINIC, "Ayesha Siddiqui")
        store.seed_working_hour(doctor.id, 1, time(9), time(12))
        store.seed_settings(DoctorSettings(doctor.id, slot_minutes=30, lead_time_minutes=0))
        return doctor

    @pytest.fixture
    def directory(self):
        return InMemoryPatientDirectory()

    @pytest.fixture
    def patient(self, directory):
        return directory.add_patient(CLINIC, "Ali Raza")

    @pytest.fixture
    def service(self, store, directory):
        return BookingService(store, directory, clock=lambda: utc(0, day=2))

    @pytest.mark.asyncio
    async def test_reschedule_overlapping_itself(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        moved = await service.update_appointment(
            CLINIC, record.id, {"start": utc(10, 15), "end": utc(10, 45), "updated_by": "user-2"}
        )

        assert moved.range == TimeRange(utc(10, 15), utc(10, 45))
        assert moved.updated_by == "user-2"

    @pytest.mark.asyncio
    async def test_reschedule_onto_other_appointment(self, service, doctor, patient):
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(11))
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(SlotUnavailable) as exc_info:
            await service.update_appointment(
                CLINIC, record.id, {"start": utc(10, 45), "end": utc(11, 15)}
            )

        assert exc_info.value.reason == UnavailableReason.OVERLAPS_APPOINTMENT

    @pytest.mark.asyncio
    async def test_start_without_end(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(ValidationError):
            await service.update_appointment(CLINIC, record.id, {"start": utc(10, 15)})

    @pytest.mark.asyncio
    async def test_unknown_field(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(ValidationError):
            await service.update_appointment(CLINIC, record.id, {"doctor_id": "other"})

    @pytest.mark.asyncio
    async def test_cancel_frees_the_range(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        cancelled = await service.update_appointment(CLINIC, record.id, {"status": "cancelled"})
        rebooked = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert rebooked.id != record.id

    @pytest.mark.asyncio
    async def test_reactivation_protected_by_store(self, service, doctor, patient):
        first = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))
        await service.update_appointment(CLINIC, first.id, {"status": "cancelled"})
        await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(StructuralConflict):
            await service.update_appointment(CLINIC, first.id, {"status": "scheduled"})

    @pytest.mark.asyncio
    async def test_unknown_status(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(ValidationError):
            await service.update_appointment(CLINIC, record.id, {"status": "postponed"})

    @pytest.mark.asyncio
    async def test_foreign_clinic_appointment(self, service, doctor, patient):
        record = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(10))

        with pytest.raises(NotFoundError):
            await service.update_appointment("clinic-2", record.id, {"notes": "moved"})

    @pytest.mark.asyncio
    async def test_list_by_date_and_status(self, service, doctor, patient):
        a = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(11))
        b = await service.create_appointment(CLINIC, doctor.id, patient.patient_id, slot(9))
        await service.update_appointment(CLINIC, a.id, {"status": "confirmed"})

        on_monday = await service.list_appointments(CLINIC, on_date=MONDAY)
        confirmed = await service.list_appointments(CLINIC, status=AppointmentStatus.CONFIRMED)
        on_tuesday = await service.list_appointments(CLINIC, on_date=date(2025, 3, 4))

        assert [r.id for r in on_monday] == [b.id, a.id]
        assert [r.id for r in confirmed] == [a.id]
        assert on_tuesday == []

    @pytest.mark.asyncio
    async def test_errors_share_base_class(self, service):
        with pytest.raises(SchedulingError):
            await service.get_appointment(CLINIC, "missing")
