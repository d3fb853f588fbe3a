"""Tests for reply templates."""

import pytest
from datetime import datetime
from zoneinfo import ZoneInfo

from app.core.scheduling.response import ResponseGenerator, text_message
from app.core.scheduling.types import Doctor, Slot

KARACHI = ZoneInfo("Asia/Karachi")


class TestResponseGenerator:
    """Test template formatting."""

    @pytest.fixture
    def generator(self):
        return ResponseGenerator()

    def test_text_message(self):
        assert text_message("Hi") == {"type": "text", "text": {"body": "Hi"}}

    def test_doctor_list(self, generator):
        doctors = [
            Doctor(id="d1", clinic_id="c", full_name="Ayesha Siddiqui", specialization="Cardiology"),
            Doctor(id="d2", clinic_id="c", full_name="Bilal Ahmed"),
        ]

        text = generator.format_doctors(doctors)

        assert "1) Dr Ayesha Siddiqui (Cardiology)" in text
        assert "2) Dr Bilal Ahmed (General)" in text

    def test_empty_doctor_list(self, generator):
        assert "no doctors are available" in generator.format_doctors([])

    def test_slots_in_local_time(self, generator):
        slots = [
            Slot(
                start=datetime(2025, 11, 20, 10, 0, tzinfo=KARACHI),
                end=datetime(2025, 11, 20, 10, 30, tzinfo=KARACHI),
                slot_minutes=30,
            )
        ]

        text = generator.format_slots(slots, "Available slots on 2025-11-20:")

        assert text.splitlines()[0] == "Available slots on 2025-11-20:"
        assert "1) Thu 20 Nov 2025, 10:00" in text
        assert text.endswith("Reply with the slot number to book.")

    def test_multiple_patients_offers_someone_else(self, generator):
        text = generator.multiple_patients(
            [{"full_name": "Ali Raza"}, {"full_name": "Sara Khan"}]
        )

        assert "1) Ali Raza" in text
        assert "2) Sara Khan" in text
        assert "3) Someone else" in text

    def test_relationship_menu(self, generator):
        text = generator.relationship_menu()

        assert "1) Son" in text
        assert "7) Other" in text

    def test_patient_registered(self, generator):
        assert generator.patient_registered("Sara Khan", "daughter") == (
            "Got it. Sara Khan added as daughter."
        )
        assert generator.patient_registered("Ali Raza", "self").startswith("Thanks, Ali Raza.")

    def test_patient_found(self, generator):
        assert generator.patient_found("Sara Khan", "wife") == (
            "Sara Khan is already on file as your wife."
        )
        assert generator.patient_found("Ali Raza", "self") == "Welcome back, Ali Raza."

    def test_booking_confirmed(self, generator):
        slot = Slot(
            start=datetime(2025, 11, 20, 10, 0, tzinfo=KARACHI),
            end=datetime(2025, 11, 20, 10, 30, tzinfo=KARACHI),
            slot_minutes=30,
        )

        text = generator.booking_confirmed(slot, "apt-123")

        assert text == "Appointment confirmed for Thu 20 Nov 2025, 10:00. Reference ID: apt-123"
