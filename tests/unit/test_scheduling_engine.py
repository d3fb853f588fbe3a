"""Tests for the conversation engine."""

import asyncio
import pytest
from datetime import datetime, time, timezone
from unittest.mock import AsyncMock, patch

from app.core.intelligence.intent.classifier import IntentClassifier
from app.core.intelligence.session.manager import SessionManager
from app.core.intelligence.session.state import ConversationState
from app.core.patients.directory import InMemoryPatientDirectory
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.booking import BookingService
from app.core.scheduling.engine import ConversationEngine, create_conversation_engine
from app.core.scheduling.errors import TransientDependencyError
from app.core.scheduling.flow import ConversationFlow
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.store import InMemoryScheduleStore
from app.core.scheduling.types import DoctorSettings

CLINIC = "clinic-1"
PHONE = "923001234567"
NOW = datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc)
APOLOGY = ResponseGenerator().apology()


def bodies(replies):
    return [r["text"]["body"] for r in replies]


@pytest.fixture(autouse=True)
def no_redis():
    """Sessions use the in-memory fallback."""
    with patch("app.core.intelligence.session.manager.get_redis", return_value=None):
        yield


@pytest.fixture
def store():
    store = InMemoryScheduleStore()
    store.add_clinic(CLINIC, "UTC")
    doctor = store.add_doctor(CLINIC, "Ayesha Siddiqui", "General", doctor_id="doc-1")
    store.seed_working_hour(doctor.id, 1, time(9), time(12))
    store.seed_settings(DoctorSettings(doctor.id, slot_minutes=30, lead_time_minutes=0))
    return store


@pytest.fixture
def directory():
    directory = InMemoryPatientDirectory()
    directory.add_patient(CLINIC, "Ali Raza", phone=PHONE, patient_id="patient-ali")
    directory.add_patient(CLINIC, "Sara Khan", phone="923009999999", patient_id="patient-sara")
    return directory


@pytest.fixture
def sessions():
    sessions = SessionManager()
    sessions._lock_wait = 0.05
    return sessions


@pytest.fixture
def engine(store, directory, sessions):
    clock = lambda: NOW
    flow = ConversationFlow(
        store,
        directory,
        AvailabilityGenerator(store, clock=clock),
        BookingService(store, directory, clock=clock),
        responses=ResponseGenerator(),
        classifier=IntentClassifier(),
    )
    return ConversationEngine(flow, sessions=sessions)


async def walk_to_slots(engine, phone=PHONE):
    """Known patient picks doctor 1 on Monday."""
    for i, text in enumerate(["book", "1", "1", "2025-03-03"]):
        await engine.process_inbound_message(CLINIC, phone, text, f"{phone}-{i}")


class TestProcessInboundMessage:
    """Test the per-turn pipeline."""

    @pytest.mark.asyncio
    async def test_first_message_creates_session(self, engine):
        replies = await engine.process_inbound_message(CLINIC, PHONE, "book", "wamid.1")

        assert "Ali Raza (me)" in bodies(replies)[0]
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.ASK_PATIENT_OR_OTHER
        assert session.version == 1
        assert session.last_message_id == "wamid.1"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_ignored(self, engine):
        await engine.process_inbound_message(CLINIC, PHONE, "book", "wamid.1")

        replies = await engine.process_inbound_message(CLINIC, PHONE, "book", "wamid.1")

        assert replies == []
        session = await engine.get_session(CLINIC, PHONE)
        assert session.version == 1
        assert session.state == ConversationState.ASK_PATIENT_OR_OTHER

    @pytest.mark.asyncio
    async def test_messages_without_id_are_never_duplicates(self, engine):
        await engine.process_inbound_message(CLINIC, PHONE, "hello")
        await engine.process_inbound_message(CLINIC, PHONE, "hello")

        assert (await engine.get_session(CLINIC, PHONE)).version == 2

    @pytest.mark.asyncio
    async def test_booking_then_new_booking(self, engine, store):
        await walk_to_slots(engine)

        replies = await engine.process_inbound_message(CLINIC, PHONE, "1", "wamid.confirm")
        assert "Appointment confirmed for Mon 03 Mar 2025, 09:00" in bodies(replies)[0]
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.DONE
        assert session.context == {}

        await engine.process_inbound_message(CLINIC, PHONE, "book again", "wamid.again")
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.ASK_PATIENT_OR_OTHER
        assert session.context["patient_id"] == "patient-ali"

        booked = await store.list_appointments(CLINIC)
        assert [a.patient_id for a in booked] == ["patient-ali"]

    @pytest.mark.asyncio
    async def test_two_patients_race_for_one_slot(self, engine, store):
        await walk_to_slots(engine, PHONE)
        await walk_to_slots(engine, "923009999999")

        first, second = await asyncio.gather(
            engine.process_inbound_message(CLINIC, PHONE, "1", "race-a"),
            engine.process_inbound_message(CLINIC, "923009999999", "1", "race-b"),
        )

        states = {
            (await engine.get_session(CLINIC, PHONE)).state,
            (await engine.get_session(CLINIC, "923009999999")).state,
        }
        assert states == {ConversationState.DONE, ConversationState.ASK_SLOT}
        assert len(await store.list_appointments(CLINIC)) == 1

        loser = first if "Sorry, that slot was just taken" in bodies(first)[0] else second
        assert "1) Mon 03 Mar 2025, 09:30" in bodies(loser)[0]

    @pytest.mark.asyncio
    async def test_concurrent_replays_from_one_phone_book_once(self, engine, store, sessions):
        sessions._lock_wait = 1.0
        await walk_to_slots(engine)

        first, second = await asyncio.gather(
            engine.process_inbound_message(CLINIC, PHONE, "1"),
            engine.process_inbound_message(CLINIC, PHONE, "1"),
        )

        confirmations = [
            replies for replies in (first, second)
            if "Appointment confirmed" in bodies(replies)[0]
        ]
        assert len(confirmations) == 1
        assert len(await store.list_appointments(CLINIC)) == 1
        # The replay ran after the booking and started over
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.IDLE
        assert session.version == 6

    @pytest.mark.asyncio
    async def test_unexpected_error_resets_to_idle(self, engine):
        await walk_to_slots(engine)
        engine.flow.step = AsyncMock(side_effect=RuntimeError("boom"))

        replies = await engine.process_inbound_message(CLINIC, PHONE, "1", "wamid.x")

        assert bodies(replies) == [APOLOGY]
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.IDLE
        assert session.context == {}
        assert session.last_message_id == "wamid.x"

    @pytest.mark.asyncio
    async def test_transient_error_leaves_session_untouched(self, engine):
        await walk_to_slots(engine)
        before = await engine.get_session(CLINIC, PHONE)
        engine.flow.step = AsyncMock(side_effect=TransientDependencyError("db down"))

        replies = await engine.process_inbound_message(CLINIC, PHONE, "1", "wamid.x")

        assert bodies(replies) == [APOLOGY]
        after = await engine.get_session(CLINIC, PHONE)
        assert after == before

    @pytest.mark.asyncio
    async def test_busy_session_gets_apology(self, engine, sessions):
        async with sessions.lock(CLINIC, PHONE):
            replies = await engine.process_inbound_message(CLINIC, PHONE, "book", "wamid.1")

        assert bodies(replies) == [APOLOGY]
        assert await engine.get_session(CLINIC, PHONE) is None


class TestDelivery:
    """Test outbound delivery."""

    @pytest.mark.asyncio
    async def test_no_channel(self, engine):
        assert await engine.deliver_replies(CLINIC, PHONE, [{"type": "text"}]) == 0

    @pytest.mark.asyncio
    async def test_replies_sent_in_order(self, engine):
        engine.channel = AsyncMock()
        engine.channel.send = AsyncMock(return_value="wamid.out")
        replies = [{"type": "text", "text": {"body": "a"}}, {"type": "text", "text": {"body": "b"}}]

        delivered = await engine.deliver_replies(CLINIC, PHONE, replies)

        assert delivered == 2
        assert [c.args for c in engine.channel.send.call_args_list] == [
            (CLINIC, PHONE, replies[0]),
            (CLINIC, PHONE, replies[1]),
        ]

    @pytest.mark.asyncio
    async def test_delivery_stops_at_first_failure(self, engine):
        engine.channel = AsyncMock()
        engine.channel.send = AsyncMock(side_effect=["wamid.out", TransientDependencyError("down"), "x"])

        delivered = await engine.deliver_replies(CLINIC, PHONE, [{}, {}, {}])

        assert delivered == 1
        assert engine.channel.send.call_count == 2

    @pytest.mark.asyncio
    async def test_failed_delivery_keeps_new_state(self, engine):
        engine.channel = AsyncMock()
        engine.channel.send = AsyncMock(side_effect=TransientDependencyError("down"))

        replies = await engine.handle_message(CLINIC, PHONE, "book", "wamid.1")

        assert len(replies) == 1
        session = await engine.get_session(CLINIC, PHONE)
        assert session.state == ConversationState.ASK_PATIENT_OR_OTHER


class TestSessionAdmin:
    @pytest.mark.asyncio
    async def test_reset_session(self, engine):
        await engine.process_inbound_message(CLINIC, PHONE, "book", "wamid.1")

        assert await engine.reset_session(CLINIC, PHONE) is True
        assert await engine.get_session(CLINIC, PHONE) is None
        assert await engine.reset_session(CLINIC, PHONE) is False

    def test_create_conversation_engine(self, store, directory, sessions):
        engine = create_conversation_engine(store, directory, sessions=sessions)

        assert engine.channel is None
        assert engine.flow.store is store
        assert engine.flow.booking.directory is directory
