"""
Conversation Flow Manager.

Explicit transition function for the WhatsApp booking conversation:

    step(state, context, text) -> FlowOutcome(next_state, context, replies)

One handler per ConversationState in a dispatch table. Handlers never
mutate the incoming context; they return a new one. Re-prompts return the
context unchanged.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional

from app.config import settings
from app.core.intelligence.intent.classifier import IntentClassifier, get_intent_classifier
from app.core.intelligence.intent.types import Intent, IntentResult
from app.core.intelligence.session.state import ConversationState, can_transition
from app.core.patients.directory import (
    RELATIONSHIPS,
    SELF_RELATIONSHIP,
    PatientDirectory,
)
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.booking import BookingService
from app.core.scheduling.errors import SlotUnavailable, StructuralConflict
from app.core.scheduling.response import ResponseGenerator, get_response_generator, text_message
from app.core.scheduling.store import ScheduleStore, read_retry
from app.core.scheduling.types import Doctor, Slot

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CHOICE_PATTERN = re.compile(r"^\s*(\d+)\b")


@dataclass
class FlowOutcome:
    """Result of one conversation turn."""

    next_state: ConversationState
    context: dict = field(default_factory=dict)
    replies: list[dict] = field(default_factory=list)


@dataclass
class Turn:
    """Who the turn is for."""

    clinic_id: str
    phone: str


def parse_choice(text: Optional[str]) -> Optional[int]:
    """Leading number of a reply ("2", "2) Daughter"), or None."""
    match = CHOICE_PATTERN.match(text or "")
    return int(match.group(1)) if match else None


def parse_date_input(text: Optional[str], today: date) -> Optional[date]:
    """Accept 'today', 'tomorrow' or YYYY-MM-DD; None for anything else."""
    value = (text or "").strip().lower()
    if value == "today":
        return today
    if value == "tomorrow":
        return today + timedelta(days=1)
    if DATE_PATTERN.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


Handler = Callable[[Turn, dict, str], Awaitable[FlowOutcome]]


class ConversationFlow:
    """
    State machine for booking conversations.

    Usage:
        flow = ConversationFlow(store, directory, availability, booking)
        outcome = await flow.step(
            ConversationState.IDLE, {}, "book",
            clinic_id=clinic_id, phone=phone,
        )
    """

    def __init__(
        self,
        store: ScheduleStore,
        directory: PatientDirectory,
        availability: AvailabilityGenerator,
        booking: BookingService,
        responses: Optional[ResponseGenerator] = None,
        classifier: Optional[IntentClassifier] = None,
        max_doctor_choices: Optional[int] = None,
        max_slot_retries: Optional[int] = None,
    ):
        self.store = store
        self.directory = directory
        self.availability = availability
        self.booking = booking
        self.responses = responses or get_response_generator()
        self.classifier = classifier or get_intent_classifier()
        self.max_doctor_choices = max_doctor_choices or settings.max_doctor_choices
        self.max_slot_retries = (
            settings.max_slot_retries if max_slot_retries is None else max_slot_retries
        )

        self.handlers: dict[ConversationState, Handler] = {
            ConversationState.IDLE: self._idle,
            ConversationState.ASK_PATIENT_OR_OTHER: self._ask_patient_or_other,
            ConversationState.ASK_EXISTING_PATIENT_CHOICE: self._ask_existing_patient_choice,
            ConversationState.ASK_FAMILY_MEMBER_NAME: self._ask_family_member_name,
            ConversationState.ASK_FAMILY_RELATIONSHIP: self._ask_family_relationship,
            ConversationState.ASK_DOCTOR: self._ask_doctor,
            ConversationState.ASK_DATE: self._ask_date,
            ConversationState.ASK_SLOT: self._ask_slot,
            ConversationState.DONE: self._done,
        }

    async def step(
        self,
        state: ConversationState,
        context: dict,
        text: Optional[str],
        *,
        clinic_id: str,
        phone: str,
    ) -> FlowOutcome:
        """Run one turn.

        Args:
            state: Current state label
            context: Current context (not mutated)
            text: Inbound message text
            clinic_id: Clinic the conversation belongs to
            phone: Counterparty phone

        Returns:
            FlowOutcome with the next state, the full new context and replies
        """
        handler = self.handlers.get(state)
        if handler is None:
            return self._reset(self.responses.fallback())

        outcome = await handler(Turn(clinic_id, phone), copy.deepcopy(context or {}), text or "")

        if not can_transition(state, outcome.next_state):
            logger.error(f"Unexpected transition {state.value} -> {outcome.next_state.value}")
        logger.debug(f"Flow {clinic_id}:{phone} {state.value} -> {outcome.next_state.value}")
        return outcome

    # === Helpers ===

    def _reset(self, body: str) -> FlowOutcome:
        return FlowOutcome(ConversationState.IDLE, {}, [text_message(body)])

    def _stay(self, state: ConversationState, context: dict, body: str) -> FlowOutcome:
        return FlowOutcome(state, context, [text_message(body)])

    @read_retry
    async def _find_patients(self, turn: Turn):
        return await self.directory.find_patients_by_phone(turn.clinic_id, turn.phone)

    @read_retry
    async def _list_doctors(self, clinic_id: str) -> list[Doctor]:
        doctors = await self.store.list_doctors(clinic_id, active_only=True)
        return doctors[: self.max_doctor_choices]

    async def _start_booking(self, turn: Turn, intent: IntentResult) -> FlowOutcome:
        if intent.for_other:
            return FlowOutcome(
                ConversationState.ASK_FAMILY_MEMBER_NAME,
                {"registering_self": False},
                [text_message(self.responses.ask_patient_name())],
            )

        patients = await self._find_patients(turn)
        if not patients:
            return FlowOutcome(
                ConversationState.ASK_PATIENT_OR_OTHER,
                {},
                [text_message(self.responses.unknown_patient_choice())],
            )
        if len(patients) == 1:
            patient = patients[0]
            return FlowOutcome(
                ConversationState.ASK_PATIENT_OR_OTHER,
                {"patient_id": patient.patient_id, "patient_name": patient.full_name},
                [text_message(self.responses.known_patient_choice(patient.full_name))],
            )

        candidates = [p.to_dict() for p in patients]
        return FlowOutcome(
            ConversationState.ASK_EXISTING_PATIENT_CHOICE,
            {"patient_candidates": candidates},
            [text_message(self.responses.multiple_patients(candidates))],
        )

    async def _offer_doctors(
        self, turn: Turn, context: dict, intro: Optional[str] = None
    ) -> FlowOutcome:
        doctors = await self._list_doctors(turn.clinic_id)
        if not doctors:
            return self._reset(self.responses.format_doctors([]))

        context["doctors"] = [d.to_dict() for d in doctors]
        replies = [text_message(intro)] if intro else []
        replies.append(text_message(self.responses.format_doctors(doctors)))
        return FlowOutcome(ConversationState.ASK_DOCTOR, context, replies)

    async def _register(
        self, turn: Turn, full_name: str, relationship: str
    ) -> FlowOutcome:
        """Find-or-create the patient and contact, then move on to doctors."""
        try:
            patient, created = await self.directory.find_or_create_by_phone(
                turn.clinic_id, turn.phone, full_name, relationship
            )
        except Exception:
            logger.exception(f"Patient registration failed for {turn.clinic_id}:{turn.phone}")
            return self._reset(self.responses.registration_failed())

        context = {"patient_id": patient.patient_id, "patient_name": patient.full_name}
        if created:
            logger.info(f"Registered patient {patient.patient_id} as {patient.relationship}")
            intro = self.responses.patient_registered(patient.full_name, patient.relationship)
        else:
            intro = self.responses.patient_found(patient.full_name, patient.relationship)
        return await self._offer_doctors(turn, context, intro)

    async def _offer_slots(self, turn: Turn, context: dict, on_date: date) -> list[Slot]:
        slots = await self.availability.generate_slots(
            turn.clinic_id, context["doctor_id"], on_date
        )
        context["selected_date"] = on_date.isoformat()
        context["slots"] = [s.to_dict() for s in slots]
        return slots

    # === State handlers ===

    async def _idle(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        intent = self.classifier.classify(text)
        if intent.is_booking:
            return await self._start_booking(turn, intent)
        if intent.intent == Intent.CANCEL:
            return FlowOutcome(
                ConversationState.IDLE, {}, [text_message(self.responses.cancel_not_supported())]
            )
        return FlowOutcome(ConversationState.IDLE, {}, [text_message(self.responses.welcome())])

    async def _ask_patient_or_other(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        choice = parse_choice(text)
        if choice == 1:
            if context.get("patient_id"):
                return await self._offer_doctors(
                    turn,
                    {"patient_id": context["patient_id"], "patient_name": context.get("patient_name")},
                )
            return FlowOutcome(
                ConversationState.ASK_FAMILY_MEMBER_NAME,
                {"registering_self": True},
                [text_message(self.responses.ask_own_name())],
            )
        if choice == 2:
            return FlowOutcome(
                ConversationState.ASK_FAMILY_MEMBER_NAME,
                {"registering_self": False},
                [text_message(self.responses.ask_patient_name())],
            )
        return self._stay(
            ConversationState.ASK_PATIENT_OR_OTHER,
            context,
            self.responses.patient_or_other_reprompt(),
        )

    async def _ask_existing_patient_choice(
        self, turn: Turn, context: dict, text: str
    ) -> FlowOutcome:
        candidates = context.get("patient_candidates") or []
        choice = parse_choice(text)
        if choice is None or not 1 <= choice <= len(candidates) + 1:
            return self._stay(
                ConversationState.ASK_EXISTING_PATIENT_CHOICE,
                context,
                self.responses.invalid_option(),
            )
        if choice == len(candidates) + 1:
            return FlowOutcome(
                ConversationState.ASK_FAMILY_MEMBER_NAME,
                {"registering_self": False},
                [text_message(self.responses.ask_patient_name())],
            )

        chosen = candidates[choice - 1]
        return await self._offer_doctors(
            turn,
            {"patient_id": chosen["patient_id"], "patient_name": chosen["full_name"]},
            self.responses.booking_for(chosen["full_name"]),
        )

    async def _ask_family_member_name(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        full_name = text.strip()
        if not full_name:
            return self._stay(
                ConversationState.ASK_FAMILY_MEMBER_NAME,
                context,
                self.responses.name_reprompt(),
            )
        if context.get("registering_self"):
            return await self._register(turn, full_name, SELF_RELATIONSHIP)

        context["pending_name"] = full_name
        return FlowOutcome(
            ConversationState.ASK_FAMILY_RELATIONSHIP,
            context,
            [text_message(self.responses.relationship_menu())],
        )

    async def _ask_family_relationship(
        self, turn: Turn, context: dict, text: str
    ) -> FlowOutcome:
        choice = parse_choice(text)
        if choice is None or not 1 <= choice <= len(RELATIONSHIPS) or not context.get("pending_name"):
            return self._stay(
                ConversationState.ASK_FAMILY_RELATIONSHIP,
                context,
                self.responses.relationship_reprompt(),
            )
        relationship = RELATIONSHIPS[choice - 1].lower()
        return await self._register(turn, context["pending_name"], relationship)

    async def _ask_doctor(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        doctors = context.get("doctors")
        if not doctors:
            doctors = [d.to_dict() for d in await self._list_doctors(turn.clinic_id)]
            context["doctors"] = doctors
        choice = parse_choice(text)
        if choice is None or not 1 <= choice <= len(doctors):
            return self._stay(ConversationState.ASK_DOCTOR, context, self.responses.doctor_reprompt())

        chosen = doctors[choice - 1]
        context["doctor_id"] = chosen["doctor_id"]
        context["doctor_name"] = chosen["full_name"]
        return FlowOutcome(
            ConversationState.ASK_DATE,
            context,
            [text_message(self.responses.ask_date(chosen["full_name"]))],
        )

    async def _ask_date(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        today = await self.availability.today(turn.clinic_id)
        on_date = parse_date_input(text, today)
        if on_date is None:
            return self._stay(ConversationState.ASK_DATE, context, self.responses.date_reprompt())

        context["slot_retries"] = 0
        slots = await self._offer_slots(turn, context, on_date)
        if not slots:
            return self._stay(
                ConversationState.ASK_DATE, context, self.responses.no_slots(on_date.isoformat())
            )
        body = self.responses.format_slots(slots, f"Available slots on {on_date.isoformat()}:")
        return FlowOutcome(ConversationState.ASK_SLOT, context, [text_message(body)])

    async def _ask_slot(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        slots = context.get("slots") or []
        choice = parse_choice(text)
        if choice is None or not 1 <= choice <= len(slots):
            return self._stay(ConversationState.ASK_SLOT, context, self.responses.slot_reprompt())

        slot = Slot.from_dict(slots[choice - 1])
        try:
            record = await self.booking.create_appointment(
                turn.clinic_id,
                context["doctor_id"],
                context["patient_id"],
                slot.range,
                {"mode": "offline", "source": "whatsapp", "notes": "Booked via WhatsApp"},
            )
        except (SlotUnavailable, StructuralConflict) as e:
            logger.info(f"Slot lost for {turn.clinic_id}:{turn.phone}: {e.message}")
            return await self._slot_lost(turn, context)

        return FlowOutcome(
            ConversationState.DONE,
            {},
            [text_message(self.responses.booking_confirmed(slot, record.id))],
        )

    async def _slot_lost(self, turn: Turn, context: dict) -> FlowOutcome:
        retries = context.get("slot_retries", 0) + 1
        context["slot_retries"] = retries
        if retries > self.max_slot_retries:
            context.pop("slots", None)
            context["slot_retries"] = 0
            return self._stay(ConversationState.ASK_DATE, context, self.responses.too_many_retries())

        on_date = date.fromisoformat(context["selected_date"])
        fresh = await self._offer_slots(turn, context, on_date)
        if not fresh:
            context.pop("slots", None)
            return self._stay(ConversationState.ASK_DATE, context, self.responses.slot_taken_no_more())
        body = self.responses.format_slots(fresh, self.responses.slot_taken())
        return FlowOutcome(ConversationState.ASK_SLOT, context, [text_message(body)])

    async def _done(self, turn: Turn, context: dict, text: str) -> FlowOutcome:
        intent = self.classifier.classify(text)
        if intent.is_booking:
            return await self._start_booking(turn, intent)
        return self._reset(self.responses.fallback())
