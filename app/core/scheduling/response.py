"""
Response templates for the WhatsApp booking assistant.

Every reply is a WhatsApp Cloud API text payload:
    {"type": "text", "text": {"body": "..."}}
"""

import logging
from typing import Optional

from app.core.patients.directory import RELATIONSHIPS
from app.core.scheduling.types import Doctor, Slot

logger = logging.getLogger(__name__)


def text_message(body: str) -> dict:
    """Wrap a body in a WhatsApp text payload."""
    return {"type": "text", "text": {"body": body}}


def _format_slot_time(slot: Slot) -> str:
    return slot.start.strftime("%a %d %b %Y, %H:%M")


class ResponseGenerator:
    """
    Template-based replies.

    Each method returns the body text; the flow wraps it with text_message().
    """

    # === Idle / re-entry ===

    def welcome(self) -> str:
        return "Hi! I can help you book doctor appointments. Reply 'book' or 'appointment' to get started."

    def cancel_not_supported(self) -> str:
        return (
            "To cancel or reschedule an appointment please contact the clinic directly. "
            "Reply 'book' to make a new appointment."
        )

    def fallback(self) -> str:
        return "Sorry, I didn't understand. Reply 'book' to start a new appointment."

    def apology(self) -> str:
        return "Sorry, something went wrong on our side. Please try again in a moment."

    # === Who is the appointment for ===

    def unknown_patient_choice(self) -> str:
        return "I couldn't find your profile. Is this appointment for:\n1) Me\n2) Someone else\n\nReply with 1 or 2"

    def known_patient_choice(self, full_name: str) -> str:
        return (
            f"I found your profile as {full_name}. Is this appointment for:\n"
            f"1) {full_name} (me)\n2) Someone else\n\nReply with 1 or 2"
        )

    def patient_or_other_reprompt(self) -> str:
        return "Please reply with 1 (Me) or 2 (Someone else)."

    def multiple_patients(self, candidates: list[dict]) -> str:
        lines = ["I found multiple people linked to this number. Who is this appointment for?"]
        for i, candidate in enumerate(candidates, 1):
            lines.append(f"{i}) {candidate['full_name']}")
        lines.append(f"{len(candidates) + 1}) Someone else")
        lines.append("\nReply with the number.")
        return "\n".join(lines)

    def invalid_option(self) -> str:
        return "Please reply with a valid number from the options."

    def ask_own_name(self) -> str:
        return "Okay, please tell me your full name so I can create your profile."

    def ask_patient_name(self) -> str:
        return "Sure, what is the patient's full name? (e.g., 'Sara Khan')"

    def name_reprompt(self) -> str:
        return "Please provide the full name (e.g., 'Sara Khan')."

    def relationship_menu(self) -> str:
        options = "\n".join(
            f"{i}) {label.capitalize()}" for i, label in enumerate(RELATIONSHIPS, 1)
        )
        return f"What's their relationship to you? Reply with number:\n{options}"

    def relationship_reprompt(self) -> str:
        return f"Please reply with a number between 1 and {len(RELATIONSHIPS)} for the relationship."

    def patient_registered(self, full_name: str, relationship: Optional[str]) -> str:
        if relationship and relationship != "self":
            return f"Got it. {full_name} added as {relationship}."
        return f"Thanks, {full_name}. Your profile is ready."

    def patient_found(self, full_name: str, relationship: Optional[str]) -> str:
        """Reply when the name matched a patient already on this number."""
        if relationship and relationship != "self":
            return f"{full_name} is already on file as your {relationship}."
        return f"Welcome back, {full_name}."

    def registration_failed(self) -> str:
        return "Sorry, I couldn't create the patient record. Please try again later or contact the clinic."

    # === Doctor ===

    def booking_for(self, full_name: str) -> str:
        return f"Booking for {full_name}."

    def format_doctors(self, doctors: list[Doctor]) -> str:
        """Numbered doctor list for selection."""
        if not doctors:
            return "Sorry, no doctors are available for booking right now."
        lines = ["Which doctor would you like to see? Reply with the number:"]
        for i, doctor in enumerate(doctors, 1):
            lines.append(f"{i}) Dr {doctor.full_name} ({doctor.specialization or 'General'})")
        return "\n".join(lines)

    def doctor_reprompt(self) -> str:
        return "Please reply with a valid doctor number from the list."

    # === Date and slot ===

    def ask_date(self, doctor_name: str) -> str:
        return (
            f"You chose Dr {doctor_name}. Which date would you like? "
            "Reply with YYYY-MM-DD, 'today' or 'tomorrow'."
        )

    def date_reprompt(self) -> str:
        return "Please reply with a date in YYYY-MM-DD format (e.g., 2025-11-19), or say 'today' or 'tomorrow'."

    def no_slots(self, date_str: str) -> str:
        return f"No available slots on {date_str}. Reply with another date."

    def format_slots(self, slots: list[Slot], intro: Optional[str] = None) -> str:
        """Numbered slot list in the clinic's local time."""
        lines = [intro] if intro else []
        for i, slot in enumerate(slots, 1):
            lines.append(f"{i}) {_format_slot_time(slot)}")
        lines.append("\nReply with the slot number to book.")
        return "\n".join(lines)

    def slot_reprompt(self) -> str:
        return "Please reply with a valid slot number from the list."

    def slot_taken(self) -> str:
        return "Sorry, that slot was just taken. Here are the remaining slots:"

    def slot_taken_no_more(self) -> str:
        return "Sorry, that slot was just taken and there are no more slots on that date. Please reply with another date."

    def too_many_retries(self) -> str:
        return "Sorry, slots on that date are filling up quickly. Please reply with another date."

    def booking_confirmed(self, slot: Slot, reference_id: str) -> str:
        return f"Appointment confirmed for {_format_slot_time(slot)}. Reference ID: {reference_id}"


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator()
    return _generator
