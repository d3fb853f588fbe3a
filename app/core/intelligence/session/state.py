"""Conversation state machine for the WhatsApp booking flow."""

from enum import Enum
from typing import Set


class ConversationState(str, Enum):
    """States in the conversational booking flow."""

    # Initial
    IDLE = "idle"

    # Who is the appointment for
    ASK_PATIENT_OR_OTHER = "ask_patient_or_other"
    ASK_EXISTING_PATIENT_CHOICE = "ask_existing_patient_choice"
    ASK_FAMILY_MEMBER_NAME = "ask_family_member_name"
    ASK_FAMILY_RELATIONSHIP = "ask_family_relationship"

    # What and when
    ASK_DOCTOR = "ask_doctor"
    ASK_DATE = "ask_date"
    ASK_SLOT = "ask_slot"

    # Booked
    DONE = "done"


_PATIENT_SELECTION = {
    ConversationState.ASK_PATIENT_OR_OTHER,
    ConversationState.ASK_FAMILY_MEMBER_NAME,
    ConversationState.ASK_EXISTING_PATIENT_CHOICE,
}

# Valid state transitions. Every state may fall back to IDLE.
VALID_TRANSITIONS: dict[ConversationState, Set[ConversationState]] = {
    ConversationState.IDLE: {
        ConversationState.IDLE,
        *_PATIENT_SELECTION,
    },
    ConversationState.ASK_PATIENT_OR_OTHER: {
        ConversationState.ASK_PATIENT_OR_OTHER,
        ConversationState.ASK_FAMILY_MEMBER_NAME,
        ConversationState.ASK_DOCTOR,
        ConversationState.IDLE,
    },
    ConversationState.ASK_EXISTING_PATIENT_CHOICE: {
        ConversationState.ASK_EXISTING_PATIENT_CHOICE,
        ConversationState.ASK_FAMILY_MEMBER_NAME,
        ConversationState.ASK_DOCTOR,
        ConversationState.IDLE,
    },
    ConversationState.ASK_FAMILY_MEMBER_NAME: {
        ConversationState.ASK_FAMILY_MEMBER_NAME,
        ConversationState.ASK_FAMILY_RELATIONSHIP,
        ConversationState.ASK_DOCTOR,  # self-registration skips the relationship
        ConversationState.IDLE,
    },
    ConversationState.ASK_FAMILY_RELATIONSHIP: {
        ConversationState.ASK_FAMILY_RELATIONSHIP,
        ConversationState.ASK_DOCTOR,
        ConversationState.IDLE,
    },
    ConversationState.ASK_DOCTOR: {
        ConversationState.ASK_DOCTOR,
        ConversationState.ASK_DATE,
        ConversationState.IDLE,
    },
    ConversationState.ASK_DATE: {
        ConversationState.ASK_DATE,
        ConversationState.ASK_SLOT,
        ConversationState.IDLE,
    },
    ConversationState.ASK_SLOT: {
        ConversationState.ASK_SLOT,
        ConversationState.ASK_DATE,
        ConversationState.DONE,
        ConversationState.IDLE,
    },
    ConversationState.DONE: {
        ConversationState.IDLE,
        *_PATIENT_SELECTION,  # a new booking starts over
    },
}


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_valid_transitions(state: ConversationState) -> Set[ConversationState]:
    """Get all valid transitions from a state."""
    return VALID_TRANSITIONS.get(state, set())


def parse_state(value: str) -> ConversationState:
    """Stored label to state; unknown labels fall back to IDLE."""
    try:
        return ConversationState(value)
    except ValueError:
        return ConversationState.IDLE
