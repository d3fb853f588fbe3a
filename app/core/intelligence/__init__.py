"""
Intelligence Layer Module

Provides intent classification and conversation session management for
the booking assistant.

Usage:
    from app.core.intelligence import (
        classify_intent,
        get_session_manager,
    )

    # Classify intent
    result = classify_intent("I need an appointment for my son")
    print(result.intent)     # Intent.BOOKING
    print(result.for_other)  # True

    # Session management
    manager = await get_session_manager()
    async with manager.lock(clinic_id, phone) as backend:
        session = await manager.get_or_create(clinic_id, phone, redis=backend)
"""

# Intent Classification
from app.core.intelligence.intent.types import Intent, IntentResult
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

# Session Management
from app.core.intelligence.session.state import (
    ConversationState,
    can_transition,
    get_valid_transitions,
)
from app.core.intelligence.session.models import SessionData
from app.core.intelligence.session.manager import (
    SessionManager,
    SessionBusyError,
    get_session_manager,
)

__all__ = [
    # Intent
    "Intent",
    "IntentResult",
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
    # Session State
    "ConversationState",
    "can_transition",
    "get_valid_transitions",
    # Session Data
    "SessionData",
    "SessionManager",
    "SessionBusyError",
    "get_session_manager",
]
