"""
Conversation session module.

A session is an explicit state label plus a versioned context document,
fully replaced on every turn and guarded by a per-counterparty lock.
"""

from .state import (
    ConversationState,
    VALID_TRANSITIONS,
    can_transition,
    get_valid_transitions,
)
from .models import SessionData
from .manager import SessionManager, SessionBusyError, get_session_manager

__all__ = [
    # State
    "ConversationState",
    "VALID_TRANSITIONS",
    "can_transition",
    "get_valid_transitions",
    # Models
    "SessionData",
    # Manager
    "SessionManager",
    "SessionBusyError",
    "get_session_manager",
]
