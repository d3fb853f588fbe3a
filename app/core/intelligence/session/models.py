"""
Conversation session model.

One session per (clinic, phone). The whole record is replaced on every
turn: state label, context document, version and the id of the last
inbound message processed.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .state import ConversationState, parse_state


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class SessionData:
    """
    Conversation session stored in Redis.

    ``context`` holds everything the flow collected so far (patient id,
    offered doctors, selected date, offered slots). It is JSON-only so the
    session round-trips through Redis unchanged.
    """

    clinic_id: str
    phone: str
    state: ConversationState = ConversationState.IDLE
    context: dict = field(default_factory=dict)

    # Incremented on every save
    version: int = 0

    # Inbound message id of the last processed turn (duplicate delivery guard)
    last_message_id: Optional[str] = None

    created_at: datetime = field(default_factory=_utcnow)
    last_interaction_at: datetime = field(default_factory=_utcnow)

    def is_duplicate(self, message_id: Optional[str]) -> bool:
        return message_id is not None and message_id == self.last_message_id

    def advance(
        self,
        state: ConversationState,
        context: dict,
        message_id: Optional[str] = None,
    ) -> "SessionData":
        """Next version of this session with the given state and context."""
        return SessionData(
            clinic_id=self.clinic_id,
            phone=self.phone,
            state=state,
            context=context,
            version=self.version + 1,
            last_message_id=message_id if message_id is not None else self.last_message_id,
            created_at=self.created_at,
            last_interaction_at=_utcnow(),
        )

    def to_json(self) -> str:
        """Convert to JSON string for Redis storage."""
        data = {
            "clinic_id": self.clinic_id,
            "phone": self.phone,
            "state": self.state.value,
            "context": self.context,
            "version": self.version,
            "last_message_id": self.last_message_id,
            "created_at": self.created_at.isoformat(),
            "last_interaction_at": self.last_interaction_at.isoformat(),
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, json_str: str) -> "SessionData":
        """Create from JSON string."""
        data = json.loads(json_str)
        return cls(
            clinic_id=data["clinic_id"],
            phone=data["phone"],
            state=parse_state(data.get("state", ConversationState.IDLE.value)),
            context=data.get("context") or {},
            version=data.get("version", 0),
            last_message_id=data.get("last_message_id"),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_interaction_at=datetime.fromisoformat(data["last_interaction_at"]),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return json.loads(self.to_json())
