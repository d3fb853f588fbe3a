"""Intent types for conversation classification."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """Counterparty intent categories."""

    BOOKING = "booking"        # Book a new appointment
    CANCEL = "cancel"          # Cancel or reschedule (handled by staff)
    GREETING = "greeting"      # Hello, hi
    NONE = "none"              # Nothing recognised


@dataclass
class IntentResult:
    """Result of intent classification."""

    intent: Intent

    # Booking on behalf of someone else ("for my daughter")
    for_other: bool = False

    # Keyword that decided the intent, for debugging
    matched: Optional[str] = None

    @property
    def is_booking(self) -> bool:
        return self.intent == Intent.BOOKING

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "for_other": self.for_other,
            "matched": self.matched,
        }
