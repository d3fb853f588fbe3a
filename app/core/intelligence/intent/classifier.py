"""
Keyword-based intent classification.

Inbound chat messages are short ("book", "hi", "appointment for my son"),
so a fixed keyword table is enough to route the idle state. Booking
keywords win over cancel keywords, which win over greetings.
"""

import logging
import re
from typing import Optional

from .types import Intent, IntentResult

logger = logging.getLogger(__name__)


BOOKING_PATTERN = re.compile(
    r"\b(book|booking|appointment|consult|consultation|visit|slot|schedule|see (a |the )?doctor)\b"
)
CANCEL_PATTERN = re.compile(r"\b(cancel|resched|reschedule)\b")
GREETING_PATTERN = re.compile(r"\b(hi|hello|hey|salaam|good (morning|afternoon|evening))\b")
FOR_OTHER_PATTERN = re.compile(
    r"(someone else|other person|somebody else|"
    r"for my (son|daughter|wife|husband|mother|mom|father|dad|child|kid|family))"
)


class IntentClassifier:
    """
    Keyword intent classifier.

    Usage:
        result = IntentClassifier().classify("I want to book for my daughter")
        result.intent     # Intent.BOOKING
        result.for_other  # True
    """

    def classify(self, message: Optional[str]) -> IntentResult:
        """
        Classify a message.

        Args:
            message: Raw inbound text

        Returns:
            IntentResult; Intent.NONE for empty or unrecognised text
        """
        text = (message or "").strip().lower()
        if not text:
            return IntentResult(intent=Intent.NONE)

        match = BOOKING_PATTERN.search(text)
        if match:
            for_other = FOR_OTHER_PATTERN.search(text) is not None
            result = IntentResult(intent=Intent.BOOKING, for_other=for_other, matched=match.group(0))
        elif (match := CANCEL_PATTERN.search(text)):
            result = IntentResult(intent=Intent.CANCEL, matched=match.group(0))
        elif (match := GREETING_PATTERN.search(text)):
            result = IntentResult(intent=Intent.GREETING, matched=match.group(0))
        else:
            result = IntentResult(intent=Intent.NONE)

        logger.debug(f"Classified intent: {result.intent.value} (for_other={result.for_other})")
        return result


# Singleton
_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier


def classify_intent(message: Optional[str]) -> IntentResult:
    """Convenience function to classify intent."""
    return get_intent_classifier().classify(message)
