"""Tests for keyword intent classification."""

import pytest

from app.core.intelligence.intent.types import Intent, IntentResult
from app.core.intelligence.intent.classifier import IntentClassifier, classify_intent


class TestIntentClassifier:
    """Test keyword-based intent classifier."""

    @pytest.fixture
    def classifier(self):
        """Create classifier."""
        return IntentClassifier()

    @pytest.mark.parametrize(
        "message",
        [
            "book",
            "Book",
            "I want an appointment",
            "need to see a doctor",
            "can I schedule a visit tomorrow?",
            "consultation please",
        ],
    )
    def test_booking_keywords(self, classifier, message):
        result = classifier.classify(message)

        assert result.intent == Intent.BOOKING
        assert result.is_booking
        assert result.for_other is False

    @pytest.mark.parametrize(
        "message",
        [
            "book an appointment for my daughter",
            "I want to book for someone else",
            "appointment for my father",
        ],
    )
    def test_booking_for_someone_else(self, classifier, message):
        result = classifier.classify(message)

        assert result.intent == Intent.BOOKING
        assert result.for_other is True

    def test_cancel(self, classifier):
        result = classifier.classify("please cancel my slot tomorrow")

        # "slot" is a booking keyword and booking wins
        assert result.intent == Intent.BOOKING

        result = classifier.classify("I need to cancel")
        assert result.intent == Intent.CANCEL
        assert result.matched == "cancel"

    def test_greeting(self, classifier):
        result = classifier.classify("Hello there")

        assert result.intent == Intent.GREETING
        assert not result.is_booking

    def test_keywords_match_whole_words(self, classifier):
        """'booking' matches but 'notebook' does not."""
        assert classifier.classify("notebook").intent == Intent.NONE
        assert classifier.classify("booking").intent == Intent.BOOKING

    @pytest.mark.parametrize("message", ["", "   ", None, "1", "Sara Khan"])
    def test_nothing_recognised(self, classifier, message):
        assert classifier.classify(message).intent == Intent.NONE

    def test_convenience_function(self):
        assert classify_intent("appointment").intent == Intent.BOOKING

    def test_to_dict(self):
        """Test IntentResult serialization."""
        result = IntentResult(intent=Intent.BOOKING, for_other=True, matched="book")

        assert result.to_dict() == {"intent": "booking", "for_other": True, "matched": "book"}
