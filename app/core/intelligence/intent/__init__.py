"""Keyword intent classification for the idle and done states."""

from .classifier import IntentClassifier, classify_intent, get_intent_classifier
from .types import Intent, IntentResult

__all__ = ["Intent", "IntentResult", "IntentClassifier", "classify_intent", "get_intent_classifier"]
