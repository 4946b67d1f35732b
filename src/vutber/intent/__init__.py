"""Intent classification for free-text commands."""

from .classifier import (
    FallbackIntentClassifier,
    Intent,
    IntentClassifier,
    IntentResult,
    KeywordIntentClassifier,
    LlmIntentClassifier,
)

__all__ = [
    "FallbackIntentClassifier",
    "Intent",
    "IntentClassifier",
    "IntentResult",
    "KeywordIntentClassifier",
    "LlmIntentClassifier",
]
