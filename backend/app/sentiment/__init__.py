"""Sentiment classifier adapters."""

from .base import ClassifierError, SentimentClassifier, SentimentResult
from .lexicon import LexiconClassifier
from .text_analytics import TextAnalyticsClassifier

__all__ = [
    "ClassifierError",
    "LexiconClassifier",
    "SentimentClassifier",
    "SentimentResult",
    "TextAnalyticsClassifier",
]
