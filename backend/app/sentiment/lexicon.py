from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence

from .base import SentimentResult

POSITIVE_WORDS = ("happy", "good", "great", "excellent", "wonderful", "amazing", "love", "enjoy")
NEGATIVE_WORDS = ("sad", "bad", "terrible", "awful", "horrible", "hate", "dislike", "disappointed")

_POSITIVE_RE = re.compile(r"\b(?:%s)\b" % "|".join(POSITIVE_WORDS), re.IGNORECASE)
_NEGATIVE_RE = re.compile(r"\b(?:%s)\b" % "|".join(NEGATIVE_WORDS), re.IGNORECASE)


def score_text(text: str) -> SentimentResult:
    positive = len(_POSITIVE_RE.findall(text))
    negative = len(_NEGATIVE_RE.findall(text))
    if positive == 0 and negative == 0:
        return SentimentResult(positive=0.5, neutral=0.0, negative=0.5)
    ratio = positive / (positive + negative)
    return SentimentResult(positive=ratio, neutral=0.0, negative=1.0 - ratio)


class LexiconClassifier:
    """Offline word-list classifier that keeps the service usable without credentials."""

    backend = "lexicon"

    async def analyze(self, texts: Sequence[str]) -> list[SentimentResult]:
        await asyncio.sleep(0)
        return [score_text(text) for text in texts]

    async def aclose(self) -> None:
        return None
