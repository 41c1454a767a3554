from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class ClassifierError(Exception):
    """Raised when the sentiment backend fails or returns an unusable result."""


@dataclass(frozen=True)
class SentimentResult:
    positive: float
    neutral: float
    negative: float


@runtime_checkable
class SentimentClassifier(Protocol):
    """Scores a batch of texts; one result per input, in input order."""

    backend: str

    async def analyze(self, texts: Sequence[str]) -> list[SentimentResult]: ...

    async def aclose(self) -> None: ...
