from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_CONTENT_LENGTH = 20_000


class CamelModel(BaseModel):
    """Wire models use camelCase field names; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContentFormat(str, Enum):
    PLAIN = "plain"
    MARKDOWN = "markdown"


class Attachment(CamelModel):
    id: str = Field(..., min_length=1, max_length=64)
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1, max_length=127)
    size: int = Field(..., ge=0)
    url: str = Field(..., min_length=1)


class JournalEntry(CamelModel):
    id: str
    user_id: str
    content: str
    content_format: ContentFormat = ContentFormat.PLAIN
    sentiment_score: float = Field(..., ge=0.0, le=1.0)
    date: datetime
    created_at: datetime
    updated_at: datetime
    tags: list[str] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    etag: str | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> JournalEntry:
        return cls.model_validate(document)


class JournalCreate(CamelModel):
    user_id: str | None = None
    content: str = Field(..., max_length=MAX_CONTENT_LENGTH)
    content_format: ContentFormat | None = None
    tags: list[str] | None = None
    attachments: list[Attachment] | None = None


class JournalUpdate(CamelModel):
    """Partial update; only fields present in the request are applied."""

    content: str | None = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    content_format: ContentFormat | None = None
    tags: list[str] | None = None
    attachments: list[Attachment] | None = None


class SearchFilters(CamelModel):
    date_from: datetime | None = None
    date_to: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    sentiment_min: float | None = Field(default=None, ge=0.0, le=1.0)
    sentiment_max: float | None = Field(default=None, ge=0.0, le=1.0)


class FacetValue(BaseModel):
    value: str
    count: int


class JournalSearchResponse(CamelModel):
    items: list[JournalEntry]
    count: int
    facets: dict[str, list[FacetValue]]
    next_cursor: str | None = None


class SentimentTrendPoint(CamelModel):
    date: str
    sentiment: float
    entries: int


class EmotionFrequency(CamelModel):
    emotion: str
    frequency: int


class SentimentTrendsResponse(CamelModel):
    average_sentiment: float
    trend_by_day: list[SentimentTrendPoint]
    top_emotions: list[EmotionFrequency] = Field(default_factory=list)


class TopicFrequency(CamelModel):
    topic: str
    frequency: int


class TopicSentiment(CamelModel):
    topic: str
    sentiment: float


class TopicAnalysisResponse(CamelModel):
    top_topics: list[TopicFrequency]
    topic_sentiment: list[TopicSentiment]
