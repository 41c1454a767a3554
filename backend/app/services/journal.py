"""Journal entry business rules.

The service validates input, scores content through the sentiment classifier,
and persists entries through a document container. Adapter failures are
re-raised as the error types in :mod:`backend.app.core.errors`; nothing is
retried here.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
import re
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from ..core.errors import (
    ConflictError,
    ExternalServiceError,
    JournalError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from ..metrics import JOURNAL_OPERATIONS, SENTIMENT_LATENCY, SENTIMENT_REQUESTS
from ..schemas.journal import (
    MAX_CONTENT_LENGTH,
    Attachment,
    ContentFormat,
    EmotionFrequency,
    FacetValue,
    JournalEntry,
    JournalSearchResponse,
    JournalUpdate,
    SearchFilters,
    SentimentTrendPoint,
    SentimentTrendsResponse,
    TopicAnalysisResponse,
    TopicFrequency,
    TopicSentiment,
)
from ..sentiment import SentimentClassifier
from ..storage import (
    BlobStore,
    BlobStoreError,
    ContainerError,
    DocumentContainer,
    ItemNotFound,
    PreconditionFailed,
)
from ..telemetry import Telemetry

logger = logging.getLogger(__name__)

MAX_TAGS = 20
MAX_TAG_LENGTH = 50
DEFAULT_SEARCH_LIMIT = 50
ALLOWED_ATTACHMENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
    }
)

TOP_EMOTIONS = 5
TOP_TOPICS = 10
EMOTION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "joy": ("happy", "happiness", "joy", "excited", "thrilled", "delighted", "pleased", "glad"),
    "sadness": ("sad", "unhappy", "depressed", "miserable", "melancholy", "blue", "down"),
    "anger": ("angry", "anger", "mad", "furious", "irritated", "annoyed", "frustrated", "rage"),
    "fear": ("afraid", "fear", "scared", "anxious", "worried", "nervous", "terrified", "panic"),
    "surprise": ("surprised", "surprise", "amazed", "astonished", "shocked", "startled"),
    "love": ("love", "loved", "adore", "cherish", "affection", "caring", "fond"),
    "gratitude": ("grateful", "thankful", "appreciate", "gratitude", "blessed", "fortunate"),
    "calm": ("calm", "peaceful", "relaxed", "serene", "tranquil", "content", "ease"),
}

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


def _validate_content(content: str | None) -> str:
    content = _require_text(content, "content")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"content exceeds {MAX_CONTENT_LENGTH} characters")
    return content


def _normalize_tags(tags: Iterable[str] | None) -> list[str]:
    normalized: list[str] = []
    for tag in tags or ():
        value = tag.strip()
        if not value or len(value) > MAX_TAG_LENGTH:
            raise ValidationError(f"tags must be 1-{MAX_TAG_LENGTH} characters")
        if value not in normalized:
            normalized.append(value)
    if len(normalized) > MAX_TAGS:
        raise ValidationError(f"at most {MAX_TAGS} tags are allowed")
    return normalized


def _safe_segment(value: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", value).strip("._") or "file"


def attachment_blob_name(user_id: str, attachment: Attachment) -> str:
    """Blob name owning an attachment; scoped to the entry owner."""

    return f"{_safe_segment(user_id)}/{attachment.id}-{_safe_segment(attachment.file_name)}"


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(str(offset).encode("ascii")).decode("ascii")


def decode_cursor(cursor: str | None) -> int:
    if not cursor:
        return 0
    try:
        offset = int(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("ascii"))
    except (binascii.Error, UnicodeError, ValueError):
        logger.debug("Ignoring malformed search cursor %r", cursor)
        return 0
    return max(offset, 0)


def top_emotions(entries: Iterable[JournalEntry]) -> list[EmotionFrequency]:
    """Count entries mentioning each emotion; substring matches, once per entry."""

    counts: Counter[str] = Counter()
    for entry in entries:
        content = entry.content.lower()
        counts.update(
            emotion
            for emotion, keywords in EMOTION_KEYWORDS.items()
            if any(keyword in content for keyword in keywords)
        )
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        EmotionFrequency(emotion=emotion, frequency=count)
        for emotion, count in ranked[:TOP_EMOTIONS]
    ]


def sentiment_bucket(score: float) -> str:
    bucket = min(int(math.floor(round(score * 10, 6))), 9)
    return f"{bucket / 10:.1f}"


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ItemNotFound as exc:
        raise NotFoundError("journal entry not found") from exc
    except PreconditionFailed as exc:
        raise ConflictError("journal entry was modified by another request") from exc
    except ContainerError as exc:
        raise StorageError(f"failed to {action}") from exc


class JournalService:
    def __init__(
        self,
        container: DocumentContainer,
        classifier: SentimentClassifier,
        blob_store: BlobStore,
        telemetry: Telemetry,
        *,
        max_attachment_bytes: int = 5 * 1024 * 1024,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._container = container
        self._classifier = classifier
        self._blob_store = blob_store
        self._telemetry = telemetry
        self._max_attachment_bytes = max_attachment_bytes
        self._clock = clock

    # -- helpers ---------------------------------------------------------
    @contextmanager
    def _observe(self, operation: str) -> Iterator[None]:
        try:
            yield
        except JournalError as exc:
            JOURNAL_OPERATIONS.labels(operation=operation, result=exc.code).inc()
            raise
        JOURNAL_OPERATIONS.labels(operation=operation, result="ok").inc()

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    async def _classify(self, content: str) -> float:
        backend = getattr(self._classifier, "backend", type(self._classifier).__name__)
        start = time.perf_counter()
        try:
            results = await self._classifier.analyze([content])
        except Exception as exc:
            SENTIMENT_REQUESTS.labels(backend=backend, result="error").inc()
            raise ExternalServiceError("sentiment analysis failed") from exc
        finally:
            SENTIMENT_LATENCY.labels(backend=backend).observe(time.perf_counter() - start)

        if not results:
            SENTIMENT_REQUESTS.labels(backend=backend, result="error").inc()
            raise ExternalServiceError("sentiment analysis returned no result")
        score = float(results[0].positive)
        if not 0.0 <= score <= 1.0:
            SENTIMENT_REQUESTS.labels(backend=backend, result="error").inc()
            raise ExternalServiceError(f"sentiment score out of range: {score}")
        SENTIMENT_REQUESTS.labels(backend=backend, result="ok").inc()
        return score

    async def _load(self, entry_id: str, user_id: str) -> JournalEntry:
        with _storage_errors("read journal entry"):
            document = await self._container.read_item(entry_id, user_id)
        if document is None:
            raise NotFoundError("journal entry not found")
        return JournalEntry.from_document(document)

    async def _query(self, user_id: str | None) -> list[JournalEntry]:
        with _storage_errors("query journal entries"):
            documents = await self._container.query_items(partition_key=user_id)
        return [JournalEntry.from_document(document) for document in documents]

    async def _claim_attachments(
        self,
        user_id: str,
        attachments: Sequence[Attachment] | None,
        *,
        entry_id: str | None = None,
    ) -> list[Attachment]:
        """Attachments for ``entry_id``; each may belong to one entry only."""

        claimed = list(attachments or [])
        if not claimed:
            return claimed
        wanted = {attachment.id for attachment in claimed}
        if len(wanted) != len(claimed):
            raise ValidationError("attachments must not repeat")
        for entry in await self._query(user_id):
            if entry.id == entry_id:
                continue
            taken = wanted.intersection(attachment.id for attachment in entry.attachments)
            if taken:
                raise ValidationError(
                    f"attachment {min(taken)} already belongs to another entry"
                )
        return claimed

    async def _release_attachments(
        self, user_id: str, entry_id: str, attachments: Sequence[Attachment]
    ) -> None:
        if not attachments:
            return
        try:
            referenced = {
                attachment.id
                for entry in await self._query(user_id)
                for attachment in entry.attachments
            }
        except StorageError as exc:
            logger.warning("Keeping attachments of %s, reference check failed: %s", entry_id, exc)
            return

        for attachment in attachments:
            if attachment.id in referenced:
                logger.info("Attachment %s still referenced, keeping blob", attachment.id)
                continue
            name = attachment_blob_name(user_id, attachment)
            try:
                await self._blob_store.delete(name)
            except BlobStoreError as exc:
                logger.warning("Attachment %s left orphaned: %s", name, exc)
                self._telemetry.track_event(
                    "attachment_orphaned",
                    {"entryId": entry_id, "attachmentId": attachment.id},
                )

    # -- operations ------------------------------------------------------
    async def create(
        self,
        *,
        user_id: str | None,
        content: str | None,
        content_format: ContentFormat | str | None = None,
        tags: Iterable[str] | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> JournalEntry:
        with self._observe("create"):
            user_id = _require_text(user_id, "userId")
            content = _validate_content(content)
            try:
                fmt = ContentFormat(content_format) if content_format else ContentFormat.PLAIN
            except ValueError as exc:
                raise ValidationError("contentFormat must be plain or markdown") from exc
            normalized_tags = _normalize_tags(tags)
            claimed = await self._claim_attachments(user_id, attachments)

            score = await self._classify(content)
            now = self._now()
            entry = JournalEntry(
                id=str(uuid4()),
                user_id=user_id,
                content=content,
                content_format=fmt,
                sentiment_score=score,
                date=now,
                created_at=now,
                updated_at=now,
                tags=normalized_tags,
                attachments=claimed,
            )
            with _storage_errors("save journal entry"):
                stored = await self._container.create_item(entry.to_document())

        created = JournalEntry.from_document(stored)
        self._telemetry.track_metric("sentiment_score", created.sentiment_score)
        self._telemetry.track_event(
            "journal_entry_created",
            {"entryId": created.id, "sentimentScore": created.sentiment_score},
        )
        return created

    async def get(self, entry_id: str, user_id: str) -> JournalEntry:
        with self._observe("get"):
            return await self._load(entry_id, user_id)

    async def list(
        self,
        user_id: str | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[JournalEntry]:
        """Entries in container order, optionally restricted to one owner."""

        with self._observe("list"):
            entries = await self._query(user_id)
        if limit is None:
            return entries[offset:]
        return entries[offset : offset + limit]

    async def search(
        self,
        user_id: str,
        query: str,
        filters: SearchFilters | None = None,
        *,
        limit: int = DEFAULT_SEARCH_LIMIT,
        cursor: str | None = None,
    ) -> JournalSearchResponse:
        filters = filters or SearchFilters()
        with self._observe("search"):
            if (
                filters.sentiment_min is not None
                and filters.sentiment_max is not None
                and filters.sentiment_min > filters.sentiment_max
            ):
                raise ValidationError("sentimentMin must not exceed sentimentMax")
            date_from = _as_utc(filters.date_from) if filters.date_from else None
            date_to = _as_utc(filters.date_to) if filters.date_to else None
            if date_from and date_to and date_from > date_to:
                raise ValidationError("dateFrom must not be after dateTo")

            terms = query.lower().split()
            wanted_tags = set(filters.tags)
            matches: list[JournalEntry] = []
            minimum, maximum = filters.sentiment_min, filters.sentiment_max
            for entry in await self._query(user_id):
                if date_from and entry.date < date_from:
                    continue
                if date_to and entry.date > date_to:
                    continue
                if minimum is not None and entry.sentiment_score < minimum:
                    continue
                if maximum is not None and entry.sentiment_score > maximum:
                    continue
                if wanted_tags and not wanted_tags.intersection(entry.tags):
                    continue
                if terms and not self._matches_terms(entry, terms):
                    continue
                matches.append(entry)

        matches.sort(key=lambda entry: entry.date, reverse=True)
        offset = decode_cursor(cursor)
        page = matches[offset : offset + limit]
        next_offset = offset + len(page)
        return JournalSearchResponse(
            items=page,
            count=len(matches),
            facets=self._facets(matches),
            next_cursor=encode_cursor(next_offset) if next_offset < len(matches) else None,
        )

    @staticmethod
    def _matches_terms(entry: JournalEntry, terms: Sequence[str]) -> bool:
        content = entry.content.lower()
        tags = {tag.lower() for tag in entry.tags}
        return all(term in content or term in tags for term in terms)

    @staticmethod
    def _facets(entries: Sequence[JournalEntry]) -> dict[str, list[FacetValue]]:
        tag_counts = Counter(tag for entry in entries for tag in entry.tags)
        bucket_counts = Counter(sentiment_bucket(entry.sentiment_score) for entry in entries)
        return {
            "tags": [
                FacetValue(value=tag, count=count)
                for tag, count in sorted(tag_counts.items(), key=lambda item: (-item[1], item[0]))
            ],
            "sentimentScore": [
                FacetValue(value=bucket, count=count)
                for bucket, count in sorted(bucket_counts.items())
            ],
        }

    async def update(
        self,
        entry_id: str,
        user_id: str,
        patch: JournalUpdate,
        *,
        if_match: str | None = None,
    ) -> JournalEntry:
        with self._observe("update"):
            current = await self._load(entry_id, user_id)
            fields = patch.model_fields_set
            changes: dict[str, object] = {}

            content = _validate_content(patch.content) if "content" in fields else None
            if "content_format" in fields and patch.content_format is not None:
                changes["content_format"] = patch.content_format
            if "tags" in fields:
                changes["tags"] = _normalize_tags(patch.tags)
            released: list[Attachment] = []
            if "attachments" in fields:
                attachments = await self._claim_attachments(
                    user_id, patch.attachments, entry_id=entry_id
                )
                kept_ids = {attachment.id for attachment in attachments}
                released = [a for a in current.attachments if a.id not in kept_ids]
                changes["attachments"] = attachments

            if content is not None:
                changes["content"] = content
                changes["sentiment_score"] = await self._classify(content)

            now = self._now()
            if now <= current.updated_at:
                now = current.updated_at + timedelta(microseconds=1)
            changes["updated_at"] = now

            updated = current.model_copy(update=changes)
            with _storage_errors("update journal entry"):
                stored = await self._container.replace_item(
                    updated.to_document(), if_match=if_match
                )

        await self._release_attachments(user_id, entry_id, released)
        result = JournalEntry.from_document(stored)
        self._telemetry.track_event(
            "journal_entry_updated",
            {"entryId": result.id, "rescored": "content" in fields},
        )
        return result

    async def delete(self, entry_id: str, user_id: str) -> None:
        with self._observe("delete"):
            current = await self._load(entry_id, user_id)
            with _storage_errors("delete journal entry"):
                await self._container.delete_item(entry_id, user_id)

        await self._release_attachments(user_id, entry_id, current.attachments)
        self._telemetry.track_event("journal_entry_deleted", {"entryId": entry_id})

    async def upload_attachment(
        self,
        *,
        user_id: str,
        file_name: str,
        content_type: str,
        data: bytes,
    ) -> Attachment:
        with self._observe("upload_attachment"):
            user_id = _require_text(user_id, "userId")
            if not data:
                raise ValidationError("file is empty")
            if len(data) > self._max_attachment_bytes:
                raise ValidationError(
                    f"file size exceeds limit ({self._max_attachment_bytes} bytes)"
                )
            media_type = content_type.split(";", 1)[0].strip().lower()
            if media_type not in ALLOWED_ATTACHMENT_TYPES:
                raise ValidationError(f"file type not allowed: {media_type or 'unknown'}")

            attachment_id = uuid4().hex
            file_name = file_name or "attachment"
            draft = Attachment(
                id=attachment_id,
                file_name=file_name,
                content_type=media_type,
                size=len(data),
                url="pending",
            )
            try:
                url = await self._blob_store.upload(
                    attachment_blob_name(user_id, draft), data, media_type
                )
            except BlobStoreError as exc:
                raise StorageError("failed to store attachment") from exc

        return draft.model_copy(update={"url": url})

    async def _entries_between(
        self, operation: str, user_id: str, start: datetime, end: datetime
    ) -> list[JournalEntry]:
        start, end = _as_utc(start), _as_utc(end)
        with self._observe(operation):
            if start > end:
                raise ValidationError("startDate must not be after endDate")
            return [entry for entry in await self._query(user_id) if start <= entry.date <= end]

    async def sentiment_trends(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> SentimentTrendsResponse:
        entries = await self._entries_between("sentiment_trends", user_id, start, end)
        if not entries:
            return SentimentTrendsResponse(average_sentiment=0.0, trend_by_day=[])

        by_day: dict[str, list[float]] = defaultdict(list)
        for entry in sorted(entries, key=lambda item: item.date):
            by_day[entry.date.date().isoformat()].append(entry.sentiment_score)

        total = sum(entry.sentiment_score for entry in entries)
        return SentimentTrendsResponse(
            average_sentiment=total / len(entries),
            trend_by_day=[
                SentimentTrendPoint(
                    date=day, sentiment=sum(scores) / len(scores), entries=len(scores)
                )
                for day, scores in by_day.items()
            ],
            top_emotions=top_emotions(entries),
        )

    async def topic_analysis(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> TopicAnalysisResponse:
        """Tags used as topics: most frequent first, and mean sentiment per tag."""

        entries = await self._entries_between("topic_analysis", user_id, start, end)

        scores: dict[str, list[float]] = defaultdict(list)
        for entry in entries:
            for tag in entry.tags:
                scores[tag].append(entry.sentiment_score)

        by_frequency = sorted(scores.items(), key=lambda item: (-len(item[1]), item[0]))
        averages = {tag: sum(values) / len(values) for tag, values in scores.items()}
        return TopicAnalysisResponse(
            top_topics=[
                TopicFrequency(topic=tag, frequency=len(values))
                for tag, values in by_frequency[:TOP_TOPICS]
            ],
            topic_sentiment=[
                TopicSentiment(topic=tag, sentiment=average)
                for tag, average in sorted(averages.items(), key=lambda item: (-item[1], item[0]))
            ],
        )


__all__ = [
    "ALLOWED_ATTACHMENT_TYPES",
    "EMOTION_KEYWORDS",
    "JournalService",
    "attachment_blob_name",
    "decode_cursor",
    "encode_cursor",
    "sentiment_bucket",
    "top_emotions",
]
