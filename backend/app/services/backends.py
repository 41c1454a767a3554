"""Construct the external collaborators once, choosing live or mock per backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from backend.db import create_engine, create_session_factory, init_db

from ..core.config import Settings
from ..core.errors import ConfigurationError
from ..sentiment import LexiconClassifier, SentimentClassifier, TextAnalyticsClassifier
from ..storage import (
    BlobStore,
    BlobStoreError,
    DocumentContainer,
    FileSystemBlobStore,
    InMemoryBlobStore,
    InMemoryDocumentContainer,
    SqlDocumentContainer,
)
from ..telemetry import Telemetry
from .modes import ModeReport, ServiceMode

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    container: DocumentContainer
    classifier: SentimentClassifier
    blob_store: BlobStore
    telemetry: Telemetry
    report: ModeReport
    engine: AsyncEngine | None = None

    async def aclose(self) -> None:
        await self.classifier.aclose()
        await self.telemetry.flush()
        if self.engine is not None:
            await self.engine.dispose()


def _mock_reason(settings: Settings, missing: str) -> str:
    return "mock mode forced" if settings.mock_mode else f"{missing} not configured"


async def _build_container(
    settings: Settings, report: ModeReport
) -> tuple[DocumentContainer, AsyncEngine | None]:
    if settings.mock_mode or not settings.database_url:
        report.record("database", ServiceMode.MOCK, _mock_reason(settings, "DATABASE_URL"))
        return InMemoryDocumentContainer(settings.journal_container), None

    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    try:
        await init_db(engine, session_factory, settings.version)
        container = SqlDocumentContainer(session_factory, settings.journal_container)
        await container.healthcheck()
    except Exception as exc:
        await engine.dispose()
        if settings.is_production:
            raise ConfigurationError(f"database unavailable: {exc}") from exc
        logger.warning("Database probe failed, using in-memory container: %s", exc, exc_info=True)
        report.record("database", ServiceMode.MOCK, f"probe failed: {exc}")
        return InMemoryDocumentContainer(settings.journal_container), None

    report.record("database", ServiceMode.LIVE, "connected")
    return container, engine


def _build_classifier(settings: Settings, report: ModeReport) -> SentimentClassifier:
    endpoint = settings.text_analytics_endpoint
    key = settings.text_analytics_key
    if settings.mock_mode or not (endpoint and key):
        report.record(
            "sentiment", ServiceMode.MOCK, _mock_reason(settings, "TEXT_ANALYTICS_ENDPOINT/KEY")
        )
        return LexiconClassifier()

    report.record("sentiment", ServiceMode.LIVE, endpoint)
    return TextAnalyticsClassifier(
        endpoint,
        key,
        language=settings.text_analytics_language,
        timeout=settings.request_timeout_seconds,
        retries=settings.retry_attempts,
    )


async def _build_blob_store(settings: Settings, report: ModeReport) -> BlobStore:
    if settings.mock_mode or settings.blob_storage_path is None:
        report.record("blobs", ServiceMode.MOCK, _mock_reason(settings, "BLOB_STORAGE_PATH"))
        return InMemoryBlobStore()

    store = FileSystemBlobStore(
        settings.blob_storage_path,
        public_base_url=settings.blob_public_base_url,
    )
    try:
        await store.healthcheck()
    except BlobStoreError as exc:
        if settings.is_production:
            raise ConfigurationError(str(exc)) from exc
        logger.warning("Blob storage probe failed, using in-memory blobs: %s", exc)
        report.record("blobs", ServiceMode.MOCK, f"probe failed: {exc}")
        return InMemoryBlobStore()

    report.record("blobs", ServiceMode.LIVE, str(settings.blob_storage_path))
    return store


def _build_telemetry(settings: Settings, report: ModeReport) -> Telemetry:
    if settings.mock_mode or not settings.telemetry_pushgateway_url:
        report.record("telemetry", ServiceMode.MOCK, "local metrics only")
        return Telemetry(job=settings.telemetry_job)

    report.record("telemetry", ServiceMode.LIVE, settings.telemetry_pushgateway_url)
    return Telemetry(
        pushgateway_url=settings.telemetry_pushgateway_url,
        job=settings.telemetry_job,
    )


async def build_backends(settings: Settings) -> Backends:
    report = ModeReport()
    container, engine = await _build_container(settings, report)
    classifier = _build_classifier(settings, report)
    blob_store = await _build_blob_store(settings, report)
    telemetry = _build_telemetry(settings, report)

    for name, status in report.services.items():
        logger.info("Backend %s mode=%s reason=%s", name, status.mode.value, status.reason)

    return Backends(
        container=container,
        classifier=classifier,
        blob_store=blob_store,
        telemetry=telemetry,
        report=report,
        engine=engine,
    )


__all__ = ["Backends", "build_backends"]
