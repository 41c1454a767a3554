from __future__ import annotations

import asyncio
from collections.abc import Callable, Generator, Sequence
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from backend.app.core.config import Settings, load_settings
from backend.app.core.security import Principal, TokenVerifier
from backend.app.main import create_app
from backend.app.sentiment import SentimentResult
from backend.app.services.backends import Backends
from backend.app.services.journal import JournalService
from backend.app.services.modes import ModeReport, ServiceMode
from backend.app.storage import InMemoryBlobStore, InMemoryDocumentContainer
from backend.app.telemetry import Telemetry
from backend.db import create_engine, create_session_factory, init_db

TEST_JWT_SECRET = "test-secret"

_CONFIG_ENV = (
    "ENVIRONMENT",
    "MOCK_MODE",
    "DATABASE_URL",
    "JOURNAL_CONTAINER",
    "TEXT_ANALYTICS_ENDPOINT",
    "TEXT_ANALYTICS_KEY",
    "BLOB_STORAGE_PATH",
    "BLOB_PUBLIC_BASE_URL",
    "MAX_ATTACHMENT_BYTES",
    "TELEMETRY_PUSHGATEWAY_URL",
    "JWT_SECRET",
    "JWT_AUDIENCE",
    "TRUST_CLIENT_USER_ID",
    "LOG_FILE",
    "WRITE_RATE_LIMIT",
)


class StubClassifier:
    """Returns a fixed positive score and records every batch it receives."""

    backend = "stub"

    def __init__(self, score: float = 0.5, error: Exception | None = None) -> None:
        self.score = score
        self.error = error
        self.calls: list[list[str]] = []

    async def analyze(self, texts: Sequence[str]) -> list[SentimentResult]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [
            SentimentResult(positive=self.score, neutral=0.0, negative=1.0 - self.score)
            for _ in texts
        ]

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def make_settings(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Callable[..., Settings]:
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VERSION", "0.1.0-test")

    def factory(**overrides: object) -> Settings:
        overrides.setdefault("log_file", tmp_path / "logs" / "lifetrack.log")
        overrides.setdefault("environment", "test")
        overrides.setdefault("jwt_secret", TEST_JWT_SECRET)
        return load_settings(**overrides)

    return factory


@pytest.fixture()
def issue_token() -> Callable[[str], str]:
    verifier = TokenVerifier(TEST_JWT_SECRET)

    def issue(user_id: str) -> str:
        return verifier.issue(Principal(id=user_id, email=f"{user_id}@example.com"))

    return issue


@pytest.fixture()
def classifier() -> StubClassifier:
    return StubClassifier(score=0.8)


@pytest.fixture()
def backends(classifier: StubClassifier) -> Backends:
    report = ModeReport()
    for name in ("database", "sentiment", "blobs", "telemetry"):
        report.record(name, ServiceMode.MOCK, "test fixture")
    return Backends(
        container=InMemoryDocumentContainer("journals"),
        classifier=classifier,
        blob_store=InMemoryBlobStore(),
        telemetry=Telemetry(),
        report=report,
    )


@pytest.fixture()
def journal_service(backends: Backends) -> JournalService:
    return JournalService(
        backends.container,
        backends.classifier,
        backends.blob_store,
        backends.telemetry,
        max_attachment_bytes=1024,
    )


@pytest.fixture()
def test_client(
    make_settings: Callable[..., Settings],
    backends: Backends,
    issue_token: Callable[[str], str],
) -> Generator[TestClient, None, None]:
    app = create_app(make_settings(max_attachment_bytes=1024), backends=backends)
    with TestClient(app) as client:
        client.headers.update({"Authorization": f"Bearer {issue_token('u1')}"})
        yield client


@pytest.fixture()
def temp_session_factory(tmp_path: Path):
    db_path = tmp_path / f"unit_{uuid4().hex}.db"
    database_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_engine(database_url)
    session_factory = create_session_factory(engine)

    async def prepare() -> None:
        await init_db(engine, session_factory, "test")
        await engine.dispose()

    asyncio.run(prepare())
    try:
        yield session_factory
    finally:
        asyncio.run(engine.dispose())
