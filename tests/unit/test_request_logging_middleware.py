from __future__ import annotations

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from backend.app.metrics import REQUEST_COUNT, REQUEST_ERRORS
from backend.app.middleware import RequestLoggingMiddleware


def _metric_value(counter, **labels) -> float:
    for family in counter.collect():
        for sample in family.samples:
            if all(sample.labels.get(key) == value for key, value in labels.items()):
                return sample.value
    return 0.0


def _app_with_middleware() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)
    return app


def test_request_logging_success_adds_header() -> None:
    app = _app_with_middleware()

    @app.get("/journals/{entry_id}")
    async def read(entry_id: str) -> dict[str, str]:  # pragma: no cover - executed via client
        return {"id": entry_id}

    labels = {"method": "GET", "path": "/journals/{entry_id}", "status": "200"}
    before = _metric_value(REQUEST_COUNT, **labels)
    with TestClient(app) as client:
        response = client.get("/journals/abc")
        client.get("/journals/def")
    after = _metric_value(REQUEST_COUNT, **labels)

    assert response.status_code == 200
    assert response.headers.get("X-Request-ID")
    assert after == pytest.approx(before + 2.0)


def test_request_logging_reuses_incoming_request_id(caplog: pytest.LogCaptureFixture) -> None:
    app = _app_with_middleware()

    @app.get("/ping")
    async def ping() -> dict[str, str]:  # pragma: no cover - executed via client
        return {"pong": "ok"}

    with caplog.at_level("INFO", logger="lifetrack.request"):
        with TestClient(app) as client:
            response = client.get("/ping", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"
    records = [record for record in caplog.records if record.name == "lifetrack.request"]
    assert records
    assert records[-1].request_id == "req-42"
    assert records[-1].status == 200


@pytest.mark.parametrize("incoming", ["x" * 129, "bad id<script>", "../etc/passwd"])
def test_request_logging_replaces_unusable_request_id(incoming: str) -> None:
    app = _app_with_middleware()

    @app.get("/ping")
    async def ping() -> dict[str, str]:  # pragma: no cover - executed via client
        return {"pong": "ok"}

    with TestClient(app) as client:
        response = client.get("/ping", headers={"X-Request-ID": incoming})

    request_id = response.headers["X-Request-ID"]
    assert request_id != incoming
    assert len(request_id) == 32
    int(request_id, 16)


def test_request_logging_failure_logs_error() -> None:
    app = _app_with_middleware()

    @app.get("/boom")
    async def boom() -> dict[str, str]:  # pragma: no cover - executed via client
        raise RuntimeError("boom")

    before_count = _metric_value(REQUEST_COUNT, method="GET", path="/boom", status="500")
    before_errors = _metric_value(REQUEST_ERRORS, method="GET", path="/boom", status="500")

    with TestClient(app) as client:
        with pytest.raises(RuntimeError):
            client.get("/boom")

    after_count = _metric_value(REQUEST_COUNT, method="GET", path="/boom", status="500")
    after_errors = _metric_value(REQUEST_ERRORS, method="GET", path="/boom", status="500")

    assert after_count == pytest.approx(before_count + 1.0)
    assert after_errors == pytest.approx(before_errors + 1.0)
