from __future__ import annotations

from datetime import datetime

import anyio
from fastapi.testclient import TestClient

from backend.app.core.security import Principal, TokenVerifier
from backend.app.main import create_app
from backend.app.schemas.journal import Attachment
from backend.app.services.journal import attachment_blob_name


def _create(client: TestClient, content: str, **fields) -> dict:
    response = client.post("/journals", json={"content": content, **fields})
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(test_client: TestClient) -> None:
    response = test_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "up"
    assert body["version"] == "0.1.0-test"
    assert body["services"]["database"]["mode"] == "mock"


def test_health_does_not_require_auth(test_client: TestClient) -> None:
    response = test_client.get("/health", headers={"Authorization": ""})
    assert response.status_code == 200


def test_readyz_reports_probes(test_client: TestClient) -> None:
    response = test_client.get("/readyz")
    assert response.status_code == 200
    body = response.json()
    assert body["ready"] is True
    assert body["database"]["ok"] is True
    assert body["blobs"]["detail"] == "ok"


def test_metrics_endpoint(test_client: TestClient) -> None:
    test_client.get("/health")
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "lifetrack_requests_total" in response.text


def test_auth_required_for_journal_routes(test_client: TestClient, classifier) -> None:
    response = test_client.post(
        "/journals",
        json={"content": "entry"},
        headers={"Authorization": ""},
    )
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["error"] == "AuthError"
    assert classifier.calls == []

    invalid = test_client.get("/journals", headers={"Authorization": "Bearer nope"})
    assert invalid.status_code == 401


def test_create_scores_entry(test_client: TestClient, backends) -> None:
    response = test_client.post(
        "/journals",
        json={"userId": "u1", "content": "I am happy", "tags": ["mood"]},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["sentimentScore"] == 0.8
    assert body["userId"] == "u1"
    assert body["contentFormat"] == "plain"
    assert body["tags"] == ["mood"]
    assert response.headers["ETag"] == f'"{body["etag"]}"'
    assert backends.container.name == "journals"


def test_create_defaults_owner_to_token_subject(test_client: TestClient) -> None:
    body = _create(test_client, "no explicit owner")
    assert body["userId"] == "u1"


def test_create_rejects_foreign_user_id(test_client: TestClient, classifier) -> None:
    response = test_client.post("/journals", json={"userId": "u2", "content": "spoof"})
    assert response.status_code == 400
    assert classifier.calls == []


def test_create_without_content_is_rejected(test_client: TestClient, classifier) -> None:
    response = test_client.post("/journals", json={"userId": "u1"})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    assert classifier.calls == []

    blank = test_client.post("/journals", json={"content": "  "})
    assert blank.status_code == 400
    assert blank.json()["message"] == "content is required"
    assert classifier.calls == []


def test_classifier_failure_returns_500(test_client: TestClient, classifier, backends) -> None:
    classifier.error = RuntimeError("quota exceeded")

    response = test_client.post("/journals", json={"content": "hello"})

    assert response.status_code == 500
    assert response.json()["error"] == "ExternalServiceError"
    assert test_client.get("/journals").json() == []


def test_list_returns_container_order(test_client: TestClient) -> None:
    first = _create(test_client, "first")
    second = _create(test_client, "second")

    response = test_client.get("/journals")

    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [first["id"], second["id"]]

    paged = test_client.get("/journals", params={"limit": 1, "offset": 1})
    assert [item["id"] for item in paged.json()] == [second["id"]]


def test_list_is_owner_scoped(test_client: TestClient, issue_token) -> None:
    _create(test_client, "mine")

    other = test_client.get("/journals", headers={"Authorization": f"Bearer {issue_token('u2')}"})
    assert other.status_code == 200
    assert other.json() == []

    foreign = test_client.get("/journals", params={"userId": "u2"})
    assert foreign.status_code == 400


def test_get_update_delete_flow(test_client: TestClient, classifier) -> None:
    created = _create(test_client, "draft", tags=["work"])

    fetched = test_client.get(f"/journals/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["content"] == "draft"

    classifier.score = 0.3
    updated = test_client.put(f"/journals/{created['id']}", json={"content": "rewritten"})
    assert updated.status_code == 200
    body = updated.json()
    assert body["content"] == "rewritten"
    assert body["sentimentScore"] == 0.3
    assert body["tags"] == ["work"]
    assert datetime.fromisoformat(body["updatedAt"]) > datetime.fromisoformat(created["updatedAt"])

    deleted = test_client.delete(f"/journals/{created['id']}")
    assert deleted.status_code == 204
    assert deleted.content == b""

    missing = test_client.get(f"/journals/{created['id']}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"


def test_unknown_entry_returns_404(test_client: TestClient) -> None:
    assert test_client.get("/journals/does-not-exist").status_code == 404
    assert test_client.put("/journals/does-not-exist", json={"tags": []}).status_code == 404
    assert test_client.delete("/journals/does-not-exist").status_code == 404


def test_other_users_entries_are_hidden(test_client: TestClient, issue_token) -> None:
    created = _create(test_client, "secret")
    headers = {"Authorization": f"Bearer {issue_token('u2')}"}

    assert test_client.get(f"/journals/{created['id']}", headers=headers).status_code == 404
    assert test_client.delete(f"/journals/{created['id']}", headers=headers).status_code == 404
    assert test_client.get(f"/journals/{created['id']}").status_code == 200


def test_update_with_stale_if_match_conflicts(test_client: TestClient) -> None:
    created = _create(test_client, "v1")
    original_etag = f'"{created["etag"]}"'

    first = test_client.put(
        f"/journals/{created['id']}",
        json={"content": "v2"},
        headers={"If-Match": original_etag},
    )
    assert first.status_code == 200

    stale = test_client.put(
        f"/journals/{created['id']}",
        json={"content": "v3"},
        headers={"If-Match": original_etag},
    )
    assert stale.status_code == 409
    assert stale.json()["error"] == "ConflictError"
    assert test_client.get(f"/journals/{created['id']}").json()["content"] == "v2"


def test_search_endpoint(test_client: TestClient, classifier) -> None:
    classifier.score = 0.9
    park = _create(test_client, "Walk in the park", tags=["outdoors"])
    classifier.score = 0.1
    _create(test_client, "Rainy office day", tags=["work"])

    response = test_client.get(
        "/journals/search",
        params={"q": "park", "tags": "outdoors,friends", "sentimentMin": 0.5},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert [item["id"] for item in body["items"]] == [park["id"]]
    assert body["facets"]["tags"] == [{"value": "outdoors", "count": 1}]
    assert body["nextCursor"] is None


def test_search_requires_query(test_client: TestClient) -> None:
    assert test_client.get("/journals/search").status_code == 400
    out_of_range = test_client.get("/journals/search", params={"q": "x", "sentimentMin": 2})
    assert out_of_range.status_code == 400


def test_sentiment_trends_endpoint(test_client: TestClient, classifier) -> None:
    classifier.score = 0.4
    _create(test_client, "one")
    classifier.score = 0.8
    _create(test_client, "two")

    response = test_client.get("/journals/insights/sentiment-trends")

    assert response.status_code == 200
    body = response.json()
    assert abs(body["averageSentiment"] - 0.6) < 1e-9
    assert len(body["trendByDay"]) == 1
    assert body["trendByDay"][0]["entries"] == 2

    inverted = test_client.get(
        "/journals/insights/sentiment-trends",
        params={"startDate": "2026-09-10T00:00:00Z", "endDate": "2026-09-01T00:00:00Z"},
    )
    assert inverted.status_code == 400


def test_attachment_upload_and_release(test_client: TestClient, backends) -> None:
    upload = test_client.post(
        "/journals/attachments",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert upload.status_code == 201
    attachment = upload.json()
    assert attachment["fileName"] == "notes.txt"
    assert attachment["size"] == 5
    blob_name = attachment_blob_name("u1", Attachment.model_validate(attachment))
    assert blob_name in backends.blob_store

    created = _create(test_client, "with a file", attachments=[attachment])
    assert created["attachments"][0]["id"] == attachment["id"]

    assert test_client.delete(f"/journals/{created['id']}").status_code == 204
    assert blob_name not in backends.blob_store


def test_attachment_upload_validation(test_client: TestClient) -> None:
    too_big = test_client.post(
        "/journals/attachments",
        files={"file": ("big.txt", b"x" * 2048, "text/plain")},
    )
    assert too_big.status_code == 400

    wrong_type = test_client.post(
        "/journals/attachments",
        files={"file": ("tool.exe", b"MZ", "application/x-msdownload")},
    )
    assert wrong_type.status_code == 400
    assert "not allowed" in wrong_type.json()["message"]


def test_write_rate_limit(make_settings, backends, issue_token) -> None:
    app = create_app(make_settings(write_rate_limit=2), backends=backends)
    with TestClient(app) as client:
        client.headers.update({"Authorization": f"Bearer {issue_token('u1')}"})
        assert client.post("/journals", json={"content": "a"}).status_code == 201
        assert client.post("/journals", json={"content": "b"}).status_code == 201
        limited = client.post("/journals", json={"content": "c"})

    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1


def test_trusted_client_user_id(make_settings, backends, issue_token) -> None:
    app = create_app(make_settings(trust_client_user_id=True), backends=backends)
    with TestClient(app) as client:
        client.headers.update({"Authorization": f"Bearer {issue_token('service')}"})
        created = client.post("/journals", json={"userId": "u9", "content": "imported"})
        listed = client.get("/journals", params={"userId": "u9"})

    assert created.status_code == 201
    assert created.json()["userId"] == "u9"
    assert [item["userId"] for item in listed.json()] == ["u9"]


def test_server_errors_hide_detail_in_production(make_settings, backends, classifier) -> None:
    settings = make_settings(environment="production", jwt_secret="prod-secret")
    classifier.error = RuntimeError("upstream key leaked")
    token = TokenVerifier("prod-secret").issue(Principal(id="u1"))

    with TestClient(create_app(settings, backends=backends)) as client:
        response = client.post(
            "/journals",
            json={"content": "hello"},
            headers={"Authorization": f"Bearer {token}"},
        )

    assert response.status_code == 500
    assert response.json() == {"error": "ExternalServiceError", "message": "internal error"}


def test_list_returns_documents_already_in_container(test_client: TestClient, backends) -> None:
    documents = [
        {
            "id": entry_id,
            "userId": "u1",
            "content": content,
            "contentFormat": "plain",
            "sentimentScore": score,
            "date": "2026-09-0%sT10:00:00Z" % day,
            "createdAt": "2026-09-0%sT10:00:00Z" % day,
            "updatedAt": "2026-09-0%sT10:00:00Z" % day,
            "tags": [],
            "attachments": [],
        }
        for entry_id, content, score, day in [("b", "later", 0.7, 5), ("a", "earlier", 0.2, 1)]
    ]
    for document in documents:
        anyio.run(backends.container.create_item, document)

    response = test_client.get("/journals")

    assert response.status_code == 200
    assert [(item["id"], item["content"]) for item in response.json()] == [
        ("b", "later"),
        ("a", "earlier"),
    ]


def test_sentiment_trends_include_top_emotions(test_client: TestClient) -> None:
    _create(test_client, "Feeling happy and calm")
    _create(test_client, "Happy again")

    body = test_client.get("/journals/insights/sentiment-trends").json()

    assert body["topEmotions"] == [
        {"emotion": "joy", "frequency": 2},
        {"emotion": "calm", "frequency": 1},
    ]


def test_topic_analysis_endpoint(test_client: TestClient, classifier) -> None:
    classifier.score = 0.9
    _create(test_client, "Hike", tags=["outdoors", "friends"])
    classifier.score = 0.3
    _create(test_client, "Deadline", tags=["work"])
    classifier.score = 0.7
    _create(test_client, "Bike ride", tags=["outdoors"])

    response = test_client.get("/journals/insights/topic-analysis")

    assert response.status_code == 200
    body = response.json()
    assert body["topTopics"] == [
        {"topic": "outdoors", "frequency": 2},
        {"topic": "friends", "frequency": 1},
        {"topic": "work", "frequency": 1},
    ]
    assert [item["topic"] for item in body["topicSentiment"]] == ["friends", "outdoors", "work"]
    assert abs(body["topicSentiment"][1]["sentiment"] - 0.8) < 1e-9

    old_window = test_client.get(
        "/journals/insights/topic-analysis",
        params={"startDate": "2020-01-01T00:00:00Z", "endDate": "2020-01-31T00:00:00Z"},
    )
    assert old_window.json() == {"topTopics": [], "topicSentiment": []}

    inverted = test_client.get(
        "/journals/insights/topic-analysis",
        params={"startDate": "2026-09-10T00:00:00Z", "endDate": "2026-09-01T00:00:00Z"},
    )
    assert inverted.status_code == 400


def test_attachment_cannot_be_shared_between_entries(test_client: TestClient, backends) -> None:
    attachment = test_client.post(
        "/journals/attachments",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    ).json()
    first = _create(test_client, "first", attachments=[attachment])

    second = test_client.post("/journals", json={"content": "second", "attachments": [attachment]})

    assert second.status_code == 400
    assert second.json()["error"] == "ValidationError"
    assert [item["id"] for item in test_client.get("/journals").json()] == [first["id"]]
    blob_name = attachment_blob_name("u1", Attachment.model_validate(attachment))
    assert blob_name in backends.blob_store


def test_startup_warns_about_mock_backends(make_settings, backends, caplog) -> None:
    with caplog.at_level("WARNING", logger="backend.app.main"):
        with TestClient(create_app(make_settings(), backends=backends)):
            pass

    assert any("Mock backends in use" in record.getMessage() for record in caplog.records)
