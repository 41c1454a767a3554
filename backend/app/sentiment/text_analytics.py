from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from ..utils.timeouts import retry_async
from .base import ClassifierError, SentimentResult

logger = logging.getLogger(__name__)

SENTIMENT_PATH = "/text/analytics/v3.1/sentiment"


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False


class TextAnalyticsClassifier:
    """Client for the Azure Language sentiment REST endpoint."""

    backend = "text_analytics"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        *,
        language: str = "en",
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = endpoint.rstrip("/") + SENTIMENT_PATH
        self._language = language
        self._retries = max(retries, 1)
        self._retry_delay = retry_delay
        self._headers = {"Ocp-Apim-Subscription-Key": api_key}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def analyze(self, texts: Sequence[str]) -> list[SentimentResult]:
        if not texts:
            return []
        payload = {
            "documents": [
                {"id": str(index), "language": self._language, "text": text}
                for index, text in enumerate(texts)
            ]
        }
        try:
            body = await retry_async(
                lambda: self._post(payload),
                attempts=self._retries,
                delay=self._retry_delay,
                retry_if=_is_transient,
            )
        except httpx.HTTPError as exc:
            logger.warning("Text analytics request failed after retries: %s", exc)
            raise ClassifierError(f"text analytics request failed: {exc}") from exc
        except ValueError as exc:
            raise ClassifierError("text analytics returned invalid JSON") from exc
        return self._parse(body, len(texts))

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(self._url, json=payload, headers=self._headers)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _parse(body: dict[str, Any], expected: int) -> list[SentimentResult]:
        errors = body.get("errors") or []
        if errors:
            first = errors[0]
            message = (first.get("error") or {}).get("message", "unknown error")
            raise ClassifierError(f"document {first.get('id')}: {message}")

        by_id: dict[str, SentimentResult] = {}
        for document in body.get("documents") or []:
            scores = document.get("confidenceScores") or {}
            try:
                by_id[str(document["id"])] = SentimentResult(
                    positive=float(scores["positive"]),
                    neutral=float(scores.get("neutral", 0.0)),
                    negative=float(scores.get("negative", 0.0)),
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ClassifierError("malformed sentiment document") from exc

        try:
            return [by_id[str(index)] for index in range(expected)]
        except KeyError as exc:
            raise ClassifierError(f"missing result for document {exc.args[0]}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
