"""Fire-and-forget telemetry: events, metrics and exceptions.

Everything recorded here lands in the Prometheus registry and in the JSON
log. When a Pushgateway is configured, :meth:`Telemetry.flush` pushes the
registry there; failures are logged and never propagate to callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, push_to_gateway

from .metrics import TELEMETRY_EVENTS, TELEMETRY_EXCEPTIONS, TELEMETRY_METRICS

logger = logging.getLogger("lifetrack.telemetry")


class Telemetry:
    def __init__(
        self,
        *,
        pushgateway_url: str | None = None,
        job: str = "lifetrack-journal",
        registry: CollectorRegistry = REGISTRY,
    ) -> None:
        self._pushgateway_url = pushgateway_url
        self._job = job
        self._registry = registry

    @property
    def remote_enabled(self) -> bool:
        return bool(self._pushgateway_url)

    def track_event(self, name: str, properties: dict[str, Any] | None = None) -> None:
        TELEMETRY_EVENTS.labels(name=name).inc()
        logger.info(
            "event %s",
            name,
            extra={"extra_fields": {"event": name, **(properties or {})}},
        )

    def track_metric(self, name: str, value: float) -> None:
        TELEMETRY_METRICS.labels(name=name).set(value)

    def track_exception(
        self,
        exc: BaseException,
        properties: dict[str, Any] | None = None,
    ) -> None:
        TELEMETRY_EXCEPTIONS.labels(type=type(exc).__name__).inc()
        logger.error(
            "exception %s: %s",
            type(exc).__name__,
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"extra_fields": dict(properties or {})},
        )

    async def flush(self) -> bool:
        """Push the registry to the Pushgateway, if one is configured."""

        if not self._pushgateway_url:
            return False
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: push_to_gateway(
                    self._pushgateway_url, job=self._job, registry=self._registry
                ),
            )
        except Exception as exc:
            logger.warning("Telemetry flush failed: %s", exc)
            return False
        return True


__all__ = ["Telemetry"]
