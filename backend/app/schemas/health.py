from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from ..services.modes import ServiceMode


class ServiceStatusModel(BaseModel):
    mode: ServiceMode
    reason: str | None = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    services: dict[str, ServiceStatusModel]


class ProbeResult(BaseModel):
    ok: bool
    detail: str


class ReadinessResponse(BaseModel):
    ready: bool
    database: ProbeResult
    blobs: ProbeResult
