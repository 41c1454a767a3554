from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ServiceMode(str, Enum):
    LIVE = "live"
    MOCK = "mock"


@dataclass(frozen=True)
class ServiceStatus:
    mode: ServiceMode
    reason: str | None = None

    @property
    def live(self) -> bool:
        return self.mode == ServiceMode.LIVE


@dataclass
class ModeReport:
    """Mode chosen for each external backend, fixed once at startup."""

    services: dict[str, ServiceStatus] = field(default_factory=dict)

    def record(self, name: str, mode: ServiceMode, reason: str | None = None) -> ServiceStatus:
        status = ServiceStatus(mode, reason)
        self.services[name] = status
        return status

    @property
    def fully_live(self) -> bool:
        return bool(self.services) and all(status.live for status in self.services.values())

    def as_dict(self) -> dict[str, dict[str, str | None]]:
        return {
            name: {"mode": status.mode.value, "reason": status.reason}
            for name, status in self.services.items()
        }
