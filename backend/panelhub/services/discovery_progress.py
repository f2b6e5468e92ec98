"""Process-wide discovery progress snapshot for pollers that missed the stream."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from panelhub.services.panel_state import now_ms
from panelhub.utils.ip import ip_sort_key


class ResultStatus(str, Enum):
    PENDING = "pending"
    PANEL = "panel"
    NOT_PANEL = "not-panel"
    NO_RESPONSE = "no-response"
    ERROR = "error"


# Higher wins when the same address is reported more than once in a run
STATUS_PRIORITY = {
    ResultStatus.PANEL: 5,
    ResultStatus.NOT_PANEL: 4,
    ResultStatus.ERROR: 3,
    ResultStatus.NO_RESPONSE: 2,
    ResultStatus.PENDING: 1,
}


@dataclass
class PartialResult:
    ip: str
    status: ResultStatus
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ip": self.ip, "status": self.status.value}
        if self.name:
            data["name"] = self.name
        return data


class DiscoveryProgressTracker:
    """Reset at sweep start, updated per result, frozen at completion."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.is_running = False
        self.phase = ""
        self.total_ips = 0
        self._results: dict[str, PartialResult] = {}
        self.start_time = 0
        self.last_update = 0

    def start(self, total_ips: int) -> None:
        self.reset()
        self.is_running = True
        self.phase = "starting"
        self.total_ips = total_ips
        self.start_time = now_ms()
        self.last_update = self.start_time

    def update_phase(self, phase: str) -> None:
        self.phase = phase
        self.last_update = now_ms()

    def add_result(self, ip: str, status: ResultStatus, name: str | None = None) -> None:
        """Record a result; a lower-priority status never overwrites a higher one."""
        existing = self._results.get(ip)
        if existing is None or STATUS_PRIORITY[status] > STATUS_PRIORITY[existing.status]:
            self._results[ip] = PartialResult(ip=ip, status=status, name=name or (existing.name if existing else None))
        elif name and existing.status == status:
            existing.name = name
        self.last_update = now_ms()

    def finish(self) -> None:
        self.is_running = False
        self.phase = "complete"
        self.last_update = now_ms()

    def snapshot(self) -> dict[str, Any]:
        counts = {"panelsFound": 0, "notPanels": 0, "noResponse": 0, "errors": 0}
        for result in self._results.values():
            if result.status == ResultStatus.PANEL:
                counts["panelsFound"] += 1
            elif result.status == ResultStatus.NOT_PANEL:
                counts["notPanels"] += 1
            elif result.status == ResultStatus.ERROR:
                counts["errors"] += 1
            else:
                counts["noResponse"] += 1

        ordered = sorted(self._results.values(), key=lambda r: ip_sort_key(r.ip))
        return {
            "isRunning": self.is_running,
            "phase": self.phase,
            "totalIps": self.total_ips,
            "scannedCount": len(self._results),
            **counts,
            "partialResults": [r.to_dict() for r in ordered],
            "startTime": self.start_time,
            "lastUpdate": self.last_update,
        }
