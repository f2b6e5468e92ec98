"""Multi-phase subnet sweep for panels.

Phase 1 is a fast, wide, zero-retry sweep that catches responsive hosts
cheaply.  Later phases only rescan addresses that are still unresolved, with
longer timeouts, more retries and fewer workers.  As soon as a probe finds a
panel its settings page is fetched in the background, so names show up while
the sweep is still running.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import httpx

from panelhub.config import settings
from panelhub.services.discovery_progress import DiscoveryProgressTracker, ResultStatus
from panelhub.services.panel_http import PanelHttpClient
from panelhub.services.panel_state import PanelSettings
from panelhub.utils.ip import expand_range, is_valid_base_ip, ip_sort_key

logger = logging.getLogger(__name__)

DiscoveryStatus = ResultStatus

MAX_RANGE_SPAN = 254


class InvalidRangeError(ValueError):
    """Discovery range rejected before any network activity."""


@dataclass(frozen=True)
class PhaseConfig:
    name: str
    timeout_ms: int
    concurrency: int
    retries: int
    base_retry_delay_ms: int


STANDARD_PHASES: tuple[PhaseConfig, ...] = (
    PhaseConfig("quick-sweep", timeout_ms=500, concurrency=20, retries=0, base_retry_delay_ms=0),
    PhaseConfig("standard", timeout_ms=1200, concurrency=15, retries=1, base_retry_delay_ms=100),
    PhaseConfig("deep", timeout_ms=2500, concurrency=8, retries=2, base_retry_delay_ms=150),
)

# Slow links and recovering panels
THOROUGH_PHASES: tuple[PhaseConfig, ...] = (
    PhaseConfig("quick-sweep", timeout_ms=1000, concurrency=10, retries=0, base_retry_delay_ms=0),
    PhaseConfig("standard", timeout_ms=2500, concurrency=8, retries=2, base_retry_delay_ms=200),
    PhaseConfig("deep", timeout_ms=5000, concurrency=4, retries=3, base_retry_delay_ms=300),
)

TERMINAL_STATUSES = frozenset({DiscoveryStatus.PANEL, DiscoveryStatus.NOT_PANEL})


@dataclass
class DiscoveryResult:
    ip: str
    status: DiscoveryStatus = DiscoveryStatus.PENDING
    http_status: int | None = None
    error_message: str | None = None
    name: str | None = None
    settings: PanelSettings | None = None
    discovery_time_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ip": self.ip, "status": self.status.value}
        if self.http_status is not None:
            data["httpStatus"] = self.http_status
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        if self.name is not None:
            data["name"] = self.name
        if self.settings is not None:
            data["settings"] = self.settings.to_dict()
        if self.discovery_time_ms is not None:
            data["discoveryTimeMs"] = self.discovery_time_ms
        return data


class DiscoveryEventType(str, Enum):
    HEARTBEAT = "heartbeat"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    RESULT = "result"
    UPDATE = "update"
    COMPLETE = "complete"


@dataclass
class PhaseStats:
    name: str
    scanned: int
    found: int
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "scanned": self.scanned, "found": self.found, "durationMs": self.duration_ms}


@dataclass
class DiscoveryStats:
    total_ips: int
    panels_found: int
    non_panels: int
    no_response: int
    errors: int
    phases: list[PhaseStats] = field(default_factory=list)
    total_duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalIps": self.total_ips,
            "panelsFound": self.panels_found,
            "nonPanels": self.non_panels,
            "noResponse": self.no_response,
            "errors": self.errors,
            "phases": [p.to_dict() for p in self.phases],
            "totalDurationMs": self.total_duration_ms,
        }


@dataclass
class DiscoveryEvent:
    type: DiscoveryEventType
    phase: str | None = None
    data: DiscoveryResult | None = None
    progress: dict[str, int] | None = None
    stats: DiscoveryStats | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": self.type.value}
        if self.phase is not None:
            body["phase"] = self.phase
        if self.data is not None:
            body["data"] = self.data.to_dict()
        if self.progress is not None:
            body["progress"] = self.progress
        if self.stats is not None:
            body["stats"] = self.stats.to_dict()
        return body


EventCallback = Callable[[DiscoveryEvent], None]


def validate_discovery_range(base_ip: str, start: int, end: int) -> None:
    """Raise :class:`InvalidRangeError` for anything we refuse to scan."""
    if not is_valid_base_ip(base_ip):
        raise InvalidRangeError("baseIp must be three octets, e.g. 192.168.1")
    if not (0 <= start <= 254 and 0 <= end <= 254):
        raise InvalidRangeError("start and end must be between 0 and 254")
    if end < start:
        raise InvalidRangeError("end must be greater than or equal to start")
    if end - start > MAX_RANGE_SPAN:
        raise InvalidRangeError(f"range may cover at most {MAX_RANGE_SPAN + 1} addresses")


def enrichment_grace_seconds(outstanding: int) -> float:
    """How long to wait for background settings fetches after the last phase."""
    grace_ms = outstanding * settings.discovery_enrichment_grace_per_fetch_ms
    grace_ms = max(settings.discovery_enrichment_grace_min_ms, grace_ms)
    grace_ms = min(settings.discovery_enrichment_grace_max_ms, grace_ms)
    return grace_ms / 1000


def _count(results: dict[str, DiscoveryResult], status: DiscoveryStatus) -> int:
    return sum(1 for r in results.values() if r.status == status)


class _Sweep:
    """State for one ``discover`` call."""

    def __init__(self, targets: list[str], on_event: EventCallback | None):
        self.targets = targets
        self.results = {ip: DiscoveryResult(ip=ip) for ip in targets}
        self.pending = set(targets)
        self.enrichment_tasks: set[asyncio.Task] = set()
        self._on_event = on_event

    def progress(self) -> dict[str, int]:
        return {
            "completed": len(self.targets) - len(self.pending),
            "total": len(self.targets),
            "panelsFound": _count(self.results, DiscoveryStatus.PANEL),
        }

    def emit(self, event: DiscoveryEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.warning("Discovery event handler failed: %s", e)


class DiscoveryEngine:
    """Runs phased sweeps and keeps the shared progress snapshot current."""

    def __init__(
        self,
        progress: DiscoveryProgressTracker,
        transport: httpx.AsyncBaseTransport | None = None,
        panel_http: PanelHttpClient | None = None,
        phases: tuple[PhaseConfig, ...] | None = None,
        thorough_phases: tuple[PhaseConfig, ...] | None = None,
    ):
        self._progress = progress
        self._transport = transport
        self._panel_http = panel_http or PanelHttpClient(transport=transport)
        self._phases = phases or STANDARD_PHASES
        self._thorough_phases = thorough_phases or THOROUGH_PHASES
        self._signature = settings.panel_signature.lower()

    async def discover(
        self,
        base_ip: str,
        start: int,
        end: int,
        on_event: EventCallback | None = None,
        thorough: bool = False,
    ) -> dict[str, DiscoveryResult]:
        """Sweep ``base_ip.start`` .. ``base_ip.end`` and return every result by IP."""
        validate_discovery_range(base_ip, start, end)
        base_ip = base_ip.strip()

        started = time.monotonic()
        sweep = _Sweep(expand_range(base_ip, start, end), on_event)
        phases = self._thorough_phases if thorough else self._phases
        phase_stats: list[PhaseStats] = []

        self._progress.start(len(sweep.targets))
        sweep.emit(DiscoveryEvent(type=DiscoveryEventType.HEARTBEAT))

        logger.info(
            "Discovery %s.%d-%d started (%d IPs, %s mode)",
            base_ip, start, end, len(sweep.targets), "thorough" if thorough else "standard",
        )

        async with httpx.AsyncClient(transport=self._transport, follow_redirects=False) as client:
            for phase in phases:
                if not sweep.pending:
                    break
                phase_stats.append(await self._run_phase(client, sweep, phase))

        # Anything never classified is unreachable
        for ip in sweep.pending:
            result = sweep.results[ip]
            if result.status in (DiscoveryStatus.PENDING, DiscoveryStatus.NO_RESPONSE):
                result.status = DiscoveryStatus.NO_RESPONSE
                result.error_message = "No response after all phases"

        await self._await_enrichment(sweep)

        stats = DiscoveryStats(
            total_ips=len(sweep.targets),
            panels_found=_count(sweep.results, DiscoveryStatus.PANEL),
            non_panels=_count(sweep.results, DiscoveryStatus.NOT_PANEL),
            no_response=_count(sweep.results, DiscoveryStatus.NO_RESPONSE)
            + _count(sweep.results, DiscoveryStatus.PENDING),
            errors=_count(sweep.results, DiscoveryStatus.ERROR),
            phases=phase_stats,
            total_duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info("Discovery complete: %d panels in %dms", stats.panels_found, stats.total_duration_ms)

        self._progress.finish()
        sweep.emit(
            DiscoveryEvent(
                type=DiscoveryEventType.COMPLETE,
                stats=stats,
                progress={
                    "completed": len(sweep.targets),
                    "total": len(sweep.targets),
                    "panelsFound": stats.panels_found,
                },
            )
        )
        return dict(sorted(sweep.results.items(), key=lambda item: ip_sort_key(item[0])))

    # --- Phases ------------------------------------------------------------

    async def _run_phase(self, client: httpx.AsyncClient, sweep: _Sweep, phase: PhaseConfig) -> PhaseStats:
        phase_started = time.monotonic()
        to_scan = sorted(sweep.pending, key=ip_sort_key)
        found = 0

        sweep.emit(DiscoveryEvent(type=DiscoveryEventType.PHASE_START, phase=phase.name, progress=sweep.progress()))
        self._progress.update_phase(phase.name)
        logger.info(
            "Phase %s: scanning %d IPs (timeout %dms, concurrency %d)",
            phase.name, len(to_scan), phase.timeout_ms, phase.concurrency,
        )

        queue: asyncio.Queue[str] = asyncio.Queue()
        for ip in to_scan:
            queue.put_nowait(ip)

        async def worker() -> None:
            nonlocal found
            while True:
                try:
                    ip = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result = await self._probe_with_retry(client, ip, phase)
                sweep.results[ip] = result
                if result.status in TERMINAL_STATUSES:
                    sweep.pending.discard(ip)
                    if result.status == DiscoveryStatus.PANEL:
                        found += 1
                        self._start_enrichment(sweep, ip)
                self._progress.add_result(ip, result.status, result.name)
                sweep.emit(
                    DiscoveryEvent(
                        type=DiscoveryEventType.RESULT,
                        phase=phase.name,
                        data=result,
                        progress=sweep.progress(),
                    )
                )
                await asyncio.sleep(settings.discovery_probe_stagger_ms / 1000)

        workers = min(phase.concurrency, len(to_scan))
        await asyncio.gather(*(worker() for _ in range(workers)))

        duration_ms = int((time.monotonic() - phase_started) * 1000)
        logger.info(
            "Phase %s done in %dms: %d panels, %d IPs remaining",
            phase.name, duration_ms, found, len(sweep.pending),
        )
        sweep.emit(
            DiscoveryEvent(type=DiscoveryEventType.PHASE_COMPLETE, phase=phase.name, progress=sweep.progress())
        )
        return PhaseStats(name=phase.name, scanned=len(to_scan), found=found, duration_ms=duration_ms)

    async def _probe_with_retry(self, client: httpx.AsyncClient, ip: str, phase: PhaseConfig) -> DiscoveryResult:
        result = DiscoveryResult(ip=ip, status=DiscoveryStatus.NO_RESPONSE, error_message="No response")
        for attempt in range(phase.retries + 1):
            result = await self.probe(client, ip, phase.timeout_ms)
            if result.status in TERMINAL_STATUSES:
                return result
            if attempt < phase.retries:
                await asyncio.sleep(phase.base_retry_delay_ms * (attempt + 1) / 1000)
        return result

    async def probe(self, client: httpx.AsyncClient, ip: str, timeout_ms: int) -> DiscoveryResult:
        """One bounded GET to the device root, classified."""
        started = time.monotonic()
        try:
            resp = await client.get(
                f"http://{ip}/", timeout=timeout_ms / 1000, headers={"Cache-Control": "no-store"}
            )
        except httpx.TimeoutException:
            logger.debug("Probe %s: timeout", ip)
            return DiscoveryResult(ip=ip, status=DiscoveryStatus.NO_RESPONSE, error_message="Timeout")
        except httpx.HTTPError as e:
            logger.debug("Probe %s: %s", ip, e)
            return DiscoveryResult(
                ip=ip, status=DiscoveryStatus.NO_RESPONSE, error_message=str(e) or e.__class__.__name__
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if resp.status_code != 200:
            return DiscoveryResult(
                ip=ip,
                status=DiscoveryStatus.ERROR,
                http_status=resp.status_code,
                error_message=f"HTTP {resp.status_code}",
                discovery_time_ms=elapsed_ms,
            )

        if self._signature in resp.text.lower():
            return DiscoveryResult(
                ip=ip, status=DiscoveryStatus.PANEL, http_status=200, discovery_time_ms=elapsed_ms
            )
        return DiscoveryResult(
            ip=ip,
            status=DiscoveryStatus.NOT_PANEL,
            http_status=200,
            error_message="Not a Cubixx panel",
            discovery_time_ms=elapsed_ms,
        )

    # --- Enrichment --------------------------------------------------------

    def _start_enrichment(self, sweep: _Sweep, ip: str) -> None:
        task = asyncio.create_task(self._enrich(sweep, ip), name=f"enrich-{ip}")
        sweep.enrichment_tasks.add(task)
        task.add_done_callback(sweep.enrichment_tasks.discard)

    async def _enrich(self, sweep: _Sweep, ip: str) -> None:
        page = await self._panel_http.fetch_settings(ip, timeout_ms=settings.discovery_settings_timeout_ms)
        result = sweep.results.get(ip)
        if page is None or result is None or result.status != DiscoveryStatus.PANEL:
            return

        result.name = page.name or result.name
        if not page.settings.is_empty():
            result.settings = page.settings
        self._progress.add_result(ip, DiscoveryStatus.PANEL, result.name)
        logger.debug("Enriched %s: name=%s", ip, result.name)
        sweep.emit(DiscoveryEvent(type=DiscoveryEventType.UPDATE, data=result, progress=sweep.progress()))

    async def _await_enrichment(self, sweep: _Sweep) -> None:
        tasks = set(sweep.enrichment_tasks)
        if not tasks:
            return
        grace = enrichment_grace_seconds(len(tasks))
        logger.info("Waiting up to %.1fs for %d settings fetches", grace, len(tasks))
        _done, still_running = await asyncio.wait(tasks, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.info("Abandoned %d slow settings fetches", len(still_running))
