"""
Backend Performance Monitor
===========================
Per-request latency/memory sampling plus a periodic system/database snapshot.

OWNERSHIP:
    One monitor instance is created by the host application at startup and
    stopped at shutdown (see main.py lifespan). Nothing here is a process-wide
    singleton.

REQUEST SAMPLING:
    Each request draws once from `rng`; only sampled requests pay for timing
    and are appended to the shared RequestRingBuffer. A sampled request slower
    than `slow_threshold_ms` fires the slow-request callback immediately,
    independent of aggregate statistics.

SNAPSHOTS:
    A background asyncio task refreshes the system snapshot (psutil) and, when
    a database probe reports a live connection, the database snapshot. Each is
    published by assigning one frozen model to one attribute, so readers see
    either the previous or the new object, never a half-written one.
    A database failure drops that cycle's database metrics with a warning.
"""
import asyncio
import logging
import platform
import random
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

import psutil

from perfwatch.collectors.ring_buffer import RequestRingBuffer
from perfwatch.core.config import (
    BACKEND_SAMPLE_RATE,
    MEMORY_THRESHOLD,
    REQUEST_BUFFER_CAPACITY,
    SLOW_REQUEST_THRESHOLD_MS,
    SNAPSHOT_INTERVAL_SECONDS,
)
from perfwatch.models.backend_metrics import DatabaseSnapshot, RequestSummary, SystemSnapshot
from perfwatch.models.metric_bundle import MetricBundle
from perfwatch.models.request_record import RequestRecord
from perfwatch.utils import stats

logger = logging.getLogger(__name__)


class DatabaseProbe(Protocol):
    """Host-supplied view of the application's database connection."""

    def is_connected(self) -> bool: ...

    def server_status(self) -> Mapping[str, Any]: ...


def _log_slow_request(record: RequestRecord) -> None:
    logger.warning(
        "Slow request detected: %s %s - %.2fms",
        record.method, record.path, record.duration_ms,
    )


def _log_high_memory(snapshot: SystemSnapshot) -> None:
    logger.warning("High memory usage detected: %.2f%%", snapshot.memory_usage * 100)


class BackendPerformanceMonitor:
    """
    Request telemetry and system snapshots for one host process.

    Usage:
        monitor = BackendPerformanceMonitor(sample_rate=0.1)
        await monitor.start()
        ...
        summary = monitor.summary()
        await monitor.stop()
    """

    def __init__(
        self,
        sample_rate: float = BACKEND_SAMPLE_RATE,
        slow_threshold_ms: float = SLOW_REQUEST_THRESHOLD_MS,
        memory_threshold: float = MEMORY_THRESHOLD,
        capacity: int = REQUEST_BUFFER_CAPACITY,
        snapshot_interval: float = SNAPSHOT_INTERVAL_SECONDS,
        database_probe: Optional[DatabaseProbe] = None,
        on_slow_request: Optional[Callable[[RequestRecord], None]] = None,
        on_high_memory: Optional[Callable[[SystemSnapshot], None]] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError(f"sample_rate must be within [0, 1], got {sample_rate}")

        self.sample_rate = sample_rate
        self.slow_threshold_ms = slow_threshold_ms
        self.memory_threshold = memory_threshold
        self.snapshot_interval = snapshot_interval
        self.database_probe = database_probe
        self.on_slow_request = on_slow_request or _log_slow_request
        self.on_high_memory = on_high_memory or _log_high_memory
        self._rng = rng

        self.requests = RequestRingBuffer(capacity)
        self._process = psutil.Process()

        # Latest-value slots, replaced wholesale by the snapshot task
        self._system: Optional[SystemSnapshot] = None
        self._database: Optional[DatabaseSnapshot] = None
        self._database_status = "not collected"

        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------
    def should_sample(self) -> bool:
        """One uniform draw per request."""
        return self._rng() < self.sample_rate

    def current_rss(self) -> int:
        try:
            return self._process.memory_info().rss
        except psutil.Error as exc:
            logger.debug("RSS unavailable: %s", exc)
            return 0

    def record_request(self, record: RequestRecord) -> None:
        """Store a sampled request and fire the slow-request alert if needed."""
        self.requests.append(record)

        if record.duration_ms > self.slow_threshold_ms:
            try:
                self.on_slow_request(record)
            except Exception as exc:
                logger.error("Slow-request alert callback failed: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Derived statistics
    # ------------------------------------------------------------------
    def summary(self) -> Optional[RequestSummary]:
        """Aggregate statistics over a point-in-time snapshot; None when empty."""
        records = self.requests.snapshot()
        if not records:
            return None

        durations = [r.duration_ms for r in records]
        status_codes: Dict[int, int] = {}
        for r in records:
            status_codes[r.status_code] = status_codes.get(r.status_code, 0) + 1
        errors = sum(1 for r in records if r.status_code >= 400)

        return RequestSummary(
            total_requests=len(records),
            average_response_time=stats.mean(durations),
            median_response_time=stats.median(durations),
            min_response_time=min(durations),
            max_response_time=max(durations),
            p95_response_time=stats.percentile(durations, 95),
            p99_response_time=stats.percentile(durations, 99),
            status_codes=dict(sorted(status_codes.items())),
            error_rate=errors / len(records),
            slow_requests=sum(1 for d in durations if d > self.slow_threshold_ms),
        )

    def recent(self, minutes: float = 5, now: Optional[datetime] = None) -> List[RequestRecord]:
        """Records completed within the last `minutes`."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes)
        return [r for r in self.requests.snapshot() if r.timestamp > cutoff]

    # ------------------------------------------------------------------
    # System / database snapshots
    # ------------------------------------------------------------------
    @property
    def system(self) -> Optional[SystemSnapshot]:
        return self._system

    @property
    def database(self) -> Optional[DatabaseSnapshot]:
        return self._database

    @property
    def database_status(self) -> str:
        return self._database_status

    def collect_system_metrics(self) -> Optional[SystemSnapshot]:
        """Capture process/system resource usage and publish it."""
        try:
            with self._process.oneshot():
                mem = self._process.memory_info()
                cpu = self._process.cpu_times()
                process_memory_percent = self._process.memory_percent()
                cpu_percent = self._process.cpu_percent(interval=None)
                uptime = time.time() - self._process.create_time()
            virtual = psutil.virtual_memory()
            load = list(psutil.getloadavg())
        except (psutil.Error, OSError) as exc:
            logger.warning("Failed to collect system metrics: %s", exc)
            return None

        snapshot = SystemSnapshot(
            rss_bytes=mem.rss,
            vms_bytes=mem.vms,
            memory_usage=virtual.percent / 100,
            process_memory_percent=process_memory_percent,
            cpu_user_seconds=cpu.user,
            cpu_system_seconds=cpu.system,
            cpu_percent=cpu_percent,
            load_average=load,
            uptime_seconds=uptime,
            platform=platform.platform(),
            python_version=sys.version.split()[0],
        )
        self._system = snapshot

        if snapshot.memory_usage > self.memory_threshold:
            try:
                self.on_high_memory(snapshot)
            except Exception as exc:
                logger.error("High-memory alert callback failed: %s", exc, exc_info=True)

        return snapshot

    def collect_database_metrics(self) -> Optional[DatabaseSnapshot]:
        """
        Query the database probe, if any.

        Returns None (and leaves a status reason) when there is no probe, the
        connection is down, or the status query fails.
        """
        if self.database_probe is None:
            self._database = None
            self._database_status = "no database probe configured"
            return None

        try:
            if not self.database_probe.is_connected():
                self._database = None
                self._database_status = "database not connected"
                return None
            status = self.database_probe.server_status()
        except Exception as exc:
            logger.warning("Failed to collect database metrics: %s", exc)
            self._database = None
            self._database_status = f"database unreachable: {exc}"
            return None

        connections = status.get("connections") or {}
        mem = status.get("mem") or {}
        snapshot = DatabaseSnapshot(
            connections_current=connections.get("current"),
            connections_available=connections.get("available"),
            opcounters={k: int(v) for k, v in (status.get("opcounters") or {}).items()},
            resident_memory_mb=mem.get("resident"),
            uptime_seconds=status.get("uptime"),
            version=status.get("version"),
        )
        self._database = snapshot
        self._database_status = "ok"
        return snapshot

    async def snapshot_cycle(self) -> None:
        """One timer tick: system first, then the (blocking) database query."""
        self.collect_system_metrics()
        await asyncio.to_thread(self.collect_database_metrics)

    async def _snapshot_loop(self) -> None:
        while True:
            try:
                await self.snapshot_cycle()
            except Exception as exc:
                logger.error("Snapshot cycle failed: %s", exc, exc_info=True)
            await asyncio.sleep(self.snapshot_interval)

    async def start(self) -> None:
        """Start the periodic snapshot task (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._snapshot_loop())
        logger.info("Backend monitor started (interval=%ss)", self.snapshot_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backend monitor stopped")

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------
    def get_metrics(self) -> Dict[str, Any]:
        """Current summary, as exposed by GET /api/performance/summary."""
        summary = self.summary()
        system = self._system
        database = self._database
        return {
            "summary": summary.model_dump(mode="json") if summary else None,
            "recent_requests": len(self.recent()),
            "system": system.model_dump(mode="json") if system else None,
            "database": database.model_dump(mode="json") if database else None,
            "database_status": self._database_status,
        }

    def backend_bundle(self) -> Optional[MetricBundle]:
        """Backend bundle from request stats and the latest system snapshot."""
        summary = self.summary()
        system = self._system
        if summary is None and system is None:
            return None

        metrics: Dict[str, Any] = {}
        if summary is not None:
            metrics.update({
                "total_requests": summary.total_requests,
                "average_response_time": summary.average_response_time,
                "median_response_time": summary.median_response_time,
                "p95_response_time": summary.p95_response_time,
                "p99_response_time": summary.p99_response_time,
                "error_rate": summary.error_rate,
                "slow_requests": summary.slow_requests,
            })
            for code, count in summary.status_codes.items():
                metrics[f"status_codes.{code}"] = count
        if system is not None:
            metrics.update({
                "system.memory_usage": system.memory_usage,
                "system.rss_bytes": system.rss_bytes,
                "system.cpu_percent": system.cpu_percent,
                "system.uptime_seconds": system.uptime_seconds,
            })
        return MetricBundle.build("backend", metrics)

    def database_bundle(self) -> Optional[MetricBundle]:
        database = self._database
        if database is None:
            return None

        metrics: Dict[str, Any] = {
            "connections.current": database.connections_current,
            "connections.available": database.connections_available,
            "opcounters.total": sum(database.opcounters.values()),
        }
        for name, count in database.opcounters.items():
            metrics[f"opcounters.{name}"] = count
        return MetricBundle.build("database", metrics, timestamp=database.timestamp)

    def reset(self) -> None:
        """Drop all request records (snapshots are kept)."""
        self.requests.clear()
