"""
Frontend Runtime Collector
==========================
Event-driven model of one page view's Core Web Vitals, resource timing, and
errors.

The host (a browser bridge, a replay tool, or a test) owns the event loop and
feeds the collector:
    - Performance Observer callbacks  → handle_entries(entry_type, entries)
    - navigation / resource timing    → record_navigation(), record_resources()
    - window error events             → record_error(), record_rejection(),
                                        record_resource_error()
    - user input / tab hide / load    → on_user_input(), on_visibility_hidden(),
                                        on_load()

SAMPLING CONTRACT:
    init() draws once per page view. The draw covers the whole session, so a
    reported payload never mixes sampled and unsampled metrics.

SEND CONTRACT:
    Exactly one best-effort POST per included page view, scheduled
    `send_delay` seconds after load as a fire-and-forget task. Failures are
    logged and swallowed; there is no retry. on_load() never awaits.

DEGRADATION:
    Entry types missing from `supported_entry_types` are logged and listed in
    the payload under `unsupported_observers`; the rest of the payload is
    still produced.
"""
import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx

from perfwatch.core.config import (
    FRONTEND_METRICS_ENDPOINT,
    FRONTEND_SAMPLE_RATE,
    FRONTEND_SEND_DELAY,
    MAX_FRONTEND_ERRORS,
)
from perfwatch.models.metric_bundle import MetricBundle

logger = logging.getLogger(__name__)

LCP = "largest-contentful-paint"
FIRST_INPUT = "first-input"
LAYOUT_SHIFT = "layout-shift"
PAINT = "paint"
OBSERVED_ENTRY_TYPES = (LCP, FIRST_INPUT, LAYOUT_SHIFT, PAINT)

_RESOURCE_TYPE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\.css$", re.IGNORECASE), "css"),
    (re.compile(r"\.js$", re.IGNORECASE), "script"),
    (re.compile(r"\.(png|jpe?g|gif|svg|webp|avif)$", re.IGNORECASE), "img"),
    (re.compile(r"\.(woff2?|ttf|eot|otf)$", re.IGNORECASE), "font"),
]


# ---------------------------------------------------------------------------
# Browser timing entries
# ---------------------------------------------------------------------------
@dataclass
class PerformanceEntry:
    """A Performance Observer entry (only the attributes the vitals need)."""
    entry_type: str
    name: str = ""
    start_time: float = 0.0
    duration: float = 0.0
    processing_start: Optional[float] = None
    value: float = 0.0
    had_recent_input: bool = False


@dataclass
class ResourceTiming:
    name: str
    initiator_type: str = ""
    transfer_size: int = 0
    duration: float = 0.0
    fetch_start: float = 0.0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0


@dataclass
class NavigationTiming:
    start_time: float = 0.0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    secure_connection_start: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    dom_content_loaded_event_start: float = 0.0
    dom_content_loaded_event_end: float = 0.0
    load_event_start: float = 0.0
    load_event_end: float = 0.0


def _interval(end: float, start: float) -> float:
    """end - start, clamped at zero (cross-origin entries report zeros)."""
    return max(end - start, 0.0)


def resource_type(resource: ResourceTiming) -> str:
    if resource.initiator_type:
        return resource.initiator_type
    url = resource.name.split("?", 1)[0]
    for pattern, kind in _RESOURCE_TYPE_PATTERNS:
        if pattern.search(url):
            return kind
    return "other"


def resource_breakdown(resource: ResourceTiming) -> Dict[str, Any]:
    """Per-resource sub-intervals in milliseconds, never negative."""
    return {
        "name": resource.name,
        "type": resource_type(resource),
        "size": resource.transfer_size or 0,
        "duration": max(resource.duration, 0.0),
        "blocked": _interval(resource.domain_lookup_start, resource.fetch_start),
        "dns": _interval(resource.domain_lookup_end, resource.domain_lookup_start),
        "connect": _interval(resource.connect_end, resource.connect_start),
        "ttfb": _interval(resource.response_start, resource.request_start),
        "download": _interval(resource.response_end, resource.response_start),
    }


def navigation_breakdown(nav: NavigationTiming) -> Dict[str, float]:
    return {
        "dns": _interval(nav.domain_lookup_end, nav.domain_lookup_start),
        "tcp": _interval(nav.connect_end, nav.connect_start),
        "ssl": _interval(nav.connect_end, nav.secure_connection_start)
        if nav.secure_connection_start > 0 else 0.0,
        "ttfb": _interval(nav.response_start, nav.request_start),
        "download": _interval(nav.response_end, nav.response_start),
        "dom_parse": _interval(nav.dom_content_loaded_event_start, nav.response_end),
        "dom_ready": _interval(nav.dom_content_loaded_event_end, nav.dom_content_loaded_event_start),
        "load_complete": _interval(nav.load_event_end, nav.load_event_start),
        "total": _interval(nav.load_event_end, nav.start_time),
    }


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------
class FrontendRuntimeCollector:
    """
    One page view's runtime telemetry.

    Usage:
        collector = FrontendRuntimeCollector(sample_rate=0.1,
                                             endpoint="/api/performance/metrics",
                                             base_url="https://example.com")
        if collector.init():
            collector.handle_entries("paint", [PerformanceEntry("paint", "first-contentful-paint", 812.0)])
            collector.on_load()
    """

    def __init__(
        self,
        sample_rate: float = FRONTEND_SAMPLE_RATE,
        endpoint: str = FRONTEND_METRICS_ENDPOINT,
        *,
        base_url: str = "",
        supported_entry_types: Optional[Iterable[str]] = None,
        send_delay: float = FRONTEND_SEND_DELAY,
        max_errors: int = MAX_FRONTEND_ERRORS,
        page_url: str = "",
        user_agent: str = "",
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError(f"sample_rate must be within [0, 1], got {sample_rate}")

        self.sample_rate = sample_rate
        self.endpoint = endpoint
        self.base_url = base_url
        self.send_delay = send_delay
        self.max_errors = max_errors
        self.page_url = page_url
        self.user_agent = user_agent
        self._supported = set(supported_entry_types) if supported_entry_types is not None else None
        self._rng = rng
        self._clock = clock
        self._client = client

        self.included: Optional[bool] = None
        self.vitals: Dict[str, float] = {}
        self.navigation: Dict[str, float] = {}
        self.resources: List[Dict[str, Any]] = []
        self.errors: List[Dict[str, Any]] = []
        self.dropped_errors = 0
        self.interaction_count = 0
        self.unsupported_observers: List[str] = []

        self._observers: set[str] = set()
        self._lcp_final = False
        self._cls = 0.0
        self._started_at: Optional[float] = None
        self._send_scheduled = False
        self._sent = False
        self._send_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Callable[[Sequence[PerformanceEntry]], None]] = {
            LCP: self._on_lcp,
            FIRST_INPUT: self._on_first_input,
            LAYOUT_SHIFT: self._on_layout_shift,
            PAINT: self._on_paint,
        }

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------
    def init(self) -> bool:
        """Decide inclusion for the whole page view and register observers."""
        if self.included is not None:
            return self.included

        self.included = self._rng() < self.sample_rate
        if not self.included:
            logger.debug("Page view not sampled (rate=%s)", self.sample_rate)
            return False

        self._started_at = self._clock()
        for entry_type in OBSERVED_ENTRY_TYPES:
            self.observe(entry_type)
        return True

    def observe(self, entry_type: str) -> bool:
        """Register an observer; unsupported types degrade to a partial payload."""
        if self._supported is not None and entry_type not in self._supported:
            logger.warning("Performance observer for %s not supported", entry_type)
            self.unsupported_observers.append(entry_type)
            return False
        self._observers.add(entry_type)
        return True

    # ------------------------------------------------------------------
    # Observer callbacks
    # ------------------------------------------------------------------
    def handle_entries(self, entry_type: str, entries: Sequence[PerformanceEntry]) -> None:
        if not self.included or entry_type not in self._observers or not entries:
            return
        self._handlers[entry_type](entries)

    def _on_lcp(self, entries: Sequence[PerformanceEntry]) -> None:
        if self._lcp_final:
            return
        self.vitals["lcp"] = entries[-1].start_time

    def _on_first_input(self, entries: Sequence[PerformanceEntry]) -> None:
        if "fid" in self.vitals:
            return
        first = entries[0]
        if first.processing_start is None:
            return
        self.vitals["fid"] = max(first.processing_start - first.start_time, 0.0)

    def _on_layout_shift(self, entries: Sequence[PerformanceEntry]) -> None:
        for entry in entries:
            if not entry.had_recent_input:
                self._cls += max(entry.value, 0.0)
        self.vitals["cls"] = self._cls

    def _on_paint(self, entries: Sequence[PerformanceEntry]) -> None:
        for entry in entries:
            if entry.name == "first-contentful-paint":
                self.vitals["fcp"] = entry.start_time

    # ------------------------------------------------------------------
    # Page events
    # ------------------------------------------------------------------
    def on_user_input(self) -> None:
        """Click / keydown / scroll. The first input freezes LCP."""
        self._lcp_final = True
        if self.included:
            self.interaction_count += 1

    def on_visibility_hidden(self) -> None:
        self._lcp_final = True

    def record_navigation(self, nav: NavigationTiming) -> None:
        if self.included:
            self.navigation = navigation_breakdown(nav)

    def record_resources(self, resources: Iterable[ResourceTiming]) -> None:
        if self.included:
            self.resources = [resource_breakdown(r) for r in resources]

    def record_error(
        self,
        message: str,
        filename: str = "",
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self._append_error({
            "type": "javascript",
            "message": message,
            "filename": filename,
            "line": line,
            "column": column,
        })

    def record_rejection(self, reason: Any = None) -> None:
        message = str(reason) if reason else "Unhandled promise rejection"
        self._append_error({"type": "promise", "message": message})

    def record_resource_error(self, url: str, element: str = "") -> None:
        self._append_error({
            "type": "resource",
            "message": f"Failed to load: {url}",
            "element": element,
        })

    def _append_error(self, entry: Dict[str, Any]) -> None:
        if not self.included:
            return
        if len(self.errors) >= self.max_errors:
            self.dropped_errors += 1
            return
        entry["timestamp"] = int(datetime.now(timezone.utc).timestamp() * 1000)
        self.errors.append(entry)

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------
    def interactions(self) -> Dict[str, float]:
        elapsed = self._clock() - self._started_at if self._started_at is not None else 0.0
        rate = self.interaction_count / elapsed if elapsed > 0 else 0.0
        return {"count": self.interaction_count, "rate": rate}

    def build_payload(self) -> Dict[str, Any]:
        return {
            "vitals": dict(self.vitals),
            "navigation": dict(self.navigation),
            "resources": [dict(r) for r in self.resources],
            "errors": [dict(e) for e in self.errors],
            "dropped_errors": self.dropped_errors,
            "interactions": self.interactions(),
            "unsupported_observers": list(self.unsupported_observers),
            "url": self.page_url,
            "user_agent": self.user_agent,
            "timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
        }

    def to_bundle(self) -> MetricBundle:
        return frontend_bundle_from_payload(self.build_payload())

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------
    def on_load(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Optional[asyncio.TimerHandle]:
        """Schedule the single send `send_delay` seconds from now."""
        if not self.included or self._send_scheduled:
            return None
        loop = loop or asyncio.get_running_loop()
        self._send_scheduled = True
        return loop.call_later(self.send_delay, self._dispatch_send)

    def _dispatch_send(self) -> None:
        self._send_task = asyncio.get_running_loop().create_task(self.send_metrics())

    async def send_metrics(self) -> bool:
        """POST the payload once. Returns False on any failure; never raises."""
        if self._sent:
            return False
        self._sent = True
        payload = self.build_payload()

        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json=payload)
            else:
                async with httpx.AsyncClient(base_url=self.base_url, timeout=5.0) as client:
                    response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.warning("Failed to send performance metrics: %s", exc)
        except Exception as exc:
            logger.warning("Unexpected error sending performance metrics: %s", exc)
        return False


# ---------------------------------------------------------------------------
# Server-side normalisation
# ---------------------------------------------------------------------------
def frontend_bundle_from_payload(payload: Mapping[str, Any]) -> MetricBundle:
    """Normalise a collector payload (e.g. a POST body) into a frontend bundle."""
    vitals = payload.get("vitals") or {}
    navigation = payload.get("navigation") or {}
    interactions = payload.get("interactions") or {}
    resources = payload.get("resources") or []

    metrics: Dict[str, Any] = {}
    for name in ("lcp", "fid", "cls", "fcp"):
        if vitals.get(name) is not None:
            metrics[name] = float(vitals[name])
    for name, value in navigation.items():
        metrics[f"navigation.{name}"] = value
    metrics["resource_count"] = len(resources)
    metrics["error_count"] = len(payload.get("errors") or [])
    if interactions:
        metrics["interactions.count"] = interactions.get("count", 0)

    failures = [
        {"source": f"observer:{name}", "reason": "observer type not supported by the browser"}
        for name in payload.get("unsupported_observers") or []
    ]
    dropped = payload.get("dropped_errors") or 0
    if dropped:
        metrics["dropped_errors"] = dropped
        failures.append({"source": "errors", "reason": f"{dropped} errors dropped past the capture limit"})

    return MetricBundle.build("frontend", metrics, items=resources, failures=failures)


def frontend_bundle_from_lighthouse(lighthouse: Mapping[str, Any]) -> MetricBundle:
    """Normalise a Lighthouse JSON report into a frontend bundle."""
    audits = lighthouse.get("audits") or {}

    def numeric(audit_id: str) -> Optional[float]:
        value = (audits.get(audit_id) or {}).get("numericValue")
        return float(value) if value is not None else None

    metrics: Dict[str, Any] = {
        "lcp": numeric("largest-contentful-paint"),
        "fid": numeric("max-potential-fid"),
        "cls": numeric("cumulative-layout-shift"),
        "fcp": numeric("first-contentful-paint"),
    }
    score = ((lighthouse.get("categories") or {}).get("performance") or {}).get("score")
    if score is not None:
        metrics["performance_score"] = score * 100

    return MetricBundle.build("frontend", {k: v for k, v in metrics.items() if v is not None})
