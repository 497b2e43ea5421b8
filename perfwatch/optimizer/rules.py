"""
Optimization Rule Catalogue
===========================
Fixed, ordered threshold rules. Each rule reads one MetricBundle and returns
at most one Issue. Rules never mutate the bundle and draw on no state other
than the thresholds mapping, so the same input always yields the same Issues.

A rule whose required metric is absent raises MissingField; a per-item value
that is not numeric raises InvalidField. The engine records either in
`skipped_rules` and moves on to the next rule.

Rule order within a category is the discovery order used for tie-breaking
when Issues are prioritized.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from perfwatch.models.issue import Issue
from perfwatch.models.metric_bundle import MetricBundle

Thresholds = Mapping[str, float]


class MissingField(Exception):
    """A rule's input metric is not present in the bundle."""

    def __init__(self, name: str):
        super().__init__(f"missing field '{name}'")
        self.name = name


@dataclass(frozen=True)
class Rule:
    category: str
    type: str
    evaluate: Callable[[MetricBundle, Thresholds], Optional[Issue]]


def require(bundle: MetricBundle, name: str) -> float:
    value = bundle.get(name)
    if value is None or isinstance(value, str):
        raise MissingField(name)
    return float(value)


class InvalidField(ValueError):
    """A per-item value a rule compares numerically is not a number."""

    def __init__(self, name: str, value: object):
        super().__init__(f"field '{name}' is not numeric: {value!r}")
        self.name = name


def item_number(item: Mapping[str, object], name: str) -> float:
    """Numeric per-item field; absent counts as 0."""
    value = item.get(name)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidField(name, value)
    return float(value)


def _fmt(value: float) -> str:
    """Render a measurement without a trailing '.0' for whole numbers."""
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


# ---------------------------------------------------------------------------
# Frontend
# ---------------------------------------------------------------------------
def _lcp(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    lcp = require(bundle, "lcp")
    if lcp <= t["lcp_ms"]:
        return None
    return Issue(
        category="frontend", type="lcp", severity="high",
        description=f"LCP is {_fmt(lcp)}ms (should be < {_fmt(t['lcp_ms'])}ms)",
        recommendations=[
            "Optimize largest contentful element",
            "Implement image lazy loading",
            "Use WebP format for images",
            "Minimize render-blocking resources",
            "Use CDN for static assets",
        ],
    )


def _fid(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    fid = require(bundle, "fid")
    if fid <= t["fid_ms"]:
        return None
    return Issue(
        category="frontend", type="fid", severity="high",
        description=f"FID is {_fmt(fid)}ms (should be < {_fmt(t['fid_ms'])}ms)",
        recommendations=[
            "Reduce JavaScript execution time",
            "Split large bundles",
            "Use web workers for heavy computations",
            "Implement code splitting",
            "Defer non-critical JavaScript",
        ],
    )


def _cls(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    cls = require(bundle, "cls")
    if cls <= t["cls"]:
        return None
    return Issue(
        category="frontend", type="cls", severity="medium",
        description=f"CLS is {_fmt(cls)} (should be < {_fmt(t['cls'])})",
        recommendations=[
            "Set explicit dimensions for images and videos",
            "Reserve space for dynamic content",
            "Avoid inserting content above existing content",
            "Use CSS transforms instead of changing layout properties",
        ],
    )


def _resource_size(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    large = [r for r in bundle.items if item_number(r, "size") > t["resource_size_bytes"]]
    if not large:
        return None
    return Issue(
        category="frontend", type="resource-size", severity="medium",
        description=f"{len(large)} resources are larger than {_fmt(t['resource_size_bytes'])} bytes",
        recommendations=[
            "Compress large assets",
            "Implement progressive loading",
            "Use appropriate image formats",
            "Minify CSS and JavaScript",
            "Enable gzip/brotli compression",
        ],
        related_ids=[str(r.get("name", "")) for r in large],
    )


def _resource_speed(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    slow = [r for r in bundle.items if item_number(r, "duration") > t["resource_duration_ms"]]
    if not slow:
        return None
    return Issue(
        category="frontend", type="resource-speed", severity="high",
        description=f"{len(slow)} resources take longer than {_fmt(t['resource_duration_ms'])}ms to load",
        recommendations=[
            "Use CDN for static assets",
            "Optimize server response times",
            "Implement resource preloading",
            "Use HTTP/2 server push",
            "Reduce DNS lookups",
        ],
        related_ids=[str(r.get("name", "")) for r in slow],
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------
def _response_time(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    avg = require(bundle, "average_response_time")
    if avg <= t["response_time_medium_ms"]:
        return None
    return Issue(
        category="backend", type="response-time",
        severity="high" if avg > t["response_time_high_ms"] else "medium",
        description=f"Average response time is {_fmt(avg)}ms",
        recommendations=[
            "Implement database query optimization",
            "Add response caching",
            "Use database connection pooling",
            "Optimize API endpoints",
            "Implement request rate limiting",
        ],
    )


def _p95_response_time(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    p95 = require(bundle, "p95_response_time")
    if p95 <= t["p95_response_time_ms"]:
        return None
    return Issue(
        category="backend", type="p95-response-time", severity="high",
        description=f"95th percentile response time is {_fmt(p95)}ms",
        recommendations=[
            "Identify and optimize slow endpoints",
            "Implement background job processing",
            "Add database indexing",
            "Use async processing for heavy operations",
            "Implement circuit breakers",
        ],
    )


def _error_rate(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    rate = require(bundle, "error_rate")
    if rate <= t["error_rate"]:
        return None
    return Issue(
        category="backend", type="error-rate", severity="high",
        description=f"Error rate is {rate * 100:.2f}%",
        recommendations=[
            "Implement better error handling",
            "Add request validation",
            "Monitor and fix failing endpoints",
            "Implement retry mechanisms",
            "Add comprehensive logging",
        ],
    )


def _memory_usage(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    usage = require(bundle, "system.memory_usage")
    if usage <= t["memory_usage"]:
        return None
    return Issue(
        category="backend", type="memory-usage", severity="high",
        description=f"Memory usage is {usage * 100:.2f}%",
        recommendations=[
            "Implement memory leak detection",
            "Optimize data structures",
            "Add garbage collection tuning",
            "Implement object pooling",
            "Scale horizontally",
        ],
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
def _connection_pool(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    current = require(bundle, "connections.current")
    available = require(bundle, "connections.available")
    if current <= available * t["connection_pool_ratio"]:
        return None
    return Issue(
        category="database", type="connection-pool", severity="medium",
        description=f"Database connection pool is near capacity ({_fmt(current)} of {_fmt(available)})",
        recommendations=[
            "Increase connection pool size",
            "Optimize query execution time",
            "Implement connection pooling",
            "Add read replicas",
            "Optimize database queries",
        ],
    )


def _operation_volume(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    total = require(bundle, "opcounters.total")
    if total <= t["operation_volume"]:
        return None
    return Issue(
        category="database", type="operation-volume", severity="medium",
        description=f"High database operation volume: {_fmt(total)} ops",
        recommendations=[
            "Implement query result caching",
            "Add database indexing",
            "Optimize frequent queries",
            "Implement read replicas",
            "Use aggregation pipelines",
        ],
    )


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------
def _bundle_size(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    large = [a for a in bundle.items if item_number(a, "size_bytes") > t["bundle_size_bytes"]]
    if not large:
        return None
    return Issue(
        category="bundle", type="bundle-size", severity="medium",
        description=f"{len(large)} bundles are larger than {_fmt(t['bundle_size_bytes'])} bytes",
        recommendations=[
            "Implement code splitting",
            "Use dynamic imports for large components",
            "Remove unused dependencies",
            "Enable tree shaking",
            "Use bundle analyzer to identify heavy modules",
        ],
        related_ids=[str(a.get("path", "")) for a in large],
    )


def _minification(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    count = require(bundle, "unminified_count")
    if count <= 0:
        return None
    unminified = [
        str(a.get("path", "")) for a in bundle.items
        if a.get("type") in ("js", "css") and not a.get("minified_heuristic")
    ]
    return Issue(
        category="bundle", type="minification", severity="medium",
        description=f"{_fmt(count)} files are not minified",
        recommendations=[
            "Enable minification in build process",
            "Use Terser for JavaScript minification",
            "Use cssnano for CSS minification",
            "Remove console.log statements",
            "Enable dead code elimination",
        ],
        related_ids=unminified,
    )


def _chunk_count(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    chunks = require(bundle, "chunk_count")
    if chunks <= t["chunk_count"]:
        return None
    return Issue(
        category="bundle", type="chunk-count", severity="medium",
        description=f"{_fmt(chunks)} chunks detected",
        recommendations=[
            "Optimize chunk splitting strategy",
            "Combine small chunks",
            "Use vendor chunk for common dependencies",
            "Implement intelligent code splitting",
            "Review bundler configuration",
        ],
    )


def _dependencies(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    count = require(bundle, "heavy_dependency_count")
    if count <= 0:
        return None
    names = str(bundle.get("heavy_dependencies") or "")
    return Issue(
        category="bundle", type="dependencies", severity="medium",
        description=f"Found {_fmt(count)} potentially heavy dependencies",
        recommendations=[
            "Consider lighter alternatives",
            "Use tree shaking to reduce bundle size",
            "Import only needed modules",
            "Evaluate if all dependencies are necessary",
            "Use dynamic imports for heavy libraries",
        ],
        related_ids=[n.strip() for n in names.split(",") if n.strip()],
    )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------
def _versioning(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    count = require(bundle, "unversioned_assets")
    if count <= 0:
        return None
    unversioned = [
        str(a.get("path", "")) for a in bundle.items
        if a.get("policy") == "short_term" and a.get("extension") in (".css", ".js", ".mjs", ".cjs")
    ]
    return Issue(
        category="cache", type="versioning", severity="medium",
        description=f"{_fmt(count)} CSS/JS files lack proper versioning",
        recommendations=[
            "Add content hash to filenames",
            "Use a bundler for automatic versioning",
            "Implement cache busting strategy",
            "Use query parameters for versioning",
        ],
        related_ids=unversioned,
    )


def _compression(bundle: MetricBundle, t: Thresholds) -> Optional[Issue]:
    require(bundle, "large_files")
    limit = t["compression_size_bytes"]
    large = [str(a.get("path", "")) for a in bundle.items if item_number(a, "size_bytes") > limit]
    if not large:
        return None
    return Issue(
        category="cache", type="compression", severity="high",
        description=f"{len(large)} files larger than {_fmt(limit / 1000)}KB should be compressed",
        recommendations=[
            "Enable gzip compression on server",
            "Use Brotli compression for better results",
            "Compress images before serving",
            "Minify CSS and JavaScript files",
        ],
        related_ids=large,
    )


RULES: Dict[str, List[Rule]] = {
    "frontend": [
        Rule("frontend", "lcp", _lcp),
        Rule("frontend", "fid", _fid),
        Rule("frontend", "cls", _cls),
        Rule("frontend", "resource-size", _resource_size),
        Rule("frontend", "resource-speed", _resource_speed),
    ],
    "backend": [
        Rule("backend", "response-time", _response_time),
        Rule("backend", "p95-response-time", _p95_response_time),
        Rule("backend", "error-rate", _error_rate),
        Rule("backend", "memory-usage", _memory_usage),
    ],
    "database": [
        Rule("database", "connection-pool", _connection_pool),
        Rule("database", "operation-volume", _operation_volume),
    ],
    "bundle": [
        Rule("bundle", "bundle-size", _bundle_size),
        Rule("bundle", "minification", _minification),
        Rule("bundle", "chunk-count", _chunk_count),
        Rule("bundle", "dependencies", _dependencies),
    ],
    "cache": [
        Rule("cache", "versioning", _versioning),
        Rule("cache", "compression", _compression),
    ],
}
