"""
Cache Strategy Classifier
=========================
Assigns exactly one CachePolicy to every file of a static/build tree and
renders the artifacts that carry those policies to the edge.

Ordered rules (first match wins, no re-evaluation):
    1. Content-hash filename        → IMMUTABLE   public, max-age=31536000, immutable
    2. Image / font extension       → LONG_TERM   public, max-age=2592000
    3. CSS / JS extension           → SHORT_TERM  public, max-age=86400
    4. HTML document                → SHORT_TERM  public, max-age=3600, must-revalidate
       API path or .json data       → NO_CACHE    no-cache, no-store, must-revalidate
    5. Anything else                → SHORT_TERM  public, max-age=3600

A hashed `.js` file therefore resolves via rule 1, never rule 3.

Artifacts:
    - cache-headers.json   files grouped by policy, with rationale and patterns,
                           plus the files that could not be read
    - sw.js                service worker embedding a bounded precache manifest
    - nginx-cache.conf     location blocks mapping extension patterns to headers

Classification depends only on the path, so re-running on an unchanged tree
yields identical assignments.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from perfwatch.core.config import CONFIG_OUTPUT_DIR, PRECACHE_LIMIT, STATIC_DIR
from perfwatch.core.constants import (
    CACHE_CONTROL_DEFAULT,
    CACHE_CONTROL_HTML,
    CACHE_CONTROL_IMMUTABLE,
    CACHE_CONTROL_LONG_TERM,
    CACHE_CONTROL_NO_CACHE,
    CACHE_CONTROL_SHORT_TERM,
    FONT_EXTENSIONS,
    HTML_EXTENSIONS,
    IMAGE_EXTENSIONS,
    SCRIPT_EXTENSIONS,
    STYLE_EXTENSIONS,
)
from perfwatch.models.cache_policy import POLICY_ORDER, CacheAssignment, CachePolicy
from perfwatch.models.metric_bundle import MetricBundle, utc_now
from perfwatch.utils.filename_patterns import (
    CONTENT_HASH_URI_PATTERN,
    basename,
    extension,
    has_content_hash,
)

logger = logging.getLogger(__name__)

LARGE_FILE_BYTES = 100_000

MAX_AGE_BY_POLICY = {
    CachePolicy.IMMUTABLE: 31_536_000,
    CachePolicy.LONG_TERM: 2_592_000,
    CachePolicy.SHORT_TERM: 86_400,
}


# ===================================================================
# Classification
# ===================================================================
def _is_api_path(path: str) -> bool:
    normalized = "/" + path.replace("\\", "/").lstrip("/")
    return "/api/" in normalized


def classify_file(path: str, size_bytes: int = 0) -> CacheAssignment:
    """Apply the ordered rule list to one build-relative path."""
    ext = extension(path)

    def assign(policy: CachePolicy, cache_control: str, rationale: str) -> CacheAssignment:
        return CacheAssignment(
            path=path,
            extension=ext,
            policy=policy,
            cache_control=cache_control,
            rationale=rationale,
            size_bytes=size_bytes,
        )

    if has_content_hash(path):
        return assign(
            CachePolicy.IMMUTABLE, CACHE_CONTROL_IMMUTABLE,
            "File has hash in name, content-based versioning",
        )
    if ext in IMAGE_EXTENSIONS or ext in FONT_EXTENSIONS:
        return assign(
            CachePolicy.LONG_TERM, CACHE_CONTROL_LONG_TERM,
            "Static asset, rarely changes",
        )
    if ext in SCRIPT_EXTENSIONS or ext in STYLE_EXTENSIONS:
        return assign(
            CachePolicy.SHORT_TERM, CACHE_CONTROL_SHORT_TERM,
            "CSS/JS without hash, may change with deployments",
        )
    if ext in HTML_EXTENSIONS or basename(path) == "index.html":
        return assign(
            CachePolicy.SHORT_TERM, CACHE_CONTROL_HTML,
            "HTML file, needs frequent updates",
        )
    if _is_api_path(path) or ext == ".json":
        return assign(
            CachePolicy.NO_CACHE, CACHE_CONTROL_NO_CACHE,
            "Dynamic content or API response",
        )
    return assign(
        CachePolicy.SHORT_TERM, CACHE_CONTROL_DEFAULT,
        "Default caching strategy",
    )


def extension_patterns(assignments: Sequence[CacheAssignment]) -> List[str]:
    """`*<ext>` glob per distinct extension, in first-seen order."""
    patterns: list[str] = []
    for a in assignments:
        pattern = f"*{a.extension}" if a.extension else "*"
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


class CacheClassifier:
    """
    Classifies every file under one or more roots.

    Usage:
        classifier = CacheClassifier(["./public", "./build"])
        classifier.classify()
        classifier.write_artifacts("./performance/config", "./public")
    """

    def __init__(self, roots: Sequence[str], precache_limit: int = PRECACHE_LIMIT):
        self.roots = list(roots)
        self.precache_limit = precache_limit
        self.assignments: List[CacheAssignment] = []
        self.skipped: List[Dict[str, str]] = []

    def classify(self) -> List[CacheAssignment]:
        """(Re)build the assignment list from scratch."""
        self.assignments = []
        self.skipped = []
        for root in self.roots:
            if not os.path.isdir(root):
                logger.info("Cache classifier: %s does not exist, skipping", root)
                continue
            self.assignments.extend(self._classify_root(root))
        logger.info("Classified %d files across %d roots", len(self.assignments), len(self.roots))
        return self.assignments

    def _classify_root(self, root: str) -> List[CacheAssignment]:
        found: list[CacheAssignment] = []

        def on_error(exc: OSError) -> None:
            logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)
            self.skipped.append({"path": str(exc.filename), "reason": exc.strerror or str(exc)})

        for dirpath, dirs, files in os.walk(root, onerror=on_error):
            dirs.sort()
            for fname in sorted(files):
                full = Path(dirpath) / fname
                rel = full.relative_to(root).as_posix()
                try:
                    size = full.stat().st_size
                except OSError as exc:
                    logger.warning("Skipping unreadable file %s: %s", rel, exc)
                    self.skipped.append({"path": rel, "reason": str(exc)})
                    continue
                found.append(classify_file(rel, size))
        return found

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def by_policy(self) -> Dict[CachePolicy, List[CacheAssignment]]:
        grouped: dict[CachePolicy, list[CacheAssignment]] = {p: [] for p in POLICY_ORDER}
        for a in self.assignments:
            grouped[a.policy].append(a)
        return grouped

    def precache_manifest(self) -> List[str]:
        """Top-N Immutable then LongTerm URLs, in classification order."""
        grouped = self.by_policy()
        candidates = grouped[CachePolicy.IMMUTABLE] + grouped[CachePolicy.LONG_TERM]
        return [f"/{a.path}" for a in candidates[: self.precache_limit]]

    def summary(self) -> Dict[str, Any]:
        total_files = len(self.assignments)
        strategies = []
        for policy, files in self.by_policy().items():
            strategies.append({
                "name": policy.value,
                "count": len(files),
                "size": sum(f.size_bytes for f in files),
                "percentage": round(len(files) / total_files * 100, 1) if total_files else 0.0,
            })
        return {
            "total_files": total_files,
            "total_size": sum(a.size_bytes for a in self.assignments),
            "strategies": strategies,
        }

    def unversioned_assets(self) -> List[CacheAssignment]:
        return [
            a for a in self.assignments
            if a.policy == CachePolicy.SHORT_TERM
            and (a.extension in SCRIPT_EXTENSIONS or a.extension in STYLE_EXTENSIONS)
        ]

    def large_files(self) -> List[CacheAssignment]:
        return [a for a in self.assignments if a.size_bytes > LARGE_FILE_BYTES]

    def to_bundle(self) -> MetricBundle:
        grouped = self.by_policy()
        metrics: Dict[str, Any] = {
            "total_files": len(self.assignments),
            "unversioned_assets": len(self.unversioned_assets()),
            "large_files": len(self.large_files()),
            "skipped_files": len(self.skipped),
        }
        for policy in POLICY_ORDER:
            metrics[f"policy.{policy.value}"] = len(grouped[policy])
        return MetricBundle.build(
            "cache",
            metrics,
            items=[a.model_dump(mode="json") for a in self.assignments],
            failures=[{"source": s["path"], "reason": s["reason"]} for s in self.skipped],
        )

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------
    def write_artifacts(
        self,
        config_dir: str = CONFIG_OUTPUT_DIR,
        static_dir: str = STATIC_DIR,
    ) -> Dict[str, str]:
        """Write cache-headers.json, nginx-cache.conf and sw.js; returns their paths."""
        os.makedirs(config_dir, exist_ok=True)
        os.makedirs(static_dir, exist_ok=True)

        headers_file = os.path.join(config_dir, "cache-headers.json")
        with open(headers_file, "w", encoding="utf-8") as f:
            json.dump(cache_headers_document(self.assignments, skipped=self.skipped), f, indent=2)
        logger.info("Cache headers configuration saved: %s", headers_file)

        nginx_file = os.path.join(config_dir, "nginx-cache.conf")
        with open(nginx_file, "w", encoding="utf-8") as f:
            f.write(render_nginx_config())
        logger.info("Nginx configuration created: %s", nginx_file)

        sw_file = os.path.join(static_dir, "sw.js")
        with open(sw_file, "w", encoding="utf-8") as f:
            f.write(render_service_worker(self.precache_manifest(), self.by_policy()))
        logger.info("Service worker created: %s", sw_file)

        return {"cache_headers": headers_file, "nginx": nginx_file, "service_worker": sw_file}


# ===================================================================
# Renderers
# ===================================================================
def cache_headers_document(
    assignments: Sequence[CacheAssignment],
    timestamp: Optional[str] = None,
    skipped: Sequence[Dict[str, str]] = (),
) -> Dict[str, Any]:
    grouped: dict[CachePolicy, list[CacheAssignment]] = {p: [] for p in POLICY_ORDER}
    for a in assignments:
        grouped[a.policy].append(a)

    strategies: Dict[str, Any] = {}
    for policy, files in grouped.items():
        strategies[policy.value] = {
            "count": len(files),
            "total_size": sum(f.size_bytes for f in files),
            "patterns": extension_patterns(files),
            "headers": sorted({f.cache_control for f in files}),
            "files": [
                {"path": f.path, "cache_control": f.cache_control, "rationale": f.rationale}
                for f in files
            ],
        }
    return {
        "timestamp": timestamp or utc_now().isoformat(),
        "strategies": strategies,
        "skipped": [dict(s) for s in skipped],
    }


def _js_list(items: Sequence[str], indent: str = "  ") -> str:
    return ",\n".join(f"{indent}{json.dumps(item)}" for item in items)


def render_service_worker(
    precache_urls: Sequence[str],
    grouped: Dict[CachePolicy, List[CacheAssignment]],
) -> str:
    immutable = extension_patterns(grouped.get(CachePolicy.IMMUTABLE, []))
    static = extension_patterns(grouped.get(CachePolicy.LONG_TERM, []))
    dynamic = extension_patterns(grouped.get(CachePolicy.SHORT_TERM, []))
    return f"""// Service worker generated by perfwatch

const CACHE_NAME = 'perfwatch-v1';
const STATIC_CACHE = 'perfwatch-static-v1';
const DYNAMIC_CACHE = 'perfwatch-dynamic-v1';

const PRECACHE_URLS = [
{_js_list(precache_urls)}
];

const CACHE_STRATEGIES = {{
  immutable: {{
    patterns: {json.dumps(immutable)},
    strategy: 'CacheFirst',
    maxAge: {MAX_AGE_BY_POLICY[CachePolicy.IMMUTABLE]}
  }},
  static: {{
    patterns: {json.dumps(static)},
    strategy: 'StaleWhileRevalidate',
    maxAge: {MAX_AGE_BY_POLICY[CachePolicy.LONG_TERM]}
  }},
  dynamic: {{
    patterns: {json.dumps(dynamic)},
    strategy: 'NetworkFirst',
    maxAge: {MAX_AGE_BY_POLICY[CachePolicy.SHORT_TERM]}
  }}
}};

self.addEventListener('install', event => {{
  event.waitUntil(
    caches.open(STATIC_CACHE)
      .then(cache => cache.addAll(PRECACHE_URLS))
      .then(() => self.skipWaiting())
  );
}});

self.addEventListener('activate', event => {{
  const keep = [CACHE_NAME, STATIC_CACHE, DYNAMIC_CACHE];
  event.waitUntil(
    caches.keys()
      .then(names => Promise.all(names.filter(n => !keep.includes(n)).map(n => caches.delete(n))))
      .then(() => self.clients.claim())
  );
}});

self.addEventListener('fetch', event => {{
  const {{ request }} = event;
  const url = new URL(request.url);
  if (request.method !== 'GET' || url.origin !== location.origin) return;

  const strategy = getCacheStrategy(url.pathname);
  if (strategy === 'CacheFirst') event.respondWith(cacheFirst(request));
  else if (strategy === 'NetworkFirst') event.respondWith(networkFirst(request));
  else if (strategy === 'StaleWhileRevalidate') event.respondWith(staleWhileRevalidate(request));
}});

async function cacheFirst(request) {{
  const cache = await caches.open(STATIC_CACHE);
  const cached = await cache.match(request);
  if (cached) return cached;
  try {{
    const response = await fetch(request);
    if (response.ok) cache.put(request, response.clone());
    return response;
  }} catch (error) {{
    return new Response('Offline', {{ status: 503 }});
  }}
}}

async function networkFirst(request) {{
  const cache = await caches.open(DYNAMIC_CACHE);
  try {{
    const response = await fetch(request);
    if (response.ok) cache.put(request, response.clone());
    return response;
  }} catch (error) {{
    const cached = await cache.match(request);
    if (cached) return cached;
    throw error;
  }}
}}

async function staleWhileRevalidate(request) {{
  const cache = await caches.open(STATIC_CACHE);
  const cached = await cache.match(request);
  const network = fetch(request).then(response => {{
    if (response.ok) cache.put(request, response.clone());
    return response;
  }});
  return cached || network;
}}

function getCacheStrategy(pathname) {{
  for (const config of Object.values(CACHE_STRATEGIES)) {{
    for (const pattern of config.patterns) {{
      if (pathname.endsWith(pattern.replace('*', ''))) return config.strategy;
    }}
  }}
  return 'NetworkOnly';
}}
"""


def _nginx_ext_group(extensions: Sequence[str]) -> str:
    return "|".join(sorted(e.lstrip(".") for e in extensions))


def render_nginx_config() -> str:
    """Reverse-proxy snippet; depends only on the fixed rule table."""
    static_exts = _nginx_ext_group(IMAGE_EXTENSIONS | FONT_EXTENSIONS)
    code_exts = _nginx_ext_group(SCRIPT_EXTENSIONS | STYLE_EXTENSIONS)
    html_exts = _nginx_ext_group(HTML_EXTENSIONS)
    return f"""# Nginx caching configuration generated by perfwatch

# Content-hashed files (any extension)
location ~* "{CONTENT_HASH_URI_PATTERN}" {{
    add_header Cache-Control "{CACHE_CONTROL_IMMUTABLE}";
}}

# Static assets
location ~* \\.({static_exts})$ {{
    add_header Cache-Control "{CACHE_CONTROL_LONG_TERM}";
    add_header Vary "Accept-Encoding";
}}

# CSS and JS files without hash
location ~* \\.({code_exts})$ {{
    add_header Cache-Control "{CACHE_CONTROL_SHORT_TERM}";
    add_header Vary "Accept-Encoding";
}}

# HTML documents
location ~* \\.({html_exts})$ {{
    add_header Cache-Control "{CACHE_CONTROL_HTML}";
    add_header Vary "Accept-Encoding";
}}

# API endpoints
location /api/ {{
    add_header Cache-Control "{CACHE_CONTROL_NO_CACHE}";
    add_header Pragma "no-cache";
    add_header Expires "0";
}}

gzip on;
gzip_vary on;
gzip_min_length 1024;
gzip_types
    text/plain
    text/css
    text/xml
    text/javascript
    application/javascript
    application/xml+rss
    application/json;
"""
