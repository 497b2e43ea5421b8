"""
Static Asset Analyzer
=====================
Offline scan of a build-output tree.

One AssetRecord per file. JS/CSS/source maps are the primary targets; other
static types (images, fonts, html, ...) are recorded with size and gzip size
only.

HEURISTICS ARE APPROXIMATE:
  - is_chunk / is_vendor come from filename conventions.
  - minified_heuristic: average line length > 100 AND fewer than 50 lines.
  - Dependency counts and duplicate-function detection are regex-based, not
    AST-based. They are advisory signals, not ground truth.

DETERMINISM CONTRACT:
  - Files are enumerated in sorted order with forward-slash relative paths.
  - Gzip size uses a fixed level and a zero mtime, so identical bytes give an
    identical size on every run.

FAILURE CONTRACT:
  - An unreadable file or directory is skipped with a warning and listed in
    AssetAnalysis.skipped. The scan never aborts.

OUTPUT CONTRACT:
  analyze_build_directory(root) -> AssetAnalysis
"""
import gzip
import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from perfwatch.models.asset_record import AssetRecord
from perfwatch.models.metric_bundle import MetricBundle
from perfwatch.utils.filename_patterns import (
    asset_type,
    extension,
    has_content_hash,
    is_chunk_file,
    is_vendor_file,
)

logger = logging.getLogger(__name__)

GZIP_LEVEL = 9
PRIMARY_EXTENSIONS = {".js", ".mjs", ".cjs", ".css", ".map"}
LARGE_ASSET_BYTES = 500_000

IGNORE_DIRS: set[str] = {".git", "node_modules", "__pycache__", ".cache"}

# Packages known to dominate bundle size when imported wholesale
HEAVY_DEPENDENCIES = [
    "moment", "lodash", "jquery", "bootstrap", "material-ui",
    "antd", "react-router-dom", "axios", "chart.js",
]


# ---------------------------------------------------------------------------
# Regex heuristics
# ---------------------------------------------------------------------------
_IMPORT_RE = re.compile(r"""import\s+(?:[\w*{}\s,]+?\s+from\s+)?['"]([^'"]+)['"]""")
_REQUIRE_RE = re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)""")
_FUNCTION_RE = re.compile(r"function\s+\w+\s*\([^)]*\)\s*\{[^}]*\}")
_CSS_RULE_RE = re.compile(r"[^{}]+\{[^}]*\}")
_CSS_SELECTOR_RE = re.compile(r"[^{}]+(?=\{)")


@dataclass
class AssetAnalysis:
    """Result of one analyzer run."""
    root: str
    records: List[AssetRecord] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    heavy_dependencies: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ===================================================================
# File Discovery
# ===================================================================
def discover_asset_files(build_dir: str, skipped: Optional[List[Dict[str, str]]] = None) -> List[str]:
    """
    Recursively walk build_dir, returning relative file paths.
    Unreadable directories are reported through `skipped`.
    """
    root = Path(build_dir)
    found: list[str] = []

    def on_error(exc: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)
        if skipped is not None:
            skipped.append({"path": str(exc.filename), "reason": exc.strerror or str(exc)})

    for dirpath, dirs, files in os.walk(root, onerror=on_error):
        dirs[:] = [d for d in dirs if d not in IGNORE_DIRS]
        for fname in files:
            rel = (Path(dirpath) / fname).relative_to(root).as_posix()
            found.append(rel)
    return sorted(found)


# ===================================================================
# Per-file heuristics
# ===================================================================
def compute_gzip_size(data: bytes) -> int:
    return len(gzip.compress(data, compresslevel=GZIP_LEVEL, mtime=0))


def is_minified(content: str) -> bool:
    lines = content.split("\n")
    avg_line_length = len(content) / len(lines)
    return avg_line_length > 100 and len(lines) < 50


def extract_js_dependencies(content: str) -> Dict[str, int]:
    """Count import/require occurrences; bare specifiers count as external."""
    imports = _IMPORT_RE.findall(content)
    requires = _REQUIRE_RE.findall(content)
    external = [d for d in imports + requires if not d.startswith((".", "/"))]
    return {"imports": len(imports), "requires": len(requires), "external": len(external)}


def find_duplicate_functions(content: str) -> int:
    """Number of function bodies that exactly repeat an earlier one."""
    seen: set[str] = set()
    duplicates = 0
    for body in _FUNCTION_RE.findall(content):
        if body in seen:
            duplicates += 1
        else:
            seen.add(body)
    return duplicates


def count_css_rules(content: str) -> Dict[str, int]:
    selectors = _CSS_SELECTOR_RE.findall(content)
    return {
        "rules": len(_CSS_RULE_RE.findall(content)),
        "selectors": len(selectors),
        "state_selectors": sum(1 for s in selectors if ":hover" in s or ":focus" in s),
    }


def analyze_file(root: str, rel_path: str) -> AssetRecord:
    """
    Build the AssetRecord for one file.

    Raises OSError when the file cannot be read; the caller decides whether
    to skip it.
    """
    abs_path = Path(root) / rel_path
    data = abs_path.read_bytes()
    kind = asset_type(rel_path)
    ext = extension(rel_path)

    details: Dict[str, Any] = {}
    if ext in PRIMARY_EXTENSIONS or kind in ("js", "css"):
        content = data.decode("utf-8", errors="replace")
        details["line_count"] = len(content.split("\n"))
        details["minified_heuristic"] = is_minified(content)
        details["has_source_map"] = Path(str(abs_path) + ".map").exists()
        if kind == "js":
            deps = extract_js_dependencies(content)
            details["imports"] = deps["imports"]
            details["requires"] = deps["requires"]
            details["external_dependencies"] = deps["external"]
            details["duplicate_functions"] = find_duplicate_functions(content)
        elif kind == "css":
            css = count_css_rules(content)
            details["css_rules"] = css["rules"]
            details["css_selectors"] = css["selectors"]
            details["css_state_selectors"] = css["state_selectors"]

    return AssetRecord(
        path=rel_path,
        type=kind,
        size_bytes=len(data),
        gzip_size_bytes=compute_gzip_size(data),
        has_content_hash=has_content_hash(rel_path),
        is_chunk=is_chunk_file(rel_path),
        is_vendor=is_vendor_file(rel_path),
        **details,
    )


def find_heavy_dependencies(package_json_path: str) -> List[str]:
    """Known-heavy packages among package.json production dependencies."""
    try:
        with open(package_json_path, "r", encoding="utf-8") as f:
            package = json.load(f)
    except FileNotFoundError:
        return []
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read %s: %s", package_json_path, exc)
        return []

    dependencies = package.get("dependencies") or {}
    return [dep for dep in HEAVY_DEPENDENCIES if dep in dependencies]


# ===================================================================
# Aggregates
# ===================================================================
def _average_size(records: List[AssetRecord]) -> int:
    if not records:
        return 0
    return round(sum(r.size_bytes for r in records) / len(records))


def _largest(records: List[AssetRecord]) -> Optional[Dict[str, Any]]:
    if not records:
        return None
    largest = max(records, key=lambda r: r.size_bytes)
    return {"path": largest.path, "size_bytes": largest.size_bytes}


def _is_code(record: AssetRecord) -> bool:
    return record.type in ("js", "css")


def chunk_metrics(records: List[AssetRecord]) -> Dict[str, Any]:
    chunks = [r for r in records if r.is_chunk]
    return {
        "total": len(chunks),
        "js": sum(1 for r in chunks if r.type == "js"),
        "css": sum(1 for r in chunks if r.type == "css"),
        "average_size": _average_size(chunks),
        "largest": _largest(chunks),
    }


def summarize(records: List[AssetRecord]) -> Dict[str, Any]:
    total_size = sum(r.size_bytes for r in records)
    total_gzip = sum(r.gzip_size_bytes for r in records)
    return {
        "total_assets": len(records),
        "total_size": total_size,
        "total_gzip_size": total_gzip,
        "compression_ratio": total_gzip / total_size if total_size > 0 else 0,
        "average_size": _average_size(records),
        "largest": _largest(records),
    }


def optimization_potential(records: List[AssetRecord]) -> Dict[str, int]:
    """Rough savings estimate: 30% of unminified code, 20% of large assets."""
    unminified = sum(r.size_bytes for r in records if _is_code(r) and not r.minified_heuristic)
    large = sum(r.size_bytes for r in records if r.size_bytes > LARGE_ASSET_BYTES)
    return {
        "minification_savings": round(unminified * 0.3),
        "chunk_optimization_savings": round(large * 0.2),
        "total_potential_savings": round(unminified * 0.3 + large * 0.2),
    }


# ===================================================================
# Public Entry Points
# ===================================================================
def analyze_build_directory(build_dir: str, package_json: Optional[str] = None) -> AssetAnalysis:
    """
    Run the asset analysis on one build-output root.

    Steps:
    1. Discover files (skip ignored directories)
    2. Build one AssetRecord per readable file
    3. Optionally scan package.json for heavy dependencies
    """
    logger.info("Starting asset analysis on: %s", build_dir)
    analysis = AssetAnalysis(root=build_dir)

    if not Path(build_dir).is_dir():
        logger.warning("Build directory %s does not exist", build_dir)
        analysis.skipped.append({"path": build_dir, "reason": "not a directory"})
        return analysis

    for rel_path in discover_asset_files(build_dir, analysis.skipped):
        try:
            analysis.records.append(analyze_file(build_dir, rel_path))
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", rel_path, exc)
            analysis.skipped.append({"path": rel_path, "reason": str(exc)})

    if package_json:
        analysis.heavy_dependencies = find_heavy_dependencies(package_json)

    logger.info(
        "Asset analysis complete: %d files, %d skipped",
        len(analysis.records), len(analysis.skipped),
    )
    return analysis


def analysis_to_dict(analysis: AssetAnalysis) -> Dict[str, Any]:
    records = analysis.records
    return {
        "timestamp": analysis.timestamp.isoformat(),
        "root": analysis.root,
        "summary": summarize(records),
        "chunks": chunk_metrics(records),
        "heavy_dependencies": list(analysis.heavy_dependencies),
        "optimization_potential": optimization_potential(records),
        "assets": [r.model_dump() for r in records],
        "skipped": list(analysis.skipped),
    }


def write_analysis(analysis: AssetAnalysis, output_path: str) -> str:
    """Write the analysis JSON; returns the absolute path."""
    abs_output = os.path.abspath(output_path)
    os.makedirs(os.path.dirname(abs_output), exist_ok=True)
    with open(abs_output, "w", encoding="utf-8") as f:
        json.dump(analysis_to_dict(analysis), f, indent=2)
    logger.info("Bundle analysis saved: %s", abs_output)
    return abs_output


def to_bundle(analysis: AssetAnalysis) -> MetricBundle:
    """Bundle-category metrics for the rule engine; one item per asset."""
    records = analysis.records
    summary = summarize(records)
    chunks = chunk_metrics(records)
    return MetricBundle.build(
        "bundle",
        {
            "total_assets": summary["total_assets"],
            "total_size": summary["total_size"],
            "total_gzip_size": summary["total_gzip_size"],
            "compression_ratio": summary["compression_ratio"],
            "chunk_count": chunks["total"],
            "unminified_count": sum(1 for r in records if _is_code(r) and not r.minified_heuristic),
            "heavy_dependency_count": len(analysis.heavy_dependencies),
            "heavy_dependencies": ", ".join(analysis.heavy_dependencies),
            "skipped_files": len(analysis.skipped),
        },
        items=[r.model_dump() for r in records],
        timestamp=analysis.timestamp,
        failures=[{"source": s["path"], "reason": s["reason"]} for s in analysis.skipped],
    )
