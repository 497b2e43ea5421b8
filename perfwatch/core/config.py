"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    FRONTEND_SAMPLE_RATE        — Share of page views that report metrics (default: 0.1)
    FRONTEND_METRICS_ENDPOINT   — Where the browser collector POSTs its payload
    FRONTEND_SEND_DELAY         — Seconds after `load` before the single send (default: 2.0)
    BACKEND_SAMPLE_RATE         — Share of requests recorded by the middleware (default: 0.1)
    SLOW_REQUEST_THRESHOLD_MS   — Per-request alert threshold (default: 1000)
    MEMORY_THRESHOLD            — System memory usage alert ratio (default: 0.8)
    REQUEST_BUFFER_CAPACITY     — Ring buffer size for request records (default: 1000)
    SNAPSHOT_INTERVAL_SECONDS   — System/database snapshot period (default: 30)
    BUILD_DIR / DIST_DIR        — Build output roots scanned by the asset analyzer
    STATIC_DIR                  — Public directory that receives the generated sw.js
    REPORT_DIR                  — Where timestamped reports are written
    CONFIG_OUTPUT_DIR           — Where cache headers / nginx snippets are written
    PRECACHE_LIMIT              — Max entries in the precache manifest (default: 20)
    THRESHOLDS_FILE             — Optional YAML file overriding rule thresholds
    ENABLE_HTML_REPORT          — Also render an HTML report next to the JSON (default: false)
    LOG_LEVEL                   — Root and server log level (default: INFO)
    PERFWATCH_LOG_LEVEL         — Level for the perfwatch.* loggers (default: LOG_LEVEL)
    LOG_DIR                     — Directory for the rotating log file (default: ./logs)
    LOG_TO_FILE                 — Also log to LOG_DIR (default: true)

Threshold Philosophy:
    Rule thresholds live in DEFAULT_THRESHOLDS. A YAML file may override any
    subset of keys; unknown keys are logged and ignored so a typo never
    silently disables a rule.
"""
import logging
import os
from typing import Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Frontend collector
FRONTEND_SAMPLE_RATE = float(os.getenv("FRONTEND_SAMPLE_RATE", 0.1))
FRONTEND_METRICS_ENDPOINT = os.getenv("FRONTEND_METRICS_ENDPOINT", "/api/performance/metrics")
FRONTEND_SEND_DELAY = float(os.getenv("FRONTEND_SEND_DELAY", 2.0))
MAX_FRONTEND_ERRORS = 50

# Backend collector
BACKEND_SAMPLE_RATE = float(os.getenv("BACKEND_SAMPLE_RATE", 0.1))
SLOW_REQUEST_THRESHOLD_MS = float(os.getenv("SLOW_REQUEST_THRESHOLD_MS", 1000))
MEMORY_THRESHOLD = float(os.getenv("MEMORY_THRESHOLD", 0.8))
REQUEST_BUFFER_CAPACITY = int(os.getenv("REQUEST_BUFFER_CAPACITY", 1000))
SNAPSHOT_INTERVAL_SECONDS = float(os.getenv("SNAPSHOT_INTERVAL_SECONDS", 30))

# Asset analysis / cache classification
BUILD_DIR = os.getenv("BUILD_DIR", "./build")
DIST_DIR = os.getenv("DIST_DIR", "./dist")
STATIC_DIR = os.getenv("STATIC_DIR", "./public")
PRECACHE_LIMIT = int(os.getenv("PRECACHE_LIMIT", 20))

# Output locations
REPORT_DIR = os.getenv("REPORT_DIR", "./performance/reports")
CONFIG_OUTPUT_DIR = os.getenv("CONFIG_OUTPUT_DIR", "./performance/config")
ENABLE_HTML_REPORT = os.getenv("ENABLE_HTML_REPORT", "false").lower() == "true"
THRESHOLDS_FILE = os.getenv("THRESHOLDS_FILE")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PERFWATCH_LOG_LEVEL = os.getenv("PERFWATCH_LOG_LEVEL", LOG_LEVEL).upper()
LOG_DIR = os.getenv("LOG_DIR", "./logs")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"

# Rule thresholds
DEFAULT_THRESHOLDS: dict[str, float] = {
    "lcp_ms":                   2500,
    "fid_ms":                   100,
    "cls":                      0.1,
    "resource_size_bytes":      1_000_000,
    "resource_duration_ms":     3000,
    "response_time_medium_ms":  500,
    "response_time_high_ms":    1000,
    "p95_response_time_ms":     2000,
    "error_rate":               0.05,
    "memory_usage":             0.8,
    "connection_pool_ratio":    0.8,
    "operation_volume":         10_000,
    "bundle_size_bytes":        1_000_000,
    "chunk_count":              20,
    "compression_size_bytes":   100_000,
}


def load_thresholds(path: Optional[str] = None) -> dict[str, float]:
    """
    Return rule thresholds, optionally overridden from a YAML mapping.

    A missing or unreadable file falls back to the defaults with a warning.
    """
    thresholds = dict(DEFAULT_THRESHOLDS)
    path = path or THRESHOLDS_FILE
    if not path:
        return thresholds

    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not load thresholds from %s: %s", path, exc)
        return thresholds

    if not isinstance(overrides, dict):
        logger.warning("Thresholds file %s is not a mapping – ignoring", path)
        return thresholds

    for key, value in overrides.items():
        if key not in thresholds:
            logger.warning("Unknown threshold '%s' in %s – ignoring", key, path)
            continue
        try:
            thresholds[key] = float(value)
        except (TypeError, ValueError):
            logger.warning("Threshold '%s' must be numeric, got %r", key, value)

    return thresholds
