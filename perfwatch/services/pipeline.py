"""
Performance Pipeline
====================
Runs the selected collection/analysis stages, the rule engine, and the
report writer as one cancellable batch.

STAGES (any subset, default all):
    frontend  — latest ingested browser payload, else an optional Lighthouse JSON
    backend   — request summary + system snapshot from the live monitor
    database  — latest database snapshot from the live monitor
    bundle    — static asset analysis of the build directory
    cache     — cache-policy classification of static + build directories

FAILURE MODEL:
    - A stage that raises is logged and recorded as unavailable; the run goes on.
    - A stage with no data yields no bundle; the engine reports the reason.
    - Cancellation between stages, or after analysis but before the first
      write, raises RunCancelled with nothing written.
    - The report is written first; stage artifacts (analysis JSON, cache
      configs, sw.js) are written only after the report is on disk.
    - ReportWriteError propagates to the caller.
"""
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional

from perfwatch.analyzers import asset_analyzer
from perfwatch.analyzers.asset_analyzer import AssetAnalysis
from perfwatch.analyzers.cache_classifier import CacheClassifier
from perfwatch.collectors.backend_collector import BackendPerformanceMonitor
from perfwatch.collectors.frontend_collector import frontend_bundle_from_lighthouse
from perfwatch.core import config
from perfwatch.core.constants import BUNDLE_KINDS
from perfwatch.models.metric_bundle import MetricBundle
from perfwatch.models.report import OptimizationReport
from perfwatch.optimizer.engine import OptimizationEngine, RunCancelled
from perfwatch.services.report_writer import DirectorySink, ReportWriter, report_stamp

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    build_dir: str = config.BUILD_DIR
    static_dir: str = config.STATIC_DIR
    config_dir: str = config.CONFIG_OUTPUT_DIR
    report_dir: str = config.REPORT_DIR
    package_json: Optional[str] = "package.json"
    lighthouse_path: Optional[str] = None
    precache_limit: int = config.PRECACHE_LIMIT
    write_artifacts: bool = True


@dataclass
class PipelineResult:
    report: OptimizationReport
    report_path: Optional[str] = None
    artifacts: Dict[str, str] = field(default_factory=dict)


def select_stages(stages: Optional[Iterable[str]]) -> list[str]:
    """Normalize a stage selection to BUNDLE_KINDS order; unknown names raise ValueError."""
    if stages is None:
        return list(BUNDLE_KINDS)
    requested = set(stages)
    unknown = requested - set(BUNDLE_KINDS)
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(sorted(unknown))}")
    return [kind for kind in BUNDLE_KINDS if kind in requested]


def load_lighthouse(path: str) -> Optional[MetricBundle]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return frontend_bundle_from_lighthouse(json.load(f))
    except FileNotFoundError:
        logger.info("Lighthouse report %s not found", path)
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read Lighthouse report %s: %s", path, exc)
        return None


class PerformancePipeline:
    """
    Usage:
        pipeline = PerformancePipeline(monitor=monitor, frontend_source=store.latest)
        result = pipeline.run(stages=["backend", "bundle"])
    """

    def __init__(
        self,
        monitor: Optional[BackendPerformanceMonitor] = None,
        frontend_source: Optional[Callable[[], Optional[MetricBundle]]] = None,
        options: Optional[PipelineOptions] = None,
        engine: Optional[OptimizationEngine] = None,
        writer: Optional[ReportWriter] = None,
    ) -> None:
        self.monitor = monitor
        self.frontend_source = frontend_source
        self.options = options or PipelineOptions()
        self.engine = engine or OptimizationEngine()
        self.writer = writer or ReportWriter(DirectorySink(self.options.report_dir))

        self._analysis: Optional[AssetAnalysis] = None
        self._classifier: Optional[CacheClassifier] = None

    # ------------------------------------------------------------------
    # Stage collectors
    # ------------------------------------------------------------------
    def _frontend(self) -> Optional[MetricBundle]:
        bundle = self.frontend_source() if self.frontend_source else None
        if bundle is None and self.options.lighthouse_path:
            bundle = load_lighthouse(self.options.lighthouse_path)
        return bundle

    def _backend(self) -> Optional[MetricBundle]:
        return self.monitor.backend_bundle() if self.monitor else None

    def _database(self) -> Optional[MetricBundle]:
        return self.monitor.database_bundle() if self.monitor else None

    def _bundle(self) -> Optional[MetricBundle]:
        opts = self.options
        if not os.path.isdir(opts.build_dir):
            logger.info("Build directory %s not found, skipping bundle analysis", opts.build_dir)
            return None
        self._analysis = asset_analyzer.analyze_build_directory(opts.build_dir, opts.package_json)
        return asset_analyzer.to_bundle(self._analysis)

    def _cache(self) -> Optional[MetricBundle]:
        opts = self.options
        roots = [d for d in (opts.static_dir, opts.build_dir) if os.path.isdir(d)]
        if not roots:
            return None
        self._classifier = CacheClassifier(roots, precache_limit=opts.precache_limit)
        self._classifier.classify()
        return self._classifier.to_bundle()

    def collect(
        self,
        stages: list[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> tuple[Dict[str, Optional[MetricBundle]], Dict[str, str]]:
        producers: Dict[str, Callable[[], Optional[MetricBundle]]] = {
            "frontend": self._frontend,
            "backend": self._backend,
            "database": self._database,
            "bundle": self._bundle,
            "cache": self._cache,
        }
        bundles: Dict[str, Optional[MetricBundle]] = {}
        unavailable: Dict[str, str] = {}

        for kind in BUNDLE_KINDS:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled("pipeline run cancelled")
            if kind not in stages:
                unavailable[kind] = "stage not selected"
                continue
            try:
                bundle = producers[kind]()
            except Exception as exc:
                logger.error("Stage %s failed: %s", kind, exc, exc_info=True)
                unavailable[kind] = f"stage failed: {exc}"
                continue
            if bundle is None:
                unavailable[kind] = self._no_data_reason(kind)
            bundles[kind] = bundle
        return bundles, unavailable

    def _no_data_reason(self, kind: str) -> str:
        if kind in ("backend", "database") and self.monitor is None:
            return "no backend monitor attached"
        if kind == "database" and self.monitor is not None:
            return self.monitor.database_status
        if kind == "bundle":
            return f"build directory {self.options.build_dir} not found"
        if kind == "cache":
            return "no static or build directory found"
        return "no data collected"

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def run(
        self,
        stages: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        selected = select_stages(stages)
        logger.info("Running performance pipeline: stages=%s", ",".join(selected))
        self._analysis = None
        self._classifier = None

        bundles, unavailable = self.collect(selected, cancel_event)
        report = self.engine.analyze(bundles, unavailable=unavailable, cancel_event=cancel_event)

        result = PipelineResult(report=report)
        if not self.options.write_artifacts:
            return result

        # Report first; stage artifacts only once it is on disk.
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("pipeline run cancelled before writing")
        result.report_path = self.writer.write(report)
        result.artifacts.update(self._write_stage_artifacts(report))
        return result

    def _write_stage_artifacts(self, report: OptimizationReport) -> Dict[str, str]:
        """Stage artifacts are advisory; a failure here is logged, not raised."""
        artifacts: Dict[str, str] = {}
        opts = self.options
        if self._analysis is not None:
            name = f"bundle-analysis-{report_stamp(report)}.json"
            try:
                artifacts["bundle_analysis"] = asset_analyzer.write_analysis(
                    self._analysis, os.path.join(opts.report_dir, name),
                )
            except OSError as exc:
                logger.warning("Bundle analysis not written: %s", exc)
        if self._classifier is not None:
            try:
                artifacts.update(self._classifier.write_artifacts(opts.config_dir, opts.static_dir))
            except OSError as exc:
                logger.warning("Cache artifacts not written: %s", exc)
        return artifacts
