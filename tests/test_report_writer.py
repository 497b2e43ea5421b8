"""
Report Writer Tests
===================
Deterministic serialization, JSON round-trip equality, exclusive-create
sinks, and the hard failure on write errors.
"""
import json
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from perfwatch.core.config import DEFAULT_THRESHOLDS
from perfwatch.models.metric_bundle import MetricBundle
from perfwatch.models.report import OptimizationReport
from perfwatch.optimizer.engine import OptimizationEngine
from perfwatch.services.report_writer import (
    DirectorySink,
    ReportWriteError,
    ReportWriter,
    serialize_report,
)


@pytest.fixture
def report():
    engine = OptimizationEngine(
        thresholds=DEFAULT_THRESHOLDS,
        clock=lambda: datetime(2026, 3, 1, 12, 30, 15, 123456, tzinfo=timezone.utc),
    )
    return engine.analyze({
        "frontend": MetricBundle.build("frontend", {"lcp": 3120.75, "cls": 0.25}, items=[
            {"name": "/hero.png", "size": 1_234_567, "duration": 3500.5},
        ]),
        "backend": MetricBundle.build("backend", {"average_response_time": 1200.125, "error_rate": 0.0625}),
    })


class TestSerialization:

    def test_deterministic(self, report):
        assert serialize_report(report) == serialize_report(report)

    def test_field_order_preserved(self, report):
        data = json.loads(serialize_report(report))
        assert list(data) == [
            "timestamp", "summary", "issues_by_category", "prioritized_actions",
            "automated_fixes", "skipped_categories", "skipped_rules", "partial_failures",
        ]
        assert list(data["issues_by_category"]) == ["frontend", "backend", "database", "bundle", "cache"]

    def test_round_trip_equality(self, report, tmp_path):
        path = ReportWriter(DirectorySink(str(tmp_path)), html_report=False).write(report)
        with open(path, encoding="utf-8") as f:
            parsed = OptimizationReport.model_validate_json(f.read())
        assert parsed == report
        assert parsed.timestamp == report.timestamp


class TestDirectorySink:

    def test_timestamped_name(self, report, tmp_path):
        path = ReportWriter(DirectorySink(str(tmp_path)), html_report=False).write(report)
        assert os.path.basename(path) == "optimization-report-20260301T123015123456Z.json"

    def test_never_overwrites(self, report, tmp_path):
        writer = ReportWriter(DirectorySink(str(tmp_path)), html_report=False)
        first = writer.write(report)
        with pytest.raises(ReportWriteError):
            writer.write(report)
        assert os.path.exists(first)

    def test_unwritable_directory(self, report, tmp_path):
        blocker = tmp_path / "reports"
        blocker.write_text("not a directory")
        with pytest.raises(ReportWriteError):
            ReportWriter(DirectorySink(str(blocker)), html_report=False).write(report)

    def test_sink_failure(self, report):
        sink = MagicMock()
        sink.write.side_effect = OSError("disk full")
        with pytest.raises(ReportWriteError, match="disk full"):
            ReportWriter(sink, html_report=False).write(report)


class TestHtml:

    def test_html_rendered_next_to_json(self, report, tmp_path):
        ReportWriter(DirectorySink(str(tmp_path)), html_report=True).write(report)
        names = sorted(os.listdir(tmp_path))
        assert names[0].endswith(".html") and names[1].endswith(".json")
        html = (tmp_path / names[0]).read_text(encoding="utf-8")
        assert "Prioritized actions" in html
        assert "Average response time is" in html

    def test_html_lists_partial_failures(self, tmp_path):
        engine = OptimizationEngine(thresholds=DEFAULT_THRESHOLDS)
        report = engine.analyze({
            "frontend": MetricBundle.build("frontend", {"lcp": 1000}, failures=[
                {"source": "observer:layout-shift", "reason": "observer type not supported by the browser"},
            ]),
        })
        ReportWriter(DirectorySink(str(tmp_path)), html_report=True).write(report)
        html_name = next(n for n in os.listdir(tmp_path) if n.endswith(".html"))
        html = (tmp_path / html_name).read_text(encoding="utf-8")
        assert "Partial failures" in html
        assert "observer:layout-shift" in html
