"""
Report Writer
=============
Serializes an OptimizationReport and hands the bytes to a sink.

Serialization is deterministic: pydantic's model_dump(mode="json") keeps the
model's field order, dict insertion order and list order, and json.dumps is
called without sort_keys. The same report always yields the same text.

Sinks:
    DirectorySink — a new `optimization-report-<stamp>.json` per run, opened
                    with exclusive create so an existing report is never
                    overwritten.

Failure to write is the only hard failure of a run and raises ReportWriteError.
"""
import html
import json
import logging
import os
from typing import Optional, Protocol

from perfwatch.core.config import ENABLE_HTML_REPORT, REPORT_DIR
from perfwatch.models.report import OptimizationReport

logger = logging.getLogger(__name__)


class ReportWriteError(Exception):
    """The report artifact could not be persisted."""


class ReportSink(Protocol):
    def write(self, name: str, content: str) -> str: ...


def report_stamp(report: OptimizationReport) -> str:
    return report.timestamp.strftime("%Y%m%dT%H%M%S%fZ")


class DirectorySink:
    """Writes each artifact as a new file under `directory`."""

    def __init__(self, directory: str = REPORT_DIR):
        self.directory = directory

    def write(self, name: str, content: str) -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = os.path.abspath(os.path.join(self.directory, name))
        with open(path, "x", encoding="utf-8") as f:
            f.write(content)
        return path


def serialize_report(report: OptimizationReport) -> str:
    return json.dumps(report.model_dump(mode="json"), indent=2)


def render_html(report: OptimizationReport) -> str:
    """Standalone HTML page with the summary, prioritized actions and issues."""
    esc = html.escape
    counts = report.summary.count_by_severity
    rows = "\n".join(
        f"<tr class=\"{esc(a.severity)}\"><td>{esc(a.severity)}</td><td>{esc(a.category)}</td>"
        f"<td>{esc(a.description)}</td><td>{esc(a.top_recommendation)}</td></tr>"
        for a in report.prioritized_actions
    )
    sections = []
    for category, issues in report.issues_by_category.items():
        if not issues:
            continue
        items = "\n".join(
            f"<li><strong>{esc(i.type)}</strong> ({esc(i.severity)}): {esc(i.description)}</li>"
            for i in issues
        )
        sections.append(f"<h3>{esc(category)}</h3>\n<ul>\n{items}\n</ul>")
    skipped = "\n".join(
        f"<li>{esc(category)}: {esc(reason)}</li>"
        for category, reason in report.skipped_categories.items()
    )
    failures = "\n".join(
        f"<li>{esc(f.category)}: {esc(f.source)} ({esc(f.reason)})</li>"
        for f in report.partial_failures
    )

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Optimization Report {esc(report.timestamp.isoformat())}</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; }}
td, th {{ border: 1px solid #ccc; padding: 4px 8px; }}
tr.high td:first-child {{ color: #c00; }}
tr.medium td:first-child {{ color: #c60; }}
</style>
</head>
<body>
<h1>Optimization Report</h1>
<p>Generated {esc(report.timestamp.isoformat())}</p>
<p>Total issues: {report.summary.total_issues}
 (high {counts.get("high", 0)}, medium {counts.get("medium", 0)}, low {counts.get("low", 0)})</p>
<h2>Prioritized actions</h2>
<table>
<tr><th>Severity</th><th>Category</th><th>Issue</th><th>Top recommendation</th></tr>
{rows}
</table>
<h2>Issues by category</h2>
{chr(10).join(sections)}
<h2>Skipped categories</h2>
<ul>
{skipped}
</ul>
<h2>Partial failures</h2>
<ul>
{failures}
</ul>
</body>
</html>
"""


class ReportWriter:
    """
    Usage:
        writer = ReportWriter(DirectorySink("./performance/reports"))
        path = writer.write(report)
    """

    def __init__(self, sink: Optional[ReportSink] = None, html_report: bool = ENABLE_HTML_REPORT):
        self.sink = sink or DirectorySink()
        self.html_report = html_report

    def write(self, report: OptimizationReport) -> str:
        """Persist the JSON report (and optional HTML); returns the JSON location."""
        stamp = report_stamp(report)
        try:
            path = self.sink.write(f"optimization-report-{stamp}.json", serialize_report(report))
        except OSError as exc:
            logger.error("Failed to write optimization report: %s", exc)
            raise ReportWriteError(f"could not write optimization report: {exc}") from exc
        logger.info("Optimization report saved: %s", path)

        if self.html_report:
            try:
                html_path = self.sink.write(f"optimization-report-{stamp}.html", render_html(report))
                logger.info("HTML report saved: %s", html_path)
            except OSError as exc:
                logger.warning("HTML report not written: %s", exc)

        return path
