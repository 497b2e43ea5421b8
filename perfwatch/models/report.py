"""
Optimization Report Model
=========================
Pydantic model for one analysis run. Built once by the engine, then only read.

Fields:
    timestamp           — assigned once when the report is built
    summary             — total_issues + count_by_severity {high, medium, low}
    issues_by_category  — full, un-truncated Issues per bundle kind, in
                          category iteration order
    prioritized_actions — top 10 Issues, severity first, discovery order on ties
    automated_fixes     — FixDescriptors for Issues with a known fix
    skipped_categories  — bundle kind → reason the category produced nothing
    skipped_rules       — rules that could not evaluate (missing or malformed fields)
    partial_failures    — producer-side markers per category (unreadable files,
                          unsupported observers, dropped errors)

Used by:
    - ReportWriter to serialize the JSON / HTML artifacts
    - POST /api/performance/report to answer the caller
"""
from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, ConfigDict

from perfwatch.models.issue import FixDescriptor, Issue, Severity


class ReportSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_issues: int = 0
    count_by_severity: Dict[str, int] = {"high": 0, "medium": 0, "low": 0}


class PrioritizedAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    type: str
    severity: Severity
    description: str
    top_recommendation: str


class SkippedRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    rule: str
    reason: str


class PartialFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    source: str
    reason: str


class OptimizationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    summary: ReportSummary
    issues_by_category: Dict[str, List[Issue]]
    prioritized_actions: List[PrioritizedAction] = []
    automated_fixes: List[FixDescriptor] = []
    skipped_categories: Dict[str, str] = {}
    skipped_rules: List[SkippedRule] = []
    partial_failures: List[PartialFailure] = []

    def all_issues(self) -> List[Issue]:
        """Every Issue in discovery order."""
        return [issue for issues in self.issues_by_category.values() for issue in issues]
