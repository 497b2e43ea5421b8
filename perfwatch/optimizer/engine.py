"""
Optimization Rule Engine
========================
Correlates whatever MetricBundles are available into one OptimizationReport.

PIPELINE (per run):
    for category in BUNDLE_KINDS (frontend → backend → database → bundle → cache):
        no bundle        → skipped_categories[category] = reason
        bundle.failures  → partial_failures += (category, source, reason)
        for rule in RULES[category]:
            MissingField, TypeError, ValueError
                         → skipped_rules += (category, rule, reason)
            Issue        → issues_by_category[category] += issue
    prioritize → top 10, severity first, discovery order on ties
    enumerate_fixes → automated_fixes

CANCELLATION:
    A threading.Event is checked before each category and each rule. When set,
    RunCancelled is raised and every Issue gathered so far is dropped; no
    report object is produced.

The engine holds no state between runs and never writes files.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from perfwatch.core.config import load_thresholds
from perfwatch.core.constants import BUNDLE_KINDS, MAX_PRIORITIZED_ACTIONS, SEVERITY_RANK
from perfwatch.models.issue import Issue
from perfwatch.models.metric_bundle import MetricBundle, utc_now
from perfwatch.models.report import (
    OptimizationReport,
    PrioritizedAction,
    PartialFailure,
    ReportSummary,
    SkippedRule,
)
from perfwatch.optimizer.fixes import enumerate_fixes
from perfwatch.optimizer.rules import RULES, MissingField, Rule

logger = logging.getLogger(__name__)


class RunCancelled(Exception):
    """The analysis run was cancelled; partial results were discarded."""


def prioritize(issues: Iterable[Issue], limit: int = MAX_PRIORITIZED_ACTIONS) -> List[PrioritizedAction]:
    """Stable sort by severity rank, descending; ties keep discovery order."""
    ranked = sorted(issues, key=lambda i: SEVERITY_RANK[i.severity], reverse=True)
    return [
        PrioritizedAction(
            category=i.category,
            type=i.type,
            severity=i.severity,
            description=i.description,
            top_recommendation=i.top_recommendation,
        )
        for i in ranked[:limit]
    ]


def summarize(issues: List[Issue]) -> ReportSummary:
    counts = {"high": 0, "medium": 0, "low": 0}
    for issue in issues:
        counts[issue.severity] += 1
    return ReportSummary(total_issues=len(issues), count_by_severity=counts)


class OptimizationEngine:
    """
    Usage:
        engine = OptimizationEngine()
        report = engine.analyze({"backend": monitor.backend_bundle()})
    """

    def __init__(
        self,
        thresholds: Optional[Mapping[str, float]] = None,
        rules: Optional[Dict[str, List[Rule]]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.thresholds = dict(thresholds) if thresholds is not None else load_thresholds()
        self.rules = rules if rules is not None else RULES
        self.clock = clock

    def analyze(
        self,
        bundles: Mapping[str, Optional[MetricBundle]],
        unavailable: Optional[Mapping[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationReport:
        """
        Evaluate every rule against the supplied bundles.

        `unavailable` carries a reason per category whose producer failed;
        it is used instead of the generic "no input bundle" reason.
        """
        unavailable = unavailable or {}
        issues_by_category: Dict[str, List[Issue]] = {}
        skipped_categories: Dict[str, str] = {}
        skipped_rules: List[SkippedRule] = []
        partial_failures: List[PartialFailure] = []

        for category in BUNDLE_KINDS:
            self._check_cancelled(cancel_event)
            bundle = bundles.get(category)
            if bundle is None:
                reason = unavailable.get(category, "no input bundle")
                logger.info("Skipping %s rules: %s", category, reason)
                skipped_categories[category] = reason
                issues_by_category[category] = []
                continue

            partial_failures.extend(
                PartialFailure(category=category, source=f["source"], reason=f["reason"])
                for f in bundle.failures
            )

            found: list[Issue] = []
            for rule in self.rules.get(category, []):
                self._check_cancelled(cancel_event)
                try:
                    issue = rule.evaluate(bundle, self.thresholds)
                except MissingField as exc:
                    logger.debug("Rule %s/%s skipped: %s", category, rule.type, exc)
                    skipped_rules.append(SkippedRule(category=category, rule=rule.type, reason=str(exc)))
                    continue
                except (TypeError, ValueError) as exc:
                    logger.warning("Rule %s/%s failed on malformed input: %s", category, rule.type, exc)
                    skipped_rules.append(SkippedRule(
                        category=category, rule=rule.type, reason=f"evaluation failed: {exc}",
                    ))
                    continue
                if issue is not None:
                    found.append(issue)
            issues_by_category[category] = found

        all_issues = [i for issues in issues_by_category.values() for i in issues]
        self._check_cancelled(cancel_event)

        report = OptimizationReport(
            timestamp=self.clock(),
            summary=summarize(all_issues),
            issues_by_category=issues_by_category,
            prioritized_actions=prioritize(all_issues),
            automated_fixes=enumerate_fixes(all_issues),
            skipped_categories=skipped_categories,
            skipped_rules=skipped_rules,
            partial_failures=partial_failures,
        )
        logger.info(
            "Analysis complete: %d issues (%d high)",
            report.summary.total_issues, report.summary.count_by_severity["high"],
        )
        return report

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Analysis run cancelled; discarding partial results")
            raise RunCancelled("analysis run cancelled")
