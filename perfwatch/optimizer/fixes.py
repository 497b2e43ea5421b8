"""
Automated Fixes
===============
Maps Issue types to FixDescriptors and, when asked, hands them to a runner.

BOUNDARY RULES:
    - The engine only ENUMERATES fixes; it never executes them.
    - Execution is delegated to a runner callable supplied by the caller.
    - One failing fix never stops the remaining fixes.
"""
import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from perfwatch.models.issue import FixDescriptor, Issue

logger = logging.getLogger(__name__)

FIX_TIMEOUT_SECONDS = 300

# (category, issue_type) → (action, description, command)
FIX_CATALOGUE: Dict[Tuple[str, str], Tuple[str, str, str]] = {
    ("frontend", "resource-size"): (
        "compress-assets",
        "Automatically compress images and assets",
        "npm run optimize:images",
    ),
    ("backend", "response-time"): (
        "enable-caching",
        "Enable response caching for static endpoints",
        "node scripts/enable-caching.js",
    ),
    ("bundle", "minification"): (
        "minify-assets",
        "Rebuild with minification enabled",
        "npm run build -- --mode production",
    ),
    ("cache", "compression"): (
        "precompress-assets",
        "Pre-compress large static files with gzip",
        "npm run optimize:compress",
    ),
    ("cache", "versioning"): (
        "apply-cache-headers",
        "Install the generated nginx cache configuration",
        "sh performance/scripts/apply-cache-config.sh",
    ),
}


def enumerate_fixes(issues: Iterable[Issue]) -> List[FixDescriptor]:
    """One FixDescriptor per Issue with a catalogued fix, in Issue order."""
    fixes: list[FixDescriptor] = []
    for issue in issues:
        entry = FIX_CATALOGUE.get((issue.category, issue.type))
        if entry is None:
            continue
        action, description, command = entry
        fixes.append(FixDescriptor(
            category=issue.category,
            issue_type=issue.type,
            action=action,
            description=description,
            command=command,
        ))
    return fixes


@dataclass
class FixOutcome:
    action: str
    success: bool
    detail: str = ""


FixRunner = Callable[[FixDescriptor], None]


def dry_run_runner(fix: FixDescriptor) -> None:
    logger.info("Would run: %s", fix.command)


def subprocess_runner(cwd: Optional[str] = None) -> FixRunner:
    """Runner that executes each fix command; a non-zero exit raises."""
    def run(fix: FixDescriptor) -> None:
        subprocess.run(
            shlex.split(fix.command),
            capture_output=True, text=True, timeout=FIX_TIMEOUT_SECONDS,
            cwd=cwd, check=True,
        )
    return run


def apply_automated_fixes(
    fixes: Iterable[FixDescriptor],
    runner: FixRunner = dry_run_runner,
) -> List[FixOutcome]:
    """Run every fix through `runner`, isolating failures per fix."""
    outcomes: list[FixOutcome] = []
    for fix in fixes:
        logger.info("Applying: %s", fix.description)
        try:
            runner(fix)
        except subprocess.CalledProcessError as exc:
            logger.error("Fix %s exited with %d: %s", fix.action, exc.returncode, exc.stderr)
            outcomes.append(FixOutcome(fix.action, False, f"exit code {exc.returncode}"))
        except subprocess.TimeoutExpired:
            logger.error("Fix %s timed out", fix.action)
            outcomes.append(FixOutcome(fix.action, False, "timed out"))
        except Exception as exc:
            logger.error("Failed to apply fix %s: %s", fix.action, exc)
            outcomes.append(FixOutcome(fix.action, False, str(exc)))
        else:
            outcomes.append(FixOutcome(fix.action, True))
    return outcomes
