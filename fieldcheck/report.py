"""
SAS Field Network Check - Report Aggregator
Counts errors and warnings in the measurement store and derives the verdict.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from fieldcheck.store import LogEntry, MeasurementStore, Severity

logger = logging.getLogger(__name__)


class Verdict(Enum):
    CLEAN = "Clean"
    MINOR_ISSUES = "Minor issues"
    CRITICAL_ISSUES = "Critical issues"


@dataclass(frozen=True)
class RunSummary:
    errors: int
    warnings: int
    verdict: Verdict


def verdict_for(errors: int, warnings: int) -> Verdict:
    if errors > 0:
        return Verdict.CRITICAL_ISSUES
    if warnings > 0:
        return Verdict.MINOR_ISSUES
    return Verdict.CLEAN


def count_entries(entries: Iterable[LogEntry]) -> RunSummary:
    """Linear scan; pure."""
    errors = 0
    warnings = 0
    for entry in entries:
        if entry.severity == Severity.ERROR:
            errors += 1
        elif entry.severity == Severity.WARN:
            warnings += 1
    return RunSummary(errors, warnings, verdict_for(errors, warnings))


def summarize(store: MeasurementStore, emit: bool = True) -> RunSummary:
    """
    Count the store, then (optionally) append the summary lines. Summary lines
    are INFO/SUCCESS so a second summarize() sees the same counts.
    """
    summary = count_entries(store.entries())
    if emit:
        store.info("=" * 60)
        store.info(f"Summary: {summary.errors} errors, {summary.warnings} warnings")
        if summary.verdict == Verdict.CLEAN:
            store.success("Verdict: Clean - no issues detected")
        elif summary.verdict == Verdict.MINOR_ISSUES:
            store.info("Verdict: Minor issues - review the warnings above")
        else:
            store.info("Verdict: Critical issues - review the errors above")
    return summary
