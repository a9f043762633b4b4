"""Scenario catalog filtering, stats, and run summaries."""

from __future__ import annotations

from dataclasses import dataclass

from voicedesk.models import RunAllResult, RunStatus, ScenarioRunResult, ScenarioSummary

CATEGORIES = ["flow", "edit", "fields", "errors", "end_call"]
ALL = "all"


def filter_scenarios(
    summaries: list[ScenarioSummary],
    query: str = "",
    category: str = ALL,
) -> list[ScenarioSummary]:
    """Match the query against name or any tag (case-insensitive), then by category."""
    q = query.strip().lower()

    def matches(s: ScenarioSummary) -> bool:
        if q and q not in s.name.lower() and not any(q in t.lower() for t in s.tags):
            return False
        return not category or category == ALL or s.category == category

    return [s for s in summaries if matches(s)]


@dataclass
class CatalogStats:
    total: int = 0
    passed: int = 0
    failed: int = 0
    not_run: int = 0


def catalog_stats(summaries: list[ScenarioSummary]) -> CatalogStats:
    # Scenarios whose last run errored count toward the total only
    return CatalogStats(
        total=len(summaries),
        passed=sum(1 for s in summaries if s.last_result == RunStatus.PASSED),
        failed=sum(1 for s in summaries if s.last_result == RunStatus.FAILED),
        not_run=sum(1 for s in summaries if s.last_result is None),
    )


def failed_check_count(result: ScenarioRunResult) -> int:
    return len(result.failed_checks)


def run_summary(result: ScenarioRunResult) -> str:
    """One line describing a single scenario run."""
    if result.status == RunStatus.PASSED:
        return f"Passed ({result.duration_ms}ms)"
    if result.status == RunStatus.FAILED:
        return f"{failed_check_count(result)} check(s) failed ({result.duration_ms}ms)"
    return f"Execution error: {result.error}" if result.error else "Execution error"


def run_all_summary(result: RunAllResult) -> str:
    return (f"Done: {result.passed} passed, {result.failed} failed, "
            f"{result.errors} errors ({result.duration_ms}ms)")
