"""Builds TestResults and maintains rolling analytics."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from hybridqa.models.test_result import (
    AutomationResults,
    HistoryRun,
    IssueCount,
    PerformanceMetrics,
    StepResult,
    TestAnalytics,
    TestHistory,
    TestResult,
    VisualAnalysis,
)

logger = logging.getLogger(__name__)


def derive_status(steps: Iterable[StepResult], errored: bool = False) -> str:
    """``pass`` iff every step passed; ``error`` when the run itself broke."""
    if errored:
        return "error"
    return "pass" if all(s.status == "pass" for s in steps) else "fail"


def build_result(
    test_id: str,
    steps: list[StepResult],
    metrics: Optional[PerformanceMetrics] = None,
    visual: Optional[VisualAnalysis] = None,
    *,
    started_at: int,
    duration: int,
    errored: bool = False,
    result_id: Optional[str] = None,
) -> TestResult:
    """Merge step outcomes, metrics and the visual payload into one result."""
    fields = {}
    if result_id:
        fields["id"] = result_id
    return TestResult(
        test_id=test_id,
        timestamp=started_at,
        duration=duration,
        status=derive_status(steps, errored),
        visual_analysis=visual.model_copy(deep=True) if visual else VisualAnalysis(),
        automation_results=AutomationResults(
            steps=list(steps),
            metrics=metrics.model_copy(deep=True) if metrics else PerformanceMetrics(),
        ),
        **fields,
    )


def update_analytics(
    analytics: TestAnalytics,
    result: TestResult,
    completed_count: int,
    session_results: list[TestResult],
) -> TestAnalytics:
    """Fold one finished run into the rolling analytics, in place.

    ``completed_count`` is the cumulative length of the completed queue, so the
    pass rate is cumulative passes over cumulative runs.
    """
    analytics.total_runs += 1
    analytics.pass_rate = completed_count / analytics.total_runs * 100

    if session_results:
        analytics.average_duration = (
            sum(r.duration for r in session_results) / len(session_results)
        )

    for issue in result.visual_analysis.issues:
        entry = next(
            (e for e in analytics.common_issues if e.type == issue.description), None
        )
        if entry is None:
            analytics.common_issues.append(IssueCount(type=issue.description, count=1))
        else:
            entry.count += 1

    logger.debug(
        "Analytics updated: runs=%d pass_rate=%.1f%% avg_duration=%.0fms",
        analytics.total_runs, analytics.pass_rate, analytics.average_duration,
    )
    return analytics


def record_history(history: list[TestHistory], result: TestResult) -> TestHistory:
    """Append a run to the per-test history, creating the entry on first run."""
    entry = next((h for h in history if h.test_id == result.test_id), None)
    if entry is None:
        entry = TestHistory(test_id=result.test_id)
        history.append(entry)
    entry.runs.append(HistoryRun(timestamp=result.timestamp, result=result))
    return entry
