from __future__ import annotations

from collections.abc import Sequence

from specflow.models import (
    REASON_CANCELLED,
    REASON_FAIL_FAST,
    OverallStatus,
    RequestCategory,
    StagePlan,
    StageResult,
    StageStatus,
    WorkflowReport,
)

# Skips that stand in for work that should have happened.
FAILING_SKIP_REASONS = frozenset({REASON_FAIL_FAST, REASON_CANCELLED})


def overall_status(results: Sequence[StageResult]) -> OverallStatus:
    for result in results:
        if result.status is StageStatus.FAILED:
            return OverallStatus.FAILED
        if result.status is StageStatus.SKIPPED and result.reason in FAILING_SKIP_REASONS:
            return OverallStatus.FAILED
    return OverallStatus.PASSED


def overall_score(results: Sequence[StageResult]) -> float:
    scores = [
        result.score
        for result in results
        if result.status is StageStatus.OK and result.score is not None
    ]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def build_report(
    category: RequestCategory,
    plan: StagePlan,
    results: Sequence[StageResult],
) -> WorkflowReport:
    return WorkflowReport(
        category=category,
        plan=tuple(plan),
        results=list(results),
        overall_status=overall_status(results),
        overall_score=overall_score(results),
    )


def render_text(report: WorkflowReport) -> str:
    lines = [
        f"Category: {report.category.value}",
        "Plan: " + " -> ".join(stage.value for stage in report.plan),
        "",
    ]
    for result in report.results:
        line = f"  {result.stage_id.value:<10} {result.status.value:<8}"
        if result.score is not None:
            line += f" score={result.score:g}"
        if result.reason:
            line += f" ({result.reason})"
        if result.summary:
            line += f"  {result.summary.splitlines()[0][:120]}"
        lines.append(line.rstrip())
    lines.append("")
    lines.append(f"Overall: {report.overall_status.value} (score {report.overall_score:.1f})")
    return "\n".join(lines)
