"""Roll plan history entries into the summary fed to future plan generation."""
from __future__ import annotations

from collections import Counter
from typing import Iterable, List, Sequence

from plan_lifecycle.api.schemas.history import HistoricalComplianceSummary, PlanHistoryEntry
from plan_lifecycle.services.compliance import calculate_plan_aggregates

MAX_COMMON_BLOCKERS = 5


def build_historical_summary(
    entries: Sequence[PlanHistoryEntry],
    *,
    day_patterns: Iterable[str] = (),
    adjustments: Iterable[str] = (),
    max_blockers: int = MAX_COMMON_BLOCKERS,
) -> HistoricalComplianceSummary:
    """Summarise ``entries`` (already filtered by the caller to the relevant plans).

    Blockers are grouped by exact text and ranked by frequency, ties keeping the
    order in which they were first seen. Day patterns and adjustments are ranked by
    the generative service; they are passed through unchanged.
    """
    total = len(entries)
    if total == 0:
        return HistoricalComplianceSummary(
            best_performing_day_patterns=list(day_patterns),
            recommended_adjustments=list(adjustments),
        )

    metrics = [
        (entry if entry.aggregate_metrics is not None else calculate_plan_aggregates(entry)).aggregate_metrics
        for entry in entries
    ]
    return HistoricalComplianceSummary(
        total_plans_analyzed=total,
        average_workout_compliance=sum(m.workout_compliance_rate for m in metrics) / total,
        average_yin_compliance=sum(m.yin_compliance_rate for m in metrics) / total,
        common_blockers=rank_blockers(entries, limit=max_blockers),
        best_performing_day_patterns=list(day_patterns),
        recommended_adjustments=list(adjustments),
    )


def rank_blockers(entries: Sequence[PlanHistoryEntry], *, limit: int | None = None) -> List[str]:
    counts: Counter[str] = Counter()
    for entry in entries:
        for feedback in entry.daily_feedback:
            if feedback.blockers and feedback.blockers.strip():
                counts[feedback.blockers] += 1
    # Counter.most_common keeps insertion order for equal counts.
    return [blocker for blocker, _ in counts.most_common(limit)]


def format_historical_context(summary: HistoricalComplianceSummary) -> str:
    """Render the summary as the prompt block sent with a generation request."""
    if summary.total_plans_analyzed == 0:
        return ""

    lines = [
        "HISTORICAL COMPLIANCE:",
        f"- Plans analyzed: {summary.total_plans_analyzed}",
        f"- Average workout compliance: {summary.average_workout_compliance:.1f}%",
        f"- Average Yin practice compliance: {summary.average_yin_compliance:.1f}%",
    ]
    if summary.common_blockers:
        lines.append(f"- Common blockers: {', '.join(summary.common_blockers)}")
    if summary.best_performing_day_patterns:
        lines.append(f"- Best performing patterns: {', '.join(summary.best_performing_day_patterns)}")
    if summary.recommended_adjustments:
        lines.append("- Recommended adjustments:")
        lines.extend(f"  * {adjustment}" for adjustment in summary.recommended_adjustments)
    lines.append(
        "Use this history to rank the best-performing day/time patterns and shape next week's plan."
    )
    return "\n".join(lines)
