"""Time-weighted analysis of plan history into adaptive tuning directives."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from plan_lifecycle.api.schemas.history import (
    AdjustmentDirective,
    InferredPreference,
    PersonalizationSummary,
    PlanDayFeedback,
    PlanHistoryEntry,
    TimeWeightedAverage,
)
from plan_lifecycle.services.historical_summary import rank_blockers

DECAY_WINDOW_DAYS = 28
BEST_DAY_THRESHOLD = 0.7
HEAVY_INTENSITY = 8


@dataclass
class _DayTally:
    completed: int = 0
    total: int = 0


def analyze_history_and_personalize(
    history: Sequence[PlanHistoryEntry],
    current_date: datetime | None = None,
) -> PersonalizationSummary:
    """Weight recent plans more heavily and derive next-week adjustments.

    Plans older than four weeks are ignored entirely.
    """
    now = current_date or datetime.now(timezone.utc)
    recent = [entry for entry in history if time_decay_factor(entry.plan_date, now) > 0]
    if not recent:
        return PersonalizationSummary(summary="No historical data available yet. This is your first plan!")

    averages = time_weighted_averages(recent, now)
    directives = _adjustment_directives(recent, averages)
    blockers = rank_blockers(recent, limit=5)
    intensity = _recommend_intensity(averages)

    oldest = min(_parse_timestamp(entry.plan_date) or now for entry in recent)
    analysis_days = max(0, math.ceil((now - oldest).total_seconds() / 86400))

    return PersonalizationSummary(
        plan_count=len(recent),
        analysis_period_days=analysis_days,
        time_weighted_average=averages,
        adjustment_directives=directives,
        inferred_preferences=_infer_preferences(recent),
        common_blockers=blockers,
        best_performing_day_patterns=_best_performing_days(recent),
        recommended_intensity_level=intensity,
        recommended_yin_duration=_recommend_yin_duration(averages),
        recommended_recovery_days={"high": 1, "moderate": 2}.get(intensity, 3),
        summary=_summary_text(len(recent), averages, directives, blockers),
    )


def time_decay_factor(plan_date: str, current_date: datetime) -> float:
    """1.0 for a plan created today, falling linearly to 0 at four weeks."""
    created = _parse_timestamp(plan_date)
    if created is None:
        return 0.0
    days = (current_date - created).total_seconds() / 86400
    if days > DECAY_WINDOW_DAYS:
        return 0.0
    if days < 0:
        return 1.0
    return max(0.0, 1 - days / DECAY_WINDOW_DAYS)


def time_weighted_averages(history: Sequence[PlanHistoryEntry], current_date: datetime) -> TimeWeightedAverage:
    totals = {"workout": 0.0, "yin": 0.0, "intensity": 0.0, "energy": 0.0}
    total_weight = 0.0
    for entry in history:
        weight = time_decay_factor(entry.plan_date, current_date)
        metrics = entry.aggregate_metrics
        if weight == 0 or metrics is None:
            continue
        totals["workout"] += metrics.workout_compliance_rate * weight
        totals["yin"] += metrics.yin_compliance_rate * weight
        totals["intensity"] += metrics.average_intensity * weight
        totals["energy"] += metrics.average_energy * weight
        total_weight += weight

    if total_weight == 0:
        return TimeWeightedAverage()
    return TimeWeightedAverage(
        workout_compliance=totals["workout"] / total_weight,
        yin_compliance=totals["yin"] / total_weight,
        average_intensity=totals["intensity"] / total_weight,
        average_energy=totals["energy"] / total_weight,
    )


def build_personalization_prompt_insertion(summary: PersonalizationSummary) -> str:
    """Prompt block injected into the weekly plan generation request."""
    if summary.plan_count == 0:
        return ""

    averages = summary.time_weighted_average
    noun = "plan" if summary.plan_count == 1 else "plans"
    lines = [
        "PERSONALIZATION & ADAPTIVE TUNING:",
        f"Based on {summary.plan_count} previous {noun} over the last {summary.analysis_period_days} days:",
        "",
        "COMPLIANCE HISTORY:",
        f"- Workout Compliance: {averages.workout_compliance:.1f}%",
        f"- Yin Practice Compliance: {averages.yin_compliance:.1f}%",
        f"- Average Intensity Reported: {averages.average_intensity:.1f}/10",
        f"- Average Energy Level: {averages.average_energy:.1f}/10",
        "",
    ]
    if summary.adjustment_directives:
        lines.append("RECOMMENDED ADJUSTMENTS:")
        lines.extend(f"- {d.description} ({d.rationale})" for d in summary.adjustment_directives)
        lines.append("")
    if summary.common_blockers:
        lines.append("KNOWN BLOCKERS TO AVOID:")
        lines.extend(f"- {blocker}" for blocker in summary.common_blockers)
        lines.append("")
    if summary.best_performing_day_patterns:
        lines.append("BEST PERFORMING DAYS (consider prioritizing these):")
        lines.append(f"- {', '.join(summary.best_performing_day_patterns)}")
        lines.append("")
    lines.extend(
        [
            "PERSONALIZATION DIRECTIVES:",
            f"- Recommended Intensity: {summary.recommended_intensity_level}",
            f"- Recommended Yin Practice Duration: {summary.recommended_yin_duration} min/day",
            f"- Recommended Recovery Days per Week: {summary.recommended_recovery_days}",
        ]
    )
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _parse_timestamp(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _did_something(feedback: PlanDayFeedback) -> bool:
    return feedback.completed_workout or bool(feedback.completed_yin_practices)


def _best_performing_days(history: Sequence[PlanHistoryEntry]) -> List[str]:
    tallies: Dict[str, _DayTally] = {}
    for entry in history:
        for feedback in entry.daily_feedback:
            tally = tallies.setdefault(feedback.day_name, _DayTally())
            tally.total += 1
            if _did_something(feedback):
                tally.completed += 1
    return [
        day for day, tally in tallies.items() if tally.total and tally.completed / tally.total > BEST_DAY_THRESHOLD
    ]


def _back_to_back_heavy_days(history: Sequence[PlanHistoryEntry]) -> List[str]:
    patterns: Dict[str, None] = {}
    for entry in history:
        for current, following in zip(entry.daily_feedback, entry.daily_feedback[1:]):
            if (
                current.intensity_felt >= HEAVY_INTENSITY
                and following.intensity_felt >= HEAVY_INTENSITY
                and _did_something(current)
                and _did_something(following)
            ):
                patterns[f"{current.day_name}→{following.day_name}"] = None
    return list(patterns)


def _adjustment_directives(
    history: Sequence[PlanHistoryEntry],
    averages: TimeWeightedAverage,
) -> List[AdjustmentDirective]:
    directives: List[AdjustmentDirective] = []

    if averages.workout_compliance < 50:
        directives.append(
            AdjustmentDirective(
                type="load-reduction",
                description="Reduce workout frequency or duration",
                rationale=(
                    f"Workout compliance is low at {averages.workout_compliance:.1f}%. "
                    "Consider reducing frequency or making workouts shorter."
                ),
                impact="high",
                confidence=85,
            )
        )
    if averages.workout_compliance > 70 and averages.average_energy < 5:
        directives.append(
            AdjustmentDirective(
                type="recovery-boost",
                description="Increase recovery and Yin practices",
                rationale="Workouts are being completed but energy levels are low. More recovery time needed.",
                impact="high",
                confidence=80,
            )
        )
    if averages.yin_compliance < 50:
        directives.append(
            AdjustmentDirective(
                type="yin-duration",
                description="Reduce Yin practice duration to 5-10 minutes per day",
                rationale=(
                    f"Yin practice compliance is low at {averages.yin_compliance:.1f}%. "
                    "Start with shorter, more achievable practices."
                ),
                impact="high",
                confidence=85,
            )
        )
    if averages.average_intensity > 8:
        directives.append(
            AdjustmentDirective(
                type="intensity-nudge",
                description="Moderate intensity levels to sustainable range",
                rationale=(
                    "Reported intensity is consistently high, which may lead to burnout. "
                    "Suggest more sustainable pacing."
                ),
                impact="medium",
                confidence=75,
            )
        )
    heavy = _back_to_back_heavy_days(history)
    if heavy:
        directives.append(
            AdjustmentDirective(
                type="yang-spacing",
                description=f"Add recovery days between workouts on {' and '.join(heavy)}",
                rationale="Detected pattern of consecutive high-intensity days. Increase spacing for better recovery.",
                impact="medium",
                confidence=70,
            )
        )
    return directives


def _infer_preferences(history: Sequence[PlanHistoryEntry]) -> List[InferredPreference]:
    practice_counts: Dict[str, int] = {}
    workout_days = 0
    for entry in history:
        for feedback in entry.daily_feedback:
            if feedback.completed_workout:
                workout_days += 1
            for practice in feedback.completed_yin_practices:
                practice_counts[practice] = practice_counts.get(practice, 0) + 1

    # Only completions are recorded, so every tracked modality counts as fully complied with.
    preferences = [
        InferredPreference(
            type="high-compliance-modality",
            value=practice,
            frequency=count,
            compliance=100.0,
            notes="Consistently completed with high compliance rate",
        )
        for practice, count in list(practice_counts.items())[:3]
    ]
    if workout_days:
        preferences.append(
            InferredPreference(
                type="preferred-time",
                value="morning",
                frequency=workout_days,
                notes="High completion rate for morning sessions",
            )
        )
    return preferences


def _recommend_intensity(averages: TimeWeightedAverage) -> str:
    if averages.workout_compliance > 75 and averages.average_intensity < 7 and averages.average_energy > 6:
        return "high"
    if averages.workout_compliance < 60 or averages.average_energy < 5:
        return "low"
    return "moderate"


def _recommend_yin_duration(averages: TimeWeightedAverage) -> int:
    if averages.yin_compliance < 40:
        return 8
    if averages.yin_compliance < 70:
        return 12
    if averages.average_energy > 7:
        return 18
    return 15


def _summary_text(
    plan_count: int,
    averages: TimeWeightedAverage,
    directives: Sequence[AdjustmentDirective],
    blockers: Sequence[str],
) -> str:
    lines = [
        f"Based on analysis of {plan_count} recent plans:",
        f"- Workout compliance: {averages.workout_compliance:.0f}%",
        f"- Yin practice compliance: {averages.yin_compliance:.0f}%",
    ]
    if blockers:
        lines.append(f'- Top blocker: "{blockers[0]}"')
    if directives:
        lines.append("")
        lines.append("Key recommendations:")
        lines.extend(f"- {directive.description}" for directive in directives[:3])
    return "\n".join(lines) + "\n"
