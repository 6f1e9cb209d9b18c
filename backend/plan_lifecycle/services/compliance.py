"""Daily feedback logging and compliance aggregation for plan history entries.

All functions are pure: they return new history lists, entries and progress
indexes instead of mutating the ones they are given.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Mapping, Sequence

from plan_lifecycle.api.schemas.history import (
    AggregateMetrics,
    DayFeedbackInput,
    PlanDayFeedback,
    PlanHistoryEntry,
    PlanProgressIndex,
)
from plan_lifecycle.api.schemas.plan import WeeklyPracticePlan

logger = logging.getLogger(__name__)

MIN_SCALE = 1
MAX_SCALE = 10


@dataclass
class FeedbackLogResult:
    updated_history: List[PlanHistoryEntry]
    updated_progress: PlanProgressIndex
    entry: PlanHistoryEntry
    feedback: PlanDayFeedback


def clamp_scale(value: int | float) -> int:
    """Clamp a 1-10 self-report onto the scale."""
    return int(min(MAX_SCALE, max(MIN_SCALE, round(value))))


def log_plan_day_feedback(
    plan: WeeklyPracticePlan,
    day_date: date | str,
    feedback: DayFeedbackInput,
    history: Sequence[PlanHistoryEntry],
    progress: PlanProgressIndex,
    *,
    now: datetime | None = None,
) -> FeedbackLogResult:
    """Append one day of feedback to the plan's history entry.

    The entry is created (status ``active``) on first use. Repeated feedback for the
    same date is appended, not merged; the progress index keeps the latest one per
    date. Aggregates are recomputed for the touched entry.
    """
    date_key = day_date.isoformat() if isinstance(day_date, date) else str(day_date)
    timestamp = _isoformat(now or datetime.now(timezone.utc))
    day_plan = next((day for day in plan.days if day.day_name == feedback.day_name), None)
    day_name = day_plan.day_name if day_plan else feedback.day_name

    new_feedback = PlanDayFeedback(
        date=date_key,
        day_name=day_name,
        completed_workout=feedback.completed_workout,
        completed_yin_practices=list(feedback.completed_yin_practices),
        intensity_felt=clamp_scale(feedback.intensity_felt),
        energy_level=clamp_scale(feedback.energy_level),
        blockers=feedback.blockers,
        notes=feedback.notes,
        timestamp=timestamp,
    )

    existing = next((entry for entry in history if entry.plan_id == plan.id), None)
    if existing is not None:
        updated_entry = calculate_plan_aggregates(
            existing.model_copy(update={"daily_feedback": [*existing.daily_feedback, new_feedback]})
        )
        updated_history = [updated_entry if entry.plan_id == plan.id else entry for entry in history]
    else:
        updated_entry = calculate_plan_aggregates(
            PlanHistoryEntry(
                plan_id=plan.id,
                plan_date=plan.date,
                week_start_date=plan.week_start_date,
                goal_statement=plan.goal_statement,
                started_at=timestamp,
                status="active",
                daily_feedback=[new_feedback],
            )
        )
        updated_history = [*history, updated_entry]

    updated_progress: PlanProgressIndex = dict(progress)
    updated_progress[plan.id] = {**progress.get(plan.id, {}), date_key: new_feedback}

    logger.debug(
        "Logged feedback for plan %s on %s (%s entries)",
        plan.id,
        date_key,
        len(updated_entry.daily_feedback),
    )
    return FeedbackLogResult(
        updated_history=updated_history,
        updated_progress=updated_progress,
        entry=updated_entry,
        feedback=new_feedback,
    )


def calculate_plan_aggregates(entry: PlanHistoryEntry) -> PlanHistoryEntry:
    """Return a copy of ``entry`` with ``aggregate_metrics`` recomputed.

    ``yin_compliance_rate`` is completed Yin practice instances per logged day
    times 100, so it can exceed 100 when several practices are done in a day.
    Every metric is 0 when nothing has been logged.
    """
    logged = entry.daily_feedback
    total_days = len(logged)
    if total_days == 0:
        return entry.model_copy(update={"aggregate_metrics": AggregateMetrics()})

    workout_days = sum(1 for day in logged if day.completed_workout)
    yin_instances = sum(len(day.completed_yin_practices) for day in logged)
    metrics = AggregateMetrics(
        workout_compliance_rate=workout_days / total_days * 100,
        yin_compliance_rate=yin_instances / total_days * 100,
        average_intensity=sum(day.intensity_felt for day in logged) / total_days,
        average_energy=sum(day.energy_level for day in logged) / total_days,
        total_blocker_days=sum(1 for day in logged if day.blockers and day.blockers.strip()),
    )
    return entry.model_copy(update={"aggregate_metrics": metrics})


def merge_plan_with_tracker(
    plan: WeeklyPracticePlan,
    completion_history: Mapping[str, Sequence[str]],
    history: Sequence[PlanHistoryEntry],
) -> PlanHistoryEntry:
    """Rebuild a full history entry covering every day of ``plan``.

    Workout completion comes from the feedback logged for the day; Yin practice
    completion is re-derived from ``completion_history`` (practice name -> dates
    completed) by matching those dates against the day's feedback date. Days that
    were never logged are filled with empty defaults.
    """
    existing = next((entry for entry in history if entry.plan_id == plan.id), None)
    logged = existing.daily_feedback if existing else []

    daily_feedback: List[PlanDayFeedback] = []
    for day in plan.days:
        day_feedback = next((item for item in logged if item.day_name == day.day_name), None)
        feedback_dates = {day_feedback.date} if day_feedback and day_feedback.date else set()
        completed = [
            practice.name
            for practice in day.yin_practices
            if any(done in feedback_dates for done in completion_history.get(practice.name, ()))
        ]
        daily_feedback.append(
            PlanDayFeedback(
                date=day_feedback.date if day_feedback else "",
                day_name=day.day_name,
                completed_workout=bool(day_feedback and day_feedback.completed_workout),
                completed_yin_practices=completed,
                intensity_felt=day_feedback.intensity_felt if day_feedback else 0,
                energy_level=day_feedback.energy_level if day_feedback else 0,
                blockers=day_feedback.blockers if day_feedback else None,
                notes=day_feedback.notes if day_feedback else None,
                timestamp=day_feedback.timestamp if day_feedback else "",
            )
        )

    return calculate_plan_aggregates(
        PlanHistoryEntry(
            plan_id=plan.id,
            plan_date=plan.date,
            week_start_date=plan.week_start_date,
            goal_statement=plan.goal_statement,
            started_at=existing.started_at if existing else plan.date,
            status=existing.status if existing else "active",
            daily_feedback=daily_feedback,
            completed_at=existing.completed_at if existing else None,
        )
    )


def map_plan_days_to_progress(plan: WeeklyPracticePlan, progress: PlanProgressIndex) -> List[PlanDayFeedback]:
    """Return one feedback record per plan day, defaulted where nothing was logged."""
    by_day_name: Dict[str, PlanDayFeedback] = {}
    for logged in progress.get(plan.id, {}).values():
        by_day_name[logged.day_name] = logged
    return [by_day_name.get(day.day_name) or PlanDayFeedback(day_name=day.day_name) for day in plan.days]


def _isoformat(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
