"""Plan lifecycle orchestration: load, migrate, store and track weekly plans."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Sequence
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from plan_lifecycle.api.schemas.history import (
    DayFeedbackInput,
    HistoricalComplianceSummary,
    PersonalizationSummary,
    PlanDayFeedback,
    PlanHistoryEntry,
    PlanStatus,
)
from plan_lifecycle.api.schemas.plan import PlanGenerateRequest, WeeklyPracticePlan
from plan_lifecycle.core.config import settings
from plan_lifecycle.db.models import PracticePlan
from plan_lifecycle.repositories.plan_history import PlanHistoryRepository
from plan_lifecycle.repositories.plans import PlanRepository
from plan_lifecycle.services.calendar_projector import CalendarExport, CalendarProjector
from plan_lifecycle.services.compliance import (
    FeedbackLogResult,
    calculate_plan_aggregates,
    map_plan_days_to_progress,
    merge_plan_with_tracker,
)
from plan_lifecycle.services.errors import MalformedPlanError, PlanNotFoundError
from plan_lifecycle.services.historical_summary import build_historical_summary
from plan_lifecycle.services.personalization import analyze_history_and_personalize
from plan_lifecycle.services.plan_generator import generate_weekly_plan
from plan_lifecycle.services.plan_migrator import migrate_plan

logger = logging.getLogger(__name__)

plan_repository = PlanRepository()
history_repository = PlanHistoryRepository()


@dataclass
class LoadedPlan:
    model: PracticePlan
    plan: WeeklyPracticePlan
    was_migrated: bool = False
    migrations_applied: List[str] = field(default_factory=list)

    @property
    def document(self) -> Dict[str, Any]:
        return dict(self.model.document)


@dataclass
class PlanProgress:
    days: Dict[str, PlanDayFeedback]
    plan_days: List[PlanDayFeedback]


def parse_plan(document: Mapping[str, Any]) -> WeeklyPracticePlan:
    """Validate a migrated document against the current plan model."""
    try:
        return WeeklyPracticePlan.model_validate(document)
    except ValidationError as exc:
        raise MalformedPlanError(str(exc), plan_id=_plan_id(document)) from exc


def load_plan(db: Session, plan_id: str) -> LoadedPlan:
    """Fetch a plan, upgrading and persisting it first when it predates the current schema."""
    model = plan_repository.get(db, plan_id)
    if model is None:
        raise PlanNotFoundError(plan_id)

    result = migrate_plan(model.document, strict=settings.strict_migrations)
    plan = parse_plan(result.plan)
    if result.was_migrated:
        logger.info("Migrated plan %s on load: %s", plan_id, "; ".join(result.migrations_applied))
        plan_repository.save_migrated(db, model, result.plan, result.migrations_applied)
        db.commit()
    return LoadedPlan(
        model=model,
        plan=plan,
        was_migrated=result.was_migrated,
        migrations_applied=list(result.migrations_applied),
    )


def save_plan(db: Session, *, user_id: UUID, document: Mapping[str, Any]) -> LoadedPlan:
    """Store a client- or generator-supplied plan document in the current schema."""
    result = migrate_plan(document, strict=settings.strict_migrations)
    plan = parse_plan(result.plan)
    existing = plan_repository.get(db, plan.id)
    if existing is not None and existing.user_id != user_id:
        raise MalformedPlanError(f"plan {plan.id} belongs to another user", plan_id=plan.id)

    model = plan_repository.upsert(
        db,
        user_id=user_id,
        document=result.plan,
        migrations_applied=result.migrations_applied,
    )
    db.commit()
    return LoadedPlan(
        model=model,
        plan=plan,
        was_migrated=result.was_migrated,
        migrations_applied=list(result.migrations_applied),
    )


def generate_plan(db: Session, request: PlanGenerateRequest, *, request_id: str | None = None) -> LoadedPlan:
    historical_summary: HistoricalComplianceSummary | None = None
    personalization: PersonalizationSummary | None = None
    if request.include_history:
        entries = history_repository.list_for_user(db, request.user_id)
        if entries:
            historical_summary = build_historical_summary(entries)
            personalization = analyze_history_and_personalize(entries)

    document = generate_weekly_plan(
        request,
        historical_summary=historical_summary,
        personalization=personalization,
        request_id=request_id,
    )
    return save_plan(db, user_id=request.user_id, document=document)


def list_plans(db: Session, user_id: UUID) -> List[tuple[PracticePlan, str | None]]:
    """Return the user's plans, newest week first, with their tracking status."""
    statuses = {entry.plan_id: entry.status for entry in history_repository.list_for_user(db, user_id)}
    return [(model, statuses.get(model.id)) for model in plan_repository.list_for_user(db, user_id)]


def record_feedback(
    db: Session,
    plan_id: str,
    day_date: date,
    feedback: DayFeedbackInput,
    *,
    now: datetime | None = None,
) -> FeedbackLogResult:
    loaded = load_plan(db, plan_id)
    return history_repository.record_feedback(
        db,
        plan=loaded.plan,
        user_id=loaded.model.user_id,
        day_date=day_date,
        feedback=feedback,
        now=now,
    )


def get_history_entry(db: Session, plan_id: str) -> PlanHistoryEntry:
    """Return the plan's history entry; an untracked plan yields an empty active entry."""
    loaded = load_plan(db, plan_id)
    entry = history_repository.get_entry(db, plan_id)
    if entry is None:
        entry = _fresh_entry(loaded.plan)
    return calculate_plan_aggregates(entry)


def get_progress(db: Session, plan_id: str) -> PlanProgress:
    """Logged feedback keyed by date, plus one record per plan day in plan order."""
    loaded = load_plan(db, plan_id)
    days = history_repository.get_progress(db, plan_id)
    return PlanProgress(days=days, plan_days=map_plan_days_to_progress(loaded.plan, {loaded.plan.id: days}))


def reconcile_plan(db: Session, plan_id: str, completion_history: Mapping[str, Sequence[str]]) -> PlanHistoryEntry:
    """Rebuild the plan's history entry against the practice tracker's completion dates."""
    loaded = load_plan(db, plan_id)
    existing = history_repository.get_entry(db, plan_id)
    entry = merge_plan_with_tracker(loaded.plan, completion_history, [existing] if existing else [])
    history_repository.save_entry(db, user_id=loaded.model.user_id, entry=entry)
    db.commit()
    return entry


def update_plan_status(
    db: Session,
    plan_id: str,
    status: PlanStatus,
    *,
    now: datetime | None = None,
) -> PlanHistoryEntry:
    loaded = load_plan(db, plan_id)
    if history_repository.get_entry(db, plan_id) is None:
        history_repository.save_entry(db, user_id=loaded.model.user_id, entry=_fresh_entry(loaded.plan))
    entry = history_repository.update_status(db, plan_id, status, now=now)
    db.commit()
    logger.info("Plan %s marked %s", plan_id, status)
    return entry


def build_user_summary(
    db: Session,
    user_id: UUID,
    *,
    day_patterns: Sequence[str] = (),
    adjustments: Sequence[str] = (),
) -> HistoricalComplianceSummary:
    entries = history_repository.list_for_user(db, user_id)
    return build_historical_summary(entries, day_patterns=day_patterns, adjustments=adjustments)


def build_user_personalization(db: Session, user_id: UUID, *, now: datetime | None = None) -> PersonalizationSummary:
    entries = history_repository.list_for_user(db, user_id)
    return analyze_history_and_personalize(entries, now)


def export_calendar(
    db: Session,
    plan_id: str,
    *,
    projector: CalendarProjector | None = None,
    generated_at: datetime | None = None,
) -> CalendarExport:
    loaded = load_plan(db, plan_id)
    return (projector or CalendarProjector()).export(loaded.plan, generated_at=generated_at)


def _fresh_entry(plan: WeeklyPracticePlan) -> PlanHistoryEntry:
    return PlanHistoryEntry(
        plan_id=plan.id,
        plan_date=plan.date,
        week_start_date=plan.week_start_date,
        goal_statement=plan.goal_statement,
        started_at=plan.date,
        status="active",
    )


def _plan_id(document: Mapping[str, Any]) -> str | None:
    value = document.get("id") if isinstance(document, Mapping) else None
    return str(value) if value is not None else None
