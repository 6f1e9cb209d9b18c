"""Batch maintenance jobs over stored plans and their history."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from plan_lifecycle.core.config import settings
from plan_lifecycle.repositories.plan_history import PlanHistoryRepository
from plan_lifecycle.repositories.plans import PlanRepository
from plan_lifecycle.services.plan_migrator import migrate_all_plans

logger = logging.getLogger(__name__)

BATCH_MIGRATION_NOTE = "Upgraded to the current plan schema by the maintenance job"

plan_repository = PlanRepository()
history_repository = PlanHistoryRepository()


@dataclass
class JobRunResult:
    plans_scanned: int
    plans_updated: int


def run_plan_migrations(db: Session) -> JobRunResult:
    """Upgrade every stored plan document that predates the current schema.

    Runs tolerant (non-strict) so one malformed legacy record cannot stall the
    batch; strict validation still applies whenever a plan is loaded on request.
    """
    models = plan_repository.list_all(db)
    documents = [model.document for model in models]
    migrated = migrate_all_plans(documents, strict=False)
    if migrated is documents:
        logger.info("Plan migration job: %d plans already current", len(models))
        return JobRunResult(plans_scanned=len(models), plans_updated=0)

    updated = 0
    for model, original, upgraded in zip(models, documents, migrated):
        if upgraded is original:
            continue
        plan_repository.save_migrated(db, model, upgraded, [BATCH_MIGRATION_NOTE])
        updated += 1
    db.commit()
    logger.info("Plan migration job: upgraded %d of %d plans", updated, len(models))
    return JobRunResult(plans_scanned=len(models), plans_updated=updated)


def run_week_closeout(db: Session, *, now: datetime | None = None) -> JobRunResult:
    """Mark active plans whose week has fully elapsed as completed."""
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(ZoneInfo(settings.plan_timezone)).date()
    records = history_repository.list_active(db)
    closed = 0
    for record in records:
        model = plan_repository.get(db, record.plan_id)
        if model is None or model.week_start_date is None:
            continue
        if model.week_start_date + timedelta(days=7) > today:
            continue
        history_repository.update_status(db, record.plan_id, "completed", now=now)
        closed += 1
    if closed:
        db.commit()
    logger.info("Week close-out job: completed %d of %d active plans", closed, len(records))
    return JobRunResult(plans_scanned=len(records), plans_updated=closed)
