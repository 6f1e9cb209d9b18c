"""Database-backed plan history and per-day progress store.

Each plan owns one history row. Feedback writes are read-modify-write cycles on
that single row: the row is locked (``SELECT ... FOR UPDATE`` on dialects that
support it) and versioned, so two writers for the same plan never lose each
other's day. Different plans never contend.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from plan_lifecycle.api.schemas.history import (
    DayFeedbackInput,
    PlanDayFeedback,
    PlanHistoryEntry,
    PlanProgressIndex,
    PlanStatus,
)
from plan_lifecycle.api.schemas.plan import WeeklyPracticePlan
from plan_lifecycle.core.config import settings
from plan_lifecycle.db.models import PlanDayProgress, PlanHistoryRecord
from plan_lifecycle.services.compliance import FeedbackLogResult, log_plan_day_feedback
from plan_lifecycle.services.errors import PlanHistoryConflictError, PlanNotFoundError

logger = logging.getLogger(__name__)


class PlanHistoryRepository:
    def get_entry(self, session: Session, plan_id: str) -> PlanHistoryEntry | None:
        record = session.get(PlanHistoryRecord, plan_id)
        return self._to_entry(record) if record is not None else None

    def list_for_user(
        self,
        session: Session,
        user_id: UUID,
        *,
        statuses: Iterable[PlanStatus] | None = None,
    ) -> List[PlanHistoryEntry]:
        stmt = select(PlanHistoryRecord).where(PlanHistoryRecord.user_id == user_id)
        if statuses is not None:
            stmt = stmt.where(PlanHistoryRecord.status.in_(list(statuses)))
        stmt = stmt.order_by(PlanHistoryRecord.created_at)
        return [self._to_entry(record) for record in session.execute(stmt).scalars().all()]

    def list_active(self, session: Session) -> List[PlanHistoryRecord]:
        stmt = select(PlanHistoryRecord).where(PlanHistoryRecord.status == "active")
        return list(session.execute(stmt).scalars().all())

    def get_progress(self, session: Session, plan_id: str) -> Dict[str, PlanDayFeedback]:
        stmt = (
            select(PlanDayProgress)
            .where(PlanDayProgress.plan_id == plan_id)
            .order_by(PlanDayProgress.day_date)
        )
        return {
            row.day_date.isoformat(): PlanDayFeedback.model_validate(dict(row.feedback))
            for row in session.execute(stmt).scalars().all()
        }

    def record_feedback(
        self,
        session: Session,
        *,
        plan: WeeklyPracticePlan,
        user_id: UUID,
        day_date: date,
        feedback: DayFeedbackInput,
        now: datetime | None = None,
        max_attempts: int | None = None,
    ) -> FeedbackLogResult:
        """Append one day of feedback and commit, retrying when another writer wins the race."""
        attempts = max_attempts or settings.feedback_write_retries
        for attempt in range(1, attempts + 1):
            try:
                result = self._record_feedback_once(session, plan, user_id, day_date, feedback, now)
                session.commit()
                return result
            except (StaleDataError, IntegrityError) as exc:
                session.rollback()
                logger.warning(
                    "Concurrent history write for plan %s (attempt %d/%d): %s",
                    plan.id,
                    attempt,
                    attempts,
                    exc.__class__.__name__,
                )
        raise PlanHistoryConflictError(plan.id, attempts)

    def save_entry(self, session: Session, *, user_id: UUID, entry: PlanHistoryEntry) -> PlanHistoryEntry:
        record = self._lock(session, entry.plan_id)
        if record is None:
            record = PlanHistoryRecord(plan_id=entry.plan_id, user_id=user_id)
            session.add(record)
        record.entry = entry.to_document()
        record.status = entry.status
        session.flush()
        return entry

    def update_status(
        self,
        session: Session,
        plan_id: str,
        status: PlanStatus,
        *,
        now: datetime | None = None,
    ) -> PlanHistoryEntry:
        record = self._lock(session, plan_id)
        if record is None:
            raise PlanNotFoundError(plan_id)
        entry = self._to_entry(record)
        completed_at = entry.completed_at
        if status in ("completed", "abandoned") and completed_at is None:
            completed_at = _isoformat(now or datetime.now(timezone.utc))
        updated = entry.model_copy(update={"status": status, "completed_at": completed_at})
        record.entry = updated.to_document()
        record.status = status
        session.flush()
        return updated

    def _record_feedback_once(
        self,
        session: Session,
        plan: WeeklyPracticePlan,
        user_id: UUID,
        day_date: date,
        feedback: DayFeedbackInput,
        now: datetime | None,
    ) -> FeedbackLogResult:
        record = self._lock(session, plan.id)
        history = [self._to_entry(record)] if record is not None else []
        progress: PlanProgressIndex = {plan.id: self.get_progress(session, plan.id)}

        result = log_plan_day_feedback(plan, day_date, feedback, history, progress, now=now)

        if record is None:
            record = PlanHistoryRecord(plan_id=plan.id, user_id=user_id)
            session.add(record)
        record.entry = result.entry.to_document()
        record.status = result.entry.status
        self._upsert_progress(session, plan.id, day_date, result.feedback)
        session.flush()
        return result

    def _upsert_progress(self, session: Session, plan_id: str, day_date: date, feedback: PlanDayFeedback) -> None:
        stmt = select(PlanDayProgress).where(
            PlanDayProgress.plan_id == plan_id,
            PlanDayProgress.day_date == day_date,
        )
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = PlanDayProgress(plan_id=plan_id, day_date=day_date)
            session.add(row)
        row.feedback = feedback.to_document()

    def _lock(self, session: Session, plan_id: str) -> PlanHistoryRecord | None:
        stmt = select(PlanHistoryRecord).where(PlanHistoryRecord.plan_id == plan_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def _to_entry(self, record: PlanHistoryRecord) -> PlanHistoryEntry:
        payload = dict(record.entry or {})
        payload.setdefault("planId", record.plan_id)
        payload["status"] = record.status
        return PlanHistoryEntry.model_validate(payload)


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
