"""Database-backed store for weekly practice plan documents."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, List, Mapping
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from plan_lifecycle.core.config import settings
from plan_lifecycle.db.models import PracticePlan


def week_start_for_index(value: Any) -> date | None:
    """Calendar date of a stored ``weekStartDate`` (in the plan timezone), for indexing."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(ZoneInfo(settings.plan_timezone))
    return parsed.date()


class PlanRepository:
    """One row per plan; the document column holds the camelCase plan as stored."""

    def get(self, session: Session, plan_id: str) -> PracticePlan | None:
        return session.get(PracticePlan, plan_id)

    def list_for_user(self, session: Session, user_id: UUID) -> List[PracticePlan]:
        stmt = (
            select(PracticePlan)
            .where(PracticePlan.user_id == user_id)
            .order_by(PracticePlan.week_start_date.desc(), PracticePlan.created_at.desc())
        )
        return list(session.execute(stmt).scalars().all())

    def list_all(self, session: Session) -> List[PracticePlan]:
        return list(session.execute(select(PracticePlan).order_by(PracticePlan.created_at)).scalars().all())

    def upsert(
        self,
        session: Session,
        *,
        user_id: UUID,
        document: Mapping[str, Any],
        migrations_applied: Iterable[str] = (),
    ) -> PracticePlan:
        plan_id = str(document["id"])
        model = session.get(PracticePlan, plan_id)
        if model is None:
            model = PracticePlan(id=plan_id, user_id=user_id, migrations_applied=[])
            session.add(model)
        self._apply_document(model, document)
        model.migrations_applied = [*(model.migrations_applied or []), *migrations_applied]
        session.flush()
        return model

    def save_migrated(self, session: Session, model: PracticePlan, document: Mapping[str, Any], migrations: Iterable[str]) -> PracticePlan:
        """Write back a document that was upgraded on load."""
        self._apply_document(model, document)
        model.migrations_applied = [*(model.migrations_applied or []), *migrations]
        session.flush()
        return model

    def _apply_document(self, model: PracticePlan, document: Mapping[str, Any]) -> None:
        model.document = dict(document)
        model.week_start_date = week_start_for_index(document.get("weekStartDate"))
        goal = document.get("goalStatement")
        model.goal_statement = goal if isinstance(goal, str) else None
