from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plan_lifecycle.api.schemas.history import DayFeedbackInput
from plan_lifecycle.api.schemas.plan import WeeklyPracticePlan
from plan_lifecycle.db.models import PlanDayProgress, PlanHistoryRecord, PracticePlan
from plan_lifecycle.repositories.plan_history import PlanHistoryRepository
from plan_lifecycle.repositories.plans import PlanRepository
from plan_lifecycle.services.job_runner import BATCH_MIGRATION_NOTE, run_plan_migrations, run_week_closeout
from plan_lifecycle.services.plan_migrator import migrate_plan

FIXTURE_PATH = Path(__file__).parent / "data" / "legacy_plan.json"


def _session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    PracticePlan.__table__.create(bind=engine)
    PlanHistoryRecord.__table__.create(bind=engine)
    PlanDayProgress.__table__.create(bind=engine)
    return TestingSession


def _seed_plan(db_session, document):
    session = db_session()
    try:
        PlanRepository().upsert(session, user_id=uuid4(), document=document)
        session.commit()
    finally:
        session.close()


def _track(db_session, document):
    plan = WeeklyPracticePlan.model_validate(migrate_plan(document).plan)
    session = db_session()
    try:
        model = session.get(PracticePlan, plan.id)
        PlanHistoryRepository().record_feedback(
            session,
            plan=plan,
            user_id=model.user_id,
            day_date=date(2024, 1, 1),
            feedback=DayFeedbackInput(day_name="Monday"),
        )
    finally:
        session.close()


def _legacy(**overrides):
    document = json.loads(FIXTURE_PATH.read_text())
    document.update(overrides)
    return document


def test_plan_migration_job_upgrades_legacy_plans():
    db_session = _session()
    _seed_plan(db_session, _legacy())
    _seed_plan(db_session, migrate_plan(_legacy(id="integral-plan-current")).plan)

    session = db_session()
    try:
        result = run_plan_migrations(session)
        assert result.plans_scanned == 2
        assert result.plans_updated == 1

        upgraded = session.get(PracticePlan, "integral-plan-1704067200000")
        assert "intelligenceFlags" in upgraded.document
        assert upgraded.migrations_applied == [BATCH_MIGRATION_NOTE]
        assert session.get(PracticePlan, "integral-plan-current").migrations_applied == []
    finally:
        session.close()


def test_plan_migration_job_tolerates_partial_records():
    db_session = _session()
    _seed_plan(db_session, {"id": "partial", "weekStartDate": "2024-01-01", "days": None})

    session = db_session()
    try:
        result = run_plan_migrations(session)
        assert result.plans_updated == 1
        assert "userContext" in session.get(PracticePlan, "partial").document
    finally:
        session.close()


def test_plan_migration_job_is_idempotent():
    db_session = _session()
    _seed_plan(db_session, _legacy())

    session = db_session()
    try:
        assert run_plan_migrations(session).plans_updated == 1
        assert run_plan_migrations(session).plans_updated == 0
    finally:
        session.close()


def test_week_closeout_completes_elapsed_weeks_only():
    db_session = _session()
    _seed_plan(db_session, _legacy())
    _seed_plan(db_session, _legacy(id="integral-plan-next", weekStartDate="2024-01-08T00:00:00.000Z"))
    _track(db_session, _legacy())
    _track(db_session, _legacy(id="integral-plan-next", weekStartDate="2024-01-08T00:00:00.000Z"))

    session = db_session()
    try:
        result = run_week_closeout(session, now=datetime(2024, 1, 9, 12, 0, tzinfo=timezone.utc))
        assert result.plans_scanned == 2
        assert result.plans_updated == 1

        repo = PlanHistoryRepository()
        closed = repo.get_entry(session, "integral-plan-1704067200000")
        assert closed.status == "completed"
        assert closed.completed_at == "2024-01-09T12:00:00Z"
        assert repo.get_entry(session, "integral-plan-next").status == "active"
    finally:
        session.close()


def test_week_closeout_without_active_plans():
    db_session = _session()

    session = db_session()
    try:
        result = run_week_closeout(session, now=datetime(2024, 1, 9, tzinfo=timezone.utc))
        assert (result.plans_scanned, result.plans_updated) == (0, 0)
    finally:
        session.close()
