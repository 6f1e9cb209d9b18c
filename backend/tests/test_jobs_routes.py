from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plan_lifecycle.core.config import settings
from plan_lifecycle.db.deps import get_db
from plan_lifecycle.db.models import PlanDayProgress, PlanHistoryRecord, PracticePlan
from plan_lifecycle.main import app
from plan_lifecycle.repositories.plans import PlanRepository

FIXTURE_PATH = Path(__file__).parent / "data" / "legacy_plan.json"


def _session_factory():
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

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    PracticePlan.__table__.create(bind=engine)
    PlanHistoryRecord.__table__.create(bind=engine)
    PlanDayProgress.__table__.create(bind=engine)
    return TestingSessionLocal


def _override(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return override_get_db


@pytest.fixture()
def client(monkeypatch):
    session_factory = _session_factory()
    app.dependency_overrides[get_db] = _override(session_factory)
    monkeypatch.setattr(settings, "debug", True)
    with TestClient(app) as test_client:
        yield test_client, session_factory
    app.dependency_overrides.clear()


def _seed_legacy_plan(session_factory):
    session = session_factory()
    try:
        PlanRepository().upsert(session, user_id=uuid4(), document=json.loads(FIXTURE_PATH.read_text()))
        session.commit()
    finally:
        session.close()


def test_jobs_config(client):
    test_client, _ = client

    resp = test_client.get("/jobs")

    assert resp.status_code == 200
    data = resp.json()
    assert "scheduler_enabled" in data
    assert data["schedule"]["maintenance_time"] == (
        f"{settings.maintenance_job_hour:02d}:{settings.maintenance_job_minute:02d}"
    )
    assert data["strict_migrations"] is settings.strict_migrations
    assert data["request_id"]


def test_run_now_plan_migration(client):
    test_client, session_factory = client
    _seed_legacy_plan(session_factory)

    run_resp = test_client.post("/jobs/run-now", json={"job": "plan_migration"})

    assert run_resp.status_code == 200
    data = run_resp.json()
    assert data["job"] == "plan_migration"
    assert data["plans_scanned"] == 1
    assert data["plans_updated"] == 1
    assert data["request_id"]

    rerun = test_client.post("/jobs/run-now", json={"job": "plan_migration"}).json()
    assert rerun["plans_updated"] == 0


def test_run_now_week_closeout(client):
    test_client, session_factory = client
    _seed_legacy_plan(session_factory)
    plan_id = json.loads(FIXTURE_PATH.read_text())["id"]
    test_client.post(f"/plans/{plan_id}/feedback", json={"date": "2024-01-01", "feedback": {"dayName": "Monday"}})

    data = test_client.post("/jobs/run-now", json={"job": "week_closeout"}).json()

    assert data["plans_scanned"] == 1
    assert data["plans_updated"] == 1
    assert test_client.get(f"/plans/{plan_id}/history").json()["entry"]["status"] == "completed"


def test_unknown_job_is_rejected(client):
    test_client, _ = client

    assert test_client.post("/jobs/run-now", json={"job": "weekly_plan"}).status_code == 422


def test_jobs_run_now_forbidden_in_prod(monkeypatch):
    app.dependency_overrides[get_db] = _override(_session_factory())
    monkeypatch.setattr(settings, "debug", False)
    with TestClient(app) as test_client:
        resp = test_client.post("/jobs/run-now", json={"job": "plan_migration"})
        assert resp.status_code == 403
    app.dependency_overrides.clear()
