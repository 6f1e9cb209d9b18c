from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plan_lifecycle.db.deps import get_db
from plan_lifecycle.db.models import PlanDayProgress, PlanHistoryRecord, PracticePlan
from plan_lifecycle.main import app

FIXTURE_PATH = Path(__file__).parent / "data" / "legacy_plan.json"


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover - sqlite setup
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    PracticePlan.__table__.create(bind=engine)
    PlanHistoryRecord.__table__.create(bind=engine)
    PlanDayProgress.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _tracked_plan(test_client: TestClient, user_id) -> str:
    created = test_client.post(
        "/plans",
        json={"user_id": str(user_id), "plan": json.loads(FIXTURE_PATH.read_text())},
    )
    plan_id = created.json()["plan"]["id"]
    for day, name, blockers in (("2024-01-01", "Monday", "Travel"), ("2024-01-02", "Tuesday", None)):
        test_client.post(
            f"/plans/{plan_id}/feedback",
            json={"date": day, "feedback": {"dayName": name, "completedWorkout": True, "blockers": blockers}},
        )
    return plan_id


def test_summary_for_user_without_history(client):
    user_id = uuid4()

    response = client.get("/history/summary", params={"user_id": str(user_id)})

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == str(user_id)
    assert body["summary"]["totalPlansAnalyzed"] == 0
    assert body["summary"]["commonBlockers"] == []


def test_summary_aggregates_tracked_plans(client):
    user_id = uuid4()
    _tracked_plan(client, user_id)

    response = client.get(
        "/history/summary",
        params={"user_id": str(user_id), "day_patterns": ["Monday mornings"], "adjustments": ["Shorter Yin"]},
    )

    summary = response.json()["summary"]
    assert summary["totalPlansAnalyzed"] == 1
    assert summary["averageWorkoutCompliance"] == 100
    assert summary["commonBlockers"] == ["Travel"]
    assert summary["bestPerformingDayPatterns"] == ["Monday mornings"]
    assert summary["recommendedAdjustments"] == ["Shorter Yin"]


def test_personalization_endpoint(client):
    user_id = uuid4()
    _tracked_plan(client, user_id)

    response = client.get("/history/personalization", params={"user_id": str(user_id)})

    assert response.status_code == 200
    personalization = response.json()["personalization"]
    assert personalization["recommendedIntensityLevel"] in {"low", "moderate", "high"}
    assert "timeWeightedAverage" in personalization
    assert response.json()["request_id"]
