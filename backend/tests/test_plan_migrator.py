from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from plan_lifecycle.services.errors import MalformedPlanError
from plan_lifecycle.services.plan_migrator import migrate_all_plans, migrate_plan

FIXTURE_PATH = Path(__file__).parent / "data" / "legacy_plan.json"


@pytest.fixture()
def legacy_plan() -> dict:
    return json.loads(FIXTURE_PATH.read_text())


def test_legacy_plan_gains_current_blocks(legacy_plan):
    result = migrate_plan(legacy_plan)

    assert result.was_migrated is True
    plan = result.plan
    assert plan["userContext"]["goalStatement"] == legacy_plan["goalStatement"]
    assert plan["userContext"]["injuryNotes"] == ["knee (mild)"]
    assert plan["userContext"]["sleepHours"] == 7.5
    assert plan["feedback"] == {"collectDaily": True, "loggedDays": 0}
    assert plan["intelligenceFlags"]["usedHistoricalContext"] is False
    assert plan["synergy"]["constraintConflicts"] == []
    assert len(result.migrations_applied) == 7


def test_days_get_ids_targets_and_constraints(legacy_plan):
    plan = migrate_plan(legacy_plan).plan

    monday, tuesday = plan["days"][0], plan["days"][1]
    assert [day["dayId"] for day in plan["days"]][:2] == [
        "integral-plan-1704067200000-day-0",
        "integral-plan-1704067200000-day-1",
    ]
    assert monday["complianceTargets"] == {
        "workoutSlots": 1,
        "yinMinutes": 25,
        "nutritionAdherencePct": 80,
        "sleepHours": 7.5,
    }
    assert tuesday["complianceTargets"]["workoutSlots"] == 0
    assert monday["dayConstraints"]["timeWindows"] == [{"dayOfWeek": "Monday", "startHour": 6, "endHour": 8}]
    assert monday["dayConstraints"]["injuryRestrictions"] == ["deep squats", "jumping"]
    assert plan["days"][6]["dayConstraints"]["available"] is False


def test_migration_is_idempotent(legacy_plan):
    once = migrate_plan(legacy_plan)
    twice = migrate_plan(once.plan)

    assert twice.was_migrated is False
    assert twice.migrations_applied == []
    assert twice.plan == once.plan


def test_migration_never_mutates_input(legacy_plan):
    snapshot = copy.deepcopy(legacy_plan)

    migrate_plan(legacy_plan)

    assert legacy_plan == snapshot


def test_existing_user_context_is_left_alone(legacy_plan):
    legacy_plan["userContext"] = {"goalStatement": "custom", "equipment": ["kettlebell"]}

    result = migrate_plan(legacy_plan)

    assert result.plan["userContext"] == {"goalStatement": "custom", "equipment": ["kettlebell"]}
    assert not any("userContext" in message for message in result.migrations_applied)


def test_non_mapping_block_is_replaced(legacy_plan):
    legacy_plan["feedback"] = "enabled"

    result = migrate_plan(legacy_plan)

    assert result.plan["feedback"] == {"collectDaily": True, "loggedDays": 0}


def test_sleep_target_falls_back_to_yang_then_default(legacy_plan):
    del legacy_plan["dailyTargets"]
    assert migrate_plan(legacy_plan).plan["days"][0]["complianceTargets"]["sleepHours"] == 7.5

    del legacy_plan["yangConstraints"]["sleepHours"]
    assert migrate_plan(legacy_plan).plan["days"][0]["complianceTargets"]["sleepHours"] == 8


def test_strict_migration_rejects_malformed_days(legacy_plan):
    legacy_plan["days"] = "Monday, Tuesday"

    with pytest.raises(MalformedPlanError) as excinfo:
        migrate_plan(legacy_plan)

    assert excinfo.value.plan_id == "integral-plan-1704067200000"


@pytest.mark.parametrize("day_count", [0, 6, 10])
def test_strict_migration_requires_a_seven_day_week(legacy_plan, day_count):
    legacy_plan["days"] = [dict(legacy_plan["days"][index % 7]) for index in range(day_count)]

    with pytest.raises(MalformedPlanError) as excinfo:
        migrate_plan(legacy_plan)

    assert f"has {day_count} days" in str(excinfo.value)


def test_lenient_migration_tolerates_short_week(legacy_plan):
    legacy_plan["days"] = legacy_plan["days"][:3]

    result = migrate_plan(legacy_plan, strict=False)

    assert [day["dayId"] for day in result.plan["days"]] == [
        f"integral-plan-1704067200000-day-{index}" for index in range(3)
    ]


def test_lenient_migration_skips_day_step(legacy_plan, caplog):
    del legacy_plan["days"]

    with caplog.at_level("WARNING"):
        result = migrate_plan(legacy_plan, strict=False)

    assert "days" not in result.plan
    assert "userContext" in result.plan
    assert "skipping per-day migration" in caplog.text


def test_strict_migration_requires_id(legacy_plan):
    del legacy_plan["id"]

    with pytest.raises(MalformedPlanError):
        migrate_plan(legacy_plan)


def test_migrate_all_returns_same_list_when_current(legacy_plan):
    current = [migrate_plan(legacy_plan).plan]

    assert migrate_all_plans(current) is current


def test_migrate_all_keeps_identity_of_current_plans(legacy_plan):
    current = migrate_plan(legacy_plan).plan
    stale = dict(legacy_plan, id="integral-plan-2")
    plans = [current, stale]

    migrated = migrate_all_plans(plans)

    assert migrated is not plans
    assert migrated[0] is current
    assert migrated[1]["days"][0]["dayId"] == "integral-plan-2-day-0"
