"""Schema migration for persisted weekly practice plans.

Plans are stored as camelCase JSON documents. Later schema revisions added the
top-level ``userContext``, ``synergy``, ``feedback`` and ``intelligenceFlags``
blocks and the per-day ``dayId``, ``complianceTargets`` and ``dayConstraints``
fields. ``migrate_plan`` fills whatever is missing from sibling data already in
the record, so an upgrade never discards information, and reports each change.

Migration is pure: the input mapping is never mutated and migrating an already
current plan returns ``was_migrated=False``.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from plan_lifecycle.services.errors import MalformedPlanError

logger = logging.getLogger(__name__)

DEFAULT_NUTRITION_ADHERENCE_PCT = 80
DEFAULT_SLEEP_HOURS = 8
LOW_CONFIDENCE_THRESHOLD = 50
DAYS_PER_PLAN = 7


@dataclass
class PlanMigrationResult:
    plan: Dict[str, Any]
    was_migrated: bool
    migrations_applied: List[str] = field(default_factory=list)


def migrate_plan(record: Mapping[str, Any], *, strict: bool = True) -> PlanMigrationResult:
    """Upgrade ``record`` to the current plan schema.

    With ``strict`` (the default) a record without ``id``/``weekStartDate``, or whose
    ``days`` is missing, not a list of objects or not exactly seven days long, raises
    ``MalformedPlanError``.
    Without it such records are tolerated and the per-day step is skipped, matching
    how partially written legacy records used to be loaded.
    """
    if not isinstance(record, Mapping):
        raise MalformedPlanError(f"plan record must be a mapping, got {type(record).__name__}")

    plan: Dict[str, Any] = copy.deepcopy(dict(record))
    plan_id = plan.get("id")
    days = plan.get("days")
    days_valid = isinstance(days, list) and all(isinstance(day, Mapping) for day in days)

    if strict:
        _validate_required(plan, days_valid)

    applied: List[str] = []

    if not isinstance(plan.get("userContext"), Mapping):
        plan["userContext"] = _default_user_context(plan)
        applied.append("Added userContext derived from goalStatement, yangConstraints and yinPreferences")

    if not isinstance(plan.get("synergy"), Mapping):
        plan["synergy"] = _default_synergy(plan, days if days_valid else [])
        applied.append("Added synergy block derived from synthesisMetadata and day synergy notes")

    if not isinstance(plan.get("feedback"), Mapping):
        plan["feedback"] = {"collectDaily": True, "loggedDays": 0}
        applied.append("Added feedback settings with daily collection enabled")

    if not isinstance(plan.get("intelligenceFlags"), Mapping):
        plan["intelligenceFlags"] = _default_intelligence_flags(plan, days if days_valid else [])
        applied.append("Added intelligenceFlags derived from historicalContext and scheduling confidence")

    if days_valid:
        applied.extend(_migrate_days(plan, plan_id))
    else:
        logger.warning("Plan %s has no usable days list; skipping per-day migration", plan_id)

    if applied:
        logger.info("Migrated plan %s: %s", plan_id, "; ".join(applied))
    return PlanMigrationResult(plan=plan, was_migrated=bool(applied), migrations_applied=applied)


def migrate_all_plans(plans: Sequence[Mapping[str, Any]], *, strict: bool = True) -> Sequence[Mapping[str, Any]]:
    """Migrate every plan in ``plans``.

    Returns the very same sequence object when no plan needed an upgrade so callers
    can skip re-persisting; otherwise a new list in which untouched plans keep their
    original objects.
    """
    migrated: List[Mapping[str, Any]] = []
    changed = False
    for plan in plans:
        result = migrate_plan(plan, strict=strict)
        if result.was_migrated:
            changed = True
            migrated.append(result.plan)
        else:
            migrated.append(plan)
    if not changed:
        return plans
    return migrated


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _validate_required(plan: Dict[str, Any], days_valid: bool) -> None:
    plan_id = plan.get("id")
    if not isinstance(plan_id, str) or not plan_id.strip():
        raise MalformedPlanError("plan record is missing an id")
    if not plan.get("weekStartDate"):
        raise MalformedPlanError("plan record is missing weekStartDate", plan_id=plan_id)
    if not days_valid:
        raise MalformedPlanError("plan record has no valid days list", plan_id=plan_id)
    if len(plan["days"]) != DAYS_PER_PLAN:
        raise MalformedPlanError(
            f"plan record has {len(plan['days'])} days, expected {DAYS_PER_PLAN}", plan_id=plan_id
        )


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _injury_notes(yang: Mapping[str, Any]) -> List[str]:
    notes: List[str] = []
    for restriction in yang.get("injuryRestrictions") or []:
        if not isinstance(restriction, Mapping):
            continue
        body_part = restriction.get("bodyPart")
        if not body_part:
            continue
        severity = restriction.get("severity")
        notes.append(f"{body_part} ({severity})" if severity else str(body_part))
    return notes


def _default_user_context(plan: Mapping[str, Any]) -> Dict[str, Any]:
    yang = _mapping(plan.get("yangConstraints"))
    yin = _mapping(plan.get("yinPreferences"))
    context: Dict[str, Any] = {
        "goalStatement": plan.get("goalStatement") or "",
        "equipment": _string_list(yang.get("equipment")),
        "unavailableDays": _string_list(yang.get("unavailableDays")),
        "injuryNotes": _injury_notes(yang),
        "intentions": _string_list(yin.get("intentions")),
    }
    optional = {
        "primaryGoal": yang.get("primaryGoal"),
        "experienceLevel": yin.get("experienceLevel"),
        "yinGoal": yin.get("goal"),
        "sleepHours": yang.get("sleepHours"),
    }
    context.update({key: value for key, value in optional.items() if value is not None})
    return context


def _default_synergy(plan: Mapping[str, Any], days: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    synthesis = _mapping(plan.get("synthesisMetadata"))
    scoring = _mapping(synthesis.get("synergyScoring"))
    synergy: Dict[str, Any] = {
        "dayBalances": [
            balance
            for balance in (_mapping(day.get("synergyMetadata")).get("yangYinBalance") for day in days)
            if isinstance(balance, str) and balance
        ],
        "constraintConflicts": [
            dict(conflict) for conflict in synthesis.get("constraintConflicts") or [] if isinstance(conflict, Mapping)
        ],
    }
    scores = {
        "integrationScore": scoring.get("overallIntegrationScore"),
        "pairingScore": scoring.get("yangYinPairingScore"),
        "restSpacingScore": scoring.get("restSpacingScore"),
    }
    synergy.update({key: value for key, value in scores.items() if isinstance(value, (int, float))})
    return synergy


def _default_intelligence_flags(plan: Mapping[str, Any], days: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    low_confidence: List[str] = []
    for day in days:
        for practice in day.get("yinPractices") or []:
            if not isinstance(practice, Mapping):
                continue
            confidence = practice.get("schedulingConfidence")
            if isinstance(confidence, (int, float)) and confidence < LOW_CONFIDENCE_THRESHOLD:
                low_confidence.append(str(day.get("dayName") or ""))
                break
    return {
        "usedHistoricalContext": isinstance(plan.get("historicalContext"), Mapping),
        "hasSynthesisMetadata": isinstance(plan.get("synthesisMetadata"), Mapping),
        "lowConfidenceDays": low_confidence,
    }


def _sleep_target(plan: Mapping[str, Any]) -> float:
    targets = _mapping(plan.get("dailyTargets"))
    sleep = targets.get("sleepHours")
    if isinstance(sleep, (int, float)):
        return sleep
    sleep = _mapping(plan.get("yangConstraints")).get("sleepHours")
    if isinstance(sleep, (int, float)):
        return sleep
    return DEFAULT_SLEEP_HOURS


def _compliance_targets(day: Mapping[str, Any], sleep_hours: float) -> Dict[str, Any]:
    yin_minutes = 0
    for practice in day.get("yinPractices") or []:
        duration = _mapping(practice).get("duration")
        if isinstance(duration, (int, float)):
            yin_minutes += duration
    return {
        "workoutSlots": 1 if isinstance(day.get("workout"), Mapping) else 0,
        "yinMinutes": yin_minutes,
        "nutritionAdherencePct": DEFAULT_NUTRITION_ADHERENCE_PCT,
        "sleepHours": sleep_hours,
    }


def _day_constraints(day: Mapping[str, Any], yang: Mapping[str, Any]) -> Dict[str, Any]:
    day_name = str(day.get("dayName") or "").strip().lower()
    unavailable = {name.strip().lower() for name in _string_list(yang.get("unavailableDays"))}
    windows = [
        dict(window)
        for window in yang.get("availableTimeWindows") or []
        if isinstance(window, Mapping) and str(window.get("dayOfWeek") or "").strip().lower() == day_name
    ]
    restrictions: List[str] = []
    for restriction in yang.get("injuryRestrictions") or []:
        if isinstance(restriction, Mapping):
            restrictions.extend(_string_list(restriction.get("restrictions")))
    return {
        "available": day_name not in unavailable,
        "timeWindows": windows,
        "injuryRestrictions": restrictions,
    }


def _migrate_days(plan: Dict[str, Any], plan_id: Any) -> List[str]:
    days: List[Dict[str, Any]] = [dict(day) for day in plan["days"]]
    plan["days"] = days
    id_prefix = plan_id or "plan"
    yang = _mapping(plan.get("yangConstraints"))
    sleep_hours = _sleep_target(plan)
    counts = {"dayId": 0, "complianceTargets": 0, "dayConstraints": 0}

    for index, day in enumerate(days):
        if not isinstance(day.get("dayId"), str) or not day.get("dayId"):
            day["dayId"] = f"{id_prefix}-day-{index}"
            counts["dayId"] += 1
        if not isinstance(day.get("complianceTargets"), Mapping):
            day["complianceTargets"] = _compliance_targets(day, sleep_hours)
            counts["complianceTargets"] += 1
        if not isinstance(day.get("dayConstraints"), Mapping):
            day["dayConstraints"] = _day_constraints(day, yang)
            counts["dayConstraints"] += 1

    messages = {
        "dayId": "Assigned dayId to {count} day(s)",
        "complianceTargets": "Derived complianceTargets for {count} day(s) from workout and Yin practice content",
        "dayConstraints": "Derived dayConstraints for {count} day(s) from yangConstraints",
    }
    return [messages[key].format(count=count) for key, count in counts.items() if count]
