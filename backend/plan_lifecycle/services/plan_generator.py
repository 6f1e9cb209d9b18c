"""Client side of the generative plan collaborator."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping
from zoneinfo import ZoneInfo

import openai

from plan_lifecycle.api.schemas.history import HistoricalComplianceSummary, PersonalizationSummary
from plan_lifecycle.api.schemas.plan import PlanGenerateRequest
from plan_lifecycle.core.config import settings
from plan_lifecycle.observability.tracing import trace
from plan_lifecycle.services.errors import MalformedPlanError
from plan_lifecycle.services.historical_summary import format_historical_context
from plan_lifecycle.services.personalization import build_personalization_prompt_insertion
from plan_lifecycle.services.plan_migrator import migrate_plan

logger = logging.getLogger(__name__)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DEFAULT_DAILY_TARGETS = {"proteinGrams": 100, "sleepHours": 8, "workoutDays": 3, "yinPracticeMinutes": 70}
EMPTY_NUTRITION = {
    "breakfast": {"description": "", "protein": 0},
    "lunch": {"description": "", "protein": 0},
    "dinner": {"description": "", "protein": 0},
    "totalProtein": 0,
}


def next_monday(now: datetime | None = None, *, tz_name: str | None = None) -> datetime:
    """Return the coming Monday at local midnight (today when today is Monday)."""
    zone = ZoneInfo(tz_name or settings.plan_timezone)
    local_now = (now or datetime.now(timezone.utc)).astimezone(zone)
    days_until = (7 - local_now.weekday()) % 7
    monday = local_now.date() + timedelta(days=days_until)
    return datetime.combine(monday, time(0, 0), tzinfo=zone)


def generate_weekly_plan(
    request: PlanGenerateRequest,
    *,
    historical_summary: HistoricalComplianceSummary | None = None,
    personalization: PersonalizationSummary | None = None,
    request_id: str | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """Generate a new plan document, falling back to a fixed template when the LLM is unavailable."""
    prompt = build_prompt(request, historical_summary, personalization)
    trace_metadata = {
        "goal_statement": request.goal_statement[:200],
        "has_history": historical_summary is not None,
        "has_personalization": personalization is not None,
        "llm_input_text": prompt[:500],
    }
    with trace(
        "plan.generate",
        metadata=trace_metadata,
        user_id=str(request.user_id),
        request_id=request_id,
    ) as generation_trace:
        data = _request_plan_from_llm(prompt)
        used_fallback = data is None
        if used_fallback:
            data = _fallback_plan_data(request)
        try:
            plan = build_plan_from_generation(data, request, now=now, historical_summary=historical_summary)
        except MalformedPlanError:
            logger.warning("Generated plan was malformed; using fallback template")
            used_fallback = True
            plan = build_plan_from_generation(
                _fallback_plan_data(request), request, now=now, historical_summary=historical_summary
            )
        if generation_trace:
            generation_trace.update(
                metadata={
                    "plan_id": plan["id"],
                    "used_fallback": used_fallback,
                    "llm_output_text": str(plan.get("weekSummary", ""))[:500],
                }
            )
    return plan


def build_plan_from_generation(
    data: Any,
    request: PlanGenerateRequest,
    *,
    now: datetime | None = None,
    historical_summary: HistoricalComplianceSummary | None = None,
) -> Dict[str, Any]:
    """Normalise a generator response into a complete, current-revision plan document.

    The week always has seven days: extra days are dropped and missing ones are
    filled with rest days named after the remaining weekdays.
    """
    if not isinstance(data, Mapping) or not isinstance(data.get("days"), list):
        raise MalformedPlanError("generator response is missing a days array")
    if len(data["days"]) != 7:
        logger.warning("Expected 7 days from the generator, got %d", len(data["days"]))

    now = now or datetime.now(timezone.utc)
    monday = next_monday(now)
    days: List[Dict[str, Any]] = []
    for raw in data["days"]:
        day = raw if isinstance(raw, Mapping) else {}
        normalized = {
            "dayName": day.get("dayName") or "Unknown",
            "summary": day.get("summary") or "",
            "yinPractices": day["yinPractices"] if isinstance(day.get("yinPractices"), list) else [],
            "nutrition": day.get("nutrition") or dict(EMPTY_NUTRITION),
            "sleepHygiene": day["sleepHygiene"] if isinstance(day.get("sleepHygiene"), list) else [],
        }
        if day.get("workout"):
            normalized["workout"] = day["workout"]
        if day.get("notes"):
            normalized["notes"] = day["notes"]
        days.append(normalized)
    del days[len(WEEKDAYS):]
    for day_name in WEEKDAYS[len(days):]:
        days.append(_rest_day(day_name))

    document: Dict[str, Any] = {
        "id": f"integral-plan-{int(now.timestamp() * 1000)}",
        "date": _isoformat(now),
        "weekStartDate": _isoformat(monday),
        "goalStatement": request.goal_statement,
        "yangConstraints": request.yang_constraints.to_document(),
        "yinPreferences": request.yin_preferences.to_document(),
        "weekSummary": data.get("weekSummary") or "Weekly wellness plan",
        "dailyTargets": data.get("dailyTargets") or dict(DEFAULT_DAILY_TARGETS),
        "days": days,
        "shoppingList": data["shoppingList"] if isinstance(data.get("shoppingList"), list) else [],
    }
    if historical_summary is not None:
        document["historicalContext"] = historical_summary.to_document()

    plan = migrate_plan(document).plan
    if historical_summary is not None:
        plan["intelligenceFlags"]["usedHistoricalContext"] = True
    return plan


def build_prompt(
    request: PlanGenerateRequest,
    historical_summary: HistoricalComplianceSummary | None = None,
    personalization: PersonalizationSummary | None = None,
) -> str:
    yang = request.yang_constraints
    yin = request.yin_preferences
    injuries = ", ".join(
        f"{injury.body_part} ({injury.severity})" for injury in (yang.injury_restrictions or [])
    )
    sections = [
        "Create a 7-day wellness plan for this individual.",
        f"Goal: {request.goal_statement}",
        f"Body composition goal: {yang.primary_goal or 'general-health'}",
        f"Equipment: {', '.join(yang.equipment) or 'bodyweight only'}",
        f"Unavailable days: {', '.join(yang.unavailable_days) or 'None'}",
        f"Preferred workout times: {', '.join(yang.preferred_workout_times or []) or 'Flexible'}",
        f"Max workout duration: {yang.max_workout_duration or 60} minutes",
        f"Sleep target: {yang.sleep_hours or 8} hours",
        f"Injuries: {injuries or 'none reported'}",
        f"Yin goal: {yin.goal}; experience: {yin.experience_level}",
    ]
    if yin.intentions:
        sections.append(f"Yin intentions: {', '.join(yin.intentions)}")
    if historical_summary is not None and historical_summary.total_plans_analyzed:
        sections.append(format_historical_context(historical_summary))
    if personalization is not None and personalization.plan_count:
        sections.append(build_personalization_prompt_insertion(personalization))
    sections.append(
        "Return JSON with keys 'weekSummary', 'dailyTargets' (proteinGrams, sleepHours, workoutDays, "
        "yinPracticeMinutes), 'days' and 'shoppingList'. 'days' must hold exactly 7 objects, Monday to "
        "Sunday, each with 'dayName', 'summary', optional 'workout' (name, exercises, duration, notes), "
        "'yinPractices' (name, practiceType, duration, timeOfDay, scheduledTime {hour, minute}, intention, "
        "instructions), 'nutrition' and 'sleepHygiene'."
    )
    return "\n\n".join(sections)


def _request_plan_from_llm(prompt: str) -> Dict[str, Any] | None:
    """Call OpenAI for a plan; ``None`` means the caller should use the fallback template."""
    api_key = os.environ.get("OPENAI_API_KEY")
    if not settings.plan_generation_enabled or not api_key:
        return None

    client = openai.OpenAI(api_key=api_key)
    try:
        completion = client.chat.completions.create(
            model=settings.openai_model,
            response_format={"type": "json_object"},
            temperature=0.7,
            messages=[
                {"role": "system", "content": "You are an expert weekly planner. Return ONLY valid JSON."},
                {"role": "user", "content": prompt},
            ],
        )
        content = completion.choices[0].message.content or "{}"
        return json.loads(content)
    except Exception:
        logger.exception("Plan generation request failed")
        return None


def _fallback_plan_data(request: PlanGenerateRequest) -> Dict[str, Any]:
    """Deterministic three-workout week used when the LLM is unavailable."""
    unavailable = {day.lower() for day in request.yang_constraints.unavailable_days}
    duration = min(request.yang_constraints.max_workout_duration or 45, 45)
    workout_days = {"Monday", "Wednesday", "Friday"}
    days = []
    for day_name in WEEKDAYS:
        day: Dict[str, Any] = {
            "dayName": day_name,
            "summary": "Strength and wind-down" if day_name in workout_days else "Recovery and mobility",
            "yinPractices": [
                {
                    "name": "Box Breathing",
                    "practiceType": "breathing",
                    "duration": 10,
                    "timeOfDay": "Evening, before bed",
                    "scheduledTime": {"hour": 21, "minute": 0},
                    "intention": "Downshift the nervous system before sleep",
                    "instructions": ["Inhale for 4s", "Hold for 4s", "Exhale for 4s", "Hold for 4s"],
                }
            ],
            "sleepHygiene": ["Screens off 30 minutes before bed", "Cool, dark room"],
        }
        if day_name in workout_days and day_name.lower() not in unavailable:
            day["workout"] = {
                "name": "Full Body Foundations",
                "duration": duration,
                "exercises": [
                    {"name": "Goblet Squat", "sets": 3, "reps": "10"},
                    {"name": "Push-up", "sets": 3, "reps": "8-12"},
                    {"name": "Dumbbell Row", "sets": 3, "reps": "10"},
                ],
                "notes": "Stop two reps before failure.",
            }
        days.append(day)
    return {
        "weekSummary": f"Foundational week for: {request.goal_statement}",
        "dailyTargets": dict(DEFAULT_DAILY_TARGETS),
        "days": days,
        "shoppingList": ["Oats", "Eggs", "Greek yogurt", "Chicken breast", "Rice", "Mixed greens"],
    }


def _rest_day(day_name: str) -> Dict[str, Any]:
    return {
        "dayName": day_name,
        "summary": "Rest and recovery",
        "yinPractices": [],
        "nutrition": dict(EMPTY_NUTRITION),
        "sleepHygiene": [],
    }


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
