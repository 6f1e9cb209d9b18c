from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from plan_lifecycle.api.schemas.history import PlanDayFeedback, PlanHistoryEntry
from plan_lifecycle.services.compliance import calculate_plan_aggregates
from plan_lifecycle.services.personalization import (
    analyze_history_and_personalize,
    build_personalization_prompt_insertion,
    time_decay_factor,
)

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _entry(plan_id: str, days_ago: int, feedback: list[PlanDayFeedback]) -> PlanHistoryEntry:
    return calculate_plan_aggregates(
        PlanHistoryEntry(plan_id=plan_id, plan_date=_iso(NOW - timedelta(days=days_ago)), daily_feedback=feedback)
    )


def test_decay_is_linear_over_four_weeks():
    assert time_decay_factor(_iso(NOW), NOW) == 1.0
    assert time_decay_factor(_iso(NOW - timedelta(days=14)), NOW) == pytest.approx(0.5)
    assert time_decay_factor(_iso(NOW - timedelta(days=29)), NOW) == 0.0
    assert time_decay_factor("not a date", NOW) == 0.0


def test_no_recent_history_returns_first_plan_summary():
    old = _entry("old", 60, [PlanDayFeedback(day_name="Monday", completed_workout=True)])

    summary = analyze_history_and_personalize([old], NOW)

    assert summary.plan_count == 0
    assert "first plan" in summary.summary
    assert build_personalization_prompt_insertion(summary) == ""


def test_low_compliance_history_reduces_load():
    feedback = [
        PlanDayFeedback(day_name="Monday", completed_workout=False, intensity_felt=4, energy_level=4, blockers="Late shifts"),
        PlanDayFeedback(day_name="Tuesday", completed_workout=True, intensity_felt=5, energy_level=4, blockers="Late shifts"),
        PlanDayFeedback(day_name="Wednesday", completed_workout=False, intensity_felt=3, energy_level=3),
    ]

    summary = analyze_history_and_personalize([_entry("p1", 3, feedback)], NOW)

    types = [directive.type for directive in summary.adjustment_directives]
    assert "load-reduction" in types
    assert "yin-duration" in types
    assert summary.recommended_intensity_level == "low"
    assert summary.recommended_recovery_days == 3
    assert summary.recommended_yin_duration == 8
    assert summary.common_blockers == ["Late shifts"]
    assert summary.analysis_period_days == 3


def test_back_to_back_heavy_days_ask_for_spacing():
    feedback = [
        PlanDayFeedback(day_name="Monday", completed_workout=True, intensity_felt=9, energy_level=8, completed_yin_practices=["Breath"]),
        PlanDayFeedback(day_name="Tuesday", completed_workout=True, intensity_felt=9, energy_level=8, completed_yin_practices=["Breath"]),
    ]

    summary = analyze_history_and_personalize([_entry("p1", 1, feedback)], NOW)

    spacing = [d for d in summary.adjustment_directives if d.type == "yang-spacing"]
    assert spacing and "Monday→Tuesday" in spacing[0].description
    assert any(d.type == "intensity-nudge" for d in summary.adjustment_directives)
    assert summary.best_performing_day_patterns == ["Monday", "Tuesday"]
    assert summary.inferred_preferences[0].value == "Breath"


def test_prompt_insertion_mentions_directives():
    feedback = [PlanDayFeedback(day_name="Monday", completed_workout=False, intensity_felt=5, energy_level=5)]
    summary = analyze_history_and_personalize([_entry("p1", 2, feedback)], NOW)

    block = build_personalization_prompt_insertion(summary)

    assert block.startswith("PERSONALIZATION & ADAPTIVE TUNING:")
    assert "Based on 1 previous plan over the last 2 days:" in block
    assert "Reduce workout frequency or duration" in block
