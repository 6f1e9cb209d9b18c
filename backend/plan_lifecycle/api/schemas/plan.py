"""Schemas for weekly practice plans.

Stored plan documents use camelCase keys; the models below expose snake_case
attributes with camelCase aliases so the same model reads legacy documents,
API payloads and generator output. Unknown keys are kept (``extra="allow"``)
so round-tripping a document through a model never drops information.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from plan_lifecycle.api.schemas.history import HistoricalComplianceSummary


class PlanModel(BaseModel):
    """Base for every plan document model."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TimeWindow(PlanModel):
    day_of_week: str
    start_hour: int = Field(ge=0, le=24)
    end_hour: int = Field(ge=0, le=24)


class InjuryRestriction(PlanModel):
    body_part: str
    severity: Literal["mild", "moderate", "severe"] = "mild"
    restrictions: List[str] = Field(default_factory=list)
    affected_movements: Optional[List[str]] = None
    pain_level: Optional[int] = Field(default=None, ge=1, le=10)
    medical_clearance: Optional[bool] = None
    notes: Optional[str] = None


class YangConstraints(PlanModel):
    equipment: List[str] = Field(default_factory=list)
    unavailable_days: List[str] = Field(default_factory=list)
    available_time_windows: Optional[List[TimeWindow]] = None
    injury_restrictions: Optional[List[InjuryRestriction]] = None
    preferred_workout_times: Optional[List[str]] = None
    max_workout_duration: Optional[int] = None
    sleep_hours: Optional[float] = None
    primary_goal: Optional[str] = None
    strength_training_experience: Optional[str] = None


class YinPreferences(PlanModel):
    goal: str = "balance"
    experience_level: str = "Beginner"
    intentions: Optional[List[str]] = None
    additional_notes: Optional[str] = None


class Exercise(PlanModel):
    name: str
    sets: Optional[int] = None
    reps: Optional[str] = None
    notes: Optional[str] = None


class WorkoutRoutine(PlanModel):
    name: str
    exercises: List[Exercise] = Field(default_factory=list)
    duration: Optional[int] = None
    notes: Optional[str] = None


class Meal(PlanModel):
    description: str = ""
    protein: float = 0


class MealPlan(PlanModel):
    breakfast: Meal = Field(default_factory=Meal)
    lunch: Meal = Field(default_factory=Meal)
    dinner: Meal = Field(default_factory=Meal)
    snacks: Optional[Meal] = None
    total_protein: float = 0
    total_calories: Optional[float] = None
    notes: Optional[str] = None


class SynergyNote(PlanModel):
    type: str
    message: str
    related_items: Optional[List[str]] = None


class ScheduledTime(PlanModel):
    """Structured start time carried next to the free-text ``timeOfDay`` label."""

    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)


class YinPracticeDetail(PlanModel):
    name: str
    practice_type: str = ""
    duration: Optional[int] = None
    time_of_day: Optional[str] = None
    scheduled_time: Optional[ScheduledTime] = None
    intention: str = ""
    instructions: List[str] = Field(default_factory=list)
    synergy_notes: Optional[List[SynergyNote]] = None
    scheduling_confidence: Optional[float] = Field(default=None, ge=0, le=100)


class SynergyMetadata(PlanModel):
    yang_yin_balance: str = ""
    rest_spacing_notes: Optional[str] = None
    constraint_resolution: Optional[str] = None


class ComplianceTargets(PlanModel):
    workout_slots: int = 0
    yin_minutes: int = 0
    nutrition_adherence_pct: float = 80
    sleep_hours: float = 8


class DayConstraints(PlanModel):
    available: bool = True
    time_windows: List[TimeWindow] = Field(default_factory=list)
    injury_restrictions: List[str] = Field(default_factory=list)


class DayPlan(PlanModel):
    day_id: Optional[str] = None
    day_name: str
    summary: str = ""
    workout: Optional[WorkoutRoutine] = None
    yin_practices: List[YinPracticeDetail] = Field(default_factory=list)
    nutrition: MealPlan = Field(default_factory=MealPlan)
    sleep_hygiene: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    synergy_metadata: Optional[SynergyMetadata] = None
    compliance_targets: Optional[ComplianceTargets] = None
    day_constraints: Optional[DayConstraints] = None


class DailyTargets(PlanModel):
    protein_grams: float = 100
    sleep_hours: float = 8
    workout_days: int = 3
    yin_practice_minutes: int = 70


class UserContext(PlanModel):
    goal_statement: str = ""
    primary_goal: Optional[str] = None
    experience_level: Optional[str] = None
    yin_goal: Optional[str] = None
    equipment: List[str] = Field(default_factory=list)
    unavailable_days: List[str] = Field(default_factory=list)
    injury_notes: List[str] = Field(default_factory=list)
    intentions: List[str] = Field(default_factory=list)
    sleep_hours: Optional[float] = None


class PlanSynergy(PlanModel):
    integration_score: Optional[float] = None
    pairing_score: Optional[float] = None
    rest_spacing_score: Optional[float] = None
    day_balances: List[str] = Field(default_factory=list)
    constraint_conflicts: List[Dict[str, Any]] = Field(default_factory=list)


class PlanFeedbackSettings(PlanModel):
    collect_daily: bool = True
    logged_days: int = 0
    last_logged_date: Optional[str] = None


class IntelligenceFlags(PlanModel):
    used_historical_context: bool = False
    has_synthesis_metadata: bool = False
    low_confidence_days: List[str] = Field(default_factory=list)


class WeeklyPracticePlan(PlanModel):
    id: str
    date: str = ""
    week_start_date: str
    goal_statement: str = ""
    yang_constraints: YangConstraints = Field(default_factory=YangConstraints)
    yin_preferences: YinPreferences = Field(default_factory=YinPreferences)
    week_summary: str = ""
    daily_targets: DailyTargets = Field(default_factory=DailyTargets)
    days: List[DayPlan] = Field(default_factory=list)
    shopping_list: List[str] = Field(default_factory=list)
    synthesis_metadata: Optional[Dict[str, Any]] = None
    historical_context: Optional[HistoricalComplianceSummary] = None
    user_context: Optional[UserContext] = None
    synergy: Optional[PlanSynergy] = None
    feedback: Optional[PlanFeedbackSettings] = None
    intelligence_flags: Optional[IntelligenceFlags] = None

    @model_validator(mode="after")
    def _day_ids_unique(self) -> "WeeklyPracticePlan":
        seen: set[str] = set()
        for day in self.days:
            if day.day_id is None:
                continue
            if day.day_id in seen:
                raise ValueError(f"duplicate dayId {day.day_id!r}")
            seen.add(day.day_id)
        return self


class PlanCreateRequest(BaseModel):
    user_id: UUID
    plan: Dict[str, Any]


class PlanGenerateRequest(BaseModel):
    user_id: UUID
    goal_statement: str
    yang_constraints: YangConstraints = Field(default_factory=YangConstraints)
    yin_preferences: YinPreferences = Field(default_factory=YinPreferences)
    include_history: bool = True


class PlanResponse(BaseModel):
    plan: Dict[str, Any]
    was_migrated: bool = False
    migrations_applied: List[str] = Field(default_factory=list)
    request_id: str


class PlanListItem(BaseModel):
    id: str
    week_start_date: Optional[str] = None
    goal_statement: Optional[str] = None
    status: Optional[str] = None


class PlanListResponse(BaseModel):
    user_id: UUID
    items: List[PlanListItem]
    request_id: str
