"""Schemas for plan history, daily feedback and compliance summaries."""
from __future__ import annotations

import datetime as dt
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PlanStatus = Literal["active", "completed", "abandoned"]


class HistoryModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlanDayFeedback(HistoryModel):
    date: str = ""
    day_name: str
    completed_workout: bool = False
    completed_yin_practices: List[str] = Field(default_factory=list)
    intensity_felt: int = 0
    energy_level: int = 0
    blockers: Optional[str] = None
    notes: Optional[str] = None
    timestamp: str = ""


class DayFeedbackInput(HistoryModel):
    """Feedback as submitted by the client; date and timestamp are assigned on logging."""

    day_name: str
    completed_workout: bool = False
    completed_yin_practices: List[str] = Field(default_factory=list)
    intensity_felt: int = 5
    energy_level: int = 5
    blockers: Optional[str] = None
    notes: Optional[str] = None


class AggregateMetrics(HistoryModel):
    workout_compliance_rate: float = 0
    yin_compliance_rate: float = 0
    average_intensity: float = 0
    average_energy: float = 0
    total_blocker_days: int = 0


class PlanHistoryEntry(HistoryModel):
    plan_id: str
    plan_date: str = ""
    week_start_date: str = ""
    goal_statement: str = ""
    started_at: str = ""
    status: PlanStatus = "active"
    daily_feedback: List[PlanDayFeedback] = Field(default_factory=list)
    aggregate_metrics: Optional[AggregateMetrics] = None
    completed_at: Optional[str] = None


# plan id -> ISO date -> feedback logged for that date
PlanProgressIndex = Dict[str, Dict[str, PlanDayFeedback]]


class HistoricalComplianceSummary(HistoryModel):
    total_plans_analyzed: int = 0
    average_workout_compliance: float = 0
    average_yin_compliance: float = 0
    common_blockers: List[str] = Field(default_factory=list)
    best_performing_day_patterns: List[str] = Field(default_factory=list)
    recommended_adjustments: List[str] = Field(default_factory=list)


class AdjustmentDirective(HistoryModel):
    type: Literal[
        "intensity-nudge",
        "yin-duration",
        "yang-spacing",
        "practice-swap",
        "time-shift",
        "recovery-boost",
        "load-reduction",
        "load-increase",
    ]
    description: str
    rationale: str
    impact: Literal["high", "medium", "low"]
    confidence: int = Field(ge=0, le=100)


class InferredPreference(HistoryModel):
    type: Literal[
        "preferred-time",
        "high-compliance-modality",
        "low-compliance-modality",
        "energy-pattern",
        "blocker-pattern",
        "intensity-tolerance",
    ]
    value: str
    frequency: int
    compliance: Optional[float] = None
    notes: Optional[str] = None


class TimeWeightedAverage(HistoryModel):
    workout_compliance: float = 0
    yin_compliance: float = 0
    average_intensity: float = 0
    average_energy: float = 0


class PersonalizationSummary(HistoryModel):
    plan_count: int = 0
    analysis_period_days: int = 0
    time_weighted_average: TimeWeightedAverage = Field(default_factory=TimeWeightedAverage)
    adjustment_directives: List[AdjustmentDirective] = Field(default_factory=list)
    inferred_preferences: List[InferredPreference] = Field(default_factory=list)
    common_blockers: List[str] = Field(default_factory=list)
    best_performing_day_patterns: List[str] = Field(default_factory=list)
    recommended_intensity_level: Literal["low", "moderate", "high"] = "moderate"
    recommended_yin_duration: int = 15
    recommended_recovery_days: int = 2
    summary: str = ""


class FeedbackRequest(BaseModel):
    date: dt.date
    feedback: DayFeedbackInput


class FeedbackResponse(BaseModel):
    entry: PlanHistoryEntry
    feedback: PlanDayFeedback
    request_id: str


class HistoryEntryResponse(BaseModel):
    entry: PlanHistoryEntry
    request_id: str


class ProgressResponse(BaseModel):
    plan_id: str
    days: Dict[str, PlanDayFeedback]
    plan_days: List[PlanDayFeedback] = Field(default_factory=list)
    request_id: str


class ReconcileRequest(BaseModel):
    completion_history: Dict[str, List[str]] = Field(default_factory=dict)


class StatusUpdateRequest(BaseModel):
    status: PlanStatus


class SummaryResponse(BaseModel):
    user_id: UUID
    summary: HistoricalComplianceSummary
    request_id: str


class PersonalizationResponse(BaseModel):
    user_id: UUID
    personalization: PersonalizationSummary
    request_id: str
