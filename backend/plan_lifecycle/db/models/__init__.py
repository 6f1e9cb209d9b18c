"""ORM models exposed for metadata discovery."""
from plan_lifecycle.db.models.plan_history import PlanDayProgress, PlanHistoryRecord
from plan_lifecycle.db.models.practice_plan import PracticePlan

__all__ = [
    "PlanDayProgress",
    "PlanHistoryRecord",
    "PracticePlan",
]
