"""Domain errors raised by the plan lifecycle services."""
from __future__ import annotations


class PlanLifecycleError(Exception):
    """Base class for plan lifecycle failures."""


class MalformedPlanError(PlanLifecycleError, ValueError):
    """A stored or generated plan record cannot be brought to the current schema."""

    def __init__(self, message: str, *, plan_id: str | None = None) -> None:
        super().__init__(message)
        self.plan_id = plan_id


class PlanNotFoundError(PlanLifecycleError, LookupError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} not found")
        self.plan_id = plan_id


class PlanHistoryConflictError(PlanLifecycleError):
    """Concurrent writers kept invalidating a history update after every retry."""

    def __init__(self, plan_id: str, attempts: int) -> None:
        super().__init__(f"History for plan {plan_id} changed concurrently ({attempts} attempts)")
        self.plan_id = plan_id
        self.attempts = attempts
