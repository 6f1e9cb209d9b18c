"""Database utilities and ORM models for plans, history and progress."""

from plan_lifecycle.db.base import Base
from plan_lifecycle.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
