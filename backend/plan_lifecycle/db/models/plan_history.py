"""Plan history ORM models: one history row per plan plus a per-day progress index."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text as sa_text,
)
from sqlalchemy.dialects.postgresql import UUID

from plan_lifecycle.db.base import Base
from plan_lifecycle.db.types import JSONDocument


class PlanHistoryRecord(Base):
    __tablename__ = "plan_history"
    __table_args__ = (
        Index("ix_plan_history_user_id", "user_id"),
        Index("ix_plan_history_status", "status"),
    )

    plan_id = Column(Text, ForeignKey("practice_plans.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    status = Column(String(20), nullable=False, server_default=sa_text("'active'"))
    entry = Column(JSONDocument, nullable=False, default=dict)
    # Optimistic concurrency counter; a stale UPDATE raises StaleDataError.
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}


class PlanDayProgress(Base):
    __tablename__ = "plan_day_progress"
    __table_args__ = (
        UniqueConstraint("plan_id", "day_date", name="uq_plan_day_progress_plan_date"),
        Index("ix_plan_day_progress_plan_id", "plan_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    plan_id = Column(Text, ForeignKey("practice_plans.id", ondelete="CASCADE"), nullable=False)
    day_date = Column(Date, nullable=False)
    feedback = Column(JSONDocument, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
