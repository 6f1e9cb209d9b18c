"""Practice plan ORM model."""
from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, Index, Text, func
from sqlalchemy.dialects.postgresql import UUID

from plan_lifecycle.db.base import Base
from plan_lifecycle.db.types import JSONDocument, JSONList


class PracticePlan(Base):
    __tablename__ = "practice_plans"
    __table_args__ = (
        Index("ix_practice_plans_user_id", "user_id"),
        Index("ix_practice_plans_week_start_date", "week_start_date"),
    )

    # Plan ids are minted by the generator (e.g. "integral-plan-1704067200000").
    id = Column(Text, primary_key=True)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    week_start_date = Column(Date, nullable=True)
    goal_statement = Column(Text, nullable=True)
    document = Column(JSONDocument, nullable=False, default=dict)
    migrations_applied = Column(JSONList, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
