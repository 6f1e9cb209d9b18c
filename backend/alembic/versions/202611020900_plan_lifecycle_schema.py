"""Plan lifecycle schema: plans, history entries and per-day progress."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202611020900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "practice_plans",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=True),
        sa.Column("goal_statement", sa.Text(), nullable=True),
        sa.Column(
            "document",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "migrations_applied",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_practice_plans_user_id", "practice_plans", ["user_id"], unique=False)
    op.create_index("ix_practice_plans_week_start_date", "practice_plans", ["week_start_date"], unique=False)

    op.create_table(
        "plan_history",
        sa.Column("plan_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'active'")),
        sa.Column(
            "entry",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["plan_id"], ["practice_plans.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_plan_history_user_id", "plan_history", ["user_id"], unique=False)
    op.create_index("ix_plan_history_status", "plan_history", ["status"], unique=False)

    op.create_table(
        "plan_day_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.Text(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column(
            "feedback",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["plan_id"], ["practice_plans.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("plan_id", "day_date", name="uq_plan_day_progress_plan_date"),
    )
    op.create_index("ix_plan_day_progress_plan_id", "plan_day_progress", ["plan_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_plan_day_progress_plan_id", table_name="plan_day_progress")
    op.drop_table("plan_day_progress")
    op.drop_index("ix_plan_history_status", table_name="plan_history")
    op.drop_index("ix_plan_history_user_id", table_name="plan_history")
    op.drop_table("plan_history")
    op.drop_index("ix_practice_plans_week_start_date", table_name="practice_plans")
    op.drop_index("ix_practice_plans_user_id", table_name="practice_plans")
    op.drop_table("practice_plans")
