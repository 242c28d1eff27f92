"""Initial schema with daily_plans, time_blocks, exit_times, exit_gate_templates

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Daily plans
    op.create_table(
        "daily_plans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("plan_date", sa.Date(), nullable=False),
        sa.Column("wake_time", sa.DateTime(), nullable=False),
        sa.Column("sleep_time", sa.DateTime(), nullable=False),
        sa.Column("plan_start", sa.DateTime(), nullable=False),
        sa.Column("generated_after_now", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("energy_state", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("meta_json", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("sleep_time > wake_time", name="ck_daily_plans_time_range"),
        sa.CheckConstraint("energy_state IN ('low', 'medium', 'high')", name="ck_daily_plans_energy_state"),
        sa.CheckConstraint("status IN ('active', 'degraded', 'deleted')", name="ck_daily_plans_status"),
    )
    op.create_index("ix_daily_plans_user_id", "daily_plans", ["user_id"])
    # One live plan per user and date
    op.create_index(
        "uq_daily_plans_user_date_live",
        "daily_plans",
        ["user_id", "plan_date"],
        unique=True,
        postgresql_where=sa.text("status <> 'deleted'"),
    )

    # Time blocks
    op.create_table(
        "time_blocks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("plan_id", sa.String(36), sa.ForeignKey("daily_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("activity_type", sa.String(20), nullable=False),
        sa.Column("activity_name", sa.String(200), nullable=False),
        sa.Column("activity_id", sa.String(64), nullable=True),
        sa.Column("is_fixed", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("skip_reason", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("plan_id", "sequence_order", name="uq_time_blocks_plan_sequence"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'skipped')", name="ck_time_blocks_status"),
        sa.CheckConstraint("end_time > start_time", name="ck_time_blocks_range"),
    )
    op.create_index("ix_time_blocks_plan_sequence", "time_blocks", ["plan_id", "sequence_order"])

    # Exit times
    op.create_table(
        "exit_times",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("plan_id", sa.String(36), sa.ForeignKey("daily_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("time_block_id", sa.String(36), sa.ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("commitment_id", sa.String(64), nullable=False),
        sa.Column("exit_time", sa.DateTime(), nullable=False),
        sa.Column("travel_duration", sa.Integer(), nullable=False),
        sa.Column("preparation_time", sa.Integer(), nullable=False),
        sa.Column("travel_method", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_exit_times_plan_id", "exit_times", ["plan_id"])

    # Exit gate templates
    op.create_table(
        "exit_gate_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), unique=True, nullable=False),
        sa.Column("conditions_json", postgresql.JSONB(astext_type=sa.Text()), server_default="[]", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("exit_gate_templates")
    op.drop_index("ix_exit_times_plan_id", table_name="exit_times")
    op.drop_table("exit_times")
    op.drop_index("ix_time_blocks_plan_sequence", table_name="time_blocks")
    op.drop_table("time_blocks")
    op.drop_index("uq_daily_plans_user_date_live", table_name="daily_plans")
    op.drop_index("ix_daily_plans_user_id", table_name="daily_plans")
    op.drop_table("daily_plans")
