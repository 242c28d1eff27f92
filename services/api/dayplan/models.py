"""SQLAlchemy ORM models for Dayplan.

Tables:
- daily_plans: One plan per (user, date), anchored to wake and sleep times
- time_blocks: Ordered, non-overlapping blocks belonging to a plan
- exit_times: Computed departure times for commitments, linked to a block
- exit_gate_templates: Per-user exit readiness checklist template
"""

from __future__ import annotations

import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Text,
    Integer,
    Boolean,
    ForeignKey,
    Index,
    CheckConstraint,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


ENERGY_STATES = ("low", "medium", "high")
PLAN_STATUSES = ("active", "degraded", "deleted")
BLOCK_STATUSES = ("pending", "completed", "skipped")


class DailyPlan(Base):
    """Root scheduling record for one user on one calendar date.

    Times are stored as naive wall-clock datetimes in the user's local time.
    """
    __tablename__ = "daily_plans"
    __table_args__ = (
        # Only one live plan per (user, date); concurrent generators lose with IntegrityError
        Index(
            "uq_daily_plans_user_date_live",
            "user_id",
            "plan_date",
            unique=True,
            postgresql_where=text("status <> 'deleted'"),
            sqlite_where=text("status <> 'deleted'"),
        ),
        CheckConstraint("sleep_time > wake_time", name="ck_daily_plans_time_range"),
        CheckConstraint(
            "energy_state IN ('low', 'medium', 'high')", name="ck_daily_plans_energy_state"
        ),
        CheckConstraint(
            "status IN ('active', 'degraded', 'deleted')", name="ck_daily_plans_status"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_date: Mapped[date] = mapped_column(Date, nullable=False)

    wake_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sleep_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    plan_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    generated_after_now: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    energy_state: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="active")

    # { "warnings": [...], "skipped_meals": [...] }
    meta_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    time_blocks: Mapped[list["TimeBlock"]] = relationship(
        "TimeBlock", back_populates="plan", cascade="all, delete-orphan",
        order_by="TimeBlock.sequence_order",
    )
    exit_times: Mapped[list["ExitTime"]] = relationship(
        "ExitTime", back_populates="plan", cascade="all, delete-orphan",
        order_by="ExitTime.exit_time",
    )


class TimeBlock(Base):
    """A contiguous interval of a plan assigned to one activity."""
    __tablename__ = "time_blocks"
    __table_args__ = (
        Index("ix_time_blocks_plan_sequence", "plan_id", "sequence_order"),
        UniqueConstraint("plan_id", "sequence_order", name="uq_time_blocks_plan_sequence"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'skipped')", name="ck_time_blocks_status"
        ),
        CheckConstraint("end_time > start_time", name="ck_time_blocks_range"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("daily_plans.id", ondelete="CASCADE"), nullable=False
    )

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    activity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    activity_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Commitment id for travel/commitment blocks
    activity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="pending")
    skip_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Open key-value map: completion stamps, placement notes, external annotations
    metadata_json: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    plan: Mapped["DailyPlan"] = relationship("DailyPlan", back_populates="time_blocks")


class ExitTime(Base):
    """Latest safe departure for a commitment within a plan."""
    __tablename__ = "exit_times"
    __table_args__ = (
        Index("ix_exit_times_plan_id", "plan_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("daily_plans.id", ondelete="CASCADE"), nullable=False
    )
    # Null when no block ends before the exit time
    time_block_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True
    )
    commitment_id: Mapped[str] = mapped_column(String(64), nullable=False)

    exit_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    travel_duration: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes
    preparation_time: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes
    travel_method: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    plan: Mapped["DailyPlan"] = relationship("DailyPlan", back_populates="exit_times")
    time_block: Mapped[Optional["TimeBlock"]] = relationship("TimeBlock")


class ExitGateTemplate(Base):
    """Which gate conditions a user tracks. Daily satisfaction is not stored here."""
    __tablename__ = "exit_gate_templates"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # [{ "id": "keys", "name": "Keys present", "satisfied": false }, ...]
    conditions_json: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
