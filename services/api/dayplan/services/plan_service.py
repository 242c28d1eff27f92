"""Daily plan persistence and lifecycle.

Every write here is a single transaction: either the plan and all of its
blocks and exit times land, or nothing does.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import ConflictError, DayplanError, ForbiddenError, InvalidInputError, NotFoundError, StorageError
from ..models import ENERGY_STATES, DailyPlan, ExitTime, TimeBlock
from .exit_time import Commitment, ExitTimeResult, compute_exit_time
from .chains import validate_anchor_type
from .plan_builder import Routine, Task, build_day, compute_plan_start
from .travel import Location, TravelLookup, estimate_travel_minutes

logger = logging.getLogger(__name__)

DEGRADABLE_TYPES = ("study", "free")
DEGRADE_REASON = "Dropped during degradation"
COMPLETION_KEYS = ("completed_at", "completed_by")


def validate_plan_request(
    wake_time: datetime,
    sleep_time: datetime,
    energy_state: str,
    commitments: Sequence[Commitment] = (),
):
    if sleep_time <= wake_time:
        raise InvalidInputError("sleep_time must be after wake_time")
    if energy_state not in ENERGY_STATES:
        raise InvalidInputError(
            f"Unknown energy state '{energy_state}'", allowed=list(ENERGY_STATES)
        )
    seen = set()
    for c in commitments:
        if c.end_time <= c.start_time:
            raise InvalidInputError(f"Commitment '{c.id}' must end after it starts")
        if c.id in seen:
            raise InvalidInputError(f"Duplicate commitment id '{c.id}'")
        if c.preparation_minutes is not None and c.preparation_minutes < 0:
            raise InvalidInputError(f"Commitment '{c.id}' preparation_minutes must be >= 0")
        if c.travel_minutes is not None and c.travel_minutes < 0:
            raise InvalidInputError(f"Commitment '{c.id}' travel_minutes must be >= 0")
        validate_anchor_type(c.anchor_type)
        seen.add(c.id)


def _plan_window(wake_time: datetime, sleep_time: datetime, now: Optional[datetime]):
    plan_start, after_now = compute_plan_start(wake_time, now or datetime.now())
    if plan_start >= sleep_time:
        raise InvalidInputError("Nothing left to plan: the current time is past sleep_time")
    return plan_start, after_now


def get_live_plan(db: Session, user_id: str, plan_date: date) -> Optional[DailyPlan]:
    return db.query(DailyPlan).filter(
        DailyPlan.user_id == user_id,
        DailyPlan.plan_date == plan_date,
        DailyPlan.status != "deleted",
    ).first()


def get_plan_for_user(db: Session, plan_id: str, user_id: str) -> DailyPlan:
    plan = db.get(DailyPlan, plan_id)
    if plan is None or plan.status == "deleted":
        raise NotFoundError("Plan not found", plan_id=plan_id)
    if plan.user_id != user_id:
        raise ForbiddenError("Plan belongs to another user", plan_id=plan_id)
    return plan


def generate_plan(
    db: Session,
    user_id: str,
    plan_date: date,
    wake_time: datetime,
    sleep_time: datetime,
    energy_state: str,
    current_location: Optional[Location] = None,
    commitments: Sequence[Commitment] = (),
    tasks: Sequence[Task] = (),
    morning_routine: Optional[Routine] = None,
    evening_routine: Optional[Routine] = None,
    travel_lookup: TravelLookup = estimate_travel_minutes,
    now: Optional[datetime] = None,
    replaces: Optional[str] = None,
) -> DailyPlan:
    validate_plan_request(wake_time, sleep_time, energy_state, commitments)

    existing = get_live_plan(db, user_id, plan_date)
    if existing is not None:
        raise ConflictError(
            f"A plan already exists for {plan_date.isoformat()}",
            existing_plan_id=existing.id,
        )

    plan_start, after_now = _plan_window(wake_time, sleep_time, now)

    result = build_day(
        plan_start,
        sleep_time,
        energy_state,
        commitments=commitments,
        travel_lookup=travel_lookup,
        origin=current_location,
        generated_after_now=after_now,
        wake_time=wake_time,
        tasks=tasks,
        morning_routine=morning_routine,
        evening_routine=evening_routine,
    )

    plan = DailyPlan(
        user_id=user_id,
        plan_date=plan_date,
        wake_time=wake_time,
        sleep_time=sleep_time,
        plan_start=plan_start,
        generated_after_now=after_now,
        energy_state=energy_state,
        status="active",
        meta_json={
            "warnings": result.warnings,
            "skipped_meals": result.skipped_meals,
            "chains": [c.to_dict() for c in result.chains],
            "wake_ramp": result.wake_ramp.to_dict() if result.wake_ramp else None,
            "deferred_tasks": result.deferred_tasks,
        },
    )

    try:
        db.add(plan)
        db.flush()

        rows: dict[int, TimeBlock] = {}
        for draft in result.blocks:
            row = TimeBlock(
                plan_id=plan.id,
                start_time=draft.start_time,
                end_time=draft.end_time,
                activity_type=draft.activity_type,
                activity_name=draft.activity_name,
                activity_id=draft.activity_id,
                is_fixed=draft.is_fixed,
                sequence_order=draft.sequence_order,
                status=draft.status,
                metadata_json=dict(draft.metadata),
            )
            db.add(row)
            rows[id(draft)] = row
        db.flush()

        for exit_result in result.exit_times:
            linked = rows.get(id(exit_result.time_block)) if exit_result.time_block is not None else None
            db.add(ExitTime(
                plan_id=plan.id,
                time_block_id=linked.id if linked is not None else None,
                commitment_id=exit_result.commitment_id,
                exit_time=exit_result.exit_time,
                travel_duration=exit_result.travel_duration,
                preparation_time=exit_result.preparation_time,
                travel_method=exit_result.travel_method,
            ))

        db.commit()
    except IntegrityError as e:
        db.rollback()
        # A live plan visible after rollback means another generator won the race
        winner = get_live_plan(db, user_id, plan_date)
        if winner is None or winner.id == replaces:
            logger.error(f"Plan rows rejected for user {user_id} on {plan_date}: {e.orig}")
            raise StorageError("Failed to save plan", cause=e)
        logger.warning(f"Plan insert conflict for user {user_id} on {plan_date}: {e.orig}")
        raise ConflictError(
            f"A plan already exists for {plan_date.isoformat()}",
            existing_plan_id=winner.id,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Plan generation failed for user {user_id} on {plan_date}: {e}")
        raise StorageError("Failed to save plan", cause=e)

    db.refresh(plan)
    logger.info(
        f"Generated plan {plan.id} for user {user_id} on {plan_date}: "
        f"{len(result.blocks)} blocks, {len(result.exit_times)} exit times, "
        f"{len(result.warnings)} warnings"
    )
    return plan


def delete_plan(db: Session, plan: DailyPlan, commit: bool = True):
    """Remove a plan with its exit times and blocks in one transaction.

    With `commit=False` the deletes are only flushed, leaving the caller to
    commit or roll back together with its own writes.
    """
    plan_id = plan.id
    try:
        db.query(ExitTime).filter(ExitTime.plan_id == plan_id).delete(synchronize_session=False)
        db.query(TimeBlock).filter(TimeBlock.plan_id == plan_id).delete(synchronize_session=False)
        # Reload the now-empty collections before the plan row goes
        db.expire(plan)
        db.delete(plan)
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete plan {plan_id}: {e}")
        raise StorageError("Failed to delete plan", cause=e)
    logger.info(f"Deleted plan {plan_id}" + ("" if commit else " (pending commit)"))


def regenerate_plan(
    db: Session,
    user_id: str,
    plan_date: date,
    wake_time: datetime,
    sleep_time: datetime,
    energy_state: str,
    current_location: Optional[Location] = None,
    commitments: Sequence[Commitment] = (),
    tasks: Sequence[Task] = (),
    morning_routine: Optional[Routine] = None,
    evening_routine: Optional[Routine] = None,
    travel_lookup: TravelLookup = estimate_travel_minutes,
    now: Optional[datetime] = None,
) -> DailyPlan:
    # Validate first so a bad request never costs the user their existing plan
    validate_plan_request(wake_time, sleep_time, energy_state, commitments)
    _plan_window(wake_time, sleep_time, now)

    # The old plan goes in the same transaction that saves the new one
    try:
        existing = get_live_plan(db, user_id, plan_date)
        replaced_id = existing.id if existing is not None else None
        if existing is not None:
            delete_plan(db, existing, commit=False)

        return generate_plan(
            db,
            user_id,
            plan_date,
            wake_time,
            sleep_time,
            energy_state,
            current_location=current_location,
            commitments=commitments,
            tasks=tasks,
            morning_routine=morning_routine,
            evening_routine=evening_routine,
            travel_lookup=travel_lookup,
            now=now,
            replaces=replaced_id,
        )
    except DayplanError:
        db.rollback()
        raise


def degrade_plan(db: Session, plan: DailyPlan) -> DailyPlan:
    """Skip pending study/free blocks; everything else stays as planned."""
    dropped = 0
    for block in plan.time_blocks:
        if block.status == "pending" and not block.is_fixed and block.activity_type in DEGRADABLE_TYPES:
            block.status = "skipped"
            block.skip_reason = DEGRADE_REASON
            dropped += 1
    plan.status = "degraded"
    _commit(db, "Failed to degrade plan")
    db.refresh(plan)
    logger.info(f"Degraded plan {plan.id}: {dropped} blocks dropped")
    return plan


def add_exit_time(
    db: Session,
    plan: DailyPlan,
    commitment: Commitment,
    travel_method: str,
    preparation_minutes: int,
    travel_lookup: TravelLookup = estimate_travel_minutes,
    origin: Optional[Location] = None,
) -> tuple[ExitTime, ExitTimeResult]:
    result = compute_exit_time(
        commitment,
        travel_method,
        preparation_minutes,
        travel_lookup,
        origin=origin,
        plan_start=plan.plan_start,
        blocks=plan.time_blocks,
    )
    row = ExitTime(
        plan_id=plan.id,
        time_block_id=result.time_block_id,
        commitment_id=result.commitment_id,
        exit_time=result.exit_time,
        travel_duration=result.travel_duration,
        preparation_time=result.preparation_time,
        travel_method=result.travel_method,
    )
    db.add(row)
    _commit(db, "Failed to save exit time")
    db.refresh(row)
    return row, result


# --- Time block transitions ---

def get_block_for_user(db: Session, block_id: str, user_id: str) -> TimeBlock:
    block = db.get(TimeBlock, block_id)
    if block is None:
        raise NotFoundError("Time block not found", block_id=block_id)
    if block.plan.user_id != user_id:
        raise ForbiddenError("Time block belongs to another user", block_id=block_id)
    return block


def complete_block(db: Session, block: TimeBlock, user_id: str, now: Optional[datetime] = None) -> TimeBlock:
    """Mark completed and stamp who/when. Completing twice keeps the first stamp."""
    metadata = dict(block.metadata_json or {})
    if block.status != "completed" or "completed_at" not in metadata:
        metadata["completed_at"] = (now or datetime.now(timezone.utc)).isoformat()
        metadata["completed_by"] = user_id
    block.status = "completed"
    block.skip_reason = None
    # New dict so the JSON column registers the change
    block.metadata_json = metadata
    _commit(db, "Failed to complete time block")
    db.refresh(block)
    return block


def uncomplete_block(db: Session, block: TimeBlock) -> TimeBlock:
    """Back to pending; drops only the completion stamp keys."""
    if block.status == "completed":
        block.status = "pending"
    block.metadata_json = {
        k: v for k, v in (block.metadata_json or {}).items() if k not in COMPLETION_KEYS
    }
    _commit(db, "Failed to uncomplete time block")
    db.refresh(block)
    return block


def skip_block(db: Session, block: TimeBlock, reason: Optional[str] = None) -> TimeBlock:
    if block.status == "completed":
        block.metadata_json = {
            k: v for k, v in (block.metadata_json or {}).items() if k not in COMPLETION_KEYS
        }
    block.status = "skipped"
    block.skip_reason = reason
    _commit(db, "Failed to skip time block")
    db.refresh(block)
    return block


def _commit(db: Session, message: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{message}: {e}")
        raise StorageError(message, cause=e)
