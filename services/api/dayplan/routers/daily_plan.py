from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..models import DailyPlan
from ..schemas import (
    DailyPlanOut,
    ExitTimeCandidateOut,
    ExitTimeCompareRequest,
    ExitTimeCreatedOut,
    ExitTimeOut,
    ExitTimeRequest,
    PlanGenerateRequest,
    TimeBlockOut,
)
from ..services import plan_service
from ..services.exit_time import ExitTimeResult, compare_travel_methods
from ..services.travel import TravelLookup, get_travel_lookup
from ..settings import settings

router = APIRouter()


def plan_response(plan: DailyPlan) -> DailyPlanOut:
    meta = plan.meta_json or {}
    return DailyPlanOut(
        id=plan.id,
        user_id=plan.user_id,
        plan_date=plan.plan_date,
        wake_time=plan.wake_time,
        sleep_time=plan.sleep_time,
        plan_start=plan.plan_start,
        generated_after_now=plan.generated_after_now,
        energy_state=plan.energy_state,
        status=plan.status,
        time_blocks=[TimeBlockOut.model_validate(b) for b in plan.time_blocks],
        exit_times=[ExitTimeOut.model_validate(e) for e in plan.exit_times],
        warnings=meta.get("warnings", []),
        skipped_meals=meta.get("skipped_meals", []),
        chains=meta.get("chains", []),
        wake_ramp=meta.get("wake_ramp"),
        deferred_tasks=meta.get("deferred_tasks", []),
    )


def candidate_response(result: ExitTimeResult) -> ExitTimeCandidateOut:
    return ExitTimeCandidateOut(
        commitment_id=result.commitment_id,
        exit_time=result.exit_time,
        travel_duration=result.travel_duration,
        preparation_time=result.preparation_time,
        travel_method=result.travel_method,
        time_block_id=result.time_block_id,
        warnings=result.warnings,
    )


@router.post("/daily-plan/generate", response_model=DailyPlanOut, status_code=201)
def generate_daily_plan(
    request: PlanGenerateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    travel_lookup: TravelLookup = Depends(get_travel_lookup),
):
    """Generate the plan for a date. 409 if one already exists."""
    plan = plan_service.generate_plan(
        db, user_id, travel_lookup=travel_lookup, **request.resolve()
    )
    return plan_response(plan)


@router.post("/daily-plan/regenerate", response_model=DailyPlanOut, status_code=201)
def regenerate_daily_plan(
    request: PlanGenerateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    travel_lookup: TravelLookup = Depends(get_travel_lookup),
):
    """Replace any plan for the date with a freshly generated one."""
    plan = plan_service.regenerate_plan(
        db, user_id, travel_lookup=travel_lookup, **request.resolve()
    )
    return plan_response(plan)


@router.get("/daily-plan/today", response_model=Optional[DailyPlanOut])
def get_today_plan(
    plan_date: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Plan for `date` (default today), or null when there is none."""
    plan = plan_service.get_live_plan(db, user_id, plan_date or date.today())
    if not plan:
        return None
    return plan_response(plan)


@router.get("/daily-plan/{plan_id}", response_model=DailyPlanOut)
def get_daily_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return plan_response(plan_service.get_plan_for_user(db, plan_id, user_id))


@router.delete("/daily-plan/{plan_id}", status_code=204)
def delete_daily_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Delete the plan together with its blocks and exit times."""
    plan = plan_service.get_plan_for_user(db, plan_id, user_id)
    plan_service.delete_plan(db, plan)
    return Response(status_code=204)


@router.post("/daily-plan/{plan_id}/degrade", response_model=DailyPlanOut)
def degrade_daily_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Drop the optional blocks (study/free) for a rough day."""
    plan = plan_service.get_plan_for_user(db, plan_id, user_id)
    return plan_response(plan_service.degrade_plan(db, plan))


# --- Exit times ---

@router.get("/daily-plan/{plan_id}/exit-times", response_model=list[ExitTimeOut])
def list_exit_times(
    plan_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    plan = plan_service.get_plan_for_user(db, plan_id, user_id)
    return [ExitTimeOut.model_validate(e) for e in plan.exit_times]


@router.post("/daily-plan/{plan_id}/exit-times", response_model=ExitTimeCreatedOut, status_code=201)
def create_exit_time(
    plan_id: str,
    request: ExitTimeRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    travel_lookup: TravelLookup = Depends(get_travel_lookup),
):
    """Compute and store the exit time for a commitment."""
    plan = plan_service.get_plan_for_user(db, plan_id, user_id)
    commitment = request.commitment.to_commitment(plan.wake_time)
    row, result = plan_service.add_exit_time(
        db,
        plan,
        commitment,
        request.travel_method or commitment.travel_method or settings.default_travel_method,
        _preparation(request.preparation_minutes, commitment.preparation_minutes),
        travel_lookup=travel_lookup,
        origin=request.origin.to_location() if request.origin else None,
    )
    return ExitTimeCreatedOut(exit_time=ExitTimeOut.model_validate(row), warnings=result.warnings)


@router.post("/daily-plan/{plan_id}/exit-times/compare", response_model=list[ExitTimeCandidateOut])
def compare_exit_times(
    plan_id: str,
    request: ExitTimeCompareRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
    travel_lookup: TravelLookup = Depends(get_travel_lookup),
):
    """One candidate per travel method, latest departure first. Nothing is stored."""
    plan = plan_service.get_plan_for_user(db, plan_id, user_id)
    commitment = request.commitment.to_commitment(plan.wake_time)
    results = compare_travel_methods(
        commitment,
        request.travel_methods,
        _preparation(request.preparation_minutes, commitment.preparation_minutes),
        travel_lookup,
        origin=request.origin.to_location() if request.origin else None,
        plan_start=plan.plan_start,
        blocks=plan.time_blocks,
    )
    return [candidate_response(r) for r in results]


def _preparation(*values: Optional[int]) -> int:
    for value in values:
        if value is not None:
            return value
    return settings.default_preparation_minutes
