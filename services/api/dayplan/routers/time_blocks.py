from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..schemas import BlockSkipRequest, TimeBlockOut
from ..services import plan_service

router = APIRouter()


@router.post("/time-blocks/{block_id}/complete", response_model=TimeBlockOut)
def complete_time_block(
    block_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Mark done; stamps completed_at/completed_by into metadata."""
    block = plan_service.get_block_for_user(db, block_id, user_id)
    return plan_service.complete_block(db, block, user_id)


@router.post("/time-blocks/{block_id}/uncomplete", response_model=TimeBlockOut)
def uncomplete_time_block(
    block_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    block = plan_service.get_block_for_user(db, block_id, user_id)
    return plan_service.uncomplete_block(db, block)


@router.post("/time-blocks/{block_id}/skip", response_model=TimeBlockOut)
def skip_time_block(
    block_id: str,
    request: Optional[BlockSkipRequest] = Body(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    block = plan_service.get_block_for_user(db, block_id, user_id)
    return plan_service.skip_block(db, block, request.reason if request else None)
