import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..errors import InvalidInputError, StorageError
from ..models import ExitGateTemplate
from ..schemas import (
    GateEvaluateRequest,
    GateEvaluationOut,
    GateTemplateOut,
    GateTemplateUpdate,
)
from ..services import plan_service
from ..services.exit_gate import ExitGate, merge_template

logger = logging.getLogger(__name__)

router = APIRouter()


def load_gate(db: Session, user_id: str) -> ExitGate:
    """Stored template merged over the defaults; defaults alone when none is stored."""
    row = db.query(ExitGateTemplate).filter(ExitGateTemplate.user_id == user_id).first()
    return ExitGate.from_template(row.conditions_json if row else [])


@router.get("/exit-gate/template", response_model=GateTemplateOut)
def get_template(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return {"conditions": [c.to_dict() for c in load_gate(db, user_id).conditions]}


@router.put("/exit-gate/template", response_model=GateTemplateOut)
def put_template(
    update: GateTemplateUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Replace the user's template. Omitted default conditions come back with default values."""
    merged = merge_template([c.model_dump() for c in update.conditions])

    row = db.query(ExitGateTemplate).filter(ExitGateTemplate.user_id == user_id).first()
    if row is None:
        row = ExitGateTemplate(user_id=user_id, conditions_json=merged)
        db.add(row)
    else:
        row.conditions_json = merged
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save gate template for {user_id}: {e}")
        raise StorageError("Failed to save gate template", cause=e)

    return {"conditions": merged}


@router.post("/exit-gate/evaluate", response_model=GateEvaluationOut)
def evaluate_gate(
    request: GateEvaluateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    """Evaluate today's checklist against the user's template.

    With `block_id`, the gate tags of that exit-gate block pick the
    conditions. Unknown condition ids in `satisfied` are a 404.
    """
    gate = load_gate(db, user_id)

    tags = request.tags
    if request.block_id is not None:
        if tags is not None:
            raise InvalidInputError("Give either tags or block_id, not both")
        block = plan_service.get_block_for_user(db, request.block_id, user_id)
        tags = (block.metadata_json or {}).get("gate_tags")
        if tags is None:
            raise InvalidInputError("Time block has no exit gate", block_id=block.id)

    if tags is not None:
        gate = ExitGate.from_gate_tags(tags, defaults=gate.conditions)
    # Otherwise the template values are the starting state, e.g. a condition the user never needs

    if request.satisfy_all:
        gate.satisfy_all()
    for condition_id, satisfied in request.satisfied.items():
        gate.toggle(condition_id, satisfied)

    return gate.evaluate()
