import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from ..errors import InvalidInputError
from ..settings import settings
from .travel import Location, TravelLookup, lookup_minutes, validate_travel_method

logger = logging.getLogger(__name__)


@dataclass
class Commitment:
    """An external appointment the plan must get the user to on time."""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    location: Optional[Location] = None
    travel_method: Optional[str] = None
    preparation_minutes: Optional[int] = None
    # Known duration overrides the travel lookup
    travel_minutes: Optional[int] = None
    # Picks the execution chain template
    anchor_type: str = "other"


@dataclass
class ExitTimeResult:
    commitment_id: str
    exit_time: datetime
    travel_duration: int
    preparation_time: int
    travel_method: str
    time_block: Optional[Any] = None
    warnings: list[dict] = field(default_factory=list)

    @property
    def time_block_id(self) -> Optional[str]:
        return getattr(self.time_block, "id", None) if self.time_block is not None else None


def find_block_before(blocks: Iterable[Any], moment: datetime) -> Optional[Any]:
    """Block whose end is closest to, but not after, `moment`.

    This is the last thing the user can finish before leaving.
    """
    candidates = [b for b in blocks if b.end_time <= moment]
    if not candidates:
        return None
    return max(candidates, key=lambda b: (b.end_time, getattr(b, "sequence_order", 0) or 0))


def resolve_travel_duration(
    commitment: Commitment,
    travel_method: str,
    travel_lookup: TravelLookup,
    origin: Optional[Location],
) -> int:
    if commitment.travel_minutes is not None:
        return commitment.travel_minutes
    if commitment.location is None or origin is None:
        return settings.default_travel_minutes
    return lookup_minutes(travel_lookup, origin, commitment.location, travel_method)


def compute_exit_time(
    commitment: Commitment,
    travel_method: str,
    preparation_minutes: int,
    travel_lookup: TravelLookup,
    origin: Optional[Location] = None,
    plan_start: Optional[datetime] = None,
    blocks: Sequence[Any] = (),
) -> ExitTimeResult:
    """exit_time = start - travel - preparation, linked to the block that must finish first.

    An exit time before `plan_start` is reported as a warning, never clamped.
    """
    validate_travel_method(travel_method)
    if preparation_minutes < 0:
        raise InvalidInputError("preparation_minutes must be >= 0")

    travel_duration = resolve_travel_duration(commitment, travel_method, travel_lookup, origin)
    if travel_duration < 0:
        raise InvalidInputError("travel duration must be >= 0")

    exit_time = commitment.start_time - timedelta(minutes=travel_duration + preparation_minutes)

    warnings = []
    if plan_start is not None and exit_time < plan_start:
        logger.warning(
            f"Exit time {exit_time:%H:%M} for commitment {commitment.id} is before plan start {plan_start:%H:%M}"
        )
        warnings.append({
            "code": "exit_before_plan_start",
            "commitment_id": commitment.id,
            "exit_time": exit_time.isoformat(),
            "plan_start": plan_start.isoformat(),
            "message": f"Leaving for '{commitment.title}' requires departing before the plan starts",
        })

    return ExitTimeResult(
        commitment_id=commitment.id,
        exit_time=exit_time,
        travel_duration=travel_duration,
        preparation_time=preparation_minutes,
        travel_method=travel_method,
        time_block=find_block_before(blocks, exit_time),
        warnings=warnings,
    )


def compare_travel_methods(
    commitment: Commitment,
    travel_methods: Sequence[str],
    preparation_minutes: int,
    travel_lookup: TravelLookup,
    origin: Optional[Location] = None,
    plan_start: Optional[datetime] = None,
    blocks: Sequence[Any] = (),
) -> list[ExitTimeResult]:
    """One independent candidate per method, latest departure first."""
    if not travel_methods:
        raise InvalidInputError("At least one travel method is required")

    results = [
        compute_exit_time(
            commitment,
            method,
            preparation_minutes,
            travel_lookup,
            origin=origin,
            plan_start=plan_start,
            blocks=blocks,
        )
        for method in dict.fromkeys(travel_methods)
    ]
    results.sort(key=lambda r: r.travel_method)
    results.sort(key=lambda r: r.exit_time, reverse=True)
    return results
