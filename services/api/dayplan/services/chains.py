"""Execution chains: the steps that get the user out of the door for a commitment.

A chain ends at the commitment's exit time with an exit-gate step whose
`gate_tags` name the checklist conditions to confirm before leaving. Chains
are laid out backward from the exit time; optional steps are dropped first
when the morning is short.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

ANCHOR_TYPES = ("class", "seminar", "workshop", "appointment", "other")

DEFAULT_GATE_TAGS = ("keys", "phone", "water", "meds", "pet-fed", "bag-packed")

EXIT_GATE_STEP = "exit-gate"


@dataclass(frozen=True)
class ChainStep:
    id: str
    name: str
    minutes: int
    required: bool = True
    gate_tags: tuple[str, ...] = ()


FEED_PET = ChainStep("feed-pet", "Feed pet", 5)
BATHROOM = ChainStep("bathroom", "Bathroom", 10)
HYGIENE = ChainStep("hygiene", "Hygiene (brush teeth)", 5)
SHOWER = ChainStep("shower", "Shower", 15, required=False)
DRESS = ChainStep("dress", "Get dressed", 10)
PACK_BAG = ChainStep("pack-bag", "Pack bag", 10)
EXIT_GATE = ChainStep(EXIT_GATE_STEP, "Exit Readiness Check", 2, gate_tags=DEFAULT_GATE_TAGS)


def _review(kind: str) -> ChainStep:
    return ChainStep("review-materials", f"Review {kind} materials", 15, required=False)


# Earliest step first; every chain ends at the exit gate
CHAIN_TEMPLATES: dict[str, tuple[ChainStep, ...]] = {
    "class": (FEED_PET, BATHROOM, HYGIENE, SHOWER, DRESS, PACK_BAG, EXIT_GATE),
    "seminar": (FEED_PET, BATHROOM, HYGIENE, SHOWER, DRESS, _review("seminar"), PACK_BAG, EXIT_GATE),
    "workshop": (FEED_PET, BATHROOM, HYGIENE, SHOWER, DRESS, _review("workshop"), PACK_BAG, EXIT_GATE),
    "appointment": (BATHROOM, HYGIENE, DRESS, PACK_BAG, EXIT_GATE),
    "other": (FEED_PET, BATHROOM, HYGIENE, SHOWER, DRESS, PACK_BAG, EXIT_GATE),
}


def validate_anchor_type(anchor_type: str) -> str:
    if anchor_type not in ANCHOR_TYPES:
        raise InvalidInputError(
            f"Unknown anchor type '{anchor_type}'", allowed=list(ANCHOR_TYPES)
        )
    return anchor_type


def get_chain_template(anchor_type: Optional[str]) -> tuple[ChainStep, ...]:
    return CHAIN_TEMPLATES.get(anchor_type or "other", CHAIN_TEMPLATES["other"])


def template_minutes(steps: tuple[ChainStep, ...], required_only: bool = False) -> int:
    return sum(s.minutes for s in steps if s.required or not required_only)


@dataclass
class PlacedStep:
    step: ChainStep
    start_time: datetime
    end_time: datetime


@dataclass
class ExecutionChain:
    commitment_id: str
    anchor_type: str
    exit_time: datetime
    steps: list[PlacedStep] = field(default_factory=list)
    skipped_steps: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def chain_id(self) -> str:
        return f"chain-{self.commitment_id}"

    @property
    def start_time(self) -> datetime:
        return self.steps[0].start_time if self.steps else self.exit_time

    @property
    def gate_tags(self) -> list[str]:
        for placed in self.steps:
            if placed.step.id == EXIT_GATE_STEP:
                return list(placed.step.gate_tags)
        return []

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "commitment_id": self.commitment_id,
            "anchor_type": self.anchor_type,
            "start_time": self.start_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "steps": [
                {
                    "step_id": p.step.id,
                    "name": p.step.name,
                    "start_time": p.start_time.isoformat(),
                    "end_time": p.end_time.isoformat(),
                    "required": p.step.required,
                }
                for p in self.steps
            ],
            "skipped_steps": list(self.skipped_steps),
            "gate_tags": self.gate_tags,
            "truncated": self.truncated,
        }


def build_chain(
    commitment_id: str,
    anchor_type: str,
    exit_time: datetime,
    earliest: datetime,
) -> ExecutionChain:
    """Lay the template out backward from `exit_time`, never before `earliest`.

    Optional steps are dropped, earliest first, until the chain fits. If the
    required steps alone don't fit, the chain stops at the first one that
    doesn't and is marked truncated.
    """
    chain = ExecutionChain(commitment_id=commitment_id, anchor_type=anchor_type, exit_time=exit_time)
    steps = list(get_chain_template(anchor_type))
    budget = int((exit_time - earliest).total_seconds() // 60)

    total = template_minutes(tuple(steps))
    for step in list(steps):
        if total <= budget:
            break
        if not step.required:
            steps.remove(step)
            chain.skipped_steps.append(step.id)
            total -= step.minutes

    cursor = exit_time
    placed: list[PlacedStep] = []
    for step in reversed(steps):
        span = timedelta(minutes=step.minutes)
        if cursor - span < earliest:
            chain.truncated = True
            logger.warning(
                f"Chain for {commitment_id} truncated at '{step.id}': no room before {exit_time:%H:%M}"
            )
            break
        placed.append(PlacedStep(step, cursor - span, cursor))
        cursor -= span

    chain.steps = list(reversed(placed))
    return chain
