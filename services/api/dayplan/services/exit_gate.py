"""Exit gate: a checklist that must be fully satisfied before leaving.

The gate is a small value object rebuilt per request. Only the per-user
template (which conditions exist and their names) is persisted; whether each
condition is satisfied today travels with the evaluation request.
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Optional, Sequence

from ..errors import ConditionNotFoundError, InvalidInputError

GATE_READY = "ready"
GATE_BLOCKED = "blocked"


@dataclass
class GateCondition:
    id: str
    name: str
    satisfied: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_GATE_CONDITIONS: tuple[GateCondition, ...] = (
    GateCondition("keys", "Keys present"),
    GateCondition("phone", "Phone in hand"),
    GateCondition("water", "Water bottle filled"),
    GateCondition("meds", "Meds taken"),
    GateCondition("pet-fed", "Pet fed"),
    GateCondition("bag-packed", "Bag packed"),
    GateCondition("eyeglasses", "Eyeglasses on"),
)


class ExitGate:
    def __init__(self, conditions: Iterable[GateCondition] = ()):
        self._conditions: dict[str, GateCondition] = {}
        for condition in conditions:
            # Copy so the defaults are never mutated through a gate
            self._conditions[condition.id] = GateCondition(
                condition.id, condition.name, condition.satisfied
            )

    @classmethod
    def create_default(
        cls, defaults: Sequence[GateCondition] = DEFAULT_GATE_CONDITIONS
    ) -> "ExitGate":
        return cls(defaults)

    @classmethod
    def from_gate_tags(
        cls,
        tags: Iterable[str],
        defaults: Sequence[GateCondition] = DEFAULT_GATE_CONDITIONS,
    ) -> "ExitGate":
        """Only the default conditions named in `tags`, in default order, all unsatisfied.

        Unknown tags are ignored.
        """
        wanted = set(tags)
        return cls(
            GateCondition(c.id, c.name, False) for c in defaults if c.id in wanted
        )

    @classmethod
    def from_template(
        cls,
        conditions: Iterable[dict],
        defaults: Sequence[GateCondition] = DEFAULT_GATE_CONDITIONS,
    ) -> "ExitGate":
        return cls(
            GateCondition(c["id"], c["name"], c["satisfied"])
            for c in merge_template(conditions, defaults)
        )

    @property
    def conditions(self) -> list[GateCondition]:
        return list(self._conditions.values())

    @property
    def blocked_reasons(self) -> list[str]:
        return [c.name for c in self._conditions.values() if not c.satisfied]

    @property
    def status(self) -> str:
        return GATE_BLOCKED if self.blocked_reasons else GATE_READY

    def evaluate(self) -> dict:
        reasons = self.blocked_reasons
        return {
            "status": GATE_BLOCKED if reasons else GATE_READY,
            "conditions": [c.to_dict() for c in self._conditions.values()],
            "blocked_reasons": reasons,
        }

    def toggle(self, condition_id: str, satisfied: Optional[bool] = None) -> GateCondition:
        """Set a condition; flips it when `satisfied` is None."""
        condition = self._conditions.get(condition_id)
        if condition is None:
            raise ConditionNotFoundError(condition_id)
        condition.satisfied = (not condition.satisfied) if satisfied is None else bool(satisfied)
        return condition

    def reset(self):
        for condition in self._conditions.values():
            condition.satisfied = False

    def satisfy_all(self):
        for condition in self._conditions.values():
            condition.satisfied = True

    def __contains__(self, condition_id: str) -> bool:
        return condition_id in self._conditions

    def __len__(self) -> int:
        return len(self._conditions)


def merge_template(
    conditions: Iterable[dict],
    defaults: Sequence[GateCondition] = DEFAULT_GATE_CONDITIONS,
) -> list[dict]:
    """Merge a stored/submitted template over the default set.

    Default conditions always come first, in default order, with any user
    override of name/satisfied applied. User-defined extras follow in the
    order given. Duplicate ids keep the first occurrence.
    """
    default_ids = {c.id for c in defaults}
    overrides: dict[str, dict] = {}
    extras: dict[str, dict] = {}

    for raw in conditions:
        condition_id = (raw.get("id") or "").strip()
        if not condition_id:
            raise InvalidInputError("Gate condition id is required")
        if condition_id in default_ids:
            overrides.setdefault(condition_id, raw)
        else:
            extras.setdefault(condition_id, raw)

    merged = []
    for default in defaults:
        override = overrides.get(default.id, {})
        merged.append({
            "id": default.id,
            "name": override.get("name") or default.name,
            "satisfied": bool(override.get("satisfied", default.satisfied)),
        })
    for condition_id, raw in extras.items():
        merged.append({
            "id": condition_id,
            "name": raw.get("name") or condition_id,
            "satisfied": bool(raw.get("satisfied", False)),
        })
    return merged
