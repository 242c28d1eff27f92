"""Wake ramp: the unhurried stretch between waking and the first real work."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

# Plans generated this long after waking skip the ramp
RAMP_SKIP_AFTER = timedelta(hours=2)
RAMP_SKIP_REASON = "Already awake"

RAMP_COMPONENTS = {
    "low": {"toilet": 20, "hygiene": 10, "shower": 25, "dress": 20, "buffer": 45},
    "medium": {"toilet": 15, "hygiene": 10, "shower": 20, "dress": 15, "buffer": 30},
    "high": {"toilet": 10, "hygiene": 10, "shower": 15, "dress": 15, "buffer": 25},
}


@dataclass
class WakeRamp:
    start_time: datetime
    end_time: datetime
    components: dict[str, int] = field(default_factory=dict)
    skipped: bool = False
    skip_reason: Optional[str] = None

    @property
    def minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "minutes": self.minutes,
            "components": dict(self.components),
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
        }


def should_skip_wake_ramp(plan_start: datetime, wake_time: datetime) -> bool:
    return plan_start > wake_time + RAMP_SKIP_AFTER


def build_wake_ramp(
    plan_start: datetime,
    wake_time: datetime,
    energy_state: str,
    latest_end: Optional[datetime] = None,
) -> WakeRamp:
    """Ramp starting at `plan_start`; its length depends on energy.

    Clamped to `latest_end` so it never runs past the wind-down.
    """
    if should_skip_wake_ramp(plan_start, wake_time):
        return WakeRamp(plan_start, plan_start, skipped=True, skip_reason=RAMP_SKIP_REASON)

    components = RAMP_COMPONENTS[energy_state]
    end = plan_start + timedelta(minutes=sum(components.values()))
    if latest_end is not None:
        end = max(plan_start, min(end, latest_end))
    return WakeRamp(plan_start, end, components=dict(components))
