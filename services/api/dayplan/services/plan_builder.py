"""Daily plan builder.

Turns (plan start, sleep time, energy state, commitments) into an ordered list
of non-overlapping time blocks. Pure: nothing here touches the database.

Algorithm:
1. Pin commitments: the execution chain ending at the exit time, a travel
   block, an arrival buffer for the preparation minutes, then the commitment.
2. Seed the day: routine, transition buffer, first meal still in its window.
3. Fill the gaps up to the wind-down with the energy-specific cycle, placing
   lunch and dinner when they fall due and shortening flexible blocks so
   nothing runs into a pinned block. The user's tasks take the first focus
   slots, up to a per-energy limit.
4. End with the evening routine.
"""

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta
from typing import Optional, Sequence

from ..settings import settings
from .chains import EXIT_GATE_STEP, ExecutionChain, build_chain
from .exit_time import Commitment, ExitTimeResult, compute_exit_time, find_block_before
from .travel import Location, TravelLookup, estimate_travel_minutes
from .wake_ramp import WakeRamp, build_wake_ramp

logger = logging.getLogger(__name__)

MIN_FLEX_MINUTES = 15
MIN_MEAL_GAP_MINUTES = 180
EVENING_ROUTINE_MINUTES = 20
MIN_EVENING_ROUTINE_MINUTES = 10

# User tasks that may replace focus slots, per energy
TASK_LIMITS = {"low": 1, "medium": 2, "high": 3}


@dataclass(frozen=True)
class MealSlot:
    key: str
    name: str
    target: time
    window_start: time
    window_end: time
    minutes: int


MEAL_SLOTS = (
    MealSlot("breakfast", "Breakfast", time(8, 0), time(6, 30), time(11, 30), 15),
    MealSlot("lunch", "Lunch", time(13, 0), time(11, 30), time(15, 30), 30),
    MealSlot("dinner", "Dinner", time(19, 0), time(17, 0), time(21, 30), 45),
)


@dataclass
class Activity:
    activity_type: str
    name: str
    minutes: int
    shrinkable: bool = True
    metadata: dict = field(default_factory=dict)
    source: str = "cycle"  # cycle | seed | meal | task
    meal: Optional[MealSlot] = None
    task: Optional["Task"] = None
    activity_id: Optional[str] = None


ENERGY_CYCLES = {
    "low": (
        Activity("study", "Light Focus Block", 30),
        Activity("buffer", "Rest", 15),
        Activity("free", "Recovery Time", 45),
        Activity("buffer", "Rest", 15),
    ),
    "medium": (
        Activity("study", "Focus Block", 60),
        Activity("buffer", "Break", 10),
        Activity("free", "Free Time", 30),
        Activity("buffer", "Transition", 5),
    ),
    "high": (
        Activity("study", "Deep Work Block", 90),
        Activity("buffer", "Break", 10),
        Activity("study", "Focus Block", 60),
        Activity("buffer", "Break", 10),
    ),
}

# Focus blocks per day before the cycle falls back to free time
FOCUS_LIMITS = {"low": 2, "medium": 4, "high": 6}


@dataclass
class Task:
    """A to-do from the user; placed into a focus slot."""
    id: str
    title: str
    minutes: int = 60
    deadline: Optional[datetime] = None


@dataclass
class Routine:
    name: str
    minutes: int


def select_tasks(tasks: Sequence[Task], energy_state: str) -> tuple[list[Task], list[Task]]:
    """Return (selected, deferred): earliest deadline first, capped by energy."""
    ordered = sorted(
        enumerate(tasks),
        key=lambda pair: (pair[1].deadline is None, pair[1].deadline or datetime.min, pair[0]),
    )
    ordered = [task for _, task in ordered]
    limit = TASK_LIMITS[energy_state]
    return ordered[:limit], ordered[limit:]


@dataclass
class BlockDraft:
    start_time: datetime
    end_time: datetime
    activity_type: str
    activity_name: str
    is_fixed: bool = False
    activity_id: Optional[str] = None
    status: str = "pending"
    skip_reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    sequence_order: int = 0

    @property
    def minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


@dataclass
class FixedSegment:
    """Pinned blocks for one commitment: [chain steps], [travel], [arrival buffer], commitment."""
    commitment: Commitment
    blocks: list[BlockDraft]
    chain: Optional[ExecutionChain] = None

    @property
    def start(self) -> datetime:
        return self.blocks[0].start_time

    @property
    def end(self) -> datetime:
        return self.blocks[-1].end_time


@dataclass
class BuildResult:
    blocks: list[BlockDraft]
    exit_times: list[ExitTimeResult] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    skipped_meals: list[dict] = field(default_factory=list)
    chains: list[ExecutionChain] = field(default_factory=list)
    wake_ramp: Optional[WakeRamp] = None
    deferred_tasks: list[str] = field(default_factory=list)


def round_up_to_next_5_minutes(moment: datetime) -> datetime:
    rounded = moment.replace(second=0, microsecond=0)
    remainder = rounded.minute % 5
    if remainder:
        rounded += timedelta(minutes=5 - remainder)
    return rounded


def compute_plan_start(wake_time: datetime, now: datetime) -> tuple[datetime, bool]:
    """Return (plan_start, generated_after_now)."""
    plan_start = max(wake_time, round_up_to_next_5_minutes(now))
    return plan_start, plan_start > wake_time


def chain_blocks(chain: ExecutionChain) -> list[BlockDraft]:
    """One pinned block per placed step; the last is the exit gate."""
    blocks = []
    for placed in chain.steps:
        is_gate = placed.step.id == EXIT_GATE_STEP
        metadata = {
            "role": "exit-gate" if is_gate else "chain-step",
            "chain_id": chain.chain_id,
            "step_id": placed.step.id,
            "required": placed.step.required,
        }
        if is_gate:
            metadata["gate_tags"] = list(placed.step.gate_tags)
        blocks.append(BlockDraft(
            start_time=placed.start_time,
            end_time=placed.end_time,
            activity_type="chain",
            activity_name=placed.step.name,
            is_fixed=True,
            activity_id=chain.commitment_id,
            metadata=metadata,
        ))
    return blocks


def build_commitment_segments(
    commitments: Sequence[Commitment],
    plan_start: datetime,
    sleep_time: datetime,
    travel_lookup: TravelLookup,
    origin: Optional[Location] = None,
) -> tuple[list[FixedSegment], list[ExitTimeResult], list[dict]]:
    """Pin commitments and compute their exit times.

    Commitments that fall outside [plan_start, sleep_time] or collide with an
    earlier commitment are dropped with a warning.
    """
    segments: list[FixedSegment] = []
    exit_times: list[ExitTimeResult] = []
    warnings: list[dict] = []

    for commitment in sorted(commitments, key=lambda c: (c.start_time, c.id)):
        if commitment.start_time < plan_start or commitment.end_time > sleep_time:
            logger.warning(f"Commitment {commitment.id} outside plan window, dropped")
            warnings.append({
                "code": "commitment_outside_plan",
                "commitment_id": commitment.id,
                "message": f"'{commitment.title}' is outside the planned day",
            })
            continue

        method = commitment.travel_method or settings.default_travel_method
        prep = (
            commitment.preparation_minutes
            if commitment.preparation_minutes is not None
            else settings.default_preparation_minutes
        )
        result = compute_exit_time(
            commitment, method, prep, travel_lookup, origin=origin, plan_start=plan_start
        )

        anchor_metadata = {"role": "anchor", "anchor_type": commitment.anchor_type}
        if commitment.location and commitment.location.name:
            anchor_metadata["location"] = commitment.location.name

        blocks: list[BlockDraft] = []
        if not result.warnings:
            travel_end = result.exit_time + timedelta(minutes=result.travel_duration)
            if result.travel_duration > 0:
                blocks.append(BlockDraft(
                    start_time=result.exit_time,
                    end_time=travel_end,
                    activity_type="travel",
                    activity_name=f"Travel to {commitment.title}",
                    is_fixed=True,
                    activity_id=commitment.id,
                    metadata={"role": "travel", "travel_method": method},
                ))
            if prep > 0:
                blocks.append(BlockDraft(
                    start_time=travel_end,
                    end_time=commitment.start_time,
                    activity_type="buffer",
                    activity_name="Arrival buffer",
                    is_fixed=True,
                    activity_id=commitment.id,
                ))
        blocks.append(BlockDraft(
            start_time=commitment.start_time,
            end_time=commitment.end_time,
            activity_type="commitment",
            activity_name=commitment.title,
            is_fixed=True,
            activity_id=commitment.id,
            metadata=anchor_metadata,
        ))

        segment = FixedSegment(commitment=commitment, blocks=blocks)
        if segments and segment.start < segments[-1].end:
            logger.warning(f"Commitment {commitment.id} overlaps {segments[-1].commitment.id}, dropped")
            warnings.append({
                "code": "commitment_overlap",
                "commitment_id": commitment.id,
                "conflicts_with": segments[-1].commitment.id,
                "message": f"'{commitment.title}' overlaps '{segments[-1].commitment.title}'",
            })
            continue

        if not result.warnings:
            earliest = segments[-1].end if segments else plan_start
            segment.chain = build_chain(commitment.id, commitment.anchor_type, result.exit_time, earliest)
            segment.blocks[:0] = chain_blocks(segment.chain)
            if segment.chain.truncated:
                warnings.append({
                    "code": "chain_truncated",
                    "commitment_id": commitment.id,
                    "skipped_steps": segment.chain.skipped_steps,
                    "message": f"Not enough time to get ready for '{commitment.title}'",
                })

        segments.append(segment)
        exit_times.append(result)
        warnings.extend(result.warnings)

    return segments, exit_times, warnings


class _DayBuilder:
    def __init__(
        self,
        plan_start: datetime,
        sleep_time: datetime,
        energy_state: str,
        generated_after_now: bool,
        tasks: Sequence[Task] = (),
        morning_routine: Optional[Routine] = None,
        evening_routine: Optional[Routine] = None,
    ):
        self.plan_start = plan_start
        self.sleep_time = sleep_time
        self.energy_state = energy_state
        self.buffer = timedelta(minutes=settings.buffer_minutes)
        self.evening = evening_routine or Routine("Evening Routine", EVENING_ROUTINE_MINUTES)
        self.wind_down_start = max(plan_start, sleep_time - timedelta(minutes=self.evening.minutes))

        self.cursor = plan_start
        self.blocks: list[BlockDraft] = []
        self.skipped_meals: list[dict] = []
        self.last_meal_end: Optional[datetime] = None

        self.cycle = itertools.cycle(ENERGY_CYCLES[energy_state])
        self.focus_left = FOCUS_LIMITS[energy_state]

        if generated_after_now:
            routine = Activity("routine", "Reset/Admin", 10, source="seed")
        elif morning_routine is not None:
            routine = Activity("routine", morning_routine.name, morning_routine.minutes, source="seed")
        else:
            routine = Activity("routine", "Morning Routine", 30, source="seed")
        self.seed = deque([
            routine,
            Activity("buffer", "Transition", settings.buffer_minutes, source="seed"),
        ])
        self.seed_meal_pending = True

        self.meals = deque(MEAL_SLOTS)
        self.tasks = deque(tasks)

    # --- meals ---

    def _at(self, t: time) -> datetime:
        return datetime.combine(self.plan_start.date(), t)

    def _skip_meal(self, slot: MealSlot, reason: str):
        logger.info(f"Meal {slot.key} skipped: {reason}")
        self.skipped_meals.append({"meal": slot.key, "reason": reason})

    def _meal_due(self, slot: MealSlot) -> datetime:
        due = self._at(slot.target)
        if self.last_meal_end is not None:
            due = max(due, self.last_meal_end + timedelta(minutes=MIN_MEAL_GAP_MINUTES))
        return due

    def _meal_activity(self, slot: MealSlot, reason: str) -> Activity:
        return Activity(
            "meal",
            slot.name,
            slot.minutes,
            shrinkable=False,
            source="meal",
            meal=slot,
            metadata={
                "meal": slot.key,
                "target_time": self._meal_due(slot).isoformat(),
                "placement_reason": reason,
            },
        )

    def _next_due_meal(self) -> Optional[tuple[MealSlot, datetime]]:
        while self.meals:
            slot = self.meals[0]
            window_end = self._at(slot.window_end)
            if window_end <= self.cursor:
                self.meals.popleft()
                self._skip_meal(slot, "Past meal window")
                continue
            due = self._meal_due(slot)
            if due >= window_end:
                self.meals.popleft()
                self._skip_meal(slot, "Spacing constraint")
                continue
            return slot, due
        return None

    # --- activities ---

    def _task_activity(self, task: Task) -> Activity:
        metadata = {"task_id": task.id}
        if task.deadline is not None:
            metadata["deadline"] = task.deadline.isoformat()
        return Activity(
            "task",
            task.title,
            task.minutes,
            shrinkable=False,
            source="task",
            task=task,
            activity_id=task.id,
            metadata=metadata,
        )

    def _next_cycle_activity(self) -> Activity:
        activity = replace(next(self.cycle))
        if activity.activity_type == "study":
            if self.focus_left <= 0:
                return Activity("free", "Free Time", activity.minutes)
            self.focus_left -= 1
            if self.tasks:
                return self._task_activity(self.tasks.popleft())
        return activity

    def _next_activity(self) -> Activity:
        if self.seed:
            return self.seed.popleft()

        upcoming = self._next_due_meal()
        if self.seed_meal_pending:
            self.seed_meal_pending = False
            if upcoming:
                slot, _ = upcoming
                self.meals.popleft()
                return self._meal_activity(slot, "seed")

        if upcoming:
            slot, due = upcoming
            if self.cursor >= due:
                self.meals.popleft()
                return self._meal_activity(slot, "default")
            room = due - self.cursor
            if room < timedelta(minutes=MIN_FLEX_MINUTES):
                minutes = max(1, int(room.total_seconds() // 60))
                return Activity("buffer", "Transition", minutes)
            activity = self._next_cycle_activity()
            if timedelta(minutes=activity.minutes) > room:
                if not activity.shrinkable:
                    self._give_back(activity)
                    return Activity("free", "Free Time", int(room.total_seconds() // 60))
                activity.minutes = int(room.total_seconds() // 60)
            return activity

        return self._next_cycle_activity()

    def _give_back(self, activity: Activity):
        if activity.source == "seed":
            self.seed.appendleft(activity)
        elif activity.source == "meal" and activity.meal is not None:
            self.meals.appendleft(activity.meal)
        elif activity.source == "task" and activity.task is not None:
            self.tasks.appendleft(activity.task)
            self.focus_left += 1
        elif activity.activity_type == "study":
            self.focus_left += 1

    # --- emission ---

    def _emit(self, activity_type: str, name: str, end: datetime, **kwargs):
        self.blocks.append(BlockDraft(
            start_time=self.cursor,
            end_time=end,
            activity_type=activity_type,
            activity_name=name,
            **kwargs,
        ))
        self.cursor = end

    def _emit_activity(self, activity: Activity, span: timedelta):
        self._emit(
            activity.activity_type,
            activity.name,
            self.cursor + span,
            activity_id=activity.activity_id,
            metadata=dict(activity.metadata),
        )
        if activity.activity_type == "meal":
            self.last_meal_end = self.cursor

    def _emit_segment(self, segment: FixedSegment):
        for block in segment.blocks:
            self.blocks.append(block)
        self.cursor = segment.end

    def build(self, segments: Sequence[FixedSegment]) -> list[BlockDraft]:
        fixed = deque(segments)

        while True:
            upcoming = fixed[0] if fixed else None
            limit = upcoming.start if upcoming else self.wind_down_start

            if self.cursor >= limit:
                if upcoming is None:
                    break
                self._emit_segment(fixed.popleft())
                next_limit = fixed[0].start if fixed else self.sleep_time
                gap = min(self.buffer, next_limit - self.cursor)
                if gap > timedelta(0):
                    self._emit("buffer", "Transition", self.cursor + gap)
                continue

            room = limit - self.cursor
            activity = self._next_activity()
            span = timedelta(minutes=activity.minutes)

            if span <= timedelta(0):
                continue
            if span <= room:
                self._emit_activity(activity, span)
            elif activity.shrinkable and (
                room >= timedelta(minutes=MIN_FLEX_MINUTES) or activity.activity_type == "buffer"
            ):
                self._emit_activity(activity, room)
            else:
                # Doesn't fit before the next pinned block: pad the gap, retry later
                self._give_back(activity)
                if activity.source == "task" and room >= timedelta(minutes=MIN_FLEX_MINUTES):
                    self._emit("free", "Free Time", limit)
                else:
                    self._emit("buffer", "Transition", limit)

        while self._next_due_meal():
            self._skip_meal(self.meals.popleft(), "No room before sleep")

        start = max(self.cursor, self.wind_down_start)
        if self.sleep_time - start >= timedelta(minutes=min(MIN_EVENING_ROUTINE_MINUTES, self.evening.minutes)):
            self.cursor = start
            self._emit("routine", self.evening.name, self.sleep_time)

        for order, block in enumerate(self.blocks, start=1):
            block.sequence_order = order
        return self.blocks


def build_time_blocks(
    plan_start: datetime,
    sleep_time: datetime,
    energy_state: str,
    segments: Sequence[FixedSegment] = (),
    generated_after_now: bool = False,
) -> tuple[list[BlockDraft], list[dict]]:
    """Return (blocks, skipped_meals) covering [plan_start, sleep_time]."""
    builder = _DayBuilder(plan_start, sleep_time, energy_state, generated_after_now)
    blocks = builder.build(segments)
    return blocks, builder.skipped_meals


def build_day(
    plan_start: datetime,
    sleep_time: datetime,
    energy_state: str,
    commitments: Sequence[Commitment] = (),
    travel_lookup: Optional[TravelLookup] = None,
    origin: Optional[Location] = None,
    generated_after_now: bool = False,
    wake_time: Optional[datetime] = None,
    tasks: Sequence[Task] = (),
    morning_routine: Optional[Routine] = None,
    evening_routine: Optional[Routine] = None,
) -> BuildResult:
    """Pin commitments, fill the day, and link each exit time to its block."""
    segments: list[FixedSegment] = []
    exit_times: list[ExitTimeResult] = []
    warnings: list[dict] = []
    if commitments:
        segments, exit_times, warnings = build_commitment_segments(
            commitments, plan_start, sleep_time, travel_lookup or estimate_travel_minutes, origin=origin
        )

    selected, deferred = select_tasks(tasks, energy_state)
    builder = _DayBuilder(
        plan_start,
        sleep_time,
        energy_state,
        generated_after_now,
        tasks=selected,
        morning_routine=morning_routine,
        evening_routine=evening_routine,
    )
    blocks = builder.build(segments)

    for task in builder.tasks:
        logger.info(f"Task {task.id} did not fit into the day")
        warnings.append({
            "code": "task_not_scheduled",
            "task_id": task.id,
            "message": f"No room for '{task.title}' today",
        })

    for result in exit_times:
        result.time_block = find_block_before(blocks, result.exit_time)

    wake_ramp = build_wake_ramp(
        plan_start, wake_time or plan_start, energy_state, latest_end=builder.wind_down_start
    )

    return BuildResult(
        blocks=blocks,
        exit_times=exit_times,
        warnings=warnings,
        skipped_meals=builder.skipped_meals,
        chains=[s.chain for s in segments if s.chain is not None],
        wake_ramp=wake_ramp,
        deferred_tasks=[t.id for t in deferred],
    )
