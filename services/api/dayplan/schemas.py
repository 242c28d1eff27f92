"""Pydantic schemas for the Dayplan API.

Request/response models for:
- Daily plans, time blocks and exit times
- Exit gate templates and evaluation
- Shopping optimization and the store catalog

All plan times are naive local wall-clock datetimes. Aware datetimes are
converted to the wake time's offset (or their own) and the offset dropped.
"""

from datetime import date, datetime, time
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from .services.exit_time import Commitment
from .services.plan_builder import Routine, Task
from .services.shopping_optimizer import ShoppingConstraints, ShoppingItem
from .services.travel import Location


def to_wall_clock(value: datetime, reference: Optional[datetime] = None) -> datetime:
    if value.tzinfo is None:
        return value
    if reference is not None and reference.tzinfo is not None:
        value = value.astimezone(reference.tzinfo)
    return value.replace(tzinfo=None)


def _at(value: Union[datetime, time], day: date, reference: Optional[datetime]) -> datetime:
    if isinstance(value, datetime):
        return to_wall_clock(value, reference)
    return datetime.combine(day, value.replace(tzinfo=None))


# --- Shared ---

class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: Optional[str] = Field(None, max_length=200)

    def to_location(self) -> Location:
        return Location(self.latitude, self.longitude, self.name)


class CommitmentIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=200)
    start_time: datetime
    end_time: datetime
    location: Optional[LocationIn] = None
    travel_method: Optional[str] = None
    preparation_minutes: Optional[int] = Field(None, ge=0)
    # Known door-to-door minutes; skips the travel lookup
    travel_minutes: Optional[int] = Field(None, ge=0)
    anchor_type: str = "other"  # class | seminar | workshop | appointment | other

    def to_commitment(self, reference: Optional[datetime] = None) -> Commitment:
        return Commitment(
            id=self.id,
            title=self.title,
            start_time=to_wall_clock(self.start_time, reference),
            end_time=to_wall_clock(self.end_time, reference),
            location=self.location.to_location() if self.location else None,
            travel_method=self.travel_method,
            preparation_minutes=self.preparation_minutes,
            travel_minutes=self.travel_minutes,
            anchor_type=self.anchor_type,
        )


# --- Daily plan ---

class TaskIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=200)
    estimated_minutes: int = Field(60, gt=0, le=480)
    deadline: Optional[datetime] = None

    def to_task(self, reference: Optional[datetime] = None) -> Task:
        return Task(
            id=self.id,
            title=self.title,
            minutes=self.estimated_minutes,
            deadline=to_wall_clock(self.deadline, reference) if self.deadline else None,
        )


class RoutineIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    minutes: int = Field(..., gt=0, le=240)

    def to_routine(self) -> Routine:
        return Routine(self.name, self.minutes)


class PlanGenerateRequest(BaseModel):
    plan_date: Optional[date] = None  # defaults to the wake time's date
    wake_time: Union[datetime, time]
    sleep_time: Union[datetime, time]
    energy_state: str
    current_location: Optional[LocationIn] = None
    commitments: list[CommitmentIn] = []
    tasks: list[TaskIn] = []
    morning_routine: Optional[RoutineIn] = None
    evening_routine: Optional[RoutineIn] = None
    # Client clock; server time when omitted
    now: Optional[datetime] = None

    def resolve(self) -> dict[str, Any]:
        """Naive datetimes ready for the plan service."""
        reference = self.wake_time if isinstance(self.wake_time, datetime) else None
        if self.plan_date is not None:
            day = self.plan_date
        elif reference is not None:
            day = to_wall_clock(reference).date()
        else:
            day = date.today()

        return {
            "plan_date": day,
            "wake_time": _at(self.wake_time, day, reference),
            "sleep_time": _at(self.sleep_time, day, reference),
            "energy_state": self.energy_state,
            "current_location": self.current_location.to_location() if self.current_location else None,
            "commitments": [c.to_commitment(reference) for c in self.commitments],
            "tasks": [t.to_task(reference) for t in self.tasks],
            "morning_routine": self.morning_routine.to_routine() if self.morning_routine else None,
            "evening_routine": self.evening_routine.to_routine() if self.evening_routine else None,
            "now": to_wall_clock(self.now, reference) if self.now else None,
        }


class TimeBlockOut(BaseModel):
    id: str
    plan_id: str
    start_time: datetime
    end_time: datetime
    activity_type: str
    activity_name: str
    activity_id: Optional[str] = None
    is_fixed: bool
    sequence_order: int
    status: str
    skip_reason: Optional[str] = None
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_json")

    class Config:
        from_attributes = True


class ExitTimeOut(BaseModel):
    id: str
    plan_id: str
    time_block_id: Optional[str] = None
    commitment_id: str
    exit_time: datetime
    travel_duration: int
    preparation_time: int
    travel_method: str

    class Config:
        from_attributes = True


class DailyPlanOut(BaseModel):
    id: str
    user_id: str
    plan_date: date
    wake_time: datetime
    sleep_time: datetime
    plan_start: datetime
    generated_after_now: bool
    energy_state: str
    status: str
    time_blocks: list[TimeBlockOut]
    exit_times: list[ExitTimeOut]
    warnings: list[dict] = []
    skipped_meals: list[dict] = []
    chains: list[dict] = []
    wake_ramp: Optional[dict] = None
    deferred_tasks: list[str] = []


class BlockSkipRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# --- Exit times ---

class ExitTimeRequest(BaseModel):
    commitment: CommitmentIn
    travel_method: Optional[str] = None
    preparation_minutes: Optional[int] = Field(None, ge=0)
    origin: Optional[LocationIn] = None


class ExitTimeCompareRequest(BaseModel):
    commitment: CommitmentIn
    travel_methods: list[str] = Field(..., min_length=1)
    preparation_minutes: Optional[int] = Field(None, ge=0)
    origin: Optional[LocationIn] = None


class ExitTimeCandidateOut(BaseModel):
    commitment_id: str
    exit_time: datetime
    travel_duration: int
    preparation_time: int
    travel_method: str
    time_block_id: Optional[str] = None
    warnings: list[dict] = []


class ExitTimeCreatedOut(BaseModel):
    exit_time: ExitTimeOut
    warnings: list[dict] = []


# --- Exit gate ---

class GateConditionIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: Optional[str] = Field(None, max_length=200)
    satisfied: bool = False


class GateConditionOut(BaseModel):
    id: str
    name: str
    satisfied: bool


class GateTemplateUpdate(BaseModel):
    conditions: list[GateConditionIn]


class GateTemplateOut(BaseModel):
    conditions: list[GateConditionOut]


class GateEvaluateRequest(BaseModel):
    # Restrict to these condition ids (per-commitment gate)
    tags: Optional[list[str]] = None
    # Use the gate tags of this exit-gate block instead
    block_id: Optional[str] = None
    satisfied: dict[str, bool] = {}
    satisfy_all: bool = False


class GateEvaluationOut(BaseModel):
    status: str  # ready | blocked
    conditions: list[GateConditionOut]
    blocked_reasons: list[str]


# --- Shopping ---

class ShoppingItemIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: float = Field(1, gt=0)
    unit: Optional[str] = None
    priority: str = "preferred"  # essential | preferred | optional
    category: Optional[str] = None

    def to_item(self) -> ShoppingItem:
        return ShoppingItem(
            name=self.name,
            quantity=self.quantity,
            unit=self.unit,
            priority=self.priority,
            category=self.category,
        )


class ShoppingConstraintsIn(BaseModel):
    max_budget: Optional[float] = Field(None, ge=0)
    max_travel_time: Optional[int] = Field(None, ge=0)
    preferred_stores: list[str] = []
    prioritize_price: bool = False
    prioritize_time: bool = False
    shop_at: Optional[datetime] = None

    def to_constraints(self) -> ShoppingConstraints:
        return ShoppingConstraints(
            max_budget=self.max_budget,
            max_travel_time=self.max_travel_time,
            preferred_stores=list(self.preferred_stores),
            prioritize_price=self.prioritize_price,
            prioritize_time=self.prioritize_time,
            shop_at=to_wall_clock(self.shop_at) if self.shop_at else None,
        )


class OptimizeRequest(BaseModel):
    items: list[ShoppingItemIn]
    strategy: str = "balanced"  # cheapest | fastest | balanced
    constraints: ShoppingConstraintsIn = Field(default_factory=ShoppingConstraintsIn)
    home: Optional[LocationIn] = None
    travel_method: Optional[str] = None


class OpeningHoursOut(BaseModel):
    open: str
    close: str


class StoreOut(BaseModel):
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    price_level: str
    user_rating: Optional[float] = None
    opening_hours: dict[str, OpeningHoursOut]
    prices: dict[str, float]


class ShoppingItemOut(BaseModel):
    name: str
    quantity: float
    unit: Optional[str] = None
    priority: str
    category: Optional[str] = None


class ItemAssignmentOut(ShoppingItemOut):
    unit_price: float
    line_cost: float


class StoreRecommendationOut(BaseModel):
    store: StoreOut
    items: list[ItemAssignmentOut]
    subtotal: float
    travel_time: int
    dwell_minutes: int


class OptimizedShoppingListOut(BaseModel):
    strategy: str
    basis: Optional[str] = None
    items: list[ShoppingItemOut]
    stores: list[StoreRecommendationOut]
    total_estimated_cost: float
    total_estimated_time: int
    unfulfilled: list[ShoppingItemOut]
    warnings: list[dict]
    feasible: bool
