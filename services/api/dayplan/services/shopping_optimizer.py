"""Shopping list optimizer.

Assigns each item to exactly one store that stocks it, then orders the stops.

Strategies:
- cheapest: every item goes to its lowest-priced store; stops are visited
  nearest-neighbour from home. 20 min dwell per store.
- fastest: hop to the nearest store that still covers something and take
  everything it has. 15 min dwell per store.
- balanced: build both, then pick by the caller's priority flags or by
  combined score = cost + minutes * time value.

Cost formula for balanced scoring follows the usual "time is money" rule:
total score = basket cost + travel/dwell minutes * (hourly value / 60).

Budget and time limits never drop items: violations are returned as warnings
with `feasible = False`.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..errors import InvalidInputError
from ..settings import settings
from .store_catalog import Store, normalize_item_name
from .travel import Location, TravelLookup, estimate_travel_minutes, home_location, lookup_minutes

logger = logging.getLogger(__name__)

STRATEGIES = ("cheapest", "fastest", "balanced")
PRIORITIES = ("essential", "preferred", "optional")

CHEAPEST_DWELL_MINUTES = 20
FASTEST_DWELL_MINUTES = 15

# Checked in order: the more specific categories come first
ITEM_CATEGORIES = {
    "frozen": ("frozen", "ice cream", "ice lolly"),
    "meat": ("chicken", "beef", "pork", "fish", "lamb", "turkey", "salmon"),
    "bakery": ("bread", "roll", "cake", "pastry", "bagel"),
    "dairy": ("milk", "cheese", "yogurt", "butter", "cream", "egg"),
    "produce": (
        "tomato", "onion", "carrot", "potato", "apple", "banana", "vegetable",
        "watermelon", "melon", "lettuce",
    ),
    "pantry": ("rice", "pasta", "flour", "oil", "salt", "sugar"),
    "beverages": ("juice", "soda", "water", "tea", "coffee"),
}

_CATEGORY_PATTERNS = {
    category: re.compile(
        r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")(?:e?s)?\b"
    )
    for category, keywords in ITEM_CATEGORIES.items()
}


def categorize_item(name: str) -> str:
    """Whole-word keyword match, so "watermelon" is not "water"."""
    lowered = name.lower()
    for category, pattern in _CATEGORY_PATTERNS.items():
        if pattern.search(lowered):
            return category
    return "other"


@dataclass
class ShoppingItem:
    name: str
    quantity: float = 1
    unit: Optional[str] = None
    priority: str = "preferred"
    category: Optional[str] = None


@dataclass
class ShoppingConstraints:
    max_budget: Optional[float] = None
    max_travel_time: Optional[int] = None  # minutes, travel + dwell
    preferred_stores: list[str] = field(default_factory=list)
    prioritize_price: bool = False
    prioritize_time: bool = False
    # Exclude stores closed at this moment
    shop_at: Optional[datetime] = None


@dataclass
class ItemAssignment:
    item: ShoppingItem
    unit_price: float
    line_cost: float


@dataclass
class StoreRecommendation:
    store: Store
    items: list[ItemAssignment]
    subtotal: float
    travel_time: int  # minutes from the previous stop (home for the first)
    dwell_minutes: int


@dataclass
class OptimizedShoppingList:
    strategy: str
    items: list[ShoppingItem]
    stores: list[StoreRecommendation]
    total_estimated_cost: float
    total_estimated_time: int
    unfulfilled: list[ShoppingItem] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    feasible: bool = True
    # Underlying route for balanced results: cheapest | fastest
    basis: Optional[str] = None

    def score(self, time_value_per_hour: float) -> float:
        return self.total_estimated_cost + self.total_estimated_time * time_value_per_hour / 60


class _TravelTable:
    """Memoizes lookups so each leg is asked for once per optimization."""

    def __init__(self, lookup: TravelLookup, method: str):
        self.lookup = lookup
        self.method = method
        self._cache: dict[tuple, int] = {}

    def minutes(self, origin: Location, destination: Location) -> int:
        key = (origin.latitude, origin.longitude, destination.latitude, destination.longitude)
        if key not in self._cache:
            self._cache[key] = lookup_minutes(self.lookup, origin, destination, self.method)
        return self._cache[key]


def _validate_items(items: Sequence[ShoppingItem]) -> list[ShoppingItem]:
    prepared = []
    for item in items:
        if not item.name or not item.name.strip():
            raise InvalidInputError("Shopping item name is required")
        if item.quantity <= 0:
            raise InvalidInputError(f"Quantity for '{item.name}' must be positive")
        if item.priority not in PRIORITIES:
            raise InvalidInputError(
                f"Unknown priority '{item.priority}'", allowed=list(PRIORITIES)
            )
        prepared.append(ShoppingItem(
            name=item.name.strip(),
            quantity=item.quantity,
            unit=item.unit,
            priority=item.priority,
            category=item.category or categorize_item(item.name),
        ))
    return prepared


def candidate_stores(
    stores: Sequence[Store], constraints: ShoppingConstraints
) -> tuple[list[Store], list[dict]]:
    warnings = []
    candidates = list(stores)

    if constraints.preferred_stores:
        wanted = {normalize_item_name(s) for s in constraints.preferred_stores}
        preferred = [
            s for s in candidates
            if s.id in constraints.preferred_stores or normalize_item_name(s.name) in wanted
        ]
        if preferred:
            candidates = preferred
        else:
            warnings.append({
                "code": "preferred_stores_unavailable",
                "message": "None of the preferred stores are available; using all stores",
            })

    if constraints.shop_at is not None:
        open_now = [s for s in candidates if s.is_open_at(constraints.shop_at)]
        closed = [s.id for s in candidates if s not in open_now]
        if closed:
            warnings.append({
                "code": "stores_closed",
                "stores": closed,
                "message": f"{len(closed)} store(s) closed at {constraints.shop_at:%a %H:%M}",
            })
        candidates = open_now

    return candidates, warnings


def _line(item: ShoppingItem, store: Store) -> ItemAssignment:
    unit_price = store.price_of(item.name)
    return ItemAssignment(
        item=item,
        unit_price=unit_price,
        line_cost=round(unit_price * item.quantity, 2),
    )


def _order_nearest_first(
    stores: Iterable[Store], home: Location, travel: _TravelTable
) -> list[tuple[Store, int]]:
    """Greedy nearest-neighbour route. Returns (store, minutes from previous stop)."""
    remaining = sorted(stores, key=lambda s: s.id)
    route = []
    current = home
    while remaining:
        legs = [(travel.minutes(current, s.location), s.id, idx) for idx, s in enumerate(remaining)]
        minutes, _, idx = min(legs)
        store = remaining.pop(idx)
        route.append((store, minutes))
        current = store.location
    return route


def _assemble(
    strategy: str,
    items: list[ShoppingItem],
    route: list[tuple[Store, int]],
    assignments: dict[str, list[ItemAssignment]],
    unfulfilled: list[ShoppingItem],
    dwell: int,
) -> OptimizedShoppingList:
    recommendations = []
    for store, minutes in route:
        lines = assignments[store.id]
        recommendations.append(StoreRecommendation(
            store=store,
            items=lines,
            subtotal=round(sum(line.line_cost for line in lines), 2),
            travel_time=minutes,
            dwell_minutes=dwell,
        ))
    total_cost = round(sum(r.subtotal for r in recommendations), 2)
    total_time = sum(r.travel_time + r.dwell_minutes for r in recommendations)
    return OptimizedShoppingList(
        strategy=strategy,
        items=items,
        stores=recommendations,
        total_estimated_cost=total_cost,
        total_estimated_time=total_time,
        unfulfilled=unfulfilled,
    )


def optimize_cheapest(
    items: list[ShoppingItem], stores: Sequence[Store], home: Location, travel: _TravelTable
) -> OptimizedShoppingList:
    assignments: dict[str, list[ItemAssignment]] = {}
    chosen: dict[str, Store] = {}
    unfulfilled = []

    for item in items:
        stocking = [s for s in stores if s.stocks(item.name)]
        if not stocking:
            unfulfilled.append(item)
            continue
        best = min(stocking, key=lambda s: (s.price_of(item.name), s.id))
        assignments.setdefault(best.id, []).append(_line(item, best))
        chosen[best.id] = best

    route = _order_nearest_first(chosen.values(), home, travel)
    return _assemble("cheapest", items, route, assignments, unfulfilled, CHEAPEST_DWELL_MINUTES)


def optimize_fastest(
    items: list[ShoppingItem], stores: Sequence[Store], home: Location, travel: _TravelTable
) -> OptimizedShoppingList:
    remaining = list(range(len(items)))
    unvisited = sorted(stores, key=lambda s: s.id)
    assignments: dict[str, list[ItemAssignment]] = {}
    route = []
    current = home

    while remaining:
        options = [
            (travel.minutes(current, s.location), s.id, idx)
            for idx, s in enumerate(unvisited)
            if any(s.stocks(items[i].name) for i in remaining)
        ]
        if not options:
            break
        minutes, _, idx = min(options)
        store = unvisited.pop(idx)

        covered = [i for i in remaining if store.stocks(items[i].name)]
        assignments[store.id] = [_line(items[i], store) for i in covered]
        remaining = [i for i in remaining if i not in covered]
        route.append((store, minutes))
        current = store.location

    unfulfilled = [items[i] for i in remaining]
    return _assemble("fastest", items, route, assignments, unfulfilled, FASTEST_DWELL_MINUTES)


def check_limits(result: OptimizedShoppingList, constraints: ShoppingConstraints) -> OptimizedShoppingList:
    """Attach limit and coverage warnings; sets `feasible`."""
    feasible = True
    warnings = []

    if constraints.max_budget is not None and result.total_estimated_cost > constraints.max_budget:
        feasible = False
        warnings.append({
            "code": "over_budget",
            "limit": constraints.max_budget,
            "value": result.total_estimated_cost,
            "message": f"Estimated cost £{result.total_estimated_cost:.2f} exceeds budget £{constraints.max_budget:.2f}",
        })
    if constraints.max_travel_time is not None and result.total_estimated_time > constraints.max_travel_time:
        feasible = False
        warnings.append({
            "code": "over_time",
            "limit": constraints.max_travel_time,
            "value": result.total_estimated_time,
            "message": f"Estimated {result.total_estimated_time} min exceeds limit of {constraints.max_travel_time} min",
        })
    if result.unfulfilled:
        essential = [i.name for i in result.unfulfilled if i.priority == "essential"]
        if essential:
            feasible = False
        warnings.append({
            "code": "unfulfilled_items",
            "items": [i.name for i in result.unfulfilled],
            "message": f"{len(result.unfulfilled)} item(s) not stocked by any candidate store",
        })

    result.warnings.extend(warnings)
    result.feasible = feasible
    return result


def _pick_balanced(
    cheapest: OptimizedShoppingList,
    fastest: OptimizedShoppingList,
    constraints: ShoppingConstraints,
    time_value_per_hour: float,
) -> OptimizedShoppingList:
    if constraints.prioritize_price and not constraints.prioritize_time:
        ranked = [cheapest, fastest]
    elif constraints.prioritize_time and not constraints.prioritize_price:
        ranked = [fastest, cheapest]
    else:
        ranked = sorted(
            [cheapest, fastest],
            key=lambda r: (len(r.unfulfilled), round(r.score(time_value_per_hour), 4)),
        )

    # Stable: keeps the priority order among equally feasible candidates
    ranked.sort(key=lambda r: not r.feasible)
    return ranked[0]


def optimize(
    items: Sequence[ShoppingItem],
    stores: Sequence[Store],
    strategy: str = "balanced",
    constraints: Optional[ShoppingConstraints] = None,
    home: Optional[Location] = None,
    travel_lookup: TravelLookup = estimate_travel_minutes,
    travel_method: Optional[str] = None,
    time_value_per_hour: Optional[float] = None,
) -> OptimizedShoppingList:
    if strategy not in STRATEGIES:
        raise InvalidInputError(f"Unknown strategy '{strategy}'", allowed=list(STRATEGIES))

    constraints = constraints or ShoppingConstraints()
    if constraints.max_budget is not None and constraints.max_budget < 0:
        raise InvalidInputError("max_budget must be >= 0")
    if constraints.max_travel_time is not None and constraints.max_travel_time < 0:
        raise InvalidInputError("max_travel_time must be >= 0")

    prepared = _validate_items(items)
    home = home or home_location()
    travel = _TravelTable(travel_lookup, travel_method or settings.shopping_travel_method)
    value = settings.time_value_per_hour if time_value_per_hour is None else time_value_per_hour

    candidates, store_warnings = candidate_stores(stores, constraints)

    if strategy == "cheapest":
        result = check_limits(optimize_cheapest(prepared, candidates, home, travel), constraints)
    elif strategy == "fastest":
        result = check_limits(optimize_fastest(prepared, candidates, home, travel), constraints)
    else:
        cheapest = check_limits(optimize_cheapest(prepared, candidates, home, travel), constraints)
        fastest = check_limits(optimize_fastest(prepared, candidates, home, travel), constraints)
        result = _pick_balanced(cheapest, fastest, constraints, value)
        result.basis = result.strategy
        result.strategy = "balanced"

    result.warnings[:0] = store_warnings
    if result.warnings:
        logger.info(
            f"Shopping optimization ({strategy}) finished with warnings: "
            f"{[w['code'] for w in result.warnings]}"
        )
    return result
