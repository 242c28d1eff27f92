import random
from datetime import datetime, time

import pytest

from dayplan.errors import InvalidInputError, StorageError
from dayplan.services.shopping_optimizer import (
    CHEAPEST_DWELL_MINUTES,
    FASTEST_DWELL_MINUTES,
    ShoppingConstraints,
    ShoppingItem,
    categorize_item,
    optimize,
)
from dayplan.services.store_catalog import DEFAULT_STORES, Store
from dayplan.services.travel import Location

HOME = Location(0.0, 0.0, "Home")

ALL_WEEK = {day: (time(8), time(20)) for day in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")}


def make_store(store_id, lat, prices, **kwargs):
    return Store(
        id=store_id,
        name=kwargs.pop("name", store_id.title()),
        address=f"{store_id} street",
        location=Location(lat, 0.0, store_id),
        price_level=kwargs.pop("price_level", "mid"),
        opening_hours=kwargs.pop("opening_hours", ALL_WEEK),
        prices=prices,
        **kwargs,
    )


def by_distance(origin, destination, method):
    """10 minutes per 0.01 degree of latitude."""
    return round(abs(origin.latitude - destination.latitude) * 1000)


NEAR = make_store("near", 0.01, {"milk": 2.00, "bread": 1.00})
FAR = make_store("far", 0.03, {"milk": 1.50, "bread": 1.20, "eggs": 2.50})


def assignments(result):
    return {line.item.name: rec.store.id for rec in result.stores for line in rec.items}


def test_cheapest_picks_lowest_price_per_item():
    items = [ShoppingItem("milk"), ShoppingItem("bread")]
    result = optimize(items, [NEAR, FAR], "cheapest", home=HOME, travel_lookup=by_distance)

    assert assignments(result) == {"milk": "far", "bread": "near"}
    assert result.total_estimated_cost == pytest.approx(2.50)
    # Greedy from home: near (10) then far (20 more)
    assert [(r.store.id, r.travel_time) for r in result.stores] == [("near", 10), ("far", 20)]
    assert result.total_estimated_time == 30 + 2 * CHEAPEST_DWELL_MINUTES
    assert result.feasible is True


def test_cheapest_ties_broken_by_store_id():
    a = make_store("b-store", 0.01, {"tea": 2.0})
    b = make_store("a-store", 0.02, {"tea": 2.0})
    result = optimize([ShoppingItem("tea")], [a, b], "cheapest", home=HOME, travel_lookup=by_distance)
    assert assignments(result) == {"tea": "a-store"}


def test_line_cost_uses_quantity():
    result = optimize(
        [ShoppingItem("milk", quantity=3)], [NEAR, FAR], "cheapest", home=HOME, travel_lookup=by_distance
    )
    line = result.stores[0].items[0]
    assert line.unit_price == 1.50
    assert line.line_cost == 4.50
    assert result.stores[0].subtotal == 4.50


def test_fastest_takes_everything_from_nearest_store():
    items = [ShoppingItem("milk"), ShoppingItem("bread"), ShoppingItem("eggs")]
    result = optimize(items, [NEAR, FAR], "fastest", home=HOME, travel_lookup=by_distance)

    assert assignments(result) == {"milk": "near", "bread": "near", "eggs": "far"}
    assert [r.store.id for r in result.stores] == ["near", "far"]
    assert result.total_estimated_time == 10 + 20 + 2 * FASTEST_DWELL_MINUTES


def test_fastest_reports_unfulfilled_items():
    items = [ShoppingItem("milk"), ShoppingItem("caviar", priority="optional")]
    result = optimize(items, [NEAR, FAR], "fastest", home=HOME, travel_lookup=by_distance)

    assert [i.name for i in result.unfulfilled] == ["caviar"]
    assert result.warnings[-1]["code"] == "unfulfilled_items"
    # Only optional items missing: still feasible
    assert result.feasible is True


def test_missing_essential_item_is_infeasible():
    result = optimize(
        [ShoppingItem("caviar", priority="essential")], [NEAR], "cheapest", home=HOME, travel_lookup=by_distance
    )
    assert result.stores == []
    assert result.feasible is False


def test_balanced_flags_budget_instead_of_dropping_items():
    items = [ShoppingItem("milk"), ShoppingItem("bread"), ShoppingItem("eggs")]
    result = optimize(
        items,
        [NEAR, FAR],
        "balanced",
        constraints=ShoppingConstraints(max_budget=1.00),
        home=HOME,
        travel_lookup=by_distance,
    )

    assert result.strategy == "balanced"
    assert result.feasible is False
    assert any(w["code"] == "over_budget" for w in result.warnings)
    assert len(assignments(result)) == 3


def test_balanced_flags_travel_time():
    result = optimize(
        [ShoppingItem("eggs")],
        [FAR],
        "balanced",
        constraints=ShoppingConstraints(max_travel_time=20),
        home=HOME,
        travel_lookup=by_distance,
    )
    assert result.feasible is False
    assert [w["code"] for w in result.warnings] == ["over_time"]


def test_balanced_respects_priority_flags():
    items = [ShoppingItem("milk"), ShoppingItem("bread")]
    price_first = optimize(
        items, [NEAR, FAR], "balanced",
        constraints=ShoppingConstraints(prioritize_price=True),
        home=HOME, travel_lookup=by_distance,
    )
    time_first = optimize(
        items, [NEAR, FAR], "balanced",
        constraints=ShoppingConstraints(prioritize_time=True),
        home=HOME, travel_lookup=by_distance,
    )

    assert price_first.basis == "cheapest"
    assert time_first.basis == "fastest"
    assert price_first.total_estimated_cost <= time_first.total_estimated_cost
    assert time_first.total_estimated_time <= price_first.total_estimated_time


def test_balanced_prefers_feasible_candidate():
    items = [ShoppingItem("milk"), ShoppingItem("bread")]
    # Cheapest needs two stops (70 min); fastest is one stop (25 min)
    result = optimize(
        items, [NEAR, FAR], "balanced",
        constraints=ShoppingConstraints(prioritize_price=True, max_travel_time=40),
        home=HOME, travel_lookup=by_distance,
    )
    assert result.basis == "fastest"
    assert result.feasible is True


def test_balanced_scores_money_against_time():
    items = [ShoppingItem("milk"), ShoppingItem("bread")]
    result = optimize(
        items, [NEAR, FAR], "balanced", home=HOME, travel_lookup=by_distance, time_value_per_hour=12.0
    )
    # cheapest: 2.50 + 70min * 0.2 = 16.50; fastest: 3.00 + 25min * 0.2 = 8.00
    assert result.basis == "fastest"


def test_preferred_stores_restrict_candidates():
    result = optimize(
        [ShoppingItem("milk")], [NEAR, FAR], "cheapest",
        constraints=ShoppingConstraints(preferred_stores=["Near"]),
        home=HOME, travel_lookup=by_distance,
    )
    assert assignments(result) == {"milk": "near"}


def test_unknown_preferred_store_falls_back_with_warning():
    result = optimize(
        [ShoppingItem("milk")], [NEAR, FAR], "cheapest",
        constraints=ShoppingConstraints(preferred_stores=["Harrods"]),
        home=HOME, travel_lookup=by_distance,
    )
    assert assignments(result) == {"milk": "far"}
    assert result.warnings[0]["code"] == "preferred_stores_unavailable"


def test_closed_stores_are_excluded():
    early = make_store("early", 0.02, {"milk": 1.0}, opening_hours={"tue": (time(6), time(9))})
    tuesday_noon = datetime(2026, 3, 10, 12, 0)
    result = optimize(
        [ShoppingItem("milk")], [NEAR, early], "cheapest",
        constraints=ShoppingConstraints(shop_at=tuesday_noon),
        home=HOME, travel_lookup=by_distance,
    )
    assert assignments(result) == {"milk": "near"}
    assert result.warnings[0]["stores"] == ["early"]


def test_item_names_match_case_insensitively():
    result = optimize([ShoppingItem("  Milk ")], [NEAR], "cheapest", home=HOME, travel_lookup=by_distance)
    assert assignments(result) == {"Milk": "near"}


def test_invalid_inputs():
    with pytest.raises(InvalidInputError):
        optimize([ShoppingItem("milk")], [NEAR], "scenic", home=HOME)
    with pytest.raises(InvalidInputError):
        optimize([ShoppingItem("milk", quantity=0)], [NEAR], home=HOME)
    with pytest.raises(InvalidInputError):
        optimize([ShoppingItem("milk", priority="urgent")], [NEAR], home=HOME)


def test_categories_inferred():
    assert categorize_item("Chicken thighs") == "meat"
    assert categorize_item("Oat milk") == "dairy"
    assert categorize_item("Sourdough bread") == "bakery"
    assert categorize_item("Batteries") == "other"
    result = optimize([ShoppingItem("milk")], [NEAR], "cheapest", home=HOME, travel_lookup=by_distance)
    assert result.items[0].category == "dairy"


def test_categories_match_whole_words():
    assert categorize_item("Ice cream") == "frozen"
    assert categorize_item("Watermelon") == "produce"
    assert categorize_item("Tomatoes") == "produce"
    assert categorize_item("Bread rolls") == "bakery"
    assert categorize_item("Sparkling water") == "beverages"
    assert categorize_item("Free range eggs") == "dairy"


def test_travel_lookup_failure_is_storage_error():
    def broken(origin, destination, method):
        raise ConnectionError("maps backend unreachable")

    with pytest.raises(StorageError):
        optimize([ShoppingItem("milk")], [NEAR], "cheapest", home=HOME, travel_lookup=broken)


@pytest.mark.parametrize("strategy", ["cheapest", "fastest", "balanced"])
def test_assignments_disjoint_and_stocked(strategy):
    rng = random.Random(7)
    catalog_items = sorted({name for store in DEFAULT_STORES for name in store.prices}) + ["caviar"]

    for _ in range(20):
        items = [ShoppingItem(name) for name in rng.sample(catalog_items, rng.randint(1, 8))]
        result = optimize(items, DEFAULT_STORES, strategy)

        seen = []
        for rec in result.stores:
            for line in rec.items:
                assert rec.store.stocks(line.item.name)
                seen.append(line.item.name)
        assert len(seen) == len(set(seen))
        assert sorted(seen + [i.name for i in result.unfulfilled]) == sorted(i.name for i in items)
