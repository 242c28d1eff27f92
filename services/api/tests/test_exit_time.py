from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from dayplan.errors import InvalidInputError
from dayplan.services.exit_time import (
    Commitment,
    compare_travel_methods,
    compute_exit_time,
    find_block_before,
)
from dayplan.services.travel import Location, estimate_travel_minutes

HOME = Location(52.4862, -1.8904, "Home")
CAMPUS = Location(52.4508, -1.9305, "Campus")


def at(hour, minute=0):
    return datetime(2026, 3, 10, hour, minute)


def lecture(**kwargs):
    fields = dict(id="lec", title="Lecture", start_time=at(10), end_time=at(11), location=CAMPUS)
    fields.update(kwargs)
    return Commitment(**fields)


def block(start, end, order, name="Block"):
    return SimpleNamespace(id=f"b{order}", start_time=start, end_time=end, sequence_order=order, activity_name=name)


def test_exit_time_is_start_minus_travel_and_preparation():
    result = compute_exit_time(lecture(), "bus", 10, lambda o, d, m: 25, origin=HOME)

    assert result.exit_time == at(9, 25)
    assert result.travel_duration == 25
    assert result.preparation_time == 10
    assert result.travel_method == "bus"
    assert result.warnings == []


def test_explicit_travel_minutes_skip_lookup():
    def lookup(origin, destination, method):
        raise AssertionError("lookup should not be called")

    result = compute_exit_time(lecture(travel_minutes=7), "walk", 0, lookup, origin=HOME)
    assert result.exit_time == at(9, 53)


def test_missing_location_uses_default_travel_minutes():
    result = compute_exit_time(lecture(location=None), "walk", 5, estimate_travel_minutes, origin=HOME)

    assert result.travel_duration == 15
    assert result.exit_time == at(9, 40)


def test_exit_before_plan_start_warns_without_clamping():
    result = compute_exit_time(
        lecture(start_time=at(7, 15), end_time=at(8)),
        "walk",
        10,
        lambda o, d, m: 20,
        origin=HOME,
        plan_start=at(7),
    )

    assert result.exit_time == at(6, 45)
    assert result.warnings[0]["code"] == "exit_before_plan_start"
    assert result.warnings[0]["commitment_id"] == "lec"


def test_links_block_ending_closest_before_exit():
    blocks = [
        block(at(8), at(9), 1, "Focus"),
        block(at(9), at(9, 20), 2, "Break"),
        block(at(9, 20), at(9, 50), 3, "Free"),
    ]
    result = compute_exit_time(lecture(), "walk", 10, lambda o, d, m: 15, origin=HOME, blocks=blocks)

    # exit 09:35: Break ends 09:20, Free ends after the exit
    assert result.time_block.activity_name == "Break"
    assert result.time_block_id == "b2"


def test_no_block_before_exit():
    assert find_block_before([block(at(9), at(10), 1)], at(8)) is None
    result = compute_exit_time(lecture(), "walk", 0, lambda o, d, m: 5, origin=HOME)
    assert result.time_block is None
    assert result.time_block_id is None


def test_unknown_travel_method_rejected():
    with pytest.raises(InvalidInputError) as exc:
        compute_exit_time(lecture(), "teleport", 0, estimate_travel_minutes, origin=HOME)
    assert "walk" in exc.value.extra["allowed"]


def test_negative_preparation_rejected():
    with pytest.raises(InvalidInputError):
        compute_exit_time(lecture(), "walk", -1, estimate_travel_minutes, origin=HOME)


def test_compare_methods_latest_departure_first():
    results = compare_travel_methods(
        lecture(), ["walk", "car", "bike", "walk"], 10, estimate_travel_minutes, origin=HOME
    )

    assert len(results) == 3
    exits = [r.exit_time for r in results]
    assert exits == sorted(exits, reverse=True)
    assert results[-1].travel_method == "walk"
    for r in results:
        assert r.exit_time == at(10) - timedelta(minutes=r.travel_duration + r.preparation_time)


def test_compare_requires_a_method():
    with pytest.raises(InvalidInputError):
        compare_travel_methods(lecture(), [], 10, estimate_travel_minutes, origin=HOME)
