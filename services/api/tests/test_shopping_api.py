import pytest

from dayplan.services.travel import get_travel_lookup
from dayplan.settings import settings

BULL_RING = {"latitude": 52.4777, "longitude": -1.8937, "name": "Bull Ring"}


def test_list_stores(client):
    res = client.get("/api/shopping/stores")
    assert res.status_code == 200
    stores = res.json()
    assert len(stores) == 6
    assert {"open", "close"} <= set(stores[0]["opening_hours"]["mon"])


def test_list_stores_filters(client):
    res = client.get("/api/shopping/stores", params={"price_level": "budget"})
    assert {s["name"] for s in res.json()} == {"Aldi", "Lidl"}

    res = client.get("/api/shopping/stores", params={"open_at": "2026-03-15T19:00:00"})
    assert [s["name"] for s in res.json()] == ["Co-op"]

    res = client.get("/api/shopping/stores", params={"lat": 52.4777, "lng": -1.8937, "radius_km": 2})
    assert [s["name"] for s in res.json()] == ["Tesco Express", "Aldi"]


@pytest.mark.parametrize("params", [
    {"price_level": "luxury"},
    {"lat": 52.4777},
    {"radius_km": 3},
])
def test_list_stores_invalid(client, params):
    assert client.get("/api/shopping/stores", params=params).status_code == 400


def test_optimize_cheapest(client):
    res = client.post("/api/shopping/optimize", json={
        "items": [{"name": "milk"}, {"name": "bread", "quantity": 2}],
        "strategy": "cheapest",
        "home": BULL_RING,
    })
    assert res.status_code == 200
    data = res.json()
    assert data["strategy"] == "cheapest"
    assert data["feasible"] is True
    assert [s["store"]["name"] for s in data["stores"]] == ["Aldi"]
    assert data["total_estimated_cost"] == pytest.approx(sum(s["subtotal"] for s in data["stores"]))


def test_optimize_balanced_reports_basis_and_warnings(client):
    res = client.post("/api/shopping/optimize", json={
        "items": [{"name": "milk"}, {"name": "caviar", "priority": "essential"}],
        "constraints": {"max_budget": 0.5},
        "home": BULL_RING,
    })
    data = res.json()
    assert data["strategy"] == "balanced"
    assert data["basis"] in ("cheapest", "fastest")
    assert data["feasible"] is False
    assert [i["name"] for i in data["unfulfilled"]] == ["caviar"]
    codes = {w["code"] for w in data["warnings"]}
    assert {"over_budget", "unfulfilled_items"} <= codes


def test_optimize_invalid_strategy(client):
    res = client.post("/api/shopping/optimize", json={"items": [{"name": "milk"}], "strategy": "scenic"})
    assert res.status_code == 400
    assert res.json()["code"] == "invalid_input"


def test_optimize_rejects_zero_quantity(client):
    res = client.post("/api/shopping/optimize", json={"items": [{"name": "milk", "quantity": 0}]})
    assert res.status_code == 400


def test_ready(client):
    res = client.get("/api/ready")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "redis_ok": True}


def test_optimize_travel_lookup_failure_is_503(client):
    def broken(origin, destination, method):
        raise TimeoutError("maps backend timed out")

    client.app.dependency_overrides[get_travel_lookup] = lambda: broken
    res = client.post("/api/shopping/optimize", json={"items": [{"name": "milk"}], "home": BULL_RING})
    assert res.status_code == 503
    assert res.json()["code"] == "storage_error"


def test_default_rate_limit_applies_to_routes(client):
    allowed = int(settings.rate_limit_default.split("/")[0])
    for _ in range(allowed):
        assert client.get("/api/shopping/stores").status_code == 200
    res = client.get("/api/shopping/stores")
    assert res.status_code == 429
