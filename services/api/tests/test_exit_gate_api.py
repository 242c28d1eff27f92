OTHER_USER = "user-2"


def test_default_template(client):
    res = client.get("/api/exit-gate/template")
    assert res.status_code == 200
    ids = [c["id"] for c in res.json()["conditions"]]
    assert ids == ["keys", "phone", "water", "meds", "pet-fed", "bag-packed", "eyeglasses"]


def test_put_template_adds_extras_and_is_per_user(client):
    res = client.put("/api/exit-gate/template", json={"conditions": [
        {"id": "umbrella", "name": "Umbrella if raining"},
        {"id": "pet-fed", "satisfied": True},
    ]})
    assert res.status_code == 200
    conditions = res.json()["conditions"]
    assert conditions[-1] == {"id": "umbrella", "name": "Umbrella if raining", "satisfied": False}
    assert {"id": "pet-fed", "name": "Pet fed", "satisfied": True} in conditions

    # Persisted for this user only
    assert client.get("/api/exit-gate/template").json()["conditions"] == conditions
    other = client.get("/api/exit-gate/template", headers={"X-User-Id": OTHER_USER}).json()
    assert len(other["conditions"]) == 7


def test_put_template_twice_replaces(client):
    client.put("/api/exit-gate/template", json={"conditions": [{"id": "umbrella"}]})
    res = client.put("/api/exit-gate/template", json={"conditions": [{"id": "badge", "name": "Work badge"}]})
    ids = [c["id"] for c in res.json()["conditions"]]
    assert "umbrella" not in ids
    assert ids[-1] == "badge"


def test_evaluate_blocked_then_ready(client):
    res = client.post("/api/exit-gate/evaluate", json={"satisfied": {"keys": True}})
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "blocked"
    assert "Keys present" not in data["blocked_reasons"]
    assert data["blocked_reasons"][0] == "Phone in hand"

    res = client.post("/api/exit-gate/evaluate", json={"satisfy_all": True})
    assert res.json() == {
        "status": "ready",
        "conditions": res.json()["conditions"],
        "blocked_reasons": [],
    }


def test_evaluate_starts_from_template_values(client):
    client.put("/api/exit-gate/template", json={"conditions": [
        {"id": c, "satisfied": True} for c in ("keys", "phone", "water", "meds", "pet-fed", "bag-packed")
    ]})
    data = client.post("/api/exit-gate/evaluate", json={}).json()
    assert data["blocked_reasons"] == ["Eyeglasses on"]


def test_evaluate_with_tags(client):
    res = client.post("/api/exit-gate/evaluate", json={"tags": ["meds", "keys", "jetpack"]})
    data = res.json()
    assert [c["id"] for c in data["conditions"]] == ["keys", "meds"]
    assert data["blocked_reasons"] == ["Keys present", "Meds taken"]


def test_evaluate_unknown_condition_is_404(client):
    res = client.post("/api/exit-gate/evaluate", json={"satisfied": {"umbrella": True}})
    assert res.status_code == 404
    assert res.json()["condition_id"] == "umbrella"


def test_template_requires_user(client):
    res = client.get("/api/exit-gate/template", headers={"X-User-Id": "  "})
    assert res.status_code == 401


def plan_with_lecture(client):
    body = {
        "wake_time": "2026-03-10T07:00:00",
        "sleep_time": "2026-03-10T23:00:00",
        "energy_state": "medium",
        "now": "2026-03-10T06:00:00",
        "commitments": [{
            "id": "lec-1",
            "title": "Lecture",
            "start_time": "2026-03-10T10:00:00",
            "end_time": "2026-03-10T11:00:00",
            "travel_minutes": 20,
            "anchor_type": "class",
        }],
    }
    return client.post("/api/daily-plan/generate", json=body).json()


def test_evaluate_gate_of_plan_block(client):
    client.put("/api/exit-gate/template", json={"conditions": [{"id": "meds", "name": "Inhaler taken"}]})
    plan = plan_with_lecture(client)
    gate_block = next(b for b in plan["time_blocks"] if b["metadata"].get("role") == "exit-gate")

    res = client.post("/api/exit-gate/evaluate", json={"block_id": gate_block["id"], "satisfied": {"keys": True}})
    assert res.status_code == 200
    data = res.json()
    assert [c["id"] for c in data["conditions"]] == gate_block["metadata"]["gate_tags"]
    assert "eyeglasses" not in [c["id"] for c in data["conditions"]]
    # Names come from the user's template
    assert "Inhaler taken" in data["blocked_reasons"]
    assert data["status"] == "blocked"

    res = client.post("/api/exit-gate/evaluate", json={"block_id": gate_block["id"], "satisfy_all": True})
    assert res.json()["status"] == "ready"


def test_evaluate_block_without_gate_is_400(client):
    plan = plan_with_lecture(client)
    commitment = next(b for b in plan["time_blocks"] if b["activity_type"] == "commitment")

    res = client.post("/api/exit-gate/evaluate", json={"block_id": commitment["id"]})
    assert res.status_code == 400

    res = client.post("/api/exit-gate/evaluate", json={"block_id": commitment["id"], "tags": ["keys"]})
    assert res.status_code == 400


def test_evaluate_other_users_block_is_403(client):
    plan = plan_with_lecture(client)
    gate_block = next(b for b in plan["time_blocks"] if b["metadata"].get("role") == "exit-gate")

    res = client.post(
        "/api/exit-gate/evaluate",
        json={"block_id": gate_block["id"]},
        headers={"X-User-Id": OTHER_USER},
    )
    assert res.status_code == 403
    assert client.post("/api/exit-gate/evaluate", json={"block_id": "missing"}).status_code == 404
