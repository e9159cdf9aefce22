import io

from openpyxl import load_workbook

import db
import app as app_module

DEPARTURE = "2026-03-11"


def _client():
    return app_module.app.test_client()


def _seed(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_items(
        {"item_id": "I1", "weight_kg": 400},
        {"item_id": "I2", "weight_kg": 300, "route_name": "PTA 1"},
    )


def test_health(temp_db):
    response = _client().get("/health")
    assert response.status_code == 200
    assert response.get_json()["ok"] is True


def test_auto_assign_preview_then_commit(add_rigid, add_items):
    _seed(add_rigid, add_items)
    client = _client()
    body = {"departure_date": DEPARTURE, "cutoff_date": "2026-03-10", "capacityHeadroom": "0"}

    preview = client.post("/planner/auto-assign", json=body)
    assert preview.status_code == 200
    payload = preview.get_json()
    assert payload["plan"]["mode"] == "preview"
    assert payload["plan"]["parameters"]["capacity_headroom"] == "0%"
    assert [row["item_id"] for row in payload["unassigned"]] == ["I2"]
    assert db.list_plans() == []

    committed = client.post("/planner/auto-assign", json=dict(body, commit=True))
    assert committed.status_code == 200
    payload = committed.get_json()
    assert payload["plan"]["mode"] == "commit"
    assert db.get_plan(payload["plan"]["id"]) is not None
    assert payload["summary"]["bucket_by_reason"] == {
        "No unit meets capacity/length/branch constraints": 1
    }


def test_auto_assign_surfaces_store_failure(temp_db, monkeypatch):
    def _broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db, "list_dispatch_units", _broken)
    response = _client().post("/planner/auto-assign", json={"commit": True})

    assert response.status_code == 500
    assert response.get_json() == {"error": "Auto-assign failed"}


def test_plan_editing_routes(add_rigid, add_items):
    _seed(add_rigid, add_items)
    client = _client()

    created = client.post("/plans", json={"departure_date": DEPARTURE})
    assert created.status_code == 201
    plan_id = created.get_json()["plan"]["id"]

    added = client.post(f"/plans/{plan_id}/units", json={"unit_key": "rigid:R1"})
    assert added.status_code == 200
    unit_id = added.get_json()["plan_unit_id"]

    assigned = client.post(
        f"/plans/{plan_id}/assignments", json={"plan_unit_id": unit_id, "item_id": "I1"}
    )
    assert assigned.status_code == 200
    conflict = client.post(
        f"/plans/{plan_id}/assignments", json={"plan_unit_id": unit_id, "item_id": "I1"}
    )
    assert conflict.status_code == 409
    assert conflict.get_json() == {"error": "Item is already assigned"}

    note = client.put(f"/plans/{plan_id}/units/{unit_id}/note", json={"ops_note": "gate 4"})
    assert note.get_json()["assigned_units"][0]["ops_note"] == "gate 4"

    unit = client.get(f"/plans/{plan_id}/units/{unit_id}")
    assert unit.get_json()["unit"]["used_capacity_kg"] == 400

    blocked = client.delete(f"/plans/{plan_id}/units/{unit_id}")
    assert blocked.status_code == 400

    assignment_id = db.list_plan_assignments(plan_id)[0]["assignment_id"]
    removed = client.delete(f"/plans/{plan_id}/assignments/{assignment_id}")
    assert removed.status_code == 200
    assert client.delete(f"/plans/{plan_id}/assignments").status_code == 200
    assert client.delete(f"/plans/{plan_id}/units/{unit_id}").status_code == 200

    listing = client.get("/plans?include_counts=1")
    assert [plan["id"] for plan in listing.get_json()["plans"]] == [plan_id]

    with_idle = client.get(f"/plans/{plan_id}?include_idle=true").get_json()
    assert with_idle["idle_units_by_branch"][0]["units"][0]["unit_key"] == "rigid:R1"

    assert client.delete(f"/plans/{plan_id}").status_code == 200
    assert client.get(f"/plans/{plan_id}").status_code == 404


def test_unassign_unit_route(add_rigid, add_items):
    _seed(add_rigid, add_items)
    add_items({"item_id": "I3", "weight_kg": 100})
    client = _client()
    plan_id = client.post("/plans", json={"departure_date": DEPARTURE}).get_json()["plan"]["id"]
    unit_id = client.post(
        f"/plans/{plan_id}/units", json={"unit_key": "rigid:R1", "items": ["I1", "I3"]}
    ).get_json()["plan_unit_id"]

    some = client.delete(f"/plans/{plan_id}/units/{unit_id}/assignments", json={"order_ids": ["O-I3"]})
    assert some.status_code == 200
    assert some.get_json()["message"] == "Removed 1 assignments"
    assert db.list_assigned_item_ids(["I1", "I3"]) == {"I1"}

    rest = client.delete(f"/plans/{plan_id}/units/{unit_id}/assignments")
    assert rest.get_json()["assigned_units"][0]["used_capacity_kg"] == 0

    missing = client.delete(f"/plans/{plan_id}/units/9999/assignments")
    assert missing.status_code == 404


def test_export_workbook(add_rigid, add_items):
    _seed(add_rigid, add_items)
    client = _client()
    plan_id = client.post(
        "/planner/auto-assign",
        json={"departure_date": DEPARTURE, "cutoff_date": "2026-03-10", "commit": True},
    ).get_json()["plan"]["id"]

    response = client.get(f"/plans/{plan_id}/export.xlsx")

    assert response.status_code == 200
    assert f"plan-{plan_id}-{DEPARTURE}.xlsx" in response.headers["Content-Disposition"]
    workbook = load_workbook(io.BytesIO(response.data))
    assert workbook.sheetnames == ["Plan Units", "Unassigned"]
    units_sheet = workbook["Plan Units"]
    assert units_sheet.cell(row=2, column=2).value == "rigid"
    assert units_sheet.cell(row=2, column=8).value == 1
    assert units_sheet.cell(row=2, column=11).value == 40.0
    bucket_sheet = workbook["Unassigned"]
    assert bucket_sheet.cell(row=2, column=1).value == "I2"
    assert bucket_sheet.freeze_panes == "A2"


def test_upload_routes(temp_db):
    client = _client()

    missing = client.post("/imports/backlog", data={}, content_type="multipart/form-data")
    assert missing.status_code == 400

    bad = client.post(
        "/imports/backlog",
        data={"file": (io.BytesIO(b"item_id\nI1\n"), "backlog.csv")},
        content_type="multipart/form-data",
    )
    assert bad.status_code == 400
    assert "Missing required columns" in bad.get_json()["error"]

    good = client.post(
        "/imports/backlog",
        data={"file": (io.BytesIO(b"item_id,weight_kg,order_date\nI1,400,2026-03-09\n"), "backlog.csv")},
        content_type="multipart/form-data",
    )
    assert good.status_code == 200
    assert good.get_json()["imported"] == 1
    assert good.get_json()["filename"] == "backlog.csv"

    fleet = client.post(
        "/imports/fleet",
        data={"file": (io.BytesIO(b"unit_type,rigid_id,rigid_capacity\nrigid,R1,8t\n"), "fleet.csv")},
        content_type="multipart/form-data",
    )
    assert fleet.get_json()["imported"] == 1
    assert db.list_dispatch_units()[0]["rigid_id"] == "R1"
