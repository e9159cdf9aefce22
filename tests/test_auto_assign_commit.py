import pytest

import db
from planner import bucket as reasons
from planner.bucket import UnassignedBucket
from planner.commit import NOTHING_TO_ASSIGN, CommitWriter, split_by_raw_capacity
from planner.config import PackingConfig
from planner.orchestrator import DONE, AssignmentPlanner, run_auto_assign

DEPARTURE = "2026-03-11"
CUTOFF = "2026-03-10"


def _request(**extra):
    payload = {"departure_date": DEPARTURE, "cutoff_date": CUTOFF, "commit": True}
    payload.update(extra)
    return payload


def _assignment_count(item_id):
    with db.get_connection() as connection:
        row = connection.execute(
            "SELECT COUNT(*) AS total FROM assignment_plan_item_assignments WHERE item_id = ?",
            (item_id,),
        ).fetchone()
    return row["total"]


def _placement(unit_idx, item_id, weight):
    return {"unit_idx": unit_idx, "item": {"item_id": item_id, "order_id": f"O-{item_id}"}, "weight": weight}


def test_split_by_raw_capacity_skips_and_continues():
    rows = [_placement(0, "A", 600), _placement(0, "B", 500), _placement(0, "C", 300)]
    kept, overflow = split_by_raw_capacity(rows, 1000)
    assert [row["item"]["item_id"] for row in kept] == ["A", "C"]
    assert [row["item"]["item_id"] for row in overflow] == ["B"]

    kept, overflow = split_by_raw_capacity(rows, 1000, already_used=900)
    assert kept == []
    assert len(overflow) == 3

    kept, overflow = split_by_raw_capacity(rows, 1000, enabled=False)
    assert len(kept) == 3 and overflow == []


def test_preview_writes_nothing(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_items({"item_id": "I1", "weight_kg": 400}, {"item_id": "I2", "weight_kg": 300})

    result = run_auto_assign(_request(commit=False))

    assert result["plan"]["id"] is None
    assert result["plan"]["mode"] == "preview"
    unit = result["assigned_units"][0]
    assert unit["plan_unit_id"] == "preview-0"
    items = unit["customers"][0]["orders"][0]["items"] + unit["customers"][0]["orders"][1]["items"]
    assert {item["item_id"] for item in items} == {"I1", "I2"}
    assert db.list_plans() == []
    assert db.list_assigned_item_ids(["I1", "I2"]) == set()


def test_commit_persists_units_and_assignments(add_rigid, add_items):
    add_rigid("R1", capacity="1000", driver_id="D1")
    add_rigid("R2", capacity="1000", branch_id="BR2")
    add_items({"item_id": "I1", "weight_kg": 400}, {"item_id": "I2", "weight_kg": 300})

    planner = AssignmentPlanner(_request())
    result = planner.run()

    assert planner.state == DONE
    plan_id = result["plan"]["id"]
    assert plan_id
    assert result["plan"]["parameters"]["capacity_headroom"] == "10%"
    units = db.list_plan_units(plan_id)
    assert len(units) == 1
    assert units[0]["unit_key"] == "rigid:R1"
    assert units[0]["driver_name"] == "Driver D1"
    assert units[0]["used_capacity_kg"] == 700
    assert db.list_assigned_item_ids(["I1", "I2"]) == {"I1", "I2"}
    assert result["unassigned"] == []
    idle_keys = [u["unit_key"] for group in result["idle_units_by_branch"] for u in group["units"]]
    assert idle_keys == ["rigid:R2"]
    assert result["summary"]["placed"] == 2


def test_commit_and_preview_render_the_same_tree(add_rigid, add_items):
    add_rigid("R1", capacity="5000")
    add_items(
        {"item_id": "I1", "weight_kg": 400},
        {"item_id": "I2", "weight_kg": 300, "order_id": "O-I1"},
        {"item_id": "I3", "weight_kg": 90, "route_name": "PTA 3"},
    )

    preview = run_auto_assign(_request(commit=False))
    committed = run_auto_assign(_request())

    def _shape(payload):
        return [
            (
                customer["customer_id"],
                customer["route_name"],
                [(order["order_id"], [item["item_id"] for item in order["items"]]) for order in customer["orders"]],
            )
            for unit in payload["assigned_units"]
            for customer in unit["customers"]
        ]

    assert _shape(preview) == _shape(committed)
    assert [row["item_id"] for row in preview["unassigned"]] == ["I3"]
    assert [row["item_id"] for row in committed["unassigned"]] == ["I3"]


def test_already_assigned_item_is_bucketed_not_duplicated(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_rigid("R2", capacity="1000")
    rows = add_items({"item_id": "I1", "weight_kg": 400})
    run_auto_assign(_request())
    assert _assignment_count("I1") == 1

    # stale backlog snapshot still listing I1
    result = run_auto_assign(_request(), item_source=lambda *args: [dict(rows[0])])

    assert _assignment_count("I1") == 1
    assert [(row["item_id"], row["reason"]) for row in result["unassigned"]] == [
        ("I1", reasons.ALREADY_ASSIGNED)
    ]
    assert db.list_plan_units(result["plan"]["id"]) == []


def test_vehicle_at_trip_cap_is_bucketed_at_commit(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_items({"item_id": "I1", "weight_kg": 400}, {"item_id": "I2", "weight_kg": 100})
    for _ in range(2):
        other = db.create_plan({"departure_date": DEPARTURE})
        db.create_plan_unit(
            {"plan_id": other, "departure_date": DEPARTURE, "unit_key": "rigid:R1", "unit_type": "rigid"}
        )

    # enforcement saw an older trip snapshot, so the placement reaches the writer
    result = run_auto_assign(_request(), trip_source=lambda departure_date: {})

    plan_id = result["plan"]["id"]
    assert db.list_plan_units(plan_id) == []
    assert {row["reason"] for row in result["unassigned"]} == {reasons.UNIT_CREATION_FAILED}
    assert {row["item_id"] for row in result["unassigned"]} == {"I1", "I2"}
    assert db.count_trips_by_vehicle(DEPARTURE) == {"rigid:R1": 2}


def test_trip_cap_snapshot_rejects_before_commit(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_items({"item_id": "I1", "weight_kg": 400})
    for _ in range(2):
        other = db.create_plan({"departure_date": DEPARTURE})
        db.create_plan_unit(
            {"plan_id": other, "departure_date": DEPARTURE, "unit_key": "rigid:R1", "unit_type": "rigid"}
        )

    result = run_auto_assign(_request())

    assert [row["reason"] for row in result["unassigned"]] == ["rule_rejected"]
    assert result["summary"]["rule_rejected"] == 1


def test_all_zero_weight_gives_empty_plan(add_rigid, add_items):
    add_rigid("R1", capacity="1000")
    add_items({"item_id": "I1", "weight_kg": 0}, {"item_id": "I2", "weight_kg": 0})

    result = run_auto_assign(_request())

    plan_id = result["plan"]["id"]
    assert plan_id
    assert result["plan"]["message"] == NOTHING_TO_ASSIGN
    assert db.list_plan_units(plan_id) == []
    assert db.list_plan_bucket(plan_id) == []
    assert result["assigned_units"] == []
    assert result["unassigned"] == []


def test_raw_capacity_guard_at_commit(temp_db):
    config = PackingConfig()
    units = [{"unit_key": "rigid:R1", "unit_type": "rigid", "rigid_id": "R1", "capacity_kg": 1000}]
    bucket = UnassignedBucket()
    writer = CommitWriter(units, config, bucket, DEPARTURE)

    result = writer.write(
        {"departure_date": DEPARTURE},
        [_placement(0, "A", 600), _placement(0, "B", 500), _placement(0, "C", 300)],
    )

    assert result["assigned"] == 2
    assert result["units_created"] == 1
    plan_units = db.list_plan_units(result["plan_id"])
    assert plan_units[0]["used_capacity_kg"] == 900
    assert [(row["item_id"], row["reason"]) for row in db.list_plan_bucket(result["plan_id"])] == [
        ("B", reasons.OVER_CAPACITY)
    ]


def test_commit_failure_rolls_back_everything(temp_db, monkeypatch):
    units = [{"unit_key": "rigid:R1", "unit_type": "rigid", "rigid_id": "R1", "capacity_kg": 1000}]
    writer = CommitWriter(units, PackingConfig(), UnassignedBucket(), DEPARTURE)

    def _boom(assignment, connection=None):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "claim_item", _boom)
    with pytest.raises(RuntimeError):
        writer.write({"departure_date": DEPARTURE}, [_placement(0, "A", 100)])

    assert db.list_plans() == []
    assert db.count_trips_by_vehicle(DEPARTURE) == {}


def test_rerun_against_existing_plan_replaces_bucket(add_rigid, add_items):
    add_rigid("R1", capacity="1000", branch_id="BR1")
    add_items(
        {"item_id": "I1", "weight_kg": 400},
        {"item_id": "I2", "weight_kg": 100, "branch_id": "BR9"},
    )
    first = run_auto_assign(_request())
    plan_id = first["plan"]["id"]
    assert [row["item_id"] for row in first["unassigned"]] == ["I2"]

    add_items({"item_id": "I3", "weight_kg": 200})
    second = run_auto_assign(_request(plan_id=plan_id))

    assert second["plan"]["id"] == plan_id
    assert len(db.list_plan_units(plan_id)) == 1
    assert db.list_assigned_item_ids(["I1", "I3"]) == {"I1", "I3"}
    assert [row["item_id"] for row in db.list_plan_bucket(plan_id)] == ["I2"]


def _unit_rows(payload):
    return [
        (
            unit["unit_key"],
            unit["used_capacity_kg"],
            sorted(
                item["item_id"]
                for customer in unit["customers"]
                for order in customer["orders"]
                for item in order["items"]
            ),
        )
        for unit in payload["assigned_units"]
    ]


@pytest.mark.parametrize(
    "headroom, reason",
    [("0", "No unit meets capacity/length/branch constraints"), ("0.1", reasons.OVER_CAPACITY)],
)
def test_rerun_preview_matches_commit_on_loaded_unit(add_rigid, add_items, headroom, reason):
    add_rigid("R1", capacity="1000")
    add_items({"item_id": "I1", "weight_kg": 800})
    plan_id = run_auto_assign(_request(capacityHeadroom=headroom))["plan"]["id"]

    add_items({"item_id": "I2", "weight_kg": 300})
    preview = run_auto_assign(_request(commit=False, plan_id=plan_id, capacityHeadroom=headroom))
    committed = run_auto_assign(_request(plan_id=plan_id, capacityHeadroom=headroom))

    assert _unit_rows(preview) == [("rigid:R1", 800, ["I1"])]
    assert _unit_rows(committed) == _unit_rows(preview)
    assert [(row["item_id"], row["reason"]) for row in preview["unassigned"]] == [("I2", reason)]
    assert [(row["item_id"], row["reason"]) for row in committed["unassigned"]] == [("I2", reason)]
    assert db.list_assigned_item_ids(["I2"]) == set()


def test_rerun_keeps_family_of_existing_cargo(add_rigid, add_items):
    add_rigid("R1", capacity="5000")
    add_items({"item_id": "I1", "weight_kg": 100})
    plan_id = run_auto_assign(_request())["plan"]["id"]

    add_items({"item_id": "I2", "weight_kg": 100, "route_name": "PTA 3"})
    preview = run_auto_assign(_request(commit=False, plan_id=plan_id))
    committed = run_auto_assign(_request(plan_id=plan_id))

    for payload in (preview, committed):
        assert _unit_rows(payload) == [("rigid:R1", 100, ["I1"])]
        assert [row["item_id"] for row in payload["unassigned"]] == ["I2"]
