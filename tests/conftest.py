import os
import tempfile

os.environ.setdefault(
    "APP_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="dispatch-planner-"), "app.db")
)

import pytest

import db


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "app.db")
    db.init_db()
    return db.DB_PATH


@pytest.fixture
def add_rigid(temp_db):
    def _add(rigid_id, capacity="1000", length=None, branch_id="BR1", priority=0, driver_id=None):
        db.upsert_vehicle(
            {
                "id": rigid_id,
                "vehicle_type": "rigid",
                "plate": f"{rigid_id}-GP",
                "fleet_number": f"F{rigid_id}",
                "capacity": capacity,
                "length": length,
                "priority": priority,
                "geozone": None,
                "branch_id": branch_id,
            }
        )
        if driver_id:
            db.upsert_driver(driver_id, f"Driver {driver_id}", branch_id)
        return db.add_dispatch_unit(
            {
                "unit_type": "rigid",
                "rigid_id": rigid_id,
                "driver_id": driver_id,
                "branch_id": branch_id,
            }
        )

    return _add


@pytest.fixture
def add_items(temp_db):
    def _add(*items):
        rows = []
        for item in items:
            row = {
                "order_id": f"O-{item['item_id']}",
                "order_number": f"SO-{item['item_id']}",
                "customer_id": "C1",
                "customer_name": "Acme Steel",
                "suburb_name": "Alberton",
                "route_name": "JHB SOUTH 1",
                "branch_id": "BR1",
                "order_date": "2026-03-09",
                "weight_kg": 100,
                "description": None,
            }
            row.update(item)
            rows.append(row)
        db.upsert_load_items(rows)
        return rows

    return _add
