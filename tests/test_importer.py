import io
import unittest

import pandas as pd
import pytest

import db
from planner import importer


class BacklogParsingTests(unittest.TestCase):
    def test_aliases_and_skips(self):
        df = importer.read_sheet(
            io.BytesIO(
                (
                    "Item,Weight (kg),Order Date,Customer,Route,Branch,Desc\n"
                    "I1,400,2026-03-09,Acme Steel,JHB SOUTH 1,BR1,PIPE 6.0\n"
                    ",100,2026-03-09,Acme Steel,JHB SOUTH 1,BR1,\n"
                    "I3,heavy,2026-03-09,Acme Steel,JHB SOUTH 1,BR1,\n"
                    "I4,50,not a date,Acme Steel,JHB SOUTH 1,BR1,\n"
                ).encode("utf-8")
            ),
            "backlog.csv",
        )
        parsed = importer.parse_backlog(df)

        self.assertEqual(parsed["total_rows"], 4)
        self.assertEqual(len(parsed["items"]), 1)
        item = parsed["items"][0]
        self.assertEqual(item["item_id"], "I1")
        self.assertEqual(item["weight_kg"], 400.0)
        self.assertEqual(item["customer_name"], "Acme Steel")
        self.assertEqual(item["route_name"], "JHB SOUTH 1")
        self.assertEqual(item["description"], "PIPE 6.0")
        self.assertIsNone(item["customer_id"])
        self.assertEqual(
            [row["reason"] for row in parsed["skipped"]],
            ["Missing item id.", "Weight is not a number.", "Order date is not a date."],
        )

    def test_missing_required_columns(self):
        df = pd.DataFrame([{"item_id": "I1", "customer_name": "Acme"}])
        with self.assertRaises(ValueError) as ctx:
            importer.parse_backlog(df)
        self.assertIn("weight_kg", str(ctx.exception))
        self.assertIn("order_date", str(ctx.exception))

    def test_fleet_rows(self):
        df = pd.DataFrame(
            [
                {"unit_type": "Rigid", "rigid_id": "R1", "rigid_capacity": "8t", "branch_id": "BR1"},
                {"unit_type": "combo", "horse_id": "H1", "trailer_id": "T1", "trailer_capacity": "34t"},
                {"unit_type": "horse", "horse_id": "H2"},
                {"unit_type": "bicycle"},
            ]
        )
        parsed = importer.parse_fleet(df)

        self.assertEqual([unit["unit_type"] for unit in parsed["units"]], ["rigid", "horse+trailer"])
        self.assertEqual(parsed["units"][1]["vehicles"][1]["capacity"], "34t")
        self.assertEqual([row["row"] for row in parsed["skipped"]], [4, 5])


def test_import_backlog_upserts(temp_db):
    body = (
        "item_id,weight_kg,order_date,customer_id,branch_id\n"
        "I1,400,2026-03-09,C1,BR1\n"
        "I2,300,09/03/2026,C1,BR2\n"
    )
    summary = importer.import_backlog(io.BytesIO(body.encode("utf-8")), "backlog.csv")

    assert summary["imported"] == 2
    assert summary["items_by_branch"] == {"BR1": 1, "BR2": 1}
    assert set(db.get_load_items(["I1", "I2"])) == {"I1", "I2"}

    again = importer.import_backlog(
        io.BytesIO(b"item_id,weight_kg,order_date\nI1,450,2026-03-09\n"), "backlog.csv"
    )
    assert again["imported"] == 1
    assert db.get_load_items(["I1"])["I1"]["weight_kg"] == 450


def test_import_fleet_from_xlsx(temp_db, tmp_path):
    path = tmp_path / "fleet.xlsx"
    pd.DataFrame(
        [
            {
                "Type": "rigid",
                "rigid_id": "R1",
                "rigid_capacity": "8000",
                "rigid_length": "9",
                "driver_id": "D1",
                "Driver": "Thabo",
                "Branch": "BR1",
            }
        ]
    ).to_excel(path, index=False)

    with open(path, "rb") as handle:
        summary = importer.import_fleet(handle, path.name)

    assert summary["imported"] == 1
    units = db.list_dispatch_units()
    assert len(units) == 1
    assert units[0]["rigid_capacity"] == "8000"
    assert units[0]["driver_name"] == "Thabo"
    assert units[0]["branch_id"] == "BR1"


def test_import_routes_backfills_branch(temp_db):
    body = "route_id,route_name,branch_id,branch_name\nRT1,EAST RAND 1,BR2,Germiston\nRT2,,BR2,Germiston\n"
    summary = importer.import_routes(io.BytesIO(body.encode("utf-8")), "routes.csv")

    assert summary["imported"] == 2
    route_map = db.get_route_branch_map()
    assert route_map["RT1"] == {"branch_id": "BR2", "route_name": "EAST RAND 1"}
    assert route_map["RT2"]["route_name"] == "RT2"
    assert db.list_branches() == [{"id": "BR2", "name": "Germiston"}]


def test_import_routes_requires_columns(temp_db):
    with pytest.raises(ValueError):
        importer.import_routes(io.BytesIO(b"route_name\nX\n"), "routes.csv")
