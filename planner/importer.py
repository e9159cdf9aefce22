import math
from collections import Counter
from datetime import date, datetime

import pandas as pd

import db
from planner.fleet import UNIT_TYPE_COMBO, UNIT_TYPE_RIGID

BACKLOG_REQUIRED_COLUMNS = ["item_id", "weight_kg", "order_date"]
BACKLOG_OPTIONAL_COLUMNS = [
    "load_id",
    "order_id",
    "order_number",
    "customer_id",
    "customer_name",
    "suburb_name",
    "route_id",
    "route_name",
    "branch_id",
    "description",
]

FLEET_REQUIRED_COLUMNS = ["unit_type"]
FLEET_OPTIONAL_COLUMNS = [
    "branch_id",
    "driver_id",
    "driver_name",
    "rigid_id",
    "rigid_plate",
    "rigid_fleet_number",
    "rigid_capacity",
    "rigid_length",
    "rigid_priority",
    "rigid_geozone",
    "horse_id",
    "horse_plate",
    "horse_fleet_number",
    "horse_length",
    "horse_priority",
    "horse_geozone",
    "trailer_id",
    "trailer_plate",
    "trailer_fleet_number",
    "trailer_capacity",
    "trailer_length",
    "trailer_priority",
    "trailer_geozone",
]

COLUMN_ALIASES = {
    "item": "item_id",
    "line_id": "item_id",
    "weight": "weight_kg",
    "weight (kg)": "weight_kg",
    "order date": "order_date",
    "orderdate": "order_date",
    "order no": "order_number",
    "sales_order_number": "order_number",
    "customer": "customer_name",
    "custname": "customer_name",
    "suburb": "suburb_name",
    "route": "route_name",
    "branch": "branch_id",
    "desc": "description",
    "type": "unit_type",
    "driver": "driver_name",
}


def _clean_value(value):
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _to_float(value):
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed):
        return None
    return parsed


def _to_iso_date(value):
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = _clean_value(value)
    if not text:
        return None
    parsed = pd.to_datetime(text, errors="coerce", dayfirst=False)
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def _normalize_columns(columns):
    mapping = {}
    for col in columns:
        normalized = str(col).strip().lower()
        normalized = COLUMN_ALIASES.get(normalized, normalized.replace(" ", "_"))
        mapping[col] = normalized
    return mapping


def read_sheet(file_stream, filename=""):
    """CSV or Excel upload to a DataFrame with normalised column names."""
    name = str(filename or getattr(file_stream, "name", "") or "").lower()
    if name.endswith((".xlsx", ".xlsm", ".xls")):
        df = pd.read_excel(file_stream, sheet_name=0, dtype=str)
    else:
        df = pd.read_csv(file_stream, dtype=str, keep_default_na=False)
    return df.rename(columns=_normalize_columns(df.columns))


def _check_columns(df, required):
    missing = [col for col in required if col not in set(df.columns)]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def parse_backlog(df):
    _check_columns(df, BACKLOG_REQUIRED_COLUMNS)
    allowed = set(BACKLOG_REQUIRED_COLUMNS + BACKLOG_OPTIONAL_COLUMNS)
    df = df[[col for col in df.columns if col in allowed]]

    items = []
    skipped = []
    for row in df.to_dict(orient="records"):
        item_id = _clean_value(row.get("item_id"))
        if not item_id:
            skipped.append({"item_id": "", "reason": "Missing item id."})
            continue
        weight = _to_float(row.get("weight_kg"))
        if weight is None or weight < 0:
            skipped.append({"item_id": item_id, "reason": "Weight is not a number."})
            continue
        order_date = _to_iso_date(row.get("order_date"))
        if not order_date:
            skipped.append({"item_id": item_id, "reason": "Order date is not a date."})
            continue
        item = {column: _clean_value(row.get(column)) or None for column in BACKLOG_OPTIONAL_COLUMNS}
        item.update({"item_id": item_id, "weight_kg": weight, "order_date": order_date})
        items.append(item)
    return {"items": items, "skipped": skipped, "total_rows": len(df)}


def _unit_type(value):
    text = _clean_value(value).lower().replace(" ", "")
    if text in {"rigid", "truck"}:
        return UNIT_TYPE_RIGID
    if text in {"horse+trailer", "horse", "combo", "horse_trailer"}:
        return UNIT_TYPE_COMBO
    return ""


def parse_fleet(df):
    _check_columns(df, FLEET_REQUIRED_COLUMNS)
    allowed = set(FLEET_REQUIRED_COLUMNS + FLEET_OPTIONAL_COLUMNS)
    df = df[[col for col in df.columns if col in allowed]]
    units = []
    skipped = []
    for idx, row in enumerate(df.to_dict(orient="records"), start=2):
        unit_type = _unit_type(row.get("unit_type"))
        if not unit_type:
            skipped.append({"row": idx, "reason": f"Unknown unit type {row.get('unit_type')!r}."})
            continue
        pieces = ["rigid"] if unit_type == UNIT_TYPE_RIGID else ["horse", "trailer"]
        vehicles = []
        for piece in pieces:
            piece_id = _clean_value(row.get(f"{piece}_id"))
            if not piece_id:
                break
            vehicles.append(
                {
                    "id": piece_id,
                    "vehicle_type": piece,
                    "plate": _clean_value(row.get(f"{piece}_plate")) or None,
                    "fleet_number": _clean_value(row.get(f"{piece}_fleet_number")) or None,
                    "capacity": _clean_value(row.get(f"{piece}_capacity")) or None,
                    "length": _clean_value(row.get(f"{piece}_length")) or None,
                    "priority": int(_to_float(row.get(f"{piece}_priority")) or 0),
                    "geozone": _clean_value(row.get(f"{piece}_geozone")).upper() or None,
                    "branch_id": _clean_value(row.get("branch_id")) or None,
                }
            )
        if len(vehicles) != len(pieces):
            skipped.append({"row": idx, "reason": f"Missing {' or '.join(pieces)} id."})
            continue
        units.append(
            {
                "unit_type": unit_type,
                "branch_id": _clean_value(row.get("branch_id")) or None,
                "driver_id": _clean_value(row.get("driver_id")) or None,
                "driver_name": _clean_value(row.get("driver_name")) or None,
                "vehicles": vehicles,
            }
        )
    return {"units": units, "skipped": skipped, "total_rows": len(df)}


def import_backlog(file_stream, filename=""):
    parsed = parse_backlog(read_sheet(file_stream, filename))
    imported = db.upsert_load_items(parsed["items"])
    return {
        "imported": imported,
        "skipped": parsed["skipped"],
        "total_rows": parsed["total_rows"],
        "items_by_branch": dict(Counter(item.get("branch_id") or "" for item in parsed["items"])),
    }


def import_fleet(file_stream, filename=""):
    parsed = read_sheet(file_stream, filename)
    result = parse_fleet(parsed)
    for unit in result["units"]:
        for vehicle in unit["vehicles"]:
            db.upsert_vehicle(vehicle)
        if unit["driver_id"]:
            db.upsert_driver(unit["driver_id"], unit["driver_name"] or unit["driver_id"], unit["branch_id"])
        by_piece = {vehicle["vehicle_type"]: vehicle["id"] for vehicle in unit["vehicles"]}
        db.add_dispatch_unit(
            {
                "unit_type": unit["unit_type"],
                "rigid_id": by_piece.get("rigid"),
                "horse_id": by_piece.get("horse"),
                "trailer_id": by_piece.get("trailer"),
                "driver_id": unit["driver_id"],
                "branch_id": unit["branch_id"],
            }
        )
    return {
        "imported": len(result["units"]),
        "skipped": result["skipped"],
        "total_rows": result["total_rows"],
    }


def import_routes(file_stream, filename=""):
    """Route and branch reference rows used to backfill backlog items."""
    df = read_sheet(file_stream, filename)
    _check_columns(df, ["route_id", "branch_id"])
    imported = 0
    skipped = []
    branches = set()
    for row in df.to_dict(orient="records"):
        route_id = _clean_value(row.get("route_id"))
        branch_id = _clean_value(row.get("branch_id"))
        if not route_id:
            skipped.append({"route_id": "", "reason": "Missing route id."})
            continue
        if branch_id and branch_id not in branches:
            db.upsert_branch(branch_id, _clean_value(row.get("branch_name")) or branch_id)
            branches.add(branch_id)
        db.upsert_route(route_id, _clean_value(row.get("route_name")) or route_id, branch_id or None)
        imported += 1
    return {"imported": imported, "skipped": skipped, "total_rows": len(df)}
