import math
import re

UNIT_TYPE_RIGID = "rigid"
UNIT_TYPE_COMBO = "horse+trailer"

_NUMBER_RE = re.compile(r"([\d.,]+)")


def parse_capacity_kg(raw):
    """Capacity text as captured by fleet staff ("34t", "8,000 kg", "inf") to kg."""
    if raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        return 0.0 if math.isnan(raw) else float(raw)
    text = str(raw).strip().lower()
    if not text:
        return 0.0
    if text in {"inf", "infinity", "unlimited"}:
        return math.inf
    match = _NUMBER_RE.search(text)
    if not match:
        return 0.0
    try:
        value = float(match.group(1).replace(",", ""))
    except ValueError:
        return 0.0
    if "ton" in text or re.search(r"\d\s*t\b", text):
        return value * 1000
    return value


def parse_meters_to_mm(raw):
    """Vehicle length in metres ("13", "13.2", "13,2") to whole millimetres."""
    if raw is None:
        return 0
    text = str(raw).strip().replace(",", ".", 1)
    try:
        value = float(text)
    except ValueError:
        match = re.match(r"\s*(\d+(?:\.\d+)?)", text)
        if not match:
            return 0
        value = float(match.group(1))
    if not math.isfinite(value):
        return 0
    return max(0, int(round(value * 1000)))


def _piece(row, name):
    if not row.get(f"{name}_id"):
        return None
    return {
        "id": row.get(f"{name}_id"),
        "plate": row.get(f"{name}_plate"),
        "fleet_number": row.get(f"{name}_fleet_number"),
        "capacity": row.get(f"{name}_capacity"),
        "length": row.get(f"{name}_length"),
        "priority": row.get(f"{name}_priority"),
        "geozone": row.get(f"{name}_geozone"),
    }


def _unit_length_mm(unit_type, rigid, horse, trailer):
    lengths = {
        name: parse_meters_to_mm(piece.get("length")) if piece else 0
        for name, piece in (("rigid", rigid), ("horse", horse), ("trailer", trailer))
    }
    if unit_type == UNIT_TYPE_COMBO and lengths["trailer"]:
        return lengths["trailer"]
    if unit_type == UNIT_TYPE_RIGID and lengths["rigid"]:
        return lengths["rigid"]
    return max(lengths.values())


def _unit_priority(pieces):
    values = []
    for piece in pieces:
        try:
            values.append(float(piece.get("priority")))
        except (TypeError, ValueError):
            continue
    finite = [value for value in values if math.isfinite(value)]
    return max(finite) if finite else 0


def _unit_category(pieces):
    zones = {str(piece.get("geozone") or "").strip().upper() for piece in pieces}
    return "ASSM" if "ASSM" in zones else ""


def vehicle_key(unit):
    """Identity of the physical vehicle behind a unit, used for trip counting."""
    unit_type = unit.get("unit_type")
    if unit_type == UNIT_TYPE_RIGID:
        return f"rigid:{unit.get('rigid_id') or 'nil'}"
    if unit_type == UNIT_TYPE_COMBO:
        return f"horse:{unit.get('horse_id') or 'nil'}|trailer:{unit.get('trailer_id') or 'nil'}"
    fallback = unit.get("rigid_id") or unit.get("horse_id") or unit.get("trailer_id")
    return f"unit:{fallback or 'nil'}"


def shape_unit(row):
    """Compose a dispatch-unit row and its vehicle pieces into one unit dict.

    Rigids carry their own capacity; horses pull the trailer's capacity.
    Length prefers the trailer (combos) or rigid, else the longest piece.
    """
    unit_type = str(row.get("unit_type") or "").strip().lower()
    if unit_type in {"horse", "combo", "horse_trailer", "horse + trailer"}:
        unit_type = UNIT_TYPE_COMBO
    rigid = _piece(row, "rigid")
    horse = _piece(row, "horse")
    trailer = _piece(row, "trailer")
    pieces = [piece for piece in (trailer, horse, rigid) if piece]

    if unit_type == UNIT_TYPE_COMBO:
        capacity_kg = parse_capacity_kg((trailer or {}).get("capacity"))
    else:
        capacity_kg = parse_capacity_kg((rigid or {}).get("capacity"))

    unit = {
        "dispatch_unit_id": row.get("dispatch_unit_id"),
        "unit_type": unit_type,
        "rigid_id": row.get("rigid_id"),
        "horse_id": row.get("horse_id"),
        "trailer_id": row.get("trailer_id"),
        "driver_id": row.get("driver_id"),
        "driver_name": row.get("driver_name"),
        "branch_id": row.get("branch_id"),
        "branch_name": row.get("branch_name"),
        "rigid": rigid,
        "horse": horse,
        "trailer": trailer,
        "capacity_kg": capacity_kg,
        "length_mm": _unit_length_mm(unit_type, rigid, horse, trailer),
        "priority": _unit_priority(pieces),
        "category": _unit_category(pieces),
    }
    unit["unit_key"] = vehicle_key(unit)
    return unit


def _display_piece(unit):
    if unit.get("unit_type") == UNIT_TYPE_COMBO:
        return unit.get("horse") or unit.get("trailer") or {}
    return unit.get("rigid") or {}


def idle_units_by_branch(units, used_indices):
    """Units with no accepted placement, grouped per branch."""
    groups = {}
    for idx, unit in enumerate(units):
        if idx in used_indices:
            continue
        piece = _display_piece(unit)
        branch_id = unit.get("branch_id")
        group = groups.setdefault(
            branch_id,
            {
                "branch_id": branch_id,
                "branch_name": unit.get("branch_name"),
                "total_idle": 0,
                "units": [],
            },
        )
        capacity_left = unit.get("capacity_left", unit.get("capacity_kg"))
        group["units"].append(
            {
                "unit_key": unit.get("unit_key") or vehicle_key(unit),
                "dispatch_unit_id": unit.get("dispatch_unit_id"),
                "unit_type": unit.get("unit_type"),
                "driver_id": unit.get("driver_id"),
                "driver_name": unit.get("driver_name"),
                "fleet_number": piece.get("fleet_number"),
                "plate": piece.get("plate"),
                "capacity_kg": unit.get("capacity_kg"),
                "capacity_left_kg": capacity_left,
                "length_mm": unit.get("length_mm"),
                "category": unit.get("category"),
                "priority": unit.get("priority"),
                "branch_id": branch_id,
                "branch_name": unit.get("branch_name"),
            }
        )
        group["total_idle"] += 1
    return list(groups.values())
