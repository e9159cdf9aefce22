import math

from planner.items import to_number


def effective_capacity(capacity_kg, headroom):
    base = to_number(capacity_kg)
    if math.isinf(base):
        return math.inf
    return max(0, int(round(base * (1 + headroom))))


def normalize_units(raw_units, config):
    """Working copies of the fleet rows with headroom applied to ``capacity_left``.

    This is the only place headroom is applied. Raw ``capacity_kg`` is kept
    as-is for the commit-time capacity guard. Units already on the plan being
    re-run start with their ``used_capacity_kg`` taken off.
    """
    units = []
    for raw in raw_units or []:
        unit = dict(raw)
        unit["capacity_kg"] = max(0.0, to_number(raw.get("capacity_kg")))
        unit["used_capacity_kg"] = max(0.0, to_number(raw.get("used_capacity_kg")))
        unit["capacity_left"] = effective_capacity(unit["capacity_kg"], config.headroom)
        if unit["used_capacity_kg"]:
            unit["capacity_left"] = max(0, unit["capacity_left"] - unit["used_capacity_kg"])
        unit["length_mm"] = max(0.0, to_number(raw.get("length_mm")))
        unit["category"] = str(raw.get("category") or "").upper()
        unit["priority"] = to_number(raw.get("priority"))
        unit["branch_id"] = raw.get("branch_id") or None
        units.append(unit)
    return units
