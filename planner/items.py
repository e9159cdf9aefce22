import math
import re

from planner.route_family import family_from

_NUMBER_TOKEN_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?")


def parse_item_length_from_description(description):
    """Best-effort item length in mm from free text, 0 when nothing looks like one.

    "6.0" style tokens up to 30 are metres, values of 1000+ or above 50 are
    already millimetres, anything smaller is treated as a quantity or size.
    """
    if not description:
        return 0
    candidates = []
    for token in _NUMBER_TOKEN_RE.findall(str(description)):
        value = float(token)
        if "." in token and abs(value - round(value)) < 1e-9 and value <= 30:
            candidates.append(int(round(value * 1000)))
            continue
        if value > 50:
            candidates.append(int(round(value)))
    return max(candidates) if candidates else 0


def to_number(value, default=0.0):
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed):
        return default
    return parsed


def customer_key(item):
    customer_id = item.get("customer_id")
    if customer_id:
        return str(customer_id)
    return f"NAME:{item.get('customer_name') or ''}"


def item_family(item):
    return family_from(item.get("route_name") or item.get("suburb_name") or "")


def item_requirements(item, config):
    need_kg = max(0.0, to_number(item.get("weight_left", item.get("weight_kg"))))
    parsed_length = parse_item_length_from_description(item.get("description"))
    return {
        "need_kg": need_kg,
        "need_length_mm": parsed_length + config.length_buffer_mm,
        "length_known": parsed_length > 0,
        "branch_id": item.get("branch_id") or None,
        "family": item_family(item),
    }


def backfill_items(items, route_map):
    """Fill route name and branch from route metadata; returns new item dicts."""
    route_map = route_map or {}
    enriched = []
    for item in items or []:
        route = route_map.get(item.get("route_id")) or {}
        row = dict(item)
        row["route_name"] = (
            item.get("route_name") or route.get("route_name") or item.get("suburb_name")
        )
        row["branch_id"] = item.get("branch_id") or route.get("branch_id")
        row["route_group"] = item_family(row)
        enriched.append(row)
    return enriched
