from planner.fleet import UNIT_TYPE_COMBO, UNIT_TYPE_RIGID
from planner.items import to_number

UNASSIGNED_FIELDS = [
    "load_id",
    "order_id",
    "order_number",
    "item_id",
    "customer_id",
    "customer_name",
    "suburb_name",
    "route_name",
    "order_date",
    "weight_left",
    "description",
    "reason",
]


def _group_by(rows, key_fn):
    groups = {}
    for row in rows:
        groups.setdefault(key_fn(row), []).append(row)
    return groups


def _piece(unit, name):
    return {
        "id": unit.get(f"{name}_id"),
        "plate": unit.get(f"{name}_plate"),
        "fleet_number": unit.get(f"{name}_fleet_number"),
    }


def _customer_group_key(row):
    return (
        row.get("customer_id"),
        row.get("customer_name"),
        row.get("suburb_name"),
        row.get("route_name"),
    )


def _unit_node(unit, rows):
    customers = []
    for (customer_id, customer_name, suburb_name, route_name), customer_rows in _group_by(
        rows, _customer_group_key
    ).items():
        orders = []
        for order_id, order_rows in _group_by(customer_rows, lambda row: row.get("order_id")).items():
            items = [
                {
                    "item_id": row.get("item_id"),
                    "description": row.get("description"),
                    "assigned_weight_kg": to_number(row.get("assigned_weight_kg")),
                    "assignment_id": row.get("assignment_id"),
                    "priority_note": row.get("priority_note"),
                    "order_id": order_id,
                    "order_number": row.get("order_number"),
                }
                for row in order_rows
            ]
            orders.append(
                {
                    "order_id": order_id,
                    "total_assigned_weight_kg": sum(item["assigned_weight_kg"] for item in items),
                    "items": items,
                }
            )
        customers.append(
            {
                "customer_id": customer_id,
                "customer_name": customer_name,
                "suburb_name": suburb_name,
                "route_name": route_name,
                "orders": orders,
            }
        )

    unit_type = unit.get("unit_type")
    return {
        "plan_unit_id": unit.get("plan_unit_id"),
        "unit_key": unit.get("unit_key"),
        "unit_type": unit_type,
        "driver_id": unit.get("driver_id"),
        "driver_name": unit.get("driver_name"),
        "rigid": _piece(unit, "rigid") if unit_type == UNIT_TYPE_RIGID else None,
        "horse": _piece(unit, "horse") if unit_type == UNIT_TYPE_COMBO else None,
        "trailer": _piece(unit, "trailer") if unit_type == UNIT_TYPE_COMBO else None,
        "capacity_kg": to_number(unit.get("capacity_kg")),
        "used_capacity_kg": to_number(unit.get("used_capacity_kg")),
        "ops_note": unit.get("ops_note"),
        "customers": customers,
    }


def build_nested(units, assignments, remainders):
    """Flat unit/assignment/bucket rows to the Unit > Customer > Order > Item tree.

    Group keys keep first-seen order. The customer key includes suburb and
    route because one customer id can ship under different route labels.
    """
    assignments_by_unit = _group_by(assignments or [], lambda row: row.get("plan_unit_id"))
    assigned_units = []
    seen_units = set()
    for unit in units or []:
        unit_id = unit.get("plan_unit_id")
        if unit_id in seen_units:
            continue
        seen_units.add(unit_id)
        assigned_units.append(_unit_node(unit, assignments_by_unit.get(unit_id, [])))

    unassigned = []
    for row in remainders or []:
        entry = {field: row.get(field) for field in UNASSIGNED_FIELDS}
        entry["weight_left"] = to_number(row.get("weight_left"))
        unassigned.append(entry)

    return {"assigned_units": assigned_units, "unassigned": unassigned}


def flatten_nested(tree):
    """Inverse projection of :func:`build_nested` back to flat rows."""
    units = []
    assignments = []
    for node in tree.get("assigned_units") or []:
        unit = {
            "plan_unit_id": node.get("plan_unit_id"),
            "unit_key": node.get("unit_key"),
            "unit_type": node.get("unit_type"),
            "driver_id": node.get("driver_id"),
            "driver_name": node.get("driver_name"),
            "capacity_kg": node.get("capacity_kg"),
            "used_capacity_kg": node.get("used_capacity_kg"),
            "ops_note": node.get("ops_note"),
        }
        for name in ("rigid", "horse", "trailer"):
            piece = node.get(name) or {}
            unit[f"{name}_id"] = piece.get("id")
            unit[f"{name}_plate"] = piece.get("plate")
            unit[f"{name}_fleet_number"] = piece.get("fleet_number")
        units.append(unit)

        for customer in node.get("customers") or []:
            for order in customer.get("orders") or []:
                for item in order.get("items") or []:
                    assignments.append(
                        {
                            "plan_unit_id": node.get("plan_unit_id"),
                            "customer_id": customer.get("customer_id"),
                            "customer_name": customer.get("customer_name"),
                            "suburb_name": customer.get("suburb_name"),
                            "route_name": customer.get("route_name"),
                            "order_id": order.get("order_id"),
                            "order_number": item.get("order_number"),
                            "item_id": item.get("item_id"),
                            "description": item.get("description"),
                            "assigned_weight_kg": item.get("assigned_weight_kg"),
                            "assignment_id": item.get("assignment_id"),
                            "priority_note": item.get("priority_note"),
                        }
                    )

    remainders = [dict(row) for row in tree.get("unassigned") or []]
    return units, assignments, remainders
