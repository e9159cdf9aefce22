import logging

import db
from planner.commit import plan_unit_snapshot
from planner.config import PackingConfig, coerce_bool
from planner.fleet import idle_units_by_branch
from planner.items import to_number
from planner.orchestrator import load_units
from planner.payload import build_nested
from planner.scope import as_iso_or_none, parse_branch_single, parse_customer, resolve_scope
from planner.trips import TripLedger

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


class PlanEditError(Exception):
    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _require_plan(plan_id):
    plan = db.get_plan(plan_id)
    if not plan:
        raise PlanEditError("Plan not found", 404)
    return plan


def _require_plan_unit(plan_id, plan_unit_id):
    if not plan_unit_id:
        raise PlanEditError("plan_unit_id is required")
    plan_unit = db.get_plan_unit(plan_unit_id)
    if not plan_unit or int(plan_unit["plan_id"]) != int(plan_id):
        raise PlanEditError("Unit not found in this plan", 404)
    return plan_unit


def _trip_cap():
    return PackingConfig.from_env().vehicle_trip_cap


def idle_units_for_plan(plan):
    """Fleet units not on the plan whose vehicle still has a trip left that day."""
    ledger = TripLedger.load(plan["departure_date"], _trip_cap())
    on_plan = {unit["unit_key"] for unit in db.list_plan_units(plan["id"])}
    units = load_units(plan.get("scope_branch_id"))
    candidates = []
    for unit in units:
        if unit["unit_key"] in on_plan or not ledger.has_slot(unit["unit_key"]):
            continue
        candidates.append(unit)
    groups = idle_units_by_branch(candidates, used_indices=set())
    for group in groups:
        for unit in group["units"]:
            unit["trips_used_today"] = ledger.used(unit["unit_key"])
    return groups


def plan_payload(plan_id, include_idle=False, message=None):
    plan = _require_plan(plan_id)
    db.recalc_used_capacity(plan_id)
    nested = build_nested(
        db.list_plan_units(plan_id),
        db.list_plan_assignments(plan_id),
        db.list_plan_bucket(plan_id),
    )
    payload = {
        "plan": plan,
        "assigned_units": nested["assigned_units"],
        "unassigned": nested["unassigned"],
    }
    if include_idle:
        payload["idle_units_by_branch"] = idle_units_for_plan(plan)
    if message:
        payload["message"] = message
    return payload


def create_plan(payload):
    scope = resolve_scope(payload)
    plan_id = db.create_plan(
        {
            "departure_date": scope["departure_date"],
            "cutoff_date": scope["cutoff_date"],
            "scope_branch_id": scope["branch_id"],
            "scope_customer_id": scope["customer_id"],
            "notes": scope["notes"],
            "parameters": PackingConfig.from_request(payload).as_parameters(),
        }
    )
    logger.info("Created plan %s for %s", plan_id, scope["departure_date"])
    return plan_payload(plan_id, message="Plan created")


def get_plan_unit(plan_id, plan_unit_id):
    payload = plan_payload(plan_id)
    for unit in payload["assigned_units"]:
        if str(unit["plan_unit_id"]) == str(plan_unit_id):
            return {"plan": payload["plan"], "unit": unit}
    raise PlanEditError("Unit not found in this plan", 404)


def _parse_int(value, default, minimum=0, maximum=None):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    parsed = max(minimum, parsed)
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


def _parse_ids(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        raw_values = value
    else:
        raw_values = str(value).split(",")
    ids = []
    for raw in raw_values:
        try:
            ids.append(int(str(raw).strip()))
        except ValueError:
            continue
    return ids


def list_plans(args):
    args = args or {}
    filters = {
        "date_from": as_iso_or_none(args.get("date_from")),
        "date_to": as_iso_or_none(args.get("date_to")),
        "branch_id": parse_branch_single(args.get("branch_id")),
        "customer_id": parse_customer(args.get("customer_id")),
        "ids": _parse_ids(args.get("ids")),
    }
    limit = _parse_int(args.get("limit"), DEFAULT_LIST_LIMIT, minimum=1, maximum=MAX_LIST_LIMIT)
    offset = _parse_int(args.get("offset"), 0)
    descending = str(args.get("order") or "desc").strip().lower() != "asc"

    plans = db.list_plans(filters, limit=limit, offset=offset, descending=descending)
    if coerce_bool(args.get("include_counts")):
        counts = db.get_plan_counts([plan["id"] for plan in plans])
        for plan in plans:
            plan["counts"] = counts.get(plan["id"])
    if coerce_bool(args.get("include_units")):
        for plan in plans:
            nested = build_nested(
                db.list_plan_units(plan["id"]), db.list_plan_assignments(plan["id"]), []
            )
            plan["units"] = nested["assigned_units"]
    return {"plans": plans, "limit": limit, "offset": offset, "count": len(plans)}


def _normalize_requested_items(payload):
    raw = payload.get("items")
    if raw is None and payload.get("item_id"):
        raw = [
            {
                "item_id": payload.get("item_id"),
                "weight_kg": payload.get("weight_kg"),
                "note": payload.get("note"),
            }
        ]
    if isinstance(raw, dict):
        raw = [raw]
    requested = []
    for entry in raw or []:
        if not isinstance(entry, dict):
            entry = {"item_id": entry}
        item_id = str(entry.get("item_id") or "").strip()
        if not item_id:
            continue
        requested.append(
            {"item_id": item_id, "weight_kg": entry.get("weight_kg"), "note": entry.get("note")}
        )
    return requested


def _in_plan_scope(plan, item):
    branch_id = plan.get("scope_branch_id")
    if branch_id and str(item.get("branch_id") or "") != str(branch_id):
        return False
    customer_id = plan.get("scope_customer_id")
    if customer_id and str(item.get("customer_id") or "") != str(customer_id):
        return False
    return True


def _claim_requested_items(plan, plan_unit_id, requested):
    """Manually claim items for a plan unit; returns one result row per request.

    Items outside the plan's branch or customer scope are reported as
    ``out_of_scope`` and left alone.
    """
    plan_id = plan["id"]
    results = []
    with db.immediate_transaction() as connection:
        items = db.get_load_items([entry["item_id"] for entry in requested], connection=connection)
        for entry in requested:
            item = items.get(entry["item_id"])
            if not item:
                results.append({"item_id": entry["item_id"], "status": "not_found"})
                continue
            if not _in_plan_scope(plan, item):
                results.append({"item_id": entry["item_id"], "status": "out_of_scope"})
                continue
            weight = to_number(entry.get("weight_kg"), default=None)
            if weight is None:
                weight = to_number(item.get("weight_kg"))
            if weight <= 0:
                results.append({"item_id": entry["item_id"], "status": "zero_weight"})
                continue
            assignment_id = db.claim_item(
                {
                    "plan_id": plan_id,
                    "plan_unit_id": plan_unit_id,
                    "load_id": item.get("load_id"),
                    "order_id": item.get("order_id"),
                    "item_id": item["item_id"],
                    "assigned_weight_kg": weight,
                    "priority_note": (entry.get("note") or "").strip() or "manual",
                },
                connection=connection,
            )
            if assignment_id is None:
                results.append({"item_id": entry["item_id"], "status": "already_assigned"})
                continue
            db.delete_bucket_item(plan_id, item["item_id"], connection=connection)
            results.append(
                {"item_id": entry["item_id"], "status": "assigned", "assignment_id": assignment_id}
            )
        db.recalc_used_capacity(plan_id, connection=connection)
    return results


def assign_items(plan_id, payload):
    """Manual (one item) or bulk (``items`` list) assignment onto a plan unit."""
    payload = payload or {}
    plan = _require_plan(plan_id)
    plan_unit = _require_plan_unit(plan_id, payload.get("plan_unit_id"))
    requested = _normalize_requested_items(payload)
    if not requested:
        raise PlanEditError("items contain no valid item_id")

    results = _claim_requested_items(plan, plan_unit["id"], requested)
    if len(results) == 1 and results[0]["status"] == "already_assigned":
        raise PlanEditError("Item is already assigned", 409)
    if len(results) == 1 and results[0]["status"] == "not_found":
        raise PlanEditError("Item not found", 404)
    if len(results) == 1 and results[0]["status"] == "out_of_scope":
        raise PlanEditError("Item is outside this plan's branch or customer scope", 404)
    assigned = sum(1 for row in results if row["status"] == "assigned")
    logger.info("Manually assigned %s/%s items to plan unit %s", assigned, len(results), plan_unit["id"])
    response = plan_payload(plan_id, message=f"Assigned {assigned} of {len(results)} items")
    response["results"] = results
    return response


def _find_fleet_unit(payload):
    unit_key = str(payload.get("unit_key") or "").strip()
    dispatch_unit_id = payload.get("dispatch_unit_id")
    if not unit_key and dispatch_unit_id in (None, ""):
        raise PlanEditError("unit_key or dispatch_unit_id is required")
    for unit in load_units():
        if unit_key and unit["unit_key"] == unit_key:
            return unit
        if dispatch_unit_id not in (None, "") and str(unit["dispatch_unit_id"]) == str(dispatch_unit_id):
            return unit
    raise PlanEditError("Unit not found in fleet", 404)


def add_idle_unit(plan_id, payload):
    payload = payload or {}
    plan = _require_plan(plan_id)
    unit = _find_fleet_unit(payload)

    with db.immediate_transaction() as connection:
        existing = db.find_plan_unit_by_key(plan_id, unit["unit_key"], connection=connection)
        if existing:
            plan_unit_id = existing["plan_unit_id"]
            message = "Unit already on plan"
        else:
            ledger = TripLedger.load(plan["departure_date"], _trip_cap(), connection=connection)
            if not ledger.has_slot(unit["unit_key"]):
                raise PlanEditError("Vehicle has no trips left for this date", 409)
            plan_unit_id = db.create_plan_unit(
                plan_unit_snapshot(unit, plan_id, plan["departure_date"]), connection=connection
            )
            message = "Unit added to plan"

    requested = _normalize_requested_items(payload)
    results = _claim_requested_items(plan, plan_unit_id, requested) if requested else []
    response = plan_payload(plan_id, message=message)
    response["plan_unit_id"] = plan_unit_id
    if results:
        response["results"] = results
    return response


def unassign(plan_id, assignment_id):
    _require_plan(plan_id)
    assignment = db.get_assignment(assignment_id)
    if not assignment or int(assignment["plan_id"]) != int(plan_id):
        raise PlanEditError("Assignment not found in this plan", 404)
    db.delete_assignment(assignment_id)
    logger.info("Unassigned item %s from plan %s", assignment["item_id"], plan_id)
    return plan_payload(plan_id, message="Assignment removed")


def _parse_order_ids(value):
    if value is None:
        return []
    raw_values = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [str(raw).strip() for raw in raw_values if str(raw or "").strip()]


def unassign_unit(plan_id, plan_unit_id, order_ids=None):
    """Clear a planned unit, or only the listed orders on it. The unit itself stays."""
    _require_plan(plan_id)
    plan_unit = _require_plan_unit(plan_id, plan_unit_id)
    order_ids = _parse_order_ids(order_ids)
    removed = db.delete_unit_assignments(plan_unit["id"], order_ids)
    logger.info(
        "Unassigned %s items from plan unit %s (orders=%s)", removed, plan_unit["id"], order_ids or "all"
    )
    return plan_payload(plan_id, message=f"Removed {removed} assignments")


def unassign_all(plan_id):
    _require_plan(plan_id)
    removed = db.delete_plan_assignments(plan_id)
    logger.info("Rolled back %s assignments on plan %s", removed, plan_id)
    return plan_payload(plan_id, message=f"Removed {removed} assignments")


def remove_plan_unit(plan_id, plan_unit_id):
    _require_plan(plan_id)
    plan_unit = _require_plan_unit(plan_id, plan_unit_id)
    if db.count_unit_assignments(plan_unit["id"]):
        raise PlanEditError("Cannot remove planned unit: there are items assigned to it")
    db.delete_plan_unit(plan_unit["id"])
    return plan_payload(plan_id, message="Unit removed from plan")


def set_unit_note(plan_id, plan_unit_id, note):
    _require_plan(plan_id)
    plan_unit = _require_plan_unit(plan_id, plan_unit_id)
    cleaned = str(note if note is not None else "").strip() or None
    db.update_plan_unit_note(plan_unit["id"], cleaned)
    return plan_payload(plan_id, message="Note saved" if cleaned else "Note cleared")


def delete_plan(plan_id):
    _require_plan(plan_id)
    db.delete_plan(plan_id)
    logger.info("Deleted plan %s", plan_id)
    return {"deleted": True, "plan_id": plan_id}
