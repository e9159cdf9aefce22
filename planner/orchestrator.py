import logging

import db
from planner import bucket as bucket_reasons
from planner.bucket import UnassignedBucket
from planner.commit import CommitWriter, group_by_unit, plan_unit_snapshot, split_by_raw_capacity
from planner.config import PackingConfig, coerce_bool
from planner.fleet import idle_units_by_branch, shape_unit
from planner.items import backfill_items, item_family
from planner.packer import pack_items
from planner.payload import build_nested
from planner.rules import RULE_REJECTED, enforce_rules
from planner.scope import resolve_scope
from planner.trips import fetch_trips_used

logger = logging.getLogger(__name__)

COLLECTING = "COLLECTING"
PACKING = "PACKING"
ENFORCING = "ENFORCING"
PREVIEW_RENDER = "PREVIEW_RENDER"
COMMITTING = "COMMITTING"
DONE = "DONE"


def load_units(branch_id=None):
    return [shape_unit(row) for row in db.list_dispatch_units(branch_id)]


def load_items(cutoff_date, branch_id=None, customer_id=None):
    items = db.list_backlog_items(cutoff_date, branch_id=branch_id, customer_id=customer_id)
    return backfill_items(items, db.get_route_branch_map())


def _preview_assignment(plan_unit_id, placement):
    item = placement["item"]
    return {
        "assignment_id": f"preview-{item.get('item_id')}",
        "plan_unit_id": plan_unit_id,
        "load_id": item.get("load_id"),
        "order_id": item.get("order_id"),
        "order_number": item.get("order_number"),
        "item_id": item.get("item_id"),
        "description": item.get("description"),
        "assigned_weight_kg": placement["weight"],
        "priority_note": "auto",
        "customer_id": item.get("customer_id"),
        "customer_name": item.get("customer_name"),
        "suburb_name": item.get("suburb_name"),
        "route_name": item.get("route_name"),
        "order_date": item.get("order_date"),
    }


class AssignmentPlanner:
    """One auto-assign run: collect, pack, enforce, then preview or commit.

    Packing and enforcement are identical in both modes; only the last step
    differs. Errors are not caught here.
    """

    def __init__(
        self, payload=None, config=None, unit_source=None, item_source=None, trip_source=None
    ):
        payload = payload or {}
        self.scope = resolve_scope(payload)
        self.commit = coerce_bool(payload.get("commit"))
        self.config = config or PackingConfig.from_request(payload)
        self.unit_source = unit_source or load_units
        self.item_source = item_source or load_items
        self.trip_source = trip_source or fetch_trips_used
        self.plan = None
        self.state = None
        self.units = []
        self.items = []
        self.bucket = UnassignedBucket()

    def _enter(self, state):
        logger.debug("Auto-assign %s -> %s", self.state, state)
        self.state = state

    def _plan_header(self):
        return {
            "departure_date": self.scope["departure_date"],
            "cutoff_date": self.scope["cutoff_date"],
            "scope_branch_id": self.scope["branch_id"],
            "scope_customer_id": self.scope["customer_id"],
            "notes": self.scope["notes"],
            "parameters": self.config.as_parameters(),
        }

    def collect(self):
        self._enter(COLLECTING)
        if self.scope["plan_id"]:
            self.plan = db.get_plan(self.scope["plan_id"])
        if self.plan:
            self.scope["departure_date"] = self.plan["departure_date"]
            self.scope["cutoff_date"] = self.plan.get("cutoff_date") or self.scope["cutoff_date"]
            self.scope["branch_id"] = self.plan.get("scope_branch_id")
            self.scope["customer_id"] = self.plan.get("scope_customer_id")
        self.units = self.unit_source(self.scope["branch_id"])
        if self.plan:
            self.units = self._with_plan_usage(self.units)
        self.items = self.item_source(
            self.scope["cutoff_date"], self.scope["branch_id"], self.scope["customer_id"]
        )

    def _with_plan_usage(self, units):
        """Copies of ``units`` carrying the load already on the plan being re-run."""
        existing = {row["unit_key"]: row for row in db.list_plan_units(self.plan["id"])}
        families = {}
        for row in db.list_plan_assignments(self.plan["id"]):
            families.setdefault(row["plan_unit_id"], item_family(row))

        seeded = []
        for unit in units:
            unit = dict(unit)
            row = existing.get(unit.get("unit_key"))
            if row is not None:
                unit["plan_unit_id"] = row["plan_unit_id"]
                unit["used_capacity_kg"] = row.get("used_capacity_kg") or 0
                unit["locked_family"] = families.get(row["plan_unit_id"])
            seeded.append(unit)
        return seeded

    def pack(self):
        self._enter(PACKING)
        return pack_items(self.items, self.units, self.config)

    def enforce(self, packed):
        self._enter(ENFORCING)
        trips_used = self.trip_source(self.scope["departure_date"])
        return enforce_rules(packed["placements"], packed["units"], self.config, trips_used)

    def render_preview(self, units, accepted):
        self._enter(PREVIEW_RENDER)
        plan_units = []
        assignments = []
        if self.plan:
            plan_units = db.list_plan_units(self.plan["id"])
            assignments = db.list_plan_assignments(self.plan["id"])
        existing = {row["plan_unit_id"]: row for row in plan_units}

        for unit_idx, unit_rows in group_by_unit(accepted).items():
            unit = units[unit_idx]
            kept, overflow = split_by_raw_capacity(
                unit_rows,
                unit.get("capacity_kg"),
                already_used=unit.get("used_capacity_kg") or 0,
                enabled=self.config.enforce_raw_capacity,
            )
            self.bucket.add_placements(overflow, bucket_reasons.OVER_CAPACITY)
            if not kept:
                continue
            added_kg = sum(placement["weight"] for placement in kept)
            snapshot = existing.get(unit.get("plan_unit_id"))
            if snapshot is None:
                snapshot = plan_unit_snapshot(unit, None, self.scope["departure_date"])
                snapshot["plan_unit_id"] = f"preview-{unit_idx}"
                plan_units.append(snapshot)
            snapshot["used_capacity_kg"] = (snapshot.get("used_capacity_kg") or 0) + added_kg
            assignments.extend(
                _preview_assignment(snapshot["plan_unit_id"], placement) for placement in kept
            )

        plan = self._plan_header()
        plan["id"] = self.plan["id"] if self.plan else None
        plan["mode"] = "preview"
        nested = build_nested(plan_units, assignments, self.bucket.rows)
        return plan, nested

    def commit_plan(self, units, accepted):
        self._enter(COMMITTING)
        writer = CommitWriter(units, self.config, self.bucket, self.scope["departure_date"])
        result = writer.write(
            self._plan_header(),
            accepted,
            plan_id=self.plan["id"] if self.plan else None,
        )
        plan_id = result["plan_id"]
        plan = db.get_plan(plan_id)
        plan["mode"] = "commit"
        plan["message"] = result["message"]
        nested = build_nested(
            db.list_plan_units(plan_id),
            db.list_plan_assignments(plan_id),
            db.list_plan_bucket(plan_id),
        )
        return plan, nested

    def run(self):
        self.collect()
        packed = self.pack()
        enforced = self.enforce(packed)

        self.bucket.add_unplaced(packed["unplaced"])
        self.bucket.add_placements(enforced["rejected"], RULE_REJECTED)

        units = packed["units"]
        if self.commit:
            plan, nested = self.commit_plan(units, enforced["accepted"])
        else:
            plan, nested = self.render_preview(units, enforced["accepted"])

        used_indices = {placement["unit_idx"] for placement in enforced["accepted"]}
        used_indices.update(idx for idx, unit in enumerate(units) if unit.get("plan_unit_id"))
        response = {
            "plan": plan,
            "assigned_units": nested["assigned_units"],
            "unassigned": nested["unassigned"],
            "idle_units_by_branch": idle_units_by_branch(units, used_indices),
            "summary": {
                "items_considered": len(self.items),
                "units_considered": len(units),
                "placed": len(enforced["accepted"]),
                "unplaced": len(packed["unplaced"]),
                "rule_rejected": len(enforced["rejected"]),
                "bucket_by_reason": self.bucket.counts_by_reason(),
            },
        }
        self._enter(DONE)
        logger.info(
            "Auto-assign %s plan=%s placed=%s unplaced=%s rejected=%s",
            plan["mode"],
            plan.get("id"),
            len(enforced["accepted"]),
            len(packed["unplaced"]),
            len(enforced["rejected"]),
        )
        return response


def run_auto_assign(payload, **kwargs):
    return AssignmentPlanner(payload, **kwargs).run()
