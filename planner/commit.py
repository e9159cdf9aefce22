import logging
import math

import db
from planner import bucket as bucket_reasons
from planner.fleet import vehicle_key
from planner.items import to_number
from planner.trips import TripLedger

logger = logging.getLogger(__name__)

NOTHING_TO_ASSIGN = "Nothing to assign after duplicate and zero-weight filtering. Plan created without units."


def plan_unit_snapshot(unit, plan_id, departure_date):
    rigid = unit.get("rigid") or {}
    horse = unit.get("horse") or {}
    trailer = unit.get("trailer") or {}
    capacity = to_number(unit.get("capacity_kg"))
    return {
        "plan_id": plan_id,
        "departure_date": departure_date,
        "unit_key": unit.get("unit_key") or vehicle_key(unit),
        "unit_type": unit.get("unit_type"),
        "dispatch_unit_id": unit.get("dispatch_unit_id"),
        "rigid_id": unit.get("rigid_id"),
        "horse_id": unit.get("horse_id"),
        "trailer_id": unit.get("trailer_id"),
        "driver_id": unit.get("driver_id"),
        "driver_name": unit.get("driver_name"),
        "rigid_plate": rigid.get("plate"),
        "rigid_fleet_number": rigid.get("fleet_number"),
        "horse_plate": horse.get("plate"),
        "horse_fleet_number": horse.get("fleet_number"),
        "trailer_plate": trailer.get("plate"),
        "trailer_fleet_number": trailer.get("fleet_number"),
        "capacity_kg": capacity if math.isfinite(capacity) else 0,
        "used_capacity_kg": 0,
        "length_mm": to_number(unit.get("length_mm")),
        "branch_id": unit.get("branch_id"),
        "ops_note": None,
    }


def split_by_raw_capacity(placements, capacity_kg, already_used=0.0, enabled=True):
    """Keep placements, in order, whose running total fits the raw capacity."""
    if not enabled or math.isinf(to_number(capacity_kg)):
        return list(placements), []
    remaining = to_number(capacity_kg) - to_number(already_used)
    kept = []
    overflow = []
    for placement in placements:
        if placement["weight"] <= remaining + 1e-9:
            kept.append(placement)
            remaining -= placement["weight"]
        else:
            overflow.append(placement)
    return kept, overflow


def group_by_unit(placements):
    grouped = {}
    for placement in placements:
        grouped.setdefault(placement["unit_idx"], []).append(placement)
    return grouped


def _assignment_row(plan_id, plan_unit_id, placement, note):
    item = placement["item"]
    return {
        "plan_id": plan_id,
        "plan_unit_id": plan_unit_id,
        "load_id": item.get("load_id"),
        "order_id": item.get("order_id"),
        "item_id": item.get("item_id"),
        "assigned_weight_kg": placement["weight"],
        "priority_note": note,
    }


class CommitWriter:
    """Persist accepted placements for one plan inside a single write transaction."""

    def __init__(self, units, config, bucket, departure_date):
        self.units = units
        self.config = config
        self.bucket = bucket
        self.departure_date = departure_date

    def _drop_duplicates_and_zero_weight(self, placements, connection):
        existing = db.list_assigned_item_ids(
            [placement["item"].get("item_id") for placement in placements],
            connection=connection,
        )
        seen = set()
        rows = []
        for placement in placements:
            item_id = placement["item"].get("item_id")
            if item_id in existing or item_id in seen:
                self.bucket.add(placement["item"], bucket_reasons.ALREADY_ASSIGNED, placement["weight"])
                logger.warning("Skipping item %s: already assigned", item_id)
                continue
            seen.add(item_id)
            if to_number(placement["weight"]) <= 0:
                self.bucket.add(placement["item"], bucket_reasons.ZERO_WEIGHT, 0)
                continue
            rows.append(placement)
        return rows

    def _write_unit(self, plan_id, unit, unit_rows, ledger, connection):
        """Returns (assigned count, whether a plan unit was created)."""
        key = unit.get("unit_key") or vehicle_key(unit)
        existing = db.find_plan_unit_by_key(plan_id, key, connection=connection)
        if existing is None and not ledger.has_slot(key):
            logger.warning(
                "Vehicle %s has no trips left on %s; bucketing %s items",
                key,
                self.departure_date,
                len(unit_rows),
            )
            self.bucket.add_placements(unit_rows, bucket_reasons.UNIT_CREATION_FAILED)
            return 0, False

        already_used = 0
        if existing is not None:
            already_used = existing.get("used_capacity_kg") or 0
        kept, overflow = split_by_raw_capacity(
            unit_rows,
            unit.get("capacity_kg"),
            already_used=already_used,
            enabled=self.config.enforce_raw_capacity,
        )
        self.bucket.add_placements(overflow, bucket_reasons.OVER_CAPACITY)
        if not kept:
            return 0, False

        created = existing is None
        if created:
            ledger.claim(key)
            plan_unit_id = db.create_plan_unit(
                plan_unit_snapshot(unit, plan_id, self.departure_date), connection=connection
            )
        else:
            plan_unit_id = existing["plan_unit_id"]

        assigned = 0
        for placement in kept:
            assignment_id = db.claim_item(
                _assignment_row(plan_id, plan_unit_id, placement, "auto"),
                connection=connection,
            )
            if assignment_id is None:
                self.bucket.add(placement["item"], bucket_reasons.ALREADY_ASSIGNED, placement["weight"])
                continue
            assigned += 1
        return assigned, created

    def write(self, plan, placements, plan_id=None):
        with db.immediate_transaction() as connection:
            if plan_id is None:
                plan_id = db.create_plan(plan, connection=connection)
            ledger = TripLedger.load(
                self.departure_date, self.config.vehicle_trip_cap, connection=connection
            )
            rows = self._drop_duplicates_and_zero_weight(placements, connection)

            created_units = 0
            assigned = 0
            for unit_idx, unit_rows in group_by_unit(rows).items():
                unit_assigned, created = self._write_unit(
                    plan_id, self.units[unit_idx], unit_rows, ledger, connection
                )
                assigned += unit_assigned
                created_units += 1 if created else 0
            if rows:
                db.recalc_used_capacity(plan_id, connection=connection)

            self.bucket.persist(plan_id, connection=connection)

        logger.info(
            "Committed plan %s: %s assignments on %s new units, %s bucketed",
            plan_id,
            assigned,
            created_units,
            len(self.bucket),
        )
        return {
            "plan_id": plan_id,
            "assigned": assigned,
            "units_created": created_units,
            "message": None if rows else NOTHING_TO_ASSIGN,
        }
