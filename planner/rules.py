import logging

from planner.fleet import vehicle_key
from planner.items import customer_key, item_family

logger = logging.getLogger(__name__)

RULE_REJECTED = "rule_rejected"


def _reject(placement, rule):
    rejected = dict(placement)
    rejected["reason"] = RULE_REJECTED
    rejected["rule"] = rule
    return rejected


def enforce_rules(placements, units, config, trips_used=None):
    """Split packer placements into ``accepted`` and ``rejected``.

    Re-derives the family lock per unit (first family seen wins), caps the
    distinct units per customer, and refuses to open a unit whose vehicle
    already has ``vehicle_trip_cap`` trips for the date in ``trips_used``.
    Capacity is left untouched.

    Units already on the plan (``plan_unit_id`` set) keep the family of their
    existing cargo in ``locked_family`` and do not take another trip.
    """
    trips_used = trips_used or {}
    family_by_unit = {
        idx: unit["locked_family"]
        for idx, unit in enumerate(units)
        if unit.get("locked_family") is not None
    }
    units_by_customer = {}
    opened_units = {idx for idx, unit in enumerate(units) if unit.get("plan_unit_id")}
    trips_opened = {}
    accepted = []
    rejected = []

    for placement in placements or []:
        idx = placement.get("unit_idx")
        if idx is None or idx < 0 or idx >= len(units):
            rejected.append(_reject(placement, "unknown_unit"))
            continue
        item = placement["item"]

        family = item_family(item)
        locked = family_by_unit.get(idx)
        if locked is not None and locked != family:
            rejected.append(_reject(placement, "family_lock"))
            continue

        customer = customer_key(item)
        customer_units = units_by_customer.get(customer, set())
        if idx not in customer_units and len(customer_units) >= config.customer_unit_cap:
            rejected.append(_reject(placement, "customer_unit_cap"))
            continue

        if idx not in opened_units:
            key = units[idx].get("unit_key") or vehicle_key(units[idx])
            used = trips_used.get(key, 0) + trips_opened.get(key, 0)
            if used >= config.vehicle_trip_cap:
                rejected.append(_reject(placement, "vehicle_trip_cap"))
                continue
            opened_units.add(idx)
            trips_opened[key] = trips_opened.get(key, 0) + 1

        family_by_unit.setdefault(idx, family)
        customer_units.add(idx)
        units_by_customer[customer] = customer_units
        accepted.append(placement)

    if rejected:
        logger.info("Rule enforcement rejected %s of %s placements", len(rejected), len(placements))
    return {"accepted": accepted, "rejected": rejected}
