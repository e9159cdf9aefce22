import db

ALREADY_ASSIGNED = "already_assigned"
ZERO_WEIGHT = "zero_weight"
UNIT_CREATION_FAILED = "unit_creation_failed"
OVER_CAPACITY = "over_capacity"


def bucket_row(item, reason, weight_left=None):
    if weight_left is None:
        weight_left = item.get("weight_left", item.get("weight_kg"))
    return {
        "load_id": item.get("load_id"),
        "order_id": item.get("order_id"),
        "order_number": item.get("order_number"),
        "item_id": item.get("item_id"),
        "customer_id": item.get("customer_id"),
        "customer_name": item.get("customer_name"),
        "suburb_name": item.get("suburb_name"),
        "route_name": item.get("route_name"),
        "order_date": item.get("order_date"),
        "weight_left": weight_left,
        "description": item.get("description"),
        "reason": reason,
    }


class UnassignedBucket:
    """Remainder ledger for one run; one row per item, first reason wins."""

    def __init__(self):
        self.rows = []
        self._seen = set()

    def add(self, item, reason, weight_left=None):
        item_id = item.get("item_id")
        if item_id is not None and item_id in self._seen:
            return
        if item_id is not None:
            self._seen.add(item_id)
        self.rows.append(bucket_row(item, reason, weight_left=weight_left))

    def add_unplaced(self, unplaced):
        for row in unplaced or []:
            self.add(row, row.get("reason"), weight_left=row.get("weight_left"))

    def add_placements(self, placements, reason):
        for placement in placements or []:
            self.add(placement["item"], reason, weight_left=placement.get("weight"))

    def counts_by_reason(self):
        counts = {}
        for row in self.rows:
            counts[row["reason"]] = counts.get(row["reason"], 0) + 1
        return counts

    def __len__(self):
        return len(self.rows)

    def persist(self, plan_id, connection=None):
        """Replace the plan's stored bucket with this run's rows."""
        return db.replace_plan_bucket(plan_id, self.rows, connection=connection)
