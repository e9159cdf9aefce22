from planner.items import item_requirements
from planner.units import normalize_units

UNPLACED_REASON = "No unit meets capacity/length/branch constraints"


class UnitRunState:
    def __init__(self, capacity_left, family=None):
        self.capacity_left = capacity_left
        self.assigned_count = 0
        self.family = family or None
        self.family_counts = {}

    def affinity(self, family):
        if not self.assigned_count or not family:
            return 0.5
        share = self.family_counts.get(family, 0) / self.assigned_count
        return max(0.0, min(1.0, share))

    def accepts_family(self, family):
        # Empty families pass here; the rule enforcer applies the strict lock.
        return not family or not self.family or self.family == family

    def record(self, weight, family):
        self.capacity_left = max(0, self.capacity_left - weight)
        self.assigned_count += 1
        if family and not self.family:
            self.family = family
        if family:
            self.family_counts[family] = self.family_counts.get(family, 0) + 1

    def as_dict(self):
        return {
            "capacity_left": self.capacity_left,
            "assigned_count": self.assigned_count,
            "family": self.family,
            "family_counts": dict(self.family_counts),
        }


class PackingContext:
    """Units and their run state for one packing run; never shared across runs."""

    def __init__(self, units, config):
        self.units = units
        self.config = config
        self.states = [
            UnitRunState(unit["capacity_left"], unit.get("locked_family")) for unit in units
        ]

    def _length_ok(self, unit, requirements):
        if not requirements["length_known"] and self.config.ignore_length_if_missing:
            return True
        if unit["length_mm"] > 0:
            return unit["length_mm"] >= requirements["need_length_mm"]
        return self.config.ignore_length_if_missing

    def candidates(self, requirements):
        pool = []
        for idx, unit in enumerate(self.units):
            state = self.states[idx]
            item_branch = requirements["branch_id"]
            if item_branch and str(unit.get("branch_id") or "") != str(item_branch):
                continue
            if not self._length_ok(unit, requirements):
                continue
            if state.capacity_left < requirements["need_kg"]:
                continue
            if not state.accepts_family(requirements["family"]):
                continue
            pool.append(idx)
        return pool

    def _fit_score(self, idx, requirements):
        """Capacity-left and unit-length ratios against the need, weighted 15/85; lower is tighter."""
        need_kg = max(requirements["need_kg"], 1)
        need_length = max(requirements["need_length_mm"] or 1, 1)
        capacity_part = (self.states[idx].capacity_left / need_kg) * 0.15
        length_part = (self.units[idx]["length_mm"] / need_length) * 0.85
        return capacity_part + length_part

    def rank(self, pool, requirements):
        def sort_key(idx):
            state = self.states[idx]
            return (
                -state.affinity(requirements["family"]),
                self._fit_score(idx, requirements),
                state.capacity_left - requirements["need_kg"],
                -self.units[idx]["priority"],
            )

        return sorted(pool, key=sort_key)

    def place(self, idx, item, requirements):
        self.states[idx].record(requirements["need_kg"], requirements["family"])
        return {
            "unit_idx": idx,
            "item": item,
            "weight": requirements["need_kg"],
            "family": requirements["family"],
        }

    def capacity_left_by_unit(self):
        return [state.capacity_left for state in self.states]


def pack_items(items, raw_units, config):
    """Greedy best-fit of items onto units, keeping each unit on one route family.

    Items are taken in the given order (oldest order date, heaviest first).
    Zero-weight items are skipped without being reported.
    """
    context = PackingContext(normalize_units(raw_units, config), config)
    placements = []
    unplaced = []

    for item in items or []:
        requirements = item_requirements(item, config)
        if not requirements["need_kg"]:
            continue

        pool = context.candidates(requirements)
        if not pool:
            row = dict(item)
            row["weight_left"] = requirements["need_kg"]
            row["reason"] = UNPLACED_REASON
            unplaced.append(row)
            continue

        chosen = context.rank(pool, requirements)[0]
        placements.append(context.place(chosen, item, requirements))

    for unit, state in zip(context.units, context.states):
        unit["capacity_left"] = state.capacity_left

    return {
        "placements": placements,
        "unplaced": unplaced,
        "units": context.units,
        "states": [state.as_dict() for state in context.states],
    }
