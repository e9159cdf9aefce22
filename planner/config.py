import math
import os

DEFAULT_PACKING_PARAMS = {
    "headroom": 0.10,
    "length_buffer_mm": 600,
    "ignore_length_if_missing": True,
    "customer_unit_cap": 2,
    "vehicle_trip_cap": 2,
    "route_affinity_slop": 0.25,
    "enforce_raw_capacity": True,
}

ENV_OVERRIDES = {
    "headroom": "PLANNER_CAPACITY_HEADROOM",
    "length_buffer_mm": "PLANNER_LENGTH_BUFFER_MM",
    "ignore_length_if_missing": "PLANNER_IGNORE_LENGTH_IF_MISSING",
    "customer_unit_cap": "PLANNER_CUSTOMER_UNIT_CAP",
    "vehicle_trip_cap": "PLANNER_VEHICLE_TRIP_CAP",
    "route_affinity_slop": "PLANNER_ROUTE_AFFINITY_SLOP",
    "enforce_raw_capacity": "PLANNER_ENFORCE_RAW_CAPACITY",
}

# Request keys as sent by the dispatch UI, mapped to config fields.
REQUEST_ALIASES = {
    "capacityHeadroom": "headroom",
    "capacity_headroom": "headroom",
    "lengthBufferMm": "length_buffer_mm",
    "ignoreLengthIfMissing": "ignore_length_if_missing",
    "customerUnitCap": "customer_unit_cap",
    "vehicleTripCap": "vehicle_trip_cap",
    "routeAffinitySlop": "route_affinity_slop",
    "enforceRawCapacity": "enforce_raw_capacity",
}

UNBOUNDED_TOKENS = {"inf", "infinity", "none", "unbounded", "unlimited"}


def coerce_bool(value, default=False):
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on", "y"}:
        return True
    if text in {"0", "false", "no", "off", "n"}:
        return False
    return bool(default)


def _coerce_non_negative_float(value, default):
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(parsed) or math.isinf(parsed) or parsed < 0:
        return float(default)
    return parsed


def _coerce_cap(value, default):
    """Positive int, or ``math.inf`` for unbounded tokens and non-positive values."""
    if value is None or value == "":
        return default
    if isinstance(value, float) and math.isinf(value):
        return math.inf
    text = str(value).strip().lower()
    if text in UNBOUNDED_TOKENS:
        return math.inf
    try:
        parsed = int(float(text))
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return math.inf
    return parsed


def _cap_label(cap):
    return "Infinity" if math.isinf(cap) else int(cap)


class PackingConfig:
    def __init__(
        self,
        headroom=DEFAULT_PACKING_PARAMS["headroom"],
        length_buffer_mm=DEFAULT_PACKING_PARAMS["length_buffer_mm"],
        ignore_length_if_missing=DEFAULT_PACKING_PARAMS["ignore_length_if_missing"],
        customer_unit_cap=DEFAULT_PACKING_PARAMS["customer_unit_cap"],
        vehicle_trip_cap=DEFAULT_PACKING_PARAMS["vehicle_trip_cap"],
        route_affinity_slop=DEFAULT_PACKING_PARAMS["route_affinity_slop"],
        enforce_raw_capacity=DEFAULT_PACKING_PARAMS["enforce_raw_capacity"],
    ):
        self.headroom = _coerce_non_negative_float(headroom, DEFAULT_PACKING_PARAMS["headroom"])
        self.length_buffer_mm = _coerce_non_negative_float(
            length_buffer_mm, DEFAULT_PACKING_PARAMS["length_buffer_mm"]
        )
        self.ignore_length_if_missing = coerce_bool(
            ignore_length_if_missing, DEFAULT_PACKING_PARAMS["ignore_length_if_missing"]
        )
        self.customer_unit_cap = _coerce_cap(
            customer_unit_cap, DEFAULT_PACKING_PARAMS["customer_unit_cap"]
        )
        self.vehicle_trip_cap = _coerce_cap(
            vehicle_trip_cap, DEFAULT_PACKING_PARAMS["vehicle_trip_cap"]
        )
        self.route_affinity_slop = _coerce_non_negative_float(
            route_affinity_slop, DEFAULT_PACKING_PARAMS["route_affinity_slop"]
        )
        self.enforce_raw_capacity = coerce_bool(
            enforce_raw_capacity, DEFAULT_PACKING_PARAMS["enforce_raw_capacity"]
        )

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        values = {}
        for field, env_name in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is not None and str(raw).strip() != "":
                values[field] = raw
        return cls(**values)

    @classmethod
    def from_request(cls, payload, base=None):
        """Overlay request knobs on ``base`` (env defaults when omitted)."""
        base = base or cls.from_env()
        values = {
            "headroom": base.headroom,
            "length_buffer_mm": base.length_buffer_mm,
            "ignore_length_if_missing": base.ignore_length_if_missing,
            "customer_unit_cap": base.customer_unit_cap,
            "vehicle_trip_cap": base.vehicle_trip_cap,
            "route_affinity_slop": base.route_affinity_slop,
            "enforce_raw_capacity": base.enforce_raw_capacity,
        }
        for key, raw in (payload or {}).items():
            field = REQUEST_ALIASES.get(key, key)
            if field in values and raw is not None and raw != "":
                values[field] = raw
        return cls(**values)

    def as_parameters(self):
        return {
            "capacity_headroom": f"{round(self.headroom * 100, 2):g}%",
            "length_buffer_mm": int(self.length_buffer_mm),
            "ignore_length_if_missing": self.ignore_length_if_missing,
            "customer_unit_cap": _cap_label(self.customer_unit_cap),
            "vehicle_trip_cap": _cap_label(self.vehicle_trip_cap),
            "route_affinity_slop": self.route_affinity_slop,
            "enforce_raw_capacity": self.enforce_raw_capacity,
            "hard_route_lock": True,
        }

    def __repr__(self):
        return f"PackingConfig({self.as_parameters()!r})"
