import re
import uuid
from datetime import date, datetime, timedelta

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def today_tomorrow(today=None):
    today = today or date.today()
    return today.isoformat(), (today + timedelta(days=1)).isoformat()


def as_iso_or_none(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()[:10]
    if not _ISO_DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return None


def _clean_value(value):
    if value is None:
        return ""
    return str(value).strip()


def parse_branch_single(value):
    """A single branch id, or None for "all" and anything that is not an id."""
    text = _clean_value(value)
    if not text or text.lower() == "all":
        return None
    try:
        return str(uuid.UUID(text))
    except ValueError:
        pass
    if re.fullmatch(r"[A-Za-z0-9_-]{1,64}", text):
        return text
    return None


def parse_customer(value):
    text = _clean_value(value)
    if not text or text.lower() == "all":
        return None
    return text


def parse_plan_id(value):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def resolve_scope(payload, today=None):
    """Departure/cutoff dates and branch/customer filters from a request body.

    Malformed values fall back to defaults: departure tomorrow, cutoff today,
    all branches, all customers.
    """
    payload = payload or {}
    today_iso, tomorrow_iso = today_tomorrow(today)
    return {
        "departure_date": as_iso_or_none(payload.get("departure_date")) or tomorrow_iso,
        "cutoff_date": as_iso_or_none(payload.get("cutoff_date")) or today_iso,
        "branch_id": parse_branch_single(payload.get("branch_id")),
        "customer_id": parse_customer(payload.get("customer_id")),
        "plan_id": parse_plan_id(payload.get("plan_id")),
        "notes": _clean_value(payload.get("notes")) or None,
    }
