from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from services.errors import ValidationError

CENT = Decimal("0.01")


def parse_iso(dt_str):
    """Parse an ISO-8601 timestamp into a naive UTC datetime.

    Offsets are converted to UTC; a value without an offset is taken as UTC.
    Returns None when the value is missing or malformed.
    """
    if not isinstance(dt_str, str) or not dt_str.strip():
        return None
    value = dt_str.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def parse_amount(value):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def iso(dt):
    return dt.isoformat() if dt else None


def money(value):
    if value is None:
        return None
    return str(Decimal(str(value)).quantize(CENT))


def int_field(data: dict, name: str, required: bool = False):
    """Read an integer id from a JSON body or query dict; None when absent."""
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{name} is required")
        return None
    value = parse_int(raw)
    if value is None or value < 1:
        raise ValidationError(f"{name} must be a positive integer")
    return value


def datetime_field(data: dict, name: str, required: bool = False):
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{name} is required")
        return None
    value = parse_iso(raw)
    if value is None:
        raise ValidationError(f"Invalid {name}. Use ISO e.g. 2026-01-20T14:00:00")
    return value


def amount_field(data: dict, name: str, required: bool = False):
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{name} is required")
        return None
    value = parse_amount(raw)
    if value is None:
        raise ValidationError(f"{name} must be a number")
    return value
