import math
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from services.errors import ValidationError

CENT = Decimal("0.01")
SECONDS_PER_DAY = 24 * 60 * 60


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount: %r" % (value,))
    if not amount.is_finite():
        raise ValidationError("Invalid amount: %r" % (value,))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def stay_days(check_in: datetime, check_out: datetime) -> int:
    """Billable days for a stay; any started day counts as a full day."""
    seconds = (check_out - check_in).total_seconds()
    days = math.ceil(seconds / SECONDS_PER_DAY)
    if days <= 0:
        raise ValidationError("Invalid date range: check_out must be after check_in")
    return days


def room_charges(daily_rate, check_in: datetime, check_out: datetime) -> Decimal:
    rate = to_money(daily_rate)
    if rate < 0:
        raise ValidationError("daily_rate cannot be negative")
    return to_money(rate * stay_days(check_in, check_out))


def bill_total(room, service, tax, late_checkout, discount) -> Decimal:
    parts = {
        "room_charges": to_money(room),
        "total_service_charges": to_money(service),
        "total_tax": to_money(tax),
        "late_checkout_charge": to_money(late_checkout),
        "total_discount": to_money(discount),
    }
    negative = [name for name, v in parts.items() if v < 0]
    if negative:
        raise ValidationError("Bill figures cannot be negative", details={"fields": negative})

    total = (
        parts["room_charges"]
        + parts["total_service_charges"]
        + parts["total_tax"]
        + parts["late_checkout_charge"]
        - parts["total_discount"]
    )
    if total < 0:
        raise ValidationError("Discount exceeds bill charges")
    return total
