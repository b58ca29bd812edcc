from .errors import (
    EngineError,
    ValidationError,
    MissingReferenceError,
    ConflictError,
    OverpaymentError,
    NotFoundError,
    StorageError,
)
from .overlap import check_availability, find_conflicts, intervals_overlap
from .bookings import create_booking, update_booking, set_status, delete_booking
from .charges import room_charges, bill_total, stay_days
from .bills import create_bill, update_bill, delete_bill, recompute_paid_amount, refresh_room_charges
from .payments import apply_payment, update_payment, delete_payment
