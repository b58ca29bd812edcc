from datetime import datetime
from typing import List, Optional

from models.booking import ACTIVE_STATUSES, Booking
from models.room import Room
from services.errors import MissingReferenceError, ValidationError


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # half-open [start, end): a stay ending at T does not clash with one starting at T
    return a_start < b_end and b_start < a_end


def validate_interval(check_in, check_out):
    if not isinstance(check_in, datetime) or not isinstance(check_out, datetime):
        raise ValidationError("check_in and check_out must be datetimes")
    if check_out <= check_in:
        raise ValidationError("check_out must be after check_in")


def find_conflicts(session, room_id: int, check_in: datetime, check_out: datetime,
                   exclude_booking_id: Optional[int] = None) -> List[Booking]:
    """Active bookings on ``room_id`` whose stay intersects ``[check_in, check_out)``."""
    q = (
        session.query(Booking)
        .filter(
            Booking.room_id == room_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.check_in < check_out,
            Booking.check_out > check_in,
        )
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)

    return q.order_by(Booking.check_in.asc()).all()


def check_availability(session, room_id: int, check_in: datetime, check_out: datetime) -> List[Booking]:
    validate_interval(check_in, check_out)
    if session.get(Room, room_id) is None:
        raise MissingReferenceError("Room not found", details={"room_id": room_id})
    return find_conflicts(session, room_id, check_in, check_out)
