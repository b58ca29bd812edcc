import logging
from datetime import datetime

from models.booking import (
    ACTIVE_STATUSES,
    BOOKED,
    BOOKING_STATUSES,
    CANCELLED,
    CHECKED_IN,
    CHECKED_OUT,
    PAYMENT_METHODS,
    Booking,
)
from models.final_bill import FinalBill
from models.guest import Guest
from models.room import Room
from models.service_usage import ServiceUsage
from models.user import User
from services.errors import (
    ConflictError,
    MissingReferenceError,
    NotFoundError,
    ValidationError,
)
from services.locks import booking_lock, room_lock
from services.overlap import find_conflicts, validate_interval

logger = logging.getLogger(__name__)

# Checked-Out and Cancelled are terminal; nothing returns a booking to an active state
ALLOWED_TRANSITIONS = {
    BOOKED: {CHECKED_IN, CANCELLED},
    CHECKED_IN: {CHECKED_OUT, CANCELLED},
    CHECKED_OUT: set(),
    CANCELLED: set(),
}

UPDATABLE_FIELDS = ("user_id", "guest_id", "room_id", "status", "payment_method", "check_in", "check_out")
SLOT_FIELDS = ("room_id", "check_in", "check_out")


def _check_transition(current: str, new: str):
    if new not in BOOKING_STATUSES:
        raise ValidationError("Invalid booking status", details={"allowed": list(BOOKING_STATUSES)})
    if new == current:
        return
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot change booking status from {current} to {new}")


def _require_refs(session, user_id=None, guest_id=None, room_id=None):
    missing = {}
    if user_id is not None and session.get(User, user_id) is None:
        missing["user_id"] = user_id
    if guest_id is not None and session.get(Guest, guest_id) is None:
        missing["guest_id"] = guest_id
    if room_id is not None and session.get(Room, room_id) is None:
        missing["room_id"] = room_id
    if missing:
        raise MissingReferenceError("Referenced record not found", details=missing)


def _conflict(room_id, conflicts):
    logger.info("room %s unavailable, conflicts with bookings %s", room_id, [b.id for b in conflicts])
    return ConflictError(
        "Room is unavailable due to conflicting booking(s)",
        conflicts=conflicts,
        details={
            "conflicting_bookings": [
                {
                    "id": b.id,
                    "room_id": b.room_id,
                    "status": b.status,
                    "check_in": b.check_in.isoformat(),
                    "check_out": b.check_out.isoformat(),
                }
                for b in conflicts
            ]
        },
    )


def create_booking(session, user_id, guest_id, room_id, payment_method, check_in, check_out) -> Booking:
    required = {"user_id": user_id, "guest_id": guest_id, "room_id": room_id,
                "check_in": check_in, "check_out": check_out}
    missing = [name for name, value in required.items() if value is None]
    if missing:
        raise ValidationError("Missing required fields", details={"fields": missing})
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"allowed": list(PAYMENT_METHODS)})
    validate_interval(check_in, check_out)

    _require_refs(session, user_id=user_id, guest_id=guest_id, room_id=room_id)

    # overlap check and insert share one room-scoped critical section
    with room_lock(session, room_id):
        conflicts = find_conflicts(session, room_id, check_in, check_out)
        if conflicts:
            raise _conflict(room_id, conflicts)

        booking = Booking(
            user_id=user_id,
            guest_id=guest_id,
            room_id=room_id,
            payment_method=payment_method,
            status=BOOKED,
            check_in=check_in,
            check_out=check_out,
            created_at=datetime.utcnow(),
        )
        session.add(booking)
        session.flush()

    return booking


def update_booking(session, booking_id: int, **fields) -> Booking:
    """Apply a partial update.

    Only non-None fields are merged. When the room or either date is part of the
    update and the booking stays active, the new slot is checked against every
    other active booking before anything is written.
    """
    unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError("Unknown booking fields", details={"fields": unknown})

    changes = {k: v for k, v in fields.items() if v is not None}
    if not changes:
        raise ValidationError("At least one field must be provided for update")
    if "status" in changes and changes["status"] not in BOOKING_STATUSES:
        raise ValidationError("Invalid booking status", details={"allowed": list(BOOKING_STATUSES)})
    if "payment_method" in changes and changes["payment_method"] not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"allowed": list(PAYMENT_METHODS)})
    for name in ("check_in", "check_out"):
        if name in changes and not isinstance(changes[name], datetime):
            raise ValidationError(f"{name} must be a datetime")
    if "check_in" in changes and "check_out" in changes:
        validate_interval(changes["check_in"], changes["check_out"])

    current = session.get(Booking, booking_id)
    if current is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    old_room_id = current.room_id

    _require_refs(
        session,
        user_id=changes.get("user_id"),
        guest_id=changes.get("guest_id"),
        room_id=changes.get("room_id"),
    )

    with room_lock(session, old_room_id, changes.get("room_id")):
        booking = (
            session.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        if booking.room_id != old_room_id:
            raise ConflictError("Booking was moved by another request, retry the update")

        new_status = changes.get("status", booking.status)
        _check_transition(booking.status, new_status)

        new_room_id = changes.get("room_id", booking.room_id)
        new_check_in = changes.get("check_in", booking.check_in)
        new_check_out = changes.get("check_out", booking.check_out)
        validate_interval(new_check_in, new_check_out)

        touches_slot = any(name in changes for name in SLOT_FIELDS)
        if touches_slot and new_status in ACTIVE_STATUSES:
            conflicts = find_conflicts(
                session, new_room_id, new_check_in, new_check_out, exclude_booking_id=booking.id
            )
            if conflicts:
                raise _conflict(new_room_id, conflicts)

        for name, value in changes.items():
            setattr(booking, name, value)
        session.flush()

    return booking


def set_status(session, booking_id: int, status: str) -> Booking:
    # check-in / check-out / cancel never need an overlap check
    with booking_lock(session, booking_id) as rows:
        booking = rows.get(int(booking_id))
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        _check_transition(booking.status, status)
        booking.status = status

    return booking


def check_in_booking(session, booking_id: int) -> Booking:
    return set_status(session, booking_id, CHECKED_IN)


def check_out_booking(session, booking_id: int) -> Booking:
    return set_status(session, booking_id, CHECKED_OUT)


def cancel_booking(session, booking_id: int) -> Booking:
    return set_status(session, booking_id, CANCELLED)


def delete_booking(session, booking_id: int) -> None:
    with booking_lock(session, booking_id) as rows:
        booking = rows.get(int(booking_id))
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})

        bill = session.query(FinalBill).filter(FinalBill.booking_id == booking.id).first()
        if bill is not None:
            raise ConflictError("Booking has a final bill; delete the bill first",
                                conflicts=[bill], details={"bill_id": bill.id})
        usage_ids = [u.id for u in session.query(ServiceUsage).filter(ServiceUsage.booking_id == booking.id)]
        if usage_ids:
            raise ConflictError("Booking has recorded service usage",
                                details={"service_usage_ids": usage_ids})

        session.delete(booking)


def get_booking(session, booking_id: int) -> Booking:
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return booking


def list_bookings(session, guest_id=None, room_id=None, branch_id=None, status=None, limit=200):
    q = session.query(Booking)
    if guest_id is not None:
        q = q.filter(Booking.guest_id == guest_id)
    if room_id is not None:
        q = q.filter(Booking.room_id == room_id)
    if branch_id is not None:
        q = q.join(Room, Booking.room_id == Room.id).filter(Room.branch_id == branch_id)
    if status:
        q = q.filter(Booking.status == status)
    return q.order_by(Booking.check_in.desc()).limit(limit).all()
