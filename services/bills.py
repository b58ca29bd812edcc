"""Final bill lifecycle.

A booking has at most one bill. ``total_amount`` is always rebuilt from the
charge columns and ``paid_amount`` from the payment rows; nothing here adds a
delta to a stored total. ``reconcile`` is the only code that writes
``paid_amount`` and ``outstanding_amount``.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models.booking import Booking
from models.final_bill import ZERO, FinalBill
from models.payment import Payment
from models.room import Room
from models.service_usage import ServiceUsage
from models.user import User
from services.charges import bill_total, room_charges, to_money
from services.errors import (
    ConflictError,
    MissingReferenceError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from services.locks import bill_lock, booking_lock

MONEY_FIELDS = ("room_charges", "total_service_charges", "total_tax", "total_discount", "late_checkout_charge")
UPDATABLE_FIELDS = ("user_id", "booking_id") + MONEY_FIELDS


def paid_total(session, bill_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.bill_id == bill_id)
        .scalar()
    )
    return to_money(total)


def service_charges_for(session, booking_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(ServiceUsage.total_price), 0))
        .filter(ServiceUsage.booking_id == booking_id)
        .scalar()
    )
    return to_money(total)


def room_charges_for(session, booking: Booking) -> Decimal:
    room = session.get(Room, booking.room_id)
    if room is None or room.room_type is None:
        raise MissingReferenceError("Room or room type not found for booking", details={"booking_id": booking.id})
    return room_charges(room.room_type.daily_rate, booking.check_in, booking.check_out)


def _retotal(bill: FinalBill):
    bill.total_amount = bill_total(
        bill.room_charges,
        bill.total_service_charges,
        bill.total_tax,
        bill.late_checkout_charge,
        bill.total_discount,
    )


def _flush_unique(session, booking_id):
    # the unique booking_id column settles a race the pre-check cannot see
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError(
            "Final bill for this booking already exists",
            details={"booking_id": booking_id},
        ) from exc


def reconcile(session, bill: FinalBill) -> FinalBill:
    """Rewrite paid/outstanding from the payment rows. Caller holds the bill lock."""
    session.flush()
    paid = paid_total(session, bill.id)
    total = to_money(bill.total_amount)
    outstanding = total - paid
    if outstanding < 0:
        raise OverpaymentError(
            "Payments on this bill would exceed its total",
            requested=paid,
            available=total,
        )
    bill.paid_amount = paid
    bill.outstanding_amount = outstanding
    return bill


def recompute_paid_amount(session, bill_id: int) -> FinalBill:
    with bill_lock(session, bill_id) as bills:
        bill = bills.get(int(bill_id))
        if bill is None:
            raise NotFoundError("Bill not found", details={"bill_id": bill_id})
        reconcile(session, bill)
    return bill


def create_bill(session, user_id, booking_id, total_tax=0, total_discount=0, late_checkout_charge=0) -> FinalBill:
    if user_id is None or booking_id is None:
        raise ValidationError("user_id and booking_id are required")
    tax = to_money(total_tax)
    discount = to_money(total_discount)
    late = to_money(late_checkout_charge)

    with booking_lock(session, booking_id) as bookings:
        existing = session.query(FinalBill).filter(FinalBill.booking_id == booking_id).first()
        if existing is not None:
            raise ConflictError(
                "Final bill for this booking already exists",
                conflicts=[existing],
                details={"bill_id": existing.id},
            )
        if session.get(User, user_id) is None:
            raise MissingReferenceError("User ID not found", details={"user_id": user_id})
        booking = bookings.get(int(booking_id))
        if booking is None:
            raise MissingReferenceError("Booking ID not found", details={"booking_id": booking_id})

        bill = FinalBill(
            user_id=user_id,
            booking_id=booking.id,
            room_charges=room_charges_for(session, booking),
            total_service_charges=service_charges_for(session, booking.id),
            total_tax=tax,
            total_discount=discount,
            late_checkout_charge=late,
            paid_amount=ZERO,
            created_at=datetime.utcnow(),
        )
        _retotal(bill)
        bill.outstanding_amount = bill.total_amount
        session.add(bill)
        _flush_unique(session, booking.id)

    return bill


def update_bill(session, bill_id: int, **fields) -> FinalBill:
    unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError("Fields cannot be set on a bill", details={"fields": unknown})
    changes = {k: v for k, v in fields.items() if v is not None}
    if not changes:
        raise ValidationError("At least one field must be provided for update")
    money = {name: to_money(changes[name]) for name in MONEY_FIELDS if name in changes}

    with bill_lock(session, bill_id) as bills:
        bill = bills.get(int(bill_id))
        if bill is None:
            raise NotFoundError("Bill ID not found", details={"bill_id": bill_id})

        user_id = changes.get("user_id")
        if user_id is not None and user_id != bill.user_id:
            if session.get(User, user_id) is None:
                raise MissingReferenceError("User ID not found", details={"user_id": user_id})
            bill.user_id = user_id

        booking_id = changes.get("booking_id")
        if booking_id is not None and booking_id != bill.booking_id:
            if session.get(Booking, booking_id) is None:
                raise MissingReferenceError("Booking ID not found", details={"booking_id": booking_id})
            taken = (
                session.query(FinalBill)
                .filter(FinalBill.booking_id == booking_id, FinalBill.id != bill.id)
                .first()
            )
            if taken is not None:
                raise ConflictError(
                    "Final bill for this booking already exists",
                    conflicts=[taken],
                    details={"bill_id": taken.id},
                )
            bill.booking_id = booking_id

        for name, value in money.items():
            setattr(bill, name, value)

        _retotal(bill)
        bill.updated_at = datetime.utcnow()
        _flush_unique(session, bill.booking_id)
        reconcile(session, bill)

    return bill


def refresh_room_charges(session, bill_id: int) -> FinalBill:
    """Re-derive room and service charges from the booking as it stands now."""
    with bill_lock(session, bill_id) as bills:
        bill = bills.get(int(bill_id))
        if bill is None:
            raise NotFoundError("Bill ID not found", details={"bill_id": bill_id})
        booking = session.get(Booking, bill.booking_id)
        if booking is None:
            raise MissingReferenceError("Booking ID not found", details={"booking_id": bill.booking_id})

        bill.room_charges = room_charges_for(session, booking)
        bill.total_service_charges = service_charges_for(session, booking.id)
        _retotal(bill)
        bill.updated_at = datetime.utcnow()
        reconcile(session, bill)

    return bill


def delete_bill(session, bill_id: int) -> None:
    # payments are never cascaded; they must be deleted or moved first
    with bill_lock(session, bill_id) as bills:
        bill = bills.get(int(bill_id))
        if bill is None:
            raise NotFoundError("Bill ID not found", details={"bill_id": bill_id})

        payments = session.query(Payment).filter(Payment.bill_id == bill.id).order_by(Payment.id.asc()).all()
        if payments:
            raise ConflictError("Bill has payments; delete or move them first",
                                conflicts=payments, details={"payment_ids": [p.id for p in payments]})

        session.delete(bill)


def get_bill(session, bill_id: int) -> FinalBill:
    bill = session.get(FinalBill, bill_id)
    if bill is None:
        raise NotFoundError("Final bill not found", details={"bill_id": bill_id})
    return bill


def get_bill_by_booking(session, booking_id: int) -> FinalBill:
    bill = session.query(FinalBill).filter(FinalBill.booking_id == booking_id).first()
    if bill is None:
        raise NotFoundError("Final bill with that booking ID not found", details={"booking_id": booking_id})
    return bill


def list_bills(session, user_id=None, outstanding_only=False, limit=200):
    q = session.query(FinalBill)
    if user_id is not None:
        q = q.filter(FinalBill.user_id == user_id)
    if outstanding_only:
        q = q.filter(FinalBill.outstanding_amount > 0)
    return q.order_by(FinalBill.id.asc()).limit(limit).all()
