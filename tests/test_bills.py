from decimal import Decimal

import pytest

from models.final_bill import FinalBill
from models.payment import Payment
from models.service_usage import ChargeableService, ServiceUsage
from services.bills import (
    create_bill,
    delete_bill,
    get_bill,
    get_bill_by_booking,
    list_bills,
    recompute_paid_amount,
    refresh_room_charges,
    update_bill,
)
from services.bookings import update_booking
from services.errors import (
    ConflictError,
    MissingReferenceError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from services.payments import apply_payment

from conftest import dt


def test_bill_is_built_from_room_rate_and_service_usage(session, hotel, book):
    booking = book("2025-10-10T14:00:00", "2025-10-12T11:00:00")
    spa = ChargeableService(branch_id=hotel.branch_id, name="Spa", unit_price=Decimal("25.00"), unit_type="session")
    session.add(spa)
    session.flush()
    session.add_all([
        ServiceUsage(service_id=spa.id, booking_id=booking.id, quantity=2, total_price=Decimal("50.00")),
        ServiceUsage(service_id=spa.id, booking_id=booking.id, quantity=1, total_price=Decimal("25.00")),
    ])
    session.commit()

    bill = create_bill(session, user_id=hotel.staff_id, booking_id=booking.id,
                       total_tax="27.50", total_discount="10", late_checkout_charge="15")

    assert bill.room_charges == Decimal("200.00")
    assert bill.total_service_charges == Decimal("75.00")
    assert bill.total_amount == Decimal("307.50")
    assert bill.paid_amount == Decimal("0.00")
    assert bill.outstanding_amount == Decimal("307.50")


def test_second_bill_for_a_booking_is_rejected(session, hotel, bill_300):
    with pytest.raises(ConflictError) as excinfo:
        create_bill(session, user_id=hotel.staff_id, booking_id=bill_300.booking_id)

    assert excinfo.value.details == {"bill_id": bill_300.id}
    assert session.query(FinalBill).count() == 1


def test_bill_requires_existing_user_and_booking(session, hotel, book):
    booking = book("2025-10-10T14:00:00", "2025-10-12T11:00:00")

    with pytest.raises(MissingReferenceError):
        create_bill(session, user_id=999, booking_id=booking.id)
    with pytest.raises(MissingReferenceError):
        create_bill(session, user_id=hotel.staff_id, booking_id=999)
    with pytest.raises(ValidationError):
        create_bill(session, user_id=hotel.staff_id, booking_id=booking.id, total_discount="1000")

    assert session.query(FinalBill).count() == 0


def test_lookups(session, hotel, bill_300):
    assert get_bill(session, bill_300.id).booking_id == bill_300.booking_id
    assert get_bill_by_booking(session, bill_300.booking_id).id == bill_300.id

    with pytest.raises(NotFoundError):
        get_bill(session, 999)
    with pytest.raises(NotFoundError):
        get_bill_by_booking(session, 999)


def test_update_bill_retotals(session, hotel, bill_300):
    bill = update_bill(session, bill_300.id, total_tax="30", total_discount="5")

    assert bill.total_amount == Decimal("325.00")
    assert bill.outstanding_amount == Decimal("325.00")


def test_update_bill_below_paid_amount_is_rejected(session, hotel, bill_300):
    apply_payment(session, bill_300.id, "Cash", "250")

    with pytest.raises(OverpaymentError):
        update_bill(session, bill_300.id, total_discount="60")

    bill = get_bill(session, bill_300.id)
    assert bill.total_discount == Decimal("0.00")
    assert bill.total_amount == Decimal("300.00")
    assert bill.outstanding_amount == Decimal("50.00")


def test_update_bill_validation(session, hotel, bill_300, book):
    other = book("2025-11-01T14:00:00", "2025-11-02T11:00:00")
    second = create_bill(session, user_id=hotel.staff_id, booking_id=other.id)

    with pytest.raises(ValidationError):
        update_bill(session, bill_300.id)
    with pytest.raises(ValidationError):
        update_bill(session, bill_300.id, paid_amount="10")
    with pytest.raises(NotFoundError):
        update_bill(session, 999, total_tax="1")
    with pytest.raises(MissingReferenceError):
        update_bill(session, bill_300.id, user_id=999)
    with pytest.raises(ConflictError):
        update_bill(session, bill_300.id, booking_id=second.booking_id)


def test_recompute_is_idempotent_and_repairs_drift(session, hotel, bill_300):
    apply_payment(session, bill_300.id, "Card", "120")
    apply_payment(session, bill_300.id, "Cash", "30")

    # simulate a stale cached total
    session.query(FinalBill).filter(FinalBill.id == bill_300.id).update(
        {"paid_amount": Decimal("0"), "outstanding_amount": Decimal("300")}
    )
    session.commit()

    first = recompute_paid_amount(session, bill_300.id)
    assert (first.paid_amount, first.outstanding_amount) == (Decimal("150.00"), Decimal("150.00"))

    second = recompute_paid_amount(session, bill_300.id)
    assert (second.paid_amount, second.outstanding_amount) == (Decimal("150.00"), Decimal("150.00"))

    with pytest.raises(NotFoundError):
        recompute_paid_amount(session, 999)


def test_refresh_room_charges_after_stay_is_extended(session, hotel, bill_300):
    update_booking(session, bill_300.booking_id, check_out=dt("2025-01-06T11:00:00"))

    bill = refresh_room_charges(session, bill_300.id)

    assert bill.room_charges == Decimal("500.00")
    assert bill.outstanding_amount == Decimal("500.00")


def test_delete_bill(session, hotel, bill_300):
    delete_bill(session, bill_300.id)

    assert session.query(FinalBill).count() == 0
    with pytest.raises(NotFoundError):
        delete_bill(session, bill_300.id)


def test_list_bills_outstanding_only(session, hotel, bill_300, book):
    other = book("2025-11-01T14:00:00", "2025-11-02T11:00:00")
    settled = create_bill(session, user_id=hotel.staff_id, booking_id=other.id)
    apply_payment(session, settled.id, "Cash", "100")

    assert [b.id for b in list_bills(session)] == [bill_300.id, settled.id]
    assert [b.id for b in list_bills(session, outstanding_only=True)] == [bill_300.id]
    assert session.query(Payment).count() == 1


def test_bill_with_payments_cannot_be_deleted(session, hotel, bill_300):
    first = apply_payment(session, bill_300.id, "Cash", 50)
    second = apply_payment(session, bill_300.id, "Card", 20)

    with pytest.raises(ConflictError) as excinfo:
        delete_bill(session, bill_300.id)

    assert excinfo.value.details == {"payment_ids": [first.id, second.id]}
    assert get_bill(session, bill_300.id).paid_amount == Decimal("70.00")


def test_updates_keep_the_creation_time(session, hotel, bill_300):
    created_at = bill_300.created_at
    assert bill_300.updated_at is None

    bill = update_bill(session, bill_300.id, total_tax="12")

    assert bill.created_at == created_at
    assert bill.updated_at is not None and bill.updated_at >= created_at

    refreshed = refresh_room_charges(session, bill_300.id)
    assert refreshed.created_at == created_at
