"""Payment application against final bills.

Every mutation runs inside ``bill_lock`` for each bill it touches, so two
submissions against one bill are applied one after the other and the second
always sees the first one's effect. The headroom for a payment is derived from
the payment rows inside the lock, never taken from an earlier read.
"""
import logging
from datetime import datetime
from decimal import Decimal

from models.booking import PAYMENT_METHODS
from models.payment import Payment
from services.bills import paid_total, reconcile
from services.charges import to_money
from services.errors import (
    ConflictError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from services.locks import bill_lock

logger = logging.getLogger(__name__)


def _check_method(method):
    if method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"allowed": list(PAYMENT_METHODS)})


def _positive_amount(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValidationError("Paid amount must be positive")
    return value


def _headroom(session, bill) -> Decimal:
    return to_money(bill.total_amount) - paid_total(session, bill.id)


def _reject_overpayment(bill, requested, available):
    logger.info("rejecting payment of %s on bill %s (outstanding %s)", requested, bill.id, available)
    raise OverpaymentError(
        "Paid amount is larger than outstanding amount",
        requested=requested,
        available=available,
    )


def _reload_payment(session, payment_id):
    return (
        session.query(Payment)
        .filter(Payment.id == payment_id)
        .populate_existing()
        .first()
    )


def apply_payment(session, bill_id: int, method: str, amount) -> Payment:
    _check_method(method)
    value = _positive_amount(amount)

    with bill_lock(session, bill_id) as bills:
        bill = bills.get(int(bill_id))
        if bill is None:
            raise NotFoundError("Bill ID not found", details={"bill_id": bill_id})

        available = _headroom(session, bill)
        if value > available:
            _reject_overpayment(bill, value, available)

        payment = Payment(bill_id=bill.id, method=method, amount=value, paid_at=datetime.utcnow())
        session.add(payment)
        session.flush()
        reconcile(session, bill)

    return payment


def update_payment(session, payment_id: int, bill_id=None, amount=None, method=None) -> Payment:
    """Change a payment's amount, method or bill.

    Moving a payment to another bill recomputes both bills. When the bill does
    not change, the payment's current amount counts towards the headroom.
    """
    if bill_id is None and amount is None and method is None:
        raise ValidationError("At least one field must be provided for update")
    if method is not None:
        _check_method(method)
    new_amount = _positive_amount(amount) if amount is not None else None

    current = session.get(Payment, payment_id)
    if current is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    old_bill_id = current.bill_id
    target_bill_id = int(bill_id) if bill_id is not None else old_bill_id

    with bill_lock(session, old_bill_id, target_bill_id) as bills:
        payment = _reload_payment(session, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})
        if payment.bill_id != old_bill_id:
            raise ConflictError("Payment was moved by another request, retry the update")

        target = bills.get(target_bill_id)
        if target is None:
            raise NotFoundError("Bill ID not found", details={"bill_id": target_bill_id})

        current_amount = to_money(payment.amount)
        amount_after = new_amount if new_amount is not None else current_amount
        available = _headroom(session, target)
        if target.id == old_bill_id:
            available += current_amount
        if amount_after > available:
            _reject_overpayment(target, amount_after, available)

        payment.bill_id = target.id
        payment.amount = amount_after
        if method is not None:
            payment.method = method
        session.flush()

        reconcile(session, target)
        if target.id != old_bill_id:
            previous = bills.get(old_bill_id)
            if previous is not None:
                reconcile(session, previous)

    return payment


def delete_payment(session, payment_id: int) -> None:
    current = session.get(Payment, payment_id)
    if current is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    bill_id = current.bill_id

    with bill_lock(session, bill_id) as bills:
        payment = _reload_payment(session, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})
        if payment.bill_id != bill_id:
            raise ConflictError("Payment was moved by another request, retry the delete")

        session.delete(payment)
        session.flush()

        bill = bills.get(bill_id)
        if bill is not None:
            reconcile(session, bill)


def get_payment(session, payment_id: int) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    return payment


def list_payments(session, bill_id=None, method=None, limit=500):
    q = session.query(Payment)
    if bill_id is not None:
        q = q.filter(Payment.bill_id == bill_id)
    if method:
        q = q.filter(Payment.method == method)
    return q.order_by(Payment.id.asc()).limit(limit).all()
