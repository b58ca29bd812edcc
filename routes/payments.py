from flask import Blueprint, request, jsonify, g

from models import db
from models.final_bill import FinalBill
from services import payments as payment_service
from services.errors import NotFoundError, OverpaymentError
from utils.auth_context import login_required
from utils.audit import log_event
from utils.parsing import amount_field, int_field, iso, money

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _payment_json(p):
    return {
        "id": p.id,
        "bill_id": p.bill_id,
        "method": p.method,
        "amount": money(p.amount),
        "paid_at": iso(p.paid_at),
    }


def _bill_balance(bill_id):
    bill = db.session.get(FinalBill, bill_id)
    if not bill:
        return None
    return {
        "bill_id": bill.id,
        "total_amount": money(bill.total_amount),
        "paid_amount": money(bill.paid_amount),
        "outstanding_amount": money(bill.outstanding_amount),
    }


@payments_bp.get("")
@login_required
def list_payments():
    bill_id = int_field(request.args, "bill_id")
    if bill_id is not None and db.session.get(FinalBill, bill_id) is None:
        raise NotFoundError("Bill ID not found", details={"bill_id": bill_id})

    rows = payment_service.list_payments(db.session, bill_id=bill_id, method=request.args.get("method") or None)
    return jsonify([_payment_json(p) for p in rows]), 200


@payments_bp.get("/<int:payment_id>")
@login_required
def get_payment(payment_id: int):
    return jsonify(_payment_json(payment_service.get_payment(db.session, payment_id))), 200


@payments_bp.post("")
@login_required
def add_payment():
    data = request.get_json(silent=True) or {}
    bill_id = int_field(data, "bill_id", required=True)
    amount = amount_field(data, "amount", required=True)
    method = data.get("method")

    try:
        payment = payment_service.apply_payment(db.session, bill_id, method, amount)
    except OverpaymentError as exc:
        log_event("PAYMENT_REJECT_OVERPAY", user_id=g.user.id, entity="bill", entity_id=bill_id, metadata=exc.details)
        raise

    log_event("PAYMENT_CREATE", user_id=g.user.id, entity="payment", entity_id=payment.id,
              metadata={"bill_id": bill_id, "amount": money(payment.amount), "method": method})
    return jsonify(payment=_payment_json(payment), bill=_bill_balance(bill_id)), 201


@payments_bp.put("/<int:payment_id>")
@login_required
def update_payment(payment_id: int):
    data = request.get_json(silent=True) or {}
    bill_id = int_field(data, "bill_id")
    amount = amount_field(data, "amount")
    method = data.get("method") or None

    previous_bill_id = payment_service.get_payment(db.session, payment_id).bill_id
    try:
        payment = payment_service.update_payment(db.session, payment_id, bill_id=bill_id, amount=amount, method=method)
    except OverpaymentError as exc:
        log_event("PAYMENT_UPDATE_REJECT_OVERPAY", user_id=g.user.id, entity="payment", entity_id=payment_id, metadata=exc.details)
        raise

    bills = [_bill_balance(payment.bill_id)]
    if previous_bill_id != payment.bill_id:
        bills.append(_bill_balance(previous_bill_id))

    log_event("PAYMENT_UPDATE", user_id=g.user.id, entity="payment", entity_id=payment_id,
              metadata={"from_bill": previous_bill_id, "to_bill": payment.bill_id, "amount": money(payment.amount)})
    return jsonify(payment=_payment_json(payment), bills=[b for b in bills if b]), 200


@payments_bp.delete("/<int:payment_id>")
@login_required
def delete_payment(payment_id: int):
    bill_id = payment_service.get_payment(db.session, payment_id).bill_id
    payment_service.delete_payment(db.session, payment_id)

    log_event("PAYMENT_DELETE", user_id=g.user.id, entity="payment", entity_id=payment_id, metadata={"bill_id": bill_id})
    return jsonify(message="Payment deleted", bill=_bill_balance(bill_id)), 200
