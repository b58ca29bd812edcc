from flask import Blueprint, request, jsonify, current_app, g

from models import db
from security.rbac import require_roles
from services import bills as bill_service
from services.errors import ConflictError, OverpaymentError
from utils.auth_context import login_required
from utils.audit import log_event
from utils.parsing import amount_field, int_field, iso, money

bills_bp = Blueprint("bills", __name__, url_prefix="/bills")


def _bill_json(b):
    return {
        "id": b.id,
        "user_id": b.user_id,
        "booking_id": b.booking_id,
        "room_charges": money(b.room_charges),
        "total_service_charges": money(b.total_service_charges),
        "total_tax": money(b.total_tax),
        "total_discount": money(b.total_discount),
        "late_checkout_charge": money(b.late_checkout_charge),
        "total_amount": money(b.total_amount),
        "paid_amount": money(b.paid_amount),
        "outstanding_amount": money(b.outstanding_amount),
        "currency": current_app.config.get("CURRENCY"),
        "created_at": iso(b.created_at),
        "updated_at": iso(b.updated_at),
    }


@bills_bp.get("")
@login_required
def list_bills():
    rows = bill_service.list_bills(
        db.session,
        user_id=int_field(request.args, "user_id"),
        outstanding_only=request.args.get("outstanding") == "true",
        limit=current_app.config.get("MAX_LIST_ROWS", 200),
    )
    return jsonify([_bill_json(b) for b in rows]), 200


@bills_bp.get("/<int:bill_id>")
@login_required
def get_bill(bill_id: int):
    return jsonify(_bill_json(bill_service.get_bill(db.session, bill_id))), 200


@bills_bp.get("/booking/<int:booking_id>")
@login_required
def get_bill_by_booking(booking_id: int):
    return jsonify(_bill_json(bill_service.get_bill_by_booking(db.session, booking_id))), 200


@bills_bp.post("")
@login_required
def create_bill():
    data = request.get_json(silent=True) or {}
    booking_id = int_field(data, "booking_id", required=True)
    user_id = int_field(data, "user_id") or g.user.id

    try:
        bill = bill_service.create_bill(
            db.session,
            user_id=user_id,
            booking_id=booking_id,
            total_tax=amount_field(data, "total_tax") or 0,
            total_discount=amount_field(data, "total_discount") or 0,
            late_checkout_charge=amount_field(data, "late_checkout_charge") or 0,
        )
    except ConflictError as exc:
        log_event("BILL_FAIL_DUPLICATE", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata=exc.details)
        raise

    log_event("BILL_CREATE", user_id=g.user.id, entity="bill", entity_id=bill.id,
              metadata={"booking_id": booking_id, "total_amount": money(bill.total_amount)})
    return jsonify(_bill_json(bill)), 201


@bills_bp.put("/<int:bill_id>")
@login_required
def update_bill(bill_id: int):
    data = request.get_json(silent=True) or {}
    fields = {
        "user_id": int_field(data, "user_id"),
        "booking_id": int_field(data, "booking_id"),
    }
    for name in bill_service.MONEY_FIELDS:
        fields[name] = amount_field(data, name)

    try:
        bill = bill_service.update_bill(db.session, bill_id, **fields)
    except OverpaymentError as exc:
        log_event("BILL_UPDATE_FAIL_BELOW_PAID", user_id=g.user.id, entity="bill", entity_id=bill_id, metadata=exc.details)
        raise

    log_event("BILL_UPDATE", user_id=g.user.id, entity="bill", entity_id=bill_id,
              metadata={"fields": sorted(k for k, v in fields.items() if v is not None)})
    return jsonify(_bill_json(bill)), 200


@bills_bp.post("/<int:bill_id>/room-charges")
@login_required
def refresh_room_charges(bill_id: int):
    bill = bill_service.refresh_room_charges(db.session, bill_id)
    log_event("BILL_ROOM_CHARGES_REFRESH", user_id=g.user.id, entity="bill", entity_id=bill_id,
              metadata={"room_charges": money(bill.room_charges)})
    return jsonify(_bill_json(bill)), 200


@bills_bp.post("/<int:bill_id>/recompute")
@login_required
def recompute(bill_id: int):
    bill = bill_service.recompute_paid_amount(db.session, bill_id)
    return jsonify(_bill_json(bill)), 200


# ---------- MANAGER/ADMIN: delete ----------
@bills_bp.delete("/<int:bill_id>")
@require_roles("MANAGER")
def delete_bill(bill_id: int):
    try:
        bill_service.delete_bill(db.session, bill_id)
    except ConflictError as exc:
        log_event("BILL_DELETE_FAIL_HAS_PAYMENTS", user_id=g.user.id, entity="bill", entity_id=bill_id, metadata=exc.details)
        raise

    log_event("BILL_DELETE", user_id=g.user.id, entity="bill", entity_id=bill_id)
    return jsonify(message="Bill deleted"), 200
