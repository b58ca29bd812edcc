from flask import Blueprint, request, jsonify, current_app, g

from models import db
from security.rbac import require_roles
from services import bookings as booking_service
from services.errors import ConflictError
from services.overlap import check_availability
from utils.auth_context import login_required
from utils.audit import log_event
from utils.parsing import datetime_field, int_field, iso

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def _booking_json(b):
    return {
        "id": b.id,
        "user_id": b.user_id,
        "guest_id": b.guest_id,
        "room_id": b.room_id,
        "status": b.status,
        "payment_method": b.payment_method,
        "created_at": iso(b.created_at),
        "check_in": iso(b.check_in),
        "check_out": iso(b.check_out),
    }


# ---------- availability ----------
@booking_bp.get("/availability")
@login_required
def availability():
    args = request.args
    room_id = int_field(args, "room_id", required=True)
    check_in = datetime_field(args, "check_in", required=True)
    check_out = datetime_field(args, "check_out", required=True)

    conflicts = check_availability(db.session, room_id, check_in, check_out)
    return jsonify(
        room_id=room_id,
        available=not conflicts,
        conflicting_bookings=[_booking_json(b) for b in conflicts],
    ), 200


# ---------- reads ----------
@booking_bp.get("")
@login_required
def list_bookings():
    args = request.args
    rows = booking_service.list_bookings(
        db.session,
        guest_id=int_field(args, "guest_id"),
        room_id=int_field(args, "room_id"),
        branch_id=int_field(args, "branch_id"),
        status=args.get("status") or None,
        limit=current_app.config.get("MAX_LIST_ROWS", 200),
    )
    return jsonify([_booking_json(b) for b in rows]), 200


@booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = booking_service.get_booking(db.session, booking_id)
    return jsonify(_booking_json(booking)), 200


# ---------- create (overlap-checked) ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    guest_id = int_field(data, "guest_id", required=True)
    room_id = int_field(data, "room_id", required=True)
    check_in = datetime_field(data, "check_in", required=True)
    check_out = datetime_field(data, "check_out", required=True)
    payment_method = data.get("payment_method")

    try:
        booking = booking_service.create_booking(
            db.session,
            user_id=g.user.id,
            guest_id=guest_id,
            room_id=room_id,
            payment_method=payment_method,
            check_in=check_in,
            check_out=check_out,
        )
    except ConflictError as exc:
        log_event("BOOKING_FAIL_CONFLICT", user_id=g.user.id, entity="room", entity_id=room_id, metadata=exc.details)
        raise

    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"room_id": room_id, "check_in": iso(check_in), "check_out": iso(check_out)})
    return jsonify(_booking_json(booking)), 201


# ---------- partial update ----------
@booking_bp.route("/<int:booking_id>", methods=["PATCH", "PUT"])
@login_required
def update_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    fields = {
        "user_id": int_field(data, "user_id"),
        "guest_id": int_field(data, "guest_id"),
        "room_id": int_field(data, "room_id"),
        "status": data.get("status") or None,
        "payment_method": data.get("payment_method") or None,
        "check_in": datetime_field(data, "check_in"),
        "check_out": datetime_field(data, "check_out"),
    }

    try:
        booking = booking_service.update_booking(db.session, booking_id, **fields)
    except ConflictError as exc:
        log_event("BOOKING_UPDATE_FAIL_CONFLICT", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata=exc.details)
        raise

    changed = sorted(k for k, v in fields.items() if v is not None)
    log_event("BOOKING_UPDATE", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata={"fields": changed})
    return jsonify(_booking_json(booking)), 200


# ---------- status transitions ----------
def _transition(booking_id: int, fn, action: str):
    booking = fn(db.session, booking_id)
    log_event(action, user_id=g.user.id, entity="booking", entity_id=booking_id, metadata={"status": booking.status})
    return jsonify(_booking_json(booking)), 200


@booking_bp.post("/<int:booking_id>/check-in")
@login_required
def check_in(booking_id: int):
    return _transition(booking_id, booking_service.check_in_booking, "BOOKING_CHECK_IN")


@booking_bp.post("/<int:booking_id>/check-out")
@login_required
def check_out(booking_id: int):
    return _transition(booking_id, booking_service.check_out_booking, "BOOKING_CHECK_OUT")


@booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel(booking_id: int):
    return _transition(booking_id, booking_service.cancel_booking, "BOOKING_CANCEL")


# ---------- MANAGER/ADMIN: delete ----------
@booking_bp.delete("/<int:booking_id>")
@require_roles("MANAGER")
def delete_booking(booking_id: int):
    try:
        booking_service.delete_booking(db.session, booking_id)
    except ConflictError as exc:
        log_event("BOOKING_DELETE_FAIL_DEPENDENTS", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata=exc.details)
        raise

    log_event("BOOKING_DELETE", user_id=g.user.id, entity="booking", entity_id=booking_id)
    return jsonify(message="Booking deleted"), 200
