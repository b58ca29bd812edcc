from datetime import datetime
from decimal import Decimal
from models.db import db

ZERO = Decimal("0.00")


class FinalBill(db.Model):
    __tablename__ = "final_bills"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Hard business-rule: one bill per booking
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True)

    room_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_service_charges = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_tax = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_discount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    late_checkout_charge = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    # derived columns, written only by services.bills
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    outstanding_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)  # last charge edit

    __table_args__ = (
        db.CheckConstraint("outstanding_amount >= 0", name="ck_bill_not_overpaid"),
    )
