from datetime import datetime
from models.db import db

BOOKED = "Booked"
CHECKED_IN = "Checked-In"
CHECKED_OUT = "Checked-Out"
CANCELLED = "Cancelled"

BOOKING_STATUSES = (BOOKED, CHECKED_IN, CHECKED_OUT, CANCELLED)
# only these take part in overlap checks
ACTIVE_STATUSES = (BOOKED, CHECKED_IN)

PAYMENT_METHODS = ("Cash", "Card", "Online", "BankTransfer")


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    guest_id = db.Column(db.Integer, db.ForeignKey("guests.id"), nullable=False, index=True)
    room_id = db.Column(db.Integer, db.ForeignKey("rooms.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=BOOKED)
    payment_method = db.Column(db.String(20), nullable=False, default="Cash")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    check_in = db.Column(db.DateTime, nullable=False)
    check_out = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.CheckConstraint("check_out > check_in", name="ck_booking_dates"),
        db.Index("ix_bookings_room_interval", "room_id", "check_in", "check_out"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
