from datetime import datetime
from models.db import db

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    # mutable: a payment can be moved to another bill
    bill_id = db.Column(db.Integer, db.ForeignKey("final_bills.id"), nullable=False, index=True)

    method = db.Column(db.String(20), nullable=False, default="Cash")  # Cash, Card, Online, BankTransfer
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    paid_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_positive"),
    )
