from datetime import datetime
from models.db import db

class ChargeableService(db.Model):
    __tablename__ = "chargeable_services"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_type = db.Column(db.String(30), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class ServiceUsage(db.Model):
    __tablename__ = "service_usage"

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.Integer, db.ForeignKey("chargeable_services.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(10, 2), nullable=False, default=1)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    used_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
