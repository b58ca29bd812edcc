import json
from datetime import datetime
from models.db import db


class AuditLog(db.Model):
    """Append-only trail of staff actions, including rejected ones."""
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    action = db.Column(db.String(80), nullable=False, index=True)  # BOOKING_CREATE, PAYMENT_REJECT_OVERPAY, ...
    user_id = db.Column(db.Integer, nullable=True)  # None for failed logins
    entity = db.Column(db.String(40), nullable=True)  # booking, bill, payment, room
    entity_id = db.Column(db.String(40), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
    )

    @property
    def details(self):
        return json.loads(self.metadata_json) if self.metadata_json else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "action": self.action,
            "user_id": self.user_id,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "ip": self.ip,
            "metadata": self.details,
        }
