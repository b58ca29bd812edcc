from datetime import datetime
from models.db import db

class Branch(db.Model):
    __tablename__ = "branches"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    location = db.Column(db.String(160), nullable=True)
    contact_no = db.Column(db.String(30), nullable=True)


class RoomType(db.Model):
    __tablename__ = "room_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(60), nullable=False, unique=True)
    capacity = db.Column(db.Integer, nullable=False, default=2)
    daily_rate = db.Column(db.Numeric(12, 2), nullable=False)
    amenities = db.Column(db.Text, nullable=True)


class Room(db.Model):
    __tablename__ = "rooms"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    room_type_id = db.Column(db.Integer, db.ForeignKey("room_types.id"), nullable=False)
    number = db.Column(db.String(10), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    room_type = db.relationship("RoomType")

    __table_args__ = (
        db.UniqueConstraint("branch_id", "number", name="uq_room_number_per_branch"),
    )
