from models import db
from models.user import Role

# STAFF runs the desk; MANAGER may also delete bookings/bills and read the audit trail
DEFAULT_ROLES = ["STAFF", "MANAGER", "ADMIN"]


def ensure_role(name: str) -> Role:
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name)
        db.session.add(role)
        db.session.flush()
    return role


def seed_roles():
    for name in DEFAULT_ROLES:
        ensure_role(name)
    db.session.commit()
