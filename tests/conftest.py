from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.booking import Booking
from models.guest import Guest
from models.room import Branch, Room, RoomType
from models.user import Role, User
from security.password import hash_password
from services.bills import create_bill
from services.bookings import create_booking

STAFF_PASSWORD = "front-desk-pass"
MANAGER_PASSWORD = "night-manager-pass"


def dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(email, password, role_name):
    role = Role.query.filter_by(name=role_name).first()
    user = User(email=email, password_hash=hash_password(password), full_name=email.split("@")[0])
    user.roles.append(role)
    db.session.add(user)
    return user


@pytest.fixture
def hotel(session):
    branch = Branch(name="Colombo Fort", location="Colombo")
    deluxe = RoomType(name="Deluxe", daily_rate=Decimal("100.00"))
    session.add_all([branch, deluxe])
    session.flush()

    room = Room(id=12, branch_id=branch.id, room_type_id=deluxe.id, number="12")
    other_room = Room(id=14, branch_id=branch.id, room_type_id=deluxe.id, number="14")
    guest = Guest(name="Nimal Perera", nic="901234567V", contact_no="0771234567")
    second_guest = Guest(name="Ayesha Fernando", nic="917654321V")
    staff = _make_user("desk@hotel.test", STAFF_PASSWORD, "STAFF")
    manager = _make_user("manager@hotel.test", MANAGER_PASSWORD, "MANAGER")
    session.add_all([room, other_room, guest, second_guest])
    session.commit()

    return SimpleNamespace(
        branch_id=branch.id,
        room_type_id=deluxe.id,
        room_id=room.id,
        other_room_id=other_room.id,
        guest_id=guest.id,
        second_guest_id=second_guest.id,
        staff_id=staff.id,
        manager_id=manager.id,
    )


@pytest.fixture
def book(session, hotel):
    """Create a booking on room 12 (by default) through the lifecycle manager."""
    def _book(check_in, check_out, room_id=None, guest_id=None, method="Cash") -> Booking:
        return create_booking(
            session,
            user_id=hotel.staff_id,
            guest_id=guest_id or hotel.guest_id,
            room_id=room_id or hotel.room_id,
            payment_method=method,
            check_in=dt(check_in),
            check_out=dt(check_out),
        )
    return _book


@pytest.fixture
def bill_300(session, hotel, book):
    """A bill whose total is 300: three started days at 100."""
    booking = book("2025-01-01T14:00:00", "2025-01-04T11:00:00")
    return create_bill(session, user_id=hotel.staff_id, booking_id=booking.id)


@pytest.fixture
def login(client, hotel):
    def _login(email="desk@hotel.test", password=STAFF_PASSWORD):
        resp = client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp
    return _login
