"""Races between request threads, run against a file-backed SQLite database so
every thread gets its own connection."""
import gc
import threading
from decimal import Decimal
from itertools import combinations

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.booking import ACTIVE_STATUSES, Booking
from models.final_bill import FinalBill
from models.payment import Payment
from models.room import Branch, Room, RoomType
from models.guest import Guest
from models.user import User
from services.bills import create_bill, paid_total, update_bill
from services.bookings import create_booking, update_booking
from services.errors import ConflictError, OverpaymentError
from services.locks import _lock_for, _locks, bill_lock
from services.overlap import intervals_overlap
from services.payments import apply_payment, update_payment

from conftest import dt

WORKERS = 6


@pytest.fixture
def file_app(tmp_path):
    config = type("FileConfig", (TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": "sqlite:///" + str(tmp_path / "hotel.db"),
    })
    app = create_app(config)
    with app.app_context():
        branch = Branch(name="Kandy")
        suite = RoomType(name="Suite", daily_rate=Decimal("100.00"))
        db.session.add_all([branch, suite])
        db.session.flush()
        db.session.add_all([
            Room(id=12, branch_id=branch.id, room_type_id=suite.id, number="12"),
            Room(id=14, branch_id=branch.id, room_type_id=suite.id, number="14"),
            Guest(id=1, name="Kasun Silva"),
            User(id=1, email="desk@hotel.test", password_hash="x"),
        ])
        db.session.commit()

        # two bills of 300 each, one per room
        for key, room_id in (("BILL_ID", 12), ("OTHER_BILL_ID", 14)):
            booking = create_booking(db.session, 1, 1, room_id, "Cash",
                                     dt("2025-01-01T14:00:00"), dt("2025-01-04T11:00:00"))
            app.config[key] = create_bill(db.session, user_id=1, booking_id=booking.id).id
        db.session.remove()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _race(app, fn, workers=WORKERS):
    barrier = threading.Barrier(workers)
    outcomes = []
    guard = threading.Lock()

    def worker(n):
        with app.app_context():
            barrier.wait()
            try:
                fn(n)
                result = "ok"
            except (ConflictError, OverpaymentError) as exc:
                result = type(exc).__name__
            with guard:
                outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not any(t.is_alive() for t in threads), "request threads are stuck"
    return outcomes


def test_concurrent_payments_cannot_overpay(file_app):
    bill_id = file_app.config["BILL_ID"]

    outcomes = _race(file_app, lambda n: apply_payment(db.session, bill_id, "Cash", 200))

    assert sorted(outcomes) == ["OverpaymentError"] * (WORKERS - 1) + ["ok"]
    with file_app.app_context():
        bill = db.session.get(FinalBill, bill_id)
        assert bill.paid_amount == Decimal("200.00")
        assert bill.outstanding_amount == Decimal("100.00")
        assert db.session.query(Payment).count() == 1


def test_small_concurrent_payments_fill_the_bill_exactly(file_app):
    bill_id = file_app.config["BILL_ID"]

    outcomes = _race(file_app, lambda n: apply_payment(db.session, bill_id, "Card", 60))

    assert outcomes.count("ok") == 5
    with file_app.app_context():
        bill = db.session.get(FinalBill, bill_id)
        assert bill.outstanding_amount == Decimal("0.00")


def test_crossing_payment_moves_finish_and_keep_both_bills_consistent(file_app):
    first, second = file_app.config["BILL_ID"], file_app.config["OTHER_BILL_ID"]
    with file_app.app_context():
        on_first = [apply_payment(db.session, first, "Cash", 10).id for _ in range(4)]
        on_second = [apply_payment(db.session, second, "Card", 20).id for _ in range(4)]

    # half the workers move first -> second while the other half move second -> first
    moves = [(pid, second) for pid in on_first] + [(pid, first) for pid in on_second]
    outcomes = _race(file_app, lambda n: update_payment(db.session, moves[n][0], bill_id=moves[n][1]),
                     workers=len(moves))

    assert outcomes == ["ok"] * len(moves)
    with file_app.app_context():
        expected = {first: Decimal("80.00"), second: Decimal("40.00")}
        for bill_id, paid in expected.items():
            bill = db.session.get(FinalBill, bill_id)
            assert bill.paid_amount == paid == paid_total(db.session, bill_id)
            assert bill.paid_amount + bill.outstanding_amount == bill.total_amount


def test_concurrent_bookings_for_one_slot_admit_one(file_app):
    def attempt(n):
        create_booking(db.session, 1, 1, 12, "Cash",
                       dt("2025-03-10T14:00:00"), dt("2025-03-12T11:00:00"))

    outcomes = _race(file_app, attempt)

    assert sorted(outcomes) == ["ConflictError"] * (WORKERS - 1) + ["ok"]
    with file_app.app_context():
        assert db.session.query(Booking).filter(Booking.check_in == dt("2025-03-10T14:00:00")).count() == 1


def test_room_move_races_new_bookings_for_the_same_slot(file_app):
    with file_app.app_context():
        mover_id = create_booking(db.session, 1, 1, 14, "Cash",
                                  dt("2025-03-10T14:00:00"), dt("2025-03-12T11:00:00")).id

    def attempt(n):
        if n == 0:
            update_booking(db.session, mover_id, room_id=12)
        else:
            create_booking(db.session, 1, 1, 12, "Card",
                           dt("2025-03-11T14:00:00"), dt("2025-03-13T11:00:00"))

    outcomes = _race(file_app, attempt, workers=4)

    assert sorted(outcomes) == ["ConflictError"] * 3 + ["ok"]
    with file_app.app_context():
        active = (
            db.session.query(Booking)
            .filter(Booking.room_id == 12, Booking.status.in_(ACTIVE_STATUSES))
            .all()
        )
        for a, b in combinations(active, 2):
            assert not intervals_overlap(a.check_in, a.check_out, b.check_in, b.check_out)


def test_repointed_bill_races_a_new_bill_for_the_same_booking(file_app):
    bill_id = file_app.config["OTHER_BILL_ID"]
    with file_app.app_context():
        target_id = create_booking(db.session, 1, 1, 12, "Cash",
                                   dt("2025-05-01T14:00:00"), dt("2025-05-02T11:00:00")).id

    def attempt(n):
        if n == 0:
            update_bill(db.session, bill_id, booking_id=target_id)
        else:
            create_bill(db.session, user_id=1, booking_id=target_id)

    outcomes = _race(file_app, attempt, workers=4)

    assert sorted(outcomes) == ["ConflictError"] * 3 + ["ok"]
    with file_app.app_context():
        assert db.session.query(FinalBill).filter(FinalBill.booking_id == target_id).count() == 1


def test_lock_is_released_after_a_failure(file_app):
    bill_id = file_app.config["BILL_ID"]

    with file_app.app_context():
        with pytest.raises(RuntimeError):
            with bill_lock(db.session, bill_id):
                raise RuntimeError("boom")

        assert not _lock_for("bill", bill_id).locked()
        assert apply_payment(db.session, bill_id, "Cash", 10).amount == Decimal("10.00")


def test_idle_locks_leave_the_registry(file_app):
    bill_id = file_app.config["OTHER_BILL_ID"]

    with file_app.app_context():
        with bill_lock(db.session, bill_id):
            assert ("bill", bill_id) in _locks
        gc.collect()

        assert ("bill", bill_id) not in _locks
