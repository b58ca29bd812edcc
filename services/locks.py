"""Scoped per-resource locks that also own the transaction boundary.

``with bill_lock(session, 3, 7) as bills:`` takes the process-local locks for
bills 3 and 7 in ascending id order, re-reads both rows with
``SELECT ... FOR UPDATE`` and yields them keyed by id. Leaving the block
commits; any exception rolls back. The locks are released on every exit path,
after the commit or rollback has finished.

The row lock is what serializes writers across server processes on
PostgreSQL. SQLite ignores ``FOR UPDATE``, so the process-local lock is the only
guard there.
"""
import logging
import threading
import weakref
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from models.booking import Booking
from models.final_bill import FinalBill
from models.room import Room
from services.errors import StorageError

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
# an entry lives only while some caller holds its lock object
_locks = weakref.WeakValueDictionary()


def _lock_for(kind: str, key: int) -> threading.Lock:
    with _registry_guard:
        lock = _locks.get((kind, key))
        if lock is None:
            lock = _locks[(kind, key)] = threading.Lock()
        return lock


def _ordered_ids(ids) -> list:
    return sorted({int(i) for i in ids if i is not None})


@contextmanager
def _locked(session, kind, model, ids):
    keys = _ordered_ids(ids)
    held = []
    try:
        for key in keys:
            lock = _lock_for(kind, key)
            if not lock.acquire(blocking=False):
                logger.debug("waiting for %s lock %s", kind, key)
                lock.acquire()
            held.append(lock)

        rows = {}
        if model is not None and keys:
            locked = (
                session.query(model)
                .filter(model.id.in_(keys))
                .order_by(model.id.asc())
                .with_for_update()
                .populate_existing()
                .all()
            )
            rows = {r.id: r for r in locked}

        yield rows
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("%s transaction on %s failed: %s", kind, keys, exc)
        raise StorageError("Database error while updating %s" % kind) from exc
    except BaseException:
        session.rollback()
        raise
    finally:
        for lock in reversed(held):
            lock.release()


def bill_lock(session, *bill_ids):
    return _locked(session, "bill", FinalBill, bill_ids)


def room_lock(session, *room_ids):
    return _locked(session, "room", Room, room_ids)


def booking_lock(session, *booking_ids):
    return _locked(session, "booking", Booking, booking_ids)
