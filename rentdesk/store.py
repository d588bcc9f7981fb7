"""
Transaction and locking helpers around the Flask-SQLAlchemy session.

A compound operation (creation, handover, return, ...) runs inside
``atomic()``: it commits as a whole or is rolled back as a whole.
"""
import logging
import threading
from contextlib import contextmanager

from . import events
from .errors import NotFound, RentalError
from .models import Vehicle, db

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_vehicle_locks = {}


def _lock_for(vehicle_id):
    with _registry_lock:
        lock = _vehicle_locks.get(vehicle_id)
        if lock is None:
            lock = _vehicle_locks[vehicle_id] = threading.RLock()
        return lock


@contextmanager
def atomic(name):
    """
    Run a block as one unit of work.

    Commits on success and publishes the outbox events queued during the
    block.  Any exception rolls the session back and is re-raised.

    Example:
        with atomic("handover"):
            reservation.status = ACTIVE
            vehicle.status = VEHICLE_RENTED
    """
    try:
        yield db.session
        db.session.commit()
    except RentalError as e:
        db.session.rollback()
        events.discard_pending()
        logger.warning(f"{name} rejected ({e.code}): {e.message}")
        raise
    except Exception:
        db.session.rollback()
        events.discard_pending()
        logger.exception(f"{name} failed, rolled back")
        raise
    events.publish_pending()


def get_or_raise(model, object_id, label=None):
    obj = db.session.get(model, object_id) if object_id is not None else None
    if obj is None:
        raise NotFound(f"{label or model.__name__} {object_id} not found",
                       entity=(label or model.__name__).lower(), id=object_id)
    return obj


@contextmanager
def vehicle_guard(vehicle_id):
    """
    Serialise the availability check and the booking write for one vehicle.

    Holds an in-process lock for the vehicle and, on databases that
    support it, a row lock on the vehicle for the rest of the transaction.
    Yields the locked vehicle.
    """
    lock = _lock_for(vehicle_id)
    with lock:
        vehicle = db.session.get(Vehicle, vehicle_id, with_for_update=True) if vehicle_id is not None else None
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} not found", entity='vehicle', id=vehicle_id)
        yield vehicle
