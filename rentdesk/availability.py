"""
Booking conflicts per vehicle.

Intervals are half-open, ``[start, end)``: a rental ending at 10:00 does
not clash with one starting at 10:00.  Only reservations that still hold
their slot are counted; completed and cancelled ones free it.
"""
import logging

from .errors import InvalidInterval
from .models import (ACTIVE, PENDING_CUSTOMER, SCHEDULED, VEHICLE_MAINTENANCE,
                     Reservation, Vehicle, db)

logger = logging.getLogger(__name__)

# pending-customer bookings hold their slot until the customer confirms or
# staff cancel, so two portal links can never race for the same interval
OCCUPYING_STATUSES = (PENDING_CUSTOMER, SCHEDULED, ACTIVE)


def require_interval(start, end):
    if start is None or end is None:
        raise InvalidInterval("Both start and end are required")
    if end <= start:
        raise InvalidInterval(f"End {end.isoformat()} must be after start {start.isoformat()}",
                              start=start.isoformat(), end=end.isoformat())


def overlaps(start, end, other_start, other_end) -> bool:
    return start < other_end and other_start < end


def find_conflicts(vehicle_id, start, end, excluding_reservation_id=None):
    """Reservations on ``vehicle_id`` whose slot overlaps ``[start, end)``."""
    require_interval(start, end)
    query = Reservation.query.filter(
        Reservation.vehicle_id == vehicle_id,
        Reservation.status.in_(OCCUPYING_STATUSES),
        Reservation.start < end,
        Reservation.end > start,
    )
    if excluding_reservation_id is not None:
        query = query.filter(Reservation.id != excluding_reservation_id)
    return query.order_by(Reservation.start.asc()).all()


def check_available(vehicle_id, start, end, excluding_reservation_id=None) -> bool:
    """
    Whether ``vehicle_id`` can be booked for ``[start, end)``.

    On its own this is advisory; callers that go on to write a booking
    must hold ``store.vehicle_guard`` around both steps.
    """
    return not find_conflicts(vehicle_id, start, end, excluding_reservation_id)


def available_vehicles(start, end):
    """Vehicles free for the whole interval and not in maintenance."""
    require_interval(start, end)
    busy = (db.select(Reservation.vehicle_id)
            .where(Reservation.status.in_(OCCUPYING_STATUSES),
                   Reservation.start < end,
                   Reservation.end > start))
    return (Vehicle.query
            .filter(Vehicle.status != VEHICLE_MAINTENANCE, Vehicle.id.not_in(busy))
            .order_by(Vehicle.name.asc())
            .all())
