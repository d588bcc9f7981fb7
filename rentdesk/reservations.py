"""
Reservation lifecycle.

    pending-customer --(portal confirmation)--> scheduled
    scheduled        --(handover)-------------> active
    active           --(return)---------------> completed
    pending-customer, scheduled --(cancel)----> cancelled

Staff either book for a known customer (straight to ``scheduled``) or
create a ``pending-customer`` booking and send the customer a portal link.
Each operation below validates everything first and then writes the
reservation, the vehicle and, on return, the ledger in one transaction.
Vehicle status follows the reservation: ``rented`` while one is active,
``available`` again on return.
"""
import logging
import secrets
from datetime import timedelta

from flask import current_app

from . import contracts, events, ledger, mileage, pricing
from .availability import find_conflicts, require_interval
from .errors import (AlreadyCompleted, Conflict, InvalidInput, InvalidMileage,
                     InvalidToken, InvalidTransition)
from .fleet import _check_customer, upsert_portal_customer
from .models import (ACTIVE, CANCELLED, COMPLETED, PENDING_CUSTOMER, SCHEDULED,
                     VEHICLE_AVAILABLE, VEHICLE_RENTED, Customer, Reservation,
                     Vehicle, db)
from .store import atomic, get_or_raise, vehicle_guard
from .timeutil import utcnow

logger = logging.getLogger(__name__)

TRANSITIONS = {
    PENDING_CUSTOMER: frozenset({SCHEDULED, CANCELLED}),
    SCHEDULED: frozenset({ACTIVE, CANCELLED}),
    ACTIVE: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}


def can_transition(current, target) -> bool:
    return target in TRANSITIONS.get(current, ())


def require_transition(reservation, target):
    if not can_transition(reservation.status, target):
        raise InvalidTransition(
            f"Reservation {reservation.id} cannot go from {reservation.status} to {target}",
            current=reservation.status, target=target)


def _odometer(value, label) -> int:
    if value is None or value == '':
        raise InvalidMileage(f"{label} is required")
    try:
        reading = int(value)
    except (TypeError, ValueError):
        raise InvalidMileage(f"{label} must be a whole number of km, got {value!r}")
    if reading < 0:
        raise InvalidMileage(f"{label} cannot be negative")
    return reading


def _raise_conflict(vehicle_id, conflicts):
    other = conflicts[0]
    raise Conflict(
        f"Vehicle {vehicle_id} is already booked from {other.start.isoformat()} to {other.end.isoformat()}",
        vehicle_id=vehicle_id, conflicting_reservation_ids=[r.id for r in conflicts])


def new_portal_token() -> str:
    return secrets.token_urlsafe(24)


# ---------------------------------------------------------------------------
# Queries

def get_reservation(reservation_id) -> Reservation:
    return get_or_raise(Reservation, reservation_id)


def list_reservations(status=None, vehicle_id=None, customer_id=None, since=None, until=None):
    query = Reservation.query
    if status:
        query = query.filter_by(status=status)
    if vehicle_id is not None:
        query = query.filter_by(vehicle_id=vehicle_id)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    if since is not None:
        query = query.filter(Reservation.end > since)
    if until is not None:
        query = query.filter(Reservation.start < until)
    return query.order_by(Reservation.start.asc()).all()


def quote(vehicle_id, start, end) -> pricing.Quote:
    require_interval(start, end)
    vehicle = get_or_raise(Vehicle, vehicle_id)
    return pricing.quote(pricing.rate_card_for(vehicle), start, end)


# ---------------------------------------------------------------------------
# Creation and edits

def _editable(reservation):
    if reservation.status not in (PENDING_CUSTOMER, SCHEDULED):
        raise InvalidTransition(f"Reservation {reservation.id} is {reservation.status} and can no longer be edited",
                                current=reservation.status)


def create_reservation(vehicle_id, start, end, customer_id=None, notes=None, now=None) -> Reservation:
    """
    Book a vehicle for ``[start, end)``.

    With a ``customer_id`` the reservation is ``scheduled`` straight away and
    its contract is generated.  Without one it starts as
    ``pending-customer`` and carries a portal token for the customer.
    Either way the price is stamped now and not re-derived later.

    Raises:
        InvalidInterval: end is not after start
        NotFound: unknown vehicle or customer
        Conflict: the vehicle is booked for an overlapping interval
    """
    now = now or utcnow()
    require_interval(start, end)
    vehicle = get_or_raise(Vehicle, vehicle_id)
    customer = get_or_raise(Customer, customer_id) if customer_id is not None else None
    total_price = pricing.price(pricing.rate_card_for(vehicle), start, end)
    contract_text = contracts.draft(customer, vehicle, start, end, total_price) if customer else None

    with vehicle_guard(vehicle.id), atomic('create_reservation'):
        conflicts = find_conflicts(vehicle.id, start, end)
        if conflicts:
            _raise_conflict(vehicle.id, conflicts)
        reservation = Reservation(
            vehicle_id=vehicle.id,
            customer_id=customer.id if customer else None,
            start=start,
            end=end,
            total_price=total_price,
            notes=notes,
        )
        if customer is None:
            ttl = current_app.config['PORTAL_TOKEN_TTL_HOURS']
            reservation.status = PENDING_CUSTOMER
            reservation.portal_token = new_portal_token()
            reservation.portal_token_expires_at = now + timedelta(hours=ttl)
        else:
            reservation.status = SCHEDULED
        db.session.add(reservation)
        db.session.flush()
        if contract_text is not None:
            contracts.attach(reservation, customer, vehicle, contract_text)
        events.record(events.CREATED, reservation,
                      f"Reservation {reservation.id} for {vehicle.name} created ({reservation.status})")

    logger.info(f"Reservation {reservation.id} created: vehicle {vehicle.id}, "
                f"{start.isoformat()} - {end.isoformat()}, {reservation.status}, price {total_price}")
    return reservation


def edit_reservation(reservation_id, start=None, end=None, vehicle_id=None, notes=None) -> Reservation:
    """
    Move a booking that has not started yet to new dates or another vehicle.

    The availability check ignores the booking's own slot.  The price is
    re-stamped for the new interval and any contract is regenerated.
    """
    reservation = get_or_raise(Reservation, reservation_id)
    _editable(reservation)
    new_start = start or reservation.start
    new_end = end or reservation.end
    require_interval(new_start, new_end)
    vehicle = get_or_raise(Vehicle, vehicle_id if vehicle_id is not None else reservation.vehicle_id)
    total_price = pricing.price(pricing.rate_card_for(vehicle), new_start, new_end)
    customer = reservation.customer
    contract_text = contracts.draft(customer, vehicle, new_start, new_end, total_price) if customer else None

    with vehicle_guard(vehicle.id), atomic('edit_reservation'):
        db.session.refresh(reservation)
        _editable(reservation)
        conflicts = find_conflicts(vehicle.id, new_start, new_end, excluding_reservation_id=reservation.id)
        if conflicts:
            _raise_conflict(vehicle.id, conflicts)
        reservation.vehicle_id = vehicle.id
        reservation.start = new_start
        reservation.end = new_end
        reservation.total_price = total_price
        if notes is not None:
            reservation.notes = notes
        if contract_text is not None:
            if reservation.contract is not None:
                reservation.contract.contract_text = contract_text
                reservation.contract.vehicle_id = vehicle.id
                reservation.contract.generated_at = utcnow()
            else:
                contracts.attach(reservation, customer, vehicle, contract_text)

    logger.info(f"Reservation {reservation.id} moved to vehicle {vehicle.id}, "
                f"{new_start.isoformat()} - {new_end.isoformat()}, price {total_price}")
    return reservation


# ---------------------------------------------------------------------------
# Customer portal

def resolve_portal_token(token, now=None) -> Reservation:
    """
    The pending reservation a portal link points at.

    Raises:
        InvalidToken: unknown, expired, or the booking was cancelled
        AlreadyCompleted: the customer already confirmed this booking
    """
    now = now or utcnow()
    reservation = Reservation.query.filter_by(portal_token=token).first() if token else None
    if reservation is None or reservation.status == CANCELLED:
        raise InvalidToken("This booking link is invalid or has expired")
    if reservation.status != PENDING_CUSTOMER:
        raise AlreadyCompleted("This booking has already been completed", reservation_id=reservation.id)
    if reservation.portal_token_expires_at is not None and reservation.portal_token_expires_at <= now:
        raise InvalidToken("This booking link is invalid or has expired")
    return reservation


def confirm_portal(token, profile: dict, license_image_url, now=None) -> Reservation:
    """
    The customer fills in their details behind a portal link.

    Creates or refreshes the customer, binds them to the booking, moves it
    to ``scheduled`` and stores the contract, all in one transaction.
    """
    now = now or utcnow()
    reservation = resolve_portal_token(token, now)
    _check_customer(profile)
    if not license_image_url:
        raise InvalidInput("A driving licence image is required", field='driver_license_image_url')
    vehicle = reservation.vehicle
    known = Customer.query.filter_by(driver_license_number=profile['driver_license_number']).first()
    contract_text = contracts.draft(known or Customer(**profile), vehicle,
                                    reservation.start, reservation.end, reservation.total_price)

    with vehicle_guard(vehicle.id), atomic('confirm_portal'):
        db.session.refresh(reservation)
        require_transition(reservation, SCHEDULED)
        customer = upsert_portal_customer(profile, license_image_url)
        reservation.customer_id = customer.id
        reservation.status = SCHEDULED
        contracts.attach(reservation, customer, vehicle, contract_text)
        events.record(events.CUSTOMER_CONFIRMED, reservation,
                      f"{customer.full_name} confirmed reservation {reservation.id} for {vehicle.name}")

    logger.info(f"Reservation {reservation.id} confirmed through the portal by customer {reservation.customer_id}")
    return reservation


# ---------------------------------------------------------------------------
# Handover, return, cancellation

def hand_over(reservation_id, start_mileage) -> Reservation:
    """
    The customer picks the vehicle up.

    No time gate is applied: staff may hand over early or late.

    Raises:
        InvalidTransition: the reservation is not ``scheduled``
        InvalidMileage: missing reading, or one below the vehicle's odometer
        Conflict: the vehicle is still out on another rental or in maintenance
    """
    reservation = get_or_raise(Reservation, reservation_id)
    with vehicle_guard(reservation.vehicle_id) as vehicle, atomic('hand_over'):
        db.session.refresh(reservation)
        require_transition(reservation, ACTIVE)
        reading = _odometer(start_mileage, "Start mileage")
        if reading < vehicle.current_mileage:
            raise InvalidMileage(f"Start mileage {reading} is below the vehicle's odometer "
                                 f"{vehicle.current_mileage}", current_mileage=vehicle.current_mileage)
        if vehicle.status != VEHICLE_AVAILABLE:
            raise Conflict(f"Vehicle {vehicle.id} is {vehicle.status}", vehicle_status=vehicle.status)
        reservation.status = ACTIVE
        reservation.start_mileage = reading
        vehicle.status = VEHICLE_RENTED
        vehicle.current_mileage = reading
        events.record(events.HANDED_OVER, reservation,
                      f"{vehicle.name} handed over for reservation {reservation.id} at {reading} km")

    logger.info(f"Reservation {reservation.id} handed over at {reading} km")
    return reservation


def complete_return(reservation_id, end_mileage, now=None):
    """
    The customer brings the vehicle back.

    Bills the mileage overage and posts one income entry of
    ``total_price + overage_fee``.  ``total_price`` itself is left as it was.

    Returns:
        (reservation, mileage bill, income entry)
    """
    now = now or utcnow()
    reservation = get_or_raise(Reservation, reservation_id)
    with vehicle_guard(reservation.vehicle_id) as vehicle, atomic('complete_return'):
        db.session.refresh(reservation)
        require_transition(reservation, COMPLETED)
        reading = _odometer(end_mileage, "End mileage")
        bill = mileage.overage(reservation.start_mileage, reading, reservation.duration)
        if reading < vehicle.current_mileage:
            raise InvalidMileage(f"End mileage {reading} is below the vehicle's odometer "
                                 f"{vehicle.current_mileage}", current_mileage=vehicle.current_mileage)
        amount = reservation.total_price + bill.overage_fee
        customer = reservation.customer
        description = f"Rental {vehicle.name} - {customer.full_name}" if customer else f"Rental {vehicle.name}"
        reservation.status = COMPLETED
        reservation.end_mileage = reading
        reservation.overage_fee = bill.overage_fee
        vehicle.status = VEHICLE_AVAILABLE
        vehicle.current_mileage = reading
        entry = ledger.record_income(reservation.id, amount, now, description)
        events.record(events.RETURNED, reservation,
                      f"{vehicle.name} returned for reservation {reservation.id}, "
                      f"{bill.driven_mileage} km driven, overage fee {bill.overage_fee}")

    logger.info(f"Reservation {reservation.id} completed: {bill.driven_mileage} km, "
                f"overage {bill.overage_mileage} km, income {amount}")
    return reservation, bill, entry


def cancel(reservation_id) -> Reservation:
    """Cancel a booking that has not been handed over; its slot is freed."""
    reservation = get_or_raise(Reservation, reservation_id)
    with vehicle_guard(reservation.vehicle_id), atomic('cancel'):
        db.session.refresh(reservation)
        require_transition(reservation, CANCELLED)
        reservation.status = CANCELLED
        events.record(events.CANCELLED, reservation, f"Reservation {reservation.id} cancelled")

    logger.info(f"Reservation {reservation.id} cancelled")
    return reservation


def advance(reservation_id, target, mileage_reading=None, now=None):
    """Move a reservation to ``target`` through the matching operation."""
    if target == ACTIVE:
        return hand_over(reservation_id, mileage_reading)
    if target == COMPLETED:
        return complete_return(reservation_id, mileage_reading, now)[0]
    if target == CANCELLED:
        return cancel(reservation_id)
    reservation = get_or_raise(Reservation, reservation_id)
    require_transition(reservation, target)
    # pending-customer -> scheduled needs the customer's details
    raise InvalidTransition(f"Reservation {reservation_id} is confirmed through the customer portal",
                            current=reservation.status, target=target)
