"""
Vehicles and customers.

``Vehicle.status`` is not editable here: ``rented``/``available`` are
written by the reservation workflow, and ``maintenance`` only through
``set_maintenance``.
"""
import logging
from decimal import Decimal, InvalidOperation

from .errors import Conflict, InvalidInput
from .models import (COMPLETED, VEHICLE_AVAILABLE, VEHICLE_MAINTENANCE,
                     VEHICLE_RENTED, Customer, Reservation, Vehicle, db)
from .store import atomic, get_or_raise, vehicle_guard

logger = logging.getLogger(__name__)

VEHICLE_FIELDS = ('name', 'make', 'model', 'year', 'license_plate', 'image_url',
                  'rate_4h', 'rate_12h', 'daily_rate', 'current_mileage')
RATE_FIELDS = ('rate_4h', 'rate_12h', 'daily_rate')

CUSTOMER_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'address',
                   'driver_license_number', 'driver_license_image_url')
CONTACT_FIELDS = ('email', 'phone', 'address')
REQUIRED_CUSTOMER_FIELDS = ('first_name', 'last_name', 'driver_license_number')


def _unknown_fields(data, allowed):
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise InvalidInput(f"Unknown or read-only fields: {', '.join(unknown)}", fields=unknown)


def _rate(name, value) -> Decimal:
    try:
        rate = Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"'{name}' is not a number", field=name)
    if not rate.is_finite() or rate < 0:
        raise InvalidInput(f"'{name}' must be non-negative", field=name)
    return rate


def _mileage(value) -> int:
    try:
        mileage = int(value)
    except (TypeError, ValueError):
        raise InvalidInput("'current_mileage' must be an integer", field='current_mileage')
    if mileage < 0:
        raise InvalidInput("'current_mileage' must be non-negative", field='current_mileage')
    return mileage


# ---------------------------------------------------------------------------
# Vehicles

def list_vehicles(status=None):
    query = Vehicle.query
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Vehicle.name.asc()).all()


def add_vehicle(data: dict) -> Vehicle:
    _unknown_fields(data, VEHICLE_FIELDS)
    for field in ('name', 'license_plate'):
        if not data.get(field):
            raise InvalidInput(f"'{field}' is required", field=field)
    if Vehicle.query.filter_by(license_plate=data['license_plate']).first():
        raise Conflict(f"Licence plate {data['license_plate']} already exists")
    values = dict(data)
    for field in RATE_FIELDS:
        values[field] = _rate(field, data.get(field))
    values['current_mileage'] = _mileage(data.get('current_mileage', 0))
    with atomic('add_vehicle'):
        vehicle = Vehicle(status=VEHICLE_AVAILABLE, **values)
        db.session.add(vehicle)
    logger.info(f"Vehicle {vehicle.id} ({vehicle.license_plate}) added")
    return vehicle


def update_vehicle(vehicle_id, data: dict) -> Vehicle:
    _unknown_fields(data, VEHICLE_FIELDS)
    values = dict(data)
    for field in RATE_FIELDS:
        if field in values:
            values[field] = _rate(field, values[field])
    if 'current_mileage' in values:
        values['current_mileage'] = _mileage(values['current_mileage'])

    with vehicle_guard(vehicle_id) as vehicle, atomic('update_vehicle'):
        if 'current_mileage' in values:
            # The odometer of a rented vehicle is settled at return
            if vehicle.status == VEHICLE_RENTED:
                raise Conflict(f"Vehicle {vehicle_id} is rented out; its mileage is recorded at return",
                               vehicle_status=vehicle.status)
            # Odometer readings only move forward
            if values['current_mileage'] < vehicle.current_mileage:
                raise InvalidInput(f"Mileage cannot go back from {vehicle.current_mileage} "
                                   f"to {values['current_mileage']}", field='current_mileage')
        plate = values.get('license_plate')
        if plate and plate != vehicle.license_plate and Vehicle.query.filter_by(license_plate=plate).first():
            raise Conflict(f"Licence plate {plate} already exists")
        for field, value in values.items():
            setattr(vehicle, field, value)
    return vehicle


def set_maintenance(vehicle_id, in_maintenance: bool) -> Vehicle:
    with vehicle_guard(vehicle_id) as vehicle, atomic('set_maintenance'):
        if vehicle.status == VEHICLE_RENTED:
            raise Conflict(f"Vehicle {vehicle_id} is rented out and cannot change maintenance state")
        vehicle.status = VEHICLE_MAINTENANCE if in_maintenance else VEHICLE_AVAILABLE
    logger.info(f"Vehicle {vehicle_id} is now {vehicle.status}")
    return vehicle


# ---------------------------------------------------------------------------
# Customers

def list_customers():
    return Customer.query.order_by(Customer.last_name.asc(), Customer.first_name.asc()).all()


def _check_customer(data, partial=False):
    _unknown_fields(data, CUSTOMER_FIELDS)
    for field in REQUIRED_CUSTOMER_FIELDS:
        if (not partial or field in data) and not data.get(field):
            raise InvalidInput(f"'{field}' is required", field=field)


def add_customer(data: dict) -> Customer:
    _check_customer(data)
    with atomic('add_customer'):
        customer = Customer(**data)
        db.session.add(customer)
    logger.info(f"Customer {customer.id} added")
    return customer


def has_completed_rental(customer) -> bool:
    return db.session.query(
        Reservation.query.filter_by(customer_id=customer.id, status=COMPLETED).exists()
    ).scalar()


def update_customer(customer_id, data: dict) -> Customer:
    """
    Change customer details.

    A customer referenced by a completed reservation keeps their identity
    fields; only contact details can still be corrected.
    """
    _check_customer(data, partial=True)
    customer = get_or_raise(Customer, customer_id)
    locked = [f for f in data if f not in CONTACT_FIELDS and data[f] != getattr(customer, f)]
    if locked and has_completed_rental(customer):
        raise InvalidInput(f"Customer {customer_id} has completed rentals; only contact details "
                           f"can change", fields=sorted(locked))
    with atomic('update_customer'):
        for field, value in data.items():
            setattr(customer, field, value)
    return customer


def upsert_portal_customer(profile: dict, license_image_url) -> Customer:
    """
    Find the customer by licence number or stage a new one.

    Runs inside the caller's transaction.  Returning customers only get
    their contact details refreshed.
    """
    _check_customer(profile)
    if not license_image_url:
        raise InvalidInput("A driving licence image is required", field='driver_license_image_url')
    customer = Customer.query.filter_by(driver_license_number=profile['driver_license_number']).first()
    if customer is None:
        customer = Customer(**profile)
        customer.driver_license_image_url = license_image_url
        db.session.add(customer)
        db.session.flush()
        return customer
    for field in CONTACT_FIELDS:
        if profile.get(field):
            setattr(customer, field, profile[field])
    customer.driver_license_image_url = license_image_url
    return customer
