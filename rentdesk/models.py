"""
Database models for vehicles, customers, reservations and the ledger.

Display data (vehicle names, customer names) is never copied onto a
reservation; it is resolved through the foreign keys when serialising.
"""
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy

from .timeutil import isoformat, utcnow

db = SQLAlchemy()


# Vehicle statuses
VEHICLE_AVAILABLE = 'available'
VEHICLE_RENTED = 'rented'
VEHICLE_MAINTENANCE = 'maintenance'

# Reservation statuses
PENDING_CUSTOMER = 'pending-customer'
SCHEDULED = 'scheduled'
ACTIVE = 'active'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

RESERVATION_STATUSES = (PENDING_CUSTOMER, SCHEDULED, ACTIVE, COMPLETED, CANCELLED)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})

# Ledger entry types
INCOME = 'income'
EXPENSE = 'expense'

EXPENSE_CATEGORIES = {
    'service': 'Service and maintenance',
    'insurance': 'Insurance',
    'fuel': 'Fuel',
    'marketing': 'Marketing',
    'other': 'Other',
}


def _money(value):
    if value is None:
        return None
    return float(value) if isinstance(value, Decimal) else value


class Vehicle(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    make = db.Column(db.String(80))
    model = db.Column(db.String(80))
    year = db.Column(db.Integer)
    license_plate = db.Column(db.String(20), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=VEHICLE_AVAILABLE)
    image_url = db.Column(db.String(500))
    rate_4h = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    rate_12h = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    daily_rate = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_mileage = db.Column(db.Integer, nullable=False, default=0)

    reservations = db.relationship('Reservation', back_populates='vehicle')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'make': self.make,
            'model': self.model,
            'year': self.year,
            'license_plate': self.license_plate,
            'status': self.status,
            'image_url': self.image_url,
            'rate_4h': _money(self.rate_4h),
            'rate_12h': _money(self.rate_12h),
            'daily_rate': _money(self.daily_rate),
            'current_mileage': self.current_mileage,
        }

    def __repr__(self) -> str:
        return f"<Vehicle {self.license_plate}>"


class Customer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    driver_license_number = db.Column(db.String(50), nullable=False)
    driver_license_image_url = db.Column(db.String(500))  # supplied by the upload service

    reservations = db.relationship('Reservation', back_populates='customer')

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'driver_license_number': self.driver_license_number,
            'driver_license_image_url': self.driver_license_image_url,
        }

    def __repr__(self) -> str:
        return f"<Customer {self.full_name}>"


class Reservation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicle.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=True)
    start = db.Column(db.DateTime, nullable=False)
    end = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    notes = db.Column(db.Text)

    start_mileage = db.Column(db.Integer, nullable=True)
    end_mileage = db.Column(db.Integer, nullable=True)
    # Overage is billed in the ledger; kept here only for display
    overage_fee = db.Column(db.Numeric(12, 2), nullable=True)

    portal_token = db.Column(db.String(64), unique=True, nullable=True)
    portal_token_expires_at = db.Column(db.DateTime, nullable=True)

    return_alert_sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    vehicle = db.relationship('Vehicle', back_populates='reservations')
    customer = db.relationship('Customer', back_populates='reservations')
    contract = db.relationship('Contract', back_populates='reservation', uselist=False)

    @property
    def duration(self):
        return self.end - self.start

    def to_dict(self, expand=False) -> dict:
        data = {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'customer_id': self.customer_id,
            'start': isoformat(self.start),
            'end': isoformat(self.end),
            'status': self.status,
            'total_price': _money(self.total_price),
            'notes': self.notes,
            'start_mileage': self.start_mileage,
            'end_mileage': self.end_mileage,
            'overage_fee': _money(self.overage_fee),
            'portal_token': self.portal_token,
            'portal_token_expires_at': isoformat(self.portal_token_expires_at),
        }
        if expand:
            data['vehicle'] = {'name': self.vehicle.name, 'license_plate': self.vehicle.license_plate}
            data['customer'] = {'name': self.customer.full_name} if self.customer else None
        return data

    def __repr__(self) -> str:
        return f"<Reservation {self.id} vehicle={self.vehicle_id} {self.status}>"


class FinancialTransaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(10), nullable=False)  # income or expense
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    description = db.Column(db.Text)
    reservation_id = db.Column(db.Integer, db.ForeignKey('reservation.id'), nullable=True, index=True)
    category = db.Column(db.String(30), nullable=True)  # expenses only

    reservation = db.relationship('Reservation', backref=db.backref('transactions', lazy=True))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'type': self.type,
            'amount': _money(self.amount),
            'date': isoformat(self.date),
            'description': self.description,
            'reservation_id': self.reservation_id,
            'category': self.category,
        }

    def __repr__(self) -> str:
        return f"<FinancialTransaction {self.type} {self.amount}>"


class Contract(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey('reservation.id'), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=False)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicle.id'), nullable=False)
    generated_at = db.Column(db.DateTime, default=utcnow)
    contract_text = db.Column(db.Text, nullable=False)

    reservation = db.relationship('Reservation', back_populates='contract')
    customer = db.relationship('Customer')
    vehicle = db.relationship('Vehicle')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'reservation_id': self.reservation_id,
            'customer_id': self.customer_id,
            'vehicle_id': self.vehicle_id,
            'generated_at': isoformat(self.generated_at),
            'contract_text': self.contract_text,
            'customer': {'name': self.customer.full_name},
            'vehicle': {'name': self.vehicle.name, 'license_plate': self.vehicle.license_plate},
        }


class Event(db.Model):
    """Outbox entry for the notification layer."""
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(30), nullable=False)
    reservation_id = db.Column(db.Integer, db.ForeignKey('reservation.id'), nullable=True, index=True)
    message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    is_read = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'kind': self.kind,
            'reservation_id': self.reservation_id,
            'message': self.message,
            'created_at': isoformat(self.created_at),
            'is_read': self.is_read,
        }

    def __repr__(self) -> str:
        return f"<Event {self.kind} reservation={self.reservation_id}>"
