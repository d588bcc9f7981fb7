from datetime import datetime, timedelta

import pytest

from rentdesk import create_app
from rentdesk import fleet
from rentdesk.models import db

T0 = datetime(2030, 5, 1, 9, 0)


def at(hours=0, days=0):
    """An instant relative to T0."""
    return T0 + timedelta(hours=hours, days=days)


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_vehicle(**overrides):
    data = {
        'name': 'Ford Transit',
        'license_plate': '1AB 2345',
        'rate_4h': 500,
        'rate_12h': 900,
        'daily_rate': 1200,
        'current_mileage': 1000,
    }
    data.update(overrides)
    return fleet.add_vehicle(data)


def make_customer(**overrides):
    data = {
        'first_name': 'Jana',
        'last_name': 'Novak',
        'email': 'jana@example.com',
        'phone': '+420 600 000 000',
        'address': 'Hlavni 1, Brno',
        'driver_license_number': 'DL-1001',
    }
    data.update(overrides)
    return fleet.add_customer(data)


@pytest.fixture
def vehicle(app):
    return make_vehicle()


@pytest.fixture
def customer(app):
    return make_customer()
