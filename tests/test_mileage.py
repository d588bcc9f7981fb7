from datetime import timedelta

import pytest

from rentdesk.errors import InvalidMileage
from rentdesk.mileage import FREE_KM_PER_DAY, overage, rental_days

TWO_DAYS = timedelta(days=2)


def test_within_allowance_costs_nothing():
    bill = overage(1000, 1500, TWO_DAYS)
    assert bill.rental_days == 2
    assert bill.allowed_mileage == 600
    assert bill.driven_mileage == 500
    assert bill.overage_mileage == 0
    assert bill.overage_fee == 0


def test_overage_is_billed_per_km():
    bill = overage(1000, 1800, TWO_DAYS)
    assert bill.driven_mileage == 800
    assert bill.overage_mileage == 200
    assert bill.overage_fee == 600


def test_short_rental_still_gets_one_day_allowance():
    assert rental_days(timedelta(hours=3)) == 1
    bill = overage(0, FREE_KM_PER_DAY + 10, timedelta(hours=3))
    assert bill.allowed_mileage == FREE_KM_PER_DAY
    assert bill.overage_fee == 30


def test_partial_days_round_up():
    assert rental_days(timedelta(hours=25)) == 2


def test_odometer_cannot_run_backwards():
    with pytest.raises(InvalidMileage):
        overage(1500, 1400, TWO_DAYS)


def test_readings_are_required():
    with pytest.raises(InvalidMileage):
        overage(None, 1400, TWO_DAYS)
