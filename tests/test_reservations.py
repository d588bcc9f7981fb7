"""
Reservation lifecycle: creation, handover, return, cancellation and edits.
"""
from decimal import Decimal

import pytest

from conftest import at, make_customer, make_vehicle
from rentdesk import fleet, reservations
from rentdesk.errors import (Conflict, InvalidInterval, InvalidMileage,
                             InvalidTransition, NotFound)
from rentdesk.models import (ACTIVE, CANCELLED, COMPLETED, INCOME,
                             PENDING_CUSTOMER, SCHEDULED, VEHICLE_AVAILABLE,
                             VEHICLE_RENTED, Contract, Event,
                             FinancialTransaction, Reservation, Vehicle, db)


def _book(vehicle, customer, start=None, end=None):
    return reservations.create_reservation(vehicle.id, start or at(0), end or at(days=2), customer.id)


def test_direct_booking_is_scheduled_with_price_and_contract(vehicle, customer):
    reservation = _book(vehicle, customer, at(0), at(hours=25))

    assert reservation.status == SCHEDULED
    assert reservation.customer_id == customer.id
    assert reservation.total_price == Decimal(2400)
    assert reservation.portal_token is None
    contract = Contract.query.filter_by(reservation_id=reservation.id).one()
    assert 'Ford Transit' in contract.contract_text
    assert Event.query.filter_by(reservation_id=reservation.id, kind='created').count() == 1


def test_booking_without_customer_is_pending_with_portal_token(vehicle):
    reservation = reservations.create_reservation(vehicle.id, at(0), at(hours=3), now=at(days=-1))

    assert reservation.status == PENDING_CUSTOMER
    assert reservation.customer_id is None
    assert reservation.portal_token
    assert reservation.portal_token_expires_at == at(days=-1, hours=72)
    assert reservation.total_price == 500
    assert Contract.query.count() == 0


def test_overlapping_booking_is_rejected(vehicle, customer):
    _book(vehicle, customer, at(0), at(10))
    with pytest.raises(Conflict):
        _book(vehicle, customer, at(9), at(20))
    assert Reservation.query.count() == 1


def test_invalid_interval_is_rejected(vehicle, customer):
    with pytest.raises(InvalidInterval):
        _book(vehicle, customer, at(10), at(10))


def test_unknown_vehicle_or_customer(vehicle, customer):
    with pytest.raises(NotFound):
        reservations.create_reservation(999, at(0), at(5), customer.id)
    with pytest.raises(NotFound):
        reservations.create_reservation(vehicle.id, at(0), at(5), 999)


def test_cancelling_frees_the_interval(vehicle, customer):
    first = _book(vehicle, customer)
    reservations.cancel(first.id)
    assert db.session.get(Reservation, first.id).status == CANCELLED

    second = _book(vehicle, customer)
    assert second.status == SCHEDULED


def test_round_trip_bills_price_plus_overage(vehicle, customer):
    reservation = _book(vehicle, customer, at(0), at(days=2))

    reservations.hand_over(reservation.id, 1000)
    assert reservation.status == ACTIVE
    assert reservation.start_mileage == 1000
    assert db.session.get(Vehicle, vehicle.id).status == VEHICLE_RENTED

    reservation, bill, entry = reservations.complete_return(reservation.id, 1800)

    assert reservation.status == COMPLETED
    assert reservation.end_mileage == 1800
    assert reservation.total_price == 2400
    assert bill.overage_fee == 600
    vehicle = db.session.get(Vehicle, vehicle.id)
    assert vehicle.status == VEHICLE_AVAILABLE
    assert vehicle.current_mileage == 1800

    incomes = FinancialTransaction.query.filter_by(type=INCOME).all()
    assert len(incomes) == 1
    assert incomes[0].id == entry.id
    assert incomes[0].reservation_id == reservation.id
    assert incomes[0].amount == 3000


def test_return_within_allowance_posts_price_only(vehicle, customer):
    reservation = _book(vehicle, customer, at(0), at(days=2))
    reservations.hand_over(reservation.id, 1000)
    _, bill, entry = reservations.complete_return(reservation.id, 1500)
    assert bill.overage_fee == 0
    assert entry.amount == 2400


def test_handover_sets_vehicle_mileage_forward(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1250)
    assert db.session.get(Vehicle, vehicle.id).current_mileage == 1250


def test_handover_requires_mileage(vehicle, customer):
    reservation = _book(vehicle, customer)
    with pytest.raises(InvalidMileage):
        reservations.hand_over(reservation.id, None)
    assert db.session.get(Reservation, reservation.id).status == SCHEDULED


def test_handover_below_odometer_is_rejected(vehicle, customer):
    reservation = _book(vehicle, customer)
    with pytest.raises(InvalidMileage):
        reservations.hand_over(reservation.id, 999)
    assert db.session.get(Vehicle, vehicle.id).status == VEHICLE_AVAILABLE


def test_handover_of_pending_booking_is_invalid(vehicle):
    pending = reservations.create_reservation(vehicle.id, at(0), at(5))
    with pytest.raises(InvalidTransition):
        reservations.hand_over(pending.id, 1000)


def test_handover_while_vehicle_is_out_is_a_conflict(vehicle, customer):
    first = _book(vehicle, customer, at(0), at(10))
    second = _book(vehicle, customer, at(10), at(20))
    reservations.hand_over(first.id, 1000)
    with pytest.raises(Conflict):
        reservations.hand_over(second.id, 1000)
    assert db.session.get(Reservation, second.id).status == SCHEDULED


def test_return_below_start_mileage_is_rejected(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    with pytest.raises(InvalidMileage):
        reservations.complete_return(reservation.id, 900)
    assert db.session.get(Reservation, reservation.id).status == ACTIVE
    assert FinancialTransaction.query.count() == 0


def test_return_before_handover_is_invalid(vehicle, customer):
    reservation = _book(vehicle, customer)
    with pytest.raises(InvalidTransition):
        reservations.complete_return(reservation.id, 1500)


@pytest.mark.parametrize('mileage', [None, 0, 1000, 5000])
def test_completed_reservation_never_goes_back(vehicle, customer, mileage):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    reservations.complete_return(reservation.id, 1200)

    with pytest.raises(InvalidTransition):
        reservations.hand_over(reservation.id, mileage)
    with pytest.raises(InvalidTransition):
        reservations.complete_return(reservation.id, mileage)
    with pytest.raises(InvalidTransition):
        reservations.advance(reservation.id, SCHEDULED, mileage)
    assert FinancialTransaction.query.count() == 1


def test_active_reservation_cannot_be_cancelled(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    with pytest.raises(InvalidTransition):
        reservations.cancel(reservation.id)


def test_cancelled_reservation_stays_cancelled(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.cancel(reservation.id)
    with pytest.raises(InvalidTransition):
        reservations.cancel(reservation.id)
    with pytest.raises(InvalidTransition):
        reservations.hand_over(reservation.id, 1000)


def test_failed_return_leaves_nothing_half_written(vehicle, customer, monkeypatch):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)

    def broken_ledger(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(reservations.ledger, 'record_income', broken_ledger)
    with pytest.raises(RuntimeError):
        reservations.complete_return(reservation.id, 1500)

    assert db.session.get(Reservation, reservation.id).status == ACTIVE
    assert db.session.get(Reservation, reservation.id).end_mileage is None
    assert db.session.get(Vehicle, vehicle.id).status == VEHICLE_RENTED
    assert db.session.get(Vehicle, vehicle.id).current_mileage == 1000
    assert FinancialTransaction.query.count() == 0


def test_advance_dispatches_to_operations(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.advance(reservation.id, ACTIVE, 1000)
    reservations.advance(reservation.id, COMPLETED, 1100)
    assert db.session.get(Reservation, reservation.id).status == COMPLETED


def test_advance_to_unknown_status_is_invalid(vehicle, customer):
    reservation = _book(vehicle, customer)
    with pytest.raises(InvalidTransition):
        reservations.advance(reservation.id, 'archived')


def test_edit_moves_booking_and_restamps_price(vehicle, customer):
    reservation = _book(vehicle, customer, at(0), at(3))
    assert reservation.total_price == 500

    reservations.edit_reservation(reservation.id, start=at(1), end=at(11))

    edited = db.session.get(Reservation, reservation.id)
    assert edited.start == at(1)
    assert edited.total_price == 900
    assert '900' in edited.contract.contract_text


def test_edit_checks_other_bookings(vehicle, customer):
    first = _book(vehicle, customer, at(0), at(10))
    _book(vehicle, customer, at(20), at(30))
    with pytest.raises(Conflict):
        reservations.edit_reservation(first.id, end=at(25))
    assert db.session.get(Reservation, first.id).end == at(10)


def test_edit_to_another_vehicle(vehicle, customer):
    other = make_vehicle(name='VW Crafter', license_plate='2CD 6789', daily_rate=1500)
    reservation = _book(vehicle, customer, at(0), at(days=1))
    reservations.edit_reservation(reservation.id, vehicle_id=other.id)
    edited = db.session.get(Reservation, reservation.id)
    assert edited.vehicle_id == other.id
    assert edited.total_price == 1500


def test_active_reservation_cannot_be_edited(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    with pytest.raises(InvalidTransition):
        reservations.edit_reservation(reservation.id, end=at(days=3))


def test_scheduled_and_active_intervals_never_overlap(vehicle):
    customers = [make_customer(driver_license_number=f'DL-{i}') for i in range(3)]
    attempts = [(0, 10), (5, 15), (10, 20), (19, 30), (30, 31), (0, 40)]
    for i, (start, end) in enumerate(attempts):
        try:
            reservations.create_reservation(vehicle.id, at(start), at(end), customers[i % 3].id)
        except Conflict:
            pass

    booked = sorted(Reservation.query.filter(Reservation.status.in_((SCHEDULED, ACTIVE))).all(),
                    key=lambda r: r.start)
    assert [(r.start, r.end) for r in booked] == [(at(0), at(10)), (at(10), at(20)), (at(30), at(31))]
    for earlier, later in zip(booked, booked[1:]):
        assert earlier.end <= later.start


def test_return_never_winds_the_odometer_back(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    db.session.get(Vehicle, vehicle.id).current_mileage = 2000
    db.session.commit()

    with pytest.raises(InvalidMileage):
        reservations.complete_return(reservation.id, 1500)

    assert db.session.get(Vehicle, vehicle.id).current_mileage == 2000
    assert db.session.get(Reservation, reservation.id).status == ACTIVE
    assert FinancialTransaction.query.count() == 0


def test_odometer_of_rented_vehicle_is_settled_at_return(vehicle, customer):
    reservation = _book(vehicle, customer)
    reservations.hand_over(reservation.id, 1000)
    with pytest.raises(Conflict):
        fleet.update_vehicle(vehicle.id, {'current_mileage': 2000})

    reservation, _, _ = reservations.complete_return(reservation.id, 1500)
    assert db.session.get(Vehicle, vehicle.id).current_mileage == 1500
