"""
Dashboard figures and reports built from reservations and the ledger.
"""
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func

from . import ledger
from .models import (ACTIVE, COMPLETED, EXPENSE, EXPENSE_CATEGORIES, INCOME,
                     SCHEDULED, VEHICLE_AVAILABLE, VEHICLE_MAINTENANCE,
                     VEHICLE_RENTED, Customer, FinancialTransaction,
                     Reservation, Vehicle, db)
from .timeutil import utcnow


def dashboard(now=None) -> dict:
    """
    Fleet status counts, today's departures and the active rentals.
    """
    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)

    counts = dict(db.session.query(Vehicle.status, func.count(Vehicle.id)).group_by(Vehicle.status).all())
    departures = (Reservation.query
                  .filter(Reservation.status == SCHEDULED,
                          Reservation.start >= day_start,
                          Reservation.start < day_end)
                  .order_by(Reservation.start.asc())
                  .all())
    active = Reservation.query.filter_by(status=ACTIVE).order_by(Reservation.end.asc()).all()
    return {
        'vehicles': {
            'total': sum(counts.values()),
            'available': counts.get(VEHICLE_AVAILABLE, 0),
            'rented': counts.get(VEHICLE_RENTED, 0),
            'maintenance': counts.get(VEHICLE_MAINTENANCE, 0),
        },
        'todays_departures': departures,
        'active_reservations': active,
    }


def vehicle_utilization(now=None, days=30):
    """
    Days each vehicle spent on an active or completed rental over the
    last ``days`` calendar days, today included.  A day counts if any
    rental overlaps it, however briefly.
    """
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    window_start = today - timedelta(days=days - 1)
    rentals = (Reservation.query
               .filter(Reservation.status.in_((ACTIVE, COMPLETED)),
                       Reservation.start < today + timedelta(days=1),
                       Reservation.end > window_start)
               .all())
    by_vehicle = defaultdict(list)
    for r in rentals:
        by_vehicle[r.vehicle_id].append(r)

    result = []
    for vehicle in Vehicle.query.order_by(Vehicle.name.asc()).all():
        rented_days = 0
        for i in range(days):
            day_start = today - timedelta(days=i)
            day_end = day_start + timedelta(days=1)
            if any(r.start < day_end and day_start < r.end for r in by_vehicle[vehicle.id]):
                rented_days += 1
        result.append({'vehicle_id': vehicle.id, 'name': vehicle.name, 'rented_days': rented_days})
    return result


def top_customers(limit=5):
    """Customers ranked by income posted against their reservations."""
    rows = (db.session.query(Customer, func.sum(FinancialTransaction.amount).label('total'))
            .join(Reservation, Reservation.customer_id == Customer.id)
            .join(FinancialTransaction, FinancialTransaction.reservation_id == Reservation.id)
            .filter(FinancialTransaction.type == INCOME)
            .group_by(Customer.id)
            .order_by(func.sum(FinancialTransaction.amount).desc())
            .limit(limit)
            .all())
    return [{'customer_id': c.id, 'name': c.full_name, 'total': Decimal(str(total))} for c, total in rows]


def expenses_by_category():
    rows = (db.session.query(FinancialTransaction.category, func.sum(FinancialTransaction.amount))
            .filter(FinancialTransaction.type == EXPENSE)
            .group_by(FinancialTransaction.category)
            .all())
    # Uncategorised expenses are reported as "other"
    totals = defaultdict(Decimal)
    for category, total in rows:
        totals[category or 'other'] += Decimal(str(total))
    return [
        {'category': category, 'label': EXPENSE_CATEGORIES.get(category, category), 'total': total}
        for category, total in sorted(totals.items())
    ]


def ledger_summary(since=None, until=None) -> dict:
    return ledger.totals(since, until)
