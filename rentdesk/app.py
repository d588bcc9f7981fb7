"""Rental desk for a small vehicle fleet.

This Flask application keeps track of vehicles, customers, time-bound
reservations, the rental contract of each booking and the ledger of money
coming in and going out.  Every operation is exposed as a JSON endpoint
and the most common ones also as command line verbs.

To run the app locally:

    # Install the package
    pip install -e .

    # Initialise the database
    rentdesk init-db

    # Start the development server (and the return-alert scan)
    rentdesk serve

Instants are exchanged as ISO-8601 strings and stored as UTC.
"""

import argparse
import json
import logging
import sys
from decimal import Decimal

from flask import Blueprint, Flask, abort, jsonify, request
from werkzeug.exceptions import HTTPException

from . import alerts, contracts, events, fleet, ledger, reports, reservations
from .availability import available_vehicles, find_conflicts
from .config import Config
from .errors import InvalidInput, RentalError
from .models import Vehicle, db
from .store import atomic, get_or_raise
from .timeutil import isoformat, parse_instant

logger = logging.getLogger(__name__)

bp = Blueprint('rentdesk', __name__)


def create_app(test_config=None, contract_generator=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format=app.config['LOG_FORMAT'],
        datefmt=app.config['LOG_DATE_FORMAT'],
    )

    db.init_app(app)
    if contract_generator is not None:
        app.extensions[contracts.EXTENSION_KEY] = contract_generator
    app.register_blueprint(bp)
    app.register_error_handler(RentalError, handle_rental_error)
    app.register_error_handler(HTTPException, handle_http_error)
    return app


def handle_rental_error(error):
    return jsonify(error.to_dict()), error.http_status


def handle_http_error(error):
    return jsonify({'error': error.name.lower().replace(' ', '_'), 'message': error.description}), error.code


def init_db():
    """Create all tables that don't exist yet."""
    db.create_all()
    logger.info("Database tables initialised")


# ---------------------------------------------------------------------------
# Request helpers

def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")
    return data


def _int_arg(name, default=None):
    value = request.args.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise InvalidInput(f"'{name}' must be an integer", field=name)


def _instant_arg(name, required=False):
    value = request.args.get(name)
    if not value and not required:
        return None
    return parse_instant(value, name)


def _optional_instant(data, name):
    return parse_instant(data[name], name) if data.get(name) else None


def _money(value):
    return float(value) if isinstance(value, Decimal) else value


# ---------------------------------------------------------------------------
# Dashboard and reports

@bp.route('/')
def index():
    """
    Dashboard home page data: vehicle counts per status, the scheduled
    departures of today and every rental currently out.
    """
    summary = reports.dashboard()
    return jsonify({
        'vehicles': summary['vehicles'],
        'todays_departures': [r.to_dict(expand=True) for r in summary['todays_departures']],
        'active_reservations': [r.to_dict(expand=True) for r in summary['active_reservations']],
    })


@bp.route('/reports')
def reports_overview():
    days = _int_arg('days', 30)
    totals = reports.ledger_summary(_instant_arg('since'), _instant_arg('until'))
    return jsonify({
        'utilization': reports.vehicle_utilization(days=days),
        'top_customers': [dict(row, total=_money(row['total'])) for row in reports.top_customers()],
        'expenses_by_category': [dict(row, total=_money(row['total'])) for row in reports.expenses_by_category()],
        'ledger': {k: _money(v) for k, v in totals.items()},
    })


# ---------------------------------------------------------------------------
# Vehicles

@bp.route('/vehicles')
def list_vehicles():
    vehicles = fleet.list_vehicles(status=request.args.get('status'))
    return jsonify([v.to_dict() for v in vehicles])


@bp.route('/vehicles', methods=['POST'])
def add_vehicle():
    vehicle = fleet.add_vehicle(_payload())
    return jsonify(vehicle.to_dict()), 201


@bp.route('/vehicles/<int:vehicle_id>')
def get_vehicle(vehicle_id: int):
    return jsonify(get_or_raise(Vehicle, vehicle_id).to_dict())


@bp.route('/vehicles/<int:vehicle_id>', methods=['PATCH'])
def edit_vehicle(vehicle_id: int):
    vehicle = fleet.update_vehicle(vehicle_id, _payload())
    return jsonify(vehicle.to_dict())


@bp.route('/vehicles/<int:vehicle_id>/maintenance', methods=['POST'])
def vehicle_maintenance(vehicle_id: int):
    """Take a vehicle out of service (``{"maintenance": true}``) or back."""
    data = _payload()
    flag = data.get('maintenance')
    if not isinstance(flag, bool):
        raise InvalidInput("'maintenance' must be true or false", field='maintenance')
    return jsonify(fleet.set_maintenance(vehicle_id, flag).to_dict())


# ---------------------------------------------------------------------------
# Customers

@bp.route('/customers')
def list_customers():
    return jsonify([c.to_dict() for c in fleet.list_customers()])


@bp.route('/customers', methods=['POST'])
def add_customer():
    customer = fleet.add_customer(_payload())
    return jsonify(customer.to_dict()), 201


@bp.route('/customers/<int:customer_id>', methods=['PATCH'])
def edit_customer(customer_id: int):
    customer = fleet.update_customer(customer_id, _payload())
    return jsonify(customer.to_dict())


# ---------------------------------------------------------------------------
# Availability and quotes

@bp.route('/availability')
def availability():
    """
    Either check one vehicle (``vehicle_id`` given) or list every vehicle
    free for the whole ``start``..``end`` interval.
    """
    start = _instant_arg('start', required=True)
    end = _instant_arg('end', required=True)
    vehicle_id = _int_arg('vehicle_id')
    if vehicle_id is None:
        return jsonify({'vehicles': [v.to_dict() for v in available_vehicles(start, end)]})
    get_or_raise(Vehicle, vehicle_id)
    conflicts = find_conflicts(vehicle_id, start, end, _int_arg('exclude'))
    return jsonify({
        'vehicle_id': vehicle_id,
        'available': not conflicts,
        'conflicts': [r.id for r in conflicts],
    })


@bp.route('/quote')
def quote():
    q = reservations.quote(_int_arg('vehicle_id'), _instant_arg('start', required=True),
                           _instant_arg('end', required=True))
    return jsonify({'tier': q.tier, 'days': q.days, 'price': _money(q.price)})


# ---------------------------------------------------------------------------
# Reservations

@bp.route('/reservations')
def list_reservations():
    rows = reservations.list_reservations(
        status=request.args.get('status'),
        vehicle_id=_int_arg('vehicle_id'),
        customer_id=_int_arg('customer_id'),
        since=_instant_arg('since'),
        until=_instant_arg('until'),
    )
    return jsonify([r.to_dict(expand=True) for r in rows])


@bp.route('/reservations', methods=['POST'])
def add_reservation():
    """
    Book a vehicle.  Leave ``customer_id`` out to create a pending booking;
    the response then carries the ``portal_token`` to send to the customer.
    """
    data = _payload()
    if data.get('vehicle_id') is None:
        raise InvalidInput("'vehicle_id' is required", field='vehicle_id')
    reservation = reservations.create_reservation(
        vehicle_id=data['vehicle_id'],
        start=parse_instant(data.get('start'), 'start'),
        end=parse_instant(data.get('end'), 'end'),
        customer_id=data.get('customer_id'),
        notes=data.get('notes'),
    )
    return jsonify(reservation.to_dict(expand=True)), 201


@bp.route('/reservations/<int:reservation_id>')
def get_reservation(reservation_id: int):
    return jsonify(reservations.get_reservation(reservation_id).to_dict(expand=True))


@bp.route('/reservations/<int:reservation_id>', methods=['PATCH'])
def edit_reservation(reservation_id: int):
    data = _payload()
    reservation = reservations.edit_reservation(
        reservation_id,
        start=_optional_instant(data, 'start'),
        end=_optional_instant(data, 'end'),
        vehicle_id=data.get('vehicle_id'),
        notes=data.get('notes'),
    )
    return jsonify(reservation.to_dict(expand=True))


@bp.route('/reservations/<int:reservation_id>/handover', methods=['POST'])
def handover(reservation_id: int):
    reservation = reservations.hand_over(reservation_id, _payload().get('start_mileage'))
    return jsonify(reservation.to_dict(expand=True))


@bp.route('/reservations/<int:reservation_id>/return', methods=['POST'])
def vehicle_return(reservation_id: int):
    """
    Close a rental with the final odometer reading.  The response includes
    the mileage breakdown and the income entry that was posted.
    """
    reservation, bill, entry = reservations.complete_return(reservation_id, _payload().get('end_mileage'))
    return jsonify({
        'reservation': reservation.to_dict(expand=True),
        'mileage': {
            'rental_days': bill.rental_days,
            'allowed_mileage': bill.allowed_mileage,
            'driven_mileage': bill.driven_mileage,
            'overage_mileage': bill.overage_mileage,
            'overage_fee': _money(bill.overage_fee),
        },
        'income': entry.to_dict(),
    })


@bp.route('/reservations/<int:reservation_id>/cancel', methods=['POST'])
def cancel_reservation(reservation_id: int):
    return jsonify(reservations.cancel(reservation_id).to_dict(expand=True))


@bp.route('/reservations/<int:reservation_id>/status', methods=['POST'])
def advance_reservation(reservation_id: int):
    data = _payload()
    target = data.get('status')
    if not target:
        raise InvalidInput("'status' is required", field='status')
    reservation = reservations.advance(reservation_id, target, data.get('mileage'))
    return jsonify(reservation.to_dict(expand=True))


@bp.route('/reservations/<int:reservation_id>/contract')
def reservation_contract(reservation_id: int):
    reservation = reservations.get_reservation(reservation_id)
    if reservation.contract is None:
        abort(404, description=f"Reservation {reservation_id} has no contract yet")
    return jsonify(reservation.contract.to_dict())


@bp.route('/contracts')
def list_contracts():
    return jsonify([c.to_dict() for c in contracts.list_contracts()])


# ---------------------------------------------------------------------------
# Customer portal.  Anonymous: the token is the only credential.

@bp.route('/portal/<token>')
def portal(token: str):
    reservation = reservations.resolve_portal_token(token)
    return jsonify({
        'reservation_id': reservation.id,
        'vehicle': {'name': reservation.vehicle.name},
        'start': isoformat(reservation.start),
        'end': isoformat(reservation.end),
        'total_price': _money(reservation.total_price),
    })


@bp.route('/portal/<token>', methods=['POST'])
def portal_submit(token: str):
    """
    The customer's profile plus the URL of their uploaded driving licence
    (``driver_license_image_url``), as returned by the upload service.
    """
    data = _payload()
    image_url = data.pop('driver_license_image_url', None)
    reservation = reservations.confirm_portal(token, data, image_url)
    return jsonify({'reservation_id': reservation.id, 'status': reservation.status})


# ---------------------------------------------------------------------------
# Ledger

@bp.route('/ledger')
def list_ledger():
    entries = ledger.list_transactions(
        type=request.args.get('type'),
        since=_instant_arg('since'),
        until=_instant_arg('until'),
        reservation_id=_int_arg('reservation_id'),
    )
    return jsonify([e.to_dict() for e in entries])


@bp.route('/ledger/summary')
def ledger_summary():
    totals = ledger.totals(_instant_arg('since'), _instant_arg('until'))
    return jsonify({k: _money(v) for k, v in totals.items()})


@bp.route('/ledger/expenses', methods=['POST'])
def add_expense():
    data = _payload()
    with atomic('record_expense'):
        entry = ledger.record_expense(
            amount=data.get('amount'),
            date=_optional_instant(data, 'date'),
            description=data.get('description'),
            category=data.get('category'),
        )
    return jsonify(entry.to_dict()), 201


# ---------------------------------------------------------------------------
# Notification outbox

@bp.route('/events')
def list_events():
    rows = events.list_events(
        after_id=_int_arg('after'),
        unread_only=request.args.get('unread') in ('1', 'true'),
        limit=_int_arg('limit', 100),
    )
    return jsonify([e.to_dict() for e in rows])


@bp.route('/events/<int:event_id>/read', methods=['POST'])
def mark_event_read(event_id: int):
    return jsonify(events.mark_read(event_id).to_dict())


@bp.route('/events/read-all', methods=['POST'])
def mark_all_events_read():
    return jsonify({'marked': events.mark_all_read()})


@bp.route('/alerts/scan', methods=['POST'])
def scan_alerts():
    flagged = alerts.scan_upcoming_returns()
    return jsonify({'flagged': [r.id for r in flagged]})


# ---------------------------------------------------------------------------
# Command line

def _print(payload):
    print(json.dumps(payload, indent=2, default=str))


def build_parser():
    parser = argparse.ArgumentParser(prog='rentdesk', description="Vehicle rental desk")
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('init-db', help='Initialise the database')

    serve = sub.add_parser('serve', help='Start the development server')
    serve.add_argument('--host', default='127.0.0.1')
    serve.add_argument('--port', type=int, default=5000)
    serve.add_argument('--no-alerts', action='store_true', help='Do not run the return-alert scan')

    scan = sub.add_parser('scan-alerts', help='Raise upcoming-return alerts')
    scan.add_argument('--loop', action='store_true', help='Keep scanning at the configured interval')
    scan.add_argument('--interval', type=int, help='Seconds between scans')

    create = sub.add_parser('create', help='Create a reservation')
    create.add_argument('--vehicle', type=int, required=True)
    create.add_argument('--customer', type=int, help='Leave out to create a pending booking')
    create.add_argument('--start', required=True)
    create.add_argument('--end', required=True)
    create.add_argument('--notes')

    handover_cmd = sub.add_parser('handover', help='Hand a vehicle over to the customer')
    handover_cmd.add_argument('reservation', type=int)
    handover_cmd.add_argument('--mileage', type=int, required=True)

    return_cmd = sub.add_parser('return', help='Take a vehicle back')
    return_cmd.add_argument('reservation', type=int)
    return_cmd.add_argument('--mileage', type=int, required=True)

    cancel_cmd = sub.add_parser('cancel', help='Cancel a reservation')
    cancel_cmd.add_argument('reservation', type=int)

    avail = sub.add_parser('availability', help='Check whether a vehicle is free')
    avail.add_argument('--vehicle', type=int)
    avail.add_argument('--start', required=True)
    avail.add_argument('--end', required=True)

    ledger_cmd = sub.add_parser('ledger', help='List ledger entries')
    ledger_cmd.add_argument('--type', choices=['income', 'expense'])
    ledger_cmd.add_argument('--since')
    ledger_cmd.add_argument('--until')
    return parser


def run_command(app, args):
    """Run one CLI verb inside an app context; returns the JSON payload."""
    with app.app_context():
        if args.command == 'init-db':
            init_db()
            return {'ok': True}
        if args.command == 'scan-alerts':
            if args.loop:
                alerts.run_periodic(app, args.interval)
                return {'ok': True}
            return {'flagged': [r.id for r in alerts.scan_upcoming_returns()]}
        if args.command == 'create':
            reservation = reservations.create_reservation(
                args.vehicle, parse_instant(args.start, 'start'), parse_instant(args.end, 'end'),
                customer_id=args.customer, notes=args.notes)
            return reservation.to_dict()
        if args.command == 'handover':
            return reservations.hand_over(args.reservation, args.mileage).to_dict()
        if args.command == 'return':
            reservation, bill, entry = reservations.complete_return(args.reservation, args.mileage)
            return {'reservation': reservation.to_dict(), 'overage_fee': _money(bill.overage_fee),
                    'income': entry.to_dict()}
        if args.command == 'cancel':
            return reservations.cancel(args.reservation).to_dict()
        if args.command == 'availability':
            start, end = parse_instant(args.start, 'start'), parse_instant(args.end, 'end')
            if args.vehicle is None:
                return {'vehicles': [v.to_dict() for v in available_vehicles(start, end)]}
            conflicts = find_conflicts(args.vehicle, start, end)
            return {'vehicle_id': args.vehicle, 'available': not conflicts, 'conflicts': [r.id for r in conflicts]}
        if args.command == 'ledger':
            entries = ledger.list_transactions(
                type=args.type,
                since=parse_instant(args.since, 'since') if args.since else None,
                until=parse_instant(args.until, 'until') if args.until else None,
            )
            return [e.to_dict() for e in entries]
    raise ValueError(f"Unknown command {args.command!r}")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    app = create_app()
    if args.command in (None, 'serve'):
        if not getattr(args, 'no_alerts', False):
            alerts.start_background_scan(app)
        app.run(host=getattr(args, 'host', '127.0.0.1'), port=getattr(args, 'port', 5000), debug=True,
                use_reloader=False)
        return 0
    try:
        _print(run_command(app, args))
    except RentalError as e:
        _print({'error': e.code, 'message': e.message})
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
