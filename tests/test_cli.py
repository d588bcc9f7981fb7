import pytest

from conftest import make_customer
from rentdesk.app import build_parser, main, run_command
from rentdesk.errors import Conflict


def _run(app, *argv):
    return run_command(app, build_parser().parse_args(list(argv)))


def test_parser_defaults():
    args = build_parser().parse_args(['serve'])
    assert args.host == '127.0.0.1'
    assert args.port == 5000
    assert args.no_alerts is False


def test_handover_needs_mileage():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['handover', '3'])


def test_rental_from_the_command_line(app, vehicle, customer):
    created = _run(app, 'create', '--vehicle', str(vehicle.id), '--customer', str(customer.id),
                   '--start', '2030-05-01T09:00:00Z', '--end', '2030-05-02T09:00:00Z')
    assert created['status'] == 'scheduled'
    assert created['total_price'] == 1200

    handed = _run(app, 'handover', str(created['id']), '--mileage', '1000')
    assert handed['status'] == 'active'

    returned = _run(app, 'return', str(created['id']), '--mileage', '1400')
    assert returned['reservation']['status'] == 'completed'
    assert returned['overage_fee'] == 300
    assert returned['income']['amount'] == 1500

    entries = _run(app, 'ledger', '--type', 'income')
    assert [e['amount'] for e in entries] == [1500]


def test_availability_command(app, vehicle, customer):
    _run(app, 'create', '--vehicle', str(vehicle.id), '--customer', str(customer.id),
         '--start', '2030-05-01T09:00:00Z', '--end', '2030-05-01T12:00:00Z')

    busy = _run(app, 'availability', '--vehicle', str(vehicle.id),
                '--start', '2030-05-01T11:00:00Z', '--end', '2030-05-01T13:00:00Z')
    assert busy['available'] is False

    free = _run(app, 'availability', '--start', '2030-05-01T12:00:00Z', '--end', '2030-05-01T13:00:00Z')
    assert [v['id'] for v in free['vehicles']] == [vehicle.id]


def test_conflicting_create_raises(app, vehicle, customer):
    other = make_customer(driver_license_number='DL-2002')
    _run(app, 'create', '--vehicle', str(vehicle.id), '--customer', str(customer.id),
         '--start', '2030-05-01T09:00:00Z', '--end', '2030-05-01T12:00:00Z')
    with pytest.raises(Conflict):
        _run(app, 'create', '--vehicle', str(vehicle.id), '--customer', str(other.id),
             '--start', '2030-05-01T10:00:00Z', '--end', '2030-05-01T11:00:00Z')


def test_main_reports_errors_as_json(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr('rentdesk.app.Config.SQLALCHEMY_DATABASE_URI', f"sqlite:///{tmp_path / 'cli.db'}")

    assert main(['init-db']) == 0
    assert main(['cancel', '99']) == 1
    assert '"not_found"' in capsys.readouterr().out
