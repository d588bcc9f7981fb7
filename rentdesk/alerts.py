"""
Upcoming-return alerts.

A periodic scan, separate from the reservation workflow: every active
reservation whose end falls within the lookahead window gets exactly one
``returnDueSoon`` event.  The scan only stamps ``return_alert_sent_at``;
it never changes a reservation's status.
"""
import logging
import threading
from datetime import timedelta

from flask import current_app

from . import events
from .models import ACTIVE, Reservation
from .store import atomic
from .timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)


def scan_upcoming_returns(now=None, lookahead=None):
    """
    Flag active reservations ending by ``now + lookahead``.

    Reservations already flagged are skipped, so running the scan again
    inside the same window raises nothing new.  Rentals that are already
    past their end and were never flagged are included.

    Returns:
        list of the reservations flagged by this run
    """
    now = now or utcnow()
    if lookahead is None:
        lookahead = timedelta(minutes=current_app.config['RETURN_ALERT_LOOKAHEAD_MINUTES'])
    horizon = now + lookahead

    with atomic('scan_upcoming_returns'):
        due = (Reservation.query
               .filter(Reservation.status == ACTIVE,
                       Reservation.return_alert_sent_at.is_(None),
                       Reservation.end <= horizon)
               .order_by(Reservation.end.asc())
               .all())
        for reservation in due:
            reservation.return_alert_sent_at = now
            events.record(events.RETURN_DUE_SOON, reservation,
                          f"{reservation.vehicle.name} is due back at {isoformat(reservation.end)} "
                          f"(reservation {reservation.id})")

    if due:
        logger.info(f"Return alerts raised for reservations {[r.id for r in due]}")
    return due


def run_periodic(app, interval=None, stop_event=None):
    """
    Run the scan every ``interval`` seconds until ``stop_event`` is set.

    A failing scan is logged and retried on the next tick; the loop itself
    keeps going.
    """
    stop_event = stop_event or threading.Event()
    interval = interval or app.config['ALERT_SCAN_INTERVAL_SECONDS']
    logger.info(f"Return alert scan running every {interval}s")
    while not stop_event.is_set():
        with app.app_context():
            try:
                scan_upcoming_returns()
            except Exception:
                logger.exception("Return alert scan failed")
        stop_event.wait(interval)
    logger.info("Return alert scan stopped")


def start_background_scan(app, interval=None):
    """Start ``run_periodic`` on a daemon thread; returns (thread, stop_event)."""
    stop_event = threading.Event()
    thread = threading.Thread(target=run_periodic, args=(app, interval, stop_event),
                              name='return-alert-scan', daemon=True)
    thread.start()
    return thread, stop_event
