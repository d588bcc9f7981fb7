"""
Outbox of reservation events for the notification layer.

Events are written in the same transaction as the change they describe.
Once that transaction commits, each one is also sent on the
``reservation_event`` signal for in-process subscribers.
"""
import logging

from blinker import Namespace

from . import store
from .models import Event, db

logger = logging.getLogger(__name__)

CREATED = 'created'
CUSTOMER_CONFIRMED = 'customerConfirmed'
HANDED_OVER = 'handedOver'
RETURNED = 'returned'
CANCELLED = 'cancelled'
RETURN_DUE_SOON = 'returnDueSoon'

EVENT_KINDS = (CREATED, CUSTOMER_CONFIRMED, HANDED_OVER, RETURNED, CANCELLED, RETURN_DUE_SOON)

_signals = Namespace()
reservation_event = _signals.signal('reservation-event')

_PENDING_KEY = 'rentdesk.pending_events'


def record(kind, reservation, message):
    """Add an outbox row to the current session; published after commit."""
    event = Event(kind=kind, reservation_id=reservation.id if reservation is not None else None, message=message)
    db.session.add(event)
    db.session.info.setdefault(_PENDING_KEY, []).append(event)
    return event


def publish_pending():
    """Send committed outbox rows to signal subscribers."""
    events = db.session.info.pop(_PENDING_KEY, [])
    for event in events:
        logger.debug(f"Publishing {event.kind} for reservation {event.reservation_id}")
        try:
            reservation_event.send(event, kind=event.kind)
        except Exception:
            # Already committed, so subscriber errors are only logged
            logger.exception(f"Subscriber failed on {event.kind} event {event.id}")
    return events


def discard_pending():
    db.session.info.pop(_PENDING_KEY, None)


def list_events(after_id=None, unread_only=False, limit=100):
    query = Event.query
    if after_id is not None:
        query = query.filter(Event.id > after_id)
    if unread_only:
        query = query.filter_by(is_read=False)
    return query.order_by(Event.id.asc()).limit(limit).all()


def mark_read(event_id):
    event = store.get_or_raise(Event, event_id)
    with store.atomic('mark_read'):
        event.is_read = True
    return event


def mark_all_read():
    with store.atomic('mark_all_read'):
        count = Event.query.filter_by(is_read=False).update({'is_read': True})
    return count
