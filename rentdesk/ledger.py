"""
Append-only ledger of income and expenses.

No update or delete is exposed.  Corrections are posted as offsetting
entries.
"""
import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import func

from .errors import InvalidInput
from .models import EXPENSE, EXPENSE_CATEGORIES, INCOME, FinancialTransaction, db
from .timeutil import utcnow

logger = logging.getLogger(__name__)


def _amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"Amount {value!r} is not a number", field='amount')
    if not amount.is_finite() or amount < 0:
        raise InvalidInput(f"Amount must be non-negative, got {value!r}", field='amount')
    return amount


def record_income(reservation_id, amount, date=None, description=None) -> FinancialTransaction:
    """
    Add an income entry to the session.

    The caller owns the transaction; this only stages the row so that it
    commits together with the reservation change it belongs to.
    """
    entry = FinancialTransaction(
        type=INCOME,
        amount=_amount(amount),
        date=date or utcnow(),
        description=description,
        reservation_id=reservation_id,
    )
    db.session.add(entry)
    logger.info(f"Income {entry.amount} staged for reservation {reservation_id}")
    return entry


def record_expense(amount, date=None, description=None, category=None) -> FinancialTransaction:
    if category is not None and category not in EXPENSE_CATEGORIES:
        raise InvalidInput(f"Unknown expense category {category!r}", field='category',
                           allowed=sorted(EXPENSE_CATEGORIES))
    entry = FinancialTransaction(
        type=EXPENSE,
        amount=_amount(amount),
        date=date or utcnow(),
        description=description,
        category=category,
    )
    db.session.add(entry)
    logger.info(f"Expense {entry.amount} staged ({category or 'uncategorised'})")
    return entry


def list_transactions(type=None, since=None, until=None, reservation_id=None):
    query = FinancialTransaction.query
    if type is not None:
        if type not in (INCOME, EXPENSE):
            raise InvalidInput(f"Unknown transaction type {type!r}", field='type')
        query = query.filter_by(type=type)
    if reservation_id is not None:
        query = query.filter_by(reservation_id=reservation_id)
    if since is not None:
        query = query.filter(FinancialTransaction.date >= since)
    if until is not None:
        query = query.filter(FinancialTransaction.date < until)
    return query.order_by(FinancialTransaction.date.desc(), FinancialTransaction.id.desc()).all()


def totals(since=None, until=None) -> dict:
    """Income, expense and net over an optional date range."""
    query = db.session.query(FinancialTransaction.type, func.sum(FinancialTransaction.amount))
    if since is not None:
        query = query.filter(FinancialTransaction.date >= since)
    if until is not None:
        query = query.filter(FinancialTransaction.date < until)
    sums = {kind: Decimal(str(total or 0)) for kind, total in query.group_by(FinancialTransaction.type)}
    income = sums.get(INCOME, Decimal(0))
    expense = sums.get(EXPENSE, Decimal(0))
    return {'income': income, 'expense': expense, 'net': income - expense}
