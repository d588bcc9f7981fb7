"""
Tiered rental pricing.

Exactly one tier is picked, checked in this order:

1. duration <= 4 hours and ``rate_4h`` > 0: the flat 4-hour rate
2. duration <= 12 hours and ``rate_12h`` > 0: the flat 12-hour rate
3. otherwise: whole days (rounded up) times ``daily_rate``

A rate of zero or less means the tier is not offered for that vehicle.
"""
import math
from collections import namedtuple
from datetime import timedelta
from decimal import Decimal

from .errors import InvalidInterval

FOUR_HOURS = timedelta(hours=4)
TWELVE_HOURS = timedelta(hours=12)
ONE_DAY = timedelta(days=1)

TIER_4H = '4h'
TIER_12H = '12h'
TIER_DAILY = 'daily'

RateCard = namedtuple('RateCard', ['rate_4h', 'rate_12h', 'daily_rate'])
Quote = namedtuple('Quote', ['tier', 'days', 'price'])


def rate_card_for(vehicle) -> RateCard:
    return RateCard(Decimal(vehicle.rate_4h or 0), Decimal(vehicle.rate_12h or 0), Decimal(vehicle.daily_rate or 0))


def billable_days(duration: timedelta) -> int:
    """Days in ``duration``, rounded up (25 hours is 2 days)."""
    return math.ceil(duration / ONE_DAY)


def quote(rate_card: RateCard, start, end) -> Quote:
    if end <= start:
        raise InvalidInterval("Rental end must be after its start")
    duration = end - start
    if duration <= FOUR_HOURS and rate_card.rate_4h > 0:
        return Quote(TIER_4H, None, Decimal(rate_card.rate_4h))
    if duration <= TWELVE_HOURS and rate_card.rate_12h > 0:
        return Quote(TIER_12H, None, Decimal(rate_card.rate_12h))
    days = billable_days(duration)
    return Quote(TIER_DAILY, days, days * Decimal(rate_card.daily_rate))


def price(rate_card: RateCard, start, end) -> Decimal:
    return quote(rate_card, start, end).price
