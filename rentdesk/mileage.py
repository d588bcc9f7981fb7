"""Mileage overage billing at vehicle return."""
import math
from collections import namedtuple
from datetime import timedelta
from decimal import Decimal

from .errors import InvalidMileage

FREE_KM_PER_DAY = 300
OVERAGE_RATE_PER_KM = Decimal(3)

MileageBill = namedtuple('MileageBill', [
    'rental_days', 'allowed_mileage', 'driven_mileage', 'overage_mileage', 'overage_fee',
])


def rental_days(duration: timedelta) -> int:
    # Never less than one day, even for a 2-hour rental
    return max(1, math.ceil(duration / timedelta(days=1)))


def overage(start_mileage: int, end_mileage: int, duration: timedelta) -> MileageBill:
    if start_mileage is None or end_mileage is None:
        raise InvalidMileage("Both odometer readings are required")
    driven = end_mileage - start_mileage
    if driven < 0:
        raise InvalidMileage(f"End mileage {end_mileage} is below start mileage {start_mileage}",
                             start_mileage=start_mileage, end_mileage=end_mileage)
    days = rental_days(duration)
    allowed = days * FREE_KM_PER_DAY
    over = max(0, driven - allowed)
    return MileageBill(days, allowed, driven, over, over * OVERAGE_RATE_PER_KM)
