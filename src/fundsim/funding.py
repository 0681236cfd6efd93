"""Funding rate conventions shared by the engine and the signal gate.

Positive funding rate = longs pay shorts, so a long spot + short perp
position COLLECTS when the rate is positive. Rates settle every 8 hours
at 00:00, 08:00 and 16:00 UTC.
"""

from decimal import Decimal

FUNDING_INTERVAL_HOURS = 8
FUNDING_INTERVAL_MS = FUNDING_INTERVAL_HOURS * 3600 * 1000
_HOURS_PER_DAY = 24
_DAYS_PER_YEAR = Decimal("365")


def annualize_rate(rate: Decimal, interval_hours: int = FUNDING_INTERVAL_HOURS) -> Decimal:
    """Convert a per-period funding rate to an APR percentage.

    APR = rate * payments_per_day * 365 * 100, e.g. 0.0005 per 8h -> 54.75%.
    """
    payments_per_day = Decimal(_HOURS_PER_DAY) / Decimal(interval_hours)
    return rate * payments_per_day * _DAYS_PER_YEAR * Decimal("100")


def funding_payment(quantity: Decimal, perp_price: Decimal, rate: Decimal) -> Decimal:
    """Funding received by a short perp leg for one settlement.

    Positive = income, negative = expense.
    """
    return quantity * perp_price * rate
