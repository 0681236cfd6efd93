"""Funding rate momentum detection over the most recent observations.

Looks at the last few funding rates (as APR percentages) and classifies the
move as RISING, FLAT, or DECLINING from the count and mean size of
period-over-period declines.

CRITICAL: All computations use Decimal. Never use float.
"""

from decimal import Decimal

from fundsim.signals.models import FundingMomentum, TrendDirection

MOMENTUM_LOOKBACK = 5
_MIN_OBSERVATIONS = 3
_STRENGTH_SCALE = Decimal("5")  # APR points of avg decline mapped to strength 1
_FLAT_STRENGTH = Decimal("0.1")


def classify_momentum(recent_aprs: list[Decimal]) -> FundingMomentum:
    """Classify momentum from APR values ordered oldest-first.

    Rules:
        declines = [apr[i-1] - apr[i]]
        DECLINING if at least 3 declines and avg decline > 1 APR point,
            strength = min(avg_decline / 5, 1)
        RISING if at most 1 decline and avg decline < -1 APR point,
            strength = min(|avg_decline| / 5, 1)
        FLAT otherwise, strength 0.1

    Graceful degradation: fewer than 3 observations is FLAT with strength 0.

    Args:
        recent_aprs: Up to MOMENTUM_LOOKBACK APR values, oldest first.

    Returns:
        FundingMomentum for the series.
    """
    aprs = tuple(recent_aprs[-MOMENTUM_LOOKBACK:])
    if len(aprs) < _MIN_OBSERVATIONS:
        return FundingMomentum(
            trend=TrendDirection.FLAT,
            strength=Decimal("0"),
            avg_decline=Decimal("0"),
            recent_aprs=aprs,
        )

    declines = [prev - curr for prev, curr in zip(aprs, aprs[1:])]
    avg_decline = sum(declines, Decimal("0")) / Decimal(len(declines))
    decline_count = sum(1 for d in declines if d > 0)

    if decline_count >= 3 and avg_decline > 1:
        trend = TrendDirection.DECLINING
        strength = min(avg_decline / _STRENGTH_SCALE, Decimal("1"))
    elif decline_count <= 1 and avg_decline < -1:
        trend = TrendDirection.RISING
        strength = min(abs(avg_decline) / _STRENGTH_SCALE, Decimal("1"))
    else:
        trend = TrendDirection.FLAT
        strength = _FLAT_STRENGTH

    return FundingMomentum(
        trend=trend,
        strength=strength,
        avg_decline=avg_decline,
        recent_aprs=aprs,
    )


def linear_slope(values: list[Decimal]) -> Decimal:
    """Least-squares slope of values against their index (0, 1, 2, ...).

    Returns 0 for fewer than two values.
    """
    n = len(values)
    if n < 2:
        return Decimal("0")

    x_sum = Decimal(n * (n - 1) // 2)
    xx_sum = Decimal(n * (n - 1) * (2 * n - 1) // 6)
    y_sum = sum(values, Decimal("0"))
    xy_sum = sum((v * Decimal(i) for i, v in enumerate(values)), Decimal("0"))

    dn = Decimal(n)
    return (dn * xy_sum - x_sum * y_sum) / (dn * xx_sum - x_sum * x_sum)
