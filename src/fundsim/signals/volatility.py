"""Spot price volatility from hourly candle closes.

Volatility is the population standard deviation of close-to-close returns,
expressed in percent. A symbol's current volatility is ranked against the
rolling volatilities of its own history to decide whether the market is in a
low-volatility regime.

Graceful degradation: fewer than MIN_CURRENT_CANDLES closes yields neutral
metrics (percentile 50, not low-vol); fewer than MIN_HISTORY_CANDLES closes
ranks against a single 1% reference volatility.

CRITICAL: All computations use Decimal. Never use float.
"""

from bisect import bisect_left
from decimal import Decimal

from fundsim.signals.models import VolatilityMetrics

VOL_WINDOW = 24  # hourly candles
MIN_CURRENT_CANDLES = 12
MIN_HISTORY_CANDLES = 48
LOW_VOL_PERCENTILE = Decimal("75")
_DEFAULT_HISTORY = (Decimal("1"),)  # 1% vol when history is too short

NEUTRAL_VOLATILITY = VolatilityMetrics(
    current_vol=Decimal("0"),
    avg_vol=Decimal("0"),
    vol_percentile=Decimal("50"),
    is_low_vol=False,
)


def return_volatility(closes: list[Decimal]) -> Decimal:
    """Population std-dev of close-to-close returns, in percent.

    Args:
        closes: Candle closes ordered oldest-first.

    Returns:
        Volatility as a percentage, 0 when fewer than two closes.
    """
    returns = [
        (curr - prev) / prev
        for prev, curr in zip(closes, closes[1:])
        if prev != 0
    ]
    if not returns:
        return Decimal("0")

    n = Decimal(len(returns))
    mean = sum(returns, Decimal("0")) / n
    variance = sum(((r - mean) ** 2 for r in returns), Decimal("0")) / n
    return variance.sqrt() * Decimal("100")


def rolling_volatilities(closes: list[Decimal], window: int = VOL_WINDOW) -> list[Decimal]:
    """Volatility of every ``window``-candle slice of the series.

    Entry k covers closes[k:k + window], so the first ``m - window`` entries
    only use the first ``m`` closes. Callers precompute this once per symbol
    and take a prefix to rank against history without looking ahead.
    """
    return [
        return_volatility(closes[i - window:i])
        for i in range(window, len(closes))
    ]


def percentile_rank(value: Decimal, population: list[Decimal]) -> Decimal:
    """Percent of the population strictly below value (0-100).

    Position of the first element >= value in the sorted population, so a
    value above everything ranks 100.
    """
    if not population:
        return Decimal("50")
    ordered = sorted(population)
    rank = bisect_left(ordered, value)
    return Decimal(rank) / Decimal(len(ordered)) * Decimal("100")


def volatility_metrics(
    closes: list[Decimal],
    rolling: list[Decimal],
    window: int = VOL_WINDOW,
) -> VolatilityMetrics:
    """Current volatility ranked against the rolling history.

    Args:
        closes: Every close observed at or before the evaluation time,
            oldest-first.
        rolling: rolling_volatilities() of the symbol's full close series.
            Only the windows that fit inside ``closes`` are used.
        window: Candles per volatility window.

    Returns:
        VolatilityMetrics, NEUTRAL_VOLATILITY when closes are too few.
    """
    if len(closes) < MIN_CURRENT_CANDLES:
        return NEUTRAL_VOLATILITY

    current = return_volatility(closes[-window:])

    population: list[Decimal] = []
    if len(closes) >= MIN_HISTORY_CANDLES:
        population = rolling[: len(closes) - window]
    if not population:
        population = list(_DEFAULT_HISTORY)

    percentile = percentile_rank(current, population)
    avg_vol = sum(population, Decimal("0")) / Decimal(len(population))
    return VolatilityMetrics(
        current_vol=current,
        avg_vol=avg_vol,
        vol_percentile=percentile,
        is_low_vol=percentile < LOW_VOL_PERCENTILE,
    )
