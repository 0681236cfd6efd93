"""Heuristic funding decline predictor.

Fits a least-squares line through the most recent funding APRs; a steep
positive slope on an already elevated APR is read as an overheated rate
that is about to fall back. No training step, so predictions are pure
functions of the historical data.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.signals.gate import DeclinePredictor, build_histories
from fundsim.signals.models import DeclinePrediction
from fundsim.signals.momentum import linear_slope

if TYPE_CHECKING:
    from fundsim.data.models import HistoricalData

TREND_LOOKBACK = 6
MIN_RATE_OBSERVATIONS = 5
MIN_PRICE_CANDLES = 25

_DECLINE_SLOPE = Decimal("0.5")
_DECLINE_MIN_APR = Decimal("10")
_CONFIDENCE_BASE = Decimal("0.3")
_CONFIDENCE_SLOPE_WEIGHT = Decimal("0.5")
_CONFIDENCE_CAP = Decimal("0.8")
_RETURN_PER_PERIOD = Decimal("0.01")  # 1% of APR per period


class HeuristicDeclinePredictor(DeclinePredictor):
    """Slope-based decline predictor.

    Returns None until a symbol has at least MIN_RATE_OBSERVATIONS funding
    observations and MIN_PRICE_CANDLES spot candles at or before the
    evaluation time.
    """

    def __init__(self, data: HistoricalData) -> None:
        self._histories = build_histories(data)

    def predict(self, symbol: str, timestamp_ms: int) -> DeclinePrediction | None:
        history = self._histories.get(symbol)
        if history is None:
            return None

        aprs = history.aprs_until(timestamp_ms, TREND_LOOKBACK)
        if len(aprs) < MIN_RATE_OBSERVATIONS:
            return None
        if len(history.closes_until(timestamp_ms)) < MIN_PRICE_CANDLES:
            return None

        current_apr = aprs[-1]
        slope = linear_slope(aprs)
        will_decline = slope > _DECLINE_SLOPE and current_apr > _DECLINE_MIN_APR
        confidence = min(
            abs(slope) * _CONFIDENCE_SLOPE_WEIGHT + _CONFIDENCE_BASE,
            _CONFIDENCE_CAP,
        )

        base_return = current_apr * _RETURN_PER_PERIOD
        expected_return = base_return * confidence
        if will_decline:
            expected_return = -expected_return

        return DeclinePrediction(
            will_decline=will_decline,
            confidence=confidence,
            expected_return=expected_return,
        )
