"""Opportunity ranking and position sizing.

Ranking is always explicit so the order of entries never depends on container
iteration order:
- rank_by_apr: APR descending, symbol ascending as final tie-break.
- rank_by_confidence: confidence descending when two candidates differ by
  more than 0.1, APR descending otherwise. That comparator is not
  transitive, so input is pre-sorted by symbol to make the result a pure
  function of the candidate set.

CRITICAL: All monetary values use Decimal. Never use float for sizes or prices.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from functools import cmp_to_key
from typing import TYPE_CHECKING

from fundsim.signals.models import TrendDirection

if TYPE_CHECKING:
    from fundsim.backtest.policies import EntryCandidate
    from fundsim.signals.models import PredictiveSignals

# Equal-weight sizing
MAX_POSITION_FRACTION = Decimal("0.2")

# Confidence-weighted sizing
MAX_CONFIDENT_POSITION_FRACTION = Decimal("0.25")
_LOW_VOL_ADJ = Decimal("1.2")
_HIGH_VOL_ADJ = Decimal("0.8")
_MOMENTUM_ADJ = {
    TrendDirection.RISING: Decimal("1.1"),
    TrendDirection.FLAT: Decimal("1.0"),
    TrendDirection.DECLINING: Decimal("0.7"),
}

_CONFIDENCE_MARGIN = Decimal("0.1")
_DECLINE_CONFIDENCE = Decimal("0.1")


def rank_by_apr(candidates: list[EntryCandidate]) -> list[EntryCandidate]:
    return sorted(candidates, key=lambda c: (-c.funding_apr, c.symbol))


def candidate_confidence(candidate: EntryCandidate) -> Decimal:
    """Confidence used to rank a signal-gated candidate.

    Predictor confidence when a prediction exists (forced to 0.1 when it
    predicts a decline), otherwise 1 - risk score.
    """
    prediction = candidate.ml_prediction
    if prediction is not None:
        return _DECLINE_CONFIDENCE if prediction.will_decline else prediction.confidence
    if candidate.signals is not None:
        return Decimal("1") - candidate.signals.risk_score
    return Decimal("0")


def _compare_confidence(a: EntryCandidate, b: EntryCandidate) -> int:
    conf_a = candidate_confidence(a)
    conf_b = candidate_confidence(b)
    if abs(conf_a - conf_b) > _CONFIDENCE_MARGIN:
        return -1 if conf_a > conf_b else 1
    if a.funding_apr != b.funding_apr:
        return -1 if a.funding_apr > b.funding_apr else 1
    return 0


def rank_by_confidence(candidates: list[EntryCandidate]) -> list[EntryCandidate]:
    by_symbol = sorted(candidates, key=lambda c: c.symbol)
    return sorted(by_symbol, key=cmp_to_key(_compare_confidence))


def optimal_position_size(
    cash: Decimal,
    signals: PredictiveSignals,
    max_positions: int,
) -> Decimal:
    """Confidence-weighted notional for one new position.

    size = cash / max_positions * (1 - risk) * vol_adj * momentum_adj,
    capped at 25% of cash. Larger when risk is low, volatility is low, and
    funding momentum is rising.
    """
    base = cash / Decimal(max_positions)
    risk_adj = Decimal("1") - signals.risk_score
    vol_adj = _LOW_VOL_ADJ if signals.volatility.is_low_vol else _HIGH_VOL_ADJ
    momentum_adj = _MOMENTUM_ADJ[signals.funding_momentum.trend]
    size = base * risk_adj * vol_adj * momentum_adj
    return min(size, cash * MAX_CONFIDENT_POSITION_FRACTION)


class SizingPolicy(ABC):
    """Orders admitted candidates and sizes each new position."""

    @abstractmethod
    def rank(self, candidates: list[EntryCandidate]) -> list[EntryCandidate]:
        """Return candidates best-first."""

    @abstractmethod
    def size(
        self,
        candidate: EntryCandidate,
        cash: Decimal,
        available_slots: int,
        max_positions: int,
    ) -> Decimal:
        """Notional (quote currency) to allocate to the candidate."""


class EqualWeightSizing(SizingPolicy):
    """APR ranking, min(20% of cash, cash / open slots) per position."""

    def rank(self, candidates: list[EntryCandidate]) -> list[EntryCandidate]:
        return rank_by_apr(candidates)

    def size(
        self,
        candidate: EntryCandidate,
        cash: Decimal,
        available_slots: int,
        max_positions: int,
    ) -> Decimal:
        return min(cash * MAX_POSITION_FRACTION, cash / Decimal(available_slots))


class ConfidenceWeightedSizing(SizingPolicy):
    """Confidence ranking and optimal_position_size sizing."""

    def rank(self, candidates: list[EntryCandidate]) -> list[EntryCandidate]:
        return rank_by_confidence(candidates)

    def size(
        self,
        candidate: EntryCandidate,
        cash: Decimal,
        available_slots: int,
        max_positions: int,
    ) -> Decimal:
        if candidate.signals is None:
            return min(
                cash / Decimal(max_positions),
                cash * MAX_CONFIDENT_POSITION_FRACTION,
            )
        return optimal_position_size(cash, candidate.signals, max_positions)
