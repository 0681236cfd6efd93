"""Predictive signal data models consumed by the signal-gated strategy.

CRITICAL: All score and rate values use Decimal. Never use float for signal computations.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class TrendDirection(str, Enum):
    """Funding rate momentum classification over the recent observations."""

    RISING = "rising"
    FLAT = "flat"
    DECLINING = "declining"


class EntryRecommendation(str, Enum):
    """Whether the signal gate would open a position now."""

    ENTER = "enter"
    SKIP = "skip"


class ExitRecommendation(str, Enum):
    """How urgently the signal gate wants an open position closed."""

    HOLD = "hold"
    EXIT_SOON = "exit_soon"
    EXIT_NOW = "exit_now"


@dataclass(frozen=True)
class FundingMomentum:
    """Direction and strength of recent funding rate changes.

    Attributes:
        trend: Direction classification.
        strength: 0-1, higher = stronger move.
        avg_decline: Mean APR drop per period (negative when rising).
        recent_aprs: The APR values the classification was computed from.
    """

    trend: TrendDirection
    strength: Decimal
    avg_decline: Decimal
    recent_aprs: tuple[Decimal, ...] = ()

    def to_dict(self) -> dict:
        return {
            "trend": self.trend.value,
            "strength": str(self.strength),
            "avg_decline": str(self.avg_decline),
            "recent_aprs": [str(a) for a in self.recent_aprs],
        }


@dataclass(frozen=True)
class VolatilityMetrics:
    """Spot return volatility relative to the symbol's own history.

    Attributes:
        current_vol: Std-dev of hourly returns over the last 24 candles, in percent.
        avg_vol: Mean of the rolling historical volatilities.
        vol_percentile: Rank of current_vol among historical volatilities (0-100).
        is_low_vol: True when vol_percentile is below 75.
    """

    current_vol: Decimal
    avg_vol: Decimal
    vol_percentile: Decimal
    is_low_vol: bool

    def to_dict(self) -> dict:
        return {
            "current_vol": str(self.current_vol),
            "avg_vol": str(self.avg_vol),
            "vol_percentile": str(self.vol_percentile),
            "is_low_vol": self.is_low_vol,
        }


@dataclass(frozen=True)
class PredictiveSignals:
    """Complete signal set for one symbol at one funding tick."""

    funding_momentum: FundingMomentum
    volatility: VolatilityMetrics
    risk_score: Decimal  # 0-1, higher = riskier
    entry_recommendation: EntryRecommendation
    exit_recommendation: ExitRecommendation

    def to_dict(self) -> dict:
        return {
            "funding_momentum": self.funding_momentum.to_dict(),
            "volatility": self.volatility.to_dict(),
            "risk_score": str(self.risk_score),
            "entry_recommendation": self.entry_recommendation.value,
            "exit_recommendation": self.exit_recommendation.value,
        }


@dataclass(frozen=True)
class DeclinePrediction:
    """Prediction that the funding rate is about to fall sharply.

    Attributes:
        will_decline: True if the rate is expected to drop in the next periods.
        confidence: 0-1.
        expected_return: Signed return estimate per period, in percent.
    """

    will_decline: bool
    confidence: Decimal
    expected_return: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "will_decline": self.will_decline,
            "confidence": str(self.confidence),
            "expected_return": str(self.expected_return),
        }
