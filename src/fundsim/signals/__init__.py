"""Predictive signals for the signal-gated backtest strategy.

Exposes the SignalGate / DeclinePredictor interfaces the engine consumes and
their default heuristic implementations.
"""

from fundsim.signals.gate import (
    DeclinePredictor,
    PredictiveSignalGate,
    SignalGate,
    compute_risk_score,
)
from fundsim.signals.models import (
    DeclinePrediction,
    EntryRecommendation,
    ExitRecommendation,
    FundingMomentum,
    PredictiveSignals,
    TrendDirection,
    VolatilityMetrics,
)
from fundsim.signals.momentum import classify_momentum, linear_slope
from fundsim.signals.predictor import HeuristicDeclinePredictor
from fundsim.signals.volatility import (
    percentile_rank,
    return_volatility,
    rolling_volatilities,
    volatility_metrics,
)

__all__ = [
    "DeclinePrediction",
    "DeclinePredictor",
    "EntryRecommendation",
    "ExitRecommendation",
    "FundingMomentum",
    "HeuristicDeclinePredictor",
    "PredictiveSignalGate",
    "PredictiveSignals",
    "SignalGate",
    "TrendDirection",
    "VolatilityMetrics",
    "classify_momentum",
    "compute_risk_score",
    "linear_slope",
    "percentile_rank",
    "return_volatility",
    "rolling_volatilities",
    "volatility_metrics",
]
