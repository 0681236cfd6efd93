"""Single comparable score for ranking parameter sweep results.

score = 0.4 * min(1, return% / 50)
      + 0.3 * clamp(sharpe_proxy / 3, 0, 1)
      + 0.2 * max(0, 1 - max_drawdown% / 20)
      + 0.1 * min(1, trades / 10)

sharpe_proxy = return% / max(1, max_drawdown%), a lightweight stand-in for a
variance-based Sharpe ratio. When signal accuracy stats are supplied and the
accuracy is 0, the proxy is 0. Scoring never feeds back into a run.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fundsim.backtest.models import RunSummary, SignalAccuracy

RETURN_WEIGHT = Decimal("0.4")
SHARPE_WEIGHT = Decimal("0.3")
DRAWDOWN_WEIGHT = Decimal("0.2")
STABILITY_WEIGHT = Decimal("0.1")

_RETURN_TARGET = Decimal("50")
_SHARPE_TARGET = Decimal("3")
_DRAWDOWN_LIMIT = Decimal("20")
_TRADES_TARGET = Decimal("10")
_ONE = Decimal("1")
_ZERO = Decimal("0")


def sharpe_proxy(summary: RunSummary, accuracy: SignalAccuracy | None = None) -> Decimal:
    if accuracy is not None and accuracy.accuracy == 0:
        return _ZERO
    return summary.total_return_pct / max(_ONE, summary.max_drawdown)


def score_run(summary: RunSummary, accuracy: SignalAccuracy | None = None) -> Decimal:
    """Weighted score of a completed run; higher is better."""
    return_score = min(_ONE, summary.total_return_pct / _RETURN_TARGET)
    sharpe_score = max(_ZERO, min(_ONE, sharpe_proxy(summary, accuracy) / _SHARPE_TARGET))
    drawdown_score = max(_ZERO, _ONE - summary.max_drawdown / _DRAWDOWN_LIMIT)
    stability_score = min(_ONE, Decimal(summary.number_of_trades) / _TRADES_TARGET)

    return (
        return_score * RETURN_WEIGHT
        + sharpe_score * SHARPE_WEIGHT
        + drawdown_score * DRAWDOWN_WEIGHT
        + stability_score * STABILITY_WEIGHT
    )
