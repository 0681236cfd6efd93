"""Mark-to-market equity curve and drawdown tracking.

Portfolio value = cash + sum(quantity * current spot price) over open
positions; a symbol whose spot price does not resolve at the tick is valued
at its entry price. Drawdown is measured in percent from the running peak,
which starts at the initial capital.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.backtest.models import EquityPoint

if TYPE_CHECKING:
    from fundsim.backtest.models import MarketSnapshot, OpenPosition


def portfolio_value(
    cash: Decimal,
    open_positions: Iterable[OpenPosition],
    snapshot: MarketSnapshot,
) -> Decimal:
    value = cash
    for position in open_positions:
        price = snapshot.spot_prices.get(position.symbol, position.entry_spot_price)
        value += position.quantity * price
    return value


class EquityTracker:
    """Accumulates one EquityPoint per processed tick.

    Args:
        initial_capital: Starting cash, also the initial peak.
    """

    def __init__(self, initial_capital: Decimal) -> None:
        self.peak = initial_capital
        self.max_drawdown = Decimal("0")
        self.curve: list[EquityPoint] = []

    def mark(
        self,
        timestamp_ms: int,
        cash: Decimal,
        open_positions: Iterable[OpenPosition],
        snapshot: MarketSnapshot,
    ) -> EquityPoint:
        """Value the portfolio, update peak/drawdown, append the point."""
        value = portfolio_value(cash, open_positions, snapshot)

        if value > self.peak:
            self.peak = value
        if self.peak > 0:
            drawdown = (self.peak - value) / self.peak * Decimal("100")
            if drawdown > self.max_drawdown:
                self.max_drawdown = drawdown

        point = EquityPoint(timestamp_ms=timestamp_ms, portfolio_value=value)
        self.curve.append(point)
        return point
