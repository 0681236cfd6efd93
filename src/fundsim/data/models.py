"""Data models for historical funding rate and OHLCV candle data.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or rates.
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class HistoricalFundingRate:
    """A single historical funding rate record.

    Stored in SQLite with funding_rate as TEXT to preserve Decimal precision.
    """

    symbol: str
    timestamp_ms: int
    funding_rate: Decimal
    interval_hours: int = 8


@dataclass(frozen=True)
class OHLCVCandle:
    """A single OHLCV candle record.

    All price and volume fields use Decimal for precision. Only close is
    required; open, high, low and volume are None where the source left them
    blank.
    Stored in SQLite as TEXT to preserve Decimal precision.
    """

    symbol: str
    timestamp_ms: int
    open: Decimal | None
    high: Decimal | None
    low: Decimal | None
    close: Decimal
    volume: Decimal | None


@dataclass(frozen=True)
class DataMetadata:
    """Window and universe covered by a HistoricalData bundle."""

    start_ms: int
    end_ms: int
    symbols: list[str] = field(default_factory=list)


@dataclass
class HistoricalData:
    """Everything a backtest run reads, loaded once before the tick loop.

    Each series map is keyed by symbol and holds records sorted ascending by
    timestamp_ms. The bundle is shared read-only between runs of a sweep and
    must never be mutated once loaded.
    """

    funding_rates: dict[str, list[HistoricalFundingRate]]
    spot_candles: dict[str, list[OHLCVCandle]]
    perp_candles: dict[str, list[OHLCVCandle]]
    metadata: DataMetadata

    @property
    def symbols(self) -> list[str]:
        """Sorted union of symbols across all three series maps."""
        return sorted(
            set(self.funding_rates) | set(self.spot_candles) | set(self.perp_candles)
        )

    def is_empty(self) -> bool:
        """True when there are no funding rates or no candles of either kind."""
        has_rates = any(self.funding_rates.values())
        has_spot = any(self.spot_candles.values())
        has_perp = any(self.perp_candles.values())
        return not (has_rates and has_spot and has_perp)
