"""Shared test fixtures for the funding rate arbitrage backtester."""

import logging
from collections.abc import Iterator
from decimal import Decimal

import pytest
import structlog

from fundsim.config import AppSettings, FeeSettings
from fundsim.data.models import (
    DataMetadata,
    HistoricalData,
    HistoricalFundingRate,
    OHLCVCandle,
)
from fundsim.signals.models import (
    EntryRecommendation,
    ExitRecommendation,
    FundingMomentum,
    PredictiveSignals,
    TrendDirection,
    VolatilityMetrics,
)

HOUR_MS = 3600 * 1000
TICK_MS = 8 * HOUR_MS

# 2024-01-01T00:00:00Z, on the 8h funding grid
BASE_MS = 1704067200000


def make_rate(
    symbol: str,
    timestamp_ms: int,
    rate: Decimal | str,
) -> HistoricalFundingRate:
    return HistoricalFundingRate(
        symbol=symbol,
        timestamp_ms=timestamp_ms,
        funding_rate=Decimal(rate),
    )


def make_candle(
    symbol: str,
    timestamp_ms: int,
    close: Decimal | str,
) -> OHLCVCandle:
    price = Decimal(close)
    return OHLCVCandle(
        symbol=symbol,
        timestamp_ms=timestamp_ms,
        open=price,
        high=price,
        low=price,
        close=price,
        volume=Decimal("1000"),
    )


def make_data(
    rates: dict[str, list[tuple[int, str]]],
    spot: dict[str, list[tuple[int, str]]],
    perp: dict[str, list[tuple[int, str]]],
    start_ms: int = BASE_MS,
    end_ms: int = BASE_MS + 2 * TICK_MS,
) -> HistoricalData:
    """Build HistoricalData from (timestamp_ms, value) pairs per symbol."""
    return HistoricalData(
        funding_rates={
            symbol: [make_rate(symbol, ts, value) for ts, value in series]
            for symbol, series in rates.items()
        },
        spot_candles={
            symbol: [make_candle(symbol, ts, value) for ts, value in series]
            for symbol, series in spot.items()
        },
        perp_candles={
            symbol: [make_candle(symbol, ts, value) for ts, value in series]
            for symbol, series in perp.items()
        },
        metadata=DataMetadata(start_ms=start_ms, end_ms=end_ms, symbols=sorted(rates)),
    )


def make_signals(
    risk_score: str = "0.1",
    trend: TrendDirection = TrendDirection.FLAT,
    strength: str = "0.1",
    is_low_vol: bool = True,
    vol_percentile: str = "40",
    entry: EntryRecommendation = EntryRecommendation.ENTER,
    exit: ExitRecommendation = ExitRecommendation.HOLD,
) -> PredictiveSignals:
    """Build a PredictiveSignals with the fields the strategy reads."""
    return PredictiveSignals(
        funding_momentum=FundingMomentum(
            trend=trend,
            strength=Decimal(strength),
            avg_decline=Decimal("0"),
        ),
        volatility=VolatilityMetrics(
            current_vol=Decimal("1"),
            avg_vol=Decimal("1"),
            vol_percentile=Decimal(vol_percentile),
            is_low_vol=is_low_vol,
        ),
        risk_score=Decimal(risk_score),
        entry_recommendation=entry,
        exit_recommendation=exit,
    )


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults."""
    return AppSettings(
        log_level="DEBUG",
        fees=FeeSettings(),
    )


@pytest.fixture
def three_tick_data() -> HistoricalData:
    """Single symbol entered at t0, marked at t1, exited on negative funding at t2.

    t0: rate 0.0005 (54.75% APR), spot 100, perp 101
    t1: rate 0.0005, spot 103, perp 102
    t2: rate -0.0002 (-21.9% APR), spot 104, perp 101
    """
    t0, t1, t2 = BASE_MS, BASE_MS + TICK_MS, BASE_MS + 2 * TICK_MS
    return make_data(
        rates={"BTC/USDT": [(t0, "0.0005"), (t1, "0.0005"), (t2, "-0.0002")]},
        spot={"BTC/USDT": [(t0, "100"), (t1, "103"), (t2, "104")]},
        perp={"BTC/USDT": [(t0, "101"), (t1, "102"), (t2, "101")]},
        start_ms=t0,
        end_ms=t2,
    )


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo setup_logging() so later tests keep pytest's own handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
