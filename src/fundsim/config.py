"""Settings for backtest defaults, fees and historical storage.

Each group reads its own environment prefix; AppSettings composes them and
also reads .env, where nested fields use "__" (BACKTEST__SWEEP_MAX_WORKERS).
Out-of-range values fail at load time with a pydantic ValidationError.
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


class FeeSettings(BaseSettings):
    """Taker fee charged on the spot notional of every entry and exit."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    spot_taker: Decimal = Field(default=Decimal("0.001"), ge=0, lt=1)


class BacktestSettings(BaseSettings):
    """Defaults for BacktestConfig fields left unset, plus sweep parallelism.

    APR thresholds are annualized percentages. risk_threshold is a fraction.
    """

    model_config = SettingsConfigDict(env_prefix="BACKTEST_")

    default_initial_capital: Decimal = Field(default=Decimal("10000"), gt=0)
    max_concurrent_positions: int = Field(default=5, ge=1)
    baseline_min_apr: Decimal = Decimal("8")
    signal_min_apr: Decimal = Decimal("3")  # the gate does most of the filtering
    risk_threshold: Decimal = Field(default=Decimal("0.6"), ge=0, le=1)
    sweep_max_workers: int = Field(default=1, ge=1)  # 1 runs in-process


class HistoricalDataSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HISTORICAL_")

    db_path: str = "data/historical.db"
    warmup_hours: int = Field(default=72, ge=0)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: LogLevel = "INFO"
    fees: FeeSettings = Field(default_factory=FeeSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    historical: HistoricalDataSettings = Field(default_factory=HistoricalDataSettings)
