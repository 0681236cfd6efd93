"""Historical data persistence layer.

Provides data models, SQLite database management, and the typed store that
loads a replay window into memory for the backtest engine.
"""

from fundsim.data.database import HistoricalDatabase
from fundsim.data.models import (
    DataMetadata,
    HistoricalData,
    HistoricalFundingRate,
    OHLCVCandle,
)
from fundsim.data.store import HistoricalDataStore

__all__ = [
    "DataMetadata",
    "HistoricalData",
    "HistoricalDatabase",
    "HistoricalDataStore",
    "HistoricalFundingRate",
    "OHLCVCandle",
]
