"""Custom exceptions for the funding arbitrage backtester.

Data gaps at individual ticks are not errors: the engine skips the tick.
Only conditions that make a whole run meaningless raise.
"""


class FundsimError(Exception):
    """Base exception for all fundsim errors."""


class NoDataAvailableError(FundsimError):
    """Raised when no historical data exists for the requested window."""


class InvalidConfigError(FundsimError):
    """Raised when a run or sweep configuration cannot be executed."""
