"""fundsim: historical replay of delta-neutral funding rate arbitrage."""

__version__ = "0.1.0"
