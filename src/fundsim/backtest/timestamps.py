"""Funding settlement tick generation.

The grid is anchored at the Unix epoch, so with the default 8h interval every
tick lands on 00:00, 08:00 or 16:00 UTC.
"""

from fundsim.funding import FUNDING_INTERVAL_MS


def generate_funding_timestamps(
    start_ms: int,
    end_ms: int,
    interval_ms: int = FUNDING_INTERVAL_MS,
) -> list[int]:
    """Ascending grid points in [start_ms, end_ms].

    The first tick is the smallest multiple of interval_ms >= start_ms.
    Returns an empty list when start_ms > end_ms.
    """
    if start_ms > end_ms:
        return []
    first = -(-start_ms // interval_ms) * interval_ms  # ceil to grid
    return list(range(first, end_ms + 1, interval_ms))
