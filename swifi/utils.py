"""Utility functions for speed-test calculations"""

from typing import Sequence

BITS_PER_MEGABIT = 1_000_000


def percentile(values: Sequence[float], perc: float = 0.5) -> float:
    """
    Calculate percentile from a list of values.

    Args:
        values: List of numeric values
        perc: Percentile value between 0 and 1, or 0-100 (default: 0.5 for median)
              If > 1, assumes 0-100 range and converts to 0-1

    Returns:
        The calculated percentile value (linear interpolation), 0.0 for no values
    """
    if not values:
        return 0.0

    if perc > 1:
        perc = perc / 100.0

    sorted_vals = sorted(values)
    n = len(sorted_vals)
    idx = (n - 1) * perc
    rem = idx % 1

    if rem == 0:
        return float(sorted_vals[int(round(idx))])

    lo = sorted_vals[int(idx)]
    hi = sorted_vals[min(int(idx) + 1, n - 1)]
    return lo + (hi - lo) * rem


def jitter(samples: Sequence[float]) -> float:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return 0.0
    return sum(abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))) / (len(samples) - 1)


def bps_to_mbps(bps: float) -> float:
    return bps / BITS_PER_MEGABIT


def ellipsize(text: str, max_len: int) -> str:
    """Cut text to max_len characters, ending in '...' when it was cut."""
    if len(text) > max_len:
        return f"{text[:max_len - 3]}..."
    return text
