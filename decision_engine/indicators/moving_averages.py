"""
Moving Average Indicators

EMA and rolling VWAP over bounded windows. Both return None instead of a
misleading number when the window cannot support them.
"""

from typing import Optional, Sequence

import pandas as pd

from ..models import Bar


def ema(closes: Sequence[float], period: int) -> Optional[float]:
    """
    Exponential moving average seeded with the first close.

    k = 2 / (period + 1). Returns None if period <= 1 or there is no data.
    """
    if period <= 1 or len(closes) == 0:
        return None
    series = pd.Series(closes, dtype=float)
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def vwap(bars: Sequence[Bar], period: int) -> Optional[float]:
    """Volume-weighted typical price over the most recent `period` bars."""
    if period < 1 or not bars:
        return None
    window = bars[-period:]
    total_volume = 0.0
    weighted = 0.0
    for b in window:
        if b.volume <= 0:
            continue
        weighted += b.typical_price * b.volume
        total_volume += b.volume
    if total_volume <= 0:
        return None
    return weighted / total_volume
