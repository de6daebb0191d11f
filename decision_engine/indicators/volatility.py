"""
Volatility Indicators

True range and ATR. ATR averages the most recent `period` true ranges taken
from a period + 1 bar window, so the first bar only supplies a prior close.
"""

from typing import Optional, Sequence

import numpy as np

from ..models import Bar


def true_range(bar: Bar, prev_close: Optional[float] = None) -> float:
    if prev_close is None:
        return bar.high - bar.low
    return max(bar.high - bar.low, abs(bar.high - prev_close), abs(bar.low - prev_close))


def atr(bars: Sequence[Bar], period: int = 14) -> Optional[float]:
    """Average true range; None with fewer than 2 bars."""
    if period < 1 or len(bars) < 2:
        return None
    window = bars[-(period + 1):]
    high = np.array([b.high for b in window[1:]])
    low = np.array([b.low for b in window[1:]])
    prev_close = np.array([b.close for b in window[:-1]])

    tr = np.maximum(high - low, np.maximum(np.abs(high - prev_close), np.abs(low - prev_close)))
    return float(tr.mean())


def average_range(bars: Sequence[Bar]) -> Optional[float]:
    """Mean high-low range of the given bars."""
    if not bars:
        return None
    return sum(b.range for b in bars) / len(bars)
