"""
Oscillator Indicators
"""

from typing import Optional, Sequence

import pandas as pd


def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """
    RSI from simple average gain / average loss over the last `period` deltas.

    Returns 100.0 when there are no losses, None with fewer than period + 1 closes.
    """
    if period < 1 or len(closes) < period + 1:
        return None

    # Price changes over the window
    delta = pd.Series(closes, dtype=float).diff().iloc[-period:]

    gain = delta.where(delta > 0, 0.0)
    loss = -delta.where(delta < 0, 0.0)

    avg_gain = gain.mean()
    avg_loss = loss.mean()
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100.0 - (100.0 / (1.0 + rs)))
