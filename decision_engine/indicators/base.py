"""
Indicator Snapshot

Indicators shared by every stage of a tick, computed once from the bar
history. Fields stay None when the history is too short.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Sequence, Dict, Any

from ..errors import ConfigurationError
from ..models import Bar
from .moving_averages import ema, vwap
from .oscillators import rsi
from .volatility import atr

logger = logging.getLogger(__name__)

# Closes fed to each EMA (bounded so results do not depend on history length)
EMA9_WINDOW = 60
EMA20_WINDOW = 80


def validate_period(period: int, min_period: int = 2) -> int:
    """Validate an explicitly configured indicator period."""
    if not isinstance(period, int) or period < min_period:
        raise ConfigurationError(f"Period must be an integer >= {min_period}, got {period!r}")
    return period


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Pre-computed indicators for the latest bar (compute once)."""
    close: Optional[float] = None
    ema9: Optional[float] = None
    ema20: Optional[float] = None
    atr: Optional[float] = None
    vwap: Optional[float] = None
    rsi14: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_snapshot(bars: Sequence[Bar], atr_period: int = 14,
                     vwap_period: int = 30, rsi_period: int = 14) -> IndicatorSnapshot:
    if not bars:
        return IndicatorSnapshot()
    closes = [b.close for b in bars]
    return IndicatorSnapshot(
        close=closes[-1],
        ema9=ema(closes[-EMA9_WINDOW:], 9),
        ema20=ema(closes[-EMA20_WINDOW:], 20),
        atr=atr(bars, atr_period),
        vwap=vwap(bars, vwap_period),
        rsi14=rsi(closes, rsi_period),
    )
