"""
Indicator library for the decision pipeline
"""
from .base import IndicatorSnapshot, compute_snapshot, validate_period
from .moving_averages import ema, vwap
from .oscillators import rsi
from .volatility import atr, true_range, average_range

__all__ = [
    'IndicatorSnapshot',
    'compute_snapshot',
    'validate_period',
    'ema',
    'vwap',
    'rsi',
    'atr',
    'true_range',
    'average_range',
]
