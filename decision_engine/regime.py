"""
Regime Engine

Classifies the decision timeframe as TREND_UP / TREND_DOWN / CHOP /
TRANSITION (UNKNOWN while warming up) from three independent pieces of
evidence, each worth one bull or bear point:

    1. price vs VWAP(30)
    2. VWAP slope over the last 10 bars (+/-0.02%)
    3. pivot structure (HH+HL / LH+LL)

A rising ATR combined with an impulse flip, or with MIXED structure and a mild
VWAP slope, overrides the trend read with TRANSITION. Macro bias reuses the
same vote without the volatility layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Sequence, Tuple, Dict, Any

from .config import RegimeSettings
from .indicators import atr, vwap
from .models import Bar, Direction
from .structure import Structure, detect_structure

DEFAULT_REGIME_SETTINGS = RegimeSettings()


class Regime(Enum):
    TREND_UP = "TREND_UP"
    TREND_DOWN = "TREND_DOWN"
    CHOP = "CHOP"
    TRANSITION = "TRANSITION"
    UNKNOWN = "UNKNOWN"


class Slope(Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"


class MacroBias(Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"

    @property
    def direction(self) -> Optional[Direction]:
        if self is MacroBias.LONG:
            return Direction.LONG
        if self is MacroBias.SHORT:
            return Direction.SHORT
        return None


@dataclass(frozen=True)
class SlopeResult:
    value: Optional[float]
    slope: Slope
    pct: Optional[float]
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RegimeResult:
    regime: Regime
    bull_score: int = 0
    bear_score: int = 0
    vwap: Optional[float] = None
    vwap_slope: Slope = Slope.FLAT
    vwap_slope_pct: Optional[float] = None
    atr: Optional[float] = None
    atr_slope_pct: Optional[float] = None
    atr_rising: bool = False
    impulse_flip: bool = False
    structure: Structure = Structure.MIXED
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'regime': self.regime.value,
            'bull_score': self.bull_score,
            'bear_score': self.bear_score,
            'vwap': self.vwap,
            'vwap_slope': self.vwap_slope.value,
            'vwap_slope_pct': self.vwap_slope_pct,
            'atr': self.atr,
            'atr_slope_pct': self.atr_slope_pct,
            'atr_rising': self.atr_rising,
            'impulse_flip': self.impulse_flip,
            'structure': self.structure.value,
            'reasons': list(self.reasons),
        }


@dataclass(frozen=True)
class MacroBiasResult:
    bias: MacroBias
    bull_score: int = 0
    bear_score: int = 0
    reasons: List[str] = field(default_factory=list)


def _pct_change(current: float, past: float) -> float:
    return (current - past) / past * 100.0 if past != 0 else 0.0


def vwap_slope(bars: Sequence[Bar], period: int = 30, lookback: int = 10,
               threshold_pct: float = 0.02) -> SlopeResult:
    """Compare VWAP(period) now against VWAP(period) `lookback` bars ago."""
    current = vwap(bars, period)
    if len(bars) < period + lookback:
        return SlopeResult(current, Slope.FLAT, None,
                           [f"insufficient bars for VWAP slope: {len(bars)} < {period + lookback}"])
    past = vwap(bars[:-lookback], period)
    if current is None or past is None:
        return SlopeResult(current, Slope.FLAT, None, ["VWAP unavailable (no volume)"])

    pct = _pct_change(current, past)
    if pct > threshold_pct:
        slope = Slope.UP
    elif pct < -threshold_pct:
        slope = Slope.DOWN
    else:
        slope = Slope.FLAT
    return SlopeResult(current, slope, pct, [
        f"VWAP {current:.2f} (was {past:.2f} {lookback} bars ago) slope={pct:.3f}% -> {slope.value}"
    ])


def atr_slope(bars: Sequence[Bar], period: int = 14, lookback: int = 10) -> SlopeResult:
    current = atr(bars, period)
    if len(bars) < period + 1 + lookback:
        return SlopeResult(current, Slope.FLAT, None, ["insufficient bars for ATR slope"])
    past = atr(bars[:-lookback], period)
    if current is None or not past:
        return SlopeResult(current, Slope.FLAT, None, ["ATR unavailable"])
    pct = _pct_change(current, past)
    slope = Slope.UP if pct > 0 else Slope.DOWN if pct < 0 else Slope.FLAT
    return SlopeResult(current, slope, pct, [f"ATR {current:.3f} (was {past:.3f}) change={pct:.1f}%"])


def detect_impulse_flip(bars: Sequence[Bar], atr_value: Optional[float],
                        mult: float = 0.8) -> bool:
    """Two opposite close-to-close moves in the last 3 bars, each > mult x ATR."""
    if len(bars) < 3 or not atr_value or atr_value <= 0:
        return False
    c0, c1, c2 = bars[-3].close, bars[-2].close, bars[-1].close
    first, second = c1 - c0, c2 - c1
    threshold = mult * atr_value
    return first * second < 0 and abs(first) > threshold and abs(second) > threshold


def _vote(bars: Sequence[Bar], settings: RegimeSettings
          ) -> Tuple[int, int, SlopeResult, Structure, List[str]]:
    """Three-evidence vote shared by the regime and the macro bias."""
    close = bars[-1].close
    slope = vwap_slope(bars, settings.vwap_period, settings.vwap_slope_lookback,
                       settings.vwap_slope_threshold_pct)
    struct = detect_structure(bars, settings.structure_lookback, settings.pivot_width)

    bull = bear = 0
    reasons = list(slope.reasons) + list(struct.reasons)

    if slope.value is not None:
        if close > slope.value:
            bull += 1
            reasons.append("price above VWAP (+1 bull)")
        elif close < slope.value:
            bear += 1
            reasons.append("price below VWAP (+1 bear)")

    if slope.slope is Slope.UP:
        bull += 1
    elif slope.slope is Slope.DOWN:
        bear += 1

    if struct.structure is Structure.BULLISH:
        bull += 1
    elif struct.structure is Structure.BEARISH:
        bear += 1

    return bull, bear, slope, struct.structure, reasons


def compute_regime(bars: Sequence[Bar],
                   settings: RegimeSettings = DEFAULT_REGIME_SETTINGS) -> RegimeResult:
    if len(bars) < settings.min_bars:
        return RegimeResult(
            Regime.UNKNOWN,
            reasons=[f"insufficient bars for regime detection: {len(bars)} < {settings.min_bars}"],
        )

    bull, bear, slope, structure, reasons = _vote(bars, settings)
    vol = atr_slope(bars, settings.atr_period, settings.atr_slope_lookback)
    reasons.extend(vol.reasons)

    atr_rising = vol.pct is not None and vol.pct >= settings.atr_rising_pct
    flip = detect_impulse_flip(bars, vol.value, settings.impulse_flip_atr_mult)
    mild_slope = (
        slope.pct is not None
        and settings.vwap_slope_threshold_pct <= abs(slope.pct) <= settings.mild_slope_max_pct
    )

    if atr_rising and (flip or (structure is Structure.MIXED and mild_slope)):
        regime = Regime.TRANSITION
        reasons.append("TRANSITION: ATR rising with " +
                       ("impulse flip" if flip else "mixed structure and mild VWAP slope"))
    elif bear >= 2 and bear > bull:
        regime = Regime.TREND_DOWN
        reasons.append(f"TREND_DOWN: bear {bear} vs bull {bull}")
    elif bull >= 2 and bull > bear:
        regime = Regime.TREND_UP
        reasons.append(f"TREND_UP: bull {bull} vs bear {bear}")
    else:
        regime = Regime.CHOP
        reasons.append(f"CHOP: bull {bull} vs bear {bear}")

    return RegimeResult(
        regime=regime,
        bull_score=bull,
        bear_score=bear,
        vwap=slope.value,
        vwap_slope=slope.slope,
        vwap_slope_pct=slope.pct,
        atr=vol.value,
        atr_slope_pct=vol.pct,
        atr_rising=atr_rising,
        impulse_flip=flip,
        structure=structure,
        reasons=reasons,
    )


def regime_allows_direction(regime: Regime, direction: Direction) -> Tuple[bool, str]:
    """Hard veto: CHOP blocks everything, trends block the counter direction."""
    if regime is Regime.CHOP:
        return False, "blocked: CHOP regime (no new setups)"
    if regime is Regime.TREND_UP and direction is Direction.SHORT:
        return False, "blocked: TREND_UP regime disallows SHORT setups"
    if regime is Regime.TREND_DOWN and direction is Direction.LONG:
        return False, "blocked: TREND_DOWN regime disallows LONG setups"
    return True, f"allowed by {regime.value} regime"


def compute_macro_bias(bars: Sequence[Bar],
                       settings: RegimeSettings = DEFAULT_REGIME_SETTINGS) -> MacroBiasResult:
    if len(bars) < settings.min_bars:
        return MacroBiasResult(MacroBias.NEUTRAL,
                               reasons=[f"insufficient bars for macro bias: {len(bars)}"])

    bull, bear, _, _, reasons = _vote(bars, settings)
    if bull >= 2 and bull > bear:
        bias = MacroBias.LONG
    elif bear >= 2 and bear > bull:
        bias = MacroBias.SHORT
    else:
        bias = MacroBias.NEUTRAL
    reasons.append(f"macro bias {bias.value}: bull {bull} vs bear {bear}")
    return MacroBiasResult(bias, bull, bear, reasons)
