"""
Market Structure Detection

Fractal pivots (strictly higher/lower than `pivot_width` bars on each side)
over a bounded lookback, then the last two pivot highs and lows decide:

    HH + HL  -> BULLISH
    LH + LL  -> BEARISH
    anything else (or too few pivots) -> MIXED
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence, Tuple, Dict, Any

from .models import Bar

DEFAULT_LOOKBACK = 22
DEFAULT_PIVOT_WIDTH = 2


class Structure(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    MIXED = "MIXED"


@dataclass(frozen=True)
class Pivot:
    index: int
    price: float


@dataclass(frozen=True)
class StructureResult:
    structure: Structure
    pivot_highs: List[Pivot] = field(default_factory=list)
    pivot_lows: List[Pivot] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'structure': self.structure.value,
            'pivot_highs': [(p.index, p.price) for p in self.pivot_highs],
            'pivot_lows': [(p.index, p.price) for p in self.pivot_lows],
            'reasons': list(self.reasons),
        }


def detect_pivots(bars: Sequence[Bar], pivot_width: int = DEFAULT_PIVOT_WIDTH
                  ) -> Tuple[List[Pivot], List[Pivot]]:
    """Return (pivot_highs, pivot_lows) with indices relative to `bars`."""
    highs: List[Pivot] = []
    lows: List[Pivot] = []

    for i in range(pivot_width, len(bars) - pivot_width):
        bar = bars[i]
        neighbours = [bars[j] for j in range(i - pivot_width, i + pivot_width + 1) if j != i]
        if all(bar.high > other.high for other in neighbours):
            highs.append(Pivot(i, bar.high))
        if all(bar.low < other.low for other in neighbours):
            lows.append(Pivot(i, bar.low))

    return highs, lows


def _compare(prev: float, last: float, up: str, down: str) -> str:
    if last > prev:
        return up
    if last < prev:
        return down
    return "="


def detect_structure(bars: Sequence[Bar], lookback: int = DEFAULT_LOOKBACK,
                     pivot_width: int = DEFAULT_PIVOT_WIDTH) -> StructureResult:
    if len(bars) < lookback or len(bars) < pivot_width * 2 + 1:
        return StructureResult(
            Structure.MIXED,
            reasons=[f"insufficient bars for structure detection: {len(bars)} < {lookback}"],
        )

    window = list(bars[-lookback:])
    highs, lows = detect_pivots(window, pivot_width)

    if len(highs) < 2 or len(lows) < 2:
        return StructureResult(
            Structure.MIXED, highs, lows,
            reasons=[f"insufficient pivots: {len(highs)} highs, {len(lows)} lows"],
        )

    h1, h2 = highs[-2], highs[-1]
    l1, l2 = lows[-2], lows[-1]
    high_tag = _compare(h1.price, h2.price, "HH", "LH")
    low_tag = _compare(l1.price, l2.price, "HL", "LL")

    reasons = [
        f"H1={h1.price:.2f} H2={h2.price:.2f} {high_tag}",
        f"L1={l1.price:.2f} L2={l2.price:.2f} {low_tag}",
    ]

    if high_tag == "LH" and low_tag == "LL":
        structure = Structure.BEARISH
        reasons.append("BEARISH structure: LH + LL")
    elif high_tag == "HH" and low_tag == "HL":
        structure = Structure.BULLISH
        reasons.append("BULLISH structure: HH + HL")
    else:
        structure = Structure.MIXED
        reasons.append("MIXED structure: no clear trend")

    return StructureResult(structure, highs, lows, reasons)
