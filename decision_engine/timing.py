"""
Timing Signal

Scores how ripe the current bar is for entry (0-100, four 25-point parts):

    break_acceptance  - last two closes beyond the reference level
    retest_quality    - level touched in the last 3 bars, close back on side
    vwap_reaction     - break + acceptance measured against VWAP
    atr_normalization - recent 3-bar ranges contracting vs the 3 before

The reference level is the entry-zone edge in the trade direction (zone high
for LONG, zone low for SHORT), or VWAP when there is no zone.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Sequence, Dict, Any

from .config import TimingSettings
from .models import Bar, Direction, Zone

DEFAULT_TIMING_SETTINGS = TimingSettings()

FULL_POINTS = 25
PARTIAL_POINTS = 12


class TimingState(Enum):
    WAITING = "WAITING"
    IMPULSE_DETECTED = "IMPULSE_DETECTED"
    PULLBACK_IN_PROGRESS = "PULLBACK_IN_PROGRESS"
    ENTRY_WINDOW_OPEN = "ENTRY_WINDOW_OPEN"


@dataclass(frozen=True)
class TimingSignal:
    state: TimingState
    score: int
    break_acceptance: int = 0
    retest_quality: int = 0
    vwap_reaction: int = 0
    atr_normalization: int = 0
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'score': self.score,
            'components': {
                'break_acceptance': self.break_acceptance,
                'retest_quality': self.retest_quality,
                'vwap_reaction': self.vwap_reaction,
                'atr_normalization': self.atr_normalization,
            },
            'reasons': list(self.reasons),
        }


def _beyond(price: float, level: float, direction: Direction) -> bool:
    return price > level if direction is Direction.LONG else price < level


def _break_accept_points(last: Bar, prev: Bar, level: Optional[float],
                         direction: Direction) -> int:
    if level is None:
        return 0
    broke = _beyond(last.close, level, direction)
    accepted = _beyond(prev.close, level, direction)
    if broke and accepted:
        return FULL_POINTS
    return PARTIAL_POINTS if broke else 0


def compute_timing_signal(bars: Sequence[Bar], direction: Direction,
                          entry_zone: Optional[Zone] = None,
                          vwap: Optional[float] = None,
                          atr: Optional[float] = None,
                          settings: TimingSettings = DEFAULT_TIMING_SETTINGS) -> TimingSignal:
    if len(bars) < settings.min_bars:
        return TimingSignal(TimingState.WAITING, 0, reasons=["insufficient bars for timing"])

    prev2, prev, last = bars[-3], bars[-2], bars[-1]
    impulse = bool(atr) and (
        last.range >= settings.impulse_range_atr * atr
        or last.range + prev.range >= settings.impulse_two_bar_atr * atr
    )

    if entry_zone is not None:
        level = entry_zone.high if direction is Direction.LONG else entry_zone.low
        level_name = "zone"
    else:
        level = vwap
        level_name = "VWAP"

    break_acceptance = _break_accept_points(last, prev, level, direction)

    retest_quality = 0
    if level is not None:
        if direction is Direction.LONG:
            touched = any(b.low <= level for b in (prev2, prev, last))
        else:
            touched = any(b.high >= level for b in (prev2, prev, last))
        if touched and _beyond(last.close, level, direction):
            retest_quality = FULL_POINTS

    vwap_reaction = _break_accept_points(last, prev, vwap, direction)

    ranges = [b.range for b in bars[-6:]]
    prev_avg = sum(ranges[:3]) / 3
    last_avg = sum(ranges[3:]) / 3
    if last_avg < prev_avg * 0.9:
        atr_normalization = FULL_POINTS
    elif last_avg <= prev_avg * 1.1:
        atr_normalization = PARTIAL_POINTS
    else:
        atr_normalization = 0

    score = min(100, break_acceptance + retest_quality + vwap_reaction + atr_normalization)

    if entry_zone is not None and entry_zone.contains(last.close):
        state = TimingState.ENTRY_WINDOW_OPEN
    elif impulse:
        state = TimingState.IMPULSE_DETECTED
    elif break_acceptance > 0 or retest_quality > 0:
        state = TimingState.PULLBACK_IN_PROGRESS
    else:
        state = TimingState.WAITING

    reasons = []
    if break_acceptance:
        reasons.append(f"break+accept ({level_name})")
    if retest_quality:
        reasons.append(f"retest ({level_name})")
    if vwap_reaction:
        reasons.append("vwap reaction")
    if atr_normalization:
        reasons.append("atr normalization")
    if impulse:
        reasons.append("impulse detected")
    if not reasons:
        reasons.append("timing not ready")

    return TimingSignal(state, score, break_acceptance, retest_quality,
                        vwap_reaction, atr_normalization, reasons)
