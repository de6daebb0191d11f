"""
Setup Detectors

Pattern detectors that turn an established directional thesis into a concrete
opportunity latch (zone, trigger, stop). Each detector sees the decision-bar
history plus the shared indicator snapshot and returns a LatchProposal or None.
Detectors are stateless: a scan depends only on the bars and indicators passed in.

Patterns:
  - pullback_continuation: counter-move against the bias, then a reclaim of EMA9
  - break_retest: break of a prior swing level, retest of it, close back beyond

Once a latch fires, build_candidate() scores the resulting trade idea:
    total = round(0.45 * alignment + 0.25 * structure + 0.30 * quality)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Sequence

from .config import GateSettings
from .indicators import IndicatorSnapshot
from .latch import OpportunityLatch, ResolutionGate, entry_band
from .models import (
    Bar, Direction, Zone, Targets, CandidateScore, SetupCandidate,
)
from .regime import Regime, RegimeResult, regime_allows_direction
from .structure import Structure
from .timing import TimingSignal

logger = logging.getLogger(__name__)


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


@dataclass(frozen=True)
class LatchProposal:
    """What a detector wants latched."""
    pattern: str
    side: Direction
    zone: Zone
    trigger_price: float
    trigger_description: str
    stop_price: float
    stop_reason: str
    quality: float
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SetupScan:
    proposal: Optional[LatchProposal]
    reasons: List[str] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════
# DETECTORS
# ═══════════════════════════════════════════════════════════════════════════

class SetupDetector:
    """
    Base class for latch-producing setup detectors.

    Subclasses must implement:
      - update(bars, indicators, direction) -> Optional[LatchProposal]
    """

    name: str = "base"
    display_name: str = "Base Setup"
    min_bars: int = 8

    def __init__(self, settings: Optional[GateSettings] = None):
        self.settings = settings or GateSettings()

    def update(self, bars: Sequence[Bar], indicators: IndicatorSnapshot,
               direction: Direction) -> Optional[LatchProposal]:
        raise NotImplementedError

    def _quality(self, base: float, direction: Direction, zone: Zone,
                 indicators: IndicatorSnapshot, vwap_penalty: float,
                 ema_distance_atr: float) -> float:
        close = indicators.close
        quality = base
        if indicators.vwap is not None and close is not None:
            right_side = close >= indicators.vwap if direction is Direction.LONG else close <= indicators.vwap
            quality += 5 if right_side else -vwap_penalty
        if indicators.ema20 is not None and indicators.atr:
            quality += 5 if abs(zone.mid - indicators.ema20) <= ema_distance_atr * indicators.atr else -5
        return _clamp(quality)


class PullbackContinuationDetector(SetupDetector):
    """Counter-trend pullback that reclaims EMA9 in the bias direction."""

    name = "pullback_continuation"
    display_name = "Pullback Continuation"
    window = 8

    def update(self, bars, indicators, direction):
        atr, ema9 = indicators.atr, indicators.ema9
        if len(bars) < self.min_bars or not atr or ema9 is None:
            return None

        window = list(bars[-self.window:])
        last, prev = window[-1], window[-2]

        if direction is Direction.LONG:
            dipped = any(b.close < ema9 for b in window)
            reclaimed = last.close > ema9 and last.close > last.open
            improving = last.close > prev.close or (prev.close < prev.open and last.close > last.open)
        else:
            dipped = any(b.close > ema9 for b in window)
            reclaimed = last.close < ema9 and last.close < last.open
            improving = last.close < prev.close or (prev.close > prev.open and last.close < last.open)
        if not (dipped and reclaimed and improving):
            return None

        buffer = self.settings.stop_buffer_atr * atr
        recent = window[-3:]
        if direction is Direction.LONG:
            pullback_low = min(b.low for b in window)
            trigger = last.high
            zone = Zone(pullback_low, max(b.high for b in recent))
            stop = pullback_low - buffer
            description = "break of reclaim bar high"
        else:
            pullback_high = max(b.high for b in window)
            trigger = last.low
            zone = Zone(min(b.low for b in recent), pullback_high)
            stop = pullback_high + buffer
            description = "break of prior low"

        if not zone.low < zone.high:
            return None

        quality = self._quality(70, direction, zone, indicators, vwap_penalty=5, ema_distance_atr=1.0)
        return LatchProposal(
            pattern="PULLBACK_CONTINUATION",
            side=direction,
            zone=zone,
            trigger_price=trigger,
            trigger_description=description,
            stop_price=stop,
            stop_reason="pullback_level_buffer",
            quality=quality,
            reasons=[f"EMA9 reclaim at {last.close:.2f} (ema9={ema9:.2f})"],
        )


class BreakRetestDetector(SetupDetector):
    """Break of a prior swing level, retest, and close back beyond it."""

    name = "break_retest"
    display_name = "Break & Retest"
    min_bars = 20
    level_lookback = 20
    exclude_last = 3
    scan_window = 12

    def update(self, bars, indicators, direction):
        atr = indicators.atr
        if len(bars) < self.min_bars or not atr:
            return None

        end = len(bars) - self.exclude_last
        history = bars[max(0, end - self.level_lookback):end]
        if not history:
            return None
        level = max(b.high for b in history) if direction is Direction.LONG else min(b.low for b in history)

        break_buffer = 0.10 * atr
        retest_tol = 0.20 * atr
        broke = retested = False
        retest_extreme = None
        for b in bars[-self.scan_window:]:
            if direction is Direction.LONG:
                if not broke and b.close > level + break_buffer:
                    broke = True
                elif broke and not retested and b.low <= level + retest_tol:
                    retested = True
                    retest_extreme = b.low
            else:
                if not broke and b.close < level - break_buffer:
                    broke = True
                elif broke and not retested and b.high >= level - retest_tol:
                    retested = True
                    retest_extreme = b.high

        last = bars[-1]
        reclaimed = last.close > level if direction is Direction.LONG else last.close < level
        if not (broke and retested and reclaimed):
            return None

        buffer = self.settings.stop_buffer_atr * atr
        recent = bars[-2:]
        if direction is Direction.LONG:
            trigger = max(b.high for b in recent)
            zone = Zone(level, trigger)
            stop = retest_extreme - buffer
        else:
            trigger = min(b.low for b in recent)
            zone = Zone(trigger, level)
            stop = retest_extreme + buffer

        if not zone.low < zone.high:
            return None

        quality = self._quality(75, direction, zone, indicators, vwap_penalty=8, ema_distance_atr=1.2)
        return LatchProposal(
            pattern="BREAK_RETEST",
            side=direction,
            zone=zone,
            trigger_price=trigger,
            trigger_description=f"continuation beyond retest of {level:.2f}",
            stop_price=stop,
            stop_reason="retest_extreme_buffer",
            quality=quality,
            reasons=[f"breakLevel={level:.2f} broke retested reclaimed"],
        )


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════

class SetupEngine:
    """Runs the registered detectors for one symbol and picks the best latch."""

    def __init__(self, settings: Optional[GateSettings] = None):
        self.settings = settings or GateSettings()
        self.detectors: List[SetupDetector] = []

    def register(self, detector: SetupDetector):
        self.detectors.append(detector)
        logger.debug(f"Registered setup detector: {detector.name} ({detector.display_name})")

    def register_all_defaults(self) -> 'SetupEngine':
        self.register(PullbackContinuationDetector(self.settings))
        self.register(BreakRetestDetector(self.settings))
        return self

    def evaluate(self, ts: int, bars: Sequence[Bar], indicators: IndicatorSnapshot,
                 direction: Direction, regime: RegimeResult) -> SetupScan:
        allowed, reason = regime_allows_direction(regime.regime, direction)
        if not allowed:
            return SetupScan(None, [reason])
        opposed = (
            (direction is Direction.LONG and regime.structure is Structure.BEARISH)
            or (direction is Direction.SHORT and regime.structure is Structure.BULLISH)
        )
        if opposed:
            return SetupScan(None, [f"{regime.structure.value} structure opposes {direction.value}"])

        proposals = []
        for detector in self.detectors:
            try:
                proposal = detector.update(bars, indicators, direction)
            except Exception as e:
                logger.error(f"Error in detector {detector.name}: {e}", exc_info=True)
                continue
            if proposal:
                proposals.append((detector, proposal))

        if not proposals:
            return SetupScan(None, ["no setup pattern"])

        detector, best = max(proposals, key=lambda p: p[1].quality)
        logger.info(
            f"[{detector.name}] Setup @ {ts}: {best.side.value} trigger {best.trigger_price:.2f} "
            f"stop {best.stop_price:.2f} zone {best.zone.low:.2f}-{best.zone.high:.2f} "
            f"(quality={best.quality:.0f})"
        )
        return SetupScan(best, [f"pattern={best.pattern}"] + best.reasons)


def build_candidate(symbol: str, ts: int, latch: OpportunityLatch, gate: ResolutionGate,
                    close: float, atr: Optional[float], regime: RegimeResult,
                    timing: TimingSignal, chase_atr_mult: float) -> SetupCandidate:
    """Score a fired latch as a concrete trade candidate."""
    direction = latch.side
    entry_zone = entry_band(gate, atr, chase_atr_mult)
    stop = latch.stop.price
    targets = Targets.from_r(entry_zone.mid, stop, direction)

    votes = regime.bull_score if direction is Direction.LONG else regime.bear_score
    alignment = _clamp(40 + 20 * votes)
    if regime.structure is Structure.MIXED:
        structure_score = 55.0
    elif (regime.structure is Structure.BULLISH) == (direction is Direction.LONG):
        structure_score = 85.0
    else:
        structure_score = 30.0
    if regime.regime is Regime.TRANSITION:
        structure_score = min(structure_score, 60.0)
    quality = _clamp(0.5 * latch.quality + 0.5 * timing.score)
    total = round(0.45 * alignment + 0.25 * structure_score + 0.30 * quality)

    return SetupCandidate(
        id=f"setup_{ts}_{latch.pattern.lower()}",
        ts=ts,
        symbol=symbol,
        direction=direction,
        pattern=latch.pattern,
        trigger_price=gate.trigger_price,
        entry_zone=entry_zone,
        stop=stop,
        targets=targets,
        score=CandidateScore(round(alignment), round(structure_score), round(quality), total),
        rationale=[
            f"regime={regime.regime.value} structure={regime.structure.value}",
            f"{gate.reason}; close {close:.2f}",
            f"timing {timing.state.value} score {timing.score}",
        ],
    )
