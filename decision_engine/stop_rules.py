"""
Stop / Profit Rules

Close-based trade management context for an active play. The only terminal
condition is a stop hit on close; everything else (threatened stop, near or
hit targets, R-multiples) is information for the caller.

Formulas (LONG; SHORT mirrors):
    stop hit        close <= stop
    threatened      close <= stop + threat_r * risk
    risk            |entry - stop|
    dStop           close - stop,   pct = 100 * dStop / close
    R to target     (target - entry) / risk
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from .config import StopSettings
from .models import Direction, Play

TARGET_LABELS = ("T1", "T2", "T3")


@dataclass(frozen=True)
class RulesContext:
    stop_hit_on_close: bool
    stop_threatened: bool
    distance_to_stop: float
    distance_to_stop_dollars: float
    distance_to_t1: float
    distance_to_t1_dollars: float
    distance_to_t2: float
    distance_to_t2_dollars: float
    distance_to_t3: float
    distance_to_t3_dollars: float
    risk: float
    reward_t1: float
    reward_t2: float
    reward_t3: float
    r_multiple_t1: float
    r_multiple_t2: float
    r_multiple_t3: float
    target_hit: Optional[str]
    near_target: Optional[str]
    profit_percent: float
    current_r: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_stop_hit_on_close(direction: Direction, close: float, stop: float) -> bool:
    return close <= stop if direction is Direction.LONG else close >= stop


def _pct(value: float, base: float) -> float:
    return 100.0 * value / base if base else 0.0


class StopProfitRules:
    """Close-based stop / target evaluation for a play."""

    def __init__(self, settings: Optional[StopSettings] = None):
        self.settings = settings or StopSettings()

    def get_context(self, play: Play, close: float,
                    entry_price: Optional[float] = None) -> RulesContext:
        stop = play.stop
        entry = entry_price if entry_price is not None else play.entry_zone.mid
        sign = play.direction.sign
        targets = play.targets.as_list()

        stop_dollars = sign * (close - stop)
        target_dollars = [sign * (t - close) for t in targets]
        risk = abs(entry - stop)
        rewards = [sign * (t - entry) for t in targets]
        r_multiples = [r / risk if risk > 0 else 0.0 for r in rewards]

        # threatened while within threat_r * risk of the stop (or beyond it)
        stop_threatened = stop_dollars <= self.settings.threat_r * risk

        target_hit = None
        for label, target in reversed(list(zip(TARGET_LABELS, targets))):
            if sign * (close - target) >= 0:
                target_hit = label
                break

        near_target = None
        if target_hit is None:
            near = self.settings.near_target_dollars
            for label, target in zip(TARGET_LABELS, targets):
                if sign * (close - target) >= -near:
                    near_target = label
                    break

        profit_percent = _pct(sign * (close - entry), entry)
        current_r = sign * (close - entry) / risk if risk > 0 else 0.0

        return RulesContext(
            stop_hit_on_close=is_stop_hit_on_close(play.direction, close, stop),
            stop_threatened=stop_threatened,
            distance_to_stop=_pct(stop_dollars, close),
            distance_to_stop_dollars=stop_dollars,
            distance_to_t1=_pct(target_dollars[0], close),
            distance_to_t1_dollars=target_dollars[0],
            distance_to_t2=_pct(target_dollars[1], close),
            distance_to_t2_dollars=target_dollars[1],
            distance_to_t3=_pct(target_dollars[2], close),
            distance_to_t3_dollars=target_dollars[2],
            risk=risk,
            reward_t1=rewards[0],
            reward_t2=rewards[1],
            reward_t3=rewards[2],
            r_multiple_t1=r_multiples[0],
            r_multiple_t2=r_multiples[1],
            r_multiple_t3=r_multiples[2],
            target_hit=target_hit,
            near_target=near_target,
            profit_percent=profit_percent,
            current_r=current_r,
        )

    @staticmethod
    def validate_stop(play: Play, entry_price: Optional[float] = None) -> Optional[str]:
        """Return a problem description, or None when the stop is on the correct side."""
        entry = entry_price if entry_price is not None else play.entry_zone.mid
        if play.direction is Direction.LONG and play.stop >= entry:
            return f"LONG stop {play.stop:.2f} must be below entry {entry:.2f}"
        if play.direction is Direction.SHORT and play.stop <= entry:
            return f"SHORT stop {play.stop:.2f} must be above entry {entry:.2f}"
        return None
