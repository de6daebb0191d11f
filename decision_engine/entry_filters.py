"""
Entry Filters (advisory)

Checks applied before a new play is created. None of them block: each failing
check becomes a "FILTER (non-blocking): ..." warning that travels with the
candidate to the verifier. A pullback deeper than the sweet spot is only noted.
Management and exits of existing plays are never filtered. A check whose
inputs are missing is skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Sequence, Tuple

import pytz

from .config import EntryFilterSettings, validate_cutoff, validate_timezone
from .indicators import IndicatorSnapshot
from .models import Bar, Direction

logger = logging.getLogger(__name__)

FILTER_PREFIX = "FILTER (non-blocking): "


@dataclass
class EntryFilterContext:
    timestamp: int
    symbol: str
    direction: Direction
    close: float
    indicators: IndicatorSnapshot = field(default_factory=IndicatorSnapshot)
    recent_bars: Sequence[Bar] = field(default_factory=list)


@dataclass
class EntryFilterResult:
    allowed: bool = True
    warnings: List[str] = field(default_factory=list)


class EntryFilters:
    """Time cutoff, extended-from-mean, impulse-then-pullback, RSI exhaustion."""

    def __init__(self, settings: Optional[EntryFilterSettings] = None):
        self.settings = settings or EntryFilterSettings()
        validate_timezone(self.settings.timezone)
        self.exchange_tz = pytz.timezone(self.settings.timezone)
        self.cutoff_hour = self.settings.cutoff_hour
        self.cutoff_minute = self.settings.cutoff_minute
        validate_cutoff(self.cutoff_hour, self.cutoff_minute)

    def set_cutoff(self, hour: int, minute: int):
        """Move the no-new-plays cutoff (15:45 at the latest)."""
        validate_cutoff(hour, minute)
        self.cutoff_hour = hour
        self.cutoff_minute = minute
        logger.info(f"Entry cutoff set to {hour:02d}:{minute:02d} {self.settings.timezone}")

    def check(self, context: EntryFilterContext) -> EntryFilterResult:
        warnings = []
        for check in (self.check_time_of_day,
                      self.check_extended_from_mean,
                      self.check_impulse_then_pullback):
            ok, reason = check(context)
            if not ok:
                warnings.append(f"{FILTER_PREFIX}{reason}")

        warnings.extend(self.pullback_depth_notes(context))
        warnings.extend(self.check_rsi_exhaustion(context))
        return EntryFilterResult(allowed=True, warnings=warnings)

    def exchange_clock(self, timestamp_ms: int) -> Tuple[int, int]:
        dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=pytz.utc).astimezone(self.exchange_tz)
        return dt.hour, dt.minute

    def check_time_of_day(self, context: EntryFilterContext) -> Tuple[bool, str]:
        hour, minute = self.exchange_clock(context.timestamp)
        if hour * 60 + minute >= self.cutoff_hour * 60 + self.cutoff_minute:
            return False, (
                f"Time-of-day cutoff: no new plays after "
                f"{self.cutoff_hour}:{self.cutoff_minute:02d} ET (current: {hour}:{minute:02d} ET)"
            )
        return True, ""

    def check_extended_from_mean(self, context: EntryFilterContext) -> Tuple[bool, str]:
        ind = context.indicators
        if not ind.atr or ind.atr <= 0:
            return True, ""

        close = context.close
        max_distance = self.settings.extended_atr_mult * ind.atr
        issues = []
        for name, mean in (("VWAP", ind.vwap), ("EMA20", ind.ema20), ("EMA9", ind.ema9)):
            if mean is None:
                continue
            distance = abs(close - mean)
            if distance <= max_distance:
                continue
            if context.direction is Direction.LONG and close > mean:
                issues.append(f"Price {distance:.2f} above {name} (max: {max_distance:.2f} = "
                              f"{self.settings.extended_atr_mult} * ATR)")
            elif context.direction is Direction.SHORT and close < mean:
                issues.append(f"Price {distance:.2f} below {name} (max: {max_distance:.2f} = "
                              f"{self.settings.extended_atr_mult} * ATR)")

        if issues:
            return False, f"Extended-from-mean filter: {'; '.join(issues)}"
        return True, ""

    def check_impulse_then_pullback(self, context: EntryFilterContext) -> Tuple[bool, str]:
        ind = context.indicators
        bars = list(context.recent_bars)[-self.settings.pullback_lookback:]
        if not ind.atr or ind.atr <= 0 or len(bars) < self.settings.min_pullback_bars:
            return True, ""

        close = context.close
        min_depth = self.settings.min_pullback_atr * ind.atr
        if context.direction is Direction.LONG:
            extreme = max(b.high for b in bars)
            depth = extreme - close
            extreme_name = "Local high"
        else:
            extreme = min(b.low for b in bars)
            depth = close - extreme
            extreme_name = "Local low"

        if depth < min_depth:
            return False, (
                f"Impulse-then-pullback filter: Pullback depth {depth:.2f} is less than minimum "
                f"{min_depth:.2f} ({self.settings.min_pullback_atr} * ATR). "
                f"{extreme_name}: {extreme:.2f}"
            )

        ema = ind.ema9 if ind.ema9 is not None else ind.ema20
        if ema is not None:
            if context.direction is Direction.LONG and close <= ema:
                return False, (f"Impulse-then-pullback filter: No reclaim signal - close "
                               f"{close:.2f} is not above EMA ({ema:.2f})")
            if context.direction is Direction.SHORT and close >= ema:
                return False, (f"Impulse-then-pullback filter: No reclaim signal - close "
                               f"{close:.2f} is not below EMA ({ema:.2f})")

        return True, ""

    def pullback_depth_notes(self, context: EntryFilterContext) -> List[str]:
        """Informational: pullback deeper than the max_pullback_atr sweet spot."""
        ind = context.indicators
        bars = list(context.recent_bars)[-self.settings.pullback_lookback:]
        if not ind.atr or ind.atr <= 0 or len(bars) < self.settings.min_pullback_bars:
            return []

        if context.direction is Direction.LONG:
            depth = max(b.high for b in bars) - context.close
        else:
            depth = context.close - min(b.low for b in bars)
        if depth > self.settings.max_pullback_atr * ind.atr:
            return [f"Pullback note: depth {depth:.2f} is deeper than the "
                    f"{self.settings.max_pullback_atr} * ATR sweet spot"]
        return []

    def check_rsi_exhaustion(self, context: EntryFilterContext) -> List[str]:
        """LONG only: RSI(14) overbought while stretched above VWAP."""
        ind = context.indicators
        if context.direction is not Direction.LONG:
            return []
        if ind.rsi14 is None or ind.vwap is None or not ind.atr or ind.atr <= 0:
            return []

        if ind.rsi14 > self.settings.rsi_overbought:
            vwap_distance = context.close - ind.vwap
            max_distance = self.settings.rsi_vwap_atr_mult * ind.atr
            if vwap_distance > max_distance:
                return [
                    f"RSI exhaustion warning: RSI(14) = {ind.rsi14:.1f} > "
                    f"{self.settings.rsi_overbought:g} and price is {vwap_distance:.2f} above VWAP "
                    f"(threshold: {max_distance:.2f} = {self.settings.rsi_vwap_atr_mult} * ATR)"
                ]
        return []
