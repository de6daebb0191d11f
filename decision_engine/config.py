"""
Engine Configuration

YAML-backed settings mapped onto dataclass parameter groups. DEFAULT_CONFIG is
the single default; a YAML file only needs the keys it overrides.

Usage:
    from decision_engine.config import load_config

    config = load_config("config.yaml")
    config.gate.chase_atr_mult   # 0.8

Environment:
    DECISION_ENGINE_CONFIG=/path/to/config.yaml
"""

import logging
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional, Union

import pytz
import yaml

from .aggregation import timeframe_to_ms
from .errors import ConfigurationError
from .indicators.base import validate_period

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DECISION_ENGINE_CONFIG"

# Latest allowed entry cutoff (exchange time)
MAX_CUTOFF = (15, 45)


@dataclass(frozen=True)
class BarSettings:
    """Timeframes and history bounds"""
    decision_timeframe: str = "5m"
    context_timeframe: str = "15m"
    max_history: int = 600


@dataclass(frozen=True)
class RegimeSettings:
    """Regime / structure / macro bias parameters"""
    min_bars: int = 30
    min_context_bars: int = 40
    vwap_period: int = 30
    vwap_slope_lookback: int = 10
    vwap_slope_threshold_pct: float = 0.02
    mild_slope_max_pct: float = 0.08
    atr_period: int = 14
    atr_slope_lookback: int = 10
    atr_rising_pct: float = 8.0
    impulse_flip_atr_mult: float = 0.8
    structure_lookback: int = 22
    pivot_width: int = 2


@dataclass(frozen=True)
class TimingSettings:
    min_bars: int = 6
    impulse_range_atr: float = 0.6
    impulse_two_bar_atr: float = 0.9


@dataclass(frozen=True)
class EntryFilterSettings:
    cutoff_hour: int = 15
    cutoff_minute: int = 30
    timezone: str = "US/Eastern"
    extended_atr_mult: float = 1.5
    min_pullback_atr: float = 0.5
    max_pullback_atr: float = 1.0
    pullback_lookback: int = 10
    min_pullback_bars: int = 5
    rsi_overbought: float = 70.0
    rsi_vwap_atr_mult: float = 1.0


@dataclass(frozen=True)
class GateSettings:
    """Opportunity latch / resolution gate parameters"""
    latch_ttl_bars: int = 9
    impulse_window_bars: int = 2
    chase_atr_mult: float = 0.8
    stop_buffer_atr: float = 0.25


@dataclass(frozen=True)
class DecisionSettings:
    play_validity_minutes: int = 30


@dataclass(frozen=True)
class StopSettings:
    threat_r: float = 0.25
    near_target_dollars: float = 0.03


@dataclass(frozen=True)
class VolumeSettings:
    avg_period: int = 20


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration"""
    bars: BarSettings = field(default_factory=BarSettings)
    regime: RegimeSettings = field(default_factory=RegimeSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)
    entry_filters: EntryFilterSettings = field(default_factory=EntryFilterSettings)
    gate: GateSettings = field(default_factory=GateSettings)
    decision: DecisionSettings = field(default_factory=DecisionSettings)
    stops: StopSettings = field(default_factory=StopSettings)
    volume: VolumeSettings = field(default_factory=VolumeSettings)

    @property
    def decision_interval_ms(self) -> int:
        return timeframe_to_ms(self.bars.decision_timeframe)

    @property
    def context_interval_ms(self) -> int:
        return timeframe_to_ms(self.bars.context_timeframe)

    @property
    def latch_ttl_ms(self) -> int:
        return self.gate.latch_ttl_bars * self.decision_interval_ms

    @property
    def impulse_window_ms(self) -> int:
        return self.gate.impulse_window_bars * self.decision_interval_ms

    @property
    def play_validity_ms(self) -> int:
        return self.decision.play_validity_minutes * 60_000

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        sections = {}
        for f in fields(cls):
            raw = data.get(f.name) or {}
            if not isinstance(raw, dict):
                raise ConfigurationError(f"Config section '{f.name}' must be a mapping")
            settings_cls = f.default_factory
            known = {sf.name for sf in fields(settings_cls)}
            unknown = sorted(set(raw) - known)
            if unknown:
                raise ConfigurationError(f"Unknown keys in '{f.name}': {unknown}")
            sections[f.name] = settings_cls(**raw)
        unknown_sections = sorted(set(data) - set(sections))
        if unknown_sections:
            raise ConfigurationError(f"Unknown config sections: {unknown_sections}")
        return cls(**sections)

    def validate(self) -> 'EngineConfig':
        """Raise ConfigurationError on any invalid explicit value."""
        decision_ms = timeframe_to_ms(self.bars.decision_timeframe)
        context_ms = timeframe_to_ms(self.bars.context_timeframe)
        if context_ms <= decision_ms or context_ms % decision_ms != 0:
            raise ConfigurationError(
                f"Context timeframe {self.bars.context_timeframe} must be a multiple "
                f"of decision timeframe {self.bars.decision_timeframe}"
            )

        r = self.regime
        if self.bars.max_history < max(r.min_bars, r.min_context_bars):
            raise ConfigurationError(
                f"max_history ({self.bars.max_history}) is smaller than the regime minimum"
            )
        validate_period(r.vwap_period)
        validate_period(r.atr_period)
        validate_period(r.min_bars)
        if r.vwap_slope_lookback < 1 or r.atr_slope_lookback < 1:
            raise ConfigurationError("Slope lookbacks must be at least 1 bar")
        if r.pivot_width < 1 or r.structure_lookback < 2 * r.pivot_width + 1:
            raise ConfigurationError(
                f"structure_lookback ({r.structure_lookback}) too short for "
                f"pivot_width {r.pivot_width}"
            )

        ef = self.entry_filters
        validate_cutoff(ef.cutoff_hour, ef.cutoff_minute)
        validate_timezone(ef.timezone)
        if ef.min_pullback_bars < 2:
            raise ConfigurationError("min_pullback_bars must be at least 2")

        g = self.gate
        for name in ('latch_ttl_bars', 'impulse_window_bars'):
            if getattr(g, name) < 1:
                raise ConfigurationError(f"gate.{name} must be positive")
        if g.chase_atr_mult <= 0:
            raise ConfigurationError("gate.chase_atr_mult must be positive")
        if self.decision.play_validity_minutes <= 0:
            raise ConfigurationError("decision.play_validity_minutes must be positive")
        if self.stops.threat_r < 0:
            raise ConfigurationError("stops.threat_r must not be negative")
        validate_period(self.volume.avg_period)
        return self


def validate_cutoff(hour: int, minute: int) -> None:
    """Entry cutoff must be a real clock time no later than 15:45."""
    if not isinstance(hour, int) or not isinstance(minute, int):
        raise ConfigurationError(f"Cutoff must be integers, got {hour!r}:{minute!r}")
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ConfigurationError(f"Invalid cutoff time {hour:02d}:{minute:02d}")
    if (hour, minute) > MAX_CUTOFF:
        raise ConfigurationError(
            f"Cutoff {hour:02d}:{minute:02d} is after the latest allowed "
            f"{MAX_CUTOFF[0]:02d}:{MAX_CUTOFF[1]:02d}"
        )


def validate_timezone(name: str) -> None:
    try:
        pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ConfigurationError(f"Unknown timezone: {name}")


DEFAULT_CONFIG = EngineConfig()


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _deep_merge(base: Dict, override: Dict) -> Dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """Load YAML overrides on top of DEFAULT_CONFIG and validate."""
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return DEFAULT_CONFIG

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found at {config_path}")

    overrides = _load_yaml(config_path)
    config = EngineConfig.from_dict(_deep_merge(DEFAULT_CONFIG.to_dict(), overrides))
    config.validate()
    logger.info(f"Loaded configuration from {config_path}")
    return config
