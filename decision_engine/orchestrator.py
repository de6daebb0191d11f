"""
Decision Orchestrator

Per-symbol pipeline driver. Each tick:

    aggregate -> indicators -> structure / regime / macro bias -> timing
    -> execution state machine (latch, gate, chase) -> entry filters
    -> decision gate -> stop / profit management -> events

Only completed decision-timeframe bars advance the state machine. All windows
are measured against the caller's `now_ts` (defaulting to the bar's close
time), so replaying the same (bar, now) sequence reproduces the same events.

Stale input: a bar whose ts is not strictly after the previous bar of the same
symbol and timeframe is dropped, logged and counted; it produces no events.
"""

import copy
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any, Callable, Deque, Tuple, Union

import pandas as pd

from .aggregation import BarAggregator, frame_to_bars, timeframe_minutes
from .config import EngineConfig, DEFAULT_CONFIG
from .decision import (
    build_decision, build_no_entry_decision, CHOP, ENTRY_FILTER, GUARDRAIL,
)
from .entry_filters import EntryFilters, EntryFilterContext
from .execution import (
    ExecutionState, WaitingForThesis, BiasEstablished, WaitingForPullback,
    WaitingForEntry, Extension, InTrade, bias_of, latch_of,
)
from .indicators import IndicatorSnapshot, compute_snapshot
from .latch import (
    LatchStatus, advance_latch, arm_latch, check_chase, expire_gate, fire_gate,
    invalidate_gate, is_break_impulse_eligible, open_gate, stop_crossed,
)
from .models import (
    Bar, DecisionStatus, Direction, DomainEvent, EventType, Play, PlayStatus,
    Verification, VerificationRequest,
)
from . import persistence
from .regime import (
    MacroBiasResult, Regime, RegimeResult, compute_macro_bias, compute_regime,
    regime_allows_direction,
)
from .setups import SetupEngine, build_candidate
from .stop_rules import StopProfitRules
from .timing import TimingSignal, compute_timing_signal
from .volume import VolumePolicy, relative_volume, volume_policy, volume_warnings

logger = logging.getLogger(__name__)

Verifier = Callable[[VerificationRequest], Optional[Verification]]

INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
STALE_INPUT = "STALE_INPUT"
MALFORMED_INPUT = "MALFORMED_INPUT"
DECISION_KEY = "decision"


# ═══════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class HistoryBundle:
    """Closed bars keyed by timeframe tag, used once to seed a symbol."""
    symbol: str
    bars: Dict[str, List[Bar]]
    source: str = "unknown"

    @classmethod
    def from_frames(cls, symbol: str, frames: Dict[str, pd.DataFrame],
                    source: str = "unknown") -> 'HistoryBundle':
        return cls(symbol, {tf: frame_to_bars(df) for tf, df in frames.items()}, source)


@dataclass(frozen=True)
class TickDiagnostics:
    """Read-only observability snapshot of the last processed decision bar."""
    symbol: str
    ts: int
    now_ts: int
    timeframe: str
    sufficient_data: bool
    setup_reason: str
    bars_available: int
    bars_required: int
    context_bars: int
    regime: str
    structure: str
    macro_bias: str
    phase: str
    timing: Optional[Dict[str, Any]] = None
    indicators: Dict[str, Any] = field(default_factory=dict)
    volume_policy: Dict[str, Any] = field(default_factory=dict)
    rejected_bars: int = 0
    reasons: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class TickAnalysis:
    snapshot: IndicatorSnapshot
    regime: RegimeResult
    macro: MacroBiasResult
    volume: VolumePolicy
    rel_volume: Optional[float]
    timing: Optional[TimingSignal]
    sufficient: bool


class SymbolContext:
    """Everything the orchestrator owns for one symbol."""

    def __init__(self, symbol: str, config: EngineConfig):
        self.symbol = symbol
        self.decision_bars: Deque[Bar] = deque(maxlen=config.bars.max_history)
        self.context_bars: Deque[Bar] = deque(maxlen=config.bars.max_history)
        self.fine_aggregators: Dict[str, BarAggregator] = {}
        self.context_aggregator = BarAggregator(
            timeframe_minutes(config.bars.context_timeframe), label=f"{symbol}:context")
        self.last_ts: Dict[str, int] = {}
        self.state: ExecutionState = WaitingForThesis("no bias yet")
        self.setups = SetupEngine(config.gate).register_all_defaults()
        self.diagnostics: Optional[TickDiagnostics] = None
        self.rejected_bars = 0
        self.last_no_entry: Optional[Tuple] = None


# ═══════════════════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════════════════

class Orchestrator:
    """
    Per-symbol decision engine.

    Usage:
        orch = Orchestrator(load_config("config.yaml"), verifier=my_verifier)
        orch.warmup_history(HistoryBundle("SPY", {"5m": bars}, source="backfill"))
        events = orch.process_tick("SPY", bar, "1m")
    """

    def __init__(self, config: Optional[EngineConfig] = None, instance_id: str = "default",
                 verifier: Optional[Verifier] = None):
        self.config = (config or DEFAULT_CONFIG).validate()
        self.instance_id = instance_id
        self.verifier = verifier
        self.entry_filters = EntryFilters(self.config.entry_filters)
        self.stop_rules = StopProfitRules(self.config.stops)
        self.governor_state: Dict[str, Any] = {}
        self._symbols: Dict[str, SymbolContext] = {}
        self._last_symbol: Optional[str] = None
        self._decision_minutes = timeframe_minutes(self.config.bars.decision_timeframe)
        self._context_minutes = timeframe_minutes(self.config.bars.context_timeframe)
        logger.info(
            f"Orchestrator {instance_id} initialized "
            f"(decision={self.config.bars.decision_timeframe}, "
            f"context={self.config.bars.context_timeframe})"
        )

    # ── Public API ──

    def process_tick(self, symbol: str, bar: Union[Bar, Dict[str, Any]], timeframe: str,
                     now_ts: Optional[int] = None) -> List[DomainEvent]:
        bar = bar if isinstance(bar, Bar) else Bar.from_dict(bar)
        ctx = self._context(symbol)
        minutes = timeframe_minutes(timeframe)
        key = f"{minutes}m"

        if not bar.is_well_formed():
            self._reject(ctx, key, bar, MALFORMED_INPUT)
            return []
        if not self._accept(ctx, key, bar):
            return []

        if minutes < self._decision_minutes:
            decision_bar = self._fine_aggregator(ctx, key).push(bar)
            if decision_bar is None:
                return []
        elif minutes == self._decision_minutes:
            decision_bar = bar
        else:
            if minutes == self._context_minutes:
                self._append_context(ctx, bar)
            else:
                logger.debug(f"[{symbol}] Ignoring {timeframe} bar (no consumer)")
            return []

        now = now_ts if now_ts is not None else decision_bar.ts
        return self._on_decision_bar(ctx, decision_bar, timeframe, now)

    def warmup_history(self, bundle: HistoryBundle) -> int:
        """Seed closed bars without emitting events. Returns decision bars seeded."""
        ctx = self._context(bundle.symbol)
        by_minutes = sorted(
            ((timeframe_minutes(tf), bars) for tf, bars in bundle.bars.items()),
            key=lambda item: -item[0],
        )
        seeded = 0
        covered = 0
        for minutes, bars in by_minutes:
            key = f"{minutes}m"
            for bar in sorted(bars, key=lambda b: b.ts):
                if not bar.is_well_formed() or not self._accept(ctx, key, bar):
                    continue
                if minutes > self._decision_minutes:
                    if minutes == self._context_minutes:
                        self._append_context(ctx, bar)
                    continue
                if minutes < self._decision_minutes:
                    bar = self._fine_aggregator(ctx, key).push(bar)
                    if bar is None:
                        continue
                last = ctx.last_ts.get(DECISION_KEY)
                if last is not None and bar.ts <= last:
                    # Already seeded from a coarser granularity
                    covered += 1
                    continue
                ctx.last_ts[DECISION_KEY] = bar.ts
                self._append_decision(ctx, bar)
                seeded += 1

        logger.info(
            f"[{bundle.symbol}] Warm-up from {bundle.source}: {seeded} decision bars, "
            f"{len(ctx.decision_bars)} in history, {len(ctx.context_bars)} context bars, "
            f"{covered} already covered"
        )
        return seeded

    def get_last_diagnostics(self, symbol: Optional[str] = None) -> Optional[TickDiagnostics]:
        symbol = symbol or self._last_symbol
        if symbol is None:
            return None
        ctx = self._symbols.get(symbol)
        if ctx is None or ctx.diagnostics is None:
            return None
        return copy.deepcopy(ctx.diagnostics)

    def get_state(self, symbol: str) -> ExecutionState:
        return self._context(symbol).state

    @property
    def symbols(self) -> List[str]:
        return list(self._symbols)

    def export_snapshot(self, now_ts: Optional[int] = None) -> Dict[str, Any]:
        saved_at = now_ts if now_ts is not None else int(time.time() * 1000)
        return persistence.build_snapshot(
            self.instance_id,
            saved_at,
            {sym: ctx.state for sym, ctx in self._symbols.items()},
            {sym: ctx.last_ts.get(DECISION_KEY) for sym, ctx in self._symbols.items()},
            self.governor_state,
        )

    @classmethod
    def from_snapshot(cls, payload: Optional[Dict[str, Any]], config: Optional[EngineConfig] = None,
                      verifier: Optional[Verifier] = None,
                      instance_id: Optional[str] = None) -> 'Orchestrator':
        loaded = persistence.load_snapshot(payload)
        orch = cls(config, instance_id or (loaded.instance_id if loaded else "default"), verifier)
        if loaded is None:
            return orch
        orch.governor_state = dict(loaded.governor)
        for symbol, snap in loaded.symbols.items():
            orch._context(symbol).state = snap.state
            logger.info(f"[{symbol}] Resumed in {snap.state.phase.value}")
        return orch

    # ── Input handling ──

    def _context(self, symbol: str) -> SymbolContext:
        ctx = self._symbols.get(symbol)
        if ctx is None:
            ctx = SymbolContext(symbol, self.config)
            self._symbols[symbol] = ctx
        return ctx

    def _fine_aggregator(self, ctx: SymbolContext, key: str) -> BarAggregator:
        agg = ctx.fine_aggregators.get(key)
        if agg is None:
            agg = BarAggregator(self._decision_minutes, label=f"{ctx.symbol}:{key}")
            ctx.fine_aggregators[key] = agg
        return agg

    def _accept(self, ctx: SymbolContext, key: str, bar: Bar) -> bool:
        last = ctx.last_ts.get(key)
        if last is not None and bar.ts <= last:
            self._reject(ctx, key, bar, STALE_INPUT, f"ts {bar.ts} <= last {last}")
            return False
        ctx.last_ts[key] = bar.ts
        return True

    def _reject(self, ctx: SymbolContext, key: str, bar: Bar, code: str, detail: str = ""):
        ctx.rejected_bars += 1
        logger.warning(f"[{ctx.symbol}] {code}: dropped {key} bar ts={bar.ts} {detail}".rstrip())
        if ctx.diagnostics is not None:
            reasons = dict(ctx.diagnostics.reasons)
            reasons['input'] = [f"{code}: {key} bar ts={bar.ts} {detail}".rstrip()]
            ctx.diagnostics = replace(ctx.diagnostics, rejected_bars=ctx.rejected_bars,
                                      reasons=reasons)

    def _append_context(self, ctx: SymbolContext, bar: Bar):
        if ctx.context_bars and bar.ts <= ctx.context_bars[-1].ts:
            return
        ctx.context_bars.append(bar)

    def _append_decision(self, ctx: SymbolContext, bar: Bar):
        ctx.decision_bars.append(bar)
        context_bar = ctx.context_aggregator.push(bar)
        if context_bar is not None:
            self._append_context(ctx, context_bar)

    # ── Analysis ──

    def _on_decision_bar(self, ctx: SymbolContext, bar: Bar, timeframe: str,
                         now: int) -> List[DomainEvent]:
        if not self._accept(ctx, DECISION_KEY, bar):
            return []
        self._append_decision(ctx, bar)

        analysis = self._analyze(ctx)
        events: List[DomainEvent] = []
        reason = self._advance(ctx, bar, analysis, now, events)
        ctx.diagnostics = self._diagnostics(ctx, bar, timeframe, now, analysis, reason)
        self._last_symbol = ctx.symbol

        for event in events:
            logger.debug(f"[{ctx.symbol}] Event {event.type.value} @ {event.timestamp}")
        return events

    def _analyze(self, ctx: SymbolContext) -> TickAnalysis:
        cfg = self.config
        bars = list(ctx.decision_bars)
        snapshot = compute_snapshot(bars, cfg.regime.atr_period, cfg.regime.vwap_period)
        regime = compute_regime(bars, cfg.regime)

        context = list(ctx.context_bars)
        if len(context) >= cfg.regime.min_context_bars:
            macro = compute_macro_bias(context, cfg.regime)
            macro = replace(macro, reasons=[f"source={cfg.bars.context_timeframe}"] + macro.reasons)
        else:
            macro = compute_macro_bias(bars, cfg.regime)
            macro = replace(macro, reasons=[
                f"source={cfg.bars.decision_timeframe} "
                f"({len(context)}/{cfg.regime.min_context_bars} context bars)"
            ] + macro.reasons)

        rel_vol = relative_volume(bars, cfg.volume.avg_period)
        direction = bias_of(ctx.state) or macro.bias.direction
        timing = None
        if direction is not None:
            latch = latch_of(ctx.state)
            timing = compute_timing_signal(
                bars, direction, latch.zone if latch else None,
                snapshot.vwap, snapshot.atr, cfg.timing,
            )

        return TickAnalysis(
            snapshot=snapshot,
            regime=regime,
            macro=macro,
            volume=volume_policy(rel_vol),
            rel_volume=rel_vol,
            timing=timing,
            sufficient=len(bars) >= cfg.regime.min_bars,
        )

    def _diagnostics(self, ctx: SymbolContext, bar: Bar, timeframe: str, now: int,
                     a: TickAnalysis, reason: str) -> TickDiagnostics:
        required = self.config.regime.min_bars
        available = len(ctx.decision_bars)
        if a.sufficient:
            setup_reason = f"{ctx.state.phase.value}: {reason}"
        else:
            setup_reason = (f"{INSUFFICIENT_DATA}: {available}/{required} "
                            f"{self.config.bars.decision_timeframe} bars")
        return TickDiagnostics(
            symbol=ctx.symbol,
            ts=bar.ts,
            now_ts=now,
            timeframe=timeframe,
            sufficient_data=a.sufficient,
            setup_reason=setup_reason,
            bars_available=available,
            bars_required=required,
            context_bars=len(ctx.context_bars),
            regime=a.regime.regime.value,
            structure=a.regime.structure.value,
            macro_bias=a.macro.bias.value,
            phase=ctx.state.phase.value,
            timing=a.timing.to_dict() if a.timing else None,
            indicators=a.snapshot.to_dict(),
            volume_policy=dict(a.volume.to_dict(), rel_volume=a.rel_volume),
            rejected_bars=ctx.rejected_bars,
            reasons={
                'regime': list(a.regime.reasons),
                'macro': list(a.macro.reasons),
                'timing': list(a.timing.reasons) if a.timing else [],
                'state': [reason],
            },
        )

    # ── State machine ──

    def _advance(self, ctx: SymbolContext, bar: Bar, a: TickAnalysis, now: int,
                 events: List[DomainEvent]) -> str:
        state = ctx.state
        if isinstance(state, InTrade):
            return self._manage_trade(ctx, state, bar, now, events)
        if isinstance(state, (WaitingForEntry, Extension)):
            return self._resolve_gate(ctx, state, bar, a, now, events)
        if isinstance(state, WaitingForPullback):
            return self._watch_latch(ctx, state, bar, a, now, events)
        if isinstance(state, BiasEstablished):
            return self._scan_for_setup(ctx, state, bar, a, now, events)
        return self._seek_thesis(ctx, bar, a, now, events)

    def _emit(self, ctx: SymbolContext, events: List[DomainEvent], event_type: EventType,
              now: int, data: Dict[str, Any]):
        events.append(DomainEvent(event_type, now, ctx.symbol, data))

    def _thesis_broken(self, bias: Direction, a: TickAnalysis) -> Optional[str]:
        macro_direction = a.macro.bias.direction
        if macro_direction is not None and macro_direction is not bias:
            return f"macro bias flipped to {a.macro.bias.value}"
        return None

    def _seek_thesis(self, ctx, bar, a, now, events) -> str:
        if not a.sufficient:
            ctx.state = WaitingForThesis(INSUFFICIENT_DATA)
            return INSUFFICIENT_DATA

        direction = a.macro.bias.direction
        if direction is None:
            ctx.state = WaitingForThesis("macro bias NEUTRAL")
            return ctx.state.reason

        allowed, reason = regime_allows_direction(a.regime.regime, direction)
        if not allowed:
            ctx.state = WaitingForThesis(reason)
            return reason

        state = BiasEstablished(direction, now)
        ctx.state = state
        logger.info(f"[{ctx.symbol}] Bias established: {direction.value} ({a.regime.regime.value})")
        self._emit(ctx, events, EventType.BIAS_ESTABLISHED, now, {
            'bias': direction.value,
            'regime': a.regime.regime.value,
            'bull_score': a.macro.bull_score,
            'bear_score': a.macro.bear_score,
            'reasons': list(a.macro.reasons),
        })
        return self._scan_for_setup(ctx, state, bar, a, now, events)

    def _scan_for_setup(self, ctx, state: BiasEstablished, bar, a, now, events) -> str:
        broken = self._thesis_broken(state.bias, a)
        if broken is None:
            allowed, veto = regime_allows_direction(a.regime.regime, state.bias)
            broken = None if allowed else veto
        if broken:
            ctx.state = WaitingForThesis(broken)
            logger.info(f"[{ctx.symbol}] Thesis dropped: {broken}")
            return broken

        scan = ctx.setups.evaluate(bar.ts, list(ctx.decision_bars), a.snapshot, state.bias, a.regime)
        if scan.proposal is None:
            return "; ".join(scan.reasons)

        p = scan.proposal
        latch = arm_latch(
            side=p.side, zone=p.zone, trigger_price=p.trigger_price, stop_price=p.stop_price,
            now_ts=now, ttl_ms=self.config.latch_ttl_ms, armed_at_price=bar.close,
            pattern=p.pattern, trigger_description=p.trigger_description,
            stop_reason=p.stop_reason, quality=p.quality,
        )
        ctx.state = WaitingForPullback(state.bias, state.since_ts, latch)
        logger.info(
            f"[{ctx.symbol}] Opportunity armed: {p.pattern} {p.side.value} "
            f"trigger {p.trigger_price:.2f} stop {p.stop_price:.2f}"
        )
        self._emit(ctx, events, EventType.OPPORTUNITY_ARMED, now, {
            'latch': latch.to_dict(),
            'reasons': list(scan.reasons),
        })
        return f"latch armed: {p.pattern}"

    def _watch_latch(self, ctx, state: WaitingForPullback, bar, a, now, events) -> str:
        broken = self._thesis_broken(state.bias, a)
        if broken:
            return self._drop_opportunity(ctx, state, None, broken, now, events, reset=True)

        latch, reason = advance_latch(state.latch, bar.close, a.regime.structure, now)
        if latch.status is LatchStatus.ARMED:
            return reason

        if latch.status is LatchStatus.EXPIRED:
            ctx.state = BiasEstablished(state.bias, state.since_ts)
            logger.info(f"[{ctx.symbol}] Opportunity expired: {reason}")
            self._emit(ctx, events, EventType.OPPORTUNITY_EXPIRED, now,
                       {'latch': latch.to_dict(), 'reason': reason})
            return reason

        if latch.status is LatchStatus.INVALIDATED:
            ctx.state = BiasEstablished(state.bias, state.since_ts)
            logger.info(f"[{ctx.symbol}] Opportunity invalidated: {reason}")
            self._emit(ctx, events, EventType.OPPORTUNITY_INVALIDATED, now,
                       {'latch': latch.to_dict(), 'reason': reason})
            return reason

        gate = fire_gate(open_gate(latch, now, self.config.impulse_window_ms), bar.close)
        entry_state = WaitingForEntry(state.bias, state.since_ts, latch, gate)
        ctx.state = entry_state
        ctx.last_no_entry = None
        logger.info(f"[{ctx.symbol}] Opportunity triggered: {gate.reason}")
        self._emit(ctx, events, EventType.OPPORTUNITY_TRIGGERED, now, {
            'latch': latch.to_dict(),
            'gate': gate.to_dict(),
            'reason': reason,
        })
        return self._resolve_gate(ctx, entry_state, bar, a, now, events)

    def _drop_opportunity(self, ctx, state, play: Optional[Play], reason: str, now: int,
                          events: List[DomainEvent], reset: bool) -> str:
        """Invalidate the held latch/gate (and any armed play)."""
        data: Dict[str, Any] = {'reason': reason, 'latch': state.latch.to_dict()}
        gate = getattr(state, 'gate', None)
        if gate is not None:
            data['gate'] = invalidate_gate(gate, reason).to_dict()
        self._emit(ctx, events, EventType.OPPORTUNITY_INVALIDATED, now, data)
        if play is not None:
            self._cancel_play(ctx, play, reason, now, events)
        ctx.state = WaitingForThesis(reason) if reset else BiasEstablished(state.bias, state.since_ts)
        logger.info(f"[{ctx.symbol}] Opportunity invalidated: {reason}")
        return reason

    def _cancel_play(self, ctx, play: Play, reason: str, now: int, events: List[DomainEvent]):
        play.status = PlayStatus.CANCELLED
        self._emit(ctx, events, EventType.PLAY_CANCELLED, now, {'play': play.to_dict(), 'reason': reason})
        logger.info(f"[{ctx.symbol}] Play {play.id} cancelled: {reason}")

    def _resolve_gate(self, ctx, state, bar, a, now, events) -> str:
        gate = state.gate
        play = state.play if isinstance(state, WaitingForEntry) else None
        close = bar.close

        broken = self._thesis_broken(state.bias, a)
        if broken:
            return self._drop_opportunity(ctx, state, play, broken, now, events, reset=True)

        if stop_crossed(gate.direction, close, gate.stop_price):
            return self._drop_opportunity(
                ctx, state, play, f"close {close:.2f} back through stop {gate.stop_price:.2f}",
                now, events, reset=False)

        if not is_break_impulse_eligible(gate, now):
            expired = expire_gate(gate)
            self._emit(ctx, events, EventType.GATE_EXPIRED, now, {'gate': expired.to_dict()})
            if play is not None:
                self._cancel_play(ctx, play, "entry window elapsed", now, events)
            ctx.state = BiasEstablished(state.bias, state.since_ts)
            return "entry window elapsed"

        if play is not None:
            if now > play.expires_at:
                self._cancel_play(ctx, play, "play expired before entry", now, events)
                ctx.state = BiasEstablished(state.bias, state.since_ts)
                return "play expired before entry"
            if play.entry_zone.contains(close):
                return self._enter(ctx, state, play, close, now, events)
            return f"play armed, waiting for price in {play.entry_zone.low:.2f}-{play.entry_zone.high:.2f}"

        chase = check_chase(gate.direction, gate.trigger_price, close, a.snapshot.atr,
                            self.config.gate.chase_atr_mult)
        if not chase.allowed:
            if not isinstance(state, Extension):
                decision = build_no_entry_decision(now, ctx.symbol, ENTRY_FILTER, chase.reason)
                self._emit(ctx, events, EventType.NO_ENTRY, now, {'decision': decision.to_dict()})
                logger.info(f"[{ctx.symbol}] Entry blocked: {chase.reason}")
            ctx.state = Extension(state.bias, state.since_ts, state.latch, gate)
            return chase.reason

        return self._decide(ctx, state, bar, a, now, events)

    def _decide(self, ctx, state, bar, a, now, events) -> str:
        gate = state.gate
        timing = a.timing or compute_timing_signal(
            list(ctx.decision_bars), state.bias, None, a.snapshot.vwap, a.snapshot.atr,
            self.config.timing)
        candidate = build_candidate(
            ctx.symbol, now, state.latch, gate, bar.close, a.snapshot.atr,
            a.regime, timing, self.config.gate.chase_atr_mult,
        )
        filters = self.entry_filters.check(EntryFilterContext(
            timestamp=now,
            symbol=ctx.symbol,
            direction=state.bias,
            close=bar.close,
            indicators=a.snapshot,
            recent_bars=list(ctx.decision_bars),
        ))
        candidate.warnings.extend(filters.warnings)
        candidate.warnings.extend(volume_warnings(a.volume, a.rel_volume))

        blockers: List[str] = []
        blocker_reasons: List[str] = []
        allowed, veto = regime_allows_direction(a.regime.regime, state.bias)
        if not allowed:
            blockers.append(CHOP if a.regime.regime is Regime.CHOP else GUARDRAIL)
            blocker_reasons.append(veto)

        verification = self._verify(ctx, candidate, a, now)
        decision = build_decision(
            now, ctx.symbol, self.config.play_validity_ms, candidate, verification,
            blockers, blocker_reasons,
        )

        if decision.status is DecisionStatus.ARMED:
            play = decision.play
            self._emit(ctx, events, EventType.PLAY_ARMED, now, {'decision': decision.to_dict()})
            self._emit(ctx, events, EventType.TIMING_COACH, now, {
                'play_id': play.id,
                'direction': play.direction.value,
                'entry_zone': play.entry_zone.to_dict(),
                'timing': timing.to_dict(),
            })
            if play.entry_zone.contains(bar.close):
                return self._enter(ctx, state, play, bar.close, now, events)
            ctx.state = WaitingForEntry(state.bias, state.since_ts, state.latch, gate, play)
            return "play armed"

        key = (gate.armed_ts, decision.status, tuple(decision.blockers))
        if ctx.last_no_entry != key:
            ctx.last_no_entry = key
            self._emit(ctx, events, EventType.NO_ENTRY, now, {'decision': decision.to_dict()})
        ctx.state = WaitingForEntry(state.bias, state.since_ts, state.latch, gate)
        return f"{decision.status.value}: {', '.join(decision.blockers)}"

    def _verify(self, ctx, candidate, a: TickAnalysis, now: int) -> Optional[Verification]:
        if self.verifier is None:
            return None
        request = VerificationRequest(
            symbol=ctx.symbol,
            ts=now,
            candidate=candidate,
            warnings=list(candidate.warnings),
            context={
                'regime': a.regime.to_dict(),
                'macro_bias': a.macro.bias.value,
                'indicators': a.snapshot.to_dict(),
                'volume_policy': a.volume.to_dict(),
            },
        )
        try:
            return self.verifier(request)
        except Exception as e:
            logger.error(f"[{ctx.symbol}] Verifier failed for {candidate.id}: {e}", exc_info=True)
            return None

    def _enter(self, ctx, state, play: Play, close: float, now: int,
               events: List[DomainEvent]) -> str:
        play.status = PlayStatus.ENTERED
        play.entry_price = close
        play.entry_ts = now
        play.in_entry_zone = True
        problem = self.stop_rules.validate_stop(play, close)
        if problem:
            logger.warning(f"[{ctx.symbol}] {problem}")
        ctx.state = InTrade(state.bias, state.since_ts, play)
        logger.info(f"[{ctx.symbol}] Play {play.id} entered {play.direction.value} @ {close:.2f}")
        self._emit(ctx, events, EventType.PLAY_ENTERED, now, {'play': play.to_dict()})
        return f"entered @ {close:.2f}"

    def _manage_trade(self, ctx, state: InTrade, bar, now, events) -> str:
        play = state.play
        rc = self.stop_rules.get_context(play, bar.close, play.entry_price)
        play.in_entry_zone = play.entry_zone.contains(bar.close)

        if rc.stop_hit_on_close:
            play.stop_hit = True
            return self._close_play(ctx, play, "LOSS", "STOP_HIT", rc, now, events)

        if rc.target_hit:
            for label in ("T1", "T2", "T3"):
                if label not in play.targets_hit:
                    play.targets_hit.append(label)
                    self._emit(ctx, events, EventType.TARGET_HIT, now, {
                        'play_id': play.id,
                        'target': label,
                        'close': bar.close,
                        'r_multiple': rc.current_r,
                    })
                if label == rc.target_hit:
                    break
            if rc.target_hit == "T3":
                return self._close_play(ctx, play, "WIN", "TARGET_T3", rc, now, events)

        if rc.stop_threatened and not play.stop_threatened:
            self._emit(ctx, events, EventType.STOP_THREATENED, now, {
                'play_id': play.id,
                'close': bar.close,
                'stop': play.stop,
                'distance_to_stop_dollars': rc.distance_to_stop_dollars,
            })
        play.stop_threatened = rc.stop_threatened
        return f"managing {play.direction.value}: {rc.current_r:+.2f}R"

    def _close_play(self, ctx, play: Play, outcome: str, reason: str, rc, now: int,
                    events: List[DomainEvent]) -> str:
        play.status = PlayStatus.CLOSED
        self._emit(ctx, events, EventType.PLAY_CLOSED, now, {
            'play': play.to_dict(),
            'outcome': outcome,
            'reason': reason,
            'r_multiple': rc.current_r,
            'rules': rc.to_dict(),
        })
        ctx.state = WaitingForThesis(f"play closed: {reason}")
        logger.info(f"[{ctx.symbol}] Play {play.id} closed {outcome} ({reason}, {rc.current_r:+.2f}R)")
        return ctx.state.reason
