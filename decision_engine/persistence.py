"""
State Snapshots

Versioned checkpoint of per-symbol execution state, in the shape the external
state store persists:

    {
        "version": 1,
        "instanceId": "...",
        "savedAt": 1700000000000,
        "activePlay": {...} | None,
        "governor": {...},          # opaque, round-tripped untouched
        "symbols": {"SPY": {"phase": ..., "bias": ..., "latch": ..., ...}}
    }

Only version 1 is understood; anything else loads as "no prior state".
Plays written by the older camelCase writer go through adapt_legacy_play()
on the way in and are never stored in that shape again.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .decision import grade_for_score
from .execution import (
    ExecutionState, Phase, WaitingForThesis, BiasEstablished, WaitingForPullback,
    WaitingForEntry, Extension, InTrade, describe, play_of,
)
from .latch import OpportunityLatch, ResolutionGate
from .models import Direction, Play, PlayStatus

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

_LEGACY_PLAY_KEYS = {
    'entryZone': 'entry_zone',
    'stopHit': 'stop_hit',
    'stopThreatened': 'stop_threatened',
    'inEntryZone': 'in_entry_zone',
    'followThroughProb': 'follow_through_prob',
    'armedTimestamp': 'armed_ts',
    'expiresAt': 'expires_at',
    'triggerPrice': 'trigger_price',
    'entryPrice': 'entry_price',
    'entryTimestamp': 'entry_ts',
    'targetsHit': 'targets_hit',
}

_LEGACY_ACTIONS = {
    'GO_ALL_IN': 'approve-full',
    'SCALP': 'approve-scout',
    'WAIT': 'wait',
    'PASS': 'pass',
}


@dataclass
class SymbolSnapshot:
    symbol: str
    state: ExecutionState
    last_ts: Optional[int] = None


@dataclass
class LoadedSnapshot:
    instance_id: str
    saved_at: int
    governor: Dict[str, Any] = field(default_factory=dict)
    symbols: Dict[str, SymbolSnapshot] = field(default_factory=dict)


def adapt_legacy_play(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a camelCase play payload to the canonical snake_case shape."""
    adapted = {}
    for key, value in payload.items():
        adapted[_LEGACY_PLAY_KEYS.get(key, key)] = value

    action = adapted.get('action')
    if action in _LEGACY_ACTIONS:
        adapted['action'] = _LEGACY_ACTIONS[action]
    if 'grade' not in adapted and 'score' in adapted:
        adapted['grade'] = grade_for_score(float(adapted['score']))
    if 'confidence' not in adapted and 'score' in adapted:
        adapted['confidence'] = adapted['score']
    adapted.setdefault('status', PlayStatus.ARMED.value)
    return adapted


def _is_legacy_play(payload: Dict[str, Any]) -> bool:
    return any(key in payload for key in _LEGACY_PLAY_KEYS)


def play_from_payload(payload: Dict[str, Any]) -> Play:
    if _is_legacy_play(payload):
        payload = adapt_legacy_play(payload)
    return Play.from_dict(payload)


def state_from_dict(data: Dict[str, Any]) -> ExecutionState:
    if not isinstance(data, dict):
        raise ValueError(f"Symbol state must be a mapping, got {type(data).__name__}")
    phase = Phase(data.get('phase', Phase.WAITING_FOR_THESIS.value))
    if phase is Phase.WAITING_FOR_THESIS:
        return WaitingForThesis(data.get('reason') or "restored")

    bias = Direction.parse(data['bias'])
    since_ts = int(data.get('since_ts') or 0)
    if phase is Phase.BIAS_ESTABLISHED:
        return BiasEstablished(bias, since_ts)
    if phase is Phase.IN_TRADE:
        return InTrade(bias, since_ts, play_from_payload(data['play']))

    latch = OpportunityLatch.from_dict(data['latch'])
    if phase is Phase.WAITING_FOR_PULLBACK:
        return WaitingForPullback(bias, since_ts, latch)

    gate = ResolutionGate.from_dict(data['gate'])
    if phase is Phase.EXTENSION:
        return Extension(bias, since_ts, latch, gate)
    play = play_from_payload(data['play']) if data.get('play') else None
    return WaitingForEntry(bias, since_ts, latch, gate, play)


def build_snapshot(instance_id: str, saved_at: int, states: Dict[str, ExecutionState],
                   last_ts: Optional[Dict[str, Optional[int]]] = None,
                   governor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    last_ts = last_ts or {}
    symbols = {}
    active_play = None
    for symbol in sorted(states):
        state = states[symbol]
        entry = describe(state)
        entry['last_ts'] = last_ts.get(symbol)
        symbols[symbol] = entry
        if active_play is None and isinstance(state, InTrade):
            active_play = play_of(state).to_dict()

    return {
        'version': SNAPSHOT_VERSION,
        'instanceId': instance_id,
        'savedAt': saved_at,
        'activePlay': active_play,
        'governor': dict(governor or {}),
        'symbols': symbols,
    }


def load_snapshot(payload: Optional[Dict[str, Any]]) -> Optional[LoadedSnapshot]:
    """Parse a snapshot; unsupported or malformed payloads load as None."""
    if not isinstance(payload, dict):
        return None
    version = payload.get('version')
    if version != SNAPSHOT_VERSION:
        logger.warning(f"Unsupported state version: {version}, ignoring")
        return None

    try:
        loaded = LoadedSnapshot(
            instance_id=str(payload.get('instanceId', 'default')),
            saved_at=int(payload.get('savedAt') or 0),
            governor=dict(payload.get('governor') or {}),
        )
        symbols = payload.get('symbols') or {}
        if not isinstance(symbols, dict):
            raise ValueError(f"symbols must be a mapping, got {type(symbols).__name__}")
        for symbol, entry in symbols.items():
            state = state_from_dict(entry)
            loaded.symbols[symbol] = SymbolSnapshot(
                symbol=symbol,
                state=state,
                last_ts=entry.get('last_ts'),
            )
        _restore_bare_active_play(payload.get('activePlay'), loaded)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Malformed state snapshot ignored: {e}")
        return None

    logger.info(f"Loaded snapshot v{version} for {len(loaded.symbols)} symbol(s)")
    return loaded


def _restore_bare_active_play(payload: Optional[Dict[str, Any]], loaded: LoadedSnapshot):
    """Older writers stored only activePlay; an entered play resumes as InTrade."""
    if not payload:
        return
    if not isinstance(payload, dict):
        raise ValueError(f"activePlay must be a mapping, got {type(payload).__name__}")
    play = play_from_payload(payload)
    if play.symbol in loaded.symbols:
        return
    if play.status is not PlayStatus.ENTERED:
        logger.info(f"[{play.symbol}] Snapshot play {play.id} was never entered; not resumed")
        return
    loaded.symbols[play.symbol] = SymbolSnapshot(
        symbol=play.symbol,
        state=InTrade(play.direction, play.entry_ts or play.armed_ts, play),
    )
