"""
Execution State

One variant per phase, each carrying only the fields valid in that phase:

    WaitingForThesis                      no directional bias
    BiasEstablished     bias              scanning for a setup
    WaitingForPullback  bias, latch       latch ARMED, waiting for its trigger
    WaitingForEntry     bias, latch, gate gate TRIGGERED, entry allowed (play optional)
    Extension           bias, latch, gate gate TRIGGERED but price chased past the limit
    InTrade             bias, play        play ENTERED and managed on closes

The orchestrator holds exactly one of these per symbol and replaces it on
every transition.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union, Dict, Any

from .latch import OpportunityLatch, ResolutionGate, is_break_impulse_eligible
from .models import Direction, Play


class Phase(Enum):
    WAITING_FOR_THESIS = "WAITING_FOR_THESIS"
    BIAS_ESTABLISHED = "BIAS_ESTABLISHED"
    WAITING_FOR_PULLBACK = "WAITING_FOR_PULLBACK"
    WAITING_FOR_ENTRY = "WAITING_FOR_ENTRY"
    EXTENSION = "EXTENSION"
    IN_TRADE = "IN_TRADE"


@dataclass(frozen=True)
class WaitingForThesis:
    reason: str = ""
    phase = Phase.WAITING_FOR_THESIS


@dataclass(frozen=True)
class BiasEstablished:
    bias: Direction
    since_ts: int
    phase = Phase.BIAS_ESTABLISHED


@dataclass(frozen=True)
class WaitingForPullback:
    bias: Direction
    since_ts: int
    latch: OpportunityLatch
    phase = Phase.WAITING_FOR_PULLBACK


@dataclass(frozen=True)
class WaitingForEntry:
    bias: Direction
    since_ts: int
    latch: OpportunityLatch
    gate: ResolutionGate
    play: Optional[Play] = None
    phase = Phase.WAITING_FOR_ENTRY


@dataclass(frozen=True)
class Extension:
    bias: Direction
    since_ts: int
    latch: OpportunityLatch
    gate: ResolutionGate
    phase = Phase.EXTENSION


@dataclass(frozen=True)
class InTrade:
    bias: Direction
    since_ts: int
    play: Play
    phase = Phase.IN_TRADE


ExecutionState = Union[
    WaitingForThesis, BiasEstablished, WaitingForPullback,
    WaitingForEntry, Extension, InTrade,
]


def gate_of(state: ExecutionState) -> Optional[ResolutionGate]:
    if isinstance(state, (WaitingForEntry, Extension)):
        return state.gate
    return None


def latch_of(state: ExecutionState) -> Optional[OpportunityLatch]:
    if isinstance(state, (WaitingForPullback, WaitingForEntry, Extension)):
        return state.latch
    return None


def play_of(state: ExecutionState) -> Optional[Play]:
    if isinstance(state, (WaitingForEntry, InTrade)):
        return state.play
    return None


def bias_of(state: ExecutionState) -> Optional[Direction]:
    return getattr(state, 'bias', None)


def entry_permission(state: ExecutionState, now_ts: int) -> bool:
    """Break-impulse eligibility for whatever gate the state holds."""
    return is_break_impulse_eligible(gate_of(state), now_ts)


def describe(state: ExecutionState) -> Dict[str, Any]:
    """Flat, JSON-friendly view for diagnostics and snapshots."""
    bias = bias_of(state)
    latch = latch_of(state)
    gate = gate_of(state)
    play = play_of(state)
    return {
        'phase': state.phase.value,
        'bias': bias.value if bias else None,
        'since_ts': getattr(state, 'since_ts', None),
        'reason': getattr(state, 'reason', None),
        'latch': latch.to_dict() if latch else None,
        'gate': gate.to_dict() if gate else None,
        'play': play.to_dict() if play else None,
    }
