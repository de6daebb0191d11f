"""
Opportunity Latch / Resolution Gate

A latch holds a concrete trade idea (zone, trigger, stop) while it waits for
price to confirm it. When a close crosses the trigger the latch fires and a
resolution gate opens: a short, time-boxed window in which entry is allowed,
provided price has not already run too far past the trigger (chase protection).

Lifecycles:
    latch: ARMED -> TRIGGERED | EXPIRED | INVALIDATED
    gate:  ARMED -> TRIGGERED -> EXPIRED | INVALIDATED

Triggers and stops are close-based; wicks through a level do not count.
All functions are pure and take `now_ts` explicitly.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple, Dict, Any

from .models import Direction, Zone
from .structure import Structure

logger = logging.getLogger(__name__)

DEFAULT_CHASE_ATR_MULT = 0.8


class LatchStatus(Enum):
    PENDING = "PENDING"
    ARMED = "ARMED"
    TRIGGERED = "TRIGGERED"
    EXPIRED = "EXPIRED"
    INVALIDATED = "INVALIDATED"


class GateStatus(Enum):
    ARMED = "ARMED"
    TRIGGERED = "TRIGGERED"
    EXPIRED = "EXPIRED"
    INVALIDATED = "INVALIDATED"


class TriggerType(Enum):
    BREAK = "BREAK"
    RECLAIM = "RECLAIM"


@dataclass(frozen=True)
class Trigger:
    type: TriggerType
    price: float
    description: str = ""


@dataclass(frozen=True)
class StopLevel:
    price: float
    reason: str = ""


@dataclass(frozen=True)
class OpportunityLatch:
    status: LatchStatus
    side: Direction
    zone: Zone
    trigger: Trigger
    stop: StopLevel
    armed_at_price: float
    latched_at_ts: int
    expires_at_ts: int
    pattern: str = ""
    quality: float = 0.0

    def __post_init__(self):
        if not self.zone.low < self.zone.high:
            raise ValueError(f"Latch zone low {self.zone.low} must be below high {self.zone.high}")
        if not self.expires_at_ts > self.latched_at_ts:
            raise ValueError("Latch expiry must be after the latch time")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'side': self.side.value,
            'zone': self.zone.to_dict(),
            'trigger': {'type': self.trigger.type.value, 'price': self.trigger.price,
                        'description': self.trigger.description},
            'stop': {'price': self.stop.price, 'reason': self.stop.reason},
            'armed_at_price': self.armed_at_price,
            'latched_at_ts': self.latched_at_ts,
            'expires_at_ts': self.expires_at_ts,
            'pattern': self.pattern,
            'quality': self.quality,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OpportunityLatch':
        trigger = data['trigger']
        stop = data['stop']
        return cls(
            status=LatchStatus(data['status']),
            side=Direction.parse(data['side']),
            zone=Zone.from_value(data['zone']),
            trigger=Trigger(TriggerType(trigger['type']), float(trigger['price']),
                            trigger.get('description', '')),
            stop=StopLevel(float(stop['price']), stop.get('reason', '')),
            armed_at_price=float(data['armed_at_price']),
            latched_at_ts=int(data['latched_at_ts']),
            expires_at_ts=int(data['expires_at_ts']),
            pattern=data.get('pattern', ''),
            quality=float(data.get('quality', 0.0)),
        )


@dataclass(frozen=True)
class ResolutionGate:
    status: GateStatus
    direction: Direction
    trigger_price: float
    stop_price: float
    armed_ts: int
    expiry_ts: int
    reason: str = ""

    @property
    def window_ms(self) -> int:
        return self.expiry_ts - self.armed_ts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'direction': self.direction.value.lower(),
            'trigger_price': self.trigger_price,
            'stop_price': self.stop_price,
            'armed_ts': self.armed_ts,
            'expiry_ts': self.expiry_ts,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResolutionGate':
        return cls(
            status=GateStatus(data['status']),
            direction=Direction.parse(data['direction']),
            trigger_price=float(data['trigger_price']),
            stop_price=float(data['stop_price']),
            armed_ts=int(data['armed_ts']),
            expiry_ts=int(data['expiry_ts']),
            reason=data.get('reason', ''),
        )


@dataclass(frozen=True)
class ChaseCheck:
    allowed: bool
    distance: float
    limit: Optional[float]
    reason: str


# ═══════════════════════════════════════════════════════════════════════════
# PRICE TESTS
# ═══════════════════════════════════════════════════════════════════════════

def trigger_crossed(direction: Direction, close: float, trigger_price: float) -> bool:
    return close > trigger_price if direction is Direction.LONG else close < trigger_price


def stop_crossed(direction: Direction, close: float, stop_price: float) -> bool:
    return close <= stop_price if direction is Direction.LONG else close >= stop_price


# ═══════════════════════════════════════════════════════════════════════════
# LATCH
# ═══════════════════════════════════════════════════════════════════════════

def arm_latch(side: Direction, zone: Zone, trigger_price: float, stop_price: float,
              now_ts: int, ttl_ms: int, armed_at_price: float,
              pattern: str = "", trigger_type: TriggerType = TriggerType.BREAK,
              trigger_description: str = "", stop_reason: str = "pullback_level_buffer",
              quality: float = 0.0) -> OpportunityLatch:
    return OpportunityLatch(
        status=LatchStatus.ARMED,
        side=side,
        zone=zone,
        trigger=Trigger(trigger_type, trigger_price, trigger_description),
        stop=StopLevel(stop_price, stop_reason),
        armed_at_price=armed_at_price,
        latched_at_ts=now_ts,
        expires_at_ts=now_ts + ttl_ms,
        pattern=pattern,
        quality=quality,
    )


def is_latch_expired(latch: OpportunityLatch, now_ts: int) -> bool:
    return now_ts > latch.expires_at_ts


def advance_latch(latch: OpportunityLatch, close: float, structure: Structure,
                  now_ts: int) -> Tuple[OpportunityLatch, str]:
    """
    Move an ARMED latch forward on a new close.

    Priority: expiry, stop breach, contradicting structure, trigger.
    Returns the (possibly unchanged) latch and a reason string.
    """
    if latch.status is not LatchStatus.ARMED:
        return latch, f"latch already {latch.status.value}"

    if is_latch_expired(latch, now_ts):
        return replace(latch, status=LatchStatus.EXPIRED), "latch window elapsed before trigger"

    if stop_crossed(latch.side, close, latch.stop.price):
        return (replace(latch, status=LatchStatus.INVALIDATED),
                f"close {close:.2f} through stop {latch.stop.price:.2f}")

    contradicts = (
        (latch.side is Direction.LONG and structure is Structure.BEARISH)
        or (latch.side is Direction.SHORT and structure is Structure.BULLISH)
    )
    if contradicts:
        return (replace(latch, status=LatchStatus.INVALIDATED),
                f"{structure.value} structure contradicts {latch.side.value} thesis")

    if trigger_crossed(latch.side, close, latch.trigger.price):
        return (replace(latch, status=LatchStatus.TRIGGERED),
                f"close {close:.2f} crossed trigger {latch.trigger.price:.2f}")

    return latch, "waiting for trigger"


# ═══════════════════════════════════════════════════════════════════════════
# GATE
# ═══════════════════════════════════════════════════════════════════════════

def open_gate(latch: OpportunityLatch, now_ts: int, window_ms: int) -> ResolutionGate:
    if window_ms <= 0:
        raise ValueError(f"Gate window must be positive, got {window_ms}")
    return ResolutionGate(
        status=GateStatus.ARMED,
        direction=latch.side,
        trigger_price=latch.trigger.price,
        stop_price=latch.stop.price,
        armed_ts=now_ts,
        expiry_ts=now_ts + window_ms,
        reason=latch.trigger.description or f"{latch.pattern} trigger",
    )


def fire_gate(gate: ResolutionGate, close: float) -> ResolutionGate:
    """ARMED -> TRIGGERED when the close is through the trigger."""
    if gate.status is not GateStatus.ARMED:
        return gate
    if not trigger_crossed(gate.direction, close, gate.trigger_price):
        return gate
    kind = "Breakout" if gate.direction is Direction.LONG else "Breakdown"
    return replace(gate, status=GateStatus.TRIGGERED,
                   reason=f"{kind} trigger fired at {gate.trigger_price:g}")


def expire_gate(gate: ResolutionGate, reason: str = "impulse window elapsed") -> ResolutionGate:
    return replace(gate, status=GateStatus.EXPIRED, reason=reason)


def invalidate_gate(gate: ResolutionGate, reason: str) -> ResolutionGate:
    return replace(gate, status=GateStatus.INVALIDATED, reason=reason)


def is_break_impulse_eligible(gate: Optional[ResolutionGate], now_ts: int,
                              window_ms: Optional[int] = None) -> bool:
    """
    Entry permission after a trigger: gate TRIGGERED and still inside its window.

    Independent of the execution phase: a symbol in EXTENSION keeps its
    permission until the window closes.
    """
    if gate is None or gate.status is not GateStatus.TRIGGERED:
        return False
    if window_ms is None:
        window_ms = gate.window_ms
    return now_ts - gate.armed_ts <= window_ms


def check_chase(direction: Direction, trigger_price: float, close: float,
                atr: Optional[float], k: float = DEFAULT_CHASE_ATR_MULT) -> ChaseCheck:
    """Block entries once the close has run more than k x ATR past the trigger."""
    distance = close - trigger_price if direction is Direction.LONG else trigger_price - close
    if atr is None or atr <= 0:
        return ChaseCheck(True, distance, None, "chase check skipped: ATR unavailable")

    limit = k * atr
    if distance > limit:
        return ChaseCheck(
            False, distance, limit,
            f"chase_limit: close {close:.2f} is {distance:.2f} past trigger "
            f"{trigger_price:.2f} (limit {limit:.2f} = {k} * ATR)",
        )
    return ChaseCheck(True, distance, limit, f"within chase limit ({distance:.2f} <= {limit:.2f})")


def entry_band(gate: ResolutionGate, atr: Optional[float],
               k: float = DEFAULT_CHASE_ATR_MULT) -> Zone:
    """Prices between the trigger and the chase limit, on the trade side."""
    width = k * atr if atr and atr > 0 else abs(gate.stop_price - gate.trigger_price) * 0.25
    width = width if width > 0 else abs(gate.trigger_price) * 0.001 or 0.01
    if gate.direction is Direction.LONG:
        return Zone(gate.trigger_price, gate.trigger_price + width)
    return Zone(gate.trigger_price - width, gate.trigger_price)
