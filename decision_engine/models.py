"""
Decision Engine Data Model

Bars, zones, setup candidates, plays, decisions and domain events shared by
every stage of the pipeline. All timestamps are epoch milliseconds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


# ═══════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════

class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    @property
    def opposite(self) -> 'Direction':
        return Direction.SHORT if self is Direction.LONG else Direction.LONG

    @classmethod
    def parse(cls, value) -> 'Direction':
        """Accept enum members and case-insensitive strings ("long", "SHORT")."""
        if isinstance(value, Direction):
            return value
        return cls(str(value).upper())


class VerificationAction(Enum):
    APPROVE_FULL = "approve-full"
    APPROVE_SCOUT = "approve-scout"
    WAIT = "wait"
    PASS = "pass"

    @property
    def approves(self) -> bool:
        return self in (VerificationAction.APPROVE_FULL, VerificationAction.APPROVE_SCOUT)


class DecisionStatus(Enum):
    NO_SETUP = "NO_SETUP"
    BLOCKED = "BLOCKED"
    LLM_PASS = "LLM_PASS"
    ARMED = "ARMED"


class PlayMode(Enum):
    FULL = "FULL"
    SCOUT = "SCOUT"


class PlayStatus(Enum):
    ARMED = "ARMED"
    ENTERED = "ENTERED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class EventType(Enum):
    BIAS_ESTABLISHED = "BIAS_ESTABLISHED"
    OPPORTUNITY_ARMED = "OPPORTUNITY_ARMED"
    OPPORTUNITY_TRIGGERED = "OPPORTUNITY_TRIGGERED"
    OPPORTUNITY_EXPIRED = "OPPORTUNITY_EXPIRED"
    OPPORTUNITY_INVALIDATED = "OPPORTUNITY_INVALIDATED"
    GATE_EXPIRED = "GATE_EXPIRED"
    NO_ENTRY = "NO_ENTRY"
    PLAY_ARMED = "PLAY_ARMED"
    TIMING_COACH = "TIMING_COACH"
    PLAY_ENTERED = "PLAY_ENTERED"
    PLAY_CANCELLED = "PLAY_CANCELLED"
    STOP_THREATENED = "STOP_THREATENED"
    TARGET_HIT = "TARGET_HIT"
    PLAY_CLOSED = "PLAY_CLOSED"


# ═══════════════════════════════════════════════════════════════════════════
# MARKET DATA
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Bar:
    """OHLCV bar; ts is the bar close time."""
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0

    def is_well_formed(self) -> bool:
        return (self.high >= max(self.open, self.close)
                and self.low <= min(self.open, self.close)
                and self.volume >= 0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bar':
        ts = data['ts'] if 'ts' in data else data['time']
        return cls(
            ts=int(ts),
            open=float(data['open']),
            high=float(data['high']),
            low=float(data['low']),
            close=float(data['close']),
            volume=float(data.get('volume', 0.0) or 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ts': self.ts, 'open': self.open, 'high': self.high,
            'low': self.low, 'close': self.close, 'volume': self.volume,
        }


@dataclass(frozen=True)
class Zone:
    """Price band with low < high."""
    low: float
    high: float

    @property
    def mid(self) -> float:
        return (self.low + self.high) / 2.0

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high

    def to_dict(self) -> Dict[str, float]:
        return {'low': self.low, 'high': self.high}

    @classmethod
    def from_value(cls, value) -> 'Zone':
        """Build from {'low', 'high'} or a [low, high] pair."""
        if isinstance(value, Zone):
            return value
        if isinstance(value, dict):
            return cls(float(value['low']), float(value['high']))
        low, high = value
        return cls(float(low), float(high))


@dataclass(frozen=True)
class Targets:
    t1: float
    t2: float
    t3: float

    def as_list(self) -> List[float]:
        return [self.t1, self.t2, self.t3]

    def to_dict(self) -> Dict[str, float]:
        return {'t1': self.t1, 't2': self.t2, 't3': self.t3}

    @classmethod
    def from_value(cls, value) -> 'Targets':
        if isinstance(value, Targets):
            return value
        if isinstance(value, dict):
            return cls(float(value['t1']), float(value['t2']), float(value['t3']))
        t1, t2, t3 = value
        return cls(float(t1), float(t2), float(t3))

    @classmethod
    def from_r(cls, entry: float, stop: float, direction: Direction) -> 'Targets':
        """Targets at 1R, 2R and 3R from the entry in the trade direction."""
        risk = abs(entry - stop)
        sign = direction.sign
        return cls(entry + sign * risk, entry + sign * 2 * risk, entry + sign * 3 * risk)


# ═══════════════════════════════════════════════════════════════════════════
# CANDIDATES / VERIFICATION
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CandidateScore:
    alignment: float
    structure: float
    quality: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return {'alignment': self.alignment, 'structure': self.structure,
                'quality': self.quality, 'total': self.total}


@dataclass
class SetupCandidate:
    """A concrete, scored trade idea awaiting verification."""
    id: str
    ts: int
    symbol: str
    direction: Direction
    pattern: str
    trigger_price: float
    entry_zone: Zone
    stop: float
    targets: Targets
    score: CandidateScore
    rationale: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ts': self.ts,
            'symbol': self.symbol,
            'direction': self.direction.value,
            'pattern': self.pattern,
            'trigger_price': self.trigger_price,
            'entry_zone': self.entry_zone.to_dict(),
            'stop': self.stop,
            'targets': self.targets.to_dict(),
            'score': self.score.to_dict(),
            'rationale': list(self.rationale),
            'warnings': list(self.warnings),
        }


@dataclass(frozen=True)
class Verification:
    """Result returned by the external verification oracle."""
    action: VerificationAction
    probability: Optional[float] = None
    legitimacy: Optional[float] = None
    follow_through_prob: Optional[float] = None
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'probability': self.probability,
            'legitimacy': self.legitimacy,
            'follow_through_prob': self.follow_through_prob,
            'reasoning': self.reasoning,
        }


@dataclass(frozen=True)
class VerificationRequest:
    """Payload handed to the verifier callable."""
    symbol: str
    ts: int
    candidate: SetupCandidate
    warnings: List[str]
    context: Dict[str, Any] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════
# PLAYS / DECISIONS / EVENTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Play:
    """Armed trade plan. Flags are mutated while the trade is managed."""
    id: str
    symbol: str
    direction: Direction
    score: float
    grade: str
    entry_zone: Zone
    stop: float
    targets: Targets
    mode: PlayMode
    confidence: float
    armed_ts: int
    expires_at: int
    trigger_price: Optional[float] = None
    legitimacy: Optional[float] = None
    follow_through_prob: Optional[float] = None
    action: Optional[str] = None
    status: PlayStatus = PlayStatus.ARMED
    in_entry_zone: bool = False
    stop_hit: bool = False
    stop_threatened: bool = False
    entry_price: Optional[float] = None
    entry_ts: Optional[int] = None
    targets_hit: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'direction': self.direction.value,
            'score': self.score,
            'grade': self.grade,
            'entry_zone': self.entry_zone.to_dict(),
            'stop': self.stop,
            'targets': self.targets.to_dict(),
            'mode': self.mode.value,
            'confidence': self.confidence,
            'armed_ts': self.armed_ts,
            'expires_at': self.expires_at,
            'trigger_price': self.trigger_price,
            'legitimacy': self.legitimacy,
            'follow_through_prob': self.follow_through_prob,
            'action': self.action,
            'status': self.status.value,
            'in_entry_zone': self.in_entry_zone,
            'stop_hit': self.stop_hit,
            'stop_threatened': self.stop_threatened,
            'entry_price': self.entry_price,
            'entry_ts': self.entry_ts,
            'targets_hit': list(self.targets_hit),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Play':
        """Canonical (snake_case) payload only; see persistence.adapt_legacy_play."""
        return cls(
            id=str(data['id']),
            symbol=str(data['symbol']),
            direction=Direction.parse(data['direction']),
            score=float(data['score']),
            grade=str(data['grade']),
            entry_zone=Zone.from_value(data['entry_zone']),
            stop=float(data['stop']),
            targets=Targets.from_value(data['targets']),
            mode=PlayMode(data['mode']),
            confidence=float(data['confidence']),
            armed_ts=int(data['armed_ts']),
            expires_at=int(data['expires_at']),
            trigger_price=data.get('trigger_price'),
            legitimacy=data.get('legitimacy'),
            follow_through_prob=data.get('follow_through_prob'),
            action=data.get('action'),
            status=PlayStatus(data.get('status', PlayStatus.ARMED.value)),
            in_entry_zone=bool(data.get('in_entry_zone', False)),
            stop_hit=bool(data.get('stop_hit', False)),
            stop_threatened=bool(data.get('stop_threatened', False)),
            entry_price=data.get('entry_price'),
            entry_ts=data.get('entry_ts'),
            targets_hit=list(data.get('targets_hit', [])),
        )


@dataclass
class AuthoritativeDecision:
    decision_id: str
    timestamp: int
    symbol: str
    status: DecisionStatus
    blockers: List[str] = field(default_factory=list)
    blocker_reasons: List[str] = field(default_factory=list)
    candidate: Optional[SetupCandidate] = None
    verification: Optional[Verification] = None
    play: Optional[Play] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision_id': self.decision_id,
            'timestamp': self.timestamp,
            'symbol': self.symbol,
            'status': self.status.value,
            'blockers': list(self.blockers),
            'blocker_reasons': list(self.blocker_reasons),
            'candidate': self.candidate.to_dict() if self.candidate else None,
            'verification': self.verification.to_dict() if self.verification else None,
            'play': self.play.to_dict() if self.play else None,
        }


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    timestamp: int
    symbol: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'timestamp': self.timestamp,
            'symbol': self.symbol,
            'data': self.data,
        }
