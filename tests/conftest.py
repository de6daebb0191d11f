"""
Shared fixtures for the decision engine tests
"""

import pytest

from decision_engine.config import EngineConfig
from decision_engine.models import Bar, Direction, Play, PlayMode, PlayStatus, Targets, Zone

# 2023-11-14 09:30 ET, aligned to the 15m context bucket
START_TS = 1_699_972_200_000
FIVE_MIN = 300_000
ONE_MIN = 60_000

# +1 +1 +1 -0.6 -0.6: higher highs and higher lows every five bars
TREND_PATTERN = [1.0, 1.0, 1.0, -0.6, -0.6]


def bar_ts(index: int, interval: int = FIVE_MIN, start: int = START_TS) -> int:
    """Close time of the index-th bar."""
    return start + (index + 1) * interval - 1


def make_trend_bars(n: int, start_price: float = 100.0, direction: int = 1,
                    start_index: int = 0):
    """Zigzag trend: three impulse bars, two pullback bars, repeated."""
    bars = []
    prev = start_price
    for i in range(n):
        move = TREND_PATTERN[(start_index + i) % len(TREND_PATTERN)] * direction
        close = prev + move
        if move > 0:
            high, low = close + 0.2, prev - 0.1
        else:
            high, low = prev + 0.1, close - 0.2
        bars.append(Bar(bar_ts(start_index + i), prev, high, low, close, 1000.0))
        prev = close
    return bars


def make_flat_bars(n: int, price: float = 100.0, start_index: int = 0):
    """Range-bound bars with a fixed 1.0 range and unchanged closes."""
    return [
        Bar(bar_ts(start_index + i), price, price + 0.5, price - 0.5, price, 1000.0)
        for i in range(n)
    ]


def make_play(direction: Direction = Direction.LONG, status: PlayStatus = PlayStatus.ENTERED,
              symbol: str = "SPY") -> Play:
    if direction is Direction.LONG:
        zone, stop, targets, entry = Zone(100.0, 100.5), 99.0, Targets(101.0, 102.0, 103.0), 100.2
    else:
        zone, stop, targets, entry = Zone(99.5, 100.0), 101.0, Targets(99.0, 98.0, 97.0), 99.8
    return Play(
        id=f"setup_{START_TS}_pullback_continuation",
        symbol=symbol,
        direction=direction,
        score=72,
        grade="A",
        entry_zone=zone,
        stop=stop,
        targets=targets,
        mode=PlayMode.FULL,
        confidence=72,
        armed_ts=START_TS,
        expires_at=START_TS + 30 * ONE_MIN,
        trigger_price=zone.high if direction is Direction.LONG else zone.low,
        status=status,
        entry_price=entry if status is PlayStatus.ENTERED else None,
        entry_ts=START_TS if status is PlayStatus.ENTERED else None,
    )


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def uptrend_bars():
    return make_trend_bars(60)


@pytest.fixture
def downtrend_bars():
    return make_trend_bars(60, start_price=130.0, direction=-1)


@pytest.fixture
def flat_bars():
    return make_flat_bars(12)
