"""
Tests for Opportunity Latch and Resolution Gate
"""

import pytest

from decision_engine.execution import Extension, entry_permission
from decision_engine.latch import (
    GateStatus, LatchStatus, OpportunityLatch, ResolutionGate, advance_latch, arm_latch,
    check_chase, entry_band, expire_gate, fire_gate, invalidate_gate,
    is_break_impulse_eligible, open_gate,
)
from decision_engine.models import Direction, Zone
from decision_engine.structure import Structure

from conftest import START_TS, FIVE_MIN

TTL = 9 * FIVE_MIN
WINDOW = 2 * FIVE_MIN


@pytest.fixture
def long_latch():
    return arm_latch(Direction.LONG, Zone(99.5, 100.5), trigger_price=101.0, stop_price=99.0,
                     now_ts=START_TS, ttl_ms=TTL, armed_at_price=100.2,
                     pattern="PULLBACK_CONTINUATION", trigger_description="break of reclaim bar high",
                     quality=75)


@pytest.fixture
def short_latch():
    return arm_latch(Direction.SHORT, Zone(99.5, 100.5), trigger_price=99.0, stop_price=101.0,
                     now_ts=START_TS, ttl_ms=TTL, armed_at_price=99.8, pattern="BREAK_RETEST")


class TestLatch:
    """Test the latch lifecycle"""

    def test_armed(self, long_latch):
        """Test a new latch is ARMED with its expiry"""
        assert long_latch.status is LatchStatus.ARMED
        assert long_latch.expires_at_ts == START_TS + TTL

    def test_invalid_zone(self):
        """Test an inverted zone is rejected"""
        with pytest.raises(ValueError):
            arm_latch(Direction.LONG, Zone(101.0, 100.0), 101.5, 99.0, START_TS, TTL, 100.0)

    def test_invalid_expiry(self):
        """Test a non-positive TTL is rejected"""
        with pytest.raises(ValueError):
            arm_latch(Direction.LONG, Zone(99.0, 100.0), 101.0, 98.0, START_TS, 0, 100.0)

    def test_waits_below_trigger(self, long_latch):
        """Test closes short of the trigger leave the latch armed"""
        latch, reason = advance_latch(long_latch, 100.8, Structure.MIXED, START_TS + FIVE_MIN)

        assert latch.status is LatchStatus.ARMED
        assert reason == "waiting for trigger"

    def test_wick_does_not_trigger(self, long_latch):
        """Test a close exactly at the trigger does not fire"""
        latch, _ = advance_latch(long_latch, 101.0, Structure.MIXED, START_TS + FIVE_MIN)
        assert latch.status is LatchStatus.ARMED

    def test_trigger_long(self, long_latch):
        """Test a close above the trigger fires a LONG latch"""
        latch, reason = advance_latch(long_latch, 101.2, Structure.BULLISH, START_TS + FIVE_MIN)

        assert latch.status is LatchStatus.TRIGGERED
        assert "crossed trigger" in reason

    def test_trigger_short(self, short_latch):
        """Test a close below the trigger fires a SHORT latch"""
        latch, _ = advance_latch(short_latch, 98.8, Structure.MIXED, START_TS + FIVE_MIN)
        assert latch.status is LatchStatus.TRIGGERED

    def test_stop_invalidates(self, long_latch):
        """Test a close through the stop invalidates"""
        latch, reason = advance_latch(long_latch, 98.9, Structure.MIXED, START_TS + FIVE_MIN)

        assert latch.status is LatchStatus.INVALIDATED
        assert "through stop" in reason

    def test_structure_invalidates(self, long_latch):
        """Test opposing structure invalidates before the trigger is checked"""
        latch, reason = advance_latch(long_latch, 101.2, Structure.BEARISH, START_TS + FIVE_MIN)

        assert latch.status is LatchStatus.INVALIDATED
        assert "contradicts" in reason

    def test_expiry_first(self, long_latch):
        """Test expiry wins over a trigger on the same bar"""
        latch, _ = advance_latch(long_latch, 101.2, Structure.BULLISH, START_TS + TTL + 1)
        assert latch.status is LatchStatus.EXPIRED

    def test_expiry_boundary(self, long_latch):
        """Test the latch is still live exactly at its expiry"""
        latch, _ = advance_latch(long_latch, 101.2, Structure.BULLISH, START_TS + TTL)
        assert latch.status is LatchStatus.TRIGGERED

    def test_terminal_latch_unchanged(self, long_latch):
        """Test a fired latch does not move again"""
        fired, _ = advance_latch(long_latch, 101.2, Structure.MIXED, START_TS + FIVE_MIN)
        again, reason = advance_latch(fired, 98.0, Structure.MIXED, START_TS + 2 * FIVE_MIN)

        assert again is fired
        assert "already" in reason

    def test_dict_round_trip(self, long_latch):
        """Test latches survive serialization"""
        assert OpportunityLatch.from_dict(long_latch.to_dict()) == long_latch


class TestGate:
    """Test the resolution gate"""

    def test_fire_long(self, long_latch):
        """Test the gate fires with a breakout reason"""
        gate = fire_gate(open_gate(long_latch, START_TS, WINDOW), 101.2)

        assert gate.status is GateStatus.TRIGGERED
        assert gate.reason == "Breakout trigger fired at 101"

    def test_fire_short(self, short_latch):
        """Test a SHORT gate fires with a breakdown reason"""
        gate = fire_gate(open_gate(short_latch, START_TS, WINDOW), 98.5)
        assert gate.reason == "Breakdown trigger fired at 99"

    def test_no_fire_without_cross(self, long_latch):
        """Test the gate stays ARMED until the close crosses"""
        gate = fire_gate(open_gate(long_latch, START_TS, WINDOW), 100.9)
        assert gate.status is GateStatus.ARMED

    def test_window_must_be_positive(self, long_latch):
        """Test a zero window is rejected"""
        with pytest.raises(ValueError):
            open_gate(long_latch, START_TS, 0)

    def test_eligibility_window(self, long_latch):
        """Test entry permission holds through the window and closes after"""
        gate = fire_gate(open_gate(long_latch, START_TS, WINDOW), 101.2)

        assert is_break_impulse_eligible(gate, START_TS)
        assert is_break_impulse_eligible(gate, START_TS + WINDOW)
        assert not is_break_impulse_eligible(gate, START_TS + WINDOW + 1)

    def test_eligibility_five_minute_window(self, long_latch):
        """Test a fired 5m window grants entry one minute in but not six minutes in"""
        window = 5 * 60_000
        gate = fire_gate(open_gate(long_latch, START_TS, window), 101.2)
        extension = Extension(Direction.LONG, START_TS, long_latch, gate)

        assert is_break_impulse_eligible(gate, START_TS + 60_000)
        assert not is_break_impulse_eligible(gate, START_TS + 6 * 60_000)
        assert entry_permission(extension, START_TS + 60_000)
        assert not entry_permission(extension, START_TS + 6 * 60_000)

    def test_eligibility_requires_trigger(self, long_latch):
        """Test ARMED, expired and invalidated gates grant nothing"""
        armed = open_gate(long_latch, START_TS, WINDOW)
        fired = fire_gate(armed, 101.2)

        assert not is_break_impulse_eligible(None, START_TS)
        assert not is_break_impulse_eligible(armed, START_TS)
        assert not is_break_impulse_eligible(expire_gate(fired), START_TS)
        assert not is_break_impulse_eligible(invalidate_gate(fired, "bias flipped"), START_TS)

    def test_dict_lowercase_direction(self, long_latch):
        """Test gate direction serializes in lower case and parses back"""
        gate = fire_gate(open_gate(long_latch, START_TS, WINDOW), 101.2)
        data = gate.to_dict()

        assert data['direction'] == "long"
        assert ResolutionGate.from_dict(data) == gate


class TestChase:
    """Test chase protection"""

    def test_within_limit(self):
        """Test a close within k x ATR of the trigger is allowed"""
        check = check_chase(Direction.LONG, 101.0, 101.5, atr=1.0, k=0.8)

        assert check.allowed
        assert check.limit == pytest.approx(0.8)

    def test_blocked(self):
        """Test a close beyond k x ATR is blocked with a chase_limit reason"""
        check = check_chase(Direction.LONG, 101.0, 102.0, atr=1.0, k=0.8)

        assert not check.allowed
        assert check.reason.startswith("chase_limit")

    def test_short_distance(self):
        """Test SHORT distance is measured below the trigger"""
        assert not check_chase(Direction.SHORT, 99.0, 98.0, atr=1.0).allowed
        assert check_chase(Direction.SHORT, 99.0, 99.5, atr=1.0).allowed

    def test_short_literal_levels(self):
        """Test SHORT trigger 693 with ATR 1 blocks a 690.5 close and allows 692.5"""
        far = check_chase(Direction.SHORT, 693.0, 690.5, atr=1.0, k=0.8)
        near = check_chase(Direction.SHORT, 693.0, 692.5, atr=1.0, k=0.8)

        assert not far.allowed
        assert far.distance == pytest.approx(2.5)
        assert far.reason.startswith("chase_limit")
        assert near.allowed
        assert near.distance == pytest.approx(0.5)

    def test_long_literal_levels(self):
        """Test LONG trigger 697 with ATR 1 allows a 697.5 close and blocks 698.5"""
        near = check_chase(Direction.LONG, 697.0, 697.5, atr=1.0, k=0.8)
        far = check_chase(Direction.LONG, 697.0, 698.5, atr=1.0, k=0.8)

        assert near.allowed
        assert near.distance == pytest.approx(0.5)
        assert not far.allowed
        assert far.distance == pytest.approx(1.5)

    def test_missing_atr(self):
        """Test the check is skipped without ATR"""
        check = check_chase(Direction.LONG, 101.0, 110.0, atr=None)

        assert check.allowed
        assert check.limit is None

    def test_entry_band(self, long_latch, short_latch):
        """Test the entry band spans trigger to trigger + k x ATR on the trade side"""
        long_gate = open_gate(long_latch, START_TS, WINDOW)
        short_gate = open_gate(short_latch, START_TS, WINDOW)

        band = entry_band(long_gate, 1.0, 0.8)
        assert band.low == 101.0
        assert band.high == pytest.approx(101.8)
        band = entry_band(short_gate, 1.0, 0.8)
        assert band.low == pytest.approx(98.2)
        assert band.high == 99.0


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
