"""
Tests for Setup Detection and Candidate Scoring
"""

import pytest

from decision_engine.indicators import IndicatorSnapshot
from decision_engine.latch import arm_latch, fire_gate, open_gate
from decision_engine.models import Bar, Direction, Zone
from decision_engine.regime import Regime, RegimeResult
from decision_engine.setups import (
    BreakRetestDetector, PullbackContinuationDetector, SetupEngine, build_candidate,
)
from decision_engine.structure import Structure
from decision_engine.timing import TimingSignal, TimingState

from conftest import START_TS, FIVE_MIN, bar_ts


@pytest.fixture
def pullback_bars():
    """Dip below EMA9 and a bullish reclaim on the last bar"""
    opens = [101.2, 101.0, 100.5, 100.0, 99.6, 99.4, 99.5, 99.9]
    closes = [101.0, 100.5, 100.0, 99.6, 99.4, 99.5, 99.8, 100.6]
    return [
        Bar(bar_ts(i), o, max(o, c) + 0.2, min(o, c) - 0.2, c, 1000.0)
        for i, (o, c) in enumerate(zip(opens, closes))
    ]


@pytest.fixture
def break_retest_bars():
    """Range under 100.5, break, retest of the level, close back above"""
    bars = [Bar(bar_ts(i), 100.0, 100.5, 99.5, 100.0, 1000.0) for i in range(21)]
    bars.append(Bar(bar_ts(21), 100.4, 101.4, 100.3, 101.2, 1000.0))
    bars.append(Bar(bar_ts(22), 101.2, 101.3, 100.6, 100.9, 1000.0))
    bars.append(Bar(bar_ts(23), 100.9, 101.5, 100.8, 101.3, 1000.0))
    return bars


@pytest.fixture
def trend_up_regime():
    return RegimeResult(Regime.TREND_UP, bull_score=3, structure=Structure.BULLISH)


class TestPullbackContinuation:
    """Test the EMA9 reclaim detector"""

    def test_long_reclaim(self, pullback_bars):
        """Test a reclaim after a dip proposes a LONG latch"""
        indicators = IndicatorSnapshot(close=100.6, ema9=100.2, atr=1.0)
        proposal = PullbackContinuationDetector().update(pullback_bars, indicators, Direction.LONG)

        assert proposal is not None
        assert proposal.pattern == "PULLBACK_CONTINUATION"
        assert proposal.trigger_price == pytest.approx(100.8)
        assert proposal.zone.low == pytest.approx(99.2)
        assert proposal.zone.high == pytest.approx(100.8)
        assert proposal.stop_price == pytest.approx(98.95)
        assert proposal.quality == 70

    def test_no_dip(self, pullback_bars):
        """Test nothing is proposed when no close dipped under EMA9"""
        indicators = IndicatorSnapshot(close=100.6, ema9=99.0, atr=1.0)
        assert PullbackContinuationDetector().update(pullback_bars, indicators, Direction.LONG) is None

    def test_wrong_direction(self, pullback_bars):
        """Test a bullish reclaim is not a SHORT setup"""
        indicators = IndicatorSnapshot(close=100.6, ema9=100.2, atr=1.0)
        assert PullbackContinuationDetector().update(pullback_bars, indicators, Direction.SHORT) is None

    def test_needs_atr(self, pullback_bars):
        """Test the detector waits for ATR"""
        indicators = IndicatorSnapshot(close=100.6, ema9=100.2)
        assert PullbackContinuationDetector().update(pullback_bars, indicators, Direction.LONG) is None


class TestBreakRetest:
    """Test the break-and-retest detector"""

    def test_long_break_retest(self, break_retest_bars):
        """Test break, retest and reclaim propose a LONG latch"""
        indicators = IndicatorSnapshot(close=101.3, atr=1.0)
        proposal = BreakRetestDetector().update(break_retest_bars, indicators, Direction.LONG)

        assert proposal is not None
        assert proposal.pattern == "BREAK_RETEST"
        assert proposal.trigger_price == pytest.approx(101.5)
        assert proposal.zone == Zone(100.5, 101.5)
        assert proposal.stop_price == pytest.approx(100.35)
        assert proposal.quality == 75

    def test_no_retest(self, break_retest_bars):
        """Test a break without a retest is not a setup"""
        bars = break_retest_bars[:22] + [Bar(bar_ts(22), 101.2, 101.9, 101.1, 101.8, 1000.0)]
        indicators = IndicatorSnapshot(close=101.8, atr=1.0)
        assert BreakRetestDetector().update(bars, indicators, Direction.LONG) is None

    def test_short_history(self, break_retest_bars):
        """Test fewer than 20 bars is not enough"""
        indicators = IndicatorSnapshot(close=101.3, atr=1.0)
        assert BreakRetestDetector().update(break_retest_bars[-10:], indicators, Direction.LONG) is None


class TestSetupEngine:
    """Test detector orchestration and vetoes"""

    def test_evaluate_picks_proposal(self, break_retest_bars, trend_up_regime):
        """Test the engine returns the detector's latch proposal"""
        engine = SetupEngine().register_all_defaults()
        scan = engine.evaluate(START_TS, break_retest_bars, IndicatorSnapshot(close=101.3, atr=1.0),
                               Direction.LONG, trend_up_regime)

        assert scan.proposal is not None
        assert scan.proposal.pattern == "BREAK_RETEST"
        assert scan.reasons[0] == "pattern=BREAK_RETEST"

    def test_regime_veto(self, break_retest_bars):
        """Test CHOP vetoes every setup"""
        engine = SetupEngine().register_all_defaults()
        scan = engine.evaluate(START_TS, break_retest_bars, IndicatorSnapshot(close=101.3, atr=1.0),
                               Direction.LONG, RegimeResult(Regime.CHOP))

        assert scan.proposal is None
        assert scan.reasons[0].startswith("blocked")

    def test_opposed_structure(self, break_retest_bars):
        """Test bearish structure blocks LONG setups"""
        engine = SetupEngine().register_all_defaults()
        regime = RegimeResult(Regime.TRANSITION, structure=Structure.BEARISH)
        scan = engine.evaluate(START_TS, break_retest_bars, IndicatorSnapshot(close=101.3, atr=1.0),
                               Direction.LONG, regime)

        assert scan.proposal is None
        assert "opposes" in scan.reasons[0]

    def test_repeat_scan_same_result(self, break_retest_bars, trend_up_regime):
        """Test a scan depends only on its inputs, not on earlier scans"""
        indicators = IndicatorSnapshot(close=101.3, atr=1.0)
        engine = SetupEngine().register_all_defaults()

        first = engine.evaluate(START_TS, break_retest_bars, indicators, Direction.LONG, trend_up_regime)
        second = engine.evaluate(START_TS + 60_000, break_retest_bars, indicators,
                                 Direction.LONG, trend_up_regime)
        fresh = SetupEngine().register_all_defaults().evaluate(
            START_TS + 60_000, break_retest_bars, indicators, Direction.LONG, trend_up_regime)

        assert first.proposal is not None
        assert second.proposal == first.proposal
        assert fresh.proposal == second.proposal


class TestBuildCandidate:
    """Test candidate scoring"""

    @pytest.fixture
    def fired(self):
        latch = arm_latch(Direction.LONG, Zone(99.5, 100.5), 101.0, 99.0, START_TS, 9 * FIVE_MIN,
                          100.2, pattern="PULLBACK_CONTINUATION", quality=70)
        gate = fire_gate(open_gate(latch, START_TS, 2 * FIVE_MIN), 101.2)
        return latch, gate

    def test_scores(self, fired, trend_up_regime):
        """Test alignment, structure and quality combine into the total"""
        latch, gate = fired
        timing = TimingSignal(TimingState.PULLBACK_IN_PROGRESS, 50)

        candidate = build_candidate("SPY", START_TS, latch, gate, 101.2, 1.0,
                                    trend_up_regime, timing, 0.8)

        assert candidate.score.alignment == 100
        assert candidate.score.structure == 85
        assert candidate.score.quality == 60
        assert candidate.score.total == 84
        assert candidate.id == f"setup_{START_TS}_pullback_continuation"
        assert candidate.entry_zone.low == 101.0
        assert candidate.entry_zone.high == pytest.approx(101.8)
        assert candidate.stop == 99.0

    def test_targets_from_risk(self, fired, trend_up_regime):
        """Test targets sit at 1R / 2R / 3R from the entry zone midpoint"""
        latch, gate = fired
        candidate = build_candidate("SPY", START_TS, latch, gate, 101.2, 1.0, trend_up_regime,
                                    TimingSignal(TimingState.WAITING, 0), 0.8)

        mid = candidate.entry_zone.mid
        risk = mid - 99.0
        assert candidate.targets.t1 == pytest.approx(mid + risk)
        assert candidate.targets.t3 == pytest.approx(mid + 3 * risk)

    def test_transition_caps_structure(self, fired):
        """Test TRANSITION caps the structure score at 60"""
        latch, gate = fired
        regime = RegimeResult(Regime.TRANSITION, bull_score=2, structure=Structure.BULLISH)
        candidate = build_candidate("SPY", START_TS, latch, gate, 101.2, 1.0, regime,
                                    TimingSignal(TimingState.WAITING, 0), 0.8)

        assert candidate.score.structure == 60
        assert candidate.score.alignment == 80


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
