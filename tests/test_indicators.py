"""
Tests for Indicator Library

Tests EMA, VWAP, RSI, ATR and the shared indicator snapshot.
"""

import pytest
import numpy as np

from decision_engine.errors import ConfigurationError
from decision_engine.indicators import (
    atr, average_range, compute_snapshot, ema, rsi, true_range, validate_period, vwap,
)
from decision_engine.models import Bar

from conftest import make_flat_bars, make_trend_bars


@pytest.fixture
def sample_closes():
    """Random-walk closes"""
    np.random.seed(42)
    return list(np.cumsum(np.random.randn(100) * 0.5) + 100)


class TestEMA:
    """Test Exponential Moving Average"""

    def test_constant_series(self):
        """Test EMA of a constant series is the constant"""
        assert ema([5.0] * 30, 9) == pytest.approx(5.0)

    def test_seeded_with_first_close(self):
        """Test the recursion starts from the first close"""
        k = 2.0 / 4
        expected = 3.0 * k + (2.0 * k + 1.0 * (1 - k)) * (1 - k)
        assert ema([1.0, 2.0, 3.0], 3) == pytest.approx(expected)

    def test_invalid_inputs(self):
        """Test degenerate periods and empty data return None"""
        assert ema([], 9) is None
        assert ema([1.0, 2.0], 1) is None

    def test_lags_rising_prices(self):
        """Test EMA9 follows a rising series from below"""
        rising = [100 + i for i in range(50)]
        assert ema(rising, 9) < rising[-1]
        assert ema(rising, 9) > ema(rising, 20)


class TestVWAP:
    """Test rolling VWAP"""

    def test_weighted_typical_price(self):
        """Test VWAP weights typical price by volume"""
        bars = [Bar(1, 10, 12, 8, 10, 100), Bar(2, 20, 22, 18, 20, 300)]
        assert vwap(bars, 2) == pytest.approx((10 * 100 + 20 * 300) / 400)

    def test_zero_volume_bars_skipped(self):
        """Test zero-volume bars do not contribute"""
        bars = [Bar(1, 10, 12, 8, 10, 0), Bar(2, 20, 22, 18, 20, 300)]
        assert vwap(bars, 2) == pytest.approx(20.0)

    def test_no_volume(self):
        """Test VWAP is unavailable without volume"""
        bars = [Bar(1, 10, 12, 8, 10, 0)]
        assert vwap(bars, 5) is None


class TestRSI:
    """Test Relative Strength Index"""

    def test_rsi_range(self, sample_closes):
        """Test RSI stays within 0-100 range"""
        value = rsi(sample_closes, 14)
        assert 0 <= value <= 100

    def test_no_losses(self):
        """Test RSI is 100 when every delta is a gain"""
        assert rsi([float(i) for i in range(20)], 14) == 100.0

    def test_insufficient_data(self):
        """Test RSI needs period + 1 closes"""
        assert rsi([1.0] * 14, 14) is None

    def test_balanced_moves(self):
        """Test equal gains and losses give RSI 50"""
        closes = [100.0 + (i % 2) for i in range(15)]
        assert rsi(closes, 14) == pytest.approx(50.0)


class TestATR:
    """Test Average True Range"""

    def test_true_range_uses_gap(self):
        """Test the prior close extends the range on gaps"""
        bar = Bar(2, 105, 106, 104, 105.5, 10)
        assert true_range(bar, 100.0) == pytest.approx(6.0)
        assert true_range(bar) == pytest.approx(2.0)

    def test_flat_bars(self, flat_bars):
        """Test ATR of constant 1.0-range bars is 1.0"""
        assert atr(flat_bars, 14) == pytest.approx(1.0)
        assert average_range(flat_bars) == pytest.approx(1.0)

    def test_insufficient_data(self):
        """Test ATR needs at least two bars"""
        assert atr(make_flat_bars(1), 14) is None
        assert average_range([]) is None


class TestSnapshot:
    """Test the indicator snapshot"""

    def test_snapshot_fields(self, uptrend_bars):
        """Test every field is populated for a full history"""
        snap = compute_snapshot(uptrend_bars)

        assert snap.close == uptrend_bars[-1].close
        for name in ('ema9', 'ema20', 'atr', 'vwap', 'rsi14'):
            assert getattr(snap, name) is not None
        assert snap.ema9 > snap.ema20

    def test_bounded_history(self):
        """Test older bars beyond the EMA windows do not change the snapshot"""
        long_history = make_trend_bars(200)
        short_history = long_history[-100:]

        a = compute_snapshot(long_history)
        b = compute_snapshot(short_history)

        assert a.ema9 == pytest.approx(b.ema9)
        assert a.ema20 == pytest.approx(b.ema20)
        assert a.atr == pytest.approx(b.atr)

    def test_empty(self):
        """Test an empty history gives an empty snapshot"""
        assert compute_snapshot([]).to_dict()['close'] is None

    def test_validate_period(self):
        """Test explicit periods are validated"""
        assert validate_period(14) == 14
        with pytest.raises(ConfigurationError):
            validate_period(1)
        with pytest.raises(ConfigurationError):
            validate_period(2.5)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
