"""
Tests for Volume Policy
"""

import pytest

from decision_engine.models import Bar
from decision_engine.volume import (
    CLIMAX_VOL_POLICY, LOW_VOL_POLICY, NORMAL_VOLUME_POLICY, THIN_TAPE_POLICY,
    VOL_SPIKE_POLICY, relative_volume, volume_policy, volume_warnings,
)


def _bars(last_volume, n=20, avg_volume=1000.0):
    history = [Bar(i, 100, 101, 99, 100, avg_volume) for i in range(n)]
    return history + [Bar(n, 100, 101, 99, 100, last_volume)]


class TestRelativeVolume:
    """Test relative volume"""

    def test_ratio(self):
        """Test last bar volume over the trailing average"""
        assert relative_volume(_bars(1500.0), 20) == pytest.approx(1.5)

    def test_insufficient_history(self):
        """Test fewer than period + 1 bars is unavailable"""
        assert relative_volume(_bars(1500.0, n=10), 20) is None

    def test_zero_average(self):
        """Test a zero-volume history is unavailable"""
        assert relative_volume(_bars(1500.0, avg_volume=0.0), 20) is None


class TestVolumePolicy:
    """Test policy thresholds"""

    @pytest.mark.parametrize("rel_vol,expected", [
        (None, NORMAL_VOLUME_POLICY),
        (float('nan'), NORMAL_VOLUME_POLICY),
        (0.3, THIN_TAPE_POLICY),
        (0.45, LOW_VOL_POLICY),
        (0.69, LOW_VOL_POLICY),
        (0.7, NORMAL_VOLUME_POLICY),
        (1.49, NORMAL_VOLUME_POLICY),
        (1.5, VOL_SPIKE_POLICY),
        (2.5, CLIMAX_VOL_POLICY),
    ])
    def test_thresholds(self, rel_vol, expected):
        """Test each relative volume maps to its policy"""
        assert volume_policy(rel_vol) == expected

    def test_thin_tape_requires_retest(self):
        """Test thin tape demands a retest and three confirm bars"""
        assert THIN_TAPE_POLICY.requires_retest
        assert THIN_TAPE_POLICY.confirm_bars_required == 3
        assert THIN_TAPE_POLICY.size_mult == 0.25


class TestVolumeWarnings:
    """Test advisory volume notes"""

    def test_thin_tape_warning(self):
        """Test thin tape produces a retest note"""
        warnings = volume_warnings(THIN_TAPE_POLICY, 0.3)

        assert len(warnings) == 1
        assert "retest required" in warnings[0]
        assert "0.30" in warnings[0]

    def test_low_vol_warning(self):
        """Test low volume disallows one-bar breakouts"""
        assert volume_warnings(LOW_VOL_POLICY, 0.6)

    def test_normal_silent(self):
        """Test normal and spike volume add nothing"""
        assert volume_warnings(NORMAL_VOLUME_POLICY, 1.0) == []
        assert volume_warnings(VOL_SPIKE_POLICY, 1.8) == []


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
