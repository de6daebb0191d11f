"""
Tests for Bar Aggregation

Streaming bucket aggregation, the pandas bulk path, and timeframe parsing.
"""

import pytest
import numpy as np
import pandas as pd

from decision_engine.aggregation import (
    BarAggregator, aggregate_bars, aggregate_frame, bars_to_frame, frame_to_bars,
    timeframe_minutes, timeframe_to_ms,
)
from decision_engine.errors import ConfigurationError
from decision_engine.models import Bar

from conftest import START_TS, ONE_MIN, FIVE_MIN, bar_ts


@pytest.fixture
def minute_bars():
    """Random-walk 1m bars covering several 5m buckets"""
    np.random.seed(42)
    n = 37
    close = np.cumsum(np.random.randn(n) * 0.2) + 100
    open_price = np.concatenate([[100.0], close[:-1]])
    high = np.maximum(open_price, close) + np.abs(np.random.randn(n) * 0.1)
    low = np.minimum(open_price, close) - np.abs(np.random.randn(n) * 0.1)
    volume = np.random.randint(100, 1000, n)
    return [
        Bar(bar_ts(i, ONE_MIN), float(open_price[i]), float(high[i]), float(low[i]),
            float(close[i]), float(volume[i]))
        for i in range(n)
    ]


class TestTimeframes:
    """Test timeframe tag parsing"""

    def test_parse_tags(self):
        """Test the common tag spellings"""
        assert timeframe_minutes("1m") == 1
        assert timeframe_minutes("5min") == 5
        assert timeframe_minutes("15m") == 15
        assert timeframe_minutes("1h") == 60
        assert timeframe_to_ms("5m") == FIVE_MIN

    def test_invalid_tag(self):
        """Test unknown tags raise ConfigurationError"""
        with pytest.raises(ConfigurationError):
            timeframe_minutes("5 parsecs")
        with pytest.raises(ConfigurationError):
            timeframe_minutes("0m")


class TestBarAggregator:
    """Test streaming aggregation"""

    def test_emits_on_next_bucket(self):
        """Test a bucket completes only when the next bucket's bar arrives"""
        agg = BarAggregator(5)
        bars = [Bar(bar_ts(i, ONE_MIN), 100 + i, 101 + i, 99 + i, 100.5 + i, 10) for i in range(6)]

        results = [agg.push(b) for b in bars]

        assert results[:5] == [None] * 5
        completed = results[5]
        assert completed is not None
        assert completed.ts == START_TS + FIVE_MIN - 1
        assert completed.open == 100
        assert completed.high == 105
        assert completed.low == 99
        assert completed.close == 104.5
        assert completed.volume == 50

    def test_pending_snapshot(self):
        """Test the in-progress bucket is visible but not emitted"""
        agg = BarAggregator(5)
        agg.push(Bar(bar_ts(0, ONE_MIN), 100, 101, 99, 100.5, 10))

        pending = agg.pending()

        assert pending is not None
        assert pending.close == 100.5
        assert agg.get_statistics()['bars_completed'] == 0

    def test_reset(self):
        """Test reset drops the in-progress bucket"""
        agg = BarAggregator(5)
        agg.push(Bar(bar_ts(0, ONE_MIN), 100, 101, 99, 100.5, 10))
        agg.reset()

        assert agg.pending() is None

    def test_invalid_bucket(self):
        """Test non-positive bucket sizes are rejected"""
        with pytest.raises(ConfigurationError):
            BarAggregator(0)


class TestBulkAggregation:
    """Test the pandas resample path"""

    def test_matches_streaming(self, minute_bars):
        """Test bulk and streaming aggregation produce the same bars"""
        agg = BarAggregator(5)
        streamed = [b for b in (agg.push(bar) for bar in minute_bars) if b is not None]

        bulk = aggregate_bars(minute_bars, 5)

        assert len(bulk) == len(streamed) == 7
        for a, b in zip(bulk, streamed):
            assert a.ts == b.ts
            assert a.open == pytest.approx(b.open)
            assert a.high == pytest.approx(b.high)
            assert a.low == pytest.approx(b.low)
            assert a.close == pytest.approx(b.close)
            assert a.volume == pytest.approx(b.volume)

    def test_include_partial(self, minute_bars):
        """Test the trailing bucket is kept on request"""
        df = bars_to_frame(minute_bars)

        full = aggregate_frame(df, 5)
        partial = aggregate_frame(df, 5, include_partial=True)

        assert len(partial) == len(full) + 1
        assert list(partial.columns) == ['time', 'open', 'high', 'low', 'close', 'volume']

    def test_empty_frame(self):
        """Test an empty frame aggregates to an empty frame"""
        result = aggregate_frame(pd.DataFrame(columns=['time', 'open', 'high', 'low', 'close', 'volume']), 5)
        assert result.empty

    def test_frame_round_trip(self, minute_bars):
        """Test bars survive the DataFrame conversion"""
        assert frame_to_bars(bars_to_frame(minute_bars)) == minute_bars

    def test_frame_missing_columns(self):
        """Test frames without OHLC columns are rejected"""
        with pytest.raises(ValueError):
            frame_to_bars(pd.DataFrame({'time': [1], 'close': [1.0]}))


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
