"""Tests for the live series aggregator."""

import random

import pytest

from upbit_stream.aggregator import LiveSeriesAggregator
from upbit_stream.models import Bar, Tick


def _ohlc(bar):
    return (bar.time, bar.open, bar.high, bar.low, bar.close)


class TestApply:

    def test_ticks_bucket_into_bars(self):
        agg = LiveSeriesAggregator(60)

        for t, price in [(100, 10.0), (100, 12.0), (160, 9.0)]:
            agg.apply(Tick(time=t, price=price, cumulative_volume=1.0))

        assert [_ohlc(b) for b in agg.series] == [
            (60, 10.0, 12.0, 10.0, 12.0),
            (120, 9.0, 9.0, 9.0, 9.0),
        ]

    def test_same_bucket_updates_high_low_close(self):
        agg = LiveSeriesAggregator(60)

        agg.apply(Tick(time=61, price=50.0, cumulative_volume=1.0))
        agg.apply(Tick(time=75, price=40.0, cumulative_volume=2.0))
        series = agg.apply(Tick(time=119, price=45.0, cumulative_volume=3.0))

        assert len(series) == 1
        bar = series[0]
        assert bar.open == 50.0
        assert bar.high == 50.0
        assert bar.low == 40.0
        assert bar.close == 45.0

    def test_volume_is_replaced_not_summed(self):
        agg = LiveSeriesAggregator(60)

        agg.apply(Tick(time=0, price=1.0, cumulative_volume=5.0))
        agg.apply(Tick(time=10, price=1.0, cumulative_volume=7.5))

        assert agg.series[0].volume == 7.5

    def test_only_tail_bar_changes(self):
        agg = LiveSeriesAggregator(60)
        agg.load_history([Bar(0, 1.0, 2.0, 0.5, 1.5, 10.0), Bar(60, 1.5, 3.0, 1.0, 2.0, 20.0)])

        agg.apply(Tick(time=90, price=5.0, cumulative_volume=25.0))

        assert agg.series[0] == Bar(0, 1.0, 2.0, 0.5, 1.5, 10.0)
        assert _ohlc(agg.series[1]) == (60, 1.5, 5.0, 1.0, 5.0)
        assert agg.series[1].volume == 25.0

    def test_non_decreasing_ticks_keep_series_sorted_and_unique(self):
        rng = random.Random(7)
        agg = LiveSeriesAggregator(60)
        t = 0
        for _ in range(500):
            t += rng.choice([0, 0, 1, 5, 30, 61, 200])
            price = rng.uniform(90, 110)
            agg.apply(Tick(time=t, price=price, cumulative_volume=1.0))

        times = [b.time for b in agg.series]
        assert times == sorted(set(times))
        for bar in agg.series:
            assert bar.low <= min(bar.open, bar.close)
            assert bar.high >= max(bar.open, bar.close)

    def test_out_of_order_tick_for_missing_bucket_is_inserted(self):
        agg = LiveSeriesAggregator(60)
        agg.apply(Tick(time=0, price=1.0, cumulative_volume=1.0))
        agg.apply(Tick(time=180, price=3.0, cumulative_volume=1.0))

        agg.apply(Tick(time=100, price=2.0, cumulative_volume=1.0))

        assert [b.time for b in agg.series] == [0, 60, 180]
        assert agg.series[1].close == 2.0

    def test_late_tick_for_closed_bar_is_dropped(self):
        agg = LiveSeriesAggregator(60)
        agg.apply(Tick(time=0, price=1.0, cumulative_volume=1.0))
        agg.apply(Tick(time=60, price=2.0, cumulative_volume=1.0))

        agg.apply(Tick(time=30, price=100.0, cumulative_volume=9.0))

        assert _ohlc(agg.series[0]) == (0, 1.0, 1.0, 1.0, 1.0)
        assert agg.late_ticks == 1

    def test_weekly_ticks_stay_in_one_monday_bar(self):
        monday = 1_699_833_600  # 2023-11-13 00:00 UTC
        agg = LiveSeriesAggregator(7 * 86400)

        agg.apply(Tick(time=monday + 3600, price=10.0, cumulative_volume=1.0))
        agg.apply(Tick(time=monday + 3 * 86400, price=12.0, cumulative_volume=2.0))  # Thursday

        assert [_ohlc(b) for b in agg.series] == [(monday, 10.0, 12.0, 10.0, 12.0)]


class TestHistory:

    def test_load_history_replaces_series(self):
        agg = LiveSeriesAggregator(60)
        agg.apply(Tick(time=1000, price=1.0, cumulative_volume=1.0))

        agg.load_history([Bar(120, 2, 2, 2, 2), Bar(0, 1, 1, 1, 1), Bar(120, 3, 3, 3, 3)])

        assert [b.time for b in agg.series] == [0, 120]
        assert agg.series[1].close == 3

    def test_reset_switches_interval(self):
        agg = LiveSeriesAggregator(60)
        agg.apply(Tick(time=100, price=1.0, cumulative_volume=1.0))

        agg.reset(300)
        agg.apply(Tick(time=599, price=1.0, cumulative_volume=1.0))

        assert [b.time for b in agg.series] == [300]

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            LiveSeriesAggregator(0)
        with pytest.raises(ValueError):
            LiveSeriesAggregator(60).reset(-1)
