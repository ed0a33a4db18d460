"""Live OHLCV series built from ticker ticks."""

from __future__ import annotations

import bisect
import logging
from typing import Iterable

from .models import Bar, Tick
from .utils.timeframes import bucket_start


logger = logging.getLogger(__name__)


class LiveSeriesAggregator:
    """
    Merges ticks into an in-memory series of bars.

    The series is sorted by `time` with no duplicates. Only the tail bar is
    updated by ticks; every earlier bar is treated as closed. This class is not
    safe for concurrent writers, so callers must route every `apply`,
    `load_history` and `reset` through a single owner.
    """

    def __init__(self, interval_seconds: int):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self.series: list[Bar] = []
        self.late_ticks = 0

    def apply(self, tick: Tick) -> list[Bar]:
        """
        Merge one tick and return the series.

        Args:
            tick: Price update with cumulative volume for the current bucket

        Returns:
            The live series (mutated in place)
        """
        t = bucket_start(tick.time, self.interval_seconds)
        last = self.series[-1] if self.series else None

        if last is not None and last.time == t:
            last.high = max(last.high, tick.price)
            last.low = min(last.low, tick.price)
            last.close = tick.price
            # Venue volume is already cumulative for the bucket
            last.volume = tick.cumulative_volume
            return self.series

        bar = Bar(
            time=t,
            open=tick.price,
            high=tick.price,
            low=tick.price,
            close=tick.price,
            volume=tick.cumulative_volume,
        )

        if last is None or t > last.time:
            self.series.append(bar)
            return self.series

        # Out-of-order tick
        times = [b.time for b in self.series]
        index = bisect.bisect_left(times, t)
        if index < len(times) and times[index] == t:
            self.late_ticks += 1
            logger.debug(f"Dropping late tick for closed bar {t} (price={tick.price})")
            return self.series

        self.series.insert(index, bar)
        return self.series

    def load_history(self, bars: Iterable[Bar]) -> list[Bar]:
        """Replace the whole series with `bars`, sorted and de-duplicated by time."""
        by_time = {bar.time: bar for bar in bars}
        self.series = [by_time[t] for t in sorted(by_time)]
        return self.series

    def reset(self, interval_seconds: int | None = None) -> None:
        """Clear the series, optionally switching to a new bucket width."""
        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self.interval_seconds = interval_seconds
        self.series = []
        self.late_ticks = 0
