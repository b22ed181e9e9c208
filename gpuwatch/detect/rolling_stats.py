"""Rolling price statistics over daily buckets."""

import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence


@dataclass
class RollingStats:
    """
    Trailing-window statistics for one (gpu, retailer) pair.

    `avg` is the mean of daily average prices, `stddev` the sample standard
    deviation of those daily averages. All fields are None with no history.
    """

    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    stddev: Optional[float] = None
    day_count: int = 0
    sample_count: int = 0

    @property
    def has_history(self) -> bool:
        return self.day_count > 0


def compute_rolling_stats(points: Sequence[tuple[datetime, Decimal]]) -> RollingStats:
    """
    Compute rolling stats from raw (recorded_at, price) points.

    Args:
        points: History points already restricted to the window

    Returns:
        RollingStats (empty when `points` is empty)
    """
    if not points:
        return RollingStats()

    days: dict[date, list[float]] = defaultdict(list)
    for recorded_at, price in points:
        days[recorded_at.date()].append(float(price))

    daily_avgs = [statistics.mean(prices) for prices in days.values()]
    all_prices = [p for prices in days.values() for p in prices]

    if len(daily_avgs) > 1:
        stddev = statistics.stdev(daily_avgs)
    else:
        stddev = 0.0

    return RollingStats(
        avg=statistics.mean(daily_avgs),
        min=min(all_prices),
        max=max(all_prices),
        stddev=stddev,
        day_count=len(daily_avgs),
        sample_count=len(all_prices),
    )
