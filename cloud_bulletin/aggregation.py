"""
Aggregation of hourly ensemble series into bulletin numbers.

Two modes:
- Daily mean over the solar window (default 09:00 through 16:00 IST)
- Horizon buckets: hours 0-23 and 24-47 from the first forecast hour

Both work on any hourly series: cloud cover and irradiance (GHI) alike.
Averages are rounded half up, so 74.5% reports as 75%.

Sub-regions merged into a parent (West + East Rajasthan) use the maximum,
so the merged bulletin is never less cloudy than its cloudiest part. Their
irradiance uses the minimum, the darker part.

All functions are pure: same series in, same numbers out.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from cloud_bulletin.classifier import Bucket, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolarWindow:
    """Inclusive hour range, local time."""
    start_hour: int = 9
    end_hour: int = 16

    def __post_init__(self):
        if not (0 <= self.start_hour <= 23 and 0 <= self.end_hour <= 23):
            raise ValueError(f"solar window hours must be 0-23, got {self.start_hour}-{self.end_hour}")
        if self.start_hour > self.end_hour:
            raise ValueError(f"solar window start after end: {self.start_hour}-{self.end_hour}")

    @classmethod
    def parse(cls, text: str) -> "SolarWindow":
        """Parse "09-16"."""
        try:
            start, end = (int(part) for part in text.split("-"))
        except ValueError as e:
            raise ValueError(f"solar window must look like '09-16', got {text!r}") from e
        return cls(start, end)

    def __str__(self) -> str:
        return f"{self.start_hour:02d}-{self.end_hour:02d}"


DEFAULT_WINDOW = SolarWindow()


def _rounded_mean(values: pd.Series) -> Optional[int]:
    values = values.dropna()
    if values.empty:
        return None
    return round_half_up(np.mean(values.to_numpy(dtype=float)))


def _hour_floor(moment: datetime) -> pd.Timestamp:
    ts = pd.Timestamp(moment)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("Asia/Kolkata").tz_localize(None)
    return ts.floor("h")


def daily_means(series: pd.Series, window: SolarWindow = DEFAULT_WINDOW) -> Dict[date, Optional[int]]:
    """
    Mean inside the solar window for every calendar day in the series.

    Returns:
        {date: rounded mean}; None for a day with no values inside the window
    """
    if series.empty:
        return {}

    results: Dict[date, Optional[int]] = {}
    for day, group in series.groupby(series.index.date):
        hours = group.index.hour
        in_window = group[(hours >= window.start_hour) & (hours <= window.end_hour)]
        results[day] = _rounded_mean(in_window)

    logger.debug(f"[Aggregator] Daily means over {window}: {results}")
    return results


def daily_mean(series: pd.Series, day: date, window: SolarWindow = DEFAULT_WINDOW) -> Optional[int]:
    return daily_means(series, window).get(day)


def forward_window(series: pd.Series, start: Optional[datetime] = None, hours: int = 48) -> pd.Series:
    """The `hours` hourly slots from `start` (first timestamp if None); gaps stay NaN."""
    if series.empty:
        return pd.Series(dtype=float)
    origin = _hour_floor(start) if start is not None else series.index.min()
    slots = pd.date_range(origin, periods=hours, freq="h")
    return series.reindex(slots)


def horizon_buckets(series: pd.Series, start: Optional[datetime] = None, hours: int = 48) -> List[Optional[int]]:
    """
    Split the first `hours` values into consecutive 24-hour halves and average each.

    Returns:
        [day1, day2] (more entries if hours > 48); None for an empty half
    """
    window = forward_window(series, start, hours)
    if window.empty:
        return [None] * (hours // 24)
    return [_rounded_mean(window.iloc[i:i + 24]) for i in range(0, hours, 24)]


def hourly_values(
    series: pd.Series,
    start: Optional[datetime] = None,
    hours: int = 48,
    ghi: Optional[pd.Series] = None,
) -> List[Dict]:
    """Forward hourly series for charts: [{"time", "cloud_cover"}], plus "ghi_wm2" when `ghi` is given."""
    window = forward_window(series, start, hours)
    points = [
        {"time": ts.strftime("%Y-%m-%dT%H:%M"), "cloud_cover": None if pd.isna(v) else round_half_up(v)}
        for ts, v in window.items()
    ]
    if ghi is not None:
        irradiance = ghi.reindex(window.index) if not ghi.empty else pd.Series(np.nan, index=window.index)
        for point, value in zip(points, irradiance):
            point["ghi_wm2"] = None if pd.isna(value) else round(float(value), 1)
    return points


def recent_history(series: pd.Series, now: datetime, hours: int = 12) -> List[Dict]:
    """The last `hours` hourly values up to and including the current hour."""
    if series.empty or hours <= 0:
        return []
    end = _hour_floor(now)
    slots = pd.date_range(end=end, periods=hours, freq="h")
    window = series.reindex(slots)
    return [
        {"time": ts.strftime("%Y-%m-%dT%H:%M"), "cloud_cover": None if pd.isna(v) else round_half_up(v)}
        for ts, v in window.items()
    ]


def merge_max(values: Iterable[Optional[float]]) -> Optional[float]:
    """Cloudier-wins merge of sub-region percentages; None if every part has no data."""
    present = [v for v in values if v is not None and not pd.isna(v)]
    if not present:
        return None
    return max(present)


def merge_min(values: Iterable[Optional[float]]) -> Optional[float]:
    """Darker-wins merge for irradiance; None if every part has no data."""
    present = [v for v in values if v is not None and not pd.isna(v)]
    if not present:
        return None
    return min(present)


def merge_max_buckets(buckets: Iterable[Optional[Bucket]]) -> Optional[Bucket]:
    """Most severe bucket among the sub-regions."""
    present = [b for b in buckets if b is not None]
    if not present:
        return None
    return max(present, key=lambda b: b.rank)
