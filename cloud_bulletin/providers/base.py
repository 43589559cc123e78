"""
Shared types and helpers for the cloud-cover providers.

Every provider returns a list of SeriesPoint records, hourly, ascending,
stamped in IST wall-clock time ("YYYY-MM-DDTHH:00"). Values are integer
percentages in [0, 100] or None where the provider had nothing. Providers that
know the irradiance add "ghi" (global horizontal irradiance, W/m2).
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, List, Optional, TypedDict
from zoneinfo import ZoneInfo

import httpx

from cloud_bulletin.classifier import round_half_up
from cloud_bulletin.regions import SamplePoint
from cloud_bulletin.resilience import ProviderUnavailable

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")
TIME_FORMAT = "%Y-%m-%dT%H:00"


class _SeriesPoint(TypedDict):
    time: str
    cloud_cover: Optional[int]


class SeriesPoint(_SeriesPoint, total=False):
    ghi: Optional[float]


def clean_pct(value: Any) -> Optional[int]:
    """Clamp to [0, 100] and round; None, NaN and fill values (< 0 sentinels like -999) become None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or value <= -900:
        return None
    return round_half_up(max(0.0, min(100.0, value)))


def ist_hour(moment: datetime) -> str:
    """Format an aware datetime as its IST hour label (floored to the hour)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(IST).strftime(TIME_FORMAT)


def from_epoch(seconds: float) -> str:
    return ist_hour(datetime.fromtimestamp(float(seconds), tz=timezone.utc))


def sort_series(points: List[SeriesPoint]) -> List[SeriesPoint]:
    """Ascending by time; later duplicates of the same hour are dropped."""
    seen = set()
    ordered: List[SeriesPoint] = []
    for p in sorted(points, key=lambda p: p["time"]):
        if p["time"] in seen:
            continue
        seen.add(p["time"])
        ordered.append(p)
    return ordered


def check_response(provider: str, resp: httpx.Response) -> Any:
    """raise_for_status + JSON decode, both mapped to ProviderUnavailable."""
    try:
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ProviderUnavailable(provider, f"HTTP {resp.status_code}") from e
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderUnavailable(provider, "malformed JSON body") from e


class CloudProvider:
    """Interface implemented by every provider."""

    name: str = "provider"

    async def fetch_series(self, point: SamplePoint, client: httpx.AsyncClient) -> List[SeriesPoint]:
        raise NotImplementedError
