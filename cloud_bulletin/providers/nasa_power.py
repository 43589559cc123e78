"""
NASA POWER Provider for Cloud Bulletin

Hourly satellite-derived cloud amount (CLOUD_AMT, %) from the NASA POWER
point API. POWER is a reanalysis/near-real-time product with a few days of
latency, so it mostly covers the recent past and feeds the history strip
rather than the 48 hour forecast.

Timestamps are requested in UTC and relabelled to the IST hour they fall in.
Fill values (-999) become None.
"""

import httpx
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cloud_bulletin.providers.base import CloudProvider, SeriesPoint, check_response, clean_pct, ist_hour, sort_series
from cloud_bulletin.regions import SamplePoint
from cloud_bulletin.resilience import ProviderUnavailable

logger = logging.getLogger(__name__)


class NasaPowerProvider(CloudProvider):
    """Provider for the NASA POWER hourly point endpoint."""

    BASE_URL = "https://power.larc.nasa.gov/api/temporal/hourly/point"
    PARAMETER = "CLOUD_AMT"

    def __init__(self, days_back: int = 3, now: Optional[datetime] = None):
        self.days_back = days_back
        self._now = now
        self.name = "nasa-power"

    def build_params(self, point: SamplePoint) -> Dict[str, Any]:
        now = self._now or datetime.now(timezone.utc)
        start = (now - timedelta(days=self.days_back)).strftime("%Y%m%d")
        end = now.strftime("%Y%m%d")
        return {
            "parameters": self.PARAMETER,
            "community": "RE",
            "latitude": f"{point.lat:.4f}",
            "longitude": f"{point.lon:.4f}",
            "start": start,
            "end": end,
            "format": "JSON",
            "time-standard": "UTC",
        }

    async def fetch_series(self, point: SamplePoint, client: httpx.AsyncClient) -> List[SeriesPoint]:
        params = self.build_params(point)
        logger.debug(f"[NasaPowerProvider] Request params: {params}")

        resp = await client.get(self.BASE_URL, params=params)
        data = check_response(self.name, resp)

        series = self.parse(data)
        valid = sum(1 for p in series if p["cloud_cover"] is not None)
        logger.info(f"[NasaPowerProvider] {point.key}: {len(series)} hourly records ({valid} valid)")
        return series

    def parse(self, data: Any) -> List[SeriesPoint]:
        try:
            values = data["properties"]["parameter"][self.PARAMETER]
        except (KeyError, TypeError) as e:
            raise ProviderUnavailable(self.name, f"missing {self.PARAMETER} block") from e

        if not isinstance(values, dict):
            raise ProviderUnavailable(self.name, f"{self.PARAMETER} is not a mapping")

        fill = None
        header = data.get("header") if isinstance(data, dict) else None
        if isinstance(header, dict):
            fill = header.get("fill_value")

        series: List[SeriesPoint] = []
        for stamp, value in values.items():
            try:
                moment = datetime.strptime(stamp, "%Y%m%d%H").replace(tzinfo=timezone.utc)
            except ValueError:
                logger.debug(f"[NasaPowerProvider] Skipping bad timestamp {stamp!r}")
                continue

            if fill is not None and value == fill:
                value = None
            series.append({"time": ist_hour(moment), "cloud_cover": clean_pct(value)})

        return sort_series(series)
