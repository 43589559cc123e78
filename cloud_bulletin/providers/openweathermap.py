"""
OpenWeatherMap Provider for Cloud Bulletin

Secondary cross-check provider. Needs an API key (OPENWEATHER_API_KEY); the
provider is simply not built when no key is configured.

Endpoints, tried in order (first success wins):
1. One Call 3.0 - hourly[].clouds for 48 hours
2. Forecast 2.5 - list[].clouds.all at 3-hour steps (fallback for keys
   without a One Call subscription)
"""

import httpx
import logging
from typing import Any, Dict, List

from cloud_bulletin.providers.base import CloudProvider, SeriesPoint, check_response, clean_pct, from_epoch, sort_series
from cloud_bulletin.regions import SamplePoint
from cloud_bulletin.resilience import ProviderUnavailable, first_success

logger = logging.getLogger(__name__)


class OpenWeatherMapProvider(CloudProvider):
    """Provider for OpenWeatherMap cloud cover."""

    ONECALL_URL = "https://api.openweathermap.org/data/3.0/onecall"
    FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"

    def __init__(self, api_key: str, hours: int = 48):
        if not api_key:
            raise ValueError("OpenWeatherMap requires an API key")
        self.api_key = api_key
        self.hours = hours
        self.name = "openweathermap"

    def _params(self, point: SamplePoint) -> Dict[str, Any]:
        return {"lat": f"{point.lat:.4f}", "lon": f"{point.lon:.4f}", "appid": self.api_key}

    async def fetch_series(self, point: SamplePoint, client: httpx.AsyncClient) -> List[SeriesPoint]:
        async def onecall():
            params = self._params(point)
            params["exclude"] = "current,minutely,daily,alerts"
            resp = await client.get(self.ONECALL_URL, params=params)
            return self.parse_onecall(check_response(self.name, resp))

        async def forecast():
            resp = await client.get(self.FORECAST_URL, params=self._params(point))
            return self.parse_forecast(check_response(self.name, resp))

        series = await first_success(
            [("onecall-3.0", onecall), ("forecast-2.5", forecast)],
            what=self.name,
        )
        logger.info(f"[OpenWeatherMapProvider] {point.key}: {len(series)} records")
        return series

    def parse_onecall(self, data: Any) -> List[SeriesPoint]:
        hourly = data.get("hourly") if isinstance(data, dict) else None
        if not isinstance(hourly, list) or not hourly:
            raise ProviderUnavailable(self.name, "One Call response has no hourly list")

        series: List[SeriesPoint] = []
        for item in hourly[: self.hours]:
            if not isinstance(item, dict) or "dt" not in item:
                continue
            series.append({"time": from_epoch(item["dt"]), "cloud_cover": clean_pct(item.get("clouds"))})
        return sort_series(series)

    def parse_forecast(self, data: Any) -> List[SeriesPoint]:
        entries = data.get("list") if isinstance(data, dict) else None
        if not isinstance(entries, list) or not entries:
            raise ProviderUnavailable(self.name, "forecast response has no list")

        series: List[SeriesPoint] = []
        for item in entries:
            if not isinstance(item, dict) or "dt" not in item:
                continue
            clouds = item.get("clouds") or {}
            value = clouds.get("all") if isinstance(clouds, dict) else None
            series.append({"time": from_epoch(item["dt"]), "cloud_cover": clean_pct(value)})
        return sort_series(series)[: max(1, self.hours // 3)]
