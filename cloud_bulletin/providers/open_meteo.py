"""
Open-Meteo Cloud Cover Provider for Cloud Bulletin

Fetches hourly cloud cover from the Open-Meteo forecast API, one request per
weather model so that the ensemble can take a median across models.

Open-Meteo serves several global models without an API key, including:
- GFS (US Global Forecast System)
- ICON (German DWD model)
- IFS (ECMWF)
- best_match (Open-Meteo's own blend)

Times come back already in IST because the request sets timezone=Asia/Kolkata.

Irradiance rides along in the same request (shortwave, direct and diffuse
radiation). Hours where the model has no radiation get a clear-sky estimate
attenuated by the hour's cloud cover.
"""

import httpx
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from cloud_bulletin.ensemble import LayerWeights, DEFAULT_LAYER_WEIGHTS
from cloud_bulletin.providers.base import IST, CloudProvider, SeriesPoint, check_response, clean_pct, sort_series
from cloud_bulletin.regions import SamplePoint
from cloud_bulletin.resilience import ProviderUnavailable
from cloud_bulletin.solar import estimate_ghi, pick_ghi

logger = logging.getLogger(__name__)

BASE_URL = "https://api.open-meteo.com/v1/forecast"

CLOUD_VARS = ["cloud_cover", "cloud_cover_low", "cloud_cover_mid", "cloud_cover_high"]
RADIATION_VARS = ["shortwave_radiation", "direct_radiation", "diffuse_radiation"]
HOURLY_VARS = CLOUD_VARS + RADIATION_VARS


def _column(hourly: Dict[str, Any], var: str, model: str) -> List[Any]:
    """Open-Meteo suffixes variables with the model name when several models are requested."""
    if var in hourly:
        return hourly[var] or []
    return hourly.get(f"{var}_{model}") or []


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(value) else value


class OpenMeteoProvider(CloudProvider):
    """
    One Open-Meteo weather model.

    With use_layers=True the effective cover is always the weighted
    low/mid/high combination; otherwise total cloud_cover is used and the
    layer combination only fills hours where the total is missing.
    """

    def __init__(
        self,
        model: str = "best_match",
        forecast_hours: int = 48,
        past_hours: int = 12,
        use_layers: bool = False,
        layer_weights: LayerWeights = DEFAULT_LAYER_WEIGHTS,
        timezone: str = "Asia/Kolkata",
    ):
        self.model = model
        self.forecast_hours = forecast_hours
        self.past_hours = past_hours
        self.use_layers = use_layers
        self.layer_weights = layer_weights
        self.timezone = timezone
        self.name = f"open-meteo:{model}"

    def build_params(self, point: SamplePoint) -> Dict[str, Any]:
        return {
            "latitude": f"{point.lat:.4f}",
            "longitude": f"{point.lon:.4f}",
            "hourly": ",".join(HOURLY_VARS),
            "models": self.model,
            "timezone": self.timezone,
            "forecast_hours": self.forecast_hours,
            "past_hours": self.past_hours,
        }

    async def fetch_series(self, point: SamplePoint, client: httpx.AsyncClient) -> List[SeriesPoint]:
        """
        Fetch the hourly cloud-cover series at one point.

        Raises:
            ProviderUnavailable: transport failure, non-2xx, or a body without hourly data
        """
        params = self.build_params(point)
        logger.debug(f"[OpenMeteoProvider] {self.model} request params: {params}")

        resp = await client.get(BASE_URL, params=params)
        logger.debug(f"[OpenMeteoProvider] {self.model} response status: {resp.status_code}")
        data = check_response(self.name, resp)

        series = self.parse(data, point)
        logger.info(f"[OpenMeteoProvider] {self.model} @ {point.key}: {len(series)} hourly records")
        return series

    def parse(self, data: Any, point: Optional[SamplePoint] = None) -> List[SeriesPoint]:
        """
        Hourly records from an Open-Meteo body.

        "ghi" is set where the model has radiation, or where `point` is given
        and a cloud-based estimate can be made.
        """
        if not isinstance(data, dict) or not isinstance(data.get("hourly"), dict):
            raise ProviderUnavailable(self.name, "response has no hourly block")

        hourly = data["hourly"]
        times = hourly.get("time") or []
        if not times:
            raise ProviderUnavailable(self.name, "response has no hourly timestamps")

        total = _column(hourly, "cloud_cover", self.model)
        low = _column(hourly, "cloud_cover_low", self.model)
        mid = _column(hourly, "cloud_cover_mid", self.model)
        high = _column(hourly, "cloud_cover_high", self.model)
        shortwave = _column(hourly, "shortwave_radiation", self.model)
        direct = _column(hourly, "direct_radiation", self.model)
        diffuse = _column(hourly, "diffuse_radiation", self.model)

        def at(values: List[Any], i: int) -> Optional[int]:
            return clean_pct(values[i]) if i < len(values) else None

        def num(values: List[Any], i: int) -> Optional[float]:
            return _number(values[i]) if i < len(values) else None

        series: List[SeriesPoint] = []
        for i, t in enumerate(times):
            layered = self.layer_weights.combine(at(low, i), at(mid, i), at(high, i))
            if self.use_layers:
                value = layered
            else:
                value = at(total, i)
                if value is None:
                    value = layered

            cloud = clean_pct(value)
            record: SeriesPoint = {"time": t[:13] + ":00", "cloud_cover": cloud}

            fallback = None
            if point is not None and cloud is not None:
                local = datetime.fromisoformat(record["time"]).replace(tzinfo=IST)
                fallback = estimate_ghi(local, point.lat, point.lon, cloud)
            ghi = pick_ghi(num(shortwave, i), num(direct, i), num(diffuse, i), fallback)
            if ghi is not None:
                record["ghi"] = ghi

            series.append(record)

        return sort_series(series)


def build_open_meteo_providers(
    models: List[str],
    forecast_hours: int = 48,
    past_hours: int = 12,
    use_layers: bool = False,
    layer_weights: LayerWeights = DEFAULT_LAYER_WEIGHTS,
) -> List[OpenMeteoProvider]:
    """One provider per model."""
    return [
        OpenMeteoProvider(
            model=m,
            forecast_hours=forecast_hours,
            past_hours=past_hours,
            use_layers=use_layers,
            layer_weights=layer_weights,
        )
        for m in models
    ]
