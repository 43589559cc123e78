"""
Providers package for Cloud Bulletin

Each provider turns one sample point into an hourly cloud-cover series
[{"time": "YYYY-MM-DDTHH:00" (IST), "cloud_cover": int | None}]:

1. Open-Meteo - one provider per model (GFS, ICON, ECMWF IFS, best match)
2. NASA POWER - satellite-derived CLOUD_AMT, mostly recent history
3. OpenWeatherMap - One Call 3.0 with fallback to the 2.5 forecast (API key)
"""

from cloud_bulletin.providers.base import (
    CloudProvider,
    SeriesPoint,
    IST,
    TIME_FORMAT,
    clean_pct,
)

from cloud_bulletin.providers.open_meteo import (
    OpenMeteoProvider,
    build_open_meteo_providers,
)

from cloud_bulletin.providers.nasa_power import (
    NasaPowerProvider,
)

from cloud_bulletin.providers.openweathermap import (
    OpenWeatherMapProvider,
)

__all__ = [
    # Shared
    "CloudProvider",
    "SeriesPoint",
    "IST",
    "TIME_FORMAT",
    "clean_pct",
    # Open-Meteo (multi-model)
    "OpenMeteoProvider",
    "build_open_meteo_providers",
    # NASA POWER (satellite history)
    "NasaPowerProvider",
    # OpenWeatherMap (keyed)
    "OpenWeatherMapProvider",
]
