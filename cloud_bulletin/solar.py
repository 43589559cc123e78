"""
Solar Irradiance Estimates for Cloud Bulletin

Open-Meteo reports global horizontal irradiance (GHI) directly. When a model
leaves an hour empty the GHI is estimated from cloud cover instead:

    GHI = clear_sky_ghi(time, lat, lon) * cloud_to_kt(cloud_pct)

Strategy:
- Base: shortwave_radiation from the model
- Fallback 1: direct_radiation + diffuse_radiation
- Fallback 2: clear-sky GHI attenuated by a clearness index derived from cloud cover

The clear-sky model is a simple solar-geometry estimate (declination, hour
angle, one bulk transmittance), good enough to rank days, not to size a plant.
"""

import math
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

SOLAR_CONSTANT = 1361.0  # W/m2
BULK_TRANSMITTANCE = 0.75

# Clearness index never drops below this, even under full overcast (diffuse light)
MIN_CLEARNESS = 0.05


def clear_sky_ghi(moment: datetime, lat: float, lon: float) -> float:
    """
    Theoretical clear-sky GHI at a place and time.

    Args:
        moment: Aware datetime (naive is taken as UTC)
        lat: Latitude in degrees
        lon: Longitude in degrees, east positive

    Returns:
        GHI in W/m2 (0 if the sun is below the horizon)
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    day_of_year = utc.timetuple().tm_yday

    # Earth-sun distance correction
    eccentricity = 1 + 0.033 * math.cos(2 * math.pi * day_of_year / 365)
    declination = math.radians(23.45) * math.sin(2 * math.pi * (284 + day_of_year) / 365)

    # Local solar time, ~4 minutes per degree of longitude
    minutes = utc.hour * 60 + utc.minute + lon * 4
    hour_angle = math.radians(minutes / 4 - 180)

    phi = math.radians(lat)
    cos_zenith = (math.sin(phi) * math.sin(declination) +
                  math.cos(phi) * math.cos(declination) * math.cos(hour_angle))

    if cos_zenith <= 0:
        return 0.0  # night

    return max(0.0, SOLAR_CONSTANT * eccentricity * cos_zenith * BULK_TRANSMITTANCE)


def cloud_to_kt(cloud_pct: float, alpha: float = 0.75, beta: float = 1.1) -> float:
    """
    Clearness index from cloud cover: kt = 1 - alpha * c^beta, c in [0, 1].

    Clamped to [MIN_CLEARNESS, 1].
    """
    c = min(100.0, max(0.0, float(cloud_pct))) / 100.0
    kt = 1 - alpha * c ** beta
    return min(1.0, max(MIN_CLEARNESS, kt))


def estimate_ghi(moment: datetime, lat: float, lon: float, cloud_pct: Optional[float]) -> Optional[float]:
    """Clear-sky GHI attenuated by cloud cover; None without a cloud value."""
    if cloud_pct is None:
        return None
    return clear_sky_ghi(moment, lat, lon) * cloud_to_kt(cloud_pct)


def pick_ghi(
    shortwave: Optional[float],
    direct: Optional[float],
    diffuse: Optional[float],
    fallback: Optional[float] = None,
) -> Optional[float]:
    """
    Best available GHI for one hour, rounded to 0.1 W/m2.

    Args:
        shortwave: Model shortwave_radiation (GHI)
        direct: Model direct_radiation (horizontal)
        diffuse: Model diffuse_radiation
        fallback: Cloud-based estimate used when the model gave nothing

    Returns:
        Non-negative GHI, or None when no source has a value
    """
    if shortwave is not None:
        value = shortwave
    elif direct is not None and diffuse is not None:
        value = direct + diffuse
    elif fallback is not None:
        logger.debug(f"[solar] No model radiation, using clear-sky estimate {fallback:.0f}W")
        value = fallback
    else:
        return None
    return round(max(0.0, float(value)), 1)
