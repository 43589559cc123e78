"""
Runtime configuration for Cloud Bulletin.

All knobs come from environment variables (a local .env file is honoured via
python-dotenv) with defaults matching the published bulletin:

    CLOUD_BULLETIN_MODELS          gfs_seamless,icon_seamless,ecmwf_ifs025,best_match
    CLOUD_BULLETIN_SOLAR_WINDOW    09-16
    CLOUD_BULLETIN_THRESHOLDS      10,30,50,75
    CLOUD_BULLETIN_HYSTERESIS      3
    CLOUD_BULLETIN_BIAS_ALPHA      0.2
    CLOUD_BULLETIN_LAYER_WEIGHTS   0.6,0.3,0.1
    OPENWEATHER_API_KEY            (OpenWeatherMap disabled when empty)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLOUD_BULLETIN_"

DEFAULT_MODELS = ["gfs_seamless", "icon_seamless", "ecmwf_ifs025", "best_match"]

# IST, UTC+5:30
DISPLAY_TZ = "Asia/Kolkata"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_floats(name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    value = _env(name)
    if value is None:
        return default
    return tuple(float(part) for part in value.split(",") if part.strip())


def _env_list(name: str, default: List[str]) -> List[str]:
    value = _env(name)
    if value is None:
        return list(default)
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class BulletinConfig:
    """Everything the pipeline needs that is not code."""

    # Providers
    open_meteo_enabled: bool = True
    open_meteo_models: List[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    nasa_power_enabled: bool = True
    openweather_api_key: str = field(default="", repr=False)
    http_timeout_seconds: float = 30.0
    max_retries: int = 2

    # Pipeline parameters
    timezone: str = DISPLAY_TZ
    solar_window: str = "09-16"
    horizon_hours: int = 48
    history_hours: int = 12
    thresholds: Tuple[float, ...] = (10.0, 30.0, 50.0, 75.0)
    hysteresis_margin: float = 3.0
    bias_alpha: float = 0.2
    layer_weights: Tuple[float, ...] = (0.6, 0.3, 0.1)
    use_layers: bool = False
    trim_outliers: bool = True
    smooth: bool = False

    # Scheduling
    refresh_interval_hours: int = 3

    # Files
    catalog_path: Optional[Path] = None
    output_dir: Path = Path("outputs")
    cache_dir: Path = Path("outputs/cache")
    bias_db_path: Path = Path("bias.db")
    log_level: str = "INFO"

    @property
    def openweather_enabled(self) -> bool:
        return bool(self.openweather_api_key)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "BulletinConfig":
        """Build a config from the process environment (after loading .env)."""
        load_dotenv(dotenv_path)

        catalog = _env("CATALOG")
        config = cls(
            open_meteo_enabled=_env_bool("OPEN_METEO", True),
            open_meteo_models=_env_list("MODELS", DEFAULT_MODELS),
            nasa_power_enabled=_env_bool("NASA_POWER", True),
            openweather_api_key=os.getenv("OPENWEATHER_API_KEY", "").strip(),
            http_timeout_seconds=float(_env("HTTP_TIMEOUT", "30")),
            max_retries=int(_env("MAX_RETRIES", "2")),
            timezone=_env("TIMEZONE", DISPLAY_TZ),
            solar_window=_env("SOLAR_WINDOW", "09-16"),
            horizon_hours=int(_env("HORIZON_HOURS", "48")),
            history_hours=int(_env("HISTORY_HOURS", "12")),
            thresholds=_env_floats("THRESHOLDS", (10.0, 30.0, 50.0, 75.0)),
            hysteresis_margin=float(_env("HYSTERESIS", "3")),
            bias_alpha=float(_env("BIAS_ALPHA", "0.2")),
            layer_weights=_env_floats("LAYER_WEIGHTS", (0.6, 0.3, 0.1)),
            use_layers=_env_bool("USE_LAYERS", False),
            trim_outliers=_env_bool("TRIM_OUTLIERS", True),
            smooth=_env_bool("SMOOTH", False),
            refresh_interval_hours=int(_env("REFRESH_HOURS", "3")),
            catalog_path=Path(catalog) if catalog else None,
            output_dir=Path(_env("OUTPUT_DIR", "outputs")),
            cache_dir=Path(_env("CACHE_DIR", "outputs/cache")),
            bias_db_path=Path(_env("BIAS_DB", "bias.db")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        logger.debug(f"[BulletinConfig] Loaded: {config}")
        return config
