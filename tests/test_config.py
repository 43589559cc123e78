"""
Tests for environment-driven configuration

Run with: python -m pytest tests/test_config.py -v
"""

import logging
import sys
from pathlib import Path

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_bulletin.config import DEFAULT_MODELS, BulletinConfig


class TestBulletinConfig:

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OPENWEATHER_API_KEY", raising=False)
        config = BulletinConfig.from_env(tmp_path / "absent.env")
        assert config.open_meteo_models == DEFAULT_MODELS
        assert config.thresholds == (10.0, 30.0, 50.0, 75.0)
        assert config.hysteresis_margin == 3.0
        assert config.bias_alpha == 0.2
        assert config.solar_window == "09-16"
        assert not config.openweather_enabled

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLOUD_BULLETIN_MODELS", "gfs_seamless, icon_seamless")
        monkeypatch.setenv("CLOUD_BULLETIN_THRESHOLDS", "15,35,55,80")
        monkeypatch.setenv("CLOUD_BULLETIN_NASA_POWER", "false")
        monkeypatch.setenv("CLOUD_BULLETIN_CATALOG", "regions.json")
        monkeypatch.setenv("OPENWEATHER_API_KEY", "abc")

        config = BulletinConfig.from_env(tmp_path / "absent.env")

        assert config.open_meteo_models == ["gfs_seamless", "icon_seamless"]
        assert config.thresholds == (15.0, 35.0, 55.0, 80.0)
        assert config.nasa_power_enabled is False
        assert config.catalog_path == Path("regions.json")
        assert config.openweather_enabled

    def test_dotenv_file(self, tmp_path, monkeypatch):
        # recorded so the value load_dotenv writes is removed afterwards
        monkeypatch.setenv("CLOUD_BULLETIN_HYSTERESIS", "0")
        monkeypatch.delenv("CLOUD_BULLETIN_HYSTERESIS")
        env = tmp_path / ".env"
        env.write_text("CLOUD_BULLETIN_HYSTERESIS=5\n", encoding="utf-8")
        config = BulletinConfig.from_env(env)
        assert config.hysteresis_margin == 5.0

    def test_api_key_kept_out_of_repr(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENWEATHER_API_KEY", "s3cr3t-key")
        config = BulletinConfig.from_env(tmp_path / "absent.env")
        assert config.openweather_api_key == "s3cr3t-key"
        assert "s3cr3t-key" not in repr(config)
