"""
Tests for the schedule driver

These tests verify that:
1. A full cycle classifies every region and merges split states by max
2. A failing region keeps its previous result, marked stale
3. A region that never had data reports no_data (no default bucket)
4. Hysteresis carries across cycles and is reset at civil midnight
5. Triggers align to 3-hour IST boundaries
6. The current-cycle cache and warm start avoid refetching

Run with: python -m pytest tests/test_scheduler.py -v
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import httpx
import pytest

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_bulletin.bias import BiasCorrector, BiasStore
from cloud_bulletin.config import BulletinConfig
from cloud_bulletin.fetcher import SeriesFetcher
from cloud_bulletin.providers import CloudProvider
from cloud_bulletin.regions import RegionCatalog
from cloud_bulletin.resilience import NO_RETRY_CONFIG
from cloud_bulletin.scheduler import (
    STATUS_ERROR,
    STATUS_NO_DATA,
    STATUS_OK,
    STATUS_STALE,
    build_driver,
    is_midnight_rollover,
    next_trigger,
    to_payload,
)

IST = ZoneInfo("Asia/Kolkata")


class LatitudeProvider(CloudProvider):
    """Flat series per sample point, value looked up by latitude; missing latitude = failure."""

    def __init__(self, values, name="fake", ghi=None):
        self.name = name
        self.values = values
        self.ghi = ghi or {}
        self.calls = 0

    async def fetch_series(self, point, client):
        self.calls += 1
        if point.lat not in self.values:
            raise httpx.ConnectError(f"no route to {point.key}")
        value = self.values[point.lat]
        times = [datetime(2025, 1, 15, 0) + timedelta(hours=i) for i in range(96)]
        series = [{"time": t.strftime("%Y-%m-%dT%H:00"), "cloud_cover": value} for t in times]
        if point.lat in self.ghi:
            for record in series:
                record["ghi"] = self.ghi[point.lat]
        return series


# Punjab 31.0 | West Rajasthan 26.9 + 27.6 | East Rajasthan 26.0
ALL_OK = {31.0: 5, 26.9: 20, 27.6: 20, 26.0: 70}


def at(day, hour):
    return datetime(2025, 1, day, hour, 0, tzinfo=IST)


@pytest.fixture
def config(tmp_path):
    return BulletinConfig(cache_dir=tmp_path / "cache", output_dir=tmp_path, history_hours=3)


def make_driver(config, provider, catalog=None, bias=None, rendered=None):
    fetcher = SeriesFetcher([provider], retry_config=NO_RETRY_CONFIG)
    renderer = rendered.append if rendered is not None else None
    return build_driver(config, catalog=catalog or RegionCatalog.default(), bias=bias,
                        renderer=renderer, fetcher=fetcher)


def day_bucket(result, day):
    return next(h for h in result.horizon if h["day"] == day)


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_full_cycle(self, config):
        logger.info("[TEST] Punjab 5%, West Rajasthan 20%, East Rajasthan 70%")
        rendered = []
        driver = make_driver(config, LatitudeProvider(dict(ALL_OK)), rendered=rendered)

        results = await driver.run_cycle(at(15, 0))

        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Clear Sky"
        assert day_bucket(results["Rajasthan:West Rajasthan"], 1)["bucket"] == "Low Cloud Cover"
        assert day_bucket(results["Rajasthan:East Rajasthan"], 2)["bucket"] == "High Cloud Cover"

        merged = results["Rajasthan:Rajasthan"]
        logger.info(f"[TEST] Merged Rajasthan: {merged.horizon}")
        assert merged.merged_from == ["Rajasthan:West Rajasthan", "Rajasthan:East Rajasthan"]
        assert day_bucket(merged, 1)["cloud_pct"] == 70
        assert day_bucket(merged, 1)["bucket"] == "High Cloud Cover"
        assert merged.daily[0]["date"] == "2025-01-15"

        punjab = results["Punjab:Punjab"]
        assert punjab.status == STATUS_OK
        assert punjab.daily[0] == {"date": "2025-01-15", "cloud_pct": 5, "raw_pct": 5, "bucket": "Clear Sky",
                                   "ghi_wm2": None}
        assert len(punjab.hourly) == 48
        assert punjab.hourly[0]["bucket"] == "Clear Sky"
        assert [p["time"] for p in punjab.history] == ["2025-01-14T22:00", "2025-01-14T23:00", "2025-01-15T00:00"]
        assert punjab.history[0]["cloud_cover"] is None

        assert len(rendered) == 1
        assert set(rendered[0]) == set(results)

    @pytest.mark.asyncio
    async def test_failed_region_keeps_previous_result(self, config):
        provider = LatitudeProvider(dict(ALL_OK))
        driver = make_driver(config, provider)
        await driver.run_cycle(at(15, 0))

        logger.info("[TEST] East Rajasthan provider goes down on the next cycle")
        del provider.values[26.0]
        provider.values[31.0] = 60
        results = await driver.run_cycle(at(15, 3))

        east = results["Rajasthan:East Rajasthan"]
        assert east.status == STATUS_STALE
        assert day_bucket(east, 1)["cloud_pct"] == 70
        assert "East Rajasthan" in east.error

        assert results["Punjab:Punjab"].status == STATUS_OK
        assert day_bucket(results["Punjab:Punjab"], 1)["cloud_pct"] == 60
        assert results["Rajasthan:Rajasthan"].status == STATUS_STALE

    @pytest.mark.asyncio
    async def test_region_without_history_reports_no_data(self, config):
        values = dict(ALL_OK)
        del values[31.0]
        driver = make_driver(config, LatitudeProvider(values))

        results = await driver.run_cycle(at(15, 0))

        punjab = results["Punjab:Punjab"]
        assert punjab.status == STATUS_NO_DATA
        assert punjab.horizon == []
        assert results["Rajasthan:West Rajasthan"].status == STATUS_OK

    @pytest.mark.asyncio
    async def test_one_of_two_points_failing_still_counts(self, config):
        values = dict(ALL_OK)
        del values[27.6]
        values[26.9] = 40
        driver = make_driver(config, LatitudeProvider(values))

        results = await driver.run_cycle(at(15, 0))
        assert day_bucket(results["Rajasthan:West Rajasthan"], 1)["cloud_pct"] == 40

    @pytest.mark.asyncio
    async def test_rejected_catalog_entry(self, config):
        catalog = RegionCatalog.from_mapping({
            "Punjab:Punjab": [[31.0, 75.3]],
            "Haryana:Haryana": [],
        })
        driver = make_driver(config, LatitudeProvider(dict(ALL_OK)), catalog=catalog)

        results = await driver.run_cycle(at(15, 0))

        assert results["Haryana:Haryana"].status == STATUS_ERROR
        assert results["Punjab:Punjab"].status == STATUS_OK

    @pytest.mark.asyncio
    async def test_bias_applied_before_classification(self, config, tmp_path):
        store = BiasStore(db_path=tmp_path / "bias.db")
        try:
            store.set("Punjab:Punjab", 10.0)
            values = dict(ALL_OK)
            values[31.0] = 25
            driver = make_driver(config, LatitudeProvider(values), bias=BiasCorrector(store))

            results = await driver.run_cycle(at(15, 0))

            day1 = day_bucket(results["Punjab:Punjab"], 1)
            assert day1 == {"day": 1, "cloud_pct": 15, "raw_pct": 25, "bucket": "Low Cloud Cover", "ghi_wm2": None}
            assert results["Punjab:Punjab"].hourly[0]["cloud_cover"] == 15
        finally:
            store.close()

    @pytest.mark.asyncio
    async def test_irradiance_reported_with_cloud_cover(self, config):
        logger.info("[TEST] GHI: Punjab 500, West Rajasthan 600/400, East Rajasthan 300")
        provider = LatitudeProvider(dict(ALL_OK), ghi={31.0: 500.0, 26.9: 600.0, 27.6: 400.0, 26.0: 300.0})
        driver = make_driver(config, provider)

        results = await driver.run_cycle(at(15, 0))

        punjab = results["Punjab:Punjab"]
        assert punjab.daily[0]["ghi_wm2"] == 500
        assert day_bucket(punjab, 1)["ghi_wm2"] == 500
        assert punjab.hourly[0]["ghi_wm2"] == 500.0

        assert day_bucket(results["Rajasthan:West Rajasthan"], 1)["ghi_wm2"] == 500

        merged = results["Rajasthan:Rajasthan"]
        assert merged.daily[0]["ghi_wm2"] == 300
        assert day_bucket(merged, 2)["ghi_wm2"] == 300
        assert merged.hourly[0]["ghi_wm2"] == 300.0


class TestHysteresisAcrossCycles:

    @pytest.mark.asyncio
    async def test_sticky_until_midnight(self, config):
        provider = LatitudeProvider(dict(ALL_OK))
        driver = make_driver(config, provider)

        provider.values[31.0] = 28
        results = await driver.run_cycle(at(15, 18))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Low Cloud Cover"

        logger.info("[TEST] 31% next cycle stays Low (inside 7..33)")
        provider.values[31.0] = 31
        results = await driver.run_cycle(at(15, 21))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Low Cloud Cover"

        logger.info("[TEST] After civil midnight the memory is cleared -> Medium")
        results = await driver.run_cycle(at(16, 0))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Medium Cloud Cover"

    @pytest.mark.asyncio
    async def test_restart_next_day_forgets_yesterday(self, config):
        provider = LatitudeProvider(dict(ALL_OK))
        provider.values[31.0] = 28
        results = await make_driver(config, provider).run_cycle(at(15, 21))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Low Cloud Cover"

        logger.info("[TEST] Fresh process next morning: 31% must not inherit yesterday's Low")
        provider.values[31.0] = 31
        restarted = make_driver(config, provider)
        assert restarted.warm_start()
        results = await restarted.run_cycle(at(16, 9))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Medium Cloud Cover"

    @pytest.mark.asyncio
    async def test_restart_same_day_keeps_memory(self, config):
        provider = LatitudeProvider(dict(ALL_OK))
        provider.values[31.0] = 28
        await make_driver(config, provider).run_cycle(at(15, 18))

        provider.values[31.0] = 31
        restarted = make_driver(config, provider)
        assert restarted.warm_start()
        results = await restarted.run_cycle(at(15, 21))
        assert day_bucket(results["Punjab:Punjab"], 1)["bucket"] == "Low Cloud Cover"


class TestCache:

    @pytest.mark.asyncio
    async def test_current_cycle_cache_reused(self, config):
        provider = LatitudeProvider(dict(ALL_OK))
        driver = make_driver(config, provider)
        await driver.run_cycle(at(15, 0))
        calls = provider.calls

        results = await driver.run_cycle(at(15, 1), use_cache=True)
        assert provider.calls == calls
        assert results["Punjab:Punjab"].status == STATUS_OK

    @pytest.mark.asyncio
    async def test_warm_start_provides_stale_fallback(self, config):
        first = make_driver(config, LatitudeProvider(dict(ALL_OK)))
        await first.run_cycle(at(15, 0))

        logger.info("[TEST] Restart with every provider down")
        second = make_driver(config, LatitudeProvider({}))
        assert second.warm_start()
        results = await second.run_cycle(at(15, 3))

        punjab = results["Punjab:Punjab"]
        assert punjab.status == STATUS_STALE
        assert day_bucket(punjab, 1)["bucket"] == "Clear Sky"

    def test_payload_shape(self, config):
        payload = to_payload({}, at(15, 0), config)
        assert payload["timezone"] == "Asia/Kolkata"
        assert [entry["bucket"] for entry in payload["legend"]][0] == "Clear Sky"
        assert payload["legend"][-1]["range"] == [75.0, 100.0]


class TestTriggers:

    @pytest.mark.parametrize("now,expected", [
        (at(15, 10).replace(minute=15), at(15, 12)),
        (at(15, 0), at(15, 3)),
        (at(15, 21), at(16, 0)),
        (at(15, 23).replace(minute=59), at(16, 0)),
    ])
    def test_next_trigger(self, now, expected):
        assert next_trigger(now, 3) == expected

    def test_next_trigger_from_utc(self):
        # 04:40 UTC == 10:10 IST
        now = datetime(2025, 1, 15, 4, 40, tzinfo=ZoneInfo("UTC"))
        assert next_trigger(now, 3) == at(15, 12)

    def test_midnight_rollover(self):
        assert is_midnight_rollover(at(15, 23), at(16, 0))
        assert not is_midnight_rollover(at(15, 0), at(15, 23))
        assert not is_midnight_rollover(None, at(15, 0))
        # 18:40 UTC on the 15th is already the 16th in IST
        assert is_midnight_rollover(at(15, 21), datetime(2025, 1, 15, 18, 40, tzinfo=ZoneInfo("UTC")))
