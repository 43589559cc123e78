"""
Tests for the cloud ensemble engine

Run with: python -m pytest tests/test_ensemble.py -v
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_bulletin.ensemble import (
    CloudEnsembleEngine,
    LayerWeights,
    series_to_pandas,
    trim_outliers,
)
from cloud_bulletin.resilience import NoDataForRegion


def flat(value, hours=3, start="2025-01-15T09:00"):
    times = pd.date_range(start, periods=hours, freq="h")
    return [{"time": t.strftime("%Y-%m-%dT%H:00"), "cloud_cover": value} for t in times]


class TestLayerWeights:

    def test_default_combination(self):
        w = LayerWeights()
        assert w.combine(100, 0, 0) == pytest.approx(60)
        assert w.combine(50, 50, 50) == pytest.approx(50)

    def test_missing_layer_renormalises(self):
        w = LayerWeights()
        # only low + mid: (0.6*40 + 0.3*70) / 0.9
        assert w.combine(40, 70, None) == pytest.approx(50)

    def test_all_missing(self):
        assert LayerWeights().combine(None, None, None) is None

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            LayerWeights(0.5, 0.3, 0.1)


class TestMedianAcrossProviders:

    @pytest.fixture
    def engine(self):
        return CloudEnsembleEngine()

    def test_outlier_resistance(self, engine):
        logger.info("[TEST] Providers 10 / 12 / 95 -> median 12")
        result = engine.build_region_series("Punjab:Punjab", {
            "open-meteo:gfs_seamless": [flat(10)],
            "open-meteo:icon_seamless": [flat(12)],
            "open-meteo:ecmwf_ifs025": [flat(95)],
        })
        assert list(result.cloud_cover) == [12.0, 12.0, 12.0]
        assert result.variance_level == "CRITICAL"
        assert result.max_spread == 85.0

    def test_single_provider_is_median_of_one(self, engine):
        result = engine.build_region_series("Punjab:Punjab", {"open-meteo:best_match": [flat(42)]},
                                            failed=["nasa-power"])
        assert list(result.cloud_cover) == [42.0, 42.0, 42.0]
        assert result.providers_used == ["open-meteo:best_match"]
        assert result.providers_failed == ["nasa-power"]

    def test_mean_across_points_before_median(self, engine):
        logger.info("[TEST] Two points 20 / 40 average to 30 before the provider median")
        result = engine.build_region_series("Rajasthan:West Rajasthan", {
            "a": [flat(20), flat(40)],
            "b": [flat(30)],
            "c": [flat(90)],
        })
        assert list(result.cloud_cover) == [30.0, 30.0, 30.0]

    def test_missing_values_are_not_zero(self, engine):
        series = flat(50)
        series[1]["cloud_cover"] = None
        averaged = engine.average_points([series, flat(70)])
        assert list(averaged) == [60.0, 70.0, 60.0]

    def test_nothing_usable_raises(self, engine):
        with pytest.raises(NoDataForRegion):
            engine.build_region_series("Punjab:Punjab", {})
        with pytest.raises(NoDataForRegion):
            engine.build_region_series("Punjab:Punjab", {"a": [flat(None)]})

    def test_hour_missing_from_one_provider(self, engine):
        a = flat(10, hours=3)
        b = flat(30, hours=2)
        frame = engine.median_providers({"a": series_to_pandas(a), "b": series_to_pandas(b)})
        assert list(frame["cloud_cover"]) == [20.0, 20.0, 10.0]
        assert list(frame["n_sources"]) == [2, 2, 1]

    def test_smoothing(self):
        engine = CloudEnsembleEngine(smooth=True)
        series = flat(10, hours=5)
        series[2]["cloud_cover"] = 90
        result = engine.build_region_series("k", {"a": [series]})
        assert list(result.cloud_cover) == [10.0, 10.0, 10.0, 10.0, 10.0]


def with_ghi(series, ghi):
    return [dict(p, ghi=ghi) for p in series]


class TestIrradiance:

    def test_ghi_median_across_reporting_providers(self):
        logger.info("[TEST] GHI 100 / 300 / 900 plus one cloud-only provider -> 300")
        result = CloudEnsembleEngine().build_region_series("Punjab:Punjab", {
            "a": [with_ghi(flat(20), 100.0)],
            "b": [with_ghi(flat(20), 300.0)],
            "c": [with_ghi(flat(20), 900.0)],
            "nasa-power": [flat(20)],
        })
        assert list(result.ghi) == [300.0, 300.0, 300.0]
        assert list(result.cloud_cover) == [20.0, 20.0, 20.0]

    def test_points_averaged_first(self):
        result = CloudEnsembleEngine().build_region_series("Rajasthan:West Rajasthan", {
            "a": [with_ghi(flat(20), 600.0), with_ghi(flat(40), 400.0)],
        })
        assert list(result.ghi) == [500.0, 500.0, 500.0]

    def test_cloud_only_providers_leave_ghi_empty(self):
        result = CloudEnsembleEngine().build_region_series("Punjab:Punjab", {"a": [flat(35)]})
        assert result.ghi.isna().all()
        assert result.as_records()[0] == {"time": "2025-01-15T09:00", "cloud_cover": 35,
                                          "ghi_wm2": None, "n_sources": 1}

    def test_records_round_half_up(self):
        result = CloudEnsembleEngine().build_region_series("Punjab:Punjab", {
            "a": [with_ghi(flat(74), 250.25)],
            "b": [with_ghi(flat(75), 250.25)],
        })
        assert result.as_records()[0]["cloud_cover"] == 75


class TestTrimOutliers:

    def test_short_input_untouched(self):
        values = np.array([1.0, 2.0, 100.0])
        assert list(trim_outliers(values)) == [1.0, 2.0, 100.0]

    def test_trims_ends_with_ten_values(self):
        values = np.array([0.0] + [50.0] * 8 + [100.0])
        assert list(trim_outliers(values)) == [50.0] * 8


class TestSeriesToPandas:

    def test_duplicates_and_order(self):
        s = series_to_pandas([
            {"time": "2025-01-15T10:00", "cloud_cover": 5},
            {"time": "2025-01-15T09:00", "cloud_cover": 7},
            {"time": "2025-01-15T10:00", "cloud_cover": 99},
        ])
        assert list(s) == [7.0, 5.0]

    def test_empty(self):
        assert series_to_pandas([]).empty
