"""
Tests for the cloud-cover classifier

These tests verify that:
1. Every percentage in [0, 100] lands in exactly one bucket
2. Boundaries are lower-inclusive / upper-exclusive, 100 is Overcast
3. Hysteresis keeps the previous bucket inside the widened band
4. Missing data yields no bucket instead of a default

Run with: python -m pytest tests/test_classifier.py -v
"""

import logging
import math
import sys
from pathlib import Path

import pytest

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

sys.path.insert(0, str(Path(__file__).parent.parent))

from cloud_bulletin.classifier import (
    Bucket,
    Classifier,
    Thresholds,
    clamp_pct,
    classify,
)


class TestClassify:
    """Stateless classification."""

    def test_every_value_has_exactly_one_bucket(self):
        logger.info("[TEST] Sweeping 0..100 in 0.25 steps...")
        ranges = Thresholds().ranges()
        p = 0.0
        while p <= 100.0:
            matches = [b for b, (lo, hi) in ranges.items() if lo <= p < hi]
            if p == 100.0:
                assert matches == []
                assert classify(p) == Bucket.OVERCAST
            else:
                assert len(matches) == 1, f"{p} matched {matches}"
                assert classify(p) == matches[0]
            p += 0.25

    @pytest.mark.parametrize("pct,expected", [
        (0, Bucket.CLEAR),
        (9.99, Bucket.CLEAR),
        (10, Bucket.LOW),
        (29.9, Bucket.LOW),
        (30, Bucket.MEDIUM),
        (50, Bucket.HIGH),
        (74.9, Bucket.HIGH),
        (75, Bucket.OVERCAST),
        (100, Bucket.OVERCAST),
    ])
    def test_boundaries(self, pct, expected):
        logger.info(f"[TEST] {pct}% -> {expected.label}")
        assert classify(pct) == expected

    def test_out_of_range_is_clamped(self):
        assert classify(-5) == Bucket.CLEAR
        assert classify(140) == Bucket.OVERCAST
        assert clamp_pct(-5) == 0.0
        assert clamp_pct(140) == 100.0

    def test_missing_has_no_bucket(self):
        assert classify(None) is None
        assert classify(math.nan) is None

    def test_custom_thresholds(self):
        thresholds = Thresholds.from_sequence([20, 40, 60, 80])
        assert classify(15, thresholds=thresholds) == Bucket.CLEAR
        assert classify(80, thresholds=thresholds) == Bucket.OVERCAST

    def test_thresholds_must_increase(self):
        with pytest.raises(ValueError):
            Thresholds(low=30, medium=10)
        with pytest.raises(ValueError):
            Thresholds.from_sequence([10, 30, 50])


class TestHysteresis:
    """Previous-bucket stickiness."""

    def test_stays_inside_widened_band(self):
        logger.info("[TEST] Previous Low, value 31 -> stays Low (band 7..33)")
        assert classify(31, previous=Bucket.LOW) == Bucket.LOW
        assert classify(32.9, previous=Bucket.LOW) == Bucket.LOW
        assert classify(7, previous=Bucket.LOW) == Bucket.LOW

    def test_leaves_band(self):
        assert classify(33, previous=Bucket.LOW) == Bucket.MEDIUM
        assert classify(6.9, previous=Bucket.LOW) == Bucket.CLEAR

    def test_without_previous_plain_ranges_apply(self):
        assert classify(31) == Bucket.MEDIUM

    def test_zero_margin_disables(self):
        assert classify(31, previous=Bucket.LOW, margin=0) == Bucket.MEDIUM

    def test_classifier_remembers_per_key(self):
        classifier = Classifier()
        assert classifier.classify_region("Punjab:Punjab", 28) == Bucket.LOW
        assert classifier.classify_region("Punjab:Punjab", 31) == Bucket.LOW
        assert classifier.classify_region("Punjab:Punjab", 35) == Bucket.MEDIUM
        # Another key has no memory
        assert classifier.classify_region("Rajasthan:East Rajasthan", 31) == Bucket.MEDIUM

    def test_missing_value_keeps_memory(self):
        classifier = Classifier()
        classifier.classify_region("k", 28)
        assert classifier.classify_region("k", None) is None
        assert classifier.previous("k") == Bucket.LOW

    def test_reset_and_seed(self):
        classifier = Classifier()
        classifier.seed("k", Bucket.HIGH)
        assert classifier.classify_region("k", 48) == Bucket.HIGH
        classifier.reset()
        assert classifier.classify_region("k", 48) == Bucket.MEDIUM

    def test_series_classification_is_stateless(self):
        classifier = Classifier()
        classifier.seed("k", Bucket.LOW)
        assert classifier.classify_series([5, 31, None]) == [Bucket.CLEAR, Bucket.MEDIUM, None]


class TestBucket:

    def test_labels_round_trip(self):
        for bucket in Bucket:
            assert Bucket.from_label(bucket.label) == bucket

    def test_ordering(self):
        assert Bucket.CLEAR < Bucket.OVERCAST
        assert max([Bucket.LOW, Bucket.HIGH, Bucket.MEDIUM]) == Bucket.HIGH

    def test_unknown_label(self):
        with pytest.raises(ValueError):
            Bucket.from_label("Foggy")
