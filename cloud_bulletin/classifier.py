"""
Cloud-cover classifier.

Maps a percentage to one of five ordered buckets:

    Clear Sky              [0, 10)
    Low Cloud Cover        [10, 30)
    Medium Cloud Cover     [30, 50)
    High Cloud Cover       [50, 75)
    Overcast Cloud Cover   [75, 100]

Lower bounds are inclusive, upper bounds exclusive, and the last bucket is
closed at 100. With hysteresis the previous bucket's range is widened by a
margin on both sides, so a value hovering around a boundary keeps its
category until it clearly leaves the widened band.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Bucket(Enum):
    """Ordered categories, least to most cloud. Value is the severity rank."""
    CLEAR = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    OVERCAST = 4

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def color(self) -> str:
        return _COLORS[self]

    @property
    def icon(self) -> str:
        return _ICONS[self]

    @property
    def rank(self) -> int:
        return self.value

    @classmethod
    def from_label(cls, label: str) -> "Bucket":
        for bucket, text in _LABELS.items():
            if text.lower() == label.strip().lower():
                return bucket
        raise ValueError(f"unknown bucket label: {label!r}")

    def __lt__(self, other: "Bucket") -> bool:
        if not isinstance(other, Bucket):
            return NotImplemented
        return self.value < other.value


_LABELS = {
    Bucket.CLEAR: "Clear Sky",
    Bucket.LOW: "Low Cloud Cover",
    Bucket.MEDIUM: "Medium Cloud Cover",
    Bucket.HIGH: "High Cloud Cover",
    Bucket.OVERCAST: "Overcast Cloud Cover",
}

# Bulletin palette
_COLORS = {
    Bucket.CLEAR: "#A7D8EB",
    Bucket.LOW: "#C4E17F",
    Bucket.MEDIUM: "#FFF952",
    Bucket.HIGH: "#E69536",
    Bucket.OVERCAST: "#FF4D4D",
}

_ICONS = {
    Bucket.CLEAR: "☀️",
    Bucket.LOW: "🌤️",
    Bucket.MEDIUM: "⛅",
    Bucket.HIGH: "☁️",
    Bucket.OVERCAST: "🌫️",
}


@dataclass(frozen=True)
class Thresholds:
    """Lower bounds of LOW, MEDIUM, HIGH and OVERCAST."""
    low: float = 10.0
    medium: float = 30.0
    high: float = 50.0
    overcast: float = 75.0

    def __post_init__(self):
        bounds = (0.0, self.low, self.medium, self.high, self.overcast, 100.0)
        for lower, upper in zip(bounds, bounds[1:]):
            if not lower < upper:
                raise ValueError(f"thresholds must be strictly increasing inside (0, 100): {bounds[1:-1]}")

    @classmethod
    def from_sequence(cls, values: Iterable[float]) -> "Thresholds":
        values = list(values)
        if len(values) != 4:
            raise ValueError(f"expected 4 thresholds, got {len(values)}")
        return cls(*values)

    def ranges(self) -> Dict[Bucket, Tuple[float, float]]:
        edges = [0.0, self.low, self.medium, self.high, self.overcast, 100.0]
        return {bucket: (edges[i], edges[i + 1]) for i, bucket in enumerate(Bucket)}


DEFAULT_THRESHOLDS = Thresholds()
DEFAULT_MARGIN = 3.0


def clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (74.5 -> 75), unlike round()."""
    return int(math.floor(float(value) + 0.5))


def _is_missing(pct: Optional[float]) -> bool:
    return pct is None or (isinstance(pct, float) and math.isnan(pct))


def classify(
    pct: Optional[float],
    previous: Optional[Bucket] = None,
    margin: float = DEFAULT_MARGIN,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> Optional[Bucket]:
    """
    Classify a cloud-cover percentage.

    Args:
        pct: Percentage (clamped to [0, 100]); None/NaN means no data
        previous: Bucket assigned last cycle, enables hysteresis
        margin: Hysteresis half-width in percentage points
        thresholds: Bucket boundaries

    Returns:
        The bucket, or None when there is no data
    """
    if _is_missing(pct):
        return None

    p = clamp_pct(pct)
    ranges = thresholds.ranges()

    if previous is not None and margin > 0:
        lo, hi = ranges[previous]
        if lo - margin <= p < hi + margin:
            return previous

    for bucket, (lo, hi) in ranges.items():
        if lo <= p < hi:
            return bucket
    return Bucket.OVERCAST


class Classifier:
    """
    Stateful classifier remembering the last bucket per region.

    The remembered bucket feeds hysteresis on the next cycle. A region with
    no data keeps its previous bucket in memory.
    """

    def __init__(self, thresholds: Thresholds = DEFAULT_THRESHOLDS, margin: float = DEFAULT_MARGIN):
        self.thresholds = thresholds
        self.margin = margin
        self._previous: Dict[str, Bucket] = {}

    def classify_region(self, key: str, pct: Optional[float]) -> Optional[Bucket]:
        previous = self._previous.get(key)
        bucket = classify(pct, previous=previous, margin=self.margin, thresholds=self.thresholds)

        if bucket is None:
            return None

        if previous is not None and bucket != previous:
            logger.info(f"[Classifier] {key}: {previous.label} -> {bucket.label} ({pct:.0f}%)")
        self._previous[key] = bucket
        return bucket

    def classify_series(self, values: List[Optional[float]]) -> List[Optional[Bucket]]:
        """Stateless classification of a list of values (no hysteresis)."""
        return [classify(v, margin=0.0, thresholds=self.thresholds) for v in values]

    def previous(self, key: str) -> Optional[Bucket]:
        return self._previous.get(key)

    def seed(self, key: str, bucket: Bucket) -> None:
        self._previous[key] = bucket

    def reset(self) -> None:
        self._previous.clear()
