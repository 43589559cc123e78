"""
Cloud Ensemble Engine for Cloud Bulletin

Combines the raw provider series for one region into a single representative
hourly series.

Combination order (per timestamp):
1. Mean across the region's sample points, separately for each provider
2. Median across providers/models

The median keeps one runaway model from dragging the bulletin: provider
values [10, 12, 95] give 12, not ~39. A single surviving provider is used
as-is (median of one).

Irradiance (GHI, W/m2) goes through the same two steps in a separate "ghi"
column, from the providers that report it. It never decides whether a region
has data.

Missing values are absent, never zero. If nothing usable arrives the region
raises NoDataForRegion instead of reporting a fabricated clear sky.

SPREAD LEVELS (max provider spread, percentage points):
- LOW: < 20
- MODERATE: 20-40
- CRITICAL: >= 40 (warn only, never blocks)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from cloud_bulletin.classifier import round_half_up
from cloud_bulletin.resilience import NoDataForRegion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayerWeights:
    """Weights turning low/mid/high layer cover into one effective percentage."""
    low: float = 0.6
    mid: float = 0.3
    high: float = 0.1

    def __post_init__(self):
        if min(self.low, self.mid, self.high) < 0:
            raise ValueError("layer weights must be non-negative")
        if not math.isclose(self.low + self.mid + self.high, 1.0, abs_tol=1e-6):
            raise ValueError(f"layer weights must sum to 1.0, got {self.low + self.mid + self.high}")

    def combine(self, low: Optional[float], mid: Optional[float], high: Optional[float]) -> Optional[float]:
        """
        Weighted layer combination. Missing layers drop out and the remaining
        weights are renormalised; all layers missing gives None.
        """
        pairs = [(v, w) for v, w in ((low, self.low), (mid, self.mid), (high, self.high)) if v is not None]
        total_weight = sum(w for _, w in pairs)
        if not pairs or total_weight <= 0:
            return None
        return sum(v * w for v, w in pairs) / total_weight


DEFAULT_LAYER_WEIGHTS = LayerWeights()


@dataclass
class EnsembleResult:
    """Ensemble series for one region plus diagnostics."""
    region_id: str
    frame: pd.DataFrame  # index: naive IST DatetimeIndex; columns: cloud_cover, n_sources, spread, ghi
    providers_used: List[str]
    providers_failed: List[str] = field(default_factory=list)
    variance_level: str = "LOW"
    max_spread: float = 0.0

    @property
    def cloud_cover(self) -> pd.Series:
        return self.frame["cloud_cover"]

    @property
    def ghi(self) -> pd.Series:
        if "ghi" in self.frame:
            return self.frame["ghi"]
        return pd.Series(np.nan, index=self.frame.index, dtype=float)

    def as_records(self) -> List[Dict]:
        records = []
        for ts, row in self.frame.iterrows():
            value = row["cloud_cover"]
            ghi = row.get("ghi", np.nan)
            records.append({
                "time": ts.strftime("%Y-%m-%dT%H:%M"),
                "cloud_cover": None if pd.isna(value) else round_half_up(value),
                "ghi_wm2": None if pd.isna(ghi) else round(float(ghi), 1),
                "n_sources": int(row["n_sources"]),
            })
        return records


def series_to_pandas(series: Sequence[Dict], column: str = "cloud_cover") -> pd.Series:
    """[{"time", column}] -> float Series on a DatetimeIndex (NaN = missing)."""
    if not series:
        return pd.Series(dtype=float)
    index = pd.to_datetime([p["time"] for p in series])
    values = [np.nan if p.get(column) is None else float(p[column]) for p in series]
    s = pd.Series(values, index=index, dtype=float)
    return s[~s.index.duplicated(keep="first")].sort_index()


def trim_outliers(values: np.ndarray, fraction: float = 0.1) -> np.ndarray:
    """Drop the top and bottom `fraction` of values when at least 5 are present."""
    ordered = np.sort(values)
    if len(ordered) < 5:
        return ordered
    k = int(math.floor(len(ordered) * fraction))
    return ordered[k: len(ordered) - k] if k else ordered


class CloudEnsembleEngine:
    """
    Mean-across-points, median-across-providers ensemble.

    Outlier trimming only kicks in at 5+ providers, so with the usual 2-4
    models the result is a plain median.
    """

    SPREAD_MODERATE = 20.0
    SPREAD_CRITICAL = 40.0

    def __init__(self, trim: bool = True, smooth: bool = False):
        self.trim = trim
        self.smooth = smooth

    def average_points(self, series_list: Sequence[Sequence[Dict]], column: str = "cloud_cover") -> pd.Series:
        """
        Per-timestamp mean across sample points for one provider.

        Timestamps are aligned by value; a point missing an hour does not
        count as zero.
        """
        columns = [series_to_pandas(s, column) for s in series_list if s]
        columns = [c for c in columns if not c.empty]
        if not columns:
            return pd.Series(dtype=float)
        frame = pd.concat(columns, axis=1)
        return frame.mean(axis=1, skipna=True).sort_index()

    def median_providers(self, per_provider: Dict[str, pd.Series], column: str = "cloud_cover") -> pd.DataFrame:
        """Per-timestamp median across providers, with source count and spread."""
        usable = {name: s for name, s in per_provider.items() if not s.empty and s.notna().any()}
        if not usable:
            return pd.DataFrame(columns=[column, "n_sources", "spread"], dtype=float)

        frame = pd.concat(usable, axis=1).sort_index()

        medians, counts, spreads = [], [], []
        for _, row in frame.iterrows():
            values = row.dropna().to_numpy(dtype=float)
            counts.append(len(values))
            if len(values) == 0:
                medians.append(np.nan)
                spreads.append(0.0)
                continue
            kept = trim_outliers(values) if self.trim else values
            medians.append(float(np.median(kept)))
            spreads.append(float(np.max(values) - np.min(values)))

        return pd.DataFrame(
            {column: medians, "n_sources": counts, "spread": spreads},
            index=frame.index,
        )

    def smooth_series(self, values: pd.Series) -> pd.Series:
        """3-point running median; edges and gaps keep their raw value."""
        rolled = values.rolling(3, center=True, min_periods=3).median()
        return rolled.where(rolled.notna(), values)

    def ghi_series(self, fetched: Dict[str, List[List[Dict]]]) -> pd.Series:
        """Irradiance ensemble, same combination order; empty when no provider reports GHI."""
        per_provider: Dict[str, pd.Series] = {}
        for provider, series_list in fetched.items():
            averaged = self.average_points(series_list, "ghi")
            if not averaged.empty and averaged.notna().any():
                per_provider[provider] = averaged

        if not per_provider:
            return pd.Series(dtype=float)

        ghi = self.median_providers(per_provider, "ghi")["ghi"].clip(lower=0.0)
        if self.smooth:
            ghi = self.smooth_series(ghi)
        return ghi

    def build_region_series(
        self,
        region_id: str,
        fetched: Dict[str, List[List[Dict]]],
        failed: Optional[List[str]] = None,
    ) -> EnsembleResult:
        """
        Build the region ensemble.

        Args:
            region_id: Region being combined (for logs and errors)
            fetched: provider name -> one series per sample point that succeeded
            failed: provider names that contributed nothing (diagnostics only)

        Raises:
            NoDataForRegion: no provider produced a single usable value
        """
        per_provider: Dict[str, pd.Series] = {}
        for provider, series_list in fetched.items():
            averaged = self.average_points(series_list)
            if averaged.empty or not averaged.notna().any():
                logger.warning(f"[CloudEnsembleEngine] {region_id}: {provider} returned no usable values")
                continue
            per_provider[provider] = averaged

        if not per_provider:
            raise NoDataForRegion(region_id, "all providers/points failed")

        frame = self.median_providers(per_provider)
        if self.smooth:
            frame["cloud_cover"] = self.smooth_series(frame["cloud_cover"])

        if not frame["cloud_cover"].notna().any():
            raise NoDataForRegion(region_id, "ensemble has no values")

        frame["ghi"] = self.ghi_series(fetched).reindex(frame.index)

        max_spread = float(frame["spread"].max()) if len(frame) else 0.0
        if max_spread >= self.SPREAD_CRITICAL:
            variance_level = "CRITICAL"
            logger.warning(f"[CloudEnsembleEngine] {region_id}: CRITICAL model spread "
                           f"({max_spread:.0f} pts across {len(per_provider)} providers)")
        elif max_spread >= self.SPREAD_MODERATE:
            variance_level = "MODERATE"
            logger.info(f"[CloudEnsembleEngine] {region_id}: moderate model spread ({max_spread:.0f} pts)")
        else:
            variance_level = "LOW"

        logger.info(f"[CloudEnsembleEngine] {region_id}: {len(frame)} hours from "
                    f"{len(per_provider)} providers ({', '.join(sorted(per_provider))})")

        return EnsembleResult(
            region_id=region_id,
            frame=frame,
            providers_used=sorted(per_provider),
            providers_failed=sorted(failed or []),
            variance_level=variance_level,
            max_spread=round(max_spread, 1),
        )
