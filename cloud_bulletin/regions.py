"""
Region catalog: the static list of monitored states / sub-divisions.

Each region is keyed "State:Name" and carries one or more (lat, lon) sample
points that are queried on its behalf. States split into several
sub-divisions (Rajasthan = West + East) are merged back into one parent value
by the aggregator.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from cloud_bulletin.resilience import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplePoint:
    lat: float
    lon: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ConfigurationError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ConfigurationError(f"longitude out of range: {self.lon}")

    @property
    def key(self) -> str:
        return f"{self.lat:.4f},{self.lon:.4f}"


@dataclass(frozen=True)
class Region:
    region_id: str
    state: str
    name: str
    points: Tuple[SamplePoint, ...]

    def __post_init__(self):
        if not self.points:
            raise ConfigurationError(f"region {self.region_id} has no sample points")

    @classmethod
    def from_centroids(cls, region_id: str, centroids: Sequence[Sequence[float]]) -> "Region":
        """Build a region from an id "State:Name" and [[lat, lon], ...]."""
        state, sep, name = region_id.partition(":")
        if not sep or not state.strip() or not name.strip():
            raise ConfigurationError(f"region id must look like 'State:Name', got {region_id!r}")
        try:
            points = tuple(SamplePoint(float(c[0]), float(c[1])) for c in centroids)
        except (TypeError, ValueError, IndexError) as e:
            raise ConfigurationError(f"region {region_id}: bad centroid list ({e})") from e
        return cls(region_id=region_id, state=state.strip(), name=name.strip(), points=points)


# Centroid registry for the published bulletin
DEFAULT_CENTROIDS: Dict[str, List[List[float]]] = {
    "Punjab:Punjab": [[31.0, 75.3]],
    "Rajasthan:West Rajasthan": [[26.9, 71.2], [27.6, 73.4]],
    "Rajasthan:East Rajasthan": [[26.0, 75.6]],
}


class RegionCatalog:
    """Ordered, read-only collection of regions."""

    def __init__(self, regions: Sequence[Region], rejected: Optional[Dict[str, str]] = None):
        self._regions: Dict[str, Region] = {}
        for region in regions:
            if region.region_id in self._regions:
                raise ConfigurationError(f"duplicate region id {region.region_id}")
            self._regions[region.region_id] = region
        self.rejected: Dict[str, str] = dict(rejected or {})

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Sequence[Sequence[float]]]) -> "RegionCatalog":
        """
        Load a {"State:Name": [[lat, lon], ...]} registry.

        Bad entries are logged and dropped; the rest still load.
        """
        regions: List[Region] = []
        rejected: Dict[str, str] = {}

        for region_id, centroids in mapping.items():
            try:
                regions.append(Region.from_centroids(region_id, centroids or []))
            except ConfigurationError as e:
                logger.error(f"[RegionCatalog] Rejected {region_id}: {e}")
                rejected[region_id] = str(e)

        logger.info(f"[RegionCatalog] Loaded {len(regions)} regions ({len(rejected)} rejected)")
        return cls(regions, rejected)

    @classmethod
    def from_json(cls, path: Path) -> "RegionCatalog":
        try:
            with open(path, 'r', encoding='utf-8') as f:
                mapping = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"cannot read region catalog {path}: {e}") from e
        if not isinstance(mapping, dict):
            raise ConfigurationError(f"{path}: expected an object of region id -> centroids")
        return cls.from_mapping(mapping)

    @classmethod
    def default(cls) -> "RegionCatalog":
        return cls.from_mapping(DEFAULT_CENTROIDS)

    def get(self, region_id: str) -> Region:
        return self._regions[region_id]

    def by_state(self, state: str) -> List[Region]:
        return [r for r in self._regions.values() if r.state == state]

    def merge_groups(self) -> Dict[str, List[str]]:
        """States made of more than one sub-division -> their region ids."""
        groups: Dict[str, List[str]] = {}
        for region in self._regions.values():
            groups.setdefault(region.state, []).append(region.region_id)
        return {state: ids for state, ids in groups.items() if len(ids) > 1}

    @property
    def states(self) -> List[str]:
        seen: List[str] = []
        for region in self._regions.values():
            if region.state not in seen:
                seen.append(region.state)
        return seen

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions.values())

    def __len__(self) -> int:
        return len(self._regions)

    def __contains__(self, region_id: object) -> bool:
        return region_id in self._regions
