"""
Series fetcher: concurrent fan-out over (provider x sample point).

Every request runs in its own task with retry, all awaited together with
"wait for all, tolerate individual failures" semantics. A failed pair just
contributes nothing; one slow or broken provider never blocks the others.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from cloud_bulletin.config import BulletinConfig
from cloud_bulletin.ensemble import LayerWeights
from cloud_bulletin.providers.base import CloudProvider, SeriesPoint
from cloud_bulletin.providers.nasa_power import NasaPowerProvider
from cloud_bulletin.providers.open_meteo import build_open_meteo_providers
from cloud_bulletin.providers.openweathermap import OpenWeatherMapProvider
from cloud_bulletin.regions import Region, SamplePoint
from cloud_bulletin.resilience import (
    DEFAULT_RETRY_CONFIG,
    RetryConfig,
    categorize_error,
    with_retry,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderOutcome:
    """One (provider, point) attempt."""
    provider: str
    point: SamplePoint
    series: Optional[List[SeriesPoint]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.series is not None


@dataclass
class RegionFetch:
    """Everything fetched for one region."""
    region_id: str
    series: Dict[str, List[List[SeriesPoint]]] = field(default_factory=dict)
    outcomes: List[ProviderOutcome] = field(default_factory=list)

    @property
    def failed_providers(self) -> List[str]:
        """Providers that returned nothing for any point."""
        return sorted({o.provider for o in self.outcomes} - set(self.series))


class SeriesFetcher:
    """
    Fetch raw series for regions from every configured provider.

    The caller owns the httpx.AsyncClient (one per cycle); pass
    client=None to have the fetcher open a short-lived one.
    """

    def __init__(
        self,
        providers: Sequence[CloudProvider],
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        timeout: float = 30.0,
    ):
        self.providers = list(providers)
        self.retry_config = retry_config
        self.timeout = timeout

    async def _fetch_one(
        self, provider: CloudProvider, point: SamplePoint, client: httpx.AsyncClient
    ) -> ProviderOutcome:
        start = time.time()

        @with_retry(config=self.retry_config, provider_name=provider.name)
        async def _fetch():
            return await provider.fetch_series(point, client)

        try:
            series = await _fetch()
        except Exception as e:
            error_type, error_msg = categorize_error(e)
            logger.warning(f"[SeriesFetcher] {provider.name} @ {point.key} excluded: {error_msg}")
            return ProviderOutcome(provider.name, point, error=error_msg,
                                   error_type=error_type.value, elapsed=time.time() - start)

        return ProviderOutcome(provider.name, point, series=series, elapsed=time.time() - start)

    async def _gather(
        self, pairs: List[Tuple[CloudProvider, SamplePoint]], client: httpx.AsyncClient
    ) -> List[ProviderOutcome]:
        results = await asyncio.gather(
            *(self._fetch_one(p, pt, client) for p, pt in pairs),
            return_exceptions=True,
        )
        outcomes: List[ProviderOutcome] = []
        for (provider, point), result in zip(pairs, results):
            if isinstance(result, BaseException):
                # Cancellation or a bug inside _fetch_one; still isolated to this pair
                logger.error(f"[SeriesFetcher] {provider.name} @ {point.key} crashed: {result!r}")
                outcomes.append(ProviderOutcome(provider.name, point, error=repr(result), error_type="unknown"))
            else:
                outcomes.append(result)
        return outcomes

    async def fetch_point(
        self, point: SamplePoint, client: Optional[httpx.AsyncClient] = None
    ) -> Dict[str, List[SeriesPoint]]:
        """provider name -> series, for the providers that answered."""
        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as own:
                return await self.fetch_point(point, own)

        outcomes = await self._gather([(p, point) for p in self.providers], client)
        return {o.provider: o.series for o in outcomes if o.ok}

    async def fetch_region(
        self, region: Region, client: Optional[httpx.AsyncClient] = None
    ) -> RegionFetch:
        """All (provider x point) requests for one region, issued concurrently."""
        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as own:
                return await self.fetch_region(region, own)

        pairs = [(p, pt) for p in self.providers for pt in region.points]
        logger.info(f"[SeriesFetcher] {region.region_id}: {len(pairs)} requests "
                    f"({len(self.providers)} providers x {len(region.points)} points)")

        outcomes = await self._gather(pairs, client)

        fetch = RegionFetch(region_id=region.region_id, outcomes=outcomes)
        for outcome in outcomes:
            if outcome.ok and outcome.series:
                fetch.series.setdefault(outcome.provider, []).append(outcome.series)

        ok = sum(1 for o in outcomes if o.ok)
        logger.info(f"[SeriesFetcher] {region.region_id}: {ok}/{len(outcomes)} requests succeeded")
        return fetch


def build_providers(config: BulletinConfig) -> List[CloudProvider]:
    """The enabled providers for a config."""
    providers: List[CloudProvider] = []

    if config.open_meteo_enabled:
        providers.extend(build_open_meteo_providers(
            config.open_meteo_models,
            forecast_hours=config.horizon_hours,
            past_hours=config.history_hours,
            use_layers=config.use_layers,
            layer_weights=LayerWeights(*config.layer_weights),
        ))

    if config.nasa_power_enabled:
        providers.append(NasaPowerProvider())

    if config.openweather_enabled:
        providers.append(OpenWeatherMapProvider(config.openweather_api_key, hours=config.horizon_hours))
    else:
        logger.info("[build_providers] OpenWeatherMap disabled (no OPENWEATHER_API_KEY)")

    logger.info(f"[build_providers] {len(providers)} providers: {', '.join(p.name for p in providers)}")
    return providers
