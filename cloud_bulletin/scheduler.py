"""
Cloud Bulletin Scheduler

Orchestrates the refresh cycle:
1. Fetch cloud cover for every region from every provider (concurrently)
2. Ensemble: mean across sample points, median across providers
3. Aggregate: solar-window daily means + 24h horizon halves (cloud and GHI)
4. Bias-correct, classify with hysteresis, merge split states by max
5. Hand the result set to the renderer and cache it as Last Known Good

Triggers:
- Every 3 hours on IST boundaries (00, 03, 06 ... 21)
- Civil midnight (IST) invalidates the cycle cache and hysteresis memory

Failure isolation: a region that fails keeps its previous result (marked
"stale"); a region with no previous result is reported as "no_data", never
as a default bucket.
"""

import asyncio
import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx

from cloud_bulletin.aggregation import (
    SolarWindow,
    daily_means,
    horizon_buckets,
    hourly_values,
    merge_max,
    merge_max_buckets,
    merge_min,
    recent_history,
)
from cloud_bulletin.bias import BiasCorrector
from cloud_bulletin.cache_manager import CacheManager
from cloud_bulletin.classifier import Bucket, Classifier, Thresholds, round_half_up
from cloud_bulletin.config import BulletinConfig
from cloud_bulletin.ensemble import CloudEnsembleEngine
from cloud_bulletin.fetcher import SeriesFetcher
from cloud_bulletin.regions import Region, RegionCatalog
from cloud_bulletin.resilience import NoDataForRegion

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")

STATUS_OK = "ok"
STATUS_STALE = "stale"
STATUS_NO_DATA = "no_data"
STATUS_ERROR = "error"


def setup_logging(level: str = "INFO", log_dir: Path = Path("logs")) -> None:
    """File + stdout logging for the entry points."""
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_dir / "cloud_bulletin.log", mode='a', encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )


def next_trigger(now: datetime, interval_hours: int = 3) -> datetime:
    """First interval boundary strictly after `now`, aligned to IST midnight."""
    now = now.astimezone(IST) if now.tzinfo else now.replace(tzinfo=IST)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    next_hour = (now.hour // interval_hours + 1) * interval_hours
    return midnight + timedelta(hours=next_hour)


def is_midnight_rollover(previous: Optional[datetime], now: datetime) -> bool:
    """True when `now` falls on a later IST calendar day than `previous`."""
    if previous is None:
        return False
    return now.astimezone(IST).date() > previous.astimezone(IST).date()


def _label(bucket: Optional[Bucket]) -> Optional[str]:
    return bucket.label if bucket is not None else None


@dataclass
class RegionResult:
    """Everything the renderer needs for one region."""
    region_id: str
    state: str
    name: str
    status: str
    daily: List[Dict[str, Any]] = field(default_factory=list)
    horizon: List[Dict[str, Any]] = field(default_factory=list)
    hourly: List[Dict[str, Any]] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    providers_used: List[str] = field(default_factory=list)
    providers_failed: List[str] = field(default_factory=list)
    variance_level: Optional[str] = None
    merged_from: List[str] = field(default_factory=list)
    error: Optional[str] = None
    computed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegionResult":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def placeholder(cls, region_id: str, state: str, name: str, status: str, error: str) -> "RegionResult":
        return cls(region_id=region_id, state=state, name=name, status=status, error=error)

    def horizon_pct(self, day: int) -> Optional[float]:
        for entry in self.horizon:
            if entry["day"] == day:
                return entry["cloud_pct"]
        return None


@dataclass
class PipelineContext:
    """
    Per-driver state passed through every stage.

    Only the bias store is durable; everything else is rebuilt from the
    network each cycle.
    """
    config: BulletinConfig
    catalog: RegionCatalog
    fetcher: SeriesFetcher
    engine: CloudEnsembleEngine
    classifier: Classifier
    window: SolarWindow
    bias: Optional[BiasCorrector] = None
    cache: Optional[CacheManager] = None
    previous: Dict[str, RegionResult] = field(default_factory=dict)
    last_run: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config: BulletinConfig,
        catalog: RegionCatalog,
        fetcher: SeriesFetcher,
        bias: Optional[BiasCorrector] = None,
        cache: Optional[CacheManager] = None,
    ) -> "PipelineContext":
        return cls(
            config=config,
            catalog=catalog,
            fetcher=fetcher,
            engine=CloudEnsembleEngine(trim=config.trim_outliers, smooth=config.smooth),
            classifier=Classifier(
                thresholds=Thresholds.from_sequence(config.thresholds),
                margin=config.hysteresis_margin,
            ),
            window=SolarWindow.parse(config.solar_window),
            bias=bias,
            cache=cache,
        )


Renderer = Callable[[Dict[str, RegionResult]], Any]


class ScheduleDriver:
    """
    Runs refresh cycles and hands results to a renderer.

    Overlapping runs are not cancelled; each cycle is idempotent apart from
    the hysteresis memory, so a late run simply overwrites an earlier one.
    """

    def __init__(self, context: PipelineContext, renderer: Optional[Renderer] = None):
        self.ctx = context
        self.renderer = renderer

    @property
    def results(self) -> Dict[str, RegionResult]:
        return dict(self.ctx.previous)

    def warm_start(self) -> bool:
        """
        Seed previous results (and hysteresis) from the LKG cache after a restart.

        The LKG time becomes the last run, so a first cycle on a later IST day
        sees the midnight rollover and drops the seeded hysteresis memory.
        """
        if self.ctx.cache is None:
            return False
        entry = self.ctx.cache.load_lkg()
        if entry is None:
            return False

        saved_at = entry.timestamp
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=IST)
        if self.ctx.last_run is None or saved_at > self.ctx.last_run:
            self.ctx.last_run = saved_at

        regions = entry.data.get("regions", {}) if isinstance(entry.data, dict) else {}
        for region_id, raw in regions.items():
            try:
                result = RegionResult.from_dict(raw)
            except TypeError as e:
                logger.warning(f"[ScheduleDriver] Ignoring cached {region_id}: {e}")
                continue
            self.ctx.previous[region_id] = result
            for entry_h in result.horizon:
                if entry_h.get("bucket"):
                    self.ctx.classifier.seed(f"{region_id}|day{entry_h['day']}", Bucket.from_label(entry_h["bucket"]))

        logger.info(f"[ScheduleDriver] Warm start: {len(self.ctx.previous)} cached regions "
                    f"({entry.status_label(datetime.now(IST).replace(tzinfo=None))})")
        return bool(self.ctx.previous)

    # --- per-region pipeline -----------------------------------------

    def _classify(self, key: str, raw: Optional[float], region_id: str, ghi: Optional[int] = None) -> Dict[str, Any]:
        corrected = self.ctx.bias.apply(region_id, raw) if self.ctx.bias else raw
        if corrected is not None:
            # the bucket always matches the published percentage
            corrected = round_half_up(corrected)
        bucket = self.ctx.classifier.classify_region(key, corrected)
        return {
            "cloud_pct": corrected,
            "raw_pct": raw,
            "bucket": _label(bucket),
            "ghi_wm2": ghi,
        }

    async def compute_region(self, region: Region, client: httpx.AsyncClient, now: datetime) -> RegionResult:
        """
        Fetch -> ensemble -> aggregate -> bias -> classify for one region.

        Raises:
            NoDataForRegion: nothing usable came back
        """
        cfg = self.ctx.config
        fetch = await self.ctx.fetcher.fetch_region(region, client)
        if self.ctx.cache is not None:
            self.ctx.cache.record_outcomes(fetch.outcomes)

        ensemble = self.ctx.engine.build_region_series(region.region_id, fetch.series, fetch.failed_providers)
        series = ensemble.cloud_cover
        ghi = ensemble.ghi

        today = now.date()
        daily_ghi = daily_means(ghi, self.ctx.window)
        daily = []
        for day, raw in daily_means(series, self.ctx.window).items():
            if day < today:
                continue
            entry = {"date": day.isoformat()}
            entry.update(self._classify(f"{region.region_id}|{day.isoformat()}", raw, region.region_id,
                                        ghi=daily_ghi.get(day)))
            daily.append(entry)

        horizon_ghi = horizon_buckets(ghi, now, cfg.horizon_hours)
        horizon = []
        for i, raw in enumerate(horizon_buckets(series, now, cfg.horizon_hours), start=1):
            entry = {"day": i}
            entry.update(self._classify(f"{region.region_id}|day{i}", raw, region.region_id,
                                        ghi=horizon_ghi[i - 1]))
            horizon.append(entry)

        if all(h["cloud_pct"] is None for h in horizon) and all(d["cloud_pct"] is None for d in daily):
            raise NoDataForRegion(region.region_id, "no values inside the aggregation window")

        hourly = hourly_values(series, now, cfg.horizon_hours, ghi=ghi)
        for point in hourly:
            corrected = point["cloud_cover"]
            if corrected is not None and self.ctx.bias:
                corrected = round_half_up(self.ctx.bias.apply(region.region_id, corrected))
            point["cloud_cover"] = corrected
            point["bucket"] = _label(self.ctx.classifier.classify_series([corrected])[0])

        return RegionResult(
            region_id=region.region_id,
            state=region.state,
            name=region.name,
            status=STATUS_OK,
            daily=daily,
            horizon=horizon,
            hourly=hourly,
            history=recent_history(series, now, cfg.history_hours),
            providers_used=ensemble.providers_used,
            providers_failed=ensemble.providers_failed,
            variance_level=ensemble.variance_level,
            computed_at=now.isoformat(),
        )

    def _fallback(self, region: Region, status: str, error: str) -> RegionResult:
        """Previous result marked stale, or an explicit placeholder."""
        previous = self.ctx.previous.get(region.region_id)
        if previous is not None and previous.status in (STATUS_OK, STATUS_STALE):
            logger.warning(f"[ScheduleDriver] {region.region_id}: keeping previous result from {previous.computed_at}")
            stale = RegionResult.from_dict(previous.to_dict())
            stale.status = STATUS_STALE
            stale.error = error
            return stale
        return RegionResult.placeholder(region.region_id, region.state, region.name, status, error)

    # --- merging ------------------------------------------------------

    def merge_states(self, results: Dict[str, RegionResult]) -> Dict[str, RegionResult]:
        """Parent results for states split into several sub-divisions (cloudier wins)."""
        merged: Dict[str, RegionResult] = {}

        for state, member_ids in self.ctx.catalog.merge_groups().items():
            members = [results[i] for i in member_ids if i in results]
            usable = [m for m in members if m.status in (STATUS_OK, STATUS_STALE)]
            parent_id = f"{state}:{state}"

            if not usable:
                merged[parent_id] = RegionResult.placeholder(
                    parent_id, state, state, STATUS_NO_DATA, "no sub-division has data")
                merged[parent_id].merged_from = member_ids
                continue

            horizon = []
            for day in sorted({h["day"] for m in usable for h in m.horizon}):
                parts = [h for m in usable for h in m.horizon if h["day"] == day]
                bucket = merge_max_buckets(
                    Bucket.from_label(h["bucket"]) if h["bucket"] else None for h in parts)
                horizon.append({
                    "day": day,
                    "cloud_pct": merge_max(h["cloud_pct"] for h in parts),
                    "raw_pct": merge_max(h["raw_pct"] for h in parts),
                    "bucket": _label(bucket),
                    "ghi_wm2": merge_min(h.get("ghi_wm2") for h in parts),
                })

            daily = []
            for date_key in sorted({d["date"] for m in usable for d in m.daily}):
                parts = [d for m in usable for d in m.daily if d["date"] == date_key]
                bucket = merge_max_buckets(
                    Bucket.from_label(d["bucket"]) if d["bucket"] else None for d in parts)
                daily.append({
                    "date": date_key,
                    "cloud_pct": merge_max(d["cloud_pct"] for d in parts),
                    "raw_pct": merge_max(d["raw_pct"] for d in parts),
                    "bucket": _label(bucket),
                    "ghi_wm2": merge_min(d.get("ghi_wm2") for d in parts),
                })

            merged[parent_id] = RegionResult(
                region_id=parent_id,
                state=state,
                name=state,
                status=STATUS_OK if all(m.status == STATUS_OK for m in usable) else STATUS_STALE,
                daily=daily,
                horizon=horizon,
                hourly=self._merge_timeline([m.hourly for m in usable], with_bucket=True),
                history=self._merge_timeline([m.history for m in usable]),
                providers_used=sorted({p for m in usable for p in m.providers_used}),
                providers_failed=sorted({p for m in usable for p in m.providers_failed}),
                merged_from=member_ids,
                computed_at=max(m.computed_at or "" for m in usable) or None,
            )
            logger.info(f"[ScheduleDriver] Merged {state} from {len(usable)}/{len(members)} sub-divisions: "
                        f"{[h['bucket'] for h in horizon]}")

        return merged

    def _merge_timeline(self, timelines: List[List[Dict[str, Any]]], with_bucket: bool = False) -> List[Dict[str, Any]]:
        by_time: Dict[str, List[Optional[int]]] = {}
        ghi_by_time: Dict[str, List[Optional[float]]] = {}
        for timeline in timelines:
            for point in timeline:
                by_time.setdefault(point["time"], []).append(point["cloud_cover"])
                if "ghi_wm2" in point:
                    ghi_by_time.setdefault(point["time"], []).append(point["ghi_wm2"])

        merged = []
        for t in sorted(by_time):
            value = merge_max(by_time[t])
            point: Dict[str, Any] = {"time": t, "cloud_cover": value}
            if t in ghi_by_time:
                point["ghi_wm2"] = merge_min(ghi_by_time[t])
            if with_bucket:
                point["bucket"] = _label(self.ctx.classifier.classify_series([value])[0])
            merged.append(point)
        return merged

    # --- cycle ---------------------------------------------------------

    async def run_cycle(self, now: Optional[datetime] = None, use_cache: bool = False) -> Dict[str, RegionResult]:
        """
        One full recomputation of every configured region.

        Never raises for data problems: per-region errors end up in the
        region's status.
        """
        now = now or datetime.now(IST)
        if now.tzinfo is None:
            now = now.replace(tzinfo=IST)
        wall = now.astimezone(IST).replace(tzinfo=None)

        if is_midnight_rollover(self.ctx.last_run, now):
            logger.info("[ScheduleDriver] Civil midnight rollover - invalidating daily cache")
            if self.ctx.cache is not None:
                self.ctx.cache.invalidate()
            self.ctx.classifier.reset()

        if use_cache and self.ctx.cache is not None:
            cached = self.ctx.cache.load_results(wall)
            if cached is not None:
                results = {rid: RegionResult.from_dict(raw) for rid, raw in cached.data.get("regions", {}).items()}
                self.ctx.previous.update(results)
                self.ctx.last_run = now
                self._render(results)
                return results

        logger.info("=" * 60)
        logger.info(f"[ScheduleDriver] Cycle start {wall:%Y-%m-%d %H:%M} IST - {len(self.ctx.catalog)} regions")
        logger.info("=" * 60)

        regions = list(self.ctx.catalog)
        results: Dict[str, RegionResult] = {}

        async with httpx.AsyncClient(timeout=self.ctx.config.http_timeout_seconds) as client:
            outcomes = await asyncio.gather(
                *(self.compute_region(region, client, wall) for region in regions),
                return_exceptions=True,
            )

        for region, outcome in zip(regions, outcomes):
            if isinstance(outcome, NoDataForRegion):
                logger.warning(f"[ScheduleDriver] {outcome}")
                results[region.region_id] = self._fallback(region, STATUS_NO_DATA, str(outcome))
            elif isinstance(outcome, BaseException):
                logger.error(f"[ScheduleDriver] {region.region_id} failed: {outcome!r}", exc_info=outcome)
                results[region.region_id] = self._fallback(region, STATUS_ERROR, repr(outcome))
            else:
                results[region.region_id] = outcome

        for region_id, reason in self.ctx.catalog.rejected.items():
            state, _, name = region_id.partition(":")
            results[region_id] = RegionResult.placeholder(region_id, state, name, STATUS_ERROR, reason)

        try:
            results.update(self.merge_states(results))
        except Exception as e:
            logger.error(f"[ScheduleDriver] State merge failed: {e}", exc_info=True)

        self.ctx.previous.update(results)
        self.ctx.last_run = now

        ok = sum(1 for r in results.values() if r.status == STATUS_OK)
        logger.info(f"[ScheduleDriver] Cycle complete: {ok}/{len(results)} regions fresh")

        if self.ctx.cache is not None:
            self.ctx.cache.increment_run_count()
            self.ctx.cache.save_results(to_payload(results, now, self.ctx.config), wall)

        self._render(results)
        return results

    def _render(self, results: Dict[str, RegionResult]) -> None:
        if self.renderer is None:
            return
        try:
            self.renderer(results)
        except Exception as e:
            logger.error(f"[ScheduleDriver] Renderer failed: {e}", exc_info=True)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """Run now, then on every IST interval boundary until `stop` is set."""
        stop = stop or asyncio.Event()
        interval = self.ctx.config.refresh_interval_hours

        while not stop.is_set():
            await self.run_cycle()

            now = datetime.now(IST)
            wake = next_trigger(now, interval) + timedelta(seconds=5)
            delay = (wake - now).total_seconds()
            logger.info(f"[ScheduleDriver] Next run at {wake:%Y-%m-%d %H:%M} IST ({delay / 60:.0f} min)")

            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass


def legend(thresholds: Thresholds) -> List[Dict[str, Any]]:
    return [
        {"bucket": b.label, "color": b.color, "icon": b.icon, "range": list(r)}
        for b, r in thresholds.ranges().items()
    ]


def to_payload(results: Dict[str, RegionResult], now: datetime, config: BulletinConfig) -> Dict[str, Any]:
    """JSON-serialisable result set for renderers."""
    return {
        "generated_at": now.isoformat(),
        "timezone": config.timezone,
        "solar_window": config.solar_window,
        "legend": legend(Thresholds.from_sequence(config.thresholds)),
        "regions": {rid: r.to_dict() for rid, r in sorted(results.items())},
    }


def build_driver(
    config: BulletinConfig,
    catalog: Optional[RegionCatalog] = None,
    bias: Optional[BiasCorrector] = None,
    renderer: Optional[Renderer] = None,
    fetcher: Optional[SeriesFetcher] = None,
) -> ScheduleDriver:
    """Wire a driver from config (providers, cache, catalog)."""
    from cloud_bulletin.fetcher import build_providers
    from cloud_bulletin.resilience import RetryConfig

    if catalog is None:
        catalog = RegionCatalog.from_json(config.catalog_path) if config.catalog_path else RegionCatalog.default()

    if fetcher is None:
        fetcher = SeriesFetcher(
            build_providers(config),
            retry_config=RetryConfig(max_retries=config.max_retries),
            timeout=config.http_timeout_seconds,
        )

    cache = CacheManager(config.cache_dir, config.refresh_interval_hours)
    context = PipelineContext.from_config(config, catalog, fetcher, bias=bias, cache=cache)
    return ScheduleDriver(context, renderer=renderer)
