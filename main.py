"""
Cloud Bulletin: regional cloud-cover forecast

Fetches hourly cloud cover for every configured sub-division from Open-Meteo
(several models), NASA POWER and OpenWeatherMap, ensembles them (mean across
points, median across providers), and classifies the solar-window daily mean
and the next two 24-hour halves into the five bulletin categories.

Usage:
    python main.py --once                  # single refresh (reuses this cycle's cache)
    python main.py --once --refresh        # single refresh, ignore cache
    python main.py --forever               # refresh every 3 hours on IST boundaries
    python main.py --observe "Punjab:Punjab" 40 30   # feed an observation into the bias
    python main.py --observe "Punjab:Punjab" 40 30 --at 2025-01-15T12:00
"""

import argparse
import asyncio
import json
import logging
import math
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from colorama import Fore, Style, init

from cloud_bulletin.bias import BiasCorrector, BiasStore
from cloud_bulletin.classifier import Bucket
from cloud_bulletin.config import BulletinConfig
from cloud_bulletin.regions import RegionCatalog
from cloud_bulletin.resilience import BulletinError
from cloud_bulletin.scheduler import (
    STATUS_NO_DATA,
    STATUS_OK,
    STATUS_STALE,
    RegionResult,
    build_driver,
    setup_logging,
    to_payload,
)

init()

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")

_BUCKET_COLORS = {
    Bucket.CLEAR: Fore.CYAN,
    Bucket.LOW: Fore.GREEN,
    Bucket.MEDIUM: Fore.YELLOW,
    Bucket.HIGH: Fore.MAGENTA,
    Bucket.OVERCAST: Fore.RED,
}


def _iso_timestamp(text: str) -> datetime:
    """argparse type: ISO 8601 timestamp, naive values taken as IST."""
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an ISO timestamp like 2025-01-15T12:00, got {text!r}")
    return moment if moment.tzinfo else moment.replace(tzinfo=IST)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Cloud Bulletin - regional cloud-cover forecast aggregation'
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--once', action='store_true', help='Run one refresh cycle (default)')
    mode.add_argument('--forever', action='store_true', help='Refresh every interval on IST boundaries')
    mode.add_argument('--observe', nargs=3, metavar=('REGION', 'OBSERVED', 'PREDICTED'),
                      help='Submit an observed vs predicted cloud cover (%%) to the bias store')
    mode.add_argument('--show-bias', action='store_true', help='Print the learned bias per region')
    parser.add_argument('--at', type=_iso_timestamp, metavar='TIMESTAMP',
                        help='Time the --observe values refer to (ISO 8601, IST if no offset; default now)')
    parser.add_argument('--refresh', action='store_true', help='Ignore the current-cycle cache')
    parser.add_argument('--catalog', type=Path, help='Region catalog JSON (overrides CLOUD_BULLETIN_CATALOG)')
    parser.add_argument('--output', type=Path, help='Output directory (overrides CLOUD_BULLETIN_OUTPUT_DIR)')
    parser.add_argument('--env-file', type=Path, help='Path to a .env file')
    parser.add_argument('--log-level', help='Logging level (overrides LOG_LEVEL)')
    args = parser.parse_args(argv)

    if args.at is not None and not args.observe:
        parser.error('--at only applies to --observe')
    if args.observe:
        region_id, observed, predicted = args.observe
        try:
            values = (float(observed), float(predicted))
        except ValueError:
            values = (math.nan, math.nan)
        if not all(math.isfinite(v) for v in values):
            parser.error(f'--observe needs numeric percentages, got {observed!r} and {predicted!r}')
        args.observe = (region_id, *values)
    return args


def print_banner(config: BulletinConfig):
    """Print the system banner."""
    print(f"\n{Fore.CYAN}{'=' * 60}{Style.RESET_ALL}")
    print(f"{Fore.CYAN}   CLOUD BULLETIN: REGIONAL CLOUD-COVER FORECAST{Style.RESET_ALL}")
    print(f"{Fore.CYAN}{'=' * 60}{Style.RESET_ALL}")
    print(f"{Fore.WHITE}   [MODELS] {', '.join(config.open_meteo_models)}{Style.RESET_ALL}")
    print(f"{Fore.WHITE}   [WINDOW] {config.solar_window} IST, horizon {config.horizon_hours}h{Style.RESET_ALL}")
    print()


def _bucket_cell(label, pct) -> str:
    if label is None:
        return f"{Fore.WHITE}{'no data':<24}{Style.RESET_ALL}"
    bucket = Bucket.from_label(label)
    text = f"{bucket.icon} {label} ({pct}%)"
    return f"{_BUCKET_COLORS[bucket]}{text:<24}{Style.RESET_ALL}"


def print_bulletin(results: Dict[str, RegionResult]):
    """Console table: one row per region, Day 1 / Day 2 buckets and the first day's solar-window GHI."""
    print(f"\n{Fore.WHITE}{'REGION':<32}{'DAY 1':<26}{'DAY 2':<26}{'GHI W/m2':<10}STATUS{Style.RESET_ALL}")
    print("-" * 102)

    for region_id in sorted(results):
        result = results[region_id]
        cells = []
        for day in (1, 2):
            entry = next((h for h in result.horizon if h["day"] == day), None)
            cells.append(_bucket_cell(entry["bucket"], entry["cloud_pct"]) if entry else _bucket_cell(None, None))

        if result.status == STATUS_OK:
            status = f"{Fore.GREEN}{result.status}{Style.RESET_ALL}"
        elif result.status == STATUS_STALE:
            status = f"{Fore.YELLOW}{result.status}{Style.RESET_ALL}"
        else:
            status = f"{Fore.RED}{result.status}{Style.RESET_ALL}"

        today = result.daily[0] if result.daily else None
        ghi = today.get("ghi_wm2") if today else None
        ghi_text = "-" if ghi is None else str(ghi)

        name = region_id + (" (merged)" if result.merged_from else "")
        print(f"{name:<32}{cells[0]}  {cells[1]}  {ghi_text:<10}{status}")

    missing = [r for r in results.values() if r.status == STATUS_NO_DATA]
    if missing:
        print(f"\n{Fore.YELLOW}No data for: {', '.join(r.region_id for r in missing)}{Style.RESET_ALL}")


class JsonRenderer:
    """Writes bulletin_<timestamp>.json and bulletin_latest.json, then prints the table."""

    def __init__(self, config: BulletinConfig):
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.last_path = None

    def __call__(self, results: Dict[str, RegionResult]):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(IST)
        payload = to_payload(results, now, self.config)

        path = self.output_dir / f"bulletin_{now.strftime('%Y-%m-%d_%H-%M-%S')}.json"
        for target in (path, self.output_dir / "bulletin_latest.json"):
            with open(target, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False, default=str)

        self.last_path = path
        logger.info(f"[JsonRenderer] Bulletin saved to: {path}")
        print_bulletin(results)
        print(f"\n{Fore.GREEN}Bulletin saved:{Style.RESET_ALL} {path}")


def submit_observation(
    config: BulletinConfig,
    region_id: str,
    observed: float,
    predicted: float,
    timestamp: Optional[datetime] = None,
) -> int:
    store = BiasStore(config.bias_db_path)
    try:
        corrector = BiasCorrector(store, alpha=config.bias_alpha)
        new_bias = corrector.submit_observation(region_id, observed, predicted, timestamp=timestamp)
    finally:
        store.close()
    print(f"{Fore.GREEN}{region_id}: bias now {new_bias:+.2f} percentage points{Style.RESET_ALL}")
    return 0


def show_bias(config: BulletinConfig) -> int:
    store = BiasStore(config.bias_db_path)
    try:
        biases = store.all()
    finally:
        store.close()
    if not biases:
        print("No observations submitted yet.")
    for region_id, bias in biases.items():
        print(f"{region_id:<32}{bias:+.2f}")
    return 0


async def run(config: BulletinConfig, args) -> int:
    """Build the pipeline and run one cycle or the forever loop."""
    catalog = RegionCatalog.from_json(config.catalog_path) if config.catalog_path else RegionCatalog.default()

    store = BiasStore(config.bias_db_path)
    try:
        driver = build_driver(
            config,
            catalog=catalog,
            bias=BiasCorrector(store, alpha=config.bias_alpha),
            renderer=JsonRenderer(config),
        )
        driver.warm_start()

        if args.forever:
            await driver.run_forever()
            return 0

        start = datetime.now(IST)
        results = await driver.run_cycle(start, use_cache=not args.refresh)
        duration = (datetime.now(IST) - start).total_seconds()

        reliability = driver.ctx.cache.get_reliability() if driver.ctx.cache else {}
        for provider, stats in sorted(reliability.items()):
            logger.info(f"[main] {provider}: {stats['success_rate']}% over {stats['total_fetches']} fetches")

        ok = sum(1 for r in results.values() if r.status == STATUS_OK)
        print(f"\n   Regions fresh: {ok}/{len(results)}")
        print(f"   Duration: {duration:.2f} seconds\n")
        return 0 if ok else 1
    finally:
        store.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    config = BulletinConfig.from_env(args.env_file)
    if args.catalog:
        config.catalog_path = args.catalog
    if args.output:
        config.output_dir = args.output
        config.cache_dir = args.output / "cache"
    if args.log_level:
        config.log_level = args.log_level.upper()

    setup_logging(config.log_level)

    if args.observe:
        return submit_observation(config, *args.observe, timestamp=args.at)
    if args.show_bias:
        return show_bias(config)

    print_banner(config)
    logger.info("=" * 60)
    logger.info(f"Cloud Bulletin - Run: {datetime.now(IST):%Y-%m-%d %H:%M:%S} IST")
    logger.info("=" * 60)

    try:
        return asyncio.run(run(config, args))
    except KeyboardInterrupt:
        logger.info("[main] Interrupted")
        return 130
    except BulletinError as e:
        logger.error(f"FAILED: {e}", exc_info=True)
        print(f"\n{Fore.RED}ERROR: {e}{Style.RESET_ALL}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
