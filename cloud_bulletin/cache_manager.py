"""
Result Cache Manager for Cloud Bulletin

Provides a Last Known Good (LKG) cache of the bulletin result set with tiered
staleness detection, plus per-provider reliability analytics.

Cycle cache:
- Results are keyed by the 3-hour IST cycle they were computed in
  (cycle key "<version>_<YYYYMMDD>_<bucket>", bucket = hour // 3). A restart
  inside the same cycle reuses them instead of refetching.
- A civil-midnight rollover or an explicit invalidate() drops the cycle cache.

Tiers (LKG age):
- FRESH: < 10 minutes
- ACCEPTABLE: < 6 hours
- STALE_WARN: < 24 hours
- STALE_ERROR: > 24 hours

Analytics:
- Per-provider success/failure counts and error types -> reliability.json
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

CACHE_VERSION = "v2"


class CacheTier(Enum):
    """Data freshness tiers."""
    FRESH = "FRESH"
    ACCEPTABLE = "ACCEPTABLE"
    STALE_WARN = "STALE_WARN"
    STALE_ERROR = "STALE_ERROR"


def tier_for_age(hours: float) -> CacheTier:
    if hours < 0.167:  # 10 minutes
        return CacheTier.FRESH
    elif hours < 6:
        return CacheTier.ACCEPTABLE
    elif hours < 24:
        return CacheTier.STALE_WARN
    return CacheTier.STALE_ERROR


def cycle_key(moment: datetime, interval_hours: int = 3) -> str:
    """Cache key of the refresh cycle containing `moment` (IST wall clock)."""
    bucket = moment.hour // interval_hours
    return f"{CACHE_VERSION}_{moment.strftime('%Y%m%d')}_{bucket}"


@dataclass
class CacheEntry:
    """Cached result set with metadata."""
    key: str
    timestamp: datetime
    data: Any

    def age_hours(self, now: datetime) -> float:
        return max(0.0, (now - self.timestamp).total_seconds() / 3600)

    def tier(self, now: datetime) -> CacheTier:
        return tier_for_age(self.age_hours(now))

    def status_label(self, now: datetime) -> str:
        """Human-readable freshness for the bulletin footer."""
        tier = self.tier(now)
        hours = int(self.age_hours(now))
        if tier == CacheTier.FRESH:
            return "LIVE"
        elif tier == CacheTier.ACCEPTABLE:
            return "CACHED"
        elif tier == CacheTier.STALE_WARN:
            return f"STALE ({hours}h)"
        return f"OLD ({hours}h)"


class CacheManager:
    """
    Result-set cache and provider analytics.

    The cache holds the renderer payload, so a restart can serve the last
    bulletin immediately while the next cycle is computed.
    """

    def __init__(self, cache_dir: Path = Path("outputs/cache"), interval_hours: int = 3):
        self.cache_dir = Path(cache_dir)
        self.interval_hours = interval_hours
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.lkg_path = self.cache_dir / "bulletin_lkg.json"
        self.analytics_path = self.cache_dir / "reliability.json"
        self._analytics: Dict[str, Any] = self._load_analytics()

    # --- result cache -------------------------------------------------

    def save_results(self, payload: Dict[str, Any], now: datetime) -> None:
        entry = {
            "key": cycle_key(now, self.interval_hours),
            "timestamp": now.isoformat(),
            "data": payload,
        }
        try:
            with open(self.lkg_path, 'w', encoding='utf-8') as f:
                json.dump(entry, f, indent=2, default=str)
            logger.debug(f"[CacheManager] LKG saved under {entry['key']}")
        except OSError as e:
            logger.error(f"[CacheManager] Failed to save LKG: {e}")

    def load_lkg(self) -> Optional[CacheEntry]:
        """Last saved result set, any age."""
        if not self.lkg_path.exists():
            return None
        try:
            with open(self.lkg_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            return CacheEntry(
                key=raw["key"],
                timestamp=datetime.fromisoformat(raw["timestamp"]),
                data=raw["data"],
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[CacheManager] Failed to load LKG: {e}")
            return None

    def load_results(self, now: datetime) -> Optional[CacheEntry]:
        """The cached result set only if it belongs to the current cycle."""
        entry = self.load_lkg()
        if entry is None:
            return None
        if entry.key != cycle_key(now, self.interval_hours):
            logger.debug(f"[CacheManager] LKG {entry.key} is from another cycle")
            return None
        logger.info(f"[CacheManager] Current-cycle results available ({entry.status_label(now)})")
        return entry

    def invalidate(self) -> None:
        """Drop the cached result set (midnight rollover / forced refresh)."""
        if self.lkg_path.exists():
            self.lkg_path.unlink()
            logger.info("[CacheManager] Result cache invalidated")

    # --- analytics ----------------------------------------------------

    def _load_analytics(self) -> Dict[str, Any]:
        if self.analytics_path.exists():
            try:
                with open(self.analytics_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"[CacheManager] Failed to load analytics: {e}")

        return {"version": "1.0", "last_updated": None, "total_runs": 0, "providers": {}}

    def _save_analytics(self) -> None:
        try:
            self._analytics["last_updated"] = datetime.now().isoformat()
            with open(self.analytics_path, 'w', encoding='utf-8') as f:
                json.dump(self._analytics, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"[CacheManager] Failed to save analytics: {e}")

    def _provider_stats(self, provider: str) -> Dict[str, Any]:
        return self._analytics["providers"].setdefault(provider, {
            "total_fetches": 0,
            "successes": 0,
            "failures": 0,
            "error_types": {},
        })

    def record_outcomes(self, outcomes: Iterable[Any]) -> None:
        """Fold a cycle's ProviderOutcome list into the analytics file."""
        for outcome in outcomes:
            stats = self._provider_stats(outcome.provider)
            stats["total_fetches"] += 1
            if outcome.ok:
                stats["successes"] += 1
            else:
                stats["failures"] += 1
                key = outcome.error_type or "unknown"
                stats["error_types"][key] = stats["error_types"].get(key, 0) + 1
        self._save_analytics()

    def increment_run_count(self) -> None:
        self._analytics["total_runs"] = self._analytics.get("total_runs", 0) + 1
        self._save_analytics()

    def get_reliability(self) -> Dict[str, Any]:
        """Per-provider success rate summary."""
        summary: Dict[str, Any] = {}
        for provider, stats in self._analytics.get("providers", {}).items():
            total = stats.get("total_fetches", 0)
            if total == 0:
                continue
            summary[provider] = {
                "total_fetches": total,
                "success_rate": round(stats.get("successes", 0) / total * 100, 1),
                "error_types": stats.get("error_types", {}),
            }
        return summary
