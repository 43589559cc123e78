"""
Bias Correction - learned per-region correction from observed cloud cover

This module keeps a per-region exponentially weighted bias between what was
observed and what the pipeline predicted, and subtracts it from the raw
aggregated percentage before classification.

Architecture:
1. THE STORE (Database): SQLite file holding one bias per region plus an
   audit log of every submitted observation
2. THE CORRECTOR: EWMA update on feedback, clamp-after-subtract on apply

    new_bias = (1 - alpha) * old_bias + alpha * (observed - predicted)

The bias is the only state that outlives a refresh cycle. It changes only on
explicit operator feedback, never from inside the fetch/aggregate pipeline.

Usage:
    store = BiasStore(Path("bias.db"))
    corrector = BiasCorrector(store)
    corrector.submit_observation("Punjab:Punjab", observed=40, predicted=30)
    corrector.apply("Punjab:Punjab", 55)
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, TypedDict

from cloud_bulletin.classifier import clamp_pct

logger = logging.getLogger(__name__)

# Default database path (at project root)
DB_PATH = Path("bias.db")

DEFAULT_ALPHA = 0.2


class ObservationRecord(TypedDict):
    region_id: str
    observed_at: str
    observed: float
    predicted: float
    bias_after: float


class BiasStore:
    """
    Small durable key-value store: region id -> bias.

    Backed by SQLite so the value survives restarts.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or DB_PATH
        logger.info(f"[BiasStore] Initializing with database: {self.db_path}")

        self.conn = sqlite3.connect(str(self.db_path))
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist."""
        cursor = self.conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS region_bias (
                region_id TEXT PRIMARY KEY,
                bias REAL NOT NULL DEFAULT 0,
                updates INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS observations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                region_id TEXT NOT NULL,
                observed_at TEXT NOT NULL,     -- timestamp the observation refers to
                observed REAL NOT NULL,        -- observed cloud cover (%)
                predicted REAL NOT NULL,       -- what the pipeline said (%)
                bias_after REAL NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        self.conn.commit()
        logger.debug("[BiasStore] Schema initialized")

    def get(self, region_id: str) -> float:
        row = self.conn.execute(
            "SELECT bias FROM region_bias WHERE region_id = ?", (region_id,)
        ).fetchone()
        return float(row[0]) if row else 0.0

    def set(self, region_id: str, bias: float) -> None:
        self.conn.execute('''
            INSERT INTO region_bias (region_id, bias, updates, updated_at)
            VALUES (?, ?, 1, ?)
            ON CONFLICT(region_id) DO UPDATE SET
                bias = excluded.bias,
                updates = region_bias.updates + 1,
                updated_at = excluded.updated_at
        ''', (region_id, float(bias), datetime.now().isoformat()))
        self.conn.commit()

    def all(self) -> Dict[str, float]:
        rows = self.conn.execute("SELECT region_id, bias FROM region_bias ORDER BY region_id").fetchall()
        return {region_id: float(bias) for region_id, bias in rows}

    def log_observation(self, record: ObservationRecord) -> None:
        self.conn.execute('''
            INSERT INTO observations (region_id, observed_at, observed, predicted, bias_after)
            VALUES (?, ?, ?, ?, ?)
        ''', (record["region_id"], record["observed_at"], record["observed"],
              record["predicted"], record["bias_after"]))
        self.conn.commit()

    def observations(self, region_id: str) -> List[ObservationRecord]:
        rows = self.conn.execute('''
            SELECT region_id, observed_at, observed, predicted, bias_after
            FROM observations WHERE region_id = ? ORDER BY id
        ''', (region_id,)).fetchall()
        return [
            {"region_id": r[0], "observed_at": r[1], "observed": r[2], "predicted": r[3], "bias_after": r[4]}
            for r in rows
        ]

    def close(self):
        self.conn.close()
        logger.debug("[BiasStore] Connection closed")


class BiasCorrector:
    """EWMA bias learner + applier."""

    def __init__(self, store: BiasStore, alpha: float = DEFAULT_ALPHA):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.store = store
        self.alpha = alpha

    def submit_observation(
        self,
        region_id: str,
        observed: float,
        predicted: float,
        timestamp: Optional[datetime] = None,
    ) -> float:
        """
        Fold one observation into the region's bias.

        Args:
            region_id: Region the observation belongs to
            observed: Observed cloud cover (%)
            predicted: Percentage the pipeline produced for the same time (%)
            timestamp: Time the observation refers to (defaults to now)

        Returns:
            The updated bias
        """
        observed = clamp_pct(observed)
        predicted = clamp_pct(predicted)

        old_bias = self.store.get(region_id)
        new_bias = (1 - self.alpha) * old_bias + self.alpha * (observed - predicted)
        self.store.set(region_id, new_bias)

        self.store.log_observation({
            "region_id": region_id,
            "observed_at": (timestamp or datetime.now()).isoformat(),
            "observed": observed,
            "predicted": predicted,
            "bias_after": new_bias,
        })

        logger.info(f"[BiasCorrector] {region_id}: observed={observed:.0f}% predicted={predicted:.0f}% "
                    f"bias {old_bias:+.2f} -> {new_bias:+.2f}")
        return new_bias

    def bias(self, region_id: str) -> float:
        return self.store.get(region_id)

    def apply(self, region_id: str, pct: Optional[float]) -> Optional[float]:
        """Subtract the region's bias and clamp to [0, 100]; None stays None."""
        if pct is None:
            return None
        return clamp_pct(pct - self.store.get(region_id))
