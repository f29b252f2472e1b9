"""Per-source health tracking backed by the api_usage_log table.

Purpose:
    Decide whether an upstream source should be skipped this cycle from the
    recent evidence of its own calls: self-reported quota and error rate.
Invariants:
    * Every recorded call is written durably before the next skip decision.
    * No reset timer: a skipped source recovers only through newer successful
      calls (or once its failures age out of the window).
Side effects:
    * Inserts/deletes rows in ``api_usage_log``; callers own the connection.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from pickem.common.models import to_iso_z
from pickem.common.pool_config import PoolConfig
from pickem.storage import db

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceHealthTracker:
    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[PoolConfig] = None,
        clock: Clock = _utc_now,
    ) -> None:
        self.conn = conn
        self.config = config or PoolConfig()
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return (now or self.clock()).astimezone(timezone.utc)

    def record(
        self,
        source: str,
        success: bool,
        quota_remaining: Optional[int] = None,
        endpoint: str = "",
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        stamp = to_iso_z(self._now(now))
        with self.conn:
            db.insert_usage(self.conn, source, endpoint, stamp, success, error, quota_remaining)
        if not success:
            print(f"SOURCE_HEALTH: source={source} endpoint={endpoint} success=0 error={error}")

    def should_skip(self, source: str, now: Optional[datetime] = None) -> bool:
        current = self._now(now)
        credits = db.last_credits(self.conn, source)
        if credits is not None and credits < self.config.min_quota_remaining:
            print(f"SOURCE_HEALTH: source={source} skip=1 reason=low_quota credits={credits}")
            return True
        since = to_iso_z(current - timedelta(hours=self.config.health_window_hours))
        row = db.usage_since(self.conn, source, since)
        calls = int(row["calls"] or 0)
        errors = int(row["errors"] or 0)
        if calls >= self.config.min_calls_for_error_rate and errors / calls > self.config.max_error_rate:
            print(
                f"SOURCE_HEALTH: source={source} skip=1 reason=error_rate "
                f"calls={calls} errors={errors}"
            )
            return True
        return False

    def usage_stats(self, now: Optional[datetime] = None) -> List[Dict[str, object]]:
        """Per-service summary over the health window for operator display."""
        current = self._now(now)
        since = to_iso_z(current - timedelta(hours=self.config.health_window_hours))
        stats: List[Dict[str, object]] = []
        for service in db.usage_services(self.conn):
            row = db.usage_since(self.conn, service, since)
            calls = int(row["calls"] or 0)
            errors = int(row["errors"] or 0)
            stats.append(
                {
                    "service": service,
                    "calls": calls,
                    "errors": errors,
                    "error_rate": round(errors / calls, 3) if calls else 0.0,
                    "credits_remaining": db.last_credits(self.conn, service),
                    "last_call": row["last_call"],
                    "skip": self.should_skip(service, current),
                }
            )
        return stats

    def cleanup(self, now: Optional[datetime] = None, retention_days: Optional[int] = None) -> int:
        days = self.config.usage_log_retention_days if retention_days is None else retention_days
        cutoff = to_iso_z(self._now(now) - timedelta(days=days))
        with self.conn:
            removed = db.delete_usage_before(self.conn, cutoff)
        print(f"SOURCE_HEALTH_CLEANUP: removed={removed} cutoff={cutoff}")
        return removed


__all__ = ["SourceHealthTracker"]
