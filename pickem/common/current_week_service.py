"""Current week service for the pick'em calendar (read-only consumers)."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from pickem.common.pool_config import PoolConfig

UTC = timezone.utc
DEADLINE_TIME = time(20, 0, tzinfo=UTC)


def _now_utc() -> datetime:
    return datetime.now(UTC)


def parse_force_value(raw: str) -> Optional[Tuple[int, int]]:
    """Parse a "season-week" override (also accepts ':', ',', '/' or a space)."""
    raw = (raw or "").strip()
    for sep in ("-", ":", ",", "/"):
        if sep in raw:
            left, right = raw.split(sep, 1)
            break
    else:
        parts = raw.split()
        if len(parts) == 2:
            left, right = parts
        else:
            return None
    try:
        season = int(left.strip())
        week = int(right.strip())
        return season, week
    except ValueError:
        return None


def season_start(season: int, config: PoolConfig) -> date:
    """Monday on or before the configured season start date."""
    anchor = date(season, config.season_start_month, config.season_start_day)
    return anchor - timedelta(days=anchor.weekday())


def week_start(season: int, week: int, config: PoolConfig) -> date:
    return season_start(season, config) + timedelta(days=7 * (week - 1))


def week_deadline(season: int, week: int, config: PoolConfig) -> datetime:
    """Pick deadline: Sunday 20:00 UTC of the given week."""
    start = week_start(season, week, config) + timedelta(days=6)
    return datetime.combine(start, DEADLINE_TIME)


def current_week(config: PoolConfig, now: Optional[datetime] = None) -> Tuple[int, int]:
    """Return (season, week) for ``now``; weeks are clamped to 1..max_week.

    Before the season start in January-July the previous season's last week is
    reported; before the start in August the new season's week 1.
    """
    now = (now or _now_utc()).astimezone(UTC)
    season = now.year
    start = season_start(season, config)
    if now.date() < start and now.month < config.season_start_month:
        season -= 1
        start = season_start(season, config)
    days = (now.date() - start).days
    week = days // 7 + 1
    week = max(1, min(config.max_week, week))
    return season, week


def weeks_back(season: int, week: int, count: int) -> list:
    """Return [(season, week), ...] for ``week`` and up to ``count`` prior weeks."""
    return [(season, w) for w in range(week, max(0, week - count - 1), -1) if w >= 1]


__all__ = [
    "parse_force_value",
    "season_start",
    "week_start",
    "week_deadline",
    "current_week",
    "weeks_back",
]
