"""Wiring for the pipeline: connection, config, adapters, tracker and clock.

``build_context`` is the only place that reads the environment; the
orchestration functions receive everything through ``PipelineContext``.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import requests

from pickem.common.current_week_service import current_week, parse_force_value
from pickem.common.io_utils import default_db_path, read_env
from pickem.common.pool_config import PoolConfig, load_pool_config
from pickem.common.team_names_cfb import TeamNameNormalizer
from pickem.odds.odds_api_client import OddsApiSource
from pickem.selection.scorer import MatchupScorer
from pickem.sources.base import UpstreamSource
from pickem.sources.cfb_source import CfbdSource
from pickem.sources.espn_source import EspnSource
from pickem.sources.health import SourceHealthTracker
from pickem.sources.scoreboard_scraper import ScoreboardScraper
from pickem.storage import db

ENV_KEYS = ["CFBD_API_KEY", "THE_ODDS_API_KEY", "PICKEM_DB_PATH", "POOL_CONFIG_PATH", "WEEK_FORCE"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineContext:
    conn: sqlite3.Connection
    config: PoolConfig
    normalizer: TeamNameNormalizer
    scorer: MatchupScorer
    tracker: SourceHealthTracker
    game_sources: List[UpstreamSource]
    odds_source: Optional[OddsApiSource]
    clock: Callable[[], datetime] = _utc_now
    sleep: Callable[[float], None] = time.sleep
    forced_week: Optional[Tuple[int, int]] = None

    def now(self) -> datetime:
        return self.clock().astimezone(timezone.utc)

    def current_week(self) -> Tuple[int, int]:
        if self.forced_week:
            return self.forced_week
        return current_week(self.config, self.now())


def make_context(
    conn: sqlite3.Connection,
    config: Optional[PoolConfig] = None,
    game_sources: Optional[List[UpstreamSource]] = None,
    odds_source: Optional[OddsApiSource] = None,
    clock: Callable[[], datetime] = _utc_now,
    sleep: Callable[[float], None] = time.sleep,
    forced_week: Optional[Tuple[int, int]] = None,
) -> PipelineContext:
    """Assemble a context from explicit parts (tests and embedding callers)."""
    config = config or PoolConfig()
    normalizer = TeamNameNormalizer.from_config(config)
    return PipelineContext(
        conn=conn,
        config=config,
        normalizer=normalizer,
        scorer=MatchupScorer(config, normalizer),
        tracker=SourceHealthTracker(conn, config, clock=clock),
        game_sources=list(game_sources or []),
        odds_source=odds_source,
        clock=clock,
        sleep=sleep,
        forced_week=forced_week,
    )


def build_context(db_path: Optional[str] = None) -> PipelineContext:
    """Read .env/environment once and build the production context."""
    env = read_env(ENV_KEYS)
    config = load_pool_config(env.get("POOL_CONFIG_PATH"))
    conn = db.connect(db_path or env.get("PICKEM_DB_PATH") or default_db_path())
    session = requests.Session()
    sources: List[UpstreamSource] = [
        CfbdSource(env.get("CFBD_API_KEY"), session=session, timeout=config.http_timeout),
        EspnSource(session=session),
        ScoreboardScraper(config=config, session=session),
    ]
    odds = OddsApiSource(env.get("THE_ODDS_API_KEY"), session=session, timeout=config.http_timeout)
    forced = parse_force_value(env["WEEK_FORCE"]) if env.get("WEEK_FORCE") else None
    if forced:
        print(f"CurrentWeek(CFB) forced season={forced[0]} week={forced[1]}")
    return make_context(conn, config, sources, odds, forced_week=forced)


__all__ = ["PipelineContext", "make_context", "build_context"]
