from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import requests

from pickem.common.models import CandidateGame, FinalScore, RankingEntry
from pickem.common.pool_config import PoolConfig
from pickem.common.team_names_cfb import TeamNameNormalizer
from pickem.context import make_context
from pickem.sources.base import UpstreamSource
from pickem.storage import db

FIXED_NOW = datetime(2025, 9, 30, 15, 0, tzinfo=timezone.utc)  # Tuesday of week 6


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {}

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in call order."""

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if not self.responses:
            raise requests.ConnectionError("no fake response queued")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeSource(UpstreamSource):
    """Game source returning canned data, or raising a canned error."""

    def __init__(
        self,
        source_id: str,
        games: Optional[List[CandidateGame]] = None,
        rankings: Optional[List[RankingEntry]] = None,
        finals: Optional[List[FinalScore]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        super().__init__(session=FakeSession())
        self.source_id = source_id
        self.games = games or []
        self.rankings = rankings or []
        self.finals = finals or []
        self.error = error
        self.calls: List[str] = []

    def fetch_games(self, year, week):
        self.calls.append(f"games:{year}:{week}")
        self.last_endpoint = "/games"
        if self.error:
            raise self.error
        return list(self.games)

    def fetch_rankings(self, year, week):
        self.calls.append(f"rankings:{year}:{week}")
        return list(self.rankings)

    def fetch_final_scores(self, year, week):
        self.calls.append(f"finals:{year}:{week}")
        if self.error:
            raise self.error
        return list(self.finals)


def make_game(home, away, source_id="cfbd", external_id=None, **kwargs) -> CandidateGame:
    return CandidateGame(
        external_id=external_id or f"{source_id}-{home}-{away}".replace(" ", "_").lower(),
        home_team=home,
        away_team=away,
        start_time=kwargs.pop("start_time", datetime(2025, 10, 4, 19, 30, tzinfo=timezone.utc)),
        source_id=source_id,
        **kwargs,
    )


@pytest.fixture
def conn():
    connection = db.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def config():
    return PoolConfig(politeness_delay=0.0)


@pytest.fixture
def normalizer(config):
    return TeamNameNormalizer.from_config(config)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def ctx_factory(conn, config, clock):
    def build(game_sources=None, odds_source=None, now=None):
        return make_context(
            conn,
            config,
            game_sources=game_sources or [],
            odds_source=odds_source,
            clock=(lambda: now) if now else clock,
            sleep=lambda seconds: None,
        )

    return build


def add_week(conn, season=2025, week=6, status="active", locked=False) -> int:
    with conn:
        week_id = db.insert_week(conn, season, week, "2025-10-05T20:00:00Z", status=status)
        if locked:
            db.set_spreads_locked(conn, week_id, True)
    return week_id


def add_game(conn, week_id, home, away, **columns) -> int:
    row = {
        "external_id": columns.pop("external_id", None),
        "home_team": home,
        "away_team": away,
        "start_time": columns.pop("start_time", "2025-10-04T19:30:00Z"),
        "source_id": columns.pop("source_id", "cfbd"),
    }
    row.update({key: columns.pop(key) for key in list(columns) if key in ("spread", "favorite_team", "spread_source")})
    with conn:
        game_id = db.insert_game(conn, week_id, row)
        if columns:
            assignments = ", ".join(f"{key} = ?" for key in columns)
            conn.execute(f"UPDATE games SET {assignments} WHERE id = ?", [*columns.values(), game_id])
    return game_id
