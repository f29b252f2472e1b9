"""ESPN scoreboard HTML scraper (last-resort games/finals source).

Purpose & scope:
    Parse the public scoreboard pages for Thursday through Sunday of a week
    when both structured sources came back empty or failed.
Invariants:
    * A card that fails to parse raises ParseError internally, is skipped and
      counted in ``last_parse_errors``; the batch never fails because of it.
    * Pages are fetched sequentially with a politeness delay between them.
    * Games are de-duplicated by team pair across the four dates.
Do not:
    * Guess spreads; scraped candidates never carry a line.
"""

from __future__ import annotations

import time
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from pickem.common.current_week_service import week_start
from pickem.common.errors import ParseError, TransientUpstreamError
from pickem.common.models import SOURCE_SCRAPE, CandidateGame, FinalScore
from pickem.common.pool_config import PoolConfig
from pickem.common.team_names_cfb import team_merge_key_cfb
from pickem.sources.base import UpstreamSource, int_or_none

SCOREBOARD_URL = "https://www.espn.com/college-football/scoreboard/_/date/{yyyymmdd}"
CARD_SELECTORS = ["section.Scoreboard", ".Scoreboard__Row", ".ScoreboardScoreCell"]
# Thursday..Sunday offsets from the Monday a week starts on.
GAME_DAY_OFFSETS = (3, 4, 5, 6)
# Kickoff is not on the card; assume noon Eastern on the listed date.
DEFAULT_KICKOFF = dtime(16, 0, tzinfo=timezone.utc)
HTML_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def _text(node) -> str:
    return " ".join(node.get_text(" ", strip=True).split()) if node is not None else ""


def parse_scoreboard_card(card, game_day: date) -> Dict[str, object]:
    """Parse one scoreboard card into a dict; raise ParseError when unusable."""
    items = card.select(".ScoreboardScoreCell__Item")
    teams: List[Tuple[str, Optional[int], Optional[int]]] = []
    if len(items) >= 2:
        for item in items[:2]:
            name = _text(item.select_one(".ScoreCell__TeamName"))
            rank = int_or_none(_text(item.select_one(".ScoreCell__Rank")) or None)
            score = int_or_none(_text(item.select_one(".ScoreCell__Score")) or None)
            teams.append((name, rank, score))
    else:
        names = [_text(node) for node in card.select(".ScoreCell__TeamName")]
        scores = [int_or_none(_text(node) or None) for node in card.select(".ScoreCell__Score")]
        if len(names) < 2:
            raise ParseError(f"expected two team names, found {len(names)}")
        scores = (scores + [None, None])[:2]
        teams = [(names[0], None, scores[0]), (names[1], None, scores[1])]
    (away, away_rank, away_score), (home, home_rank, home_score) = teams
    if not away or not home:
        raise ParseError("blank team name")
    if team_merge_key_cfb(away) == team_merge_key_cfb(home):
        raise ParseError(f"same team on both sides: {home}")
    status = _text(card.select_one(".ScoreCell__Status")).lower()
    completed = "final" in status
    return {
        "away_team": away,
        "home_team": home,
        "away_rank": away_rank if away_rank and away_rank <= 25 else None,
        "home_rank": home_rank if home_rank and home_rank <= 25 else None,
        "away_score": away_score,
        "home_score": home_score,
        "completed": completed,
        "game_day": game_day,
    }


def parse_scoreboard_html(html: str, game_day: date) -> Tuple[List[Dict[str, object]], int]:
    """Return (parsed cards, parse error count) for one scoreboard page."""
    soup = BeautifulSoup(html, "html.parser")
    for selector in CARD_SELECTORS:
        cards = soup.select(selector)
        if not cards:
            continue
        parsed: List[Dict[str, object]] = []
        errors = 0
        for card in cards:
            try:
                parsed.append(parse_scoreboard_card(card, game_day))
            except ParseError as exc:
                errors += 1
                print(f"SCRAPE_PARSE_SKIP: date={game_day:%Y%m%d} selector={selector} error={exc}")
        if parsed:
            return parsed, errors
        if errors:
            return [], errors
    return [], 0


class ScoreboardScraper(UpstreamSource):
    source_id = SOURCE_SCRAPE

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.config = config or PoolConfig()
        self.sleep = sleep
        self.last_parse_errors = 0

    def game_days(self, year: int, week: int) -> List[date]:
        start = week_start(year, week, self.config)
        return [start + timedelta(days=offset) for offset in GAME_DAY_OFFSETS]

    def _scrape_week(self, year: int, week: int) -> List[Dict[str, object]]:
        self.last_parse_errors = 0
        rows: List[Dict[str, object]] = []
        seen = set()
        failures: List[str] = []
        days = self.game_days(year, week)
        for index, game_day in enumerate(days):
            if index:
                self.sleep(self.config.politeness_delay)
            url = SCOREBOARD_URL.format(yyyymmdd=game_day.strftime("%Y%m%d"))
            try:
                response = self._get(url, headers=HTML_HEADERS, endpoint=f"/scrape/{game_day:%Y%m%d}")
            except TransientUpstreamError as exc:
                failures.append(str(exc))
                continue
            parsed, errors = parse_scoreboard_html(response.text, game_day)
            self.last_parse_errors += errors
            for row in parsed:
                pair = frozenset({team_merge_key_cfb(row["home_team"]), team_merge_key_cfb(row["away_team"])})
                if pair in seen:
                    continue
                seen.add(pair)
                rows.append(row)
        if failures and len(failures) == len(days):
            raise TransientUpstreamError(self.source_id, f"all scoreboard pages failed: {failures[-1]}")
        print(
            f"SCRAPE_WEEK: season={year} week={week} games={len(rows)} "
            f"parse_errors={self.last_parse_errors} page_failures={len(failures)}"
        )
        return rows

    @staticmethod
    def _external_id(row: Dict[str, object]) -> str:
        game_day = row["game_day"]
        return (
            f"scrape_{team_merge_key_cfb(row['away_team'])}_"
            f"{team_merge_key_cfb(row['home_team'])}_{game_day:%Y%m%d}"
        )

    def fetch_games(self, year: int, week: int) -> List[CandidateGame]:
        games: List[CandidateGame] = []
        for row in self._scrape_week(year, week):
            game_day = row["game_day"]
            games.append(
                CandidateGame(
                    external_id=self._external_id(row),
                    home_team=str(row["home_team"]),
                    away_team=str(row["away_team"]),
                    start_time=datetime.combine(game_day, DEFAULT_KICKOFF),
                    source_id=self.source_id,
                    home_rank=row["home_rank"],
                    away_rank=row["away_rank"],
                    completed=bool(row["completed"]),
                    home_score=row["home_score"] if row["completed"] else None,
                    away_score=row["away_score"] if row["completed"] else None,
                )
            )
        return games

    def fetch_final_scores(self, year: int, week: int) -> List[FinalScore]:
        scores: List[FinalScore] = []
        for row in self._scrape_week(year, week):
            if not row["completed"] or row["home_score"] is None or row["away_score"] is None:
                continue
            scores.append(
                FinalScore(
                    external_id=self._external_id(row),
                    home_team=str(row["home_team"]),
                    away_team=str(row["away_team"]),
                    home_score=int(row["home_score"]),
                    away_score=int(row["away_score"]),
                    completed=True,
                    source_id=self.source_id,
                )
            )
        return scores


__all__ = ["ScoreboardScraper", "parse_scoreboard_html", "parse_scoreboard_card", "SCOREBOARD_URL"]
