"""CollegeFootballData (CFBD) adapter: games, AP rankings and final scores.

Purpose:
    Primary structured source. Requires ``CFBD_API_KEY``; a missing key is a
    ConfigurationError raised before any request is made.
Invariants:
    * Payload keys are normalized at this boundary (``homeTeam`` and
      ``home_team`` both land on ``home_team``).
    * Only the AP Top 25 poll is returned by ``fetch_rankings``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import requests

from pickem.common.errors import ConfigurationError
from pickem.common.models import SOURCE_CFBD, CandidateGame, FinalScore, RankingEntry, parse_iso
from pickem.sources.base import (
    UpstreamSource,
    external_id_or_none,
    header_int,
    int_or_none,
    normalize_fields,
)

CFBD_BASE_URL = "https://api.collegefootballdata.com"
AP_POLL = "AP Top 25"

_GAME_FIELDS: Dict[str, List[str]] = {
    "id": ["id", "game_id", "gameId"],
    "home_team": ["homeTeam", "home_team"],
    "away_team": ["awayTeam", "away_team"],
    "start_date": ["startDate", "start_date"],
    "home_conference": ["homeConference", "home_conference"],
    "away_conference": ["awayConference", "away_conference"],
    "conference_game": ["conferenceGame", "conference_game"],
    "home_classification": ["homeClassification", "home_classification", "home_division"],
    "away_classification": ["awayClassification", "away_classification", "away_division"],
    "home_points": ["homePoints", "home_points"],
    "away_points": ["awayPoints", "away_points"],
    "completed": ["completed"],
}


def _lower_or_none(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if isinstance(value, str) and value.strip() else None


class CfbdSource(UpstreamSource):
    source_id = SOURCE_CFBD

    def __init__(
        self,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        season_type: str = "regular",
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.api_key = api_key
        self._secret = api_key
        self.season_type = season_type

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError(self.source_id, "CFBD_API_KEY is not configured")
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    def _quota_from(self, response: requests.Response) -> Optional[int]:
        return header_int(response, "X-CallLimit-Remaining", "x-calllimit-remaining")

    def _games_payload(self, year: int, week: int) -> List[dict]:
        headers = self._headers()
        params = {"year": year, "week": week, "seasonType": self.season_type}
        data, _ = self._get_json(f"{CFBD_BASE_URL}/games", params=params, headers=headers, endpoint="/games")
        if not isinstance(data, list):
            return []
        return normalize_fields([row for row in data if isinstance(row, dict)], _GAME_FIELDS)

    def fetch_games(self, year: int, week: int) -> List[CandidateGame]:
        games: List[CandidateGame] = []
        for row in self._games_payload(year, week):
            home = row.get("home_team")
            away = row.get("away_team")
            if not home or not away:
                continue
            games.append(
                CandidateGame(
                    external_id=external_id_or_none(row.get("id")),
                    home_team=str(home),
                    away_team=str(away),
                    start_time=parse_iso(row.get("start_date")),
                    source_id=self.source_id,
                    home_conference=row.get("home_conference"),
                    away_conference=row.get("away_conference"),
                    conference_game=bool(row.get("conference_game")),
                    home_classification=_lower_or_none(row.get("home_classification")),
                    away_classification=_lower_or_none(row.get("away_classification")),
                    completed=bool(row.get("completed")),
                    home_score=int_or_none(row.get("home_points")),
                    away_score=int_or_none(row.get("away_points")),
                )
            )
        print(f"CFBD_GAMES: season={year} week={week} games={len(games)} quota={self.last_quota}")
        return games

    def fetch_rankings(self, year: int, week: int) -> List[RankingEntry]:
        headers = self._headers()
        params = {"year": year, "week": week, "seasonType": self.season_type}
        data, _ = self._get_json(f"{CFBD_BASE_URL}/rankings", params=params, headers=headers, endpoint="/rankings")
        entries: List[RankingEntry] = []
        for snapshot in data if isinstance(data, list) else []:
            for poll in (snapshot or {}).get("polls") or []:
                if (poll or {}).get("poll") != AP_POLL:
                    continue
                for rank in poll.get("ranks") or []:
                    school = (rank or {}).get("school")
                    value = int_or_none((rank or {}).get("rank"))
                    if school and value is not None:
                        entries.append(RankingEntry(team=str(school), rank=value, poll=AP_POLL))
        print(f"CFBD_RANKINGS: season={year} week={week} ranked={len(entries)}")
        return entries

    def fetch_final_scores(self, year: int, week: int) -> List[FinalScore]:
        scores: List[FinalScore] = []
        for row in self._games_payload(year, week):
            home_points = int_or_none(row.get("home_points"))
            away_points = int_or_none(row.get("away_points"))
            if home_points is None or away_points is None:
                continue
            scores.append(
                FinalScore(
                    external_id=external_id_or_none(row.get("id")),
                    home_team=str(row.get("home_team") or ""),
                    away_team=str(row.get("away_team") or ""),
                    home_score=home_points,
                    away_score=away_points,
                    completed=bool(row.get("completed")),
                    source_id=self.source_id,
                )
            )
        return scores


__all__ = ["CfbdSource", "CFBD_BASE_URL"]
