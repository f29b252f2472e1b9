"""ESPN scoreboard JSON adapter (free, no credential).

Purpose:
    Secondary structured source for games, curated (AP) ranks, embedded
    spreads and final scores.
Invariants:
    * ``groups=80`` restricts the scoreboard to FBS, so candidates carry the
      "fbs" classification.
    * Embedded ``odds[0].spread`` is home-relative: negative means the home
      team is favored; the stored line is its absolute value.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import requests

from pickem.common.models import SOURCE_ESPN, CandidateGame, FinalScore, RankingEntry, parse_iso
from pickem.sources.base import UpstreamSource, external_id_or_none, float_or_none, int_or_none

ESPN_SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/football/college-football/scoreboard"
FBS_GROUP = "80"
USER_AGENT = "Mozilla/5.0 (compatible; CFBPickem/1.0)"
UNRANKED = 99


def _competitors(event: Dict[str, Any]) -> Tuple[Optional[dict], Optional[dict], dict]:
    competitions = event.get("competitions") or []
    competition = competitions[0] if competitions and isinstance(competitions[0], dict) else {}
    home = away = None
    for competitor in competition.get("competitors") or []:
        side = (competitor or {}).get("homeAway")
        if side == "home":
            home = competitor
        elif side == "away":
            away = competitor
    return home, away, competition


def _team_name(competitor: Optional[dict]) -> Optional[str]:
    team = (competitor or {}).get("team") or {}
    name = team.get("displayName") or team.get("shortDisplayName") or team.get("location")
    return str(name).strip() if name else None


def _rank(competitor: Optional[dict]) -> Optional[int]:
    current = int_or_none(((competitor or {}).get("curatedRank") or {}).get("current"))
    if current is None or current <= 0 or current >= UNRANKED:
        return None
    return current


def _completed(event: Dict[str, Any]) -> bool:
    status = ((event.get("status") or {}).get("type")) or {}
    return bool(status.get("completed"))


class EspnSource(UpstreamSource):
    source_id = SOURCE_ESPN

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0) -> None:
        super().__init__(session=session, timeout=timeout)
        # Payload of the latest fetch_games, reused once by the fetch_rankings that follows it.
        self._last_events: Optional[Tuple[Tuple[int, int], List[dict]]] = None

    def _events(self, year: int, week: int) -> List[dict]:
        params = {"seasontype": 2, "week": week, "year": year, "groups": FBS_GROUP, "limit": 300}
        data, _ = self._get_json(
            ESPN_SCOREBOARD_URL,
            params=params,
            headers={"User-Agent": USER_AGENT},
            endpoint=f"/scoreboard/week/{week}",
        )
        return [e for e in (data or {}).get("events") or [] if isinstance(e, dict)]

    def fetch_games(self, year: int, week: int) -> List[CandidateGame]:
        events = self._events(year, week)
        self._last_events = ((year, week), events)
        games: List[CandidateGame] = []
        for event in events:
            home, away, competition = _competitors(event)
            home_name, away_name = _team_name(home), _team_name(away)
            if not home_name or not away_name:
                continue
            spread: Optional[float] = None
            favorite: Optional[str] = None
            odds = competition.get("odds") or []
            if odds and isinstance(odds[0], dict):
                point = float_or_none(odds[0].get("spread"))
                if point is not None:
                    spread = abs(point)
                    favorite = away_name if point > 0 else home_name
            games.append(
                CandidateGame(
                    external_id=external_id_or_none(event.get("id")),
                    home_team=home_name,
                    away_team=away_name,
                    start_time=parse_iso(event.get("date")),
                    source_id=self.source_id,
                    conference_game=bool(competition.get("conferenceCompetition")),
                    home_classification="fbs",
                    away_classification="fbs",
                    home_rank=_rank(home),
                    away_rank=_rank(away),
                    spread=spread,
                    favorite_team=favorite,
                    spread_source=self.source_id if spread is not None else None,
                    completed=_completed(event),
                    home_score=int_or_none((home or {}).get("score")),
                    away_score=int_or_none((away or {}).get("score")),
                )
            )
        print(f"ESPN_GAMES: season={year} week={week} games={len(games)}")
        return games

    def fetch_rankings(self, year: int, week: int) -> List[RankingEntry]:
        cached, self._last_events = self._last_events, None
        if cached is not None and cached[0] == (year, week):
            events = cached[1]
            self.last_from_cache = True
        else:
            events = self._events(year, week)
        ranks: Dict[str, int] = {}
        for event in events:
            home, away, _ = _competitors(event)
            for competitor in (home, away):
                name, rank = _team_name(competitor), _rank(competitor)
                if name and rank is not None:
                    ranks[name] = rank
        return [RankingEntry(team=name, rank=rank) for name, rank in sorted(ranks.items(), key=lambda kv: kv[1])]

    def fetch_final_scores(self, year: int, week: int) -> List[FinalScore]:
        scores: List[FinalScore] = []
        for event in self._events(year, week):
            home, away, _ = _competitors(event)
            home_score = int_or_none((home or {}).get("score"))
            away_score = int_or_none((away or {}).get("score"))
            if home_score is None or away_score is None:
                continue
            scores.append(
                FinalScore(
                    external_id=external_id_or_none(event.get("id")),
                    home_team=_team_name(home) or "",
                    away_team=_team_name(away) or "",
                    home_score=home_score,
                    away_score=away_score,
                    completed=_completed(event),
                    source_id=self.source_id,
                )
            )
        return scores


__all__ = ["EspnSource", "ESPN_SCOREBOARD_URL"]
