"""Shared record types passed between adapters, reconciler, scorer and storage.

Every upstream adapter converts its payload into these shapes at the boundary;
nothing downstream reads source-specific field names.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SOURCE_CFBD = "cfbd"
SOURCE_ESPN = "espn"
SOURCE_SCRAPE = "scrape"
SOURCE_ODDS = "odds"


@dataclass(frozen=True)
class CandidateGame:
    """One matchup as reported by a single upstream source."""

    external_id: Optional[str]
    home_team: str
    away_team: str
    start_time: Optional[datetime]
    source_id: str
    home_conference: Optional[str] = None
    away_conference: Optional[str] = None
    conference_game: bool = False
    home_classification: Optional[str] = None
    away_classification: Optional[str] = None
    home_rank: Optional[int] = None
    away_rank: Optional[int] = None
    spread: Optional[float] = None
    favorite_team: Optional[str] = None
    spread_source: Optional[str] = None
    completed: bool = False
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    def with_spread(self, favorite_team: Optional[str], spread: Optional[float], spread_source: Optional[str]) -> "CandidateGame":
        return replace(self, favorite_team=favorite_team, spread=spread, spread_source=spread_source)


@dataclass(frozen=True)
class SpreadQuote:
    """A bookmaker's spread for one event; line is the favorite's handicap (>= 0)."""

    home_team: str
    away_team: str
    favorite_team: str
    line: float
    source: str
    event_id: Optional[str] = None
    commence_time: Optional[datetime] = None


@dataclass(frozen=True)
class RankingEntry:
    team: str
    rank: int
    poll: str = "AP Top 25"


@dataclass(frozen=True)
class FinalScore:
    """Score report for a game; completed=False means in progress."""

    external_id: Optional[str]
    home_team: str
    away_team: str
    home_score: Optional[int]
    away_score: Optional[int]
    completed: bool
    source_id: str


@dataclass
class SelectedGame:
    """A scored candidate, ready to be persisted as a week's game."""

    candidate: CandidateGame
    score: int
    is_favorite_team_game: bool = False

    def as_row(self) -> Dict[str, Any]:
        game = self.candidate
        return {
            "external_id": game.external_id,
            "home_team": game.home_team,
            "away_team": game.away_team,
            "spread": game.spread,
            "favorite_team": game.favorite_team,
            "spread_source": game.spread_source if game.spread is not None else None,
            "start_time": to_iso_z(game.start_time),
            "is_favorite_team_game": 1 if self.is_favorite_team_game else 0,
            "source_id": game.source_id,
        }


def to_iso_z(dt: Optional[datetime]) -> Optional[str]:
    """Return ISO8601 UTC with a trailing 'Z'."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (with Z or offset) into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = [
    "SOURCE_CFBD",
    "SOURCE_ESPN",
    "SOURCE_SCRAPE",
    "SOURCE_ODDS",
    "CandidateGame",
    "SpreadQuote",
    "RankingEntry",
    "FinalScore",
    "SelectedGame",
    "to_iso_z",
    "parse_iso",
]
