"""
The Odds API client for current NCAAF spreads.

Purpose:
    Fetch live spread markets and flatten them into one SpreadQuote per
    (event, bookmaker) so the reconciler can apply provider priority.
Invariants:
    * A missing THE_ODDS_API_KEY raises ConfigurationError before any request.
    * HTTP 429 is an empty result, not an error; the call is still recorded
      as failed by the orchestrator through ``last_rate_limited``.
    * Quote lines are non-negative; the favorite is the side with the negative
      point. A zero point is a pick'em with the home team as nominal favorite.
Log contract:
    - HTTP errors surface via ``log_api_error`` (red text in console) and
      ``ODDS_API_USAGE`` tracks the quota headers for summary reporting.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import requests

from pickem.common.errors import ConfigurationError, TransientUpstreamError
from pickem.common.models import SOURCE_ODDS, SpreadQuote, parse_iso
from pickem.sources.base import UpstreamSource, float_or_none, header_int

_THE_ODDS_BASE = "https://api.the-odds-api.com/v4"
_SPORT_KEY = "americanfootball_ncaaf"

# One-run usage counters (callers can emit a single summary line).
ODDS_API_USAGE: Dict[str, Optional[str]] = {"remaining": None, "used": None}


def _extract_spread_from_market(
    market: Dict[str, Any], home_name: str, away_name: str
) -> Optional[Tuple[str, float]]:
    """Return (favorite name, line) from a spreads market, or None."""
    home_point: Optional[float] = None
    away_point: Optional[float] = None
    for outcome in market.get("outcomes") or []:
        if not isinstance(outcome, dict):
            continue
        name = (outcome.get("name") or "").strip()
        point = float_or_none(outcome.get("point"))
        if point is None:
            continue
        if name == home_name:
            home_point = point
        elif name == away_name:
            away_point = point
    if home_point is None and away_point is not None:
        home_point = -away_point
    if home_point is None:
        return None
    if home_point > 0:
        return away_name, abs(home_point)
    return home_name, abs(home_point)


class OddsApiSource(UpstreamSource):
    source_id = SOURCE_ODDS

    def __init__(
        self,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        regions: str = "us",
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.api_key = api_key
        self._secret = api_key
        self.regions = regions
        self.last_rate_limited = False

    def _quota_from(self, response: requests.Response) -> Optional[int]:
        remaining = response.headers.get("x-requests-remaining")
        used = response.headers.get("x-requests-used")
        if remaining is not None:
            ODDS_API_USAGE["remaining"] = remaining
        if used is not None:
            ODDS_API_USAGE["used"] = used
        return header_int(response, "x-requests-remaining")

    def fetch_spreads(self) -> List[SpreadQuote]:
        if not self.api_key:
            raise ConfigurationError(self.source_id, "THE_ODDS_API_KEY is not configured")
        self.last_rate_limited = False
        params = {
            "apiKey": self.api_key,
            "regions": self.regions,
            "markets": "spreads",
            "oddsFormat": "american",
        }
        try:
            data, _ = self._get_json(
                f"{_THE_ODDS_BASE}/sports/{_SPORT_KEY}/odds",
                params=params,
                endpoint=f"/sports/{_SPORT_KEY}/odds",
            )
        except TransientUpstreamError as exc:
            if exc.status == 429:
                self.last_rate_limited = True
                print(f"ODDS_API: rate_limited=1 remaining={ODDS_API_USAGE['remaining']}")
                return []
            raise
        quotes: List[SpreadQuote] = []
        events = data if isinstance(data, list) else []
        for event in events:
            if not isinstance(event, dict):
                continue
            home = (event.get("home_team") or "").strip()
            away = (event.get("away_team") or "").strip()
            if not home or not away:
                continue
            for book in event.get("bookmakers") or []:
                if not isinstance(book, dict):
                    continue
                book_key = (book.get("key") or book.get("title") or "").strip().lower()
                market = next(
                    (m for m in book.get("markets") or [] if isinstance(m, dict) and m.get("key") == "spreads"),
                    None,
                )
                if not book_key or market is None:
                    continue
                extracted = _extract_spread_from_market(market, home, away)
                if extracted is None:
                    continue
                favorite, line = extracted
                quotes.append(
                    SpreadQuote(
                        home_team=home,
                        away_team=away,
                        favorite_team=favorite,
                        line=line,
                        source=book_key,
                        event_id=event.get("id"),
                        commence_time=parse_iso(event.get("commence_time")),
                    )
                )
        print(
            f"ODDS_API: events={len(events)} quotes={len(quotes)} "
            f"remaining={ODDS_API_USAGE['remaining']} used={ODDS_API_USAGE['used']}"
        )
        return quotes


__all__ = ["OddsApiSource", "ODDS_API_USAGE"]
