"""Attach a single spread line to each candidate game from bookmaker quotes.

Invariants:
    * Matching is orientation-symmetric: a quote listing the teams the other
      way around still matches.
    * When both kickoffs are known, a quote more than ``KICKOFF_WINDOW`` away
      from the game is another meeting of the same teams and never matches.
    * Quotes are considered in provider priority order (stable within a
      provider); the first matching quote wins.
    * The favorite is written using the game's own team naming.
    * Games without a matching quote keep their source-embedded line, or stay
      at spread=None ("no online line yet").
"""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from pickem.common.models import CandidateGame, SpreadQuote
from pickem.common.team_names_cfb import TeamNameNormalizer

KICKOFF_WINDOW = timedelta(days=3)


def order_quotes(quotes: Iterable[SpreadQuote], book_priority: Sequence[str]) -> List[SpreadQuote]:
    rank: Dict[str, int] = {book.lower(): index for index, book in enumerate(book_priority)}
    fallback = len(rank)
    return sorted(quotes, key=lambda quote: rank.get(quote.source.lower(), fallback))


def quote_matches(game: CandidateGame, quote: SpreadQuote, normalizer: TeamNameNormalizer) -> Optional[bool]:
    """True when aligned, False when reversed, None when the quote is another game."""
    if game.start_time is not None and quote.commence_time is not None:
        if abs(game.start_time - quote.commence_time) > KICKOFF_WINDOW:
            return None
    if normalizer.same_team(game.home_team, quote.home_team) and normalizer.same_team(
        game.away_team, quote.away_team
    ):
        return True
    if normalizer.same_team(game.home_team, quote.away_team) and normalizer.same_team(
        game.away_team, quote.home_team
    ):
        return False
    return None


def _favorite_in_game_naming(game: CandidateGame, quote: SpreadQuote, normalizer: TeamNameNormalizer) -> str:
    if normalizer.same_team(quote.favorite_team, game.home_team):
        return game.home_team
    if normalizer.same_team(quote.favorite_team, game.away_team):
        return game.away_team
    # Favorite label didn't resolve; fall back to the quote side it came from.
    aligned = quote_matches(game, quote, normalizer)
    on_home = quote.favorite_team == quote.home_team
    return game.home_team if on_home == bool(aligned) else game.away_team


def reconcile(
    games: Sequence[CandidateGame],
    quotes: Iterable[SpreadQuote],
    normalizer: TeamNameNormalizer,
    book_priority: Sequence[str] = (),
) -> List[CandidateGame]:
    ordered = order_quotes(quotes, book_priority)
    result: List[CandidateGame] = []
    matched = 0
    for game in games:
        hit = next((quote for quote in ordered if quote_matches(game, quote, normalizer) is not None), None)
        if hit is None:
            result.append(game)
            continue
        matched += 1
        favorite = _favorite_in_game_naming(game, hit, normalizer)
        result.append(game.with_spread(favorite, float(hit.line), f"odds:{hit.source}"))
    print(f"ODDS_RECONCILE(CFB): games={len(games)} quotes={len(ordered)} matched={matched}")
    return result


__all__ = ["KICKOFF_WINDOW", "reconcile", "order_quotes", "quote_matches"]
