from datetime import datetime, timezone

from conftest import make_game
from pickem.common.models import SpreadQuote
from pickem.odds.reconcile import order_quotes, quote_matches, reconcile

BOOKS = ["draftkings", "fanduel", "betmgm"]


def _quote(home, away, favorite, line, source="draftkings"):
    return SpreadQuote(home_team=home, away_team=away, favorite_team=favorite, line=line, source=source)


def test_reversed_orientation_still_matches_and_uses_game_naming(normalizer):
    game = make_game("Nebraska", "Colorado")
    quote = _quote("Colorado Buffaloes", "Nebraska Cornhuskers", "Colorado Buffaloes", 3.5)
    assert quote_matches(game, quote, normalizer) is False
    [result] = reconcile([game], [quote], normalizer, BOOKS)
    assert result.favorite_team == "Colorado"
    assert result.spread == 3.5
    assert result.spread_source == "odds:draftkings"


def test_aligned_quote_matches(normalizer):
    game = make_game("Ole Miss", "LSU")
    quote = _quote("Mississippi Rebels", "LSU Tigers", "Mississippi Rebels", 6.5)
    assert quote_matches(game, quote, normalizer) is True
    [result] = reconcile([game], [quote], normalizer, BOOKS)
    assert result.favorite_team == "Ole Miss"


def test_book_priority_picks_first_matching_provider(normalizer):
    game = make_game("Texas", "Oklahoma")
    quotes = [
        _quote("Texas Longhorns", "Oklahoma Sooners", "Texas Longhorns", 9.0, source="bovada"),
        _quote("Texas Longhorns", "Oklahoma Sooners", "Texas Longhorns", 7.5, source="fanduel"),
        _quote("Texas Longhorns", "Oklahoma Sooners", "Texas Longhorns", 7.0, source="draftkings"),
    ]
    assert [q.source for q in order_quotes(quotes, BOOKS)] == ["draftkings", "fanduel", "bovada"]
    [result] = reconcile([game], quotes, normalizer, BOOKS)
    assert result.spread == 7.0
    assert result.spread_source == "odds:draftkings"


def test_unknown_books_used_when_nothing_else_matches(normalizer):
    game = make_game("Texas", "Oklahoma")
    quote = _quote("Texas", "Oklahoma", "Oklahoma", 2.5, source="bovada")
    [result] = reconcile([game], [quote], normalizer, BOOKS)
    assert (result.favorite_team, result.spread, result.spread_source) == ("Oklahoma", 2.5, "odds:bovada")


def test_unmatched_game_keeps_embedded_line(normalizer):
    game = make_game("Toledo", "Akron", source_id="espn", favorite_team="Toledo", spread=14.0, spread_source="espn")
    bare = make_game("Kent State", "Ohio")
    quote = _quote("Oregon Ducks", "Washington Huskies", "Oregon Ducks", 3.0)
    embedded, untouched = reconcile([game, bare], [quote], normalizer, BOOKS)
    assert (embedded.spread, embedded.spread_source) == (14.0, "espn")
    assert untouched.spread is None
    assert untouched.favorite_team is None


def test_guarded_names_do_not_cross_match(normalizer):
    game = make_game("Michigan", "Akron")
    quote = _quote("Central Michigan Chippewas", "Akron Zips", "Central Michigan Chippewas", 4.0)
    assert quote_matches(game, quote, normalizer) is None
    [result] = reconcile([game], [quote], normalizer, BOOKS)
    assert result.spread is None


def test_rematch_takes_the_line_of_the_nearby_kickoff(normalizer):
    game = make_game("Georgia", "Alabama", start_time=datetime(2025, 12, 6, 21, 0, tzinfo=timezone.utc))
    september = SpreadQuote(
        home_team="Georgia Bulldogs",
        away_team="Alabama Crimson Tide",
        favorite_team="Georgia Bulldogs",
        line=2.5,
        source="draftkings",
        commence_time=datetime(2025, 9, 27, 23, 30, tzinfo=timezone.utc),
    )
    title_game = SpreadQuote(
        home_team="Alabama Crimson Tide",
        away_team="Georgia Bulldogs",
        favorite_team="Alabama Crimson Tide",
        line=1.5,
        source="fanduel",
        commence_time=datetime(2025, 12, 6, 21, 0, tzinfo=timezone.utc),
    )
    assert quote_matches(game, september, normalizer) is None
    [result] = reconcile([game], [september, title_game], normalizer, BOOKS)
    assert (result.favorite_team, result.spread, result.spread_source) == ("Alabama", 1.5, "odds:fanduel")


def test_quote_without_kickoff_still_matches_on_names(normalizer):
    game = make_game("Georgia", "Alabama", start_time=datetime(2025, 12, 6, 21, 0, tzinfo=timezone.utc))
    assert quote_matches(game, _quote("Georgia", "Alabama", "Georgia", 2.5), normalizer) is True
