import itertools
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FIXED_NOW, FakeResponse, FakeSession, FakeSource, add_game, add_week, make_game
from pickem.acquire_week import (
    acquire_candidates,
    fetch_weekly_games,
    get_top_games_for_week,
    refresh_spreads,
    select_matchups,
    setup_season,
)
from pickem.common.errors import NotFoundError, TransientUpstreamError
from pickem.common.models import RankingEntry
from pickem.context import make_context
from pickem.odds.odds_api_client import OddsApiSource
from pickem.sources.cfb_source import CfbdSource
from pickem.storage import db
from pickem.weeks.lifecycle import lock_spreads


def _espn_games():
    return [
        make_game("Nebraska", "Colorado", source_id="espn", external_id="espn-1"),
        make_game("Georgia", "Alabama", source_id="espn", external_id="espn-2", home_rank=3, away_rank=5),
        make_game("Akron", "Kent State", source_id="espn", external_id="espn-3"),
    ]


def _odds_event(home, away, favorite, point, book="draftkings", commence="2025-10-04T19:30:00Z"):
    underdog = away if favorite == home else home
    return {
        "id": f"{home}-{away}",
        "home_team": home,
        "away_team": away,
        "commence_time": commence,
        "bookmakers": [
            {
                "key": book,
                "markets": [
                    {
                        "key": "spreads",
                        "outcomes": [{"name": favorite, "point": -point}, {"name": underdog, "point": point}],
                    }
                ],
            }
        ],
    }


def _odds_source(*events, status=200):
    response = FakeResponse(status_code=status, json_data=list(events), text="", headers={"x-requests-remaining": "400"})
    return OddsApiSource(api_key="odds-key", session=FakeSession([response]))


def test_empty_primary_falls_back_to_secondary_and_persists(conn, ctx_factory):
    primary = FakeSource("cfbd", games=[])
    secondary = FakeSource("espn", games=_espn_games())
    scraper = FakeSource("scrape", games=[make_game("Should", "NotRun", source_id="scrape")])
    ctx = ctx_factory(game_sources=[primary, secondary, scraper])

    summary = fetch_weekly_games(ctx)
    assert summary["status"] == "replaced"
    assert summary["source"] == "espn"
    rows = db.list_games(conn, summary["week_id"])
    assert len(rows) == 3
    assert {row["source_id"] for row in rows} == {"espn"}
    assert {row["external_id"] for row in rows} == {"espn-1", "espn-2", "espn-3"}
    assert rows[0]["home_team"] == "Nebraska"
    assert rows[0]["is_favorite_team_game"] == 1
    assert scraper.calls == []
    assert db.get_week(conn, summary["week_id"])["deadline"] == "2025-10-05T20:00:00Z"


def test_locked_week_is_never_repopulated(conn, ctx_factory):
    odds = _odds_source(_odds_event("Nebraska Cornhuskers", "Colorado Buffaloes", "Colorado Buffaloes", 3.5))
    ctx = ctx_factory(game_sources=[FakeSource("espn", games=_espn_games())], odds_source=odds)
    first = fetch_weekly_games(ctx)
    before = [dict(row) for row in db.list_games(conn, first["week_id"])]
    assert before[0]["spread"] == 3.5
    assert before[0]["favorite_team"] == "Colorado"
    assert before[0]["spread_source"] == "odds:draftkings"

    lock_spreads(conn, first["week_id"])
    other = [make_game("Nebraska", "Colorado", source_id="cfbd", spread=10.0, favorite_team="Nebraska", spread_source="espn")]
    ctx = ctx_factory(game_sources=[FakeSource("cfbd", games=other)])
    again = fetch_weekly_games(ctx, force_refresh=True)
    assert (again["status"], again["reason"]) == ("skipped", "spreads_locked")
    assert [dict(row) for row in db.list_games(conn, first["week_id"])] == before
    assert refresh_spreads(ctx, 2025, 6)["locked"] == 1


def test_populated_week_is_skipped_unless_forced(conn, ctx_factory):
    many = [make_game(f"Home {i}", f"Away {i}", source_id="espn") for i in range(12)]
    source = FakeSource("espn", games=many)
    ctx = ctx_factory(game_sources=[source])
    assert fetch_weekly_games(ctx)["games"] == 8
    second = fetch_weekly_games(ctx)
    assert (second["status"], second["reason"]) == ("skipped", "already_populated")
    assert fetch_weekly_games(ctx, force_refresh=True)["status"] == "replaced"
    assert source.calls.count("games:2025:6") == 2


def test_no_games_keeps_existing_rows(conn, ctx_factory):
    ctx = ctx_factory(game_sources=[FakeSource("espn", games=_espn_games())])
    first = fetch_weekly_games(ctx)
    ctx = ctx_factory(game_sources=[FakeSource("cfbd"), FakeSource("espn")])
    assert fetch_weekly_games(ctx)["status"] == "no_games"
    assert db.count_games(conn, first["week_id"]) == 3


def test_configuration_error_is_surfaced_and_next_source_used(conn, ctx_factory, capsys):
    session = FakeSession()
    ctx = ctx_factory(game_sources=[CfbdSource(api_key=None, session=session), FakeSource("espn", games=_espn_games())])
    report = acquire_candidates(ctx, 2025, 6)
    assert report.source_used == "espn"
    assert report.configuration_errors == ["cfbd: CFBD_API_KEY is not configured"]
    assert session.calls == []
    assert "WARNING: cfbd: CFBD_API_KEY is not configured" in capsys.readouterr().out


def test_transient_errors_are_recorded_not_raised(conn, ctx_factory):
    broken = FakeSource("cfbd", error=TransientUpstreamError("cfbd", "HTTP 503", status=503))
    ctx = ctx_factory(game_sources=[broken, FakeSource("espn", games=_espn_games())])
    report = acquire_candidates(ctx, 2025, 6)
    assert [a["outcome"] for a in report.attempts] == ["error", "ok"]
    assert db.usage_since(conn, "cfbd", "2025-01-01T00:00:00Z")["errors"] == 1
    assert db.usage_since(conn, "espn", "2025-01-01T00:00:00Z")["calls"] == 2


def test_unhealthy_source_is_skipped(conn, ctx_factory):
    primary = FakeSource("cfbd", games=_espn_games())
    ctx = ctx_factory(game_sources=[primary, FakeSource("espn", games=_espn_games())])
    ctx.tracker.record("cfbd", True, quota_remaining=3)
    report = acquire_candidates(ctx, 2025, 6)
    assert report.attempts[0] == {"source": "cfbd", "outcome": "skipped"}
    assert primary.calls == []
    assert report.source_used == "espn"


def test_every_source_failing_yields_no_games(conn, ctx_factory):
    failing = [
        FakeSource(name, error=TransientUpstreamError(name, "down")) for name in ("cfbd", "espn", "scrape")
    ]
    report = acquire_candidates(ctx_factory(game_sources=failing), 2025, 6)
    assert report.games == []
    assert report.source_used is None
    assert [a["outcome"] for a in report.attempts] == ["error", "error", "error"]


def test_rate_limited_odds_are_a_failed_call(conn, ctx_factory):
    odds = _odds_source(status=429)
    ctx = ctx_factory(game_sources=[FakeSource("espn", games=_espn_games())], odds_source=odds)
    report = acquire_candidates(ctx, 2025, 6)
    assert report.attempts[-1] == {"source": "odds", "outcome": "rate_limited"}
    assert all(game.spread is None for game in report.games)
    row = db.usage_since(conn, "odds", "2025-01-01T00:00:00Z")
    assert (row["calls"], row["errors"]) == (1, 1)


def test_acquisition_budget_returns_partial_results(conn, config):
    times = itertools.chain([FIXED_NOW], itertools.repeat(FIXED_NOW + timedelta(seconds=config.acquisition_timeout + 1)))
    source = FakeSource("cfbd", games=_espn_games())
    ctx = make_context(conn, config, [source], clock=lambda: next(times), sleep=lambda s: None)
    report = acquire_candidates(ctx, 2025, 6)
    assert report.timed_out is True
    assert report.games == []
    assert source.calls == []


def test_preview_does_not_persist(conn, ctx_factory):
    many = [make_game(f"Home {i}", f"Away {i}", source_id="espn") for i in range(25)]
    source = FakeSource("espn", games=many, rankings=[RankingEntry("Home 24", 1)])
    top = get_top_games_for_week(ctx_factory(game_sources=[source]), 2025, 6)
    assert len(top) == 20
    assert top[0].candidate.home_team == "Home 24"
    assert db.find_week(conn, 2025, 6) is None


def test_select_matchups_persists_operator_choice(conn, ctx_factory):
    ctx = ctx_factory(game_sources=[FakeSource("espn", games=_espn_games())])
    preview = get_top_games_for_week(ctx, 2025, 6)
    ids = select_matchups(ctx, 2025, 6, ["espn-3", "espn-1"], preview=preview)
    rows = db.list_games(conn, db.find_week(conn, 2025, 6)["id"])
    assert [row["id"] for row in rows] == ids
    assert [row["external_id"] for row in rows] == ["espn-3", "espn-1"]
    with pytest.raises(NotFoundError):
        select_matchups(ctx, 2025, 6, ["nope"], preview=preview)
    with pytest.raises(ValueError):
        select_matchups(ctx, 2025, 6, [f"x{i}" for i in range(9)], preview=preview)


def test_refresh_spreads_fills_missing_lines(conn, ctx_factory):
    ctx = ctx_factory(game_sources=[FakeSource("espn", games=_espn_games())])
    week_id = fetch_weekly_games(ctx)["week_id"]
    odds = _odds_source(
        _odds_event("Alabama Crimson Tide", "Georgia Bulldogs", "Georgia Bulldogs", 2.5, book="fanduel"),
    )
    ctx = ctx_factory(odds_source=odds)
    summary = refresh_spreads(ctx, 2025, 6)
    assert summary["updated"] == 1
    assert summary["unmatched"] == 2
    georgia = next(row for row in db.list_games(conn, week_id) if row["home_team"] == "Georgia")
    assert (georgia["favorite_team"], georgia["spread"], georgia["spread_source"]) == ("Georgia", 2.5, "odds:fanduel")
    with pytest.raises(NotFoundError):
        refresh_spreads(ctx, 2025, 9)


def test_forced_refetch_after_kickoff_keeps_started_games(conn, ctx_factory):
    kickoff = datetime(2025, 9, 30, 23, 30, tzinfo=timezone.utc)
    games = [make_game("Alabama", "Vanderbilt", source_id="espn", external_id="espn-7", start_time=kickoff)]
    odds = _odds_source(
        _odds_event("Alabama Crimson Tide", "Vanderbilt Commodores", "Alabama Crimson Tide", 3.5, commence="2025-09-30T23:30:00Z")
    )
    first = fetch_weekly_games(ctx_factory(game_sources=[FakeSource("espn", games=games)], odds_source=odds))
    before = [dict(row) for row in db.list_games(conn, first["week_id"])]
    assert (before[0]["spread"], before[0]["spread_source"]) == (3.5, "odds:draftkings")

    replacement = FakeSource("cfbd", games=[make_game("Alabama", "Vanderbilt", source_id="cfbd")])
    late = ctx_factory(game_sources=[replacement], now=datetime(2025, 10, 1, 2, 0, tzinfo=timezone.utc))
    again = fetch_weekly_games(late, force_refresh=True)
    assert (again["status"], again["reason"]) == ("skipped", "spreads_locked")
    assert replacement.calls == []
    assert db.get_week(conn, first["week_id"])["spreads_locked"] == 1
    assert [dict(row) for row in db.list_games(conn, first["week_id"])] == before


def test_setup_season_creates_weeks_and_activates_current(conn, ctx_factory):
    stale = add_week(conn, week=5, status="active")
    ctx = ctx_factory()
    summary = setup_season(ctx, 2025)
    assert summary["weeks"] == 15
    assert summary["created"] == [w for w in range(1, 16) if w != 5]
    assert summary["active_week"] == 6
    assert summary["populated"] == []
    assert db.find_week(conn, 2025, 6)["status"] == "active"
    assert db.get_week(conn, stale)["status"] == "completed"
    assert db.find_week(conn, 2025, 7)["status"] == "upcoming"
    assert db.find_week(conn, 2025, 15)["deadline"] == "2025-12-07T20:00:00Z"
    assert setup_season(ctx, 2025)["created"] == []


def test_setup_season_for_another_year_activates_nothing(conn, ctx_factory):
    summary = setup_season(ctx_factory(), 2026)
    assert summary["active_week"] is None
    assert db.active_weeks(conn, 2026) == []


def test_setup_season_populates_under_filled_weeks(conn, ctx_factory):
    full = add_week(conn, week=2, status="upcoming")
    for i in range(8):
        add_game(conn, full, f"Home {i}", f"Away {i}")
    many = [make_game(f"Team {i}", f"Rival {i}", source_id="espn") for i in range(10)]
    source = FakeSource("espn", games=many)
    summary = setup_season(ctx_factory(game_sources=[source]), 2025, with_games=True)
    assert [entry["week"] for entry in summary["populated"]] == [1] + list(range(3, 16))
    assert {entry["status"] for entry in summary["populated"]} == {"replaced"}
    assert "games:2025:2" not in source.calls
    assert db.count_games(conn, db.find_week(conn, 2025, 9)["id"]) == 8
    assert {row["home_team"] for row in db.list_games(conn, full)} == {f"Home {i}" for i in range(8)}
