from datetime import datetime, timedelta, timezone

import pytest

from conftest import FIXED_NOW, add_game, add_week, make_game
from pickem.common.errors import NotFoundError, OnlineSpreadError, SpreadsLockedError
from pickem.storage import db
from pickem.weeks import lifecycle


def test_ensure_week_creates_once(conn):
    deadline = datetime(2025, 10, 5, 20, 0, tzinfo=timezone.utc)
    first = lifecycle.ensure_week(conn, 2025, 6, deadline)
    second = lifecycle.ensure_week(conn, 2025, 6, deadline)
    assert first["id"] == second["id"]
    assert first["status"] == "upcoming"
    assert first["deadline"] == "2025-10-05T20:00:00Z"


def test_activate_week_supersedes_previous(conn):
    old = add_week(conn, week=5, status="active")
    new = add_week(conn, week=6, status="upcoming")
    other_season = add_week(conn, season=2024, week=15, status="active")
    lifecycle.activate_week(conn, new)
    assert db.get_week(conn, new)["status"] == "active"
    assert db.get_week(conn, old)["status"] == "completed"
    assert db.get_week(conn, other_season)["status"] == "active"


def test_lock_is_idempotent_and_only_admin_unlocks(conn):
    week_id = add_week(conn)
    assert lifecycle.lock_spreads(conn, week_id) is True
    assert lifecycle.lock_spreads(conn, week_id) is False
    assert db.get_week(conn, week_id)["spreads_locked"] == 1
    assert lifecycle.unlock_spreads(conn, week_id) is True
    assert lifecycle.unlock_spreads(conn, week_id) is False


def test_auto_lock_when_first_game_starts(conn):
    started = add_week(conn, week=6)
    add_game(conn, started, "Nebraska", "Michigan", start_time="2025-09-30T14:00:00Z")
    add_game(conn, started, "Texas", "Oklahoma", start_time="2025-10-04T19:00:00Z")
    later = add_week(conn, week=7)
    add_game(conn, later, "Iowa", "Rutgers", start_time="2025-10-11T19:00:00Z")

    assert lifecycle.auto_lock_spreads(conn, FIXED_NOW) == [started]
    assert lifecycle.auto_lock_spreads(conn, FIXED_NOW) == []
    assert db.get_week(conn, later)["spreads_locked"] == 0


def test_replace_week_games_refuses_locked_week(conn):
    week_id = add_week(conn, locked=True)
    game_id = add_game(conn, week_id, "Nebraska", "Michigan", spread=3.5, favorite_team="Michigan", spread_source="odds:fanduel")
    with pytest.raises(SpreadsLockedError):
        lifecycle.replace_week_games(conn, week_id, [{"home_team": "A", "away_team": "B"}], now=FIXED_NOW)
    assert [row["id"] for row in db.list_games(conn, week_id)] == [game_id]


def test_replace_week_games_swaps_the_set(conn):
    week_id = add_week(conn)
    add_game(conn, week_id, "Old", "Game")
    rows = [{"home_team": "Texas", "away_team": "Oklahoma", "source_id": "espn"}]
    [new_id] = lifecycle.replace_week_games(conn, week_id, rows, now=FIXED_NOW)
    [game] = db.list_games(conn, week_id)
    assert game["id"] == new_id
    assert game["source_id"] == "espn"


def test_manual_spread_rules(conn):
    week_id = add_week(conn)
    manual = add_game(conn, week_id, "Colorado", "Utah")
    online = add_game(conn, week_id, "Texas", "Oklahoma", spread=6.5, favorite_team="Texas", spread_source="odds:draftkings")

    row = lifecycle.set_manual_spread(conn, manual, "Utah", 2.5, now=FIXED_NOW)
    assert (row["favorite_team"], row["spread"], row["spread_source"]) == ("Utah", 2.5, "manual")
    row = lifecycle.set_manual_spread(conn, manual, "Colorado", 1.0, now=FIXED_NOW)
    assert row["favorite_team"] == "Colorado"

    with pytest.raises(OnlineSpreadError):
        lifecycle.set_manual_spread(conn, online, "Oklahoma", 3.0, now=FIXED_NOW)
    with pytest.raises(NotFoundError):
        lifecycle.set_manual_spread(conn, manual, "Nebraska", 3.0, now=FIXED_NOW)
    with pytest.raises(ValueError):
        lifecycle.set_manual_spread(conn, manual, "Utah", -1.0, now=FIXED_NOW)
    with pytest.raises(NotFoundError):
        lifecycle.set_manual_spread(conn, 9999, "Utah", 1.0, now=FIXED_NOW)

    lifecycle.lock_spreads(conn, week_id)
    with pytest.raises(SpreadsLockedError):
        lifecycle.set_manual_spread(conn, manual, "Utah", 7.0, now=FIXED_NOW)
    with pytest.raises(SpreadsLockedError):
        lifecycle.clear_spread(conn, manual, now=FIXED_NOW)
    assert db.get_game(conn, manual)["spread"] == 1.0


def test_clear_spread_is_sticky_against_refresh(conn, normalizer):
    week_id = add_week(conn)
    game_id = add_game(conn, week_id, "Colorado", "Utah", spread=2.5, favorite_team="Utah", spread_source="manual")
    row = lifecycle.clear_spread(conn, game_id, now=FIXED_NOW)
    assert (row["spread"], row["favorite_team"], row["spread_source"]) == (None, None, "cleared")

    quote_game = make_game("Colorado", "Utah", favorite_team="Utah", spread=3.0, spread_source="odds:fanduel")
    summary = lifecycle.apply_online_spreads(conn, week_id, [quote_game], normalizer, now=FIXED_NOW)
    assert summary["kept"] == 1
    assert db.get_game(conn, game_id)["spread"] is None


def test_apply_online_spreads_fills_missing_only(conn, normalizer):
    week_id = add_week(conn)
    missing = add_game(conn, week_id, "Nebraska", "Colorado")
    manual = add_game(conn, week_id, "Texas", "Oklahoma", spread=4.0, favorite_team="Texas", spread_source="manual")
    nobody = add_game(conn, week_id, "Akron", "Kent State")
    fresh = [
        make_game("Colorado Buffaloes", "Nebraska Cornhuskers", favorite_team="Colorado Buffaloes", spread=3.5, spread_source="odds:draftkings"),
        make_game("Texas", "Oklahoma", favorite_team="Oklahoma", spread=1.0, spread_source="odds:draftkings"),
    ]
    summary = lifecycle.apply_online_spreads(conn, week_id, fresh, normalizer, now=FIXED_NOW)
    assert summary == {"updated": 1, "kept": 1, "unmatched": 1, "locked": 0}
    row = db.get_game(conn, missing)
    assert (row["favorite_team"], row["spread"], row["spread_source"]) == ("Colorado", 3.5, "odds:draftkings")
    assert db.get_game(conn, manual)["favorite_team"] == "Texas"
    assert db.get_game(conn, nobody)["spread"] is None


def test_apply_online_spreads_skips_locked_week(conn, normalizer):
    week_id = add_week(conn, locked=True)
    game_id = add_game(conn, week_id, "Nebraska", "Colorado")
    fresh = [make_game("Nebraska", "Colorado", favorite_team="Colorado", spread=3.5, spread_source="odds:fanduel")]
    assert lifecycle.apply_online_spreads(conn, week_id, fresh, normalizer, now=FIXED_NOW)["locked"] == 1
    assert db.get_game(conn, game_id)["spread"] is None


def test_complete_week_when_all_games_final(conn):
    week_id = add_week(conn)
    add_game(conn, week_id, "Iowa", "Rutgers", status="completed", home_score=20, away_score=10)
    second = add_game(conn, week_id, "Utah", "BYU", status="live")
    assert lifecycle.complete_week_if_finished(conn, week_id) is False
    with conn:
        db.update_game_score(conn, second, "completed", 14, 17)
    assert lifecycle.complete_week_if_finished(conn, week_id) is True
    assert db.get_week(conn, week_id)["status"] == "completed"


def test_online_source_detection():
    assert lifecycle.is_online_source("odds:fanduel")
    assert lifecycle.is_online_source("espn")
    assert not lifecycle.is_online_source("manual")
    assert not lifecycle.is_online_source("cleared")
    assert not lifecycle.is_online_source(None)


def test_missing_week_raises(conn):
    with pytest.raises(NotFoundError):
        lifecycle.activate_week(conn, 404)


def test_manual_spread_refused_once_a_game_kicks_off(conn):
    week_id = add_week(conn)
    game_id = add_game(conn, week_id, "Ohio", "Akron", start_time="2025-09-30T23:30:00Z")
    later = add_game(conn, week_id, "Texas", "Oklahoma", start_time="2025-10-04T19:00:00Z")
    after_kickoff = FIXED_NOW + timedelta(hours=9)

    with pytest.raises(SpreadsLockedError):
        lifecycle.set_manual_spread(conn, game_id, "Ohio", 21.0, now=after_kickoff)
    with pytest.raises(SpreadsLockedError):
        lifecycle.clear_spread(conn, later, now=after_kickoff)
    assert db.get_game(conn, game_id)["spread"] is None
    assert db.get_week(conn, week_id)["spreads_locked"] == 1


def test_kickoff_lock_applies_to_replace_and_refresh(conn, normalizer):
    week_id = add_week(conn)
    game_id = add_game(conn, week_id, "Nebraska", "Colorado", start_time="2025-09-30T23:30:00Z")
    after_kickoff = FIXED_NOW + timedelta(hours=11)
    fresh = [make_game("Nebraska", "Colorado", favorite_team="Colorado", spread=3.5, spread_source="odds:fanduel")]

    assert lifecycle.apply_online_spreads(conn, week_id, fresh, normalizer, now=after_kickoff)["locked"] == 1
    with pytest.raises(SpreadsLockedError):
        lifecycle.replace_week_games(conn, week_id, [{"home_team": "A", "away_team": "B"}], now=after_kickoff)
    assert [row["id"] for row in db.list_games(conn, week_id)] == [game_id]


def test_kickoff_lock_leaves_future_weeks_alone(conn):
    week_id = add_week(conn)
    add_game(conn, week_id, "Iowa", "Rutgers", start_time="2025-10-04T19:00:00Z")
    row = lifecycle.enforce_kickoff_lock(conn, week_id, FIXED_NOW)
    assert row["spreads_locked"] == 0
