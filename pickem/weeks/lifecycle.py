"""Week state machine and the spread-lock rules.

Purpose & scope:
    Own transitions of ``weeks.status`` (upcoming -> active -> completed) and
    ``weeks.spreads_locked``, and every write to a game's spread/favorite.
Invariants:
    * At most one active week per season; activating a week completes the
      previously active one.
    * spreads_locked only turns off through ``unlock_spreads`` (admin).
    * A locked week's spreads never change: ``replace_week_games``,
      ``apply_online_spreads``, ``set_manual_spread`` and ``clear_spread``
      all refuse or skip.
    * Every spread mutator first locks its week when a game has kicked off
      by ``now``.
    * A spread written by an online odds source is not overwritten manually.
Side effects:
    * Writes ``weeks`` and ``games`` rows inside ``with conn:`` transactions.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pickem.common.errors import NotFoundError, OnlineSpreadError, SpreadsLockedError
from pickem.common.models import CandidateGame, to_iso_z
from pickem.common.team_names_cfb import TeamNameNormalizer
from pickem.storage import db

MANUAL_SOURCE = "manual"
CLEARED_SOURCE = "cleared"


def is_online_source(spread_source: Optional[str]) -> bool:
    return bool(spread_source) and spread_source not in (MANUAL_SOURCE, CLEARED_SOURCE)


def ensure_week(conn: sqlite3.Connection, season: int, week: int, deadline: datetime) -> sqlite3.Row:
    """Return the week row, creating it as 'upcoming' when missing."""
    row = db.find_week(conn, season, week)
    if row is not None:
        return row
    with conn:
        week_id = db.insert_week(conn, season, week, to_iso_z(deadline))
    print(f"WEEK_CREATE(CFB): season={season} week={week} id={week_id}")
    return db.get_week(conn, week_id)


def activate_week(conn: sqlite3.Connection, week_id: int) -> sqlite3.Row:
    week = db.get_week(conn, week_id)
    if week["status"] == "active":
        return week
    superseded: List[int] = []
    with conn:
        for other in db.active_weeks(conn, week["season_year"]):
            if other["id"] != week_id:
                db.set_week_status(conn, other["id"], "completed")
                superseded.append(other["id"])
        db.set_week_status(conn, week_id, "active")
    print(f"WEEK_ACTIVATE(CFB): week_id={week_id} superseded={superseded}")
    return db.get_week(conn, week_id)


def lock_spreads(conn: sqlite3.Connection, week_id: int, reason: str = "admin") -> bool:
    """Lock spreads for a week; returns False when it was already locked."""
    week = db.get_week(conn, week_id)
    if week["spreads_locked"]:
        return False
    with conn:
        db.set_spreads_locked(conn, week_id, True)
    print(f"SPREADS_LOCK(CFB): week_id={week_id} reason={reason}")
    return True


def unlock_spreads(conn: sqlite3.Connection, week_id: int) -> bool:
    """Administrative override; the only path from locked back to unlocked."""
    week = db.get_week(conn, week_id)
    if not week["spreads_locked"]:
        return False
    with conn:
        db.set_spreads_locked(conn, week_id, False)
    print(f"SPREADS_UNLOCK(CFB): week_id={week_id} reason=admin")
    return True


def auto_lock_spreads(conn: sqlite3.Connection, now: datetime) -> List[int]:
    """Lock every unlocked week that has a game with start_time <= now."""
    locked: List[int] = []
    for week in db.unlocked_weeks_with_started_games(conn, to_iso_z(now)):
        if lock_spreads(conn, week["id"], reason="game_started"):
            locked.append(int(week["id"]))
    return locked


def enforce_kickoff_lock(conn: sqlite3.Connection, week_id: int, now: datetime) -> sqlite3.Row:
    """Lock ``week_id`` if any of its games started by ``now``; returns the fresh week row."""
    if db.unlocked_weeks_with_started_games(conn, to_iso_z(now), week_id=week_id):
        lock_spreads(conn, week_id, reason="game_started")
    return db.get_week(conn, week_id)


def complete_week_if_finished(conn: sqlite3.Connection, week_id: int) -> bool:
    week = db.get_week(conn, week_id)
    if week["status"] != "active":
        return False
    games = db.list_games(conn, week_id)
    if not games or any(game["status"] != "completed" for game in games):
        return False
    with conn:
        db.set_week_status(conn, week_id, "completed")
    print(f"WEEK_COMPLETE(CFB): week_id={week_id} games={len(games)}")
    return True


def replace_week_games(
    conn: sqlite3.Connection,
    week_id: int,
    rows: Iterable[Mapping[str, Any]],
    *,
    now: datetime,
) -> List[int]:
    """Delete the week's games and insert ``rows`` in one transaction."""
    week = enforce_kickoff_lock(conn, week_id, now)
    if week["spreads_locked"]:
        raise SpreadsLockedError(
            f"week id={week_id} has spreads locked; games cannot be replaced",
            week_id=week_id,
        )
    batch = list(rows)
    with conn:
        removed = db.delete_games_for_week(conn, week_id)
        ids = [db.insert_game(conn, week_id, row) for row in batch]
    print(f"WEEK_GAMES_REPLACE(CFB): week_id={week_id} removed={removed} inserted={len(ids)}")
    return ids


def _game_and_week(conn: sqlite3.Connection, game_id: int, now: datetime):
    game = db.get_game(conn, game_id)
    return game, enforce_kickoff_lock(conn, game["week_id"], now)


def set_manual_spread(
    conn: sqlite3.Connection,
    game_id: int,
    favorite_team: str,
    spread: float,
    *,
    now: datetime,
) -> sqlite3.Row:
    game, week = _game_and_week(conn, game_id, now)
    if week["spreads_locked"]:
        raise SpreadsLockedError(f"week id={week['id']} has spreads locked", week_id=week["id"], game_id=game_id)
    if game["spread"] is not None and is_online_source(game["spread_source"]):
        raise OnlineSpreadError(
            f"game id={game_id} already has an online spread ({game['spread_source']})",
            week_id=week["id"],
            game_id=game_id,
        )
    if favorite_team not in (game["home_team"], game["away_team"]):
        raise NotFoundError(f"team {favorite_team!r} is not playing in game id={game_id}")
    if spread < 0:
        raise ValueError("spread must be non-negative; it is the favorite's handicap")
    with conn:
        db.update_game_spread(conn, game_id, favorite_team, float(spread), MANUAL_SOURCE)
    print(f"SPREAD_MANUAL(CFB): game_id={game_id} favorite={favorite_team} spread={spread}")
    return db.get_game(conn, game_id)


def clear_spread(conn: sqlite3.Connection, game_id: int, *, now: datetime) -> sqlite3.Row:
    game, week = _game_and_week(conn, game_id, now)
    if week["spreads_locked"]:
        raise SpreadsLockedError(f"week id={week['id']} has spreads locked", week_id=week["id"], game_id=game_id)
    if game["spread"] is not None and is_online_source(game["spread_source"]):
        raise OnlineSpreadError(
            f"game id={game_id} already has an online spread ({game['spread_source']})",
            week_id=week["id"],
            game_id=game_id,
        )
    with conn:
        db.update_game_spread(conn, game_id, None, None, CLEARED_SOURCE)
    print(f"SPREAD_CLEAR(CFB): game_id={game_id}")
    return db.get_game(conn, game_id)


def apply_online_spreads(
    conn: sqlite3.Connection,
    week_id: int,
    games: Iterable[CandidateGame],
    normalizer: TeamNameNormalizer,
    *,
    now: datetime,
) -> Dict[str, int]:
    """Fill spreads for games that have none yet; a locked week is left untouched."""
    summary = {"updated": 0, "kept": 0, "unmatched": 0, "locked": 0}
    week = enforce_kickoff_lock(conn, week_id, now)
    if week["spreads_locked"]:
        summary["locked"] = 1
        print(f"SPREAD_REFRESH(CFB): week_id={week_id} skipped=locked")
        return summary
    rows = db.list_games(conn, week_id)
    with_lines = [game for game in games if game.spread is not None]
    with conn:
        for row in rows:
            if row["spread"] is not None or row["spread_source"] == CLEARED_SOURCE:
                summary["kept"] += 1
                continue
            match = next(
                (
                    game
                    for game in with_lines
                    if (row["external_id"] and row["external_id"] == game.external_id)
                    or (
                        normalizer.same_team(row["home_team"], game.home_team)
                        and normalizer.same_team(row["away_team"], game.away_team)
                    )
                    or (
                        normalizer.same_team(row["home_team"], game.away_team)
                        and normalizer.same_team(row["away_team"], game.home_team)
                    )
                ),
                None,
            )
            if match is None:
                summary["unmatched"] += 1
                continue
            favorite = (
                row["home_team"]
                if normalizer.same_team(match.favorite_team, row["home_team"])
                else row["away_team"]
            )
            db.update_game_spread(conn, row["id"], favorite, match.spread, match.spread_source)
            summary["updated"] += 1
    print(
        f"SPREAD_REFRESH(CFB): week_id={week_id} updated={summary['updated']} "
        f"kept={summary['kept']} unmatched={summary['unmatched']}"
    )
    return summary


__all__ = [
    "MANUAL_SOURCE",
    "CLEARED_SOURCE",
    "is_online_source",
    "ensure_week",
    "activate_week",
    "lock_spreads",
    "unlock_spreads",
    "auto_lock_spreads",
    "enforce_kickoff_lock",
    "complete_week_if_finished",
    "replace_week_games",
    "set_manual_spread",
    "clear_spread",
    "apply_online_spreads",
]
