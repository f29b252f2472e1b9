"""SQLite storage layer for the pick'em engine.

Purpose & scope:
    Own the schema and the row-level queries used by the lifecycle manager,
    grading engine, health tracker and orchestrator.
Tables:
    - users, weeks, games, picks: records of the game itself
    - weekly_scores, season_standings: derived caches rebuilt by grading
    - api_usage_log: one row per upstream call, read by the health tracker
Invariants:
    * Foreign keys are enforced; deleting a week cascades to games and picks.
    * Functions here never commit; callers group writes with ``with conn:``
      so multi-row changes are atomic.
    * Timestamps are stored as ISO8601 UTC strings with a trailing 'Z'.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pickem.common.errors import NotFoundError

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS weeks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    week_number INTEGER NOT NULL,
    season_year INTEGER NOT NULL,
    deadline TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'upcoming'
        CHECK (status IN ('upcoming', 'active', 'completed')),
    spreads_locked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (week_number, season_year)
);

CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    week_id INTEGER NOT NULL REFERENCES weeks (id) ON DELETE CASCADE,
    external_id TEXT,
    home_team TEXT NOT NULL,
    away_team TEXT NOT NULL,
    spread REAL,
    favorite_team TEXT,
    spread_source TEXT,
    start_time TEXT,
    status TEXT NOT NULL DEFAULT 'scheduled'
        CHECK (status IN ('scheduled', 'live', 'completed')),
    home_score INTEGER,
    away_score INTEGER,
    spread_winner TEXT,
    is_push INTEGER NOT NULL DEFAULT 0,
    is_favorite_team_game INTEGER NOT NULL DEFAULT 0,
    source_id TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS picks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    game_id INTEGER NOT NULL REFERENCES games (id) ON DELETE CASCADE,
    selected_team TEXT NOT NULL,
    is_correct INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, game_id)
);

CREATE TABLE IF NOT EXISTS weekly_scores (
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    week_id INTEGER NOT NULL REFERENCES weeks (id) ON DELETE CASCADE,
    correct_picks INTEGER NOT NULL DEFAULT 0,
    total_picks INTEGER NOT NULL DEFAULT 0,
    percentage REAL NOT NULL DEFAULT 0,
    weekly_rank INTEGER,
    PRIMARY KEY (user_id, week_id)
);

CREATE TABLE IF NOT EXISTS season_standings (
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    season_year INTEGER NOT NULL,
    total_correct INTEGER NOT NULL DEFAULT 0,
    total_picks INTEGER NOT NULL DEFAULT 0,
    season_percentage REAL NOT NULL DEFAULT 0,
    weeks_played INTEGER NOT NULL DEFAULT 0,
    season_rank INTEGER,
    PRIMARY KEY (user_id, season_year)
);

CREATE TABLE IF NOT EXISTS api_usage_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service TEXT NOT NULL,
    endpoint TEXT,
    timestamp TEXT NOT NULL,
    success INTEGER NOT NULL,
    error_message TEXT,
    credits_remaining INTEGER
);

CREATE INDEX IF NOT EXISTS idx_games_week ON games (week_id);
CREATE INDEX IF NOT EXISTS idx_games_status ON games (status);
CREATE INDEX IF NOT EXISTS idx_picks_game ON picks (game_id);
CREATE INDEX IF NOT EXISTS idx_usage_service_ts ON api_usage_log (service, timestamp);
"""

_GAME_INSERT_COLUMNS = (
    "external_id",
    "home_team",
    "away_team",
    "spread",
    "favorite_team",
    "spread_source",
    "start_time",
    "is_favorite_team_game",
    "source_id",
)


# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================

def connect(path: Union[str, Path] = ":memory:") -> sqlite3.Connection:
    """Open a connection with foreign keys on, Row access, and the schema applied."""
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    init_db(conn)
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist. Safe to call repeatedly."""
    conn.executescript(SCHEMA)


def _one(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
    return conn.execute(sql, tuple(params)).fetchone()


def _all(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
    return conn.execute(sql, tuple(params)).fetchall()


# ============================================================================
# USERS & PICKS (written by the CRUD layer; helpers used by tools and tests)
# ============================================================================

def insert_user(conn: sqlite3.Connection, name: str) -> int:
    cur = conn.execute("INSERT INTO users (name) VALUES (?)", (name,))
    return int(cur.lastrowid)


def upsert_pick(conn: sqlite3.Connection, user_id: int, game_id: int, selected_team: str) -> int:
    conn.execute(
        """
        INSERT INTO picks (user_id, game_id, selected_team)
        VALUES (?, ?, ?)
        ON CONFLICT (user_id, game_id) DO UPDATE SET
            selected_team = excluded.selected_team,
            updated_at = CURRENT_TIMESTAMP
        """,
        (user_id, game_id, selected_team),
    )
    row = _one(conn, "SELECT id FROM picks WHERE user_id = ? AND game_id = ?", (user_id, game_id))
    return int(row["id"])


def picks_for_game(conn: sqlite3.Connection, game_id: int) -> List[sqlite3.Row]:
    return _all(conn, "SELECT * FROM picks WHERE game_id = ? ORDER BY id", (game_id,))


def count_graded_picks(conn: sqlite3.Connection, game_id: int) -> int:
    row = _one(conn, "SELECT COUNT(*) AS n FROM picks WHERE game_id = ? AND is_correct IS NOT NULL", (game_id,))
    return int(row["n"])


def grade_ungraded_picks(conn: sqlite3.Connection, game_id: int, spread_winner: Optional[str]) -> int:
    """Set is_correct on picks still NULL for the game; returns rows touched."""
    cur = conn.execute(
        """
        UPDATE picks
        SET is_correct = CASE WHEN ? IS NOT NULL AND selected_team = ? THEN 1 ELSE 0 END,
            updated_at = CURRENT_TIMESTAMP
        WHERE game_id = ? AND is_correct IS NULL
        """,
        (spread_winner, spread_winner, game_id),
    )
    return int(cur.rowcount)


# ============================================================================
# WEEKS
# ============================================================================

def get_week(conn: sqlite3.Connection, week_id: int) -> sqlite3.Row:
    row = _one(conn, "SELECT * FROM weeks WHERE id = ?", (week_id,))
    if row is None:
        raise NotFoundError(f"week id={week_id} not found")
    return row


def find_week(conn: sqlite3.Connection, season: int, week: int) -> Optional[sqlite3.Row]:
    return _one(
        conn,
        "SELECT * FROM weeks WHERE season_year = ? AND week_number = ?",
        (season, week),
    )


def insert_week(conn: sqlite3.Connection, season: int, week: int, deadline: str, status: str = "upcoming") -> int:
    cur = conn.execute(
        "INSERT INTO weeks (week_number, season_year, deadline, status) VALUES (?, ?, ?, ?)",
        (week, season, deadline, status),
    )
    return int(cur.lastrowid)


def set_week_status(conn: sqlite3.Connection, week_id: int, status: str) -> None:
    conn.execute("UPDATE weeks SET status = ? WHERE id = ?", (status, week_id))


def set_spreads_locked(conn: sqlite3.Connection, week_id: int, locked: bool) -> None:
    conn.execute("UPDATE weeks SET spreads_locked = ? WHERE id = ?", (1 if locked else 0, week_id))


def active_weeks(conn: sqlite3.Connection, season: Optional[int] = None) -> List[sqlite3.Row]:
    if season is None:
        return _all(conn, "SELECT * FROM weeks WHERE status = 'active' ORDER BY season_year, week_number")
    return _all(
        conn,
        "SELECT * FROM weeks WHERE status = 'active' AND season_year = ? ORDER BY week_number",
        (season,),
    )


def unlocked_weeks_with_started_games(
    conn: sqlite3.Connection, now_iso: str, week_id: Optional[int] = None
) -> List[sqlite3.Row]:
    sql = """
        SELECT DISTINCT w.*
        FROM weeks w
        JOIN games g ON g.week_id = w.id
        WHERE w.spreads_locked = 0
          AND g.start_time IS NOT NULL
          AND g.start_time <= ?
    """
    params: List[Any] = [now_iso]
    if week_id is not None:
        sql += "  AND w.id = ?\n"
        params.append(week_id)
    return _all(conn, sql + "ORDER BY w.id", params)


# ============================================================================
# GAMES
# ============================================================================

def get_game(conn: sqlite3.Connection, game_id: int) -> sqlite3.Row:
    row = _one(conn, "SELECT * FROM games WHERE id = ?", (game_id,))
    if row is None:
        raise NotFoundError(f"game id={game_id} not found")
    return row


def list_games(conn: sqlite3.Connection, week_id: int) -> List[sqlite3.Row]:
    return _all(conn, "SELECT * FROM games WHERE week_id = ? ORDER BY id", (week_id,))


def count_games(conn: sqlite3.Connection, week_id: int) -> int:
    row = _one(conn, "SELECT COUNT(*) AS n FROM games WHERE week_id = ?", (week_id,))
    return int(row["n"])


def delete_games_for_week(conn: sqlite3.Connection, week_id: int) -> int:
    cur = conn.execute("DELETE FROM games WHERE week_id = ?", (week_id,))
    return int(cur.rowcount)


def insert_game(conn: sqlite3.Connection, week_id: int, row: Mapping[str, Any]) -> int:
    columns = ["week_id"] + list(_GAME_INSERT_COLUMNS)
    values = [week_id] + [row.get(column) for column in _GAME_INSERT_COLUMNS]
    values[columns.index("is_favorite_team_game")] = int(bool(row.get("is_favorite_team_game")))
    placeholders = ", ".join("?" for _ in columns)
    cur = conn.execute(
        f"INSERT INTO games ({', '.join(columns)}) VALUES ({placeholders})",
        values,
    )
    return int(cur.lastrowid)


def update_game_spread(
    conn: sqlite3.Connection,
    game_id: int,
    favorite_team: Optional[str],
    spread: Optional[float],
    spread_source: Optional[str],
) -> None:
    conn.execute(
        "UPDATE games SET favorite_team = ?, spread = ?, spread_source = ? WHERE id = ?",
        (favorite_team, spread, spread_source, game_id),
    )


def update_game_score(
    conn: sqlite3.Connection,
    game_id: int,
    status: str,
    home_score: Optional[int],
    away_score: Optional[int],
) -> None:
    conn.execute(
        "UPDATE games SET status = ?, home_score = ?, away_score = ? WHERE id = ?",
        (status, home_score, away_score, game_id),
    )


def set_game_result(conn: sqlite3.Connection, game_id: int, spread_winner: Optional[str], is_push: bool) -> None:
    conn.execute(
        "UPDATE games SET spread_winner = ?, is_push = ? WHERE id = ?",
        (spread_winner, 1 if is_push else 0, game_id),
    )


def completed_games(conn: sqlite3.Connection) -> List[sqlite3.Row]:
    return _all(conn, "SELECT * FROM games WHERE status = 'completed' ORDER BY week_id, id")


# ============================================================================
# STANDINGS
# ============================================================================

def graded_pick_frame_rows(conn: sqlite3.Connection) -> List[sqlite3.Row]:
    """Graded picks joined with their week, one row per pick."""
    return _all(
        conn,
        """
        SELECT p.user_id, p.is_correct, g.week_id, w.season_year
        FROM picks p
        JOIN games g ON g.id = p.game_id
        JOIN weeks w ON w.id = g.week_id
        WHERE p.is_correct IS NOT NULL
        ORDER BY p.id
        """,
    )


def replace_standings(
    conn: sqlite3.Connection,
    weekly_rows: Iterable[Mapping[str, Any]],
    season_rows: Iterable[Mapping[str, Any]],
) -> None:
    conn.execute("DELETE FROM weekly_scores")
    conn.execute("DELETE FROM season_standings")
    conn.executemany(
        """
        INSERT INTO weekly_scores (user_id, week_id, correct_picks, total_picks, percentage, weekly_rank)
        VALUES (:user_id, :week_id, :correct_picks, :total_picks, :percentage, :weekly_rank)
        """,
        list(weekly_rows),
    )
    conn.executemany(
        """
        INSERT INTO season_standings
            (user_id, season_year, total_correct, total_picks, season_percentage, weeks_played, season_rank)
        VALUES
            (:user_id, :season_year, :total_correct, :total_picks, :season_percentage, :weeks_played, :season_rank)
        """,
        list(season_rows),
    )


def weekly_scores(conn: sqlite3.Connection, week_id: Optional[int] = None) -> List[Dict[str, Any]]:
    if week_id is None:
        rows = _all(conn, "SELECT * FROM weekly_scores ORDER BY week_id, weekly_rank, user_id")
    else:
        rows = _all(
            conn,
            "SELECT * FROM weekly_scores WHERE week_id = ? ORDER BY weekly_rank, user_id",
            (week_id,),
        )
    return [dict(row) for row in rows]


def season_standings(conn: sqlite3.Connection, season: Optional[int] = None) -> List[Dict[str, Any]]:
    if season is None:
        rows = _all(conn, "SELECT * FROM season_standings ORDER BY season_year, season_rank, user_id")
    else:
        rows = _all(
            conn,
            "SELECT * FROM season_standings WHERE season_year = ? ORDER BY season_rank, user_id",
            (season,),
        )
    return [dict(row) for row in rows]


# ============================================================================
# API USAGE LOG
# ============================================================================

def insert_usage(
    conn: sqlite3.Connection,
    service: str,
    endpoint: str,
    timestamp: str,
    success: bool,
    error_message: Optional[str],
    credits_remaining: Optional[int],
) -> None:
    conn.execute(
        """
        INSERT INTO api_usage_log (service, endpoint, timestamp, success, error_message, credits_remaining)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (service, endpoint, timestamp, 1 if success else 0, error_message, credits_remaining),
    )


def usage_since(conn: sqlite3.Connection, service: str, since_iso: str) -> sqlite3.Row:
    return _one(
        conn,
        """
        SELECT COUNT(*) AS calls,
               COALESCE(SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END), 0) AS errors,
               MAX(timestamp) AS last_call
        FROM api_usage_log
        WHERE service = ? AND timestamp >= ?
        """,
        (service, since_iso),
    )


def last_credits(conn: sqlite3.Connection, service: str) -> Optional[int]:
    row = _one(
        conn,
        """
        SELECT credits_remaining FROM api_usage_log
        WHERE service = ? AND credits_remaining IS NOT NULL
        ORDER BY timestamp DESC, id DESC
        LIMIT 1
        """,
        (service,),
    )
    return None if row is None else int(row["credits_remaining"])


def usage_services(conn: sqlite3.Connection) -> List[str]:
    return [row["service"] for row in _all(conn, "SELECT DISTINCT service FROM api_usage_log ORDER BY service")]


def delete_usage_before(conn: sqlite3.Connection, cutoff_iso: str) -> int:
    cur = conn.execute("DELETE FROM api_usage_log WHERE timestamp < ?", (cutoff_iso,))
    return int(cur.rowcount)


__all__ = [
    "connect",
    "init_db",
    "insert_user",
    "upsert_pick",
    "picks_for_game",
    "count_graded_picks",
    "grade_ungraded_picks",
    "get_week",
    "find_week",
    "insert_week",
    "set_week_status",
    "set_spreads_locked",
    "active_weeks",
    "unlocked_weeks_with_started_games",
    "get_game",
    "list_games",
    "count_games",
    "delete_games_for_week",
    "insert_game",
    "update_game_spread",
    "update_game_score",
    "set_game_result",
    "completed_games",
    "graded_pick_frame_rows",
    "replace_standings",
    "weekly_scores",
    "season_standings",
    "insert_usage",
    "usage_since",
    "last_credits",
    "usage_services",
    "delete_usage_before",
]
