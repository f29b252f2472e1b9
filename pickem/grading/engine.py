"""Grading engine: final scores -> spread winners -> pick correctness -> standings.

Purpose & scope:
    Pull final scores for the current and recent weeks, grade picks on
    completed games against the spread, and rebuild the standings caches.
Invariants:
    * Only picks with ``is_correct IS NULL`` are written; re-running grading
      never flips a graded pick.
    * A game's spread_winner/is_push are written only while none of its picks
      is graded, so the stored result always agrees with graded picks.
    * Each game is graded in its own transaction; a failure on one game is
      recorded in the outcome list and the pass moves on.
    * Standings are rebuilt from the picks table every time (never adjusted
      incrementally), so any number of re-runs gives identical tables.
    * Running past the grading deadline raises GradingTimeout; games already
      committed stay committed and the in-flight game is not touched.
Side effects:
    * Writes ``games`` scores/status/result, ``picks.is_correct``,
      ``weekly_scores`` and ``season_standings``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from pickem.common.current_week_service import weeks_back
from pickem.common.errors import ConfigurationError, GradingTimeout, TransientUpstreamError
from pickem.common.io_utils import log_api_error
from pickem.common.metrics import SpreadResult, compute_ats, dense_rank, pick_percentage, spread_winner
from pickem.common.models import FinalScore, to_iso_z
from pickem.common.team_names_cfb import TeamNameNormalizer
from pickem.context import PipelineContext
from pickem.storage import db
from pickem.weeks.lifecycle import complete_week_if_finished


def match_final(
    game: sqlite3.Row,
    finals: Sequence[FinalScore],
    normalizer: TeamNameNormalizer,
) -> Optional[Tuple[FinalScore, bool]]:
    """Return (final, reversed) for a persisted game, by external id or team pair."""
    external_id = game["external_id"]
    if external_id:
        for final in finals:
            if final.external_id and final.external_id == external_id:
                return final, False
    for final in finals:
        if normalizer.same_team(game["home_team"], final.home_team) and normalizer.same_team(
            game["away_team"], final.away_team
        ):
            return final, False
    for final in finals:
        if normalizer.same_team(game["home_team"], final.away_team) and normalizer.same_team(
            game["away_team"], final.home_team
        ):
            return final, True
    return None


def _fetch_finals(ctx: PipelineContext, season: int, week: int) -> Tuple[List[FinalScore], Optional[str]]:
    for source in ctx.game_sources:
        if ctx.tracker.should_skip(source.source_id):
            continue
        try:
            finals = source.fetch_final_scores(season, week)
        except ConfigurationError as exc:
            log_api_error(f"CONFIG_ERROR({source.source_id}): {exc}")
            continue
        except TransientUpstreamError as exc:
            ctx.tracker.record(
                source.source_id,
                False,
                exc.quota_remaining,
                endpoint=source.last_endpoint,
                error=str(exc),
            )
            continue
        ctx.tracker.record(source.source_id, True, source.last_quota, endpoint=source.last_endpoint)
        if finals:
            return list(finals), source.source_id
    return [], None


def update_game_scores(ctx: PipelineContext) -> Dict[str, Any]:
    """Refresh scores/status for unfinished games of the current and recent weeks."""
    season, week = ctx.current_week()
    now = ctx.now()
    now_iso = to_iso_z(now)
    summary = {"weeks_checked": 0, "completed": 0, "live": 0, "unmatched": 0}
    fetched = 0
    for target_season, target_week in weeks_back(season, week, ctx.config.score_lookback_weeks):
        week_row = db.find_week(ctx.conn, target_season, target_week)
        if week_row is None:
            continue
        pending = [row for row in db.list_games(ctx.conn, week_row["id"]) if row["status"] != "completed"]
        if not pending:
            continue
        if fetched:
            ctx.sleep(ctx.config.politeness_delay)
        finals, source_id = _fetch_finals(ctx, target_season, target_week)
        fetched += 1
        summary["weeks_checked"] += 1
        with ctx.conn:
            for row in pending:
                started = bool(row["start_time"]) and row["start_time"] <= now_iso
                hit = match_final(row, finals, ctx.normalizer)
                if hit is None:
                    summary["unmatched"] += 1
                    if started and row["status"] == "scheduled":
                        db.update_game_score(ctx.conn, row["id"], "live", row["home_score"], row["away_score"])
                        summary["live"] += 1
                    continue
                final, reversed_ = hit
                home_score, away_score = final.home_score, final.away_score
                if reversed_:
                    home_score, away_score = away_score, home_score
                if final.completed and home_score is not None and away_score is not None:
                    db.update_game_score(ctx.conn, row["id"], "completed", home_score, away_score)
                    summary["completed"] += 1
                elif started:
                    db.update_game_score(ctx.conn, row["id"], "live", home_score, away_score)
                    summary["live"] += 1
        print(
            f"SCORES_UPDATE(CFB): season={target_season} week={target_week} source={source_id} "
            f"finals={len(finals)} pending={len(pending)}"
        )
    print(
        f"SCORES_UPDATE(CFB): weeks_checked={summary['weeks_checked']} completed={summary['completed']} "
        f"live={summary['live']} unmatched={summary['unmatched']} at={now_iso}"
    )
    return summary


def grade_completed_games(
    conn: sqlite3.Connection,
    deadline: Optional[datetime] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Dict[str, Any]:
    """Grade picks on every completed game; returns per-game outcomes."""
    outcomes: List[Dict[str, Any]] = []
    favorite_records: List[dict] = []
    graded_games = 0
    for game in db.completed_games(conn):
        if deadline is not None and clock is not None and clock() >= deadline:
            print(f"GRADE(CFB): timeout=1 graded_games={graded_games}")
            raise GradingTimeout(f"grading deadline passed after {graded_games} games", graded=graded_games)
        game_id = int(game["id"])
        if game["home_score"] is None or game["away_score"] is None:
            outcomes.append({"game_id": game_id, "outcome": "no_score"})
            continue
        if game["spread"] is None:
            outcomes.append({"game_id": game_id, "outcome": "no_spread"})
            continue
        try:
            with conn:
                if db.count_graded_picks(conn, game_id):
                    # Result is fixed once any pick was graded against it.
                    result = SpreadResult(game["spread_winner"], bool(game["is_push"]))
                else:
                    result = spread_winner(
                        game["home_team"],
                        game["away_team"],
                        int(game["home_score"]),
                        int(game["away_score"]),
                        game["favorite_team"],
                        float(game["spread"]),
                    )
                    db.set_game_result(conn, game_id, result.winner, result.is_push)
                touched = db.grade_ungraded_picks(conn, game_id, result.winner)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            log_api_error(f"GRADE_ERROR(CFB): game={game_id} error={exc}")
            outcomes.append({"game_id": game_id, "outcome": "error", "error": str(exc)})
            continue
        graded_games += 1
        fav_is_away = game["favorite_team"] == game["away_team"]
        margin = (game["away_score"] - game["home_score"]) if fav_is_away else (game["home_score"] - game["away_score"])
        favorite_records.append({"team_margin": margin, "team_line": -float(game["spread"])})
        outcomes.append(
            {
                "game_id": game_id,
                "outcome": "graded",
                "spread_winner": result.winner,
                "is_push": result.is_push,
                "picks_graded": touched,
            }
        )
        if touched:
            print(
                f"GRADE(CFB): game={game_id} winner={result.winner} push={int(result.is_push)} picks={touched}"
            )
    summary = {
        "games": len(outcomes),
        "graded": graded_games,
        "errors": sum(1 for o in outcomes if o["outcome"] == "error"),
        "favorites_ats": compute_ats(favorite_records),
        "outcomes": outcomes,
    }
    print(
        f"GRADE(CFB): games={summary['games']} graded={graded_games} errors={summary['errors']} "
        f"favorites_ats={summary['favorites_ats']}"
    )
    return summary


def _ranked(frame: pd.DataFrame, group_col: str, value_col: str, rank_col: str) -> pd.DataFrame:
    frame = frame.copy()
    frame[rank_col] = 0
    for _, group in frame.groupby(group_col):
        ranks = dense_rank(group[value_col], higher_is_better=True)
        frame.loc[ranks.index, rank_col] = ranks.values
    return frame


def recompute_standings(conn: sqlite3.Connection) -> Dict[str, int]:
    """Rebuild weekly_scores and season_standings from graded picks."""
    rows = db.graded_pick_frame_rows(conn)
    picks = pd.DataFrame([dict(row) for row in rows], columns=["user_id", "is_correct", "week_id", "season_year"])
    weekly_rows: List[dict] = []
    season_rows: List[dict] = []
    if not picks.empty:
        picks["is_correct"] = picks["is_correct"].astype(int)
        weekly = (
            picks.groupby(["user_id", "week_id"], sort=True)["is_correct"]
            .agg(correct_picks="sum", total_picks="count")
            .reset_index()
        )
        weekly = _ranked(weekly, "week_id", "correct_picks", "weekly_rank")
        for rec in weekly.to_dict(orient="records"):
            weekly_rows.append(
                {
                    "user_id": int(rec["user_id"]),
                    "week_id": int(rec["week_id"]),
                    "correct_picks": int(rec["correct_picks"]),
                    "total_picks": int(rec["total_picks"]),
                    "percentage": pick_percentage(int(rec["correct_picks"]), int(rec["total_picks"])),
                    "weekly_rank": int(rec["weekly_rank"]),
                }
            )
        season = (
            picks.groupby(["user_id", "season_year"], sort=True)
            .agg(
                total_correct=("is_correct", "sum"),
                total_picks=("is_correct", "count"),
                weeks_played=("week_id", "nunique"),
            )
            .reset_index()
        )
        season = _ranked(season, "season_year", "total_correct", "season_rank")
        for rec in season.to_dict(orient="records"):
            season_rows.append(
                {
                    "user_id": int(rec["user_id"]),
                    "season_year": int(rec["season_year"]),
                    "total_correct": int(rec["total_correct"]),
                    "total_picks": int(rec["total_picks"]),
                    "season_percentage": pick_percentage(int(rec["total_correct"]), int(rec["total_picks"])),
                    "weeks_played": int(rec["weeks_played"]),
                    "season_rank": int(rec["season_rank"]),
                }
            )
    with conn:
        db.replace_standings(conn, weekly_rows, season_rows)
    print(f"STANDINGS(CFB): weekly_rows={len(weekly_rows)} season_rows={len(season_rows)}")
    return {"weekly_rows": len(weekly_rows), "season_rows": len(season_rows)}


def run_grading_pass(ctx: PipelineContext) -> Dict[str, Any]:
    """Scores -> grading -> standings -> week completion, bounded by grading_timeout."""
    scores = update_game_scores(ctx)
    deadline = ctx.now() + timedelta(seconds=ctx.config.grading_timeout)
    grading = grade_completed_games(ctx.conn, deadline=deadline, clock=ctx.now)
    standings = recompute_standings(ctx.conn)
    completed_weeks = [
        int(week["id"]) for week in db.active_weeks(ctx.conn) if complete_week_if_finished(ctx.conn, week["id"])
    ]
    return {"scores": scores, "grading": grading, "standings": standings, "completed_weeks": completed_weeks}


def recalculate_all(ctx: PipelineContext) -> Dict[str, Any]:
    """Admin rebuild: grade anything still ungraded, then rebuild every aggregate."""
    grading = grade_completed_games(ctx.conn)
    standings = recompute_standings(ctx.conn)
    return {"grading": grading, "standings": standings}


__all__ = [
    "match_final",
    "update_game_scores",
    "grade_completed_games",
    "recompute_standings",
    "run_grading_pass",
    "recalculate_all",
]
