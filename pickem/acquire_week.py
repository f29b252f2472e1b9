"""Weekly acquisition orchestrator: candidates -> odds -> scoring -> persisted games.

Purpose & scope:
    Run the source fallback chain (CFBD -> ESPN -> scoreboard scrape), attach
    bookmaker spreads, score candidates and persist the week's selection.
Invariants:
    * Sources are attempted sequentially; a later source runs only when the
      earlier ones were skipped, misconfigured, failing or empty.
    * TransientUpstreamError never escapes; it is recorded in the health log.
    * ConfigurationError is collected in the report and printed for the
      operator; other sources are still attempted.
    * Acquisition past its time budget returns what it has gathered.
    * A week with spreads locked is never re-populated.
Side effects:
    * Writes ``api_usage_log`` on every call; writes ``weeks``/``games``
      through the lifecycle manager.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pickem.common.current_week_service import week_deadline
from pickem.common.errors import ConfigurationError, NotFoundError, SpreadsLockedError, TransientUpstreamError
from pickem.common.io_utils import log_api_error
from pickem.common.models import CandidateGame, RankingEntry, SelectedGame, SpreadQuote, parse_iso
from pickem.context import PipelineContext, build_context
from pickem.odds.reconcile import reconcile
from pickem.sources.base import UpstreamSource
from pickem.storage import db
from pickem.weeks.lifecycle import (
    activate_week,
    apply_online_spreads,
    enforce_kickoff_lock,
    ensure_week,
    replace_week_games,
)


@dataclass
class AcquisitionReport:
    season: int
    week: int
    games: List[CandidateGame] = field(default_factory=list)
    rankings: List[RankingEntry] = field(default_factory=list)
    source_used: Optional[str] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)
    configuration_errors: List[str] = field(default_factory=list)
    quotes: int = 0
    timed_out: bool = False

    def summary(self) -> Dict[str, Any]:
        return {
            "season": self.season,
            "week": self.week,
            "source": self.source_used,
            "games": len(self.games),
            "ranked": len(self.rankings),
            "quotes": self.quotes,
            "with_spread": sum(1 for game in self.games if game.spread is not None),
            "configuration_errors": list(self.configuration_errors),
            "timed_out": self.timed_out,
        }


def _out_of_time(ctx: PipelineContext, deadline: Optional[datetime], report: AcquisitionReport, stage: str) -> bool:
    if deadline is not None and ctx.now() >= deadline:
        report.timed_out = True
        print(f"ACQUIRE(CFB): timeout=1 stage={stage} games={len(report.games)}")
        return True
    return False


def _call_source(ctx: PipelineContext, report: AcquisitionReport, source: UpstreamSource, fn, *args):
    """Run one adapter call with health recording; returns None on handled failure."""
    try:
        result = fn(*args)
    except ConfigurationError as exc:
        report.configuration_errors.append(str(exc))
        report.attempts.append({"source": source.source_id, "outcome": "config_error"})
        log_api_error(f"CONFIG_ERROR({source.source_id}): {exc}")
        return None
    except TransientUpstreamError as exc:
        ctx.tracker.record(
            source.source_id,
            False,
            exc.quota_remaining,
            endpoint=source.last_endpoint,
            error=str(exc),
        )
        report.attempts.append({"source": source.source_id, "outcome": "error", "error": str(exc)})
        return None
    if getattr(source, "last_rate_limited", False):
        ctx.tracker.record(
            source.source_id,
            False,
            source.last_quota,
            endpoint=source.last_endpoint,
            error="HTTP 429 rate limited",
        )
        report.attempts.append({"source": source.source_id, "outcome": "rate_limited"})
        return None
    if source.last_from_cache:
        return result
    ctx.tracker.record(source.source_id, True, source.last_quota, endpoint=source.last_endpoint)
    return result


def acquire_candidates(
    ctx: PipelineContext,
    year: int,
    week: int,
    with_odds: bool = True,
) -> AcquisitionReport:
    report = AcquisitionReport(season=year, week=week)
    deadline = ctx.now() + timedelta(seconds=ctx.config.acquisition_timeout)

    for source in ctx.game_sources:
        if _out_of_time(ctx, deadline, report, source.source_id):
            break
        if ctx.tracker.should_skip(source.source_id):
            report.attempts.append({"source": source.source_id, "outcome": "skipped"})
            continue
        games = _call_source(ctx, report, source, source.fetch_games, year, week)
        if games is None:
            continue
        if not games:
            report.attempts.append({"source": source.source_id, "outcome": "empty"})
            continue
        report.attempts.append({"source": source.source_id, "outcome": "ok", "games": len(games)})
        report.games = list(games)
        report.source_used = source.source_id
        if not _out_of_time(ctx, deadline, report, f"{source.source_id}_rankings"):
            ctx.sleep(ctx.config.politeness_delay)
            rankings = _call_source(ctx, report, source, source.fetch_rankings, year, week)
            report.rankings = list(rankings or [])
        break

    if report.games and with_odds and not _out_of_time(ctx, deadline, report, "odds"):
        quotes = fetch_quotes(ctx, report)
        report.quotes = len(quotes)
        if quotes:
            report.games = reconcile(report.games, quotes, ctx.normalizer, ctx.config.book_priority)

    for message in report.configuration_errors:
        print(f"WARNING: {message}")
    print(
        f"ACQUIRE(CFB): season={year} week={week} source={report.source_used} "
        f"games={len(report.games)} ranked={len(report.rankings)} quotes={report.quotes} "
        f"attempts={[a['source'] + ':' + a['outcome'] for a in report.attempts]}"
    )
    return report


def fetch_quotes(ctx: PipelineContext, report: AcquisitionReport) -> List[SpreadQuote]:
    odds = ctx.odds_source
    if odds is None:
        return []
    if ctx.tracker.should_skip(odds.source_id):
        report.attempts.append({"source": odds.source_id, "outcome": "skipped"})
        return []
    quotes = _call_source(ctx, report, odds, odds.fetch_spreads)
    if quotes is None:
        return []
    report.attempts.append({"source": odds.source_id, "outcome": "ok", "quotes": len(quotes)})
    return list(quotes)


def score_week(ctx: PipelineContext, year: int, week: int) -> Tuple[AcquisitionReport, List[SelectedGame]]:
    report = acquire_candidates(ctx, year, week)
    ranked = ctx.scorer.rank_candidates(report.games, report.rankings)
    return report, ranked


def get_top_games_for_week(ctx: PipelineContext, year: int, week: int) -> List[SelectedGame]:
    """Acquisition and scoring only; returns the games available for selection."""
    _, ranked = score_week(ctx, year, week)
    return ctx.scorer.available(ranked)


def _week_row(ctx: PipelineContext, year: int, week: int):
    return ensure_week(ctx.conn, year, week, week_deadline(year, week, ctx.config))


def fetch_weekly_games(ctx: PipelineContext, force_refresh: bool = False) -> Dict[str, Any]:
    """Acquire, score and persist the top selection for the current week."""
    season, week = ctx.current_week()
    return populate_week(ctx, season, week, force_refresh=force_refresh)


def populate_week(ctx: PipelineContext, season: int, week: int, force_refresh: bool = False) -> Dict[str, Any]:
    week_id = int(_week_row(ctx, season, week)["id"])
    week_row = enforce_kickoff_lock(ctx.conn, week_id, ctx.now())
    summary: Dict[str, Any] = {"season": season, "week": week, "week_id": week_id, "status": "skipped"}
    if week_row["spreads_locked"]:
        summary["reason"] = "spreads_locked"
        print(f"FETCH_WEEKLY(CFB): season={season} week={week} skipped=spreads_locked")
        return summary
    existing = db.count_games(ctx.conn, week_id)
    if existing >= ctx.config.selected_count and not force_refresh:
        summary["reason"] = "already_populated"
        summary["games"] = existing
        print(f"FETCH_WEEKLY(CFB): season={season} week={week} skipped=already_populated games={existing}")
        return summary

    report, ranked = score_week(ctx, season, week)
    summary.update(report.summary())
    selected = ctx.scorer.selected(ranked)
    if not selected:
        summary["status"] = "no_games"
        print(f"FETCH_WEEKLY(CFB): season={season} week={week} games=0 kept_existing={existing}")
        return summary

    try:
        ids = replace_week_games(ctx.conn, week_id, [game.as_row() for game in selected], now=ctx.now())
    except SpreadsLockedError:
        summary["reason"] = "spreads_locked"
        print(f"FETCH_WEEKLY(CFB): season={season} week={week} skipped=locked_during_fetch")
        return summary
    summary.update({"status": "replaced", "games": len(ids), "game_ids": ids})
    print(
        f"FETCH_WEEKLY(CFB): season={season} week={week} source={report.source_used} "
        f"games={len(ids)} favorite_games={sum(1 for g in selected if g.is_favorite_team_game)} "
        f"force={int(force_refresh)}"
    )
    return summary


def select_matchups(
    ctx: PipelineContext,
    year: int,
    week: int,
    external_ids: Sequence[str],
    preview: Optional[Sequence[SelectedGame]] = None,
) -> List[int]:
    """Persist an operator-chosen subset of the preview as the week's games."""
    if len(external_ids) > ctx.config.selected_count:
        raise ValueError(f"at most {ctx.config.selected_count} games can be selected")
    available = list(preview) if preview is not None else get_top_games_for_week(ctx, year, week)
    by_id = {game.candidate.external_id: game for game in available if game.candidate.external_id}
    missing = [game_id for game_id in external_ids if game_id not in by_id]
    if missing:
        raise NotFoundError(f"games not in the available list: {missing}")
    week_row = _week_row(ctx, year, week)
    rows = [by_id[g].as_row() for g in external_ids]
    return replace_week_games(ctx.conn, int(week_row["id"]), rows, now=ctx.now())


def refresh_spreads(ctx: PipelineContext, year: int, week: int) -> Dict[str, int]:
    """Fill missing spreads of a persisted, unlocked week from the odds source."""
    week_row = db.find_week(ctx.conn, year, week)
    if week_row is None:
        raise NotFoundError(f"week season={year} week={week} not found")
    week_id = int(week_row["id"])
    week_row = enforce_kickoff_lock(ctx.conn, week_id, ctx.now())
    if week_row["spreads_locked"]:
        print(f"SPREAD_REFRESH(CFB): week_id={week_id} skipped=locked")
        return {"updated": 0, "kept": 0, "unmatched": 0, "locked": 1}
    rows = db.list_games(ctx.conn, week_id)
    report = AcquisitionReport(season=year, week=week)
    quotes = fetch_quotes(ctx, report)
    candidates = [
        CandidateGame(
            external_id=row["external_id"],
            home_team=row["home_team"],
            away_team=row["away_team"],
            start_time=parse_iso(row["start_time"]),
            source_id=row["source_id"] or "db",
        )
        for row in rows
        if row["spread"] is None
    ]
    priced = reconcile(candidates, quotes, ctx.normalizer, ctx.config.book_priority) if quotes else []
    return apply_online_spreads(ctx.conn, week_id, priced, ctx.normalizer, now=ctx.now())


def setup_season(ctx: PipelineContext, year: int, with_games: bool = False) -> Dict[str, Any]:
    """Create weeks 1..max_week for ``year`` and activate the current calendar week.

    Existing weeks are left as they are. When the calendar is in another season
    no week is activated. ``with_games`` populates every week holding fewer than
    ``selected_count`` games.
    """
    created: List[int] = []
    week_ids: Dict[int, int] = {}
    for week in range(1, ctx.config.max_week + 1):
        existed = db.find_week(ctx.conn, year, week) is not None
        week_id = int(_week_row(ctx, year, week)["id"])
        week_ids[week] = week_id
        if not existed:
            created.append(week)

    current_season, current = ctx.current_week()
    activated: Optional[int] = None
    if current_season == year and current in week_ids:
        activate_week(ctx.conn, week_ids[current])
        activated = current

    populated: List[Dict[str, Any]] = []
    if with_games:
        for week in range(1, ctx.config.max_week + 1):
            if db.count_games(ctx.conn, week_ids[week]) >= ctx.config.selected_count:
                continue
            result = populate_week(ctx, year, week, force_refresh=True)
            populated.append({"week": week, "status": result["status"], "games": result.get("games", 0)})
            ctx.sleep(ctx.config.politeness_delay)

    print(
        f"SEASON_SETUP(CFB): season={year} weeks={len(week_ids)} created={len(created)} "
        f"active_week={activated} populated={len(populated)}"
    )
    return {
        "season": year,
        "weeks": len(week_ids),
        "created": created,
        "active_week": activated,
        "populated": populated,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Acquire and select CFB pick'em games.")
    parser.add_argument("--season", type=int, help="Season override (defaults to the current week service).")
    parser.add_argument("--week", type=int, help="Week override (defaults to the current week service).")
    parser.add_argument("--force", action="store_true", help="Replace games even if the week is populated.")
    parser.add_argument("--preview", action="store_true", help="Print the top games without persisting.")
    parser.add_argument("--select", nargs="+", metavar="EXTERNAL_ID", help="Persist these games for the week.")
    parser.add_argument("--refresh-spreads", action="store_true", help="Fill missing spreads from the odds API.")
    parser.add_argument("--setup-season", action="store_true", help="Create every week of the season and activate the current one.")
    parser.add_argument("--with-games", action="store_true", help="With --setup-season, also populate under-filled weeks.")
    args = parser.parse_args(argv)

    ctx = build_context()
    season, week = ctx.current_week()
    season = args.season or season
    week = args.week or week
    print(f"CurrentWeek(CFB)={season} W{week}")

    if args.preview:
        for index, game in enumerate(get_top_games_for_week(ctx, season, week), start=1):
            cand = game.candidate
            line = f"{cand.favorite_team} -{cand.spread}" if cand.spread is not None else "no line"
            print(
                f"{index:>2}. [{game.score:>5}] {cand.away_team} @ {cand.home_team} "
                f"({line}) id={cand.external_id}"
            )
        return 0
    if args.select:
        ids = select_matchups(ctx, season, week, args.select)
        print(f"PASS: selected games={len(ids)}")
        return 0
    if args.refresh_spreads:
        summary = refresh_spreads(ctx, season, week)
        print(f"PASS: spreads {summary}")
        return 0
    if args.setup_season:
        summary = setup_season(ctx, season, with_games=args.with_games)
        print(f"PASS: season {season} weeks={summary['weeks']} active_week={summary['active_week']}")
        return 0

    if args.season or args.week:
        ctx.forced_week = (season, week)
    summary = fetch_weekly_games(ctx, force_refresh=args.force)
    print(f"NOTIFY: CFB acquisition complete week={season}-{week} status={summary['status']}")
    return 0 if summary["status"] != "no_games" else 1


if __name__ == "__main__":
    raise SystemExit(main())
