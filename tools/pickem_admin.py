"""Operator CLI: week activation, spread locks, manual spreads and API usage."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from pickem.acquire_week import setup_season
from pickem.common.current_week_service import week_deadline
from pickem.common.errors import LockViolation, NotFoundError
from pickem.context import build_context
from pickem.storage import db
from pickem.weeks.lifecycle import (
    activate_week,
    clear_spread,
    ensure_week,
    lock_spreads,
    set_manual_spread,
    unlock_spreads,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Pick'em administrative actions.")
    sub = parser.add_subparsers(dest="command", required=True)

    activate = sub.add_parser("activate", help="Mark a week active (creating it if needed).")
    activate.add_argument("--season", type=int)
    activate.add_argument("--week", type=int)

    season_cmd = sub.add_parser("setup-season", help="Create all weeks of a season and activate the current one.")
    season_cmd.add_argument("--season", type=int)
    season_cmd.add_argument("--with-games", action="store_true", help="Also populate weeks with too few games.")

    for name in ("lock", "unlock"):
        cmd = sub.add_parser(name, help=f"{name.title()} spreads for a week.")
        cmd.add_argument("week_id", type=int)

    set_cmd = sub.add_parser("set-spread", help="Set a manual spread on a game.")
    set_cmd.add_argument("game_id", type=int)
    set_cmd.add_argument("favorite_team")
    set_cmd.add_argument("spread", type=float)

    clear_cmd = sub.add_parser("clear-spread", help="Clear a game's manual spread.")
    clear_cmd.add_argument("game_id", type=int)

    sub.add_parser("usage", help="Show per-source API usage over the health window.")
    sub.add_parser("config", help="Print the effective pool configuration as JSON.")
    args = parser.parse_args()

    ctx = build_context()
    try:
        if args.command == "activate":
            season, week = ctx.current_week()
            season = args.season or season
            week = args.week or week
            row = ensure_week(ctx.conn, season, week, week_deadline(season, week, ctx.config))
            activate_week(ctx.conn, row["id"])
        elif args.command == "setup-season":
            summary = setup_season(ctx, args.season or ctx.current_week()[0], with_games=args.with_games)
            print(f"SEASON: {json.dumps(summary, sort_keys=True)}")
        elif args.command == "lock":
            lock_spreads(ctx.conn, args.week_id)
        elif args.command == "unlock":
            unlock_spreads(ctx.conn, args.week_id)
        elif args.command == "set-spread":
            set_manual_spread(ctx.conn, args.game_id, args.favorite_team, args.spread, now=ctx.now())
        elif args.command == "clear-spread":
            clear_spread(ctx.conn, args.game_id, now=ctx.now())
        elif args.command == "config":
            print(json.dumps(ctx.config.to_dict(), indent=2, sort_keys=True))
        elif args.command == "usage":
            for stat in ctx.tracker.usage_stats():
                print(
                    f"USAGE: service={stat['service']} calls={stat['calls']} errors={stat['errors']} "
                    f"error_rate={stat['error_rate']} credits={stat['credits_remaining']} "
                    f"skip={int(bool(stat['skip']))} last={stat['last_call']}"
                )
    except (LockViolation, NotFoundError) as exc:
        print(f"FAIL: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    for week in db.active_weeks(ctx.conn):
        print(
            f"ACTIVE_WEEK: id={week['id']} season={week['season_year']} week={week['week_number']} "
            f"locked={week['spreads_locked']}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
