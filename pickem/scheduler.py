"""Injectable scheduler for the weekly pick'em jobs.

Purpose & scope:
    Decide which jobs are due at a given instant and invoke them with the
    pipeline context. Holds no module-level state: tests build a Scheduler,
    pass explicit datetimes to ``run_pending`` and inspect the results.
Default jobs (UTC):
    * Monday 06:00           activate the current week (season setup on first run)
    * Tuesday 10:00          fetch weekly games
    * Fri/Sun every 30 min   update scores + grade
    * Saturday every 15 min  update scores + grade
    * Thu-Sun hourly         auto-lock spreads once games start
    * Daily 02:00            maintenance (usage log cleanup)
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence

from pickem.acquire_week import fetch_weekly_games, setup_season
from pickem.common.current_week_service import week_deadline
from pickem.common.io_utils import log_api_error
from pickem.context import PipelineContext, build_context
from pickem.grading.engine import run_grading_pass
from pickem.storage import db
from pickem.weeks.lifecycle import activate_week, auto_lock_spreads, ensure_week

MON, TUE, WED, THU, FRI, SAT, SUN = range(7)
ALL_DAYS = frozenset(range(7))


@dataclass(frozen=True)
class Rule:
    """Weekday/hour filter plus either a fixed minute or a minute step."""

    weekdays: FrozenSet[int] = ALL_DAYS
    hours: Optional[FrozenSet[int]] = None
    minute: int = 0
    every_minutes: Optional[int] = None

    def matches(self, now: datetime) -> bool:
        if now.weekday() not in self.weekdays:
            return False
        if self.hours is not None and now.hour not in self.hours:
            return False
        if self.every_minutes:
            return now.minute % self.every_minutes == 0
        return now.minute == self.minute


@dataclass
class Job:
    name: str
    func: Callable[[PipelineContext, datetime], Any]
    rule: Rule
    last_run: Optional[str] = None


@dataclass
class Scheduler:
    ctx: PipelineContext
    jobs: List[Job] = field(default_factory=list)

    def add(self, name: str, func: Callable[[PipelineContext, datetime], Any], rule: Rule) -> Job:
        job = Job(name=name, func=func, rule=rule)
        self.jobs.append(job)
        return job

    def due(self, now: datetime) -> List[Job]:
        now = now.astimezone(timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H:%M")
        return [job for job in self.jobs if job.rule.matches(now) and job.last_run != stamp]

    def run_job(self, job: Job, now: datetime) -> Dict[str, Any]:
        now = now.astimezone(timezone.utc)
        job.last_run = now.strftime("%Y-%m-%dT%H:%M")
        print(f"SCHEDULER: job={job.name} at={job.last_run}")
        try:
            result = job.func(self.ctx, now)
        except Exception as exc:
            log_api_error(f"SCHEDULER_JOB_ERROR: job={job.name} error={type(exc).__name__}: {exc}")
            return {"job": job.name, "ok": False, "error": str(exc)}
        return {"job": job.name, "ok": True, "result": result}

    def run_pending(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or self.ctx.now()
        return [self.run_job(job, now) for job in self.due(now)]

    def run_named(self, name: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        job = next((j for j in self.jobs if j.name == name), None)
        if job is None:
            raise KeyError(f"unknown job {name!r}; known: {[j.name for j in self.jobs]}")
        return self.run_job(job, now or self.ctx.now())


def activate_current_week(ctx: PipelineContext, now: datetime) -> Dict[str, Any]:
    """Activate the calendar week; a season with no weeks yet is set up first."""
    season, week = ctx.current_week()
    if db.find_week(ctx.conn, season, 1) is None:
        setup_season(ctx, season)
    row = ensure_week(ctx.conn, season, week, week_deadline(season, week, ctx.config))
    row = activate_week(ctx.conn, row["id"])
    return {"season": season, "week": week, "week_id": int(row["id"])}


def fetch_games_job(ctx: PipelineContext, now: datetime) -> Dict[str, Any]:
    return fetch_weekly_games(ctx, force_refresh=False)


def grading_job(ctx: PipelineContext, now: datetime) -> Dict[str, Any]:
    summary = run_grading_pass(ctx)
    return {"graded": summary["grading"]["graded"], "completed_weeks": summary["completed_weeks"]}


def auto_lock_job(ctx: PipelineContext, now: datetime) -> Dict[str, Any]:
    return {"locked_weeks": auto_lock_spreads(ctx.conn, now)}


def maintenance_job(ctx: PipelineContext, now: datetime) -> Dict[str, Any]:
    return {"usage_rows_removed": ctx.tracker.cleanup(now)}


def default_scheduler(ctx: PipelineContext) -> Scheduler:
    scheduler = Scheduler(ctx)
    scheduler.add("activate_week", activate_current_week, Rule(weekdays=frozenset({MON}), hours=frozenset({6})))
    scheduler.add("fetch_weekly_games", fetch_games_job, Rule(weekdays=frozenset({TUE}), hours=frozenset({10})))
    scheduler.add("update_scores", grading_job, Rule(weekdays=frozenset({FRI, SUN}), every_minutes=30))
    scheduler.add("update_scores_saturday", grading_job, Rule(weekdays=frozenset({SAT}), every_minutes=15))
    scheduler.add("auto_lock_spreads", auto_lock_job, Rule(weekdays=frozenset({THU, FRI, SAT, SUN})))
    scheduler.add("maintenance", maintenance_job, Rule(hours=frozenset({2})))
    return scheduler


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the pick'em job scheduler.")
    parser.add_argument("--once", action="store_true", help="Run jobs due right now and exit.")
    parser.add_argument("--run", metavar="JOB", help="Run one job immediately and exit.")
    parser.add_argument("--interval", type=float, default=30.0, help="Polling interval in seconds.")
    args = parser.parse_args(argv)

    scheduler = default_scheduler(build_context())
    if args.run:
        result = scheduler.run_named(args.run)
        return 0 if result["ok"] else 1
    if args.once:
        results = scheduler.run_pending()
        print(f"SCHEDULER: ran={[r['job'] for r in results]}")
        return 0 if all(r["ok"] for r in results) else 1
    print(f"SCHEDULER: jobs={[job.name for job in scheduler.jobs]} interval={args.interval}s")
    while True:
        scheduler.run_pending()
        time.sleep(args.interval)


if __name__ == "__main__":
    raise SystemExit(main())
