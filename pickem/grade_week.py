"""Grading pass entry point: update scores, grade picks, rebuild standings."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from pickem.common.errors import GradingTimeout
from pickem.context import build_context
from pickem.grading.engine import recalculate_all, run_grading_pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Grade completed CFB pick'em games.")
    parser.add_argument(
        "--recalculate",
        action="store_true",
        help="Skip score fetching; grade anything ungraded and rebuild all standings.",
    )
    args = parser.parse_args(argv)

    ctx = build_context()
    if args.recalculate:
        summary = recalculate_all(ctx)
        print(f"PASS: recalculated weekly_rows={summary['standings']['weekly_rows']}")
        return 0
    try:
        summary = run_grading_pass(ctx)
    except GradingTimeout as exc:
        print(f"FAIL: grading aborted: {exc}")
        return 2
    grading = summary["grading"]
    print(
        f"NOTIFY: CFB grading complete graded={grading['graded']} errors={grading['errors']} "
        f"completed_weeks={summary['completed_weeks']}"
    )
    return 0 if grading["errors"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
