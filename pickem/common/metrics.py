"""Pure spread and standings helpers shared by grading and reporting.

Purpose:
    Hold the numeric helpers that can be unit tested in isolation: the
    against-the-spread winner of a final, ATS records and dense ranks.
Inputs:
    Final scores, the favorite's name and its line; pandas Series of totals.
Outputs:
    SpreadResult tuples, "W-L-P" strings, rank Series.
Example:
    >>> spread_winner("Ohio State", "Purdue", 31, 24, "Ohio State", 6.0).winner
    'Ohio State'
"""

from __future__ import annotations

from typing import Iterable, NamedTuple, Optional

import pandas as pd

_EPS = 1e-9


class SpreadResult(NamedTuple):
    winner: Optional[str]
    is_push: bool


def spread_winner(
    home_team: str,
    away_team: str,
    home_score: int,
    away_score: int,
    favorite_team: Optional[str],
    spread: float,
) -> SpreadResult:
    """Return the ATS winner: the favorite covers only by winning by more than the spread.

    An exact tie on a non-zero line is a push that goes to the underdog, with
    ``is_push`` set. A zero line is graded straight up; a tied game on a zero
    line has no winner.
    """
    line = abs(float(spread))
    if favorite_team == away_team:
        favorite, underdog = away_team, home_team
        margin = float(away_score) - float(home_score)
    else:
        favorite, underdog = home_team, away_team
        margin = float(home_score) - float(away_score)
    diff = margin - line
    if abs(diff) < _EPS:
        if line < _EPS:
            return SpreadResult(None, True)
        return SpreadResult(underdog, True)
    return SpreadResult(favorite if diff > 0 else underdog, False)


def _ats_outcome(team_margin: float, team_line: Optional[float]) -> Optional[str]:
    if team_line is None or pd.isna(team_line):
        return None
    diff = float(team_margin) + float(team_line)
    if abs(diff) < _EPS:
        return "P"
    return "W" if diff > 0 else "L"


def compute_ats(games: Iterable[dict]) -> str:
    """Return against-the-spread record W-L-P from team-centric lines."""
    w = l = p = 0
    for game in games:
        outcome = _ats_outcome(game.get("team_margin", 0), game.get("team_line"))
        if outcome == "W":
            w += 1
        elif outcome == "L":
            l += 1
        elif outcome == "P":
            p += 1
    return f"{w}-{l}-{p}"


def pick_percentage(correct: int, total: int) -> float:
    """Percentage of correct picks (0-100, rounded to two places)."""
    if not total:
        return 0.0
    return round(100.0 * float(correct) / float(total), 2)


def dense_rank(series: pd.Series, higher_is_better: bool) -> pd.Series:
    """Dense rank a numeric series (ties share rank, next rank increments by 1)."""
    ordered = series.sort_values(ascending=not higher_is_better, kind="mergesort")
    ranks = {}
    rank = 0
    last_val: Optional[float] = None
    for index, value in ordered.items():
        if pd.isna(value):
            continue
        if last_val is None or value != last_val:
            rank += 1
            last_val = value
        ranks[index] = rank
    return pd.Series(ranks, dtype="int64")


__all__ = [
    "SpreadResult",
    "spread_winner",
    "compute_ats",
    "pick_percentage",
    "dense_rank",
]
