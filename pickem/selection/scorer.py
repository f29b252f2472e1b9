"""Matchup scoring and top-N selection.

Purpose & scope:
    Rank a week's candidate games so the most interesting matchups are
    offered for selection (top 20) and the top 8 become the week's games.
Invariants:
    * Tier weights never overlap: a watch-list game outscores every game
      without a watch-list team, and a ranked-vs-ranked game outscores every
      game with at most one ranked team.
    * Equal scores keep their input order (stable sort).
    * Non-FBS candidates are dropped before scoring.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from pickem.common.models import CandidateGame, RankingEntry, SelectedGame
from pickem.common.pool_config import PoolConfig
from pickem.common.team_names_cfb import TeamNameNormalizer

FAVORITE_TEAM_BONUS = 10000
BOTH_RANKED_BONUS = 5000
ONE_RANKED_BASE = 1100
ONE_RANKED_PER_RANK = 20
ONE_RANKED_FLOOR = 600
RANKED_VS_POPULAR_BONUS = 300
BOTH_POPULAR_BONUS = 400
ONE_POPULAR_BONUS = 200
CONFERENCE_GAME_BONUS = 50
MAJOR_CONFERENCE_BONUS = 100
TOP_25 = 25


def is_fbs(game: CandidateGame) -> bool:
    """Unknown classification counts as FBS; a known non-"fbs" value does not."""
    for value in (game.home_classification, game.away_classification):
        if value is not None and value.strip().lower() != "fbs":
            return False
    return True


def filter_fbs(games: Iterable[CandidateGame]) -> List[CandidateGame]:
    return [game for game in games if is_fbs(game)]


class MatchupScorer:
    def __init__(self, config: PoolConfig, normalizer: TeamNameNormalizer) -> None:
        self.config = config
        self.normalizer = normalizer
        self.popular: Set[str] = {normalizer.normalize(team) for team in config.popular_programs}
        self.major_conferences: Set[str] = {c.strip().lower() for c in config.major_conferences}

    def ranking_set(self, rankings: Iterable[RankingEntry]) -> Dict[str, int]:
        """Canonical token -> best rank, limited to the top 25."""
        ranks: Dict[str, int] = {}
        for entry in rankings:
            if entry.rank is None or entry.rank < 1 or entry.rank > TOP_25:
                continue
            token = self.normalizer.normalize(entry.team)
            if token:
                ranks[token] = min(entry.rank, ranks.get(token, entry.rank))
        return ranks

    def _rank(self, team: str, embedded: Optional[int], ranking_set: Mapping[str, int]) -> Optional[int]:
        rank = ranking_set.get(self.normalizer.normalize(team))
        if rank is None and embedded is not None and 1 <= embedded <= TOP_25:
            rank = embedded
        return rank

    def score(
        self,
        candidate: CandidateGame,
        ranking_set: Mapping[str, int],
        popular_program_set: Optional[Set[str]] = None,
    ) -> int:
        popular = self.popular if popular_program_set is None else popular_program_set
        home_token = self.normalizer.normalize(candidate.home_team)
        away_token = self.normalizer.normalize(candidate.away_team)
        home_rank = self._rank(candidate.home_team, candidate.home_rank, ranking_set)
        away_rank = self._rank(candidate.away_team, candidate.away_rank, ranking_set)
        home_popular = home_token in popular
        away_popular = away_token in popular

        total = 0
        if self.normalizer.is_favorite_team(candidate.home_team) or self.normalizer.is_favorite_team(
            candidate.away_team
        ):
            total += FAVORITE_TEAM_BONUS

        if home_rank is not None and away_rank is not None:
            total += BOTH_RANKED_BONUS
        elif home_rank is not None or away_rank is not None:
            rank = home_rank if home_rank is not None else away_rank
            total += max(ONE_RANKED_FLOOR, ONE_RANKED_BASE - rank * ONE_RANKED_PER_RANK)
            unranked_popular = away_popular if home_rank is not None else home_popular
            if unranked_popular:
                total += RANKED_VS_POPULAR_BONUS
        elif home_popular and away_popular:
            total += BOTH_POPULAR_BONUS
        elif home_popular or away_popular:
            total += ONE_POPULAR_BONUS

        if candidate.conference_game:
            total += CONFERENCE_GAME_BONUS
        conferences = {(c or "").strip().lower() for c in (candidate.home_conference, candidate.away_conference)}
        if conferences & self.major_conferences:
            total += MAJOR_CONFERENCE_BONUS
        return total

    def rank_candidates(
        self,
        candidates: Sequence[CandidateGame],
        rankings: Iterable[RankingEntry] = (),
    ) -> List[SelectedGame]:
        """FBS filter, score, stable sort descending."""
        ranking_set = self.ranking_set(rankings)
        kept = filter_fbs(candidates)
        scored = [
            SelectedGame(
                candidate=game,
                score=self.score(game, ranking_set),
                is_favorite_team_game=self.normalizer.is_favorite_team(game.home_team)
                or self.normalizer.is_favorite_team(game.away_team),
            )
            for game in kept
        ]
        ordered = sorted(scored, key=lambda selected: -selected.score)
        print(
            f"MATCHUP_SCORE(CFB): candidates={len(candidates)} fbs={len(kept)} "
            f"ranked_teams={len(ranking_set)} top_score={ordered[0].score if ordered else None}"
        )
        return ordered

    def available(self, ranked: Sequence[SelectedGame]) -> List[SelectedGame]:
        return list(ranked[: self.config.available_count])

    def selected(self, ranked: Sequence[SelectedGame]) -> List[SelectedGame]:
        return list(ranked[: self.config.selected_count])


__all__ = ["MatchupScorer", "filter_fbs", "is_fbs", "FAVORITE_TEAM_BONUS", "BOTH_RANKED_BONUS"]
