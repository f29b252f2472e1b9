"""College Football team name normalization and matching.

Purpose & scope:
    Canonicalize team labels coming from CFBD, ESPN, scraped scoreboards and
    sportsbooks so games and odds from different sources can be matched.
Invariants:
    * ``normalize`` is idempotent and case/whitespace-insensitive.
    * Every configured alias resolves to the same canonical token.
    * Prefix matching is restricted to single-word tokens of 4+ characters
      and never applies to tokens in the exact-match guard set.
Do not:
    * Use general string similarity; "Michigan" must never match
      "Central Michigan" or "Michigan State".
"""

from __future__ import annotations

import re
import unicodedata
from typing import Dict, Iterable, Mapping, Optional, Set

from pickem.common.pool_config import PoolConfig

_MAX_PASSES = 5

MASCOT_WORDS = {
    "aggies", "aztecs", "badgers", "bearcats", "bearkats", "bears", "beavers", "blazers",
    "bobcats", "boilermakers", "broncos", "bruins", "buckeyes", "buffaloes", "bulldogs",
    "bulls", "cardinal", "cardinals", "cavaliers", "chanticleers", "chippewas", "commodores",
    "cornhuskers", "cougars", "cowboys", "cyclones", "ducks", "dukes", "eagles", "falcons",
    "flames", "gamecocks", "gators", "hawkeyes", "hilltoppers", "hokies", "hoosiers",
    "hornets", "hurricanes", "huskies", "jaguars", "jayhawks", "knights", "lobos",
    "longhorns", "midshipmen", "miners", "minutemen", "monarchs", "mountaineers",
    "mustangs", "orange", "owls", "panthers", "pirates", "rams", "razorbacks", "rebels", "redhawks",
    "roadrunners", "rockets", "seminoles", "sooners", "spartans", "terrapins", "tigers",
    "trojans", "utes", "volunteers", "warhawks", "wildcats", "wolfpack", "wolverines",
    "zips", "49ers",
}

MULTI_WORD_MASCOTS = {
    "black knights",
    "blue devils",
    "blue hens",
    "blue raiders",
    "crimson tide",
    "demon deacons",
    "fighting illini",
    "fighting irish",
    "golden bears",
    "golden eagles",
    "golden flashes",
    "golden gophers",
    "golden hurricane",
    "golden knights",
    "green wave",
    "horned frogs",
    "mean green",
    "nittany lions",
    "ragin cajuns",
    "rainbow warriors",
    "red raiders",
    "red wolves",
    "scarlet knights",
    "sun devils",
    "tar heels",
    "thundering herd",
    "wolf pack",
    "yellow jackets",
}


def _clean(label: str) -> str:
    text = unicodedata.normalize("NFKD", str(label))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.strip().lower()
    text = re.sub(r"\s*&\s*", " and ", text)
    text = re.sub(r"[.'’`]", "", text)
    text = re.sub(r"[^a-z0-9 ]+", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def _strip_mascot(text: str) -> str:
    for mascot in sorted(MULTI_WORD_MASCOTS, key=len, reverse=True):
        if text.endswith(" " + mascot):
            text = text[: -len(mascot)].strip()
            break
    words = text.split()
    while len(words) > 1 and words[-1] in MASCOT_WORDS:
        words.pop()
    return " ".join(words)


class TeamNameNormalizer:
    """Canonical tokens and same-team predicates driven by ``PoolConfig`` data."""

    def __init__(
        self,
        aliases: Optional[Mapping[str, str]] = None,
        exact_match_guard: Iterable[str] = (),
        favorite_teams: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._aliases: Dict[str, str] = {}
        for raw, target in (aliases or {}).items():
            self._aliases[_clean(raw)] = _clean(target)
        self._guard: Set[str] = {self.normalize(token) for token in exact_match_guard}
        self._favorites: Set[str] = set()
        for team, extra in (favorite_teams or {}).items():
            self._favorites.add(self.normalize(team))
            for alias in extra:
                self._favorites.add(self.normalize(alias))
        self._favorites.discard("")

    @classmethod
    def from_config(cls, config: PoolConfig) -> "TeamNameNormalizer":
        return cls(
            aliases=config.team_aliases,
            exact_match_guard=config.exact_match_guard,
            favorite_teams=config.favorite_teams,
        )

    def _step(self, text: str) -> str:
        text = self._aliases.get(text, text)
        text = _strip_mascot(text)
        return self._aliases.get(text, text)

    def normalize(self, raw: Optional[str]) -> str:
        """Return the canonical token for a team label ("" for blanks)."""
        if not raw:
            return ""
        token = _clean(raw)
        for _ in range(_MAX_PASSES):
            nxt = self._step(token)
            if nxt == token:
                break
            token = nxt
        return token

    def same_team(self, left: Optional[str], right: Optional[str]) -> bool:
        """Equal tokens, or a guarded single-word prefix of the other's first word."""
        a = self.normalize(left)
        b = self.normalize(right)
        if not a or not b:
            return False
        if a == b:
            return True
        if a in self._guard or b in self._guard:
            return False
        short, long_ = (a, b) if len(a) <= len(b) else (b, a)
        if " " in short or len(short) < 4:
            return False
        first_word = long_.split(" ", 1)[0]
        return first_word != short and first_word.startswith(short)

    def is_favorite_team(self, raw: Optional[str]) -> bool:
        return self.normalize(raw) in self._favorites


def team_merge_key_cfb(name: str | None) -> str:
    """Return a simple merge key (lowercase, alphanumeric)."""
    return re.sub(r"[^a-z0-9]", "", _clean(name or ""))


__all__ = [
    "TeamNameNormalizer",
    "MASCOT_WORDS",
    "MULTI_WORD_MASCOTS",
    "team_merge_key_cfb",
]
