"""Pool configuration: watch list, program/conference sets, aliases, limits.

Purpose:
    Hold the data the normalizer, scorer and orchestrator consult so that
    team lists never live inside their logic.
Inputs:
    Optional JSON overlay (``POOL_CONFIG_PATH``); keys mirror the dataclass
    fields and replace the defaults wholesale.
Invariants:
    * Loaded once per process by ``build_context`` and passed explicitly.
    * Team strings are stored raw; consumers canonicalize them through the
      normalizer so config authors can write "Texas A&M" or "texas a and m".
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Union

DEFAULT_FAVORITE_TEAMS: Dict[str, List[str]] = {
    "Colorado": ["CU", "Buffs", "Colorado Buffaloes"],
    "Colorado State": ["CSU", "Colorado State Rams"],
    "Nebraska": ["Huskers", "Nebraska Cornhuskers"],
    "Michigan": ["Wolverines", "Michigan Wolverines"],
}

DEFAULT_POPULAR_PROGRAMS: List[str] = [
    # Traditional powers
    "Alabama", "Georgia", "Texas", "Oklahoma", "USC", "Notre Dame", "Michigan", "Ohio State",
    "Penn State", "Florida", "LSU", "Auburn", "Tennessee", "Florida State", "Miami", "Clemson",
    # Big programs
    "Oregon", "Washington", "UCLA", "Stanford", "Wisconsin", "Iowa", "Michigan State", "Nebraska",
    "Colorado", "Colorado State", "Utah", "Arizona State", "Arizona", "BYU", "TCU", "Baylor",
    "Texas A&M", "Ole Miss", "Mississippi State", "Arkansas", "Kentucky", "Vanderbilt",
    "South Carolina", "North Carolina", "NC State", "Duke", "Wake Forest", "Virginia",
    "Virginia Tech", "Louisville",
    # Other notable programs
    "Kansas", "Kansas State", "Oklahoma State", "Texas Tech", "Houston", "Cincinnati", "UCF",
    "West Virginia", "Pittsburgh", "Syracuse", "Boston College", "Maryland", "Rutgers",
]

DEFAULT_MAJOR_CONFERENCES: List[str] = [
    "SEC",
    "Big Ten",
    "Big 12",
    "ACC",
    "Pac-12",
    "American Athletic",
]

# raw label -> canonical program label
DEFAULT_TEAM_ALIASES: Dict[str, str] = {
    "mississippi": "ole miss",
    "mississippi rebels": "ole miss",
    "university of mississippi": "ole miss",
    "pitt": "pittsburgh",
    "brigham young": "byu",
    "brigham young cougars": "byu",
    "central florida": "ucf",
    "central florida knights": "ucf",
    "central florida golden knights": "ucf",
    "southern cal": "usc",
    "southern california": "usc",
    "miami fl": "miami",
    "miami florida": "miami",
    "miami ohio": "miami oh",
    "miami of ohio": "miami oh",
    "texas am": "texas a and m",
    "north carolina state": "nc state",
    "app state": "appalachian state",
    "southern mississippi": "southern miss",
    "massachusetts": "umass",
    "connecticut": "uconn",
    "louisiana lafayette": "louisiana",
    "ul lafayette": "louisiana",
    "ul monroe": "louisiana monroe",
    "ulm": "louisiana monroe",
    "texas san antonio": "utsa",
    "cal": "california",
    "sam houston state": "sam houston",
    "florida international": "fiu",
    "ole miss rebels": "ole miss",
    "cu": "colorado",
    "buffs": "colorado",
    "csu": "colorado state",
    "huskers": "nebraska",
    "wolverines": "michigan",
}

# Canonical tokens that must match exactly (no prefix matching in either direction).
DEFAULT_EXACT_MATCH_GUARD: List[str] = [
    "michigan",
    "central michigan",
    "eastern michigan",
    "western michigan",
    "michigan state",
    "miami",
    "miami oh",
    "ohio",
    "ohio state",
    "kent state",
    "kent",
    "miss",
    "mississippi state",
    "ole miss",
    "georgia",
    "georgia state",
    "georgia southern",
    "georgia tech",
    "washington",
    "washington state",
    "north carolina",
    "south carolina",
    "east carolina",
    "coastal carolina",
    "texas",
    "texas state",
    "north texas",
    "tex",
    "army",
    "navy",
    "colorado",
    "colorado state",
]

DEFAULT_BOOK_PRIORITY: List[str] = [
    "draftkings",
    "fanduel",
    "betmgm",
    "pinnacle",
    "caesars",
    "betrivers",
]


@dataclass
class PoolConfig:
    """Everything the pipeline needs besides credentials and the clock."""

    favorite_teams: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_FAVORITE_TEAMS))
    popular_programs: List[str] = field(default_factory=lambda: list(DEFAULT_POPULAR_PROGRAMS))
    major_conferences: List[str] = field(default_factory=lambda: list(DEFAULT_MAJOR_CONFERENCES))
    team_aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEAM_ALIASES))
    exact_match_guard: List[str] = field(default_factory=lambda: list(DEFAULT_EXACT_MATCH_GUARD))
    book_priority: List[str] = field(default_factory=lambda: list(DEFAULT_BOOK_PRIORITY))
    season_start_month: int = 8
    season_start_day: int = 25
    max_week: int = 15
    available_count: int = 20
    selected_count: int = 8
    min_quota_remaining: int = 50
    min_calls_for_error_rate: int = 10
    max_error_rate: float = 0.5
    health_window_hours: int = 24
    usage_log_retention_days: int = 30
    score_lookback_weeks: int = 4
    politeness_delay: float = 1.0
    http_timeout: float = 30.0
    acquisition_timeout: float = 120.0
    grading_timeout: float = 60.0

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def load_pool_config(path: Optional[Union[str, Path]] = None) -> PoolConfig:
    """Return defaults, overlaid with a JSON file's keys when a path is given."""
    config = PoolConfig()
    if not path:
        return config
    target = Path(path)
    payload = json.loads(target.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Pool config must be a JSON object: {target}")
    known = {f.name for f in fields(PoolConfig)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown pool config keys in {target}: {unknown}")
    for key, value in payload.items():
        setattr(config, key, value)
    print(f"POOL_CONFIG: path={target} keys={sorted(payload)}")
    return config


__all__ = ["PoolConfig", "load_pool_config"]
