"""
Team-name equivalence across data sources.

Feeds disagree on how they spell a team ("LA Rams", "Los Angeles Rams",
"Rams", "LAR").  ``teams_match`` decides whether two spellings refer to
the same club.  The alias table is plain data held in an ``AliasTable``
so deployments can extend it (TEAM_ALIASES_PATH) without touching the
matching rules.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional, Set

from rapidfuzz import fuzz, process

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Built-in alias groups.  Key is the canonical full name; values are the
# short forms and historical names seen in results and odds feeds.
#
# Lookups are exact (after lower/strip), never substring: "ne" must not make
# every name containing those two letters a Patriot.
# ---------------------------------------------------------------------------
DEFAULT_TEAM_ALIASES: Dict[str, List[str]] = {
    # NFL
    "kansas city chiefs":     ["kc", "chiefs"],
    "san francisco 49ers":    ["sf", "49ers"],
    "new york jets":          ["nyj", "jets"],
    "new york giants":        ["nyg", "giants"],
    "los angeles rams":       ["lar", "rams", "la rams", "st. louis rams"],
    "los angeles chargers":   ["lac", "chargers", "la chargers", "san diego chargers"],
    "las vegas raiders":      ["lv", "raiders", "oakland raiders"],
    "new england patriots":   ["ne", "patriots"],
    "green bay packers":      ["gb", "packers"],
    "tampa bay buccaneers":   ["tb", "buccaneers", "bucs"],
    "new orleans saints":     ["no", "saints"],
    "washington commanders":  ["was", "commanders", "washington football team", "washington redskins"],
    "tennessee titans":       ["ten", "titans"],
    "jacksonville jaguars":   ["jax", "jaguars"],
    "indianapolis colts":     ["ind", "colts"],
    # NBA
    "oklahoma city thunder":  ["okc", "thunder"],
    "portland trail blazers": ["por", "trail blazers", "blazers"],
    "golden state warriors":  ["gs", "gsw", "warriors"],
    "san antonio spurs":      ["sa", "sas", "spurs"],
    "new york knicks":        ["nyk", "knicks"],
    "brooklyn nets":          ["bkn", "nets"],
    "los angeles lakers":     ["lal", "lakers", "la lakers"],
    "los angeles clippers":   ["lac", "clippers", "la clippers"],
    "philadelphia 76ers":     ["phi", "76ers", "sixers"],
}


def normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


class AliasTable:
    """
    Name → alias-group lookup.

    A single spelling may belong to more than one group ("lac" is both the
    Chargers and the Clippers); two names are aliases if their group sets
    intersect.
    """

    def __init__(self, groups: Optional[Mapping[str, Iterable[str]]] = None):
        self._groups: Dict[str, Set[str]] = {}
        self._index: Dict[str, Set[str]] = {}
        self.extend(DEFAULT_TEAM_ALIASES if groups is None else groups)

    def extend(self, groups: Mapping[str, Iterable[str]]) -> None:
        """Merge groups in.  Existing canonical keys gain the new aliases."""
        for canonical, aliases in groups.items():
            key = normalize(canonical)
            if not key:
                continue
            members = self._groups.setdefault(key, {key})
            for alias in aliases:
                a = normalize(alias)
                if a:
                    members.add(a)
            for member in members:
                self._index.setdefault(member, set()).add(key)

    def groups_for(self, name: str) -> Set[str]:
        return self._index.get(normalize(name), set())

    def same_group(self, a: str, b: str) -> bool:
        ga = self.groups_for(a)
        return bool(ga) and not ga.isdisjoint(self.groups_for(b))

    def names(self) -> List[str]:
        return sorted(self._index)

    def __len__(self) -> int:
        return len(self._groups)

    @classmethod
    def from_json(cls, path: str) -> "AliasTable":
        """Defaults plus the ``{canonical: [aliases]}`` groups in ``path``."""
        table = cls()
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Alias file {path} must contain a JSON object")
        table.extend(data)
        logger.info("Loaded %d alias groups from %s", len(data), path)
        return table


_default_table: Optional[AliasTable] = None


def get_alias_table() -> AliasTable:
    """Process-wide table: defaults plus TEAM_ALIASES_PATH when set."""
    global _default_table
    if _default_table is None:
        path = os.getenv("TEAM_ALIASES_PATH")
        if path:
            try:
                _default_table = AliasTable.from_json(path)
            except (OSError, ValueError) as exc:
                logger.error("Could not load team aliases from %s: %s", path, exc)
                _default_table = AliasTable()
        else:
            _default_table = AliasTable()
    return _default_table


def reset_alias_table() -> None:
    global _default_table
    _default_table = None


def teams_match(name1: str, name2: str, aliases: Optional[AliasTable] = None) -> bool:
    """
    True when two spellings refer to the same team.

    Rules, in order:
      1. exact match after lower/strip
      2. one name contains the other ("Chiefs" in "Kansas City Chiefs")
      3. same final token, longer than 3 chars ("LA Rams" / "Los Angeles Rams")
      4. both names sit in a common alias group ("KC" / "Kansas City Chiefs")
    """
    n1 = normalize(name1)
    n2 = normalize(name2)
    if not n1 or not n2:
        return False

    if n1 == n2:
        return True

    if n1 in n2 or n2 in n1:
        return True

    last1 = n1.split()[-1]
    last2 = n2.split()[-1]
    if len(last1) > 3 and last1 == last2:
        return True

    table = aliases if aliases is not None else get_alias_table()
    return table.same_group(n1, n2)


def suggest_alias(name: str, choices: Iterable[str], score_cutoff: float = 80) -> Optional[str]:
    """
    Closest spelling in ``choices`` for an unmatched name.

    Advisory only: used to enrich "no match" log lines and the alias
    mapping report, never to decide a match.
    """
    name = normalize(name)
    pool = [c for c in choices if c]
    if not name or not pool:
        return None
    result = process.extractOne(
        name, pool, scorer=fuzz.token_set_ratio, processor=normalize, score_cutoff=score_cutoff
    )
    if result:
        logger.debug("Alias suggestion for '%s': '%s' (score %.0f)", name, result[0], result[1])
        return result[0]
    return None
