"""
Event identity matching between two sources.

Given a reference event (e.g. from the results table) and a pool of events
from another source (e.g. the odds feed), find the candidate that is the
same game.  Candidates are indexed by calendar day; the adjacent days are
only consulted when the reference day has no candidates at all, which
covers UTC/local day-boundary skew around late kickoffs.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from lineintel.core.sport_config import get_sport_config
from lineintel.services.team_mapping import AliasTable, teams_match

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MatchResult(Generic[T]):
    """
    A matched candidate.

    ``reversed`` means the candidate lists the teams the other way round;
    callers must negate home-relative line fields (see ``oriented_lines``).
    """

    candidate: T
    reversed: bool = False


class EventDateIndex(Generic[T]):
    """Candidates bucketed by calendar day."""

    def __init__(self, items: Iterable[T], date_attr: str = "event_date"):
        self._by_day: Dict[date, List[T]] = defaultdict(list)
        self._date_attr = date_attr
        for item in items:
            day = getattr(item, date_attr)
            if day is None:
                continue
            self._by_day[day].append(item)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_day.values())

    def on(self, day: date) -> List[T]:
        return self._by_day.get(day, [])

    def candidates_for(self, day: date) -> List[T]:
        """Same-day candidates; else the union of day-1 and day+1."""
        same_day = self.on(day)
        if same_day:
            return same_day
        return self.on(day - timedelta(days=1)) + self.on(day + timedelta(days=1))


def find_match(
    home_team: str,
    away_team: str,
    candidates: Sequence[T],
    aliases: Optional[AliasTable] = None,
) -> Optional[MatchResult[T]]:
    """
    Forward pass over all candidates first, then a reversed pass.

    Returns None when neither orientation matches; callers count that as
    unmatched and skip the row.
    """
    for cand in candidates:
        if teams_match(home_team, cand.home_team, aliases) and teams_match(
            away_team, cand.away_team, aliases
        ):
            return MatchResult(cand, reversed=False)

    for cand in candidates:
        if teams_match(home_team, cand.away_team, aliases) and teams_match(
            away_team, cand.home_team, aliases
        ):
            return MatchResult(cand, reversed=True)

    return None


def match_event(reference, index: EventDateIndex, aliases: Optional[AliasTable] = None):
    """Match ``reference`` (anything with home_team/away_team/event_date) against ``index``."""
    candidates = index.candidates_for(reference.event_date)
    if not candidates:
        return None
    return find_match(reference.home_team, reference.away_team, candidates, aliases)


def oriented_lines(match: MatchResult) -> Dict[str, Optional[float]]:
    """
    Line fields of the matched candidate from the reference's home perspective.

    A reversed match negates the spread and swaps the moneylines; the total
    is orientation-free.
    """
    cand = match.candidate
    spread = cand.point_spread
    ml_home = cand.moneyline_home
    ml_away = cand.moneyline_away
    if match.reversed:
        spread = -spread if spread is not None else None
        ml_home, ml_away = ml_away, ml_home
    return {
        "spread": spread,
        "total": cand.over_under,
        "moneyline_home": ml_home,
        "moneyline_away": ml_away,
    }


def _marker_pattern(marker: str) -> re.Pattern:
    # Short all-caps labels ("AFC") must match as words, not inside names.
    if marker.isupper() and len(marker) <= 4:
        return re.compile(r"\b%s\b" % re.escape(marker))
    return re.compile(re.escape(marker), re.IGNORECASE)


def is_exhibition(sport: str, home_team: Optional[str], away_team: Optional[str]) -> bool:
    """Conference all-star / pro-bowl style events carry no usable spread."""
    try:
        markers = get_sport_config(sport).exhibition_markers
    except KeyError:
        return False
    for name in (home_team or "", away_team or ""):
        for marker in markers:
            if _marker_pattern(marker).search(name):
                return True
    return False
