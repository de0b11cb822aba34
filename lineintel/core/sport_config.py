"""Sport-level configuration: all sport-specific constants in one place.

This module is the **registry** for every constant that differs between
sports.  Nowhere else in the codebase should odds-feed sport keys,
exhibition markers, season boundaries or backfill sampling intervals be
hard-coded.

Typical usage::

    from lineintel.core.sport_config import get_sport_config

    cfg = get_sport_config("nfl")
    cfg.odds_api_key          # "americanfootball_nfl"
    cfg.season_for(date(2024, 1, 14))   # 2023
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Final, Tuple, Union

#: Sport identifier strings used in API routes and DB records.
SPORT_ID_NFL: Final[str] = "nfl"
SPORT_ID_NBA: Final[str] = "nba"
SPORT_ID_MLB: Final[str] = "mlb"
SPORT_ID_NHL: Final[str] = "nhl"
SPORT_ID_NCAAF: Final[str] = "ncaaf"
SPORT_ID_NCAAB: Final[str] = "ncaab"


@dataclass(frozen=True)
class SportConfig:
    """Immutable configuration bundle for a single sport.

    Attributes:
        sport_id: Short identifier (``"nfl"``, ``"nba"``, ...).
        odds_api_key: The Odds API ``sport_key`` for this sport.
        exhibition_markers: Team-name substrings that identify exhibition
            or all-star events.  Those events carry no meaningful spread
            and must be filtered before identity matching.
        sample_interval_days: Day step used when walking a season for the
            historical odds import (credits are billed per request).
        season_start_month: First calendar month of a new season.
        season_named_by_end_year: True for leagues that label a season by
            the year it finishes in (NBA 2024 = Oct 2023 - Jun 2024).
    """

    sport_id: str
    odds_api_key: str
    exhibition_markers: Tuple[str, ...] = field(
        default=("All-Star", "All Star", "Rising Stars")
    )
    sample_interval_days: int = 3
    season_start_month: int = 1
    season_named_by_end_year: bool = False

    def season_for(self, when: Union[date, datetime]) -> int:
        """Season label for an event played on ``when``."""
        if self.season_start_month == 1:
            return when.year
        if when.month >= self.season_start_month:
            start_year = when.year
        else:
            start_year = when.year - 1
        return start_year + 1 if self.season_named_by_end_year else start_year


_REGISTRY: Dict[str, SportConfig] = {
    SPORT_ID_NFL: SportConfig(
        SPORT_ID_NFL,
        "americanfootball_nfl",
        exhibition_markers=("NFC", "AFC", "Pro Bowl", "All-Star"),
        season_start_month=8,
    ),
    SPORT_ID_NBA: SportConfig(
        SPORT_ID_NBA, "basketball_nba", season_start_month=10, season_named_by_end_year=True
    ),
    SPORT_ID_MLB: SportConfig(SPORT_ID_MLB, "baseball_mlb"),
    SPORT_ID_NHL: SportConfig(
        SPORT_ID_NHL, "icehockey_nhl", season_start_month=10, season_named_by_end_year=True
    ),
    SPORT_ID_NCAAF: SportConfig(
        SPORT_ID_NCAAF, "americanfootball_ncaaf", sample_interval_days=7, season_start_month=8
    ),
    SPORT_ID_NCAAB: SportConfig(
        SPORT_ID_NCAAB,
        "basketball_ncaab",
        sample_interval_days=7,
        season_start_month=11,
        season_named_by_end_year=True,
    ),
}

ALL_SPORTS: Tuple[str, ...] = tuple(_REGISTRY)


def get_sport_config(sport: str) -> SportConfig:
    """Look up a sport by id (case-insensitive).  Raises KeyError if unknown."""
    return _REGISTRY[sport.strip().lower()]
