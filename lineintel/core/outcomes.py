"""Outcome calculation from final scores.  Pure functions, no side effects.

These are the only functions allowed to turn a score line into a result.
The historical backfill and the live bet settlement both call them, so a
sign or rounding convention can never drift between the two paths.

Spread convention: ``spread_home`` is signed from the home team's
perspective (negative = home favoured).
"""

from __future__ import annotations

import enum
from typing import Optional


class SpreadResult(str, enum.Enum):
    HOME_COVER = "home_cover"
    AWAY_COVER = "away_cover"
    PUSH = "push"


class TotalResult(str, enum.Enum):
    OVER = "over"
    UNDER = "under"
    PUSH = "push"


class BetOutcome(str, enum.Enum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"


def spread_result(home_score: int, away_score: int, spread_home: float) -> SpreadResult:
    """
    Grade the home spread.

        adjusted_home = home_score + spread_home
        > away_score → home_cover,  < → away_cover,  == → push

    Example: 24-20 with the home side -3 → 21 > 20 → home_cover.
    """
    adjusted_home = home_score + spread_home
    if adjusted_home > away_score:
        return SpreadResult.HOME_COVER
    if adjusted_home < away_score:
        return SpreadResult.AWAY_COVER
    return SpreadResult.PUSH


def total_result(home_score: int, away_score: int, total_line: float) -> TotalResult:
    """Compare combined points to the total line."""
    total_points = home_score + away_score
    if total_points > total_line:
        return TotalResult.OVER
    if total_points < total_line:
        return TotalResult.UNDER
    return TotalResult.PUSH


def bet_outcome(
    bet_type: str,
    side: str,
    line: Optional[float],
    home_score: int,
    away_score: int,
) -> Optional[BetOutcome]:
    """
    Settle a single pick against final scores.

    ``line`` is from the picked side's perspective: a home spread pick of
    -4.5 is ``line=-4.5``, an away pick of +4.5 is ``line=4.5``.  Total
    picks carry the total number; moneyline picks ignore ``line``.

    Returns None when the pick cannot be graded (missing line, unknown
    side or bet type).
    """
    side = (side or "").lower()

    if bet_type == "spread":
        if line is None or side not in ("home", "away"):
            return None
        # Away lines are flipped onto the home axis so one grader covers both.
        home_line = line if side == "home" else -line
        result = spread_result(home_score, away_score, home_line)
        if result is SpreadResult.PUSH:
            return BetOutcome.PUSH
        home_won = result is SpreadResult.HOME_COVER
        return BetOutcome.WIN if home_won == (side == "home") else BetOutcome.LOSS

    if bet_type == "total":
        if line is None or side not in ("over", "under"):
            return None
        result = total_result(home_score, away_score, line)
        if result is TotalResult.PUSH:
            return BetOutcome.PUSH
        went_over = result is TotalResult.OVER
        return BetOutcome.WIN if went_over == (side == "over") else BetOutcome.LOSS

    if bet_type == "moneyline":
        if side not in ("home", "away"):
            return None
        if home_score == away_score:
            return BetOutcome.PUSH
        home_won = home_score > away_score
        return BetOutcome.WIN if home_won == (side == "home") else BetOutcome.LOSS

    return None
