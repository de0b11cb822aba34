"""
Closing Line Value (CLV) calculation service.

CLV is the primary edge-validation metric.  Positive CLV means the bettor
obtained a better number than where the market ultimately settled (the
closing line), which correlates with long-term profitability independent
of win/loss outcomes.

Units depend on bet type:

    spread     points        home: line - close_home
                             away: line - close_away  (close_away = -close_home
                                                       unless the feed posts one)
    total      points        over: close - line,  under: line - close
    moneyline  prob. points  (implied(close) - implied(pick)) * 100

Only a closing snapshot may be used as the reference.  When the closing
number needed for a bet is missing the result is None; an opening or
intermediate snapshot is never substituted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from lineintel.core.odds_math import implied_prob

logger = logging.getLogger(__name__)

CLV_DECIMALS = 2


# ---------------------------------------------------------------------------
# Data container
# ---------------------------------------------------------------------------

@dataclass
class CLVResult:
    """CLV for a single bet."""

    clv_value: float                  # Positive = beat the close
    closing_line_used: float          # Spread/total number, or closing American odds
    opening_line: Optional[float] = None

    @property
    def beat_close(self) -> bool:
        return self.clv_value > 0

    def grade(self) -> str:
        """Human-readable CLV grade for display."""
        if self.clv_value >= 1.5:
            return "STRONG+"
        elif self.clv_value > 0:
            return "POSITIVE"
        elif self.clv_value == 0:
            return "NEUTRAL"
        elif self.clv_value > -1.5:
            return "NEGATIVE"
        return "STRONG-"


# ---------------------------------------------------------------------------
# Per-type calculators
# ---------------------------------------------------------------------------

def spread_clv(
    side: str,
    line_at_pick: float,
    closing_spread_home: Optional[float],
    closing_spread_away: Optional[float] = None,
) -> Optional[float]:
    """
    Points better than the close on the picked side.

    Home -3 taken, closes -5  →  -3 - (-5) = +2
    Home -5 taken, closes -3  →  -5 - (-3) = -2
    """
    side = side.lower()
    if side == "home":
        if closing_spread_home is None:
            return None
        return line_at_pick - closing_spread_home
    if side == "away":
        if closing_spread_away is not None:
            close_away = closing_spread_away
        elif closing_spread_home is not None:
            close_away = -closing_spread_home
        else:
            return None
        return line_at_pick - close_away
    return None


def total_clv(side: str, line_at_pick: float, closing_total: Optional[float]) -> Optional[float]:
    """Lower total is better for overs, higher for unders."""
    if closing_total is None:
        return None
    side = side.lower()
    if side == "over":
        return closing_total - line_at_pick
    if side == "under":
        return line_at_pick - closing_total
    return None


def moneyline_clv(odds_at_pick: int, closing_odds: Optional[int]) -> Optional[float]:
    """
    Implied-probability points gained against the closing price.

    +150 taken (40.0%), closes +120 (45.5%)  →  +5.45
    """
    if closing_odds is None:
        return None
    return (implied_prob(closing_odds) - implied_prob(odds_at_pick)) * 100.0


# ---------------------------------------------------------------------------
# Bet-level entry point
# ---------------------------------------------------------------------------

def _side_number(bet_type: str, side: str, snapshot) -> Optional[float]:
    """The number on ``snapshot`` that corresponds to the picked side."""
    if snapshot is None:
        return None
    side = side.lower()
    if bet_type == "spread":
        if side == "home":
            return snapshot.spread_home
        if side != "away":
            return None
        if snapshot.spread_away is not None:
            return snapshot.spread_away
        return -snapshot.spread_home if snapshot.spread_home is not None else None
    if bet_type == "total":
        return snapshot.total_line
    if bet_type == "moneyline":
        if side == "home":
            return snapshot.moneyline_home
        if side == "away":
            return snapshot.moneyline_away
    return None


def calculate_clv(bet, closing, opening=None) -> Optional[CLVResult]:
    """
    CLV for one bet against the event's closing snapshot.

    ``bet`` needs bet_type, side, line_at_pick and odds_at_pick;
    ``closing``/``opening`` are LineSnapshot-shaped.  Returns None when the
    closing snapshot or the number needed for this bet is missing.

    Raises:
        ValueError: If a moneyline price is not valid American odds.
    """
    if closing is None:
        return None

    bet_type = (bet.bet_type or "").lower()
    side = (bet.side or "").lower()
    close_number = _side_number(bet_type, side, closing)
    if close_number is None:
        return None

    if bet_type == "spread":
        if bet.line_at_pick is None:
            return None
        value = spread_clv(side, bet.line_at_pick, closing.spread_home, closing.spread_away)
    elif bet_type == "total":
        if bet.line_at_pick is None:
            return None
        value = total_clv(side, bet.line_at_pick, closing.total_line)
    elif bet_type == "moneyline":
        if bet.odds_at_pick is None:
            return None
        value = moneyline_clv(bet.odds_at_pick, int(close_number))
    else:
        logger.warning("Unknown bet_type %r on bet %s", bet.bet_type, getattr(bet, "id", None))
        return None

    if value is None:
        return None

    return CLVResult(
        clv_value=round(value, CLV_DECIMALS),
        closing_line_used=close_number,
        opening_line=_side_number(bet_type, side, opening),
    )
