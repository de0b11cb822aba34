"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or jobs.

Two pillars are exposed:

1. **Odds conversion**: American ↔ decimal ↔ implied probability.
2. **Market overround**: combined implied probability of a two-way price
   pair, the quantity the arbitrage detector tests against 100%.

Design decisions
----------------
* All functions accept ``int`` American odds because The Odds API and most
  US sportsbook feeds return integers.  Decimal odds must be converted by
  the caller before passing in.
* The implied-probability transform is the standard American one::

      odds < 0  →  |odds| / (|odds| + 100)
      odds ≥ 0  →  100 / (odds + 100)

  It is used identically by the CLV calculator (moneyline CLV) and the
  arbitrage detector, so the two can never disagree on a price.
"""

from __future__ import annotations

from typing import Final, Optional

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  Feeds never return |odds| < 100;
#: values below this indicate a data error.
_MIN_ODDS_MAGNITUDE: Final[int] = 100


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_american_odds(odds: int | float, name: str = "odds") -> None:
    """Raise ValueError for obviously invalid American odds."""
    if odds is None:
        raise ValueError(f"{name} is missing")
    if abs(odds) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(
            f"{name}={odds!r} is not a valid American odds value. "
            "Must be >= +100 (underdog) or <= -100 (favourite)."
        )


def is_valid_american_odds(odds: Optional[int | float]) -> bool:
    """Non-raising variant of :func:`validate_american_odds`."""
    return odds is not None and abs(odds) >= _MIN_ODDS_MAGNITUDE


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Decimal odds represent the total payout per unit staked, **including**
    the return of the stake itself.  Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Raises:
        ValueError: If ``|american| < 100``.
    """
    validate_american_odds(american, "american")
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def implied_prob(american: int | float) -> float:
    """Raw implied probability from American odds (vig-inclusive).

    Examples::

        implied_prob(-110) → 0.5238
        implied_prob(+120) → 0.4545
        implied_prob(+110) → 0.4762

    Raises:
        ValueError: If ``|american| < 100``.
    """
    validate_american_odds(american, "american")
    if american < 0:
        return abs(american) / (abs(american) + 100.0)
    return 100.0 / (american + 100.0)


# ---------------------------------------------------------------------------
# Two-way market
# ---------------------------------------------------------------------------


def combined_implied_prob(odds_a: int | float, odds_b: int | float) -> float:
    """Sum of implied probabilities for the two sides of a two-way market.

    Above 1.0 the difference is the bookmaker's overround; below 1.0 the
    two prices together guarantee a profit (an arbitrage).
    """
    return implied_prob(odds_a) + implied_prob(odds_b)


def arbitrage_pct(odds_a: int | float, odds_b: int | float) -> float:
    """Guaranteed return (in %) from backing both sides, ``<= 0`` when none.

    Examples::

        arbitrage_pct(+120, +110) → 6.93
        arbitrage_pct(-110, -110) → -4.76
    """
    return (1.0 - combined_implied_prob(odds_a, odds_b)) * 100.0
