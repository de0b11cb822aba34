"""Tests for core.outcomes: spread/total grading and bet settlement."""

import pytest

from lineintel.core.outcomes import (
    BetOutcome,
    SpreadResult,
    TotalResult,
    bet_outcome,
    spread_result,
    total_result,
)


# ---------------------------------------------------------------------------
# spread_result
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("home, away, spread, expected", [
    (24, 20, -3.0,  SpreadResult.HOME_COVER),   # 21 > 20
    (24, 20, -4.0,  SpreadResult.PUSH),         # 20 == 20
    (24, 20, -5.0,  SpreadResult.AWAY_COVER),   # 19 < 20
    (17, 20, +3.5,  SpreadResult.HOME_COVER),   # home dog covers
    (17, 20, +3.0,  SpreadResult.PUSH),
    (10, 31, +7.0,  SpreadResult.AWAY_COVER),
])
def test_spread_result(home, away, spread, expected):
    assert spread_result(home, away, spread) is expected


_COMPLEMENT = {
    SpreadResult.HOME_COVER: SpreadResult.AWAY_COVER,
    SpreadResult.AWAY_COVER: SpreadResult.HOME_COVER,
    SpreadResult.PUSH: SpreadResult.PUSH,
}


@pytest.mark.parametrize("home", [0, 3, 17, 24, 45])
@pytest.mark.parametrize("away", [0, 7, 20, 21])
@pytest.mark.parametrize("spread", [-10.5, -7.0, -3.0, -0.5, 0.0, 2.5, 4.0])
def test_spread_result_is_antisymmetric(home, away, spread):
    # Swapping home/away and negating the spread flips the result.
    assert spread_result(away, home, -spread) is _COMPLEMENT[spread_result(home, away, spread)]


# ---------------------------------------------------------------------------
# total_result
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("home, away, line, expected", [
    (24, 20, 43.5, TotalResult.OVER),
    (24, 20, 44.0, TotalResult.PUSH),
    (24, 20, 44.5, TotalResult.UNDER),
    (0, 0, 0.5, TotalResult.UNDER),
])
def test_total_result(home, away, line, expected):
    assert total_result(home, away, line) is expected


# ---------------------------------------------------------------------------
# bet_outcome
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("bet_type, side, line, home, away, expected", [
    ("spread", "home", -3.0, 24, 20, BetOutcome.WIN),
    ("spread", "home", -5.0, 24, 20, BetOutcome.LOSS),
    ("spread", "away", +5.0, 24, 20, BetOutcome.WIN),
    ("spread", "away", +4.0, 24, 20, BetOutcome.PUSH),
    ("total", "over", 43.5, 24, 20, BetOutcome.WIN),
    ("total", "under", 43.5, 24, 20, BetOutcome.LOSS),
    ("total", "under", 44.0, 24, 20, BetOutcome.PUSH),
    ("moneyline", "away", None, 24, 20, BetOutcome.LOSS),
    ("moneyline", "home", None, 24, 20, BetOutcome.WIN),
    ("moneyline", "home", None, 20, 20, BetOutcome.PUSH),
])
def test_bet_outcome(bet_type, side, line, home, away, expected):
    assert bet_outcome(bet_type, side, line, home, away) is expected


def test_bet_outcome_agrees_with_spread_result():
    # Live settlement and backfill must grade identically.
    for spread in (-7.5, -3.0, 0.0, 2.5):
        home_result = spread_result(21, 17, spread)
        outcome = bet_outcome("spread", "home", spread, 21, 17)
        if home_result is SpreadResult.PUSH:
            assert outcome is BetOutcome.PUSH
        else:
            assert (outcome is BetOutcome.WIN) == (home_result is SpreadResult.HOME_COVER)


@pytest.mark.parametrize("bet_type, side, line", [
    ("spread", "home", None),
    ("spread", "over", -3.0),
    ("total", "home", 44.5),
    ("parlay", "home", -3.0),
])
def test_bet_outcome_ungradable(bet_type, side, line):
    assert bet_outcome(bet_type, side, line, 24, 20) is None
