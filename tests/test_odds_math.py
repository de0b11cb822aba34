"""Tests for odds_math and sport_config."""

from datetime import date

import pytest

from lineintel.core.odds_math import (
    american_to_decimal,
    arbitrage_pct,
    combined_implied_prob,
    implied_prob,
    is_valid_american_odds,
    validate_american_odds,
)
from lineintel.core.sport_config import ALL_SPORTS, get_sport_config


@pytest.mark.parametrize("odds, expected", [
    (-110, 0.5238),
    (120, 0.4545),
    (100, 0.5),
    (-100, 0.5),
])
def test_implied_prob(odds, expected):
    assert implied_prob(odds) == pytest.approx(expected, abs=1e-4)


def test_american_to_decimal():
    assert american_to_decimal(150) == pytest.approx(2.5)
    assert american_to_decimal(-110) == pytest.approx(1.9091, abs=1e-4)


@pytest.mark.parametrize("odds", [0, 50, -99, None])
def test_invalid_odds(odds):
    assert is_valid_american_odds(odds) is False
    with pytest.raises(ValueError):
        validate_american_odds(odds)


def test_overround_and_arbitrage():
    assert combined_implied_prob(-110, -110) == pytest.approx(1.0476, abs=1e-4)
    assert arbitrage_pct(-110, -110) < 0
    assert arbitrage_pct(120, 110) == pytest.approx(6.93, abs=0.01)


# ---------------------------------------------------------------------------
# Sport config
# ---------------------------------------------------------------------------

def test_lookup_is_case_insensitive():
    assert get_sport_config(" NFL ").odds_api_key == "americanfootball_nfl"
    with pytest.raises(KeyError):
        get_sport_config("cricket")
    assert "nba" in ALL_SPORTS


@pytest.mark.parametrize("sport, day, season", [
    ("nfl", date(2024, 11, 17), 2024),
    ("nfl", date(2025, 1, 12), 2024),     # playoffs belong to the prior season
    ("nba", date(2023, 11, 1), 2024),
    ("nba", date(2024, 4, 1), 2024),
    ("mlb", date(2024, 7, 4), 2024),
    ("ncaab", date(2024, 3, 20), 2024),
])
def test_season_for(sport, day, season):
    assert get_sport_config(sport).season_for(day) == season
