"""Tests for CLV reporting."""

from datetime import datetime, timedelta

import pytest

from lineintel.models import BetRecord
from lineintel.services.performance import calculate_clv_summary, calculate_clv_timeline


def _bet(db, clv, bet_type="spread", sport="nfl", days_ago=1):
    db.add(BetRecord(
        event_id="ev", sport=sport, bet_type=bet_type,
        side="home" if bet_type != "total" else "over",
        clv_value=clv, created_at=datetime.utcnow() - timedelta(days=days_ago),
    ))
    db.commit()


def test_empty_summary(db):
    summary = calculate_clv_summary(db)
    assert summary["total_graded"] == 0
    assert summary["mean_clv"] is None
    assert summary["beat_close_rate"] is None
    assert summary["by_bet_type"] == {}


def test_headline_excludes_moneyline(db):
    _bet(db, 2.0)
    _bet(db, -1.0)
    _bet(db, 0.5, bet_type="total")
    _bet(db, 0.0, bet_type="total")
    _bet(db, 5.45, bet_type="moneyline")
    _bet(db, None)                                  # pending

    summary = calculate_clv_summary(db)

    assert summary["total_graded"] == 5
    assert summary["pending"] == 1
    assert summary["mean_clv"] == pytest.approx(0.375)
    assert summary["median_clv"] == pytest.approx(0.25)
    assert summary["positive_count"] == 2
    assert summary["negative_count"] == 1
    assert summary["beat_close_rate"] == pytest.approx(0.5)
    assert summary["moneyline"]["count"] == 1
    assert summary["moneyline"]["mean_clv"] == pytest.approx(5.45)
    assert summary["by_bet_type"]["total"]["neutral"] == 1
    assert summary["by_sport"]["nfl"]["points"]["count"] == 4


def test_filters(db):
    _bet(db, 1.0, sport="nba")
    _bet(db, -2.0, sport="nfl")
    _bet(db, 3.0, sport="nfl", days_ago=40)

    assert calculate_clv_summary(db, sport="NBA")["total_graded"] == 1
    assert calculate_clv_summary(db, days=30)["total_graded"] == 2
    assert calculate_clv_summary(db, bet_type="total")["total_graded"] == 0
    assert set(calculate_clv_summary(db)["by_sport"]) == {"nba", "nfl"}


def test_timeline_cumulative_rate(db):
    _bet(db, 1.0, days_ago=3)
    _bet(db, -1.0, days_ago=3)
    _bet(db, 2.0, days_ago=1)
    _bet(db, 9.0, bet_type="moneyline", days_ago=1)

    result = calculate_clv_timeline(db, days=30)

    assert [d["bets"] for d in result["timeline"]] == [2, 1]
    assert result["timeline"][0]["mean_clv"] == pytest.approx(0.0)
    assert result["timeline"][0]["cumulative_beat_close_rate"] == pytest.approx(0.5)
    assert result["timeline"][1]["cumulative_beat_close_rate"] == pytest.approx(0.6667)
