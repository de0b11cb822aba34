"""Tests for the historical import and closing-odds backfill."""

from datetime import date
from unittest.mock import MagicMock

from lineintel.core.outcomes import SpreadResult, TotalResult
from lineintel.models import SOURCE_ODDS_API, SOURCE_RESULTS, EventRecord
from lineintel.services.backfill import (
    backfill_closing_odds,
    import_date_range,
    import_historical_odds,
)
from lineintel.services.odds import OddsQuotaExceeded
from lineintel.services.team_mapping import AliasTable

ALIASES = AliasTable()


def _record(repo, source, source_id, home, away, day, **values):
    repo.upsert_event_record(dict(
        source=source, source_id=source_id, sport="nfl", season=2024,
        home_team=home, away_team=away, event_date=day, **values,
    ))
    repo.db.commit()


def _odds(repo, source_id, home, away, day, spread, total, **values):
    _record(repo, SOURCE_ODDS_API, source_id, home, away, day,
            point_spread=spread, over_under=total, **values)


def _result(repo, source_id, home, away, day, home_score=24, away_score=20, **values):
    _record(repo, SOURCE_RESULTS, source_id, home, away, day,
            home_score=home_score, away_score=away_score, **values)


def _results(db):
    return {
        r.source_id: r
        for r in db.query(EventRecord).filter(EventRecord.source == SOURCE_RESULTS)
    }


# ---------------------------------------------------------------------------
# backfill_closing_odds
# ---------------------------------------------------------------------------

def test_backfill_counters_and_writes(repo, db):
    day = date(2024, 11, 17)
    _odds(repo, "o1", "Kansas City Chiefs", "Buffalo Bills", day, -3.0, 45.5)
    _odds(repo, "o2", "Dallas Cowboys", "Philadelphia Eagles", day, -1.5, 47.0)

    _result(repo, "r1", "KC", "Buffalo Bills", day)                               # updated
    _result(repo, "r2", "Dallas Cowboys", "Philadelphia Eagles", day,
            point_spread=-1.5, over_under=47.0)                                  # already correct
    _result(repo, "r3", "Green Bay Packers", "Chicago Bears", day)               # no match
    _result(repo, "r4", "AFC", "NFC", day)                                       # exhibition
    _result(repo, "r5", "Miami Dolphins", "New York Jets", day,
            home_score=None, away_score=None)                                    # not final

    summary = backfill_closing_odds(sport="nfl", db=db, aliases=ALIASES)

    assert summary["updated"] == 1
    assert summary["already_correct"] == 1
    assert summary["no_match"] == 1
    assert summary["skipped"] == 2
    assert summary["errors"] == []
    assert summary["sports"]["nfl"]["updated"] == 1

    db.expire_all()
    r1 = _results(db)["r1"]
    assert r1.close_spread == -3.0
    assert r1.close_total == 45.5
    assert r1.spread_result == SpreadResult.HOME_COVER      # 24-20 covers -3
    assert r1.total_result == TotalResult.UNDER             # 44 under 45.5


def test_backfill_reverse_match_flips_spread(repo, db):
    day = date(2024, 11, 17)
    # Feed lists the teams the other way round with the Bills at home -2.5.
    _odds(repo, "o1", "Buffalo Bills", "Kansas City Chiefs", day, -2.5, 44.0)
    _result(repo, "r1", "Kansas City Chiefs", "Buffalo Bills", day, home_score=20, away_score=24)

    summary = backfill_closing_odds(sport="nfl", db=db, aliases=ALIASES)

    assert summary["updated"] == 1
    db.expire_all()
    r1 = _results(db)["r1"]
    assert r1.close_spread == 2.5
    assert r1.spread_result == SpreadResult.AWAY_COVER
    assert r1.total_result == TotalResult.PUSH


def test_backfill_dry_run_writes_nothing(repo, db):
    day = date(2024, 11, 17)
    _odds(repo, "o1", "Kansas City Chiefs", "Buffalo Bills", day, -3.0, 45.5)
    _result(repo, "r1", "Kansas City Chiefs", "Buffalo Bills", day)

    summary = backfill_closing_odds(sport="nfl", db=db, dry_run=True, aliases=ALIASES)

    assert summary["updated"] == 1
    assert summary["dry_run"] is True
    db.expire_all()
    assert _results(db)["r1"].close_spread is None


def test_backfill_is_idempotent(repo, db):
    day = date(2024, 11, 17)
    _odds(repo, "o1", "Kansas City Chiefs", "Buffalo Bills", day, -3.0, 45.5)
    _result(repo, "r1", "Kansas City Chiefs", "Buffalo Bills", day)

    backfill_closing_odds(sport="nfl", db=db, aliases=ALIASES)
    second = backfill_closing_odds(sport="nfl", db=db, aliases=ALIASES)

    assert second["updated"] == 0
    assert second["already_correct"] == 1


def test_backfill_sport_without_odds(repo, db):
    _result(repo, "r1", "Kansas City Chiefs", "Buffalo Bills", date(2024, 11, 17))
    summary = backfill_closing_odds(sport="nfl", db=db, aliases=ALIASES)
    assert summary["updated"] == 0
    assert summary["no_match"] == 0


# ---------------------------------------------------------------------------
# Historical import
# ---------------------------------------------------------------------------

GAME = {
    "id": "hist-1",
    "home_team": "Kansas City Chiefs",
    "away_team": "Buffalo Bills",
    "commence_time": "2024-11-17T21:25:00Z",
    "bookmakers": [{
        "key": "draftkings",
        "markets": [
            {"key": "spreads", "outcomes": [
                {"name": "Kansas City Chiefs", "point": -2.5},
                {"name": "Buffalo Bills", "point": 2.5},
            ]},
            {"key": "totals", "outcomes": [{"name": "Over", "point": 46.5}]},
        ],
    }],
}


def _hist_client(games):
    client = MagicMock()
    client.get_historical_odds.return_value = games
    client.drain_fetch_log.return_value = []
    return client


def test_import_historical_odds_upserts_consensus(db):
    no_lines = {"id": "hist-2", "home_team": "A", "away_team": "B",
                "commence_time": "2024-11-17T18:00:00Z", "bookmakers": []}
    summary = import_historical_odds("nfl", date(2024, 11, 17), client=_hist_client([GAME, no_lines]), db=db)

    assert summary["imported"] == 1
    assert summary["skipped"] == 1
    record = db.query(EventRecord).one()
    assert record.source == SOURCE_ODDS_API
    assert record.point_spread == -2.5
    assert record.over_under == 46.5
    assert record.event_date == date(2024, 11, 17)
    assert record.season == 2024

    # Re-import updates in place.
    import_historical_odds("nfl", date(2024, 11, 17), client=_hist_client([GAME]), db=db)
    assert db.query(EventRecord).count() == 1


def test_import_historical_dry_run(db):
    summary = import_historical_odds("nfl", date(2024, 11, 17), client=_hist_client([GAME]), db=db, dry_run=True)
    assert summary["imported"] == 1
    assert db.query(EventRecord).count() == 0


def test_import_date_range_stops_on_quota(monkeypatch):
    calls = []

    def fake_import(sport, day, client=None, dry_run=False):
        calls.append(day)
        if len(calls) == 3:
            raise OddsQuotaExceeded("reserve")
        return {"imported": 2, "errors": []}

    monkeypatch.setattr("lineintel.services.backfill.import_historical_odds", fake_import)
    summary = import_date_range("nfl", date(2024, 9, 1), date(2024, 9, 30), client=MagicMock())

    assert summary["days_queried"] == 2
    assert summary["imported"] == 4
    assert summary["errors"] == ["reserve"]
    assert calls[:2] == [date(2024, 9, 1), date(2024, 9, 4)]
