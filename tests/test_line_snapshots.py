"""Tests for line snapshot capture."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

from lineintel.models import CONSENSUS_BOOK, DataFetch, LineSnapshot
from lineintel.services.line_snapshots import (
    capture_line_snapshots,
    fetch_by_sport,
    ingest_sports,
    line_changed,
)
from lineintel.services.odds import BookLine, OddsQuotaExceeded, ParsedEvent, consensus_line

NOW = datetime(2024, 11, 17, 15, 0, 0)


def _event(event_id="ev1", spread=-3.0, total=47.0):
    books = [
        BookLine("draftkings", spread_home=spread, total=total, moneyline_home=-150, moneyline_away=130),
        BookLine("fanduel", spread_home=spread, total=total, moneyline_home=-155, moneyline_away=135),
    ]
    return ParsedEvent(
        event_id=event_id, sport="nfl", home_team="Kansas City Chiefs", away_team="Buffalo Bills",
        commence_time=NOW + timedelta(hours=6), books=books, consensus=consensus_line(books),
    )


def _client(events_by_sport):
    client = MagicMock()
    client.get_event_lines.side_effect = lambda sport: events_by_sport.get(sport, [])
    client.drain_fetch_log.return_value = [
        {"fetch_time": NOW, "data_source": "odds_api_odds", "sport": "nfl", "success": True, "records_fetched": 1},
    ]
    return client


def test_first_capture_writes_opening_rows(db):
    summary = capture_line_snapshots(sports=["nfl"], client=_client({"nfl": [_event()]}), db=db, now=NOW)

    assert summary["events_seen"] == 1
    assert summary["snapshots_written"] == 3      # two books plus consensus
    assert summary["errors"] == []
    rows = db.query(LineSnapshot).all()
    assert all(r.is_opening for r in rows)
    assert {r.book for r in rows} == {"draftkings", "fanduel", CONSENSUS_BOOK}
    assert db.query(DataFetch).count() == 1


def test_unchanged_lines_are_not_rewritten(db):
    client = _client({"nfl": [_event()]})
    capture_line_snapshots(sports=["nfl"], client=client, db=db, now=NOW)
    summary = capture_line_snapshots(sports=["nfl"], client=client, db=db, now=NOW + timedelta(minutes=30))

    assert summary["snapshots_written"] == 0
    assert db.query(LineSnapshot).count() == 3


def test_moved_line_appends_non_opening_row(db):
    capture_line_snapshots(sports=["nfl"], client=_client({"nfl": [_event(spread=-3.0)]}), db=db, now=NOW)
    capture_line_snapshots(
        sports=["nfl"], client=_client({"nfl": [_event(spread=-4.0)]}), db=db,
        now=NOW + timedelta(minutes=30),
    )

    consensus = (
        db.query(LineSnapshot)
        .filter(LineSnapshot.book == CONSENSUS_BOOK)
        .order_by(LineSnapshot.captured_at)
        .all()
    )
    assert [c.spread_home for c in consensus] == [-3.0, -4.0]
    assert [c.is_opening for c in consensus] == [True, False]


def test_missing_api_key_reported(db, monkeypatch):
    monkeypatch.delenv("THE_ODDS_API_KEY", raising=False)
    summary = capture_line_snapshots(sports=["nfl"], db=db, now=NOW)
    assert summary["events_seen"] == 0
    assert len(summary["errors"]) == 1


def test_fetch_by_sport_isolates_failures():
    client = MagicMock()

    def get_event_lines(sport):
        if sport == "nba":
            raise RuntimeError("boom")
        if sport == "nhl":
            raise OddsQuotaExceeded("quota")
        return [_event()]

    client.get_event_lines.side_effect = get_event_lines
    results = fetch_by_sport(client, ["nfl", "nba", "nhl"])
    assert len(results["nfl"]) == 1
    assert results["nba"] == []
    assert results["nhl"] == []


def test_line_changed():
    prev = LineSnapshot(spread_home=-3.0, total_line=47.0, moneyline_home=-150)
    assert line_changed(None, BookLine("x")) is True
    assert line_changed(prev, BookLine("x", spread_home=-3.0, total=47.0, moneyline_home=-150)) is False
    # Away moneyline alone does not count as a change.
    assert line_changed(
        prev, BookLine("x", spread_home=-3.0, total=47.0, moneyline_home=-150, moneyline_away=999)
    ) is False
    assert line_changed(prev, BookLine("x", spread_home=-3.0, total=47.5, moneyline_home=-150)) is True


def test_ingest_sports_from_env(monkeypatch):
    monkeypatch.setenv("INGEST_SPORTS", " NFL, nba ,")
    assert ingest_sports() == ["nfl", "nba"]
