"""Tests for closing_line.resolve_closing_lines."""

from datetime import datetime, timedelta

from lineintel.models import CONSENSUS_BOOK, LineSnapshot
from lineintel.services.closing_line import resolve_closing_lines

NOW = datetime(2024, 11, 20, 12, 0, 0)


def _add(db, event_id, hours_ago, book=CONSENSUS_BOOK, spread=-3.0):
    snap = LineSnapshot(
        event_id=event_id, sport="nfl", book=book, home_team="H", away_team="A",
        captured_at=NOW - timedelta(hours=hours_ago), spread_home=spread, total_line=44.5,
    )
    db.add(snap)
    db.commit()
    return snap.id


def _closing_ids(db, event_id):
    return [
        s.id for s in db.query(LineSnapshot)
        .filter(LineSnapshot.event_id == event_id, LineSnapshot.is_closing.is_(True))
    ]


def test_marks_latest_consensus_snapshot_of_finished_event(db):
    _add(db, "ev1", 72, spread=-3.0)
    _add(db, "ev1", 30, spread=-3.5)
    latest = _add(db, "ev1", 5, spread=-4.0)
    _add(db, "ev1", 4, book="draftkings", spread=-4.5)   # per-book rows never close

    summary = resolve_closing_lines(db=db, now=NOW)

    assert summary["events_considered"] == 1
    assert summary["closing_marked"] == 1
    assert summary["errors"] == []
    assert _closing_ids(db, "ev1") == [latest]


def test_event_with_recent_snapshot_stays_pending(db):
    _add(db, "ev1", 48)
    _add(db, "ev1", 1)    # still being updated

    summary = resolve_closing_lines(db=db, now=NOW)

    assert summary["pending"] == 1
    assert summary["closing_marked"] == 0
    assert _closing_ids(db, "ev1") == []


def test_event_with_short_history_not_considered(db):
    _add(db, "ev1", 10)
    _add(db, "ev1", 5)

    summary = resolve_closing_lines(db=db, now=NOW)

    assert summary["events_considered"] == 0
    assert _closing_ids(db, "ev1") == []


def test_second_run_marks_nothing(db):
    _add(db, "ev1", 50)
    _add(db, "ev1", 6)
    _add(db, "ev2", 40)
    _add(db, "ev2", 4)

    first = resolve_closing_lines(db=db, now=NOW)
    second = resolve_closing_lines(db=db, now=NOW)

    assert first["closing_marked"] == 2
    assert second["events_considered"] == 0
    assert second["closing_marked"] == 0
    assert len(_closing_ids(db, "ev1")) == 1
    assert len(_closing_ids(db, "ev2")) == 1


def test_pages_through_many_events(db):
    for i in range(7):
        _add(db, f"ev{i:02d}", 30)
        _add(db, f"ev{i:02d}", 5)

    summary = resolve_closing_lines(db=db, now=NOW, page_size=3)

    assert summary["events_considered"] == 7
    assert summary["closing_marked"] == 7
