"""Tests for repository: paging, upsert by conflict key, conditional updates."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from lineintel.models import (
    CONSENSUS_BOOK,
    SOURCE_ODDS_API,
    SOURCE_RESULTS,
    BetRecord,
    BettingSplit,
    EdgeAlertRecord,
    EventRecord,
    LineSnapshot,
)
from lineintel.repository import iter_keyset, iter_pages

T0 = datetime(2024, 11, 1, 12, 0, 0)


def _snap(event_id, minutes, book=CONSENSUS_BOOK, spread=-3.0, closing=False):
    return LineSnapshot(
        event_id=event_id, sport="nfl", book=book, home_team="H", away_team="A",
        captured_at=T0 + timedelta(minutes=minutes), spread_home=spread,
        total_line=44.5, moneyline_home=-150, moneyline_away=130, is_closing=closing,
    )


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------

def test_iter_pages_stops_on_short_page(db):
    for i in range(7):
        db.add(BetRecord(event_id=f"e{i}", bet_type="spread", side="home", line_at_pick=-3.0))
    db.commit()
    q = db.query(BetRecord).order_by(BetRecord.id)
    pages = list(iter_pages(q, page_size=3))
    assert [len(p) for p in pages] == [3, 3, 1]


def test_iter_pages_exact_multiple(db):
    for i in range(4):
        db.add(BetRecord(event_id=f"e{i}", bet_type="spread", side="home"))
    db.commit()
    pages = list(iter_pages(db.query(BetRecord).order_by(BetRecord.id), page_size=2))
    assert [len(p) for p in pages] == [2, 2]


def test_iter_keyset_survives_rows_leaving_the_filter(db):
    for i in range(5):
        db.add(BetRecord(event_id=f"e{i}", bet_type="spread", side="home"))
    db.commit()
    q = db.query(BetRecord).filter(BetRecord.clv_value.is_(None))
    seen = []
    for page in iter_keyset(q, BetRecord.id, page_size=2):
        for bet in page:
            seen.append(bet.id)
            bet.clv_value = 1.0
        db.commit()
    assert len(seen) == 5
    assert len(set(seen)) == 5


# ---------------------------------------------------------------------------
# Event records
# ---------------------------------------------------------------------------

def _event_values(**overrides):
    values = {
        "source": SOURCE_ODDS_API,
        "source_id": "abc",
        "sport": "nfl",
        "season": 2024,
        "home_team": "Kansas City Chiefs",
        "away_team": "Buffalo Bills",
        "event_date": date(2024, 11, 17),
        "point_spread": -2.5,
    }
    values.update(overrides)
    return values


def test_upsert_inserts_then_updates(repo, db):
    repo.upsert_event_record(_event_values())
    db.commit()
    repo.upsert_event_record(_event_values(point_spread=-3.0, home_score=24, away_score=20))
    db.commit()

    rows = db.query(EventRecord).all()
    assert len(rows) == 1
    assert rows[0].point_spread == -3.0
    assert rows[0].home_score == 24


def test_same_source_id_from_two_sources_is_two_records(repo, db):
    repo.upsert_event_record(_event_values())
    repo.upsert_event_record(_event_values(source=SOURCE_RESULTS))
    db.commit()
    assert db.query(EventRecord).count() == 2


def test_iter_event_records_filters(repo, db):
    repo.upsert_event_record(_event_values(source_id="1"))
    repo.upsert_event_record(_event_values(source_id="2", point_spread=None))
    repo.upsert_event_record(_event_values(source_id="3", season=2023))
    repo.upsert_event_record(_event_values(source_id="4", sport="nba"))
    db.commit()

    ids = lambda rows: sorted(r.source_id for r in rows)
    assert ids(repo.iter_event_records(SOURCE_ODDS_API, "nfl")) == ["1", "2", "3"]
    assert ids(repo.iter_event_records(SOURCE_ODDS_API, "nfl", season=2024)) == ["1", "2"]
    assert ids(repo.iter_event_records(SOURCE_ODDS_API, "nfl", require_spread=True)) == ["1", "3"]


def test_update_event_record_returns_rowcount(repo, db):
    repo.upsert_event_record(_event_values())
    db.commit()
    record = repo.get_event_record(SOURCE_ODDS_API, "abc")
    assert repo.update_event_record(record.id, {"close_spread": -3.0}) == 1
    assert repo.update_event_record(9999, {"close_spread": -3.0}) == 0


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

def test_latest_and_opening_snapshot(repo, db):
    for minutes, spread in ((0, -3.0), (30, -3.5), (60, -4.0)):
        repo.add_snapshot(_snap("ev1", minutes, spread=spread))
    repo.add_snapshot(_snap("ev1", 90, book="draftkings", spread=-5.0))
    db.commit()

    assert repo.opening_snapshot("ev1").spread_home == -3.0
    assert repo.latest_snapshot("ev1").spread_home == -4.0
    assert repo.latest_snapshot("ev1", book="draftkings").spread_home == -5.0
    assert repo.closing_snapshot("ev1") is None


def test_snapshots_since_excludes_consensus(repo, db):
    repo.add_snapshot(_snap("ev1", 0, book="dk"))
    repo.add_snapshot(_snap("ev1", 10, book="dk"))
    repo.add_snapshot(_snap("ev1", 10))
    db.commit()
    rows = repo.snapshots_since("ev1", T0 + timedelta(minutes=5))
    assert [r.book for r in rows] == ["dk"]


def test_book_lines_before_is_latest_per_book(repo, db):
    repo.add_snapshot(_snap("ev1", 0, book="dk", spread=-3.0))
    repo.add_snapshot(_snap("ev1", 20, book="dk", spread=-3.5))
    repo.add_snapshot(_snap("ev1", 40, book="dk", spread=-5.0))
    repo.add_snapshot(_snap("ev1", 10, book="fd", spread=-3.0))
    repo.add_snapshot(_snap("ev1", 10))
    db.commit()
    before = repo.book_lines_before("ev1", T0 + timedelta(minutes=30))
    assert sorted(before) == ["dk", "fd"]
    assert before["dk"].spread_home == -3.5


def test_unresolved_events_requires_old_history(repo, db):
    repo.add_snapshot(_snap("old", 0))
    repo.add_snapshot(_snap("young", 60 * 20))
    repo.add_snapshot(_snap("done", 0, closing=True))
    db.commit()
    rows = repo.unresolved_events(T0 + timedelta(hours=1))
    assert [r.event_id for r in rows] == ["old"]


def test_unresolved_events_keyset(repo, db):
    for event_id in ("a", "b", "c"):
        repo.add_snapshot(_snap(event_id, 0))
    db.commit()
    first = repo.unresolved_events(T0, limit=2)
    assert [r.event_id for r in first] == ["a", "b"]
    rest = repo.unresolved_events(T0, after_event_id="b", limit=2)
    assert [r.event_id for r in rest] == ["c"]


def test_mark_closing_is_conditional(repo, db):
    s1 = repo.add_snapshot(_snap("ev1", 0))
    s2 = repo.add_snapshot(_snap("ev1", 30))
    db.commit()

    assert repo.mark_closing(s2.id, "ev1") is True
    db.commit()
    assert repo.mark_closing(s2.id, "ev1") is False      # already closing
    assert repo.mark_closing(s1.id, "ev1") is False      # event already has one
    db.commit()

    closing = db.query(LineSnapshot).filter(LineSnapshot.is_closing.is_(True)).all()
    assert [s.id for s in closing] == [s2.id]


def test_unique_index_rejects_second_closing_row(repo, db):
    repo.add_snapshot(_snap("ev1", 0, closing=True))
    db.commit()
    with pytest.raises(IntegrityError):
        repo.add_snapshot(_snap("ev1", 30, closing=True))
    db.rollback()


# ---------------------------------------------------------------------------
# Bets, splits, alerts
# ---------------------------------------------------------------------------

def test_open_bets_and_ungraded(repo, db):
    repo.add_bet(BetRecord(event_id="ev1", bet_type="spread", side="home", line_at_pick=-3))
    repo.add_bet(BetRecord(event_id="ev1", bet_type="total", side="over", line_at_pick=44.5, outcome="win"))
    repo.add_bet(BetRecord(event_id="ev2", bet_type="spread", side="away", clv_value=1.5))
    db.commit()
    assert len(repo.open_bets_for_event("ev1")) == 1
    assert sorted(b.event_id for b in repo.iter_ungraded_bets()) == ["ev1", "ev1"]


def test_latest_splits_newest_per_event(repo, db):
    db.add_all([
        BettingSplit(event_id="ev1", sport="nfl", public_home_pct=55, captured_at=T0),
        BettingSplit(event_id="ev1", sport="nfl", public_home_pct=70, captured_at=T0 + timedelta(hours=1)),
        BettingSplit(event_id="ev2", sport="nfl", public_home_pct=40, captured_at=T0),
        BettingSplit(event_id="ev3", sport="nba", public_home_pct=80, captured_at=T0),
    ])
    db.commit()
    splits = repo.latest_splits("nfl", T0 - timedelta(hours=1))
    assert [(s.event_id, s.public_home_pct) for s in splits] == [("ev1", 70), ("ev2", 40)]


def test_unexpired_alerts_filter(repo, db):
    def record(alert_id, expires):
        return EdgeAlertRecord(
            id=alert_id, type="rlm", event_id="ev1", sport="nfl", severity="major",
            confidence=70, title="t", created_at=T0, expires_at=expires,
        )
    repo.add_alert(record("live", T0 + timedelta(hours=4)))
    repo.add_alert(record("dead", T0 - timedelta(minutes=1)))
    repo.add_alert(record("forever", None))
    db.commit()
    ids = sorted(r.id for r in repo.unexpired_alerts(T0))
    assert ids == ["forever", "live"]
    assert repo.mark_alerts_notified(["live"]) == 1
