"""
Thin store interface over a SQLAlchemy Session.

Three primitives, matching what the hosted store offers:

  - paged range-selects capped at PAGE_SIZE rows (offset or keyset)
  - upsert by a declared conflict key
  - single-row conditional update

Jobs own the Session and the commit cadence; repository methods only flush.
Nothing here caches state between calls: the store is the single source of
truth for which events are resolved and which bets are graded.
"""

import logging
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy import and_, exists, func, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Query, Session, aliased

from lineintel.models import (
    CONSENSUS_BOOK,
    BetRecord,
    BettingSplit,
    DataFetch,
    EdgeAlertRecord,
    EventRecord,
    LineSnapshot,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


# ---------------------------------------------------------------------------
# Paging helpers
# ---------------------------------------------------------------------------

def iter_pages(query: Query, page_size: int = PAGE_SIZE) -> Iterator[List]:
    """
    Offset pagination: yield pages until a short page comes back.

    Only safe for scans whose filter is not changed by the caller's writes.
    """
    offset = 0
    while True:
        page = query.offset(offset).limit(page_size).all()
        if page:
            yield page
        if len(page) < page_size:
            return
        offset += page_size


def iter_keyset(query: Query, key_column, page_size: int = PAGE_SIZE) -> Iterator[List]:
    """
    Keyset pagination on a monotonically increasing key.

    Safe when the caller's writes remove rows from the filter (e.g. grading
    rows whose derived field is still null), since no offset can shift.
    """
    last_key = None
    while True:
        q = query
        if last_key is not None:
            q = q.filter(key_column > last_key)
        page = q.order_by(key_column.asc()).limit(page_size).all()
        if page:
            yield page
            last_key = _key_of(page[-1], key_column)
        if len(page) < page_size:
            return


def _key_of(row, key_column):
    # Rows are either ORM entities or named tuples from column queries.
    name = key_column.key
    return getattr(row, name)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class LineRepository:
    """Query / upsert / conditional-update operations used by the batch jobs."""

    def __init__(self, db: Session, page_size: int = PAGE_SIZE):
        self.db = db
        self.page_size = page_size

    # ------------------------------------------------------------------
    # Event records
    # ------------------------------------------------------------------

    def iter_event_records(
        self,
        source: str,
        sport: str,
        season: Optional[int] = None,
        require_spread: bool = False,
    ) -> Iterator[EventRecord]:
        q = self.db.query(EventRecord).filter(
            EventRecord.source == source,
            EventRecord.sport == sport,
        )
        if season is not None:
            q = q.filter(EventRecord.season == season)
        if require_spread:
            q = q.filter(EventRecord.point_spread.isnot(None))
        q = q.order_by(EventRecord.id.asc())
        for page in iter_pages(q, self.page_size):
            yield from page

    def get_event_record(self, source: str, source_id: str) -> Optional[EventRecord]:
        return (
            self.db.query(EventRecord)
            .filter(EventRecord.source == source, EventRecord.source_id == source_id)
            .first()
        )

    def upsert_event_record(self, values: Dict) -> None:
        """Insert or update an EventRecord on the (source, source_id) key."""
        table = EventRecord.__table__
        dialect = self.db.get_bind().dialect.name
        insert_fn = postgresql.insert if dialect == "postgresql" else sqlite.insert

        values = dict(values)
        values.setdefault("updated_at", datetime.utcnow())
        stmt = insert_fn(table).values(**values)
        updatable = {
            k: stmt.excluded[k]
            for k in values
            if k not in ("source", "source_id", "id", "created_at")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=["source", "source_id"],
            set_=updatable,
        )
        self.db.execute(stmt)

    def update_event_record(self, record_id: int, values: Dict) -> int:
        values = dict(values)
        values.setdefault("updated_at", datetime.utcnow())
        result = self.db.execute(
            update(EventRecord).where(EventRecord.id == record_id).values(**values)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Line snapshots
    # ------------------------------------------------------------------

    def add_snapshot(self, snapshot: LineSnapshot) -> LineSnapshot:
        self.db.add(snapshot)
        self.db.flush()
        return snapshot

    def latest_snapshot(self, event_id: str, book: str = CONSENSUS_BOOK) -> Optional[LineSnapshot]:
        return (
            self.db.query(LineSnapshot)
            .filter(LineSnapshot.event_id == event_id, LineSnapshot.book == book)
            .order_by(LineSnapshot.captured_at.desc(), LineSnapshot.id.desc())
            .first()
        )

    def opening_snapshot(self, event_id: str, book: str = CONSENSUS_BOOK) -> Optional[LineSnapshot]:
        return (
            self.db.query(LineSnapshot)
            .filter(LineSnapshot.event_id == event_id, LineSnapshot.book == book)
            .order_by(LineSnapshot.captured_at.asc(), LineSnapshot.id.asc())
            .first()
        )

    def closing_snapshot(self, event_id: str) -> Optional[LineSnapshot]:
        return (
            self.db.query(LineSnapshot)
            .filter(LineSnapshot.event_id == event_id, LineSnapshot.is_closing.is_(True))
            .first()
        )

    def snapshots_since(self, event_id: str, since: datetime) -> List[LineSnapshot]:
        """Per-book (non-consensus) snapshots captured at or after ``since``."""
        return (
            self.db.query(LineSnapshot)
            .filter(
                LineSnapshot.event_id == event_id,
                LineSnapshot.book != CONSENSUS_BOOK,
                LineSnapshot.captured_at >= since,
            )
            .order_by(LineSnapshot.captured_at.asc(), LineSnapshot.id.asc())
            .all()
        )

    def book_lines_before(self, event_id: str, before: datetime) -> Dict[str, LineSnapshot]:
        """Latest per-book (non-consensus) snapshot captured strictly before ``before``."""
        rows = (
            self.db.query(LineSnapshot)
            .filter(
                LineSnapshot.event_id == event_id,
                LineSnapshot.book != CONSENSUS_BOOK,
                LineSnapshot.captured_at < before,
            )
            .order_by(LineSnapshot.captured_at.desc(), LineSnapshot.id.desc())
            .all()
        )
        latest: Dict[str, LineSnapshot] = {}
        for row in rows:
            latest.setdefault(row.book, row)
        return latest

    def active_event_ids(self, sport: str, since: datetime) -> List[str]:
        """Events with any snapshot captured at or after ``since``."""
        rows = (
            self.db.query(LineSnapshot.event_id)
            .filter(LineSnapshot.sport == sport, LineSnapshot.captured_at >= since)
            .distinct()
            .all()
        )
        return [r.event_id for r in rows]

    def unresolved_events(
        self,
        history_began_before: datetime,
        after_event_id: Optional[str] = None,
        limit: int = PAGE_SIZE,
    ) -> List:
        """
        One page of consensus-series events with no closing snapshot whose
        first snapshot is older than ``history_began_before``.

        Keyset-paged on event_id so resolving a page never shifts the next.
        """
        closing = aliased(LineSnapshot)
        q = (
            self.db.query(
                LineSnapshot.event_id.label("event_id"),
                func.min(LineSnapshot.captured_at).label("first_seen"),
                func.max(LineSnapshot.captured_at).label("last_seen"),
            )
            .filter(
                LineSnapshot.book == CONSENSUS_BOOK,
                ~exists().where(
                    and_(
                        closing.event_id == LineSnapshot.event_id,
                        closing.is_closing.is_(True),
                    )
                ),
            )
        )
        if after_event_id is not None:
            q = q.filter(LineSnapshot.event_id > after_event_id)
        q = (
            q.group_by(LineSnapshot.event_id)
            .having(func.min(LineSnapshot.captured_at) <= history_began_before)
            .order_by(LineSnapshot.event_id.asc())
            .limit(limit)
        )
        return q.all()

    def mark_closing(self, snapshot_id: int, event_id: str) -> bool:
        """
        Conditionally promote one snapshot to closing.

        Single statement: succeeds only if the row is still unmarked and no
        other snapshot of the event is already closing.  Returns True when
        this call performed the promotion.
        """
        other = aliased(LineSnapshot)
        stmt = (
            update(LineSnapshot)
            .where(
                LineSnapshot.id == snapshot_id,
                LineSnapshot.is_closing.is_(False),
                ~exists().where(
                    and_(other.event_id == event_id, other.is_closing.is_(True))
                ),
            )
            .values(is_closing=True)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------

    def add_bet(self, bet: BetRecord) -> BetRecord:
        self.db.add(bet)
        self.db.flush()
        return bet

    def iter_ungraded_bets(self) -> Iterator[BetRecord]:
        q = self.db.query(BetRecord).filter(BetRecord.clv_value.is_(None))
        for page in iter_keyset(q, BetRecord.id, self.page_size):
            yield from page

    def open_bets_for_event(self, event_id: str) -> List[BetRecord]:
        return (
            self.db.query(BetRecord)
            .filter(BetRecord.event_id == event_id, BetRecord.outcome.is_(None))
            .all()
        )

    # ------------------------------------------------------------------
    # Splits
    # ------------------------------------------------------------------

    def latest_splits(self, sport: str, since: datetime) -> List[BettingSplit]:
        """Most recent split row per event captured at or after ``since``."""
        newest = (
            self.db.query(
                BettingSplit.event_id.label("event_id"),
                func.max(BettingSplit.captured_at).label("captured_at"),
            )
            .filter(BettingSplit.sport == sport, BettingSplit.captured_at >= since)
            .group_by(BettingSplit.event_id)
            .subquery()
        )
        return (
            self.db.query(BettingSplit)
            .join(
                newest,
                and_(
                    BettingSplit.event_id == newest.c.event_id,
                    BettingSplit.captured_at == newest.c.captured_at,
                ),
            )
            .order_by(BettingSplit.event_id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def add_alert(self, record: EdgeAlertRecord) -> None:
        self.db.add(record)
        self.db.flush()

    def unexpired_alerts(
        self,
        now: datetime,
        sport: Optional[str] = None,
        types: Optional[Sequence[str]] = None,
    ) -> List[EdgeAlertRecord]:
        q = self.db.query(EdgeAlertRecord).filter(
            or_(EdgeAlertRecord.expires_at.is_(None), EdgeAlertRecord.expires_at > now)
        )
        if sport:
            q = q.filter(EdgeAlertRecord.sport == sport)
        if types:
            q = q.filter(EdgeAlertRecord.type.in_(list(types)))
        return q.order_by(EdgeAlertRecord.created_at.desc()).all()

    def mark_alerts_notified(self, alert_ids: Sequence[str]) -> int:
        return (
            self.db.query(EdgeAlertRecord)
            .filter(EdgeAlertRecord.id.in_(list(alert_ids)))
            .update({EdgeAlertRecord.notified: True}, synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Fetch log
    # ------------------------------------------------------------------

    def record_fetch(self, **values) -> None:
        self.db.add(DataFetch(**values))
        self.db.flush()
