"""
Closing-line resolver.

Scheduled job (via run_clv_pipeline):
  resolve_closing_lines()  - promote each finished event's latest consensus
                             snapshot to closing

Policy, per event in the consensus series:

  1. skip events that already have a closing snapshot
  2. consider only events whose first snapshot is at least
     MIN_HISTORY_HOURS old
  3. take the single most recent snapshot; promote it only if it is more
     than CLOSE_AGE_HOURS old, otherwise leave the event for the next run

Promotion is one conditional UPDATE (row still unmarked, no other closing
row for the event), so re-running or overlapping runs never produce two
closing rows and a second run over the same data marks nothing.

Known limitation: "latest snapshot older than 3 h" assumes the feed kept
updating until kickoff.  Two cases break that:

  - a book pulled the market early, so the last row is a stale line
  - the line simply did not move for 3 h before kickoff; snapshots are only
    written on change, so an upcoming event looks finished and its latest
    row is promoted early, after which later moves are ignored for good

In both cases any CLV graded against the marked row inherits the error.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lineintel.models import CONSENSUS_BOOK, SessionLocal
from lineintel.repository import PAGE_SIZE, LineRepository

logger = logging.getLogger(__name__)

MIN_HISTORY_HOURS = 24
CLOSE_AGE_HOURS = 3


def resolve_closing_lines(
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    min_history_hours: float = MIN_HISTORY_HOURS,
    close_age_hours: float = CLOSE_AGE_HOURS,
    page_size: int = PAGE_SIZE,
) -> Dict:
    """
    Mark closing snapshots for every eligible event.

    Returns a job summary: events considered, newly marked, left pending
    (latest snapshot too young) and lost races (another run marked first).
    """
    logger.info("Starting resolve_closing_lines")
    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db, page_size=page_size)
    now = now or datetime.utcnow()

    history_cutoff = now - timedelta(hours=min_history_hours)
    close_cutoff = now - timedelta(hours=close_age_hours)

    considered = 0
    marked = 0
    pending = 0
    already_marked = 0
    errors: List[str] = []

    try:
        after: Optional[str] = None
        while True:
            page = repo.unresolved_events(history_cutoff, after_event_id=after, limit=page_size)
            if not page:
                break
            for row in page:
                considered += 1
                event_id = row.event_id
                try:
                    latest = repo.latest_snapshot(event_id, book=CONSENSUS_BOOK)
                    if latest is None:
                        continue
                    if latest.captured_at >= close_cutoff:
                        pending += 1
                        continue
                    if repo.mark_closing(latest.id, event_id):
                        marked += 1
                        logger.debug(
                            "Closing line for %s: snapshot %d (%s)",
                            event_id, latest.id, latest.captured_at.isoformat(),
                        )
                    else:
                        already_marked += 1
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    errors.append(f"Event {event_id}: {exc}")
                    logger.error("Closing-line write failed for event %s: %s", event_id, exc)
            after = page[-1].event_id
            if len(page) < page_size:
                break
    finally:
        if owns_session:
            db.close()

    summary = {
        "events_considered": considered,
        "closing_marked": marked,
        "pending": pending,
        "already_marked": already_marked,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("resolve_closing_lines done: %s", summary)
    return summary
