"""
Line snapshot capture.

Scheduled job:
  capture_line_snapshots()  - every 30 min: append per-book and consensus
                              snapshots for every upcoming event

Snapshots are append-only.  A new row is written only when spread, total
or home moneyline changed since the previous row for the same
event/book, and the first row of an event/book is flagged as opening.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lineintel.core.sport_config import ALL_SPORTS
from lineintel.models import LineSnapshot, SessionLocal
from lineintel.repository import LineRepository
from lineintel.services.odds import BookLine, OddsAPIClient, OddsQuotaExceeded, ParsedEvent

logger = logging.getLogger(__name__)

MAX_FETCH_WORKERS = 6


def ingest_sports() -> List[str]:
    """Sports from INGEST_SPORTS (comma-separated), default all."""
    raw = os.getenv("INGEST_SPORTS", "")
    sports = [s.strip().lower() for s in raw.split(",") if s.strip()]
    return sports or list(ALL_SPORTS)


def fetch_by_sport(client: OddsAPIClient, sports: Iterable[str]) -> Dict[str, List[ParsedEvent]]:
    """
    One odds fetch per sport on a small thread pool, joined before any
    store work starts.  A sport whose fetch raises maps to an empty list.
    """
    sports = list(sports)
    results: Dict[str, List[ParsedEvent]] = {}
    if not sports:
        return results

    with ThreadPoolExecutor(max_workers=min(MAX_FETCH_WORKERS, len(sports)), thread_name_prefix="odds") as pool:
        futures = {sport: pool.submit(client.get_event_lines, sport) for sport in sports}
        for sport, future in futures.items():
            try:
                results[sport] = future.result()
            except OddsQuotaExceeded as exc:
                logger.warning("Skipping %s odds fetch: %s", sport, exc)
                results[sport] = []
            except Exception as exc:
                logger.error("Odds fetch for %s failed: %s", sport, exc, exc_info=True)
                results[sport] = []
    return results


def line_changed(previous: Optional[LineSnapshot], line: BookLine) -> bool:
    """True unless spread, total and home moneyline all equal the previous row."""
    if previous is None:
        return True
    return (
        previous.spread_home != line.spread_home
        or previous.total_line != line.total
        or previous.moneyline_home != line.moneyline_home
    )


def record_fetches(repo: LineRepository, client: OddsAPIClient) -> None:
    for entry in client.drain_fetch_log():
        try:
            repo.record_fetch(**entry)
            repo.db.commit()
        except SQLAlchemyError as exc:
            repo.db.rollback()
            logger.error("Could not record fetch %s: %s", entry.get("data_source"), exc)


def store_event_snapshots(repo: LineRepository, event: ParsedEvent, now: datetime) -> int:
    """Append changed lines for one event (all books plus consensus).  Returns rows written."""
    written = 0
    lines = list(event.books)
    if event.consensus.has_market():
        lines.append(event.consensus)

    for line in lines:
        previous = repo.latest_snapshot(event.event_id, book=line.book)
        if not line_changed(previous, line):
            continue
        repo.add_snapshot(
            LineSnapshot(
                event_id=event.event_id,
                sport=event.sport,
                book=line.book,
                home_team=event.home_team,
                away_team=event.away_team,
                captured_at=now,
                spread_home=line.spread_home,
                spread_away=line.spread_away,
                total_line=line.total,
                moneyline_home=line.moneyline_home,
                moneyline_away=line.moneyline_away,
                is_opening=previous is None,
            )
        )
        written += 1
    return written


def capture_line_snapshots(
    sports: Optional[Iterable[str]] = None,
    client: Optional[OddsAPIClient] = None,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Fetch current lines for every sport and append snapshots.

    Each event is committed on its own; a failed write is rolled back,
    logged with the event id and the loop continues.
    """
    sports = list(sports) if sports is not None else ingest_sports()
    logger.info("Starting capture_line_snapshots for %s", ",".join(sports))

    events_seen = 0
    snapshots_written = 0
    errors: List[str] = []

    if client is None:
        try:
            client = OddsAPIClient()
        except ValueError as exc:
            logger.error("capture_line_snapshots aborted: %s", exc)
            return _summary(0, 0, [str(exc)])

    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)
    now = now or datetime.utcnow()

    try:
        by_sport = fetch_by_sport(client, sports)
        record_fetches(repo, client)

        for events in by_sport.values():
            for event in events:
                if not event.event_id:
                    continue
                events_seen += 1
                try:
                    snapshots_written += store_event_snapshots(repo, event, now)
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    errors.append(f"Event {event.event_id}: {exc}")
                    logger.error("Snapshot write failed for event %s: %s", event.event_id, exc)
    finally:
        if owns_session:
            db.close()

    summary = _summary(events_seen, snapshots_written, errors)
    logger.info("capture_line_snapshots done: %s", summary)
    return summary


def _summary(events_seen: int, written: int, errors: List[str]) -> Dict:
    return {
        "events_seen": events_seen,
        "snapshots_written": written,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
