"""
Automated bet lifecycle management.

Scheduled jobs:
  update_scores()     - every 2 hours: fetch scores, settle pending bets
  run_clv_pipeline()  - every 8 hours: resolve closing lines, then grade CLV

Settlement goes through ``lineintel.core.outcomes.bet_outcome``, which
uses the same spread/total graders as the historical backfill.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lineintel.core.outcomes import bet_outcome
from lineintel.core.sport_config import get_sport_config
from lineintel.models import CONSENSUS_BOOK, SOURCE_ODDS_API, BetRecord, SessionLocal
from lineintel.repository import LineRepository
from lineintel.services.closing_line import resolve_closing_lines
from lineintel.services.clv import calculate_clv
from lineintel.services.line_snapshots import ingest_sports, record_fetches
from lineintel.services.odds import OddsAPIClient, OddsQuotaExceeded, parse_score

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bet intake
# ---------------------------------------------------------------------------

def log_bet(db: Session, values: Dict) -> BetRecord:
    """Insert a BetRecord (validated upstream) and commit."""
    bet = BetRecord(**values)
    db.add(bet)
    db.commit()
    db.refresh(bet)
    logger.info(
        "Logged bet %d: %s %s %s @ %s",
        bet.id, bet.event_id, bet.bet_type, bet.side, bet.line_at_pick,
    )
    return bet


# ---------------------------------------------------------------------------
# Job 1: update_scores
# ---------------------------------------------------------------------------

def settle_event_bets(repo: LineRepository, event_id: str, home_score: int, away_score: int) -> Dict:
    """Settle every open bet on one event.  Returns per-outcome counts."""
    counts = {"settled": 0, "pushes": 0, "ungradable": 0}
    now = datetime.utcnow()
    for bet in repo.open_bets_for_event(event_id):
        outcome = bet_outcome(bet.bet_type, bet.side, bet.line_at_pick, home_score, away_score)
        if outcome is None:
            counts["ungradable"] += 1
            logger.warning("Bet %d (%s %s): could not determine outcome", bet.id, bet.bet_type, bet.side)
            continue
        bet.outcome = outcome.value
        bet.settled_at = now
        if outcome.value == "push":
            counts["pushes"] += 1
        else:
            counts["settled"] += 1
        logger.info("%s: bet %d (%s %s %s)", outcome.value.upper(), bet.id, bet.bet_type, bet.side, bet.line_at_pick)
    return counts


def update_scores(
    sport: str,
    client: Optional[OddsAPIClient] = None,
    db: Optional[Session] = None,
    days_from: int = 3,
) -> Dict:
    """
    Fetch completed scores for ``sport``, store them on the odds-source
    EventRecord and settle pending bets.
    """
    logger.info("Starting update_scores for %s", sport)
    games_updated = 0
    bets_settled = 0
    pushes = 0
    errors: List[str] = []

    if client is None:
        try:
            client = OddsAPIClient()
        except ValueError as exc:
            return _score_summary(sport, 0, 0, 0, [str(exc)])

    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)
    cfg = get_sport_config(sport)

    try:
        try:
            raw_scores = client.get_scores(sport, days_from=days_from)
        except OddsQuotaExceeded as exc:
            logger.warning("update_scores %s skipped: %s", sport, exc)
            raw_scores = []
            errors.append(str(exc))
        record_fetches(repo, client)

        for item in raw_scores:
            score = parse_score(item)
            event_id = score["event_id"]
            if not event_id or not score["completed"]:
                continue
            if score["home_score"] is None or score["away_score"] is None:
                continue
            commence = score["commence_time"]
            try:
                if commence is not None:
                    repo.upsert_event_record({
                        "source": SOURCE_ODDS_API,
                        "source_id": event_id,
                        "sport": sport,
                        "season": cfg.season_for(commence),
                        "home_team": score["home_team"],
                        "away_team": score["away_team"],
                        "event_date": commence.date(),
                        "commence_time": commence,
                        "home_score": score["home_score"],
                        "away_score": score["away_score"],
                        "completed": True,
                    })
                    games_updated += 1
                counts = settle_event_bets(repo, event_id, score["home_score"], score["away_score"])
                bets_settled += counts["settled"]
                pushes += counts["pushes"]
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                errors.append(f"Event {event_id}: {exc}")
                logger.error("Score update failed for event %s: %s", event_id, exc)
    finally:
        if owns_session:
            db.close()

    summary = _score_summary(sport, games_updated, bets_settled, pushes, errors)
    logger.info("update_scores done: %s", summary)
    return summary


def update_all_scores(sports: Optional[Iterable[str]] = None) -> Dict:
    sports = list(sports) if sports is not None else ingest_sports()
    try:
        client = OddsAPIClient()
    except ValueError as exc:
        logger.error("update_all_scores aborted: %s", exc)
        return {"sports": {}, "errors": [str(exc)], "timestamp": datetime.utcnow().isoformat()}
    per_sport = {sport: update_scores(sport, client=client) for sport in sports}
    return {
        "sports": per_sport,
        "errors": [e for s in per_sport.values() for e in s["errors"]],
        "timestamp": datetime.utcnow().isoformat(),
    }


def _score_summary(sport: str, updated: int, settled: int, pushes: int, errors: List[str]) -> Dict:
    return {
        "sport": sport,
        "games_updated": updated,
        "bets_settled": settled,
        "pushes": pushes,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }


# ---------------------------------------------------------------------------
# Job 2: grade_clv
# ---------------------------------------------------------------------------

def grade_clv(db: Optional[Session] = None, now: Optional[datetime] = None) -> Dict:
    """
    Fill clv_value / closing_line_used / opening_line / beat_close on every
    ungraded bet whose event has a closing consensus snapshot.

    Bets without a closing snapshot are left null and counted as pending;
    they are picked up again on a later run.
    """
    logger.info("Starting grade_clv")
    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)
    now = now or datetime.utcnow()

    graded = 0
    pending = 0
    skipped = 0
    errors: List[str] = []

    try:
        for bet in repo.iter_ungraded_bets():
            bet_id = bet.id
            try:
                closing = repo.closing_snapshot(bet.event_id)
                if closing is None:
                    pending += 1
                    continue
                opening = repo.opening_snapshot(bet.event_id, book=CONSENSUS_BOOK)
                try:
                    result = calculate_clv(bet, closing, opening)
                except ValueError as exc:
                    skipped += 1
                    logger.warning("Bet %d: malformed odds, skipping CLV: %s", bet_id, exc)
                    continue
                if result is None:
                    pending += 1
                    continue

                bet.clv_value = result.clv_value
                bet.closing_line_used = result.closing_line_used
                bet.opening_line = result.opening_line
                bet.beat_close = result.beat_close
                bet.graded_at = now
                db.commit()
                graded += 1
            except SQLAlchemyError as exc:
                db.rollback()
                errors.append(f"Bet {bet_id}: {exc}")
                logger.error("CLV write failed for bet %s: %s", bet_id, exc)
    finally:
        if owns_session:
            db.close()

    summary = {
        "graded": graded,
        "pending": pending,
        "skipped": skipped,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("grade_clv done: %s", summary)
    return summary


def run_clv_pipeline(db: Optional[Session] = None, now: Optional[datetime] = None) -> Dict:
    """Closing-line resolution followed by CLV grading."""
    closing = resolve_closing_lines(db=db, now=now)
    grading = grade_clv(db=db, now=now)
    return {
        "closing": closing,
        "grading": grading,
        "errors": closing["errors"] + grading["errors"],
        "timestamp": datetime.utcnow().isoformat(),
    }
