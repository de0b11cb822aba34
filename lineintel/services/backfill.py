"""
Historical odds import and closing-odds backfill.

Two batch operations, both safe to re-run:

  import_historical_odds(sport, day)
      One historical-odds request for a sport and calendar day; each event
      is reduced to a consensus line and upserted as an odds-source
      EventRecord keyed on (source, source_id).

  backfill_closing_odds(sport=None, season=None, dry_run=False)
      Reconcile results-source EventRecords against the odds-source ones:
      match identities, orient reversed matches, recompute spread/total
      results and write the closing numbers.  Rows already within 0.1 of
      the feed are left alone.

Nightly job: run_nightly_backfill() imports yesterday's odds for every
ingest sport, then runs the reconciliation.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lineintel.core.outcomes import spread_result, total_result
from lineintel.core.sport_config import ALL_SPORTS, get_sport_config
from lineintel.models import SOURCE_ODDS_API, SOURCE_RESULTS, SessionLocal
from lineintel.repository import LineRepository
from lineintel.services.event_matcher import (
    EventDateIndex,
    is_exhibition,
    match_event,
    oriented_lines,
)
from lineintel.services.line_snapshots import ingest_sports, record_fetches
from lineintel.services.odds import OddsAPIClient, OddsQuotaExceeded, parse_event_lines
from lineintel.services.team_mapping import AliasTable, get_alias_table, suggest_alias

logger = logging.getLogger(__name__)

#: Stored lines within this distance of the feed are considered correct.
LINE_TOLERANCE = 0.1


@dataclass(frozen=True)
class EventView:
    """Plain copy of the EventRecord fields the reconciliation reads.

    Per-row commits expire ORM instances; working from copies keeps the
    loop from re-selecting every record after each write.
    """

    id: int
    home_team: str
    away_team: str
    event_date: date
    home_score: Optional[int]
    away_score: Optional[int]
    point_spread: Optional[float]
    over_under: Optional[float]
    moneyline_home: Optional[int]
    moneyline_away: Optional[int]

    @classmethod
    def of(cls, record) -> "EventView":
        return cls(**{f: getattr(record, f) for f in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Historical import
# ---------------------------------------------------------------------------

def import_historical_odds(
    sport: str,
    day: date,
    client: Optional[OddsAPIClient] = None,
    db: Optional[Session] = None,
    dry_run: bool = False,
) -> Dict:
    """Fetch one day of historical odds for ``sport`` and upsert consensus records."""
    cfg = get_sport_config(sport)
    imported = 0
    skipped = 0
    errors: List[str] = []

    client = client or OddsAPIClient()
    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)

    try:
        try:
            games = client.get_historical_odds(sport, day)
        finally:
            record_fetches(repo, client)

        for game in games:
            event = parse_event_lines(game, sport)
            if not event.event_id or event.commence_time is None:
                skipped += 1
                continue
            line = event.consensus
            if line.spread_home is None and line.total is None and line.moneyline_home is None:
                skipped += 1
                continue
            if dry_run:
                logger.info(
                    "[DRY RUN] %s @ %s | ML %s/%s | spread %s | total %s",
                    event.away_team, event.home_team, line.moneyline_home,
                    line.moneyline_away, line.spread_home, line.total,
                )
                imported += 1
                continue
            try:
                repo.upsert_event_record({
                    "source": SOURCE_ODDS_API,
                    "source_id": event.event_id,
                    "sport": sport,
                    "season": cfg.season_for(event.commence_time),
                    "home_team": event.home_team,
                    "away_team": event.away_team,
                    "event_date": event.commence_time.date(),
                    "commence_time": event.commence_time,
                    "point_spread": line.spread_home,
                    "over_under": line.total,
                    "moneyline_home": line.moneyline_home,
                    "moneyline_away": line.moneyline_away,
                })
                db.commit()
                imported += 1
            except SQLAlchemyError as exc:
                db.rollback()
                errors.append(f"Event {event.event_id}: {exc}")
                logger.error("Historical upsert failed for event %s: %s", event.event_id, exc)
    finally:
        if owns_session:
            db.close()

    summary = {
        "sport": sport,
        "date": day.isoformat(),
        "imported": imported,
        "skipped": skipped,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("import_historical_odds done: %s", summary)
    return summary


def import_date_range(
    sport: str,
    start: date,
    end: date,
    client: Optional[OddsAPIClient] = None,
    interval_days: Optional[int] = None,
    dry_run: bool = False,
) -> Dict:
    """Walk ``start``..``end`` at the sport's sampling interval; stop on quota exhaustion."""
    cfg = get_sport_config(sport)
    step = timedelta(days=interval_days or cfg.sample_interval_days)
    client = client or OddsAPIClient()

    days = 0
    imported = 0
    errors: List[str] = []
    day = start
    while day <= end:
        try:
            result = import_historical_odds(sport, day, client=client, dry_run=dry_run)
        except OddsQuotaExceeded as exc:
            logger.warning("Stopping %s import at %s: %s", sport, day, exc)
            errors.append(str(exc))
            break
        days += 1
        imported += result["imported"]
        errors.extend(result["errors"])
        day += step

    return {
        "sport": sport,
        "days_queried": days,
        "imported": imported,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }


# ---------------------------------------------------------------------------
# Closing-odds backfill
# ---------------------------------------------------------------------------

def _close_enough(stored: Optional[float], fresh: float) -> bool:
    return stored is not None and abs(stored - fresh) < LINE_TOLERANCE


def backfill_sport(
    repo: LineRepository,
    sport: str,
    season: Optional[int] = None,
    dry_run: bool = False,
    aliases: Optional[AliasTable] = None,
) -> Dict:
    """Reconcile one sport.  Returns the per-sport counters."""
    counts = Counter(updated=0, already_correct=0, no_match=0, skipped=0)
    errors: List[str] = []
    db = repo.db

    odds_rows = [
        EventView.of(r)
        for r in repo.iter_event_records(SOURCE_ODDS_API, sport, season, require_spread=True)
    ]
    if not odds_rows:
        logger.info("No odds records for %s", sport)
        return _sport_summary(sport, counts, errors)
    index = EventDateIndex(odds_rows)
    odds_names = sorted({r.home_team for r in odds_rows} | {r.away_team for r in odds_rows})
    logger.info("%s: %d odds records indexed", sport, len(index))

    results_rows = [EventView.of(r) for r in repo.iter_event_records(SOURCE_RESULTS, sport, season)]
    logger.info("%s: %d results records to check", sport, len(results_rows))

    for game in results_rows:
        game_id = game.id
        if game.home_score is None or game.away_score is None:
            counts["skipped"] += 1
            continue
        if is_exhibition(sport, game.home_team, game.away_team):
            counts["skipped"] += 1
            continue

        match = match_event(game, index, aliases)
        if match is None:
            counts["no_match"] += 1
            logger.info(
                "No match: %s %s @ %s (nearest feed names: %s / %s)",
                game.event_date, game.away_team, game.home_team,
                suggest_alias(game.away_team, odds_names),
                suggest_alias(game.home_team, odds_names),
            )
            continue

        lines = oriented_lines(match)
        spread = lines["spread"]
        total = lines["total"]
        if spread is None or total is None:
            counts["skipped"] += 1
            continue

        if _close_enough(game.point_spread, spread) and _close_enough(game.over_under, total):
            counts["already_correct"] += 1
            continue

        values = {
            "point_spread": spread,
            "over_under": total,
            "close_spread": spread,
            "close_total": total,
            "spread_result": spread_result(game.home_score, game.away_score, spread),
            "total_result": total_result(game.home_score, game.away_score, total),
        }
        if dry_run:
            logger.debug("[DRY RUN] record %d <- %s", game_id, values)
            counts["updated"] += 1
            continue

        try:
            repo.update_event_record(game_id, values)
            db.commit()
            counts["updated"] += 1
        except SQLAlchemyError as exc:
            db.rollback()
            errors.append(f"Record {game_id}: {exc}")
            logger.error("Backfill update failed for record %s: %s", game_id, exc)

    return _sport_summary(sport, counts, errors)


def backfill_closing_odds(
    sport: Optional[str] = None,
    season: Optional[int] = None,
    dry_run: bool = False,
    db: Optional[Session] = None,
    aliases: Optional[AliasTable] = None,
) -> Dict:
    """
    Reconcile every sport (or one) and return per-sport plus overall totals:
    updated / already_correct / no_match / skipped / errors.
    """
    sports = [sport.lower()] if sport else list(ALL_SPORTS)
    logger.info(
        "Starting backfill_closing_odds sport=%s season=%s dry_run=%s",
        sport or "all", season or "all", dry_run,
    )
    aliases = aliases or get_alias_table()
    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)

    per_sport: Dict[str, Dict] = {}
    try:
        for s in sports:
            per_sport[s] = backfill_sport(repo, s, season=season, dry_run=dry_run, aliases=aliases)
            logger.info("Backfill %s: %s", s, per_sport[s])
    finally:
        if owns_session:
            db.close()

    totals = Counter()
    errors: List[str] = []
    for result in per_sport.values():
        for key in ("updated", "already_correct", "no_match", "skipped"):
            totals[key] += result[key]
        errors.extend(result["errors"])

    summary = {
        "sports": per_sport,
        "updated": totals["updated"],
        "already_correct": totals["already_correct"],
        "no_match": totals["no_match"],
        "skipped": totals["skipped"],
        "errors": errors,
        "dry_run": dry_run,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info(
        "backfill_closing_odds done: updated=%d correct=%d no_match=%d skipped=%d errors=%d",
        summary["updated"], summary["already_correct"], summary["no_match"],
        summary["skipped"], len(errors),
    )
    return summary


def _sport_summary(sport: str, counts: Counter, errors: List[str]) -> Dict:
    return {
        "sport": sport,
        "updated": counts["updated"],
        "already_correct": counts["already_correct"],
        "no_match": counts["no_match"],
        "skipped": counts["skipped"],
        "errors": errors,
    }


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

def run_nightly_backfill(sports: Optional[Iterable[str]] = None) -> Dict:
    """Yesterday's historical odds for each sport, then a full reconciliation."""
    sports = list(sports) if sports is not None else ingest_sports()
    yesterday = datetime.utcnow().date() - timedelta(days=1)
    imports: Dict[str, Dict] = {}
    errors: List[str] = []

    try:
        client = OddsAPIClient()
    except ValueError as exc:
        logger.error("Nightly import skipped: %s", exc)
        client = None
        errors.append(str(exc))

    if client is not None:
        for sport in sports:
            try:
                imports[sport] = import_historical_odds(sport, yesterday, client=client)
                errors.extend(imports[sport]["errors"])
            except OddsQuotaExceeded as exc:
                logger.warning("Nightly import stopped at %s: %s", sport, exc)
                errors.append(str(exc))
                break

    backfill = {s: backfill_closing_odds(sport=s) for s in sports}
    for result in backfill.values():
        errors.extend(result["errors"])

    return {
        "imports": imports,
        "backfill": {s: {k: v for k, v in r.items() if k != "sports"} for s, r in backfill.items()},
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
