#!/usr/bin/env python3
"""
Closing-odds backfill.

Optionally imports historical odds for a date range first, then reconciles
results records against the odds-source records and writes closing
spread/total plus spread and total results.

Examples:
    python scripts/backfill_closing_odds.py --sport nfl --season 2024 --dry-run
    python scripts/backfill_closing_odds.py --sport nba --import-start 2024-10-22 --import-end 2024-11-30
"""

import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv
load_dotenv()

import argparse
import logging
from datetime import date

from lineintel.core.sport_config import ALL_SPORTS
from lineintel.services.backfill import backfill_closing_odds, import_date_range
from lineintel.services.odds import OddsAPIClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill closing odds onto results records")
    parser.add_argument("--sport", choices=sorted(ALL_SPORTS), help="Limit to one sport (default: all)")
    parser.add_argument("--season", type=int, help="Limit to one season")
    parser.add_argument("--dry-run", action="store_true", help="Compute everything, write nothing")
    parser.add_argument("--import-start", type=date.fromisoformat, help="Import historical odds from this date (YYYY-MM-DD)")
    parser.add_argument("--import-end", type=date.fromisoformat, help="Import historical odds up to this date (YYYY-MM-DD)")
    parser.add_argument("--interval-days", type=int, help="Sampling interval for the import (default: per sport)")
    args = parser.parse_args(argv)

    if (args.import_start is None) != (args.import_end is None):
        parser.error("--import-start and --import-end must be given together")
    if args.import_start and not args.sport:
        parser.error("--import-start requires --sport")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.import_start:
        try:
            client = OddsAPIClient()
        except ValueError as exc:
            logger.error("Cannot import historical odds: %s", exc)
            return 1
        imported = import_date_range(
            args.sport, args.import_start, args.import_end,
            client=client, interval_days=args.interval_days, dry_run=args.dry_run,
        )
        logger.info(
            "Imported %d events over %d days (%d errors)",
            imported["imported"], imported["days_queried"], len(imported["errors"]),
        )

    result = backfill_closing_odds(sport=args.sport, season=args.season, dry_run=args.dry_run)

    print("")
    print("=" * 60)
    print(f"Closing-odds backfill {'(DRY RUN) ' if args.dry_run else ''}summary")
    print("=" * 60)
    for sport, counts in result["sports"].items():
        print(
            f"  {sport:<6} updated={counts['updated']:<5} correct={counts['already_correct']:<5} "
            f"no_match={counts['no_match']:<5} skipped={counts['skipped']:<5} errors={len(counts['errors'])}"
        )
    print("-" * 60)
    print(
        f"  total  updated={result['updated']:<5} correct={result['already_correct']:<5} "
        f"no_match={result['no_match']:<5} skipped={result['skipped']:<5} errors={len(result['errors'])}"
    )
    return 1 if result["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
