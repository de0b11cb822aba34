# scripts/map_teams.py
"""
Find results-source team names that never match an odds-feed name.

Prints fuzzy suggestions and a JSON block that can be merged into the
TEAM_ALIASES_PATH file.  Suggestions are advisory: nothing is written.
"""
import json
import logging
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

# 1. Load environment variables from .env in the root directory
load_dotenv()

from rapidfuzz import fuzz, process

from lineintel.core.sport_config import ALL_SPORTS
from lineintel.models import SOURCE_ODDS_API, SOURCE_RESULTS, SessionLocal
from lineintel.repository import LineRepository
from lineintel.services.team_mapping import get_alias_table, normalize, teams_match

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def team_names(repo: LineRepository, source: str, sport: str, season=None) -> set:
    names = set()
    for record in repo.iter_event_records(source, sport, season):
        names.add(record.home_team)
        names.add(record.away_team)
    return names


def run_mapping_exercise(sport: str, season=None) -> dict:
    """Return {feed_name: [results_name, ...]} for confident suggestions."""
    aliases = get_alias_table()
    db = SessionLocal()
    try:
        repo = LineRepository(db)
        results_teams = team_names(repo, SOURCE_RESULTS, sport, season)
        odds_teams = sorted(team_names(repo, SOURCE_ODDS_API, sport, season))
    finally:
        db.close()

    if not odds_teams:
        print(f"No odds-feed records for {sport}. Import historical odds first.")
        return {}

    print(f"Checking {len(results_teams)} {sport} results names against {len(odds_teams)} feed names...")
    print("-" * 50)

    new_mappings = {}
    for team in sorted(results_teams):
        if any(teams_match(team, candidate, aliases) for candidate in odds_teams):
            continue

        match = process.extractOne(team, odds_teams, scorer=fuzz.token_set_ratio, processor=normalize)
        if match is None:
            print(f"No candidate for: '{team}'")
            continue
        match_name, score, _ = match
        if score >= 90:
            new_mappings.setdefault(normalize(match_name), []).append(normalize(team))
            print(f"Suggestion: '{team}' -> '{match_name}' (Score: {score:.0f})")
        elif score >= 70:
            print(f"Review needed: '{team}' (Best guess: '{match_name}', Score: {score:.0f})")
        else:
            print(f"No clear match for: '{team}' (Closest: '{match_name}', Score: {score:.0f})")

    # 3. Output results
    print("-" * 50)
    if new_mappings:
        print("\nMerge these into the TEAM_ALIASES_PATH file:")
        print(json.dumps(new_mappings, indent=2, sort_keys=True))
    else:
        print("\nNo new aliases needed.")
    return new_mappings


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Suggest team aliases for unmatched names")
    parser.add_argument("sport", choices=sorted(ALL_SPORTS))
    parser.add_argument("--season", type=int)
    args = parser.parse_args()
    run_mapping_exercise(args.sport, args.season)
