"""
The Odds API integration: live odds, scores and historical snapshots.
https://the-odds-api.com/

Every call is a single HTTP GET with a bounded timeout.  A failed call
(timeout, connection error, non-2xx) is logged, appended to ``fetch_log``
and returned as an empty list so the calling job can skip that sport or
date and carry on.

Quota
-----
The API reports remaining credits in the ``x-requests-remaining`` header.
The client remembers the latest value and refuses to issue further
requests once it drops below ``min_quota`` (OddsQuotaExceeded), leaving a
reserve for the interactive endpoints.

Consensus
---------
``parse_event_lines`` turns one feed event into per-book lines plus a
consensus line: mean home spread and mean total rounded to the half
point, rounded mean moneylines.  The consensus series is what the closing
resolver and CLV grader read; the per-book series feeds steam and
arbitrage detection.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import requests

from lineintel.core.sport_config import get_sport_config
from lineintel.models import CONSENSUS_BOOK

logger = logging.getLogger(__name__)

BASE_URL = "https://api.the-odds-api.com/v4"
DEFAULT_MARKETS = "h2h,spreads,totals"


class OddsQuotaExceeded(RuntimeError):
    """Remaining credits fell below the configured reserve."""


@dataclass
class BookLine:
    """One book's current two-way numbers for an event (home perspective)."""

    book: str
    spread_home: Optional[float] = None
    spread_away: Optional[float] = None
    total: Optional[float] = None
    moneyline_home: Optional[int] = None
    moneyline_away: Optional[int] = None

    def has_market(self) -> bool:
        return any(
            v is not None
            for v in (self.spread_home, self.total, self.moneyline_home, self.moneyline_away)
        )


@dataclass
class ParsedEvent:
    event_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: Optional[datetime]
    books: List[BookLine]
    consensus: BookLine


def parse_commence_time(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601 'Z' timestamp → naive UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable commence_time %r", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _half_point(value: Optional[float]) -> Optional[float]:
    return round(value * 2) / 2 if value is not None else None


def consensus_line(books: List[BookLine]) -> BookLine:
    """Cross-book consensus: half-point spread/total, integer moneylines."""
    spreads = [b.spread_home for b in books if b.spread_home is not None]
    totals = [b.total for b in books if b.total is not None]
    ml_home = [b.moneyline_home for b in books if b.moneyline_home is not None]
    ml_away = [b.moneyline_away for b in books if b.moneyline_away is not None]

    home = _mean(ml_home)
    away = _mean(ml_away)
    return BookLine(
        book=CONSENSUS_BOOK,
        spread_home=_half_point(_mean(spreads)),
        total=_half_point(_mean(totals)),
        moneyline_home=int(round(home)) if home is not None else None,
        moneyline_away=int(round(away)) if away is not None else None,
    )


def parse_book(bookmaker: Dict, home_team: str) -> BookLine:
    line = BookLine(book=(bookmaker.get("key") or "").lower())
    for market in bookmaker.get("markets", []):
        market_key = market.get("key")
        for outcome in market.get("outcomes", []):
            is_home = outcome.get("name") == home_team
            if market_key == "spreads":
                if is_home:
                    line.spread_home = outcome.get("point")
                else:
                    line.spread_away = outcome.get("point")
            elif market_key == "totals":
                line.total = outcome.get("point")
            elif market_key == "h2h":
                if is_home:
                    line.moneyline_home = outcome.get("price")
                else:
                    line.moneyline_away = outcome.get("price")
    return line


def parse_event_lines(game: Dict, sport: str) -> ParsedEvent:
    """Raw feed event → per-book lines plus consensus."""
    home_team = game.get("home_team") or ""
    books = [parse_book(b, home_team) for b in game.get("bookmakers", [])]
    books = [b for b in books if b.book and b.has_market()]
    return ParsedEvent(
        event_id=game.get("id"),
        sport=sport,
        home_team=home_team,
        away_team=game.get("away_team") or "",
        commence_time=parse_commence_time(game.get("commence_time")),
        books=books,
        consensus=consensus_line(books),
    )


def parse_score(item: Dict) -> Dict:
    """Raw /scores item → event id, completion flag and integer scores."""
    home_team = item.get("home_team")
    away_team = item.get("away_team")
    home_score = away_score = None
    for entry in item.get("scores") or []:
        try:
            value = int(entry.get("score"))
        except (TypeError, ValueError):
            continue
        if entry.get("name") == home_team:
            home_score = value
        elif entry.get("name") == away_team:
            away_score = value
    return {
        "event_id": item.get("id"),
        "home_team": home_team,
        "away_team": away_team,
        "commence_time": parse_commence_time(item.get("commence_time")),
        "completed": bool(item.get("completed")),
        "home_score": home_score,
        "away_score": away_score,
    }


class OddsAPIClient:
    """Client for The Odds API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        min_quota: Optional[int] = None,
        regions: Optional[str] = None,
    ):
        self.api_key = api_key or os.getenv("THE_ODDS_API_KEY")
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")
        self.timeout = timeout if timeout is not None else float(os.getenv("ODDS_API_TIMEOUT_S", "8"))
        self.min_quota = min_quota if min_quota is not None else int(os.getenv("ODDS_API_MIN_QUOTA", "10"))
        self.regions = regions or os.getenv("ODDS_API_REGIONS", "us")
        self.quota_remaining: Optional[int] = None
        self.fetch_log: List[Dict] = []

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _check_quota(self) -> None:
        if self.quota_remaining is not None and self.quota_remaining < self.min_quota:
            raise OddsQuotaExceeded(
                f"Odds API quota {self.quota_remaining} below reserve {self.min_quota}"
            )

    def _get(self, path: str, params: Dict, data_source: str, sport: str):
        """GET ``path``; returns parsed JSON or None on any request failure."""
        self._check_quota()
        params = dict(params, apiKey=self.api_key)
        started = time.monotonic()
        entry = {
            "fetch_time": datetime.utcnow(),
            "data_source": data_source,
            "sport": sport,
            "success": False,
        }

        try:
            response = requests.get(f"{BASE_URL}{path}", params=params, timeout=self.timeout)
            remaining = response.headers.get("x-requests-remaining")
            if remaining is not None:
                try:
                    self.quota_remaining = int(float(remaining))
                except ValueError:
                    pass
            if response.status_code == 422:
                # Historical endpoint: date outside coverage / nothing that day
                logger.info("Odds API %s %s: no data (422)", data_source, sport)
                entry.update(success=True, records_fetched=0)
                return None
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Odds API error (%s %s): %s", data_source, sport, e)
            entry["error_message"] = str(e)[:500]
            return None
        finally:
            entry["response_time_ms"] = int((time.monotonic() - started) * 1000)
            entry["quota_remaining"] = self.quota_remaining
            self.fetch_log.append(entry)

        records = data.get("data", data) if isinstance(data, dict) else data
        entry.update(success=True, records_fetched=len(records) if isinstance(records, list) else 0)
        logger.info(
            "Odds API %s %s: %d records. Remaining: %s",
            data_source, sport, entry["records_fetched"], self.quota_remaining,
        )
        if self.quota_remaining is not None and self.quota_remaining < self.min_quota:
            logger.warning(
                "Odds API quota %d below reserve %d; further calls will be refused",
                self.quota_remaining, self.min_quota,
            )
        return data

    def drain_fetch_log(self) -> List[Dict]:
        entries, self.fetch_log = self.fetch_log, []
        return entries

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def get_odds(self, sport: str, markets: str = DEFAULT_MARKETS) -> List[Dict]:
        """Current odds for every upcoming event of ``sport``."""
        sport_key = get_sport_config(sport).odds_api_key
        data = self._get(
            f"/sports/{sport_key}/odds",
            {"regions": self.regions, "markets": markets, "oddsFormat": "american"},
            "odds_api_odds",
            sport,
        )
        return data if isinstance(data, list) else []

    def get_scores(self, sport: str, days_from: int = 3) -> List[Dict]:
        """Live and recently completed scores (``days_from`` 1-3)."""
        sport_key = get_sport_config(sport).odds_api_key
        data = self._get(
            f"/sports/{sport_key}/scores",
            {"daysFrom": max(1, min(3, days_from))},
            "odds_api_scores",
            sport,
        )
        return data if isinstance(data, list) else []

    def get_historical_odds(self, sport: str, day: date, markets: str = DEFAULT_MARKETS) -> List[Dict]:
        """
        Odds snapshot for one calendar day.

        Queried at 12:00 UTC, which sits before most kickoffs on that date.
        """
        sport_key = get_sport_config(sport).odds_api_key
        data = self._get(
            f"/historical/sports/{sport_key}/odds",
            {
                "regions": self.regions,
                "markets": markets,
                "oddsFormat": "american",
                "date": f"{day.isoformat()}T12:00:00Z",
            },
            "odds_api_historical",
            sport,
        )
        if isinstance(data, dict):
            return data.get("data") or []
        return data if isinstance(data, list) else []

    def get_event_lines(self, sport: str) -> List[ParsedEvent]:
        games = [parse_event_lines(g, sport) for g in self.get_odds(sport)]
        logger.info("Parsed odds for %d %s events", len(games), sport)
        return games
