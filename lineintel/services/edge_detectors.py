"""
Edge signal detectors.

Every detector is a pure function of its inputs: no store, no network, no
config.  A qualifying condition yields a fresh ``EdgeAlert`` (new id, new
timestamp); anything else yields None.  Gating by EdgeFeatureConfig and
persistence live in ``lineintel.services.alerts``.

    Detector        Trigger                                    critical / major
    ------------    ---------------------------------------    ----------------
    RLM             public >= 60% (or <= 40%) and line moves    >= 2.0 / >= 1.0 pt
                    >= 0.5 pt toward the public side
    Steam           |move| >= 1.0 within 15 min, >= 3 books     >= 2.5 / >= 1.5 pt
    Sharp/Public    tickets >= 60% one side, money >= 55%       pub 75 & $ 65 / pub 65
                    on the other
    Arbitrage       best home + best away implied < 100%        >= 3% / >= 1.5%

Confidence is a heuristic blend of magnitude and sample size, not a
calibrated probability; expected_value is advisory.
"""

from __future__ import annotations

import enum
import logging
import statistics
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from lineintel.core.odds_math import arbitrage_pct, is_valid_american_odds

logger = logging.getLogger(__name__)


class EdgeType(str, enum.Enum):
    RLM = "rlm"
    STEAM = "steam"
    CLV = "clv"
    SHARP_PUBLIC = "sharp-public"
    ARBITRAGE = "arbitrage"
    PROPS = "props"


class Severity(str, enum.Enum):
    INFO = "info"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, floor: "Severity") -> bool:
        return self.rank >= Severity(floor).rank


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.MINOR: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
}

EDGE_TYPE_LABELS = {
    EdgeType.RLM: "Reverse Line Movement",
    EdgeType.STEAM: "Steam Move",
    EdgeType.CLV: "CLV Opportunity",
    EdgeType.SHARP_PUBLIC: "Sharp vs Public",
    EdgeType.ARBITRAGE: "Arbitrage Alert",
    EdgeType.PROPS: "Props Edge",
}

# Alert lifetimes.  Sharp/public splits carry no expiry.
RLM_TTL = timedelta(hours=4)
STEAM_TTL = timedelta(hours=1)
ARBITRAGE_TTL = timedelta(minutes=30)

# Trigger thresholds
RLM_PUBLIC_PCT = 60.0
RLM_MIN_MOVE = 0.5
STEAM_MIN_MOVE = 1.0
STEAM_MAX_MINUTES = 15.0
STEAM_MIN_BOOKS = 3
SPLIT_PUBLIC_PCT = 60.0
SPLIT_MONEY_PCT = 55.0


@dataclass(frozen=True)
class EdgeAlert:
    """Immutable detector output.  Newer alerts supersede, never mutate, older ones."""

    id: str
    type: EdgeType
    event_id: str
    sport: str
    severity: Severity
    confidence: float
    title: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    expected_value: Optional[float] = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


def _new_id(prefix: str, event_id: str) -> str:
    return f"{prefix}-{event_id}-{uuid.uuid4().hex[:12]}"


def _signed(x: float) -> str:
    return f"+{x:.1f}" if x > 0 else f"{x:.1f}"


def _american(odds: int) -> str:
    return f"+{odds}" if odds > 0 else str(odds)


# ---------------------------------------------------------------------------
# Reverse line movement
# ---------------------------------------------------------------------------

def detect_rlm(
    event_id: str,
    sport: str,
    home_team: str,
    away_team: str,
    open_spread: float,
    current_spread: float,
    public_home_pct: float,
    now: Optional[datetime] = None,
) -> Optional[EdgeAlert]:
    """
    Line moving toward the public side (making it more expensive).

    Spreads are home-relative, so a home-heavy public with the spread going
    more negative is RLM; an away-heavy public with it going more positive
    is the mirror case.
    """
    line_move = current_spread - open_spread
    public_side = "home" if public_home_pct > 50 else "away"

    is_rlm = (public_home_pct >= RLM_PUBLIC_PCT and line_move <= -RLM_MIN_MOVE) or (
        public_home_pct <= 100 - RLM_PUBLIC_PCT and line_move >= RLM_MIN_MOVE
    )
    if not is_rlm:
        return None

    magnitude = abs(line_move)
    if magnitude >= 2.0:
        severity = Severity.CRITICAL
    elif magnitude >= 1.0:
        severity = Severity.MAJOR
    else:
        severity = Severity.MINOR

    confidence = min(95.0, 50 + abs(public_home_pct - 50) + magnitude * 10)
    public_team = home_team if public_side == "home" else away_team
    sharp_team = away_team if public_side == "home" else home_team
    now = now or datetime.utcnow()

    return EdgeAlert(
        id=_new_id("rlm", event_id),
        type=EdgeType.RLM,
        event_id=event_id,
        sport=sport,
        severity=severity,
        confidence=round(confidence, 1),
        title=f"RLM Alert: Sharp money on {sharp_team}",
        description=(
            f"{public_home_pct:.0f}% of bets on {public_team}, but line moved "
            f"{_signed(line_move)} pts toward them. Sharps likely on {sharp_team}."
        ),
        data={
            "lineOpenSpread": open_spread,
            "lineCurrentSpread": current_spread,
            "lineMove": line_move,
            "publicBetPct": public_home_pct,
            "sharpSide": "away" if public_side == "home" else "home",
        },
        created_at=now,
        expires_at=now + RLM_TTL,
        expected_value=round(magnitude * 2.5, 2),
    )


# ---------------------------------------------------------------------------
# Steam
# ---------------------------------------------------------------------------

@dataclass
class SteamWindow:
    """Cross-book line movement summarised over a trailing window."""

    line_before: float
    line_after: float
    minutes_elapsed: float
    books_moving: int


def steam_window(
    snapshots: Iterable,
    baselines: Optional[Dict[str, Any]] = None,
    window_start: Optional[datetime] = None,
    min_move: float = STEAM_MIN_MOVE,
) -> Optional[SteamWindow]:
    """
    Summarise per-book snapshots captured inside a trailing window.

    Snapshots are only written when a line changes, so a book that moved
    once inside the window has a single row there.  ``baselines`` maps a
    book to its last row before the window; when present it is the "before"
    line for that book, otherwise the book's first in-window row is.

    For each book, the move is the last in-window spread_home minus the
    before line.  Books that moved at least ``min_move`` in the dominant
    direction are counted; before/after are the medians of their numbers.
    Elapsed time runs from the earliest before observation, clamped to
    ``window_start``, to the latest in-window observation.
    """
    baselines = baselines or {}
    by_book: Dict[str, List] = {}
    for snap in snapshots:
        if snap.spread_home is None:
            continue
        by_book.setdefault(snap.book, []).append(snap)

    moves = []
    for book, rows in by_book.items():
        rows.sort(key=lambda s: s.captured_at)
        first, last = rows[0], rows[-1]
        baseline = baselines.get(book)
        if baseline is not None and baseline.spread_home is not None:
            first = baseline
        delta = last.spread_home - first.spread_home
        if abs(delta) >= min_move:
            moves.append((book, first, last, delta))

    if not moves:
        return None

    down = [m for m in moves if m[3] < 0]
    up = [m for m in moves if m[3] > 0]
    movers = down if len(down) >= len(up) else up

    start = min(m[1].captured_at for m in movers)
    if window_start is not None and start < window_start:
        start = window_start
    end = max(m[2].captured_at for m in movers)
    return SteamWindow(
        line_before=statistics.median(m[1].spread_home for m in movers),
        line_after=statistics.median(m[2].spread_home for m in movers),
        minutes_elapsed=round((end - start).total_seconds() / 60.0, 1),
        books_moving=len(movers),
    )


def detect_steam(
    event_id: str,
    sport: str,
    home_team: str,
    away_team: str,
    line_before: float,
    line_after: float,
    minutes_elapsed: float,
    books_moving: int,
    now: Optional[datetime] = None,
) -> Optional[EdgeAlert]:
    """Fast synchronised move: >= 1 pt, <= 15 minutes, >= 3 books."""
    move = abs(line_after - line_before)
    if not (move >= STEAM_MIN_MOVE and minutes_elapsed <= STEAM_MAX_MINUTES and books_moving >= STEAM_MIN_BOOKS):
        return None

    if move >= 2.5:
        severity = Severity.CRITICAL
    elif move >= 1.5:
        severity = Severity.MAJOR
    else:
        severity = Severity.MINOR

    moving_toward = home_team if line_after < line_before else away_team
    confidence = min(95.0, 60 + move * 10 + books_moving * 5)
    now = now or datetime.utcnow()

    return EdgeAlert(
        id=_new_id("steam", event_id),
        type=EdgeType.STEAM,
        event_id=event_id,
        sport=sport,
        severity=severity,
        confidence=round(confidence, 1),
        title=f"Steam Move: {moving_toward}",
        description=(
            f"Line moved {move:.1f} pts in {minutes_elapsed:g} min across {books_moving} books. "
            f"Sharp action detected on {moving_toward}."
        ),
        data={
            "lineOpenSpread": line_before,
            "lineCurrentSpread": line_after,
            "lineMove": line_after - line_before,
            "steamMagnitude": move,
            "steamSpeed": minutes_elapsed,
            "booksAffected": books_moving,
        },
        created_at=now,
        expires_at=now + STEAM_TTL,
        expected_value=round(move * 3, 2),
    )


# ---------------------------------------------------------------------------
# Sharp vs public
# ---------------------------------------------------------------------------

def detect_sharp_public_split(
    event_id: str,
    sport: str,
    home_team: str,
    away_team: str,
    public_home_pct: float,
    money_home_pct: float,
    public_away_pct: Optional[float] = None,
    money_away_pct: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Optional[EdgeAlert]:
    """Tickets heavily on one side while the handle leans the other way."""
    if public_away_pct is None:
        public_away_pct = 100.0 - public_home_pct
    if money_away_pct is None:
        money_away_pct = 100.0 - money_home_pct

    public_side = "home" if public_home_pct > public_away_pct else "away"
    money_side = "home" if money_home_pct > money_away_pct else "away"
    public_dom = max(public_home_pct, public_away_pct)
    money_dom = max(money_home_pct, money_away_pct)

    if not (public_dom >= SPLIT_PUBLIC_PCT and money_dom >= SPLIT_MONEY_PCT and public_side != money_side):
        return None

    if public_dom >= 75 and money_dom >= 65:
        severity = Severity.CRITICAL
    elif public_dom >= 65:
        severity = Severity.MAJOR
    else:
        severity = Severity.MINOR

    sharp_team = home_team if money_side == "home" else away_team
    public_team = home_team if public_side == "home" else away_team
    confidence = min(90.0, 40 + (public_dom - 50) + (money_dom - 50))
    now = now or datetime.utcnow()

    return EdgeAlert(
        id=_new_id("sharp", event_id),
        type=EdgeType.SHARP_PUBLIC,
        event_id=event_id,
        sport=sport,
        severity=severity,
        confidence=round(confidence, 1),
        title=f"Sharp vs Public: Sharps on {sharp_team}",
        description=(
            f"{public_dom:.0f}% of bets on {public_team}, but {money_dom:.0f}% of money "
            f"on {sharp_team}. Big money disagrees with public."
        ),
        data={
            "publicSide": public_side,
            "sharpSide": money_side,
            "publicPct": public_dom,
            "sharpPct": money_dom,
            "moneyDifferential": money_dom - public_dom,
        },
        created_at=now,
        expires_at=None,
        expected_value=round((public_dom - 50) * 0.2, 2),
    )


# ---------------------------------------------------------------------------
# Arbitrage
# ---------------------------------------------------------------------------

def detect_arbitrage(
    event_id: str,
    sport: str,
    home_team: str,
    away_team: str,
    home_book: str,
    home_odds: int,
    away_book: str,
    away_odds: int,
    now: Optional[datetime] = None,
) -> Optional[EdgeAlert]:
    """
    Two-way moneyline arbitrage.

    +120 home (45.45%) with +110 away (47.62%) sums to 93.07%, a 6.93% arb.
    """
    if not (is_valid_american_odds(home_odds) and is_valid_american_odds(away_odds)):
        return None

    arb = arbitrage_pct(home_odds, away_odds)
    if arb <= 0:
        return None

    if arb >= 3:
        severity = Severity.CRITICAL
    elif arb >= 1.5:
        severity = Severity.MAJOR
    else:
        severity = Severity.MINOR
    now = now or datetime.utcnow()

    return EdgeAlert(
        id=_new_id("arb", event_id),
        type=EdgeType.ARBITRAGE,
        event_id=event_id,
        sport=sport,
        severity=severity,
        confidence=99.0,
        title=f"Arb Found: {arb:.2f}% guaranteed",
        description=(
            f"{home_team} @ {home_book} ({_american(home_odds)}) vs "
            f"{away_team} @ {away_book} ({_american(away_odds)})"
        ),
        data={
            "book1": home_book,
            "book1Odds": home_odds,
            "book2": away_book,
            "book2Odds": away_odds,
            "arbPercentage": round(arb, 4),
        },
        created_at=now,
        expires_at=now + ARBITRAGE_TTL,
        expected_value=round(arb, 2),
    )


def best_prices(book_lines: Iterable) -> Optional[Dict[str, Any]]:
    """
    Best home and best away moneyline across books.

    ``book_lines`` items need ``book``, ``moneyline_home``, ``moneyline_away``.
    Returns None when either side has no valid price.
    """
    best_home = best_away = None
    for line in book_lines:
        if is_valid_american_odds(line.moneyline_home):
            if best_home is None or _payout_rank(line.moneyline_home) > _payout_rank(best_home[1]):
                best_home = (line.book, line.moneyline_home)
        if is_valid_american_odds(line.moneyline_away):
            if best_away is None or _payout_rank(line.moneyline_away) > _payout_rank(best_away[1]):
                best_away = (line.book, line.moneyline_away)
    if best_home is None or best_away is None:
        return None
    return {
        "home_book": best_home[0],
        "home_odds": best_home[1],
        "away_book": best_away[0],
        "away_odds": best_away[1],
    }


def _payout_rank(odds: int) -> float:
    # Larger is a better price for the bettor; -105 beats -110, +120 beats +110.
    return odds if odds > 0 else 10000.0 / -odds
