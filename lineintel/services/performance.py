"""
CLV reporting.

All public functions receive a SQLAlchemy Session and return plain dicts
so they can be called from FastAPI endpoints or background jobs without
importing any web-layer code.

Spread and total CLV are in points; moneyline CLV is in implied-probability
percentage points.  The two units are never averaged together: the
headline figures cover points-based picks and moneyline is reported in
its own block.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from lineintel.models import BetRecord

logger = logging.getLogger(__name__)

POINT_BET_TYPES = ("spread", "total")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _median(values: List[float]) -> Optional[float]:
    if not values:
        return None
    s = sorted(values)
    n = len(s)
    mid = n // 2
    return s[mid] if n % 2 else (s[mid - 1] + s[mid]) / 2.0


def _std(values: List[float]) -> Optional[float]:
    if len(values) < 2:
        return None
    m = _mean(values)
    variance = sum((v - m) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance)


def _round(value: Optional[float], digits: int = 3) -> Optional[float]:
    return round(value, digits) if value is not None else None


def _graded_bets(
    db: Session,
    cutoff: Optional[datetime] = None,
    sport: Optional[str] = None,
    bet_type: Optional[str] = None,
) -> List[BetRecord]:
    """Bets with a CLV value, optionally filtered by creation time, sport and type."""
    q = db.query(BetRecord).filter(BetRecord.clv_value.isnot(None))
    if cutoff:
        q = q.filter(BetRecord.created_at >= cutoff)
    if sport:
        q = q.filter(BetRecord.sport == sport.lower())
    if bet_type:
        q = q.filter(BetRecord.bet_type == bet_type.lower())
    return q.order_by(BetRecord.created_at.asc(), BetRecord.id.asc()).all()


def _clv_block(bets: List[BetRecord]) -> Dict:
    values = [b.clv_value for b in bets]
    positive = sum(1 for v in values if v > 0)
    negative = sum(1 for v in values if v < 0)
    return {
        "count": len(values),
        "mean_clv": _round(_mean(values)),
        "median_clv": _round(_median(values)),
        "std_clv": _round(_std(values)),
        "positive": positive,
        "negative": negative,
        "neutral": len(values) - positive - negative,
        "beat_close_rate": round(positive / len(values), 4) if values else None,
    }


# ---------------------------------------------------------------------------
# calculate_clv_summary
# ---------------------------------------------------------------------------

def calculate_clv_summary(
    db: Session,
    days: Optional[int] = None,
    sport: Optional[str] = None,
    bet_type: Optional[str] = None,
) -> Dict:
    """
    Headline CLV figures plus per-bet-type and per-sport breakdowns.

    ``days`` limits the report to bets created in the trailing window.
    """
    cutoff = datetime.utcnow() - timedelta(days=days) if days else None
    bets = _graded_bets(db, cutoff=cutoff, sport=sport, bet_type=bet_type)
    pending = (
        db.query(BetRecord)
        .filter(BetRecord.clv_value.is_(None))
        .count()
    )

    point_bets = [b for b in bets if b.bet_type in POINT_BET_TYPES]
    ml_bets = [b for b in bets if b.bet_type == "moneyline"]

    by_bet_type = {}
    for kind in POINT_BET_TYPES + ("moneyline",):
        group = [b for b in bets if b.bet_type == kind]
        if group:
            by_bet_type[kind] = _clv_block(group)

    by_sport = {}
    for s in sorted({b.sport for b in bets if b.sport}):
        group = [b for b in bets if b.sport == s]
        by_sport[s] = {
            "points": _clv_block([b for b in group if b.bet_type in POINT_BET_TYPES]),
            "moneyline": _clv_block([b for b in group if b.bet_type == "moneyline"]),
        }

    headline = _clv_block(point_bets)
    summary = {
        "total_graded": len(bets),
        "pending": pending,
        "mean_clv": headline["mean_clv"],
        "median_clv": headline["median_clv"],
        "positive_count": headline["positive"],
        "negative_count": headline["negative"],
        "beat_close_rate": headline["beat_close_rate"],
        "moneyline": _clv_block(ml_bets),
        "by_bet_type": by_bet_type,
        "by_sport": by_sport,
        "filters": {"days": days, "sport": sport, "bet_type": bet_type},
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.debug("CLV summary: %d graded, %d pending", len(bets), pending)
    return summary


# ---------------------------------------------------------------------------
# calculate_clv_timeline
# ---------------------------------------------------------------------------

def calculate_clv_timeline(db: Session, days: int = 30) -> Dict:
    """Daily mean CLV and cumulative beat-close rate for points-based picks."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    bets = [b for b in _graded_bets(db, cutoff=cutoff) if b.bet_type in POINT_BET_TYPES]

    by_day: Dict[str, List[BetRecord]] = {}
    for b in bets:
        by_day.setdefault(b.created_at.date().isoformat(), []).append(b)

    timeline = []
    seen = beat = 0
    for day in sorted(by_day):
        values = [b.clv_value for b in by_day[day]]
        seen += len(values)
        beat += sum(1 for v in values if v > 0)
        timeline.append({
            "date": day,
            "bets": len(values),
            "mean_clv": _round(_mean(values)),
            "cumulative_beat_close_rate": round(beat / seen, 4),
        })

    return {"days": days, "timeline": timeline}
