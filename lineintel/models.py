"""
Database models for the line-intelligence pipeline
SQLAlchemy ORM (PostgreSQL in production, SQLite for local runs and tests)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    JSON,
    Text,
    Date,
    Enum,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
import os
from dotenv import load_dotenv

from lineintel.core.outcomes import SpreadResult, TotalResult

# Load .env before DATABASE_URL is read
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lineintel.db")

# Scheduler jobs run on worker threads; SQLite needs the same-thread check off.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

#: Book label for the cross-book consensus series.  The closing resolver and
#: the CLV grader read only this series; per-book rows feed steam detection.
CONSENSUS_BOOK = "consensus"

#: EventRecord.source values
SOURCE_RESULTS = "results"
SOURCE_ODDS_API = "odds_api"


def _str_enum(enum_cls, name):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda e: [m.value for m in e],
    )


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class EventRecord(Base):
    """
    One sporting event as known to one source.

    Records from different sources are never merged; the identity matcher
    pairs them at query time.  Odds-source rows carry the consensus line in
    point_spread / over_under / moneyline_*.
    """

    __tablename__ = "event_records"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(32), nullable=False, index=True)   # "results" | "odds_api"
    source_id = Column(String, nullable=False)
    sport = Column(String(16), nullable=False, index=True)
    season = Column(Integer, index=True)

    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)
    event_date = Column(Date, nullable=False, index=True)      # calendar day, source-local
    commence_time = Column(DateTime)

    # Final scores (null until complete)
    home_score = Column(Integer)
    away_score = Column(Integer)
    completed = Column(Boolean, default=False)

    # Line as recorded by this source (home perspective)
    point_spread = Column(Float)
    over_under = Column(Float)
    moneyline_home = Column(Integer)
    moneyline_away = Column(Integer)

    # Reconciled closing numbers and derived results (written by backfill)
    close_spread = Column(Float)
    close_total = Column(Float)
    spread_result = Column(_str_enum(SpreadResult, "spread_result"))
    total_result = Column(_str_enum(TotalResult, "total_result"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("source", "source_id", name="_event_source_uc"),)


class LineSnapshot(Base):
    """
    One observation of a market for an event at a point in time.

    Append-only.  is_closing is the only mutable field and is set at most
    once per event by the closing-line resolver.
    """

    __tablename__ = "line_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, nullable=False, index=True)
    sport = Column(String(16), index=True)
    book = Column(String(64), nullable=False, default=CONSENSUS_BOOK)
    home_team = Column(String)
    away_team = Column(String)
    captured_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    spread_home = Column(Float)     # Negative = home favourite
    spread_away = Column(Float)     # Only when the feed posts an away-specific number
    total_line = Column(Float)
    moneyline_home = Column(Integer)
    moneyline_away = Column(Integer)

    is_opening = Column(Boolean, default=False, nullable=False)
    is_closing = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_line_snapshots_event_book_ts", "event_id", "book", "captured_at"),
        # At most one closing snapshot per event, enforced by the store as well.
        Index(
            "uq_line_snapshots_one_closing",
            "event_id",
            unique=True,
            sqlite_where=text("is_closing = 1"),
            postgresql_where=text("is_closing = true"),
        ),
    )


class BetRecord(Base):
    """A recorded wager or hypothetical pick."""

    __tablename__ = "bet_records"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, nullable=False, index=True)
    sport = Column(String(16), index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    bet_type = Column(String(16), nullable=False)     # "spread" | "total" | "moneyline"
    side = Column(String(8), nullable=False)          # "home" | "away" | "over" | "under"
    line_at_pick = Column(Float)                      # Picked side's perspective
    odds_at_pick = Column(Integer)                    # American odds

    # Settlement (filled after the game)
    outcome = Column(String(8))                       # "win" | "loss" | "push"
    settled_at = Column(DateTime)

    # CLV tracking (filled once a closing snapshot exists)
    clv_value = Column(Float)           # points, or implied-prob pct points for moneyline
    closing_line_used = Column(Float)
    opening_line = Column(Float)        # reporting only
    beat_close = Column(Boolean)
    graded_at = Column(DateTime)

    notes = Column(Text)


class BettingSplit(Base):
    """Public ticket and money percentages for an event (scraper-produced)."""

    __tablename__ = "betting_splits"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, nullable=False, index=True)
    sport = Column(String(16), index=True)
    home_team = Column(String)
    away_team = Column(String)
    public_home_pct = Column(Float, nullable=False)   # % of tickets on home
    money_home_pct = Column(Float)                    # % of handle on home
    captured_at = Column(DateTime, default=datetime.utcnow, index=True)


class EdgeAlertRecord(Base):
    """Persisted edge alerts.  Rows are immutable; newer rows supersede older."""

    __tablename__ = "edge_alerts"

    id = Column(String, primary_key=True)
    type = Column(String(16), nullable=False, index=True)
    event_id = Column(String, nullable=False, index=True)
    sport = Column(String(16), index=True)
    severity = Column(String(8), nullable=False)
    confidence = Column(Float, nullable=False)
    expected_value = Column(Float)
    title = Column(String, nullable=False)
    description = Column(Text)
    data = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, index=True)
    notified = Column(Boolean, default=False)


class DataFetch(Base):
    """Track provider fetches for monitoring feed health and quota."""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # "odds_api_odds", "odds_api_scores", ...
    sport = Column(String(16))
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    quota_remaining = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)


# Create all tables
def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
