"""
FastAPI application for the line-intelligence pipeline
Includes REST API, scheduled jobs, and monitoring
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging
import os
import time

from apscheduler.triggers.interval import IntervalTrigger

from lineintel.models import get_db, BetRecord
from lineintel.auth import verify_api_key, verify_admin_api_key
from lineintel.services.alerts import get_active_alerts, run_edge_scan
from lineintel.services.backfill import run_nightly_backfill
from lineintel.services.bet_tracker import grade_clv, log_bet, run_clv_pipeline, update_all_scores
from lineintel.services.closing_line import resolve_closing_lines
from lineintel.services.edge_config import get_edge_config_store
from lineintel.services.line_snapshots import capture_line_snapshots
from lineintel.services.performance import calculate_clv_summary, calculate_clv_timeline
from lineintel.schemas import (
    ActiveAlertsResponse,
    BetCreate,
    BetResponse,
    CLVSummaryResponse,
    EdgeAlertResponse,
    JobRunResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()

# Jobs that can be run on demand from /admin/jobs/{job}
JOBS = {
    "snapshots": capture_line_snapshots,
    "edge-scan": run_edge_scan,
    "scores": update_all_scores,
    "closing-lines": resolve_closing_lines,
    "grade-clv": grade_clv,
    "clv-pipeline": run_clv_pipeline,
    "backfill": run_nightly_backfill,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting line-intelligence service")

    snapshot_minutes = int(os.getenv("SNAPSHOT_INTERVAL_MIN", "30"))
    edge_minutes = int(os.getenv("EDGE_SCAN_INTERVAL_MIN", "5"))
    clv_hours = int(os.getenv("CLV_GRADE_HOURS", "8"))
    nightly_hour = int(os.getenv("NIGHTLY_CRON_HOUR", "4"))
    timezone = os.getenv("NIGHTLY_CRON_TIMEZONE", "America/New_York")

    # Line snapshots every 30 minutes
    scheduler.add_job(
        _snapshot_job,
        IntervalTrigger(minutes=snapshot_minutes),
        id="capture_line_snapshots",
        name="Capture Line Snapshots",
        replace_existing=True,
    )

    # Edge detectors every 5 minutes
    scheduler.add_job(
        _edge_scan_job,
        IntervalTrigger(minutes=edge_minutes),
        id="edge_scan",
        name="Edge Signal Scan",
        replace_existing=True,
    )

    # Scores and bet settlement every 2 hours
    scheduler.add_job(
        _update_scores_job,
        IntervalTrigger(hours=2),
        id="update_scores",
        name="Update Scores and Settle Bets",
        replace_existing=True,
    )

    # Closing-line resolution + CLV grading every 8 hours
    scheduler.add_job(
        _clv_pipeline_job,
        IntervalTrigger(hours=clv_hours),
        id="clv_pipeline",
        name="Resolve Closing Lines and Grade CLV",
        replace_existing=True,
    )

    # Historical import + closing-odds backfill nightly
    scheduler.add_job(
        _nightly_backfill_job,
        CronTrigger(hour=nightly_hour, minute=0, timezone=timezone),
        id="nightly_backfill",
        name="Nightly Closing-Odds Backfill",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: snapshots every %dmin, edge scan every %dmin, scores every 2h, "
        "CLV every %dh, backfill@%02d:00 %s",
        snapshot_minutes, edge_minutes, clv_hours, nightly_hour, timezone,
    )

    yield

    logger.info("Shutting down line-intelligence service")
    scheduler.shutdown()


app = FastAPI(
    title="LineIntel",
    description="Closing-line resolution, CLV grading and edge alerts",
    version="1.0",
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOBS
# ============================================================================

def _snapshot_job():
    try:
        results = capture_line_snapshots()
        logger.info("Line snapshots: %d written", results["snapshots_written"])
    except Exception as exc:
        logger.error("Snapshot job failed: %s", exc, exc_info=True)


def _edge_scan_job():
    try:
        results = run_edge_scan()
        if results["persisted"]:
            logger.info("Edge scan: %d new alerts %s", results["persisted"], results["by_type"])
    except Exception as exc:
        logger.error("Edge scan job failed: %s", exc, exc_info=True)


def _update_scores_job():
    """Settle completed game bets; runs every 2 hours."""
    try:
        results = update_all_scores()
        logger.info("Score update: %s", results)
    except Exception as exc:
        logger.error("Score update job failed: %s", exc, exc_info=True)


def _clv_pipeline_job():
    try:
        results = run_clv_pipeline()
        logger.info(
            "CLV pipeline: %d closing lines marked, %d bets graded",
            results["closing"]["closing_marked"], results["grading"]["graded"],
        )
    except Exception as exc:
        logger.error("CLV pipeline job failed: %s", exc, exc_info=True)


def _nightly_backfill_job():
    logger.info("Starting nightly backfill job")
    try:
        results = run_nightly_backfill()
        logger.info("Nightly backfill complete: %s", results)
    except Exception as exc:
        logger.error("Nightly backfill job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "app": "LineIntel",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - ALERTS
# ============================================================================

@app.get("/api/alerts/active", response_model=ActiveAlertsResponse)
async def active_alerts(
    sport: Optional[str] = None,
    types: Optional[List[str]] = Query(default=None),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Unexpired alerts, newest per event and type, most severe first."""
    now = datetime.utcnow()
    alerts = get_active_alerts(db, now=now, sport=sport.lower() if sport else None, types=types)
    return ActiveAlertsResponse(
        as_of=now,
        count=len(alerts),
        alerts=[EdgeAlertResponse.model_validate(a) for a in alerts],
    )


@app.get("/api/edge-config")
async def edge_config(user: str = Depends(verify_api_key)):
    """Current per-detector gating, including any hot-reloaded overrides."""
    config = get_edge_config_store().snapshot()
    return {t.value: cfg.model_dump(by_alias=True) for t, cfg in config.items()}


# ============================================================================
# AUTHENTICATED ENDPOINTS - BETS AND CLV
# ============================================================================

@app.post("/api/bets", response_model=BetResponse, status_code=201)
async def create_bet(
    bet: BetCreate,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Log a pick.  Outcome and CLV are filled in later by the grading jobs."""
    try:
        record = log_bet(db, bet.model_dump())
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not log bet for event %s: %s", bet.event_id, exc)
        raise HTTPException(status_code=500, detail="Could not store bet")
    return record


@app.get("/api/bets", response_model=List[BetResponse])
async def list_bets(
    limit: int = Query(default=50, ge=1, le=500),
    sport: Optional[str] = None,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    q = db.query(BetRecord)
    if sport:
        q = q.filter(BetRecord.sport == sport.lower())
    return q.order_by(BetRecord.created_at.desc()).limit(limit).all()


@app.get("/api/clv/summary", response_model=CLVSummaryResponse)
async def clv_summary(
    days: Optional[int] = Query(default=None, ge=1, le=3650),
    sport: Optional[str] = None,
    bet_type: Optional[str] = Query(default=None, pattern="^(spread|total|moneyline)$"),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return calculate_clv_summary(db, days=days, sport=sport, bet_type=bet_type)


@app.get("/api/clv/timeline")
async def clv_timeline(
    days: int = Query(default=30, ge=1, le=365),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    return calculate_clv_timeline(db, days=days)


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/jobs/{job}", response_model=JobRunResponse)
def run_job(job: str, user: str = Depends(verify_admin_api_key)):
    """Run a batch job on demand (admin only).  Jobs are idempotent."""
    func = JOBS.get(job)
    if func is None:
        raise HTTPException(status_code=404, detail=f"Unknown job {job!r}; expected one of {sorted(JOBS)}")

    logger.info("Manual %s run triggered by %s", job, user)
    started = time.monotonic()
    try:
        result = func()
    except Exception as exc:
        logger.error("Manual %s run failed: %s", job, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc))

    return JobRunResponse(
        message=f"{job} complete",
        job=job,
        duration_seconds=round(time.monotonic() - started, 2),
        result=result,
    )


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_api_key)):
    """Get scheduler job status"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": scheduler.running,
        "jobs": jobs,
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
