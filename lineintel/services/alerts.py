"""
Edge alert gating, persistence and dispatch.

Public API:
  admit(alert, config)                  → bool   (severity floor + min confidence)
  persist_alerts(db, alerts)            → List[EdgeAlert]
  get_active_alerts(db, now, sport, types) → List[EdgeAlert]  (newest per event/type)
  dedupe_alerts(alerts, window)         → List[EdgeAlert]
  send_alert(alert, channels)           → int    (email / SMS / webhook, skips if not configured)
  run_edge_scan(sports)                 → Dict   (entry point for scheduler)

Detectors whose config has enabled=False are never called.  Alerts below
the configured severity or confidence are dropped before persistence;
alerts for a type with notify=False are stored but not sent.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lineintel.models import EdgeAlertRecord, SessionLocal
from lineintel.repository import LineRepository
from lineintel.services.edge_config import EdgeConfigStore, EdgeFeatureConfig, get_edge_config_store
from lineintel.services.edge_detectors import (
    STEAM_MAX_MINUTES,
    EdgeAlert,
    EdgeType,
    Severity,
    best_prices,
    detect_arbitrage,
    detect_rlm,
    detect_sharp_public_split,
    detect_steam,
    steam_window,
)
from lineintel.services.line_snapshots import fetch_by_sport, ingest_sports
from lineintel.services.odds import OddsAPIClient, ParsedEvent

logger = logging.getLogger(__name__)

#: Same event and type inside this window counts as a duplicate.
DEDUPE_WINDOW = timedelta(minutes=30)

#: Types with no expiry; a still-active predecessor suppresses repeats.
UNBOUNDED_DEDUPE_TYPES = frozenset({EdgeType.SHARP_PUBLIC})

#: Only splits captured this recently feed RLM / sharp-vs-public.
SPLIT_LOOKBACK = timedelta(hours=12)

WEBHOOK_TIMEOUT_S = 5


# ---------------------------------------------------------------------------
# Gating
# ---------------------------------------------------------------------------

def admit(alert: Optional[EdgeAlert], config: EdgeFeatureConfig) -> bool:
    if alert is None:
        return False
    if not config.admits(alert):
        logger.debug(
            "Dropped %s alert %s: severity=%s confidence=%.1f",
            alert.type.value, alert.id, alert.severity.value, alert.confidence,
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def to_record(alert: EdgeAlert) -> EdgeAlertRecord:
    return EdgeAlertRecord(
        id=alert.id,
        type=alert.type.value,
        event_id=alert.event_id,
        sport=alert.sport,
        severity=alert.severity.value,
        confidence=alert.confidence,
        expected_value=alert.expected_value,
        title=alert.title,
        description=alert.description,
        data=alert.data,
        created_at=alert.created_at,
        expires_at=alert.expires_at,
        notified=False,
    )


def from_record(record: EdgeAlertRecord) -> EdgeAlert:
    return EdgeAlert(
        id=record.id,
        type=EdgeType(record.type),
        event_id=record.event_id,
        sport=record.sport,
        severity=Severity(record.severity),
        confidence=record.confidence,
        title=record.title,
        description=record.description or "",
        data=record.data or {},
        created_at=record.created_at,
        expires_at=record.expires_at,
        expected_value=record.expected_value,
    )


def persist_alerts(db: Session, alerts: Iterable[EdgeAlert]) -> List[EdgeAlert]:
    """
    Insert each alert as its own row and commit per alert.  Returns the
    alerts that were stored.

    Alerts are never updated in place; a failed insert is rolled back,
    logged with the alert id and skipped.
    """
    repo = LineRepository(db)
    stored: List[EdgeAlert] = []
    for alert in alerts:
        try:
            repo.add_alert(to_record(alert))
            db.commit()
            stored.append(alert)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Could not persist alert %s: %s", alert.id, exc)
    return stored


def get_active_alerts(
    db: Session,
    now: Optional[datetime] = None,
    sport: Optional[str] = None,
    types: Optional[Sequence[str]] = None,
) -> List[EdgeAlert]:
    """
    Unexpired alerts, newest per (event_id, type), ordered by severity and
    then recency.  Expired rows stay in the table; they are only filtered.
    """
    now = now or datetime.utcnow()
    rows = LineRepository(db).unexpired_alerts(now, sport=sport, types=types)

    newest: Dict[tuple, EdgeAlertRecord] = {}
    for row in rows:
        key = (row.event_id, row.type)
        if key not in newest or row.created_at > newest[key].created_at:
            newest[key] = row

    alerts = [from_record(r) for r in newest.values()]
    alerts.sort(key=lambda a: (a.severity.rank, a.created_at), reverse=True)
    return alerts


def dedupe_alerts(
    alerts: Iterable[EdgeAlert],
    window: timedelta = DEDUPE_WINDOW,
    existing: Iterable[EdgeAlert] = (),
) -> List[EdgeAlert]:
    """
    Drop alerts whose (event_id, type) was already seen within ``window``
    of an earlier alert.  ``existing`` alerts count as seen but are never
    returned.

    Sharp-vs-public alerts never expire, so they are deduped against any
    earlier alert naming the same sharp side, however old.
    """
    last_seen: Dict[tuple, datetime] = {}
    for prior in existing:
        key = _dedupe_key(prior)
        if key not in last_seen or prior.created_at > last_seen[key]:
            last_seen[key] = prior.created_at

    kept: List[EdgeAlert] = []
    for alert in sorted(alerts, key=lambda a: a.created_at):
        key = _dedupe_key(alert)
        previous = last_seen.get(key)
        if previous is not None and (
            alert.type in UNBOUNDED_DEDUPE_TYPES or abs(alert.created_at - previous) <= window
        ):
            continue
        last_seen[key] = alert.created_at
        kept.append(alert)
    return kept


def _dedupe_key(alert: EdgeAlert) -> tuple:
    if alert.type in UNBOUNDED_DEDUPE_TYPES:
        return (alert.event_id, alert.type, alert.data.get("sharpSide"))
    return (alert.event_id, alert.type)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def alert_payload(alert: EdgeAlert) -> Dict:
    return {
        "id": alert.id,
        "type": alert.type.value,
        "eventId": alert.event_id,
        "sport": alert.sport,
        "severity": alert.severity.value,
        "confidence": alert.confidence,
        "expectedValue": alert.expected_value,
        "title": alert.title,
        "description": alert.description,
        "data": alert.data,
        "createdAt": alert.created_at.isoformat(),
        "expiresAt": alert.expires_at.isoformat() if alert.expires_at else None,
    }


def alert_channels() -> List[str]:
    raw = os.getenv("ALERT_CHANNELS", "email,sms,webhook")
    return [c.strip().lower() for c in raw.split(",") if c.strip()]


def send_alert(alert: EdgeAlert, channels: Optional[List[str]] = None) -> int:
    """
    Dispatch an alert over configured channels.  Returns how many channels
    accepted it.  Channels without credentials are skipped; a failing
    channel is logged and does not stop the others.
    """
    if channels is None:
        channels = alert_channels()

    sent = 0
    for channel in channels:
        try:
            if channel == "email":
                sent += _send_email(alert)
            elif channel == "sms":
                sent += _send_sms(alert)
            elif channel == "webhook":
                sent += _send_webhook(alert)
            else:
                logger.warning("Unknown alert channel %r", channel)
        except Exception as exc:
            logger.error("Alert dispatch failed (%s) for %s: %s", channel, alert.id, exc)
    return sent


def _send_email(alert: EdgeAlert) -> bool:
    sg_key = os.getenv("SENDGRID_API_KEY")
    to_email = os.getenv("ALERT_EMAIL")
    if not sg_key or not to_email:
        logger.debug("Email alerts not configured, skipping")
        return False

    import sendgrid
    from sendgrid.helpers.mail import Mail

    body = (
        f"Edge Type:   {alert.type.value}\n"
        f"Severity:    {alert.severity.value}\n"
        f"Confidence:  {alert.confidence:.1f}\n"
        f"Event:       {alert.event_id} ({alert.sport})\n\n"
        f"{alert.title}\n"
        f"{alert.description}\n\n"
        f"Expected value: {alert.expected_value}\n"
        f"Expires at:     {alert.expires_at.isoformat() if alert.expires_at else 'n/a'}\n"
        f"Generated at:   {alert.created_at.isoformat()}"
    )

    msg = Mail(
        from_email=os.getenv("ALERT_FROM_EMAIL", "alerts@lineintel.local"),
        to_emails=to_email,
        subject=f"[LineIntel] {alert.severity.value.upper()}: {alert.title}",
        plain_text_content=body,
    )
    sendgrid.SendGridAPIClient(api_key=sg_key).send(msg)
    logger.info("Alert email sent: %s", alert.id)
    return True


def _send_sms(alert: EdgeAlert) -> bool:
    sid = os.getenv("TWILIO_ACCOUNT_SID")
    tok = os.getenv("TWILIO_AUTH_TOKEN")
    frm = os.getenv("TWILIO_FROM_NUMBER")
    to = os.getenv("TWILIO_TO_NUMBER")
    if not all([sid, tok, frm, to]):
        logger.debug("SMS alerts not configured, skipping")
        return False

    from twilio.rest import Client

    body = f"{alert.severity.value.upper()} {alert.title}: {alert.description}"
    Client(sid, tok).messages.create(body=body[:160], from_=frm, to=to)
    logger.info("Alert SMS sent: %s", alert.id)
    return True


def _send_webhook(alert: EdgeAlert) -> bool:
    url = os.getenv("ALERT_WEBHOOK_URL")
    if not url:
        logger.debug("Webhook alerts not configured, skipping")
        return False
    response = requests.post(url, json=alert_payload(alert), timeout=WEBHOOK_TIMEOUT_S)
    response.raise_for_status()
    logger.info("Alert webhook delivered: %s", alert.id)
    return True


# ---------------------------------------------------------------------------
# Edge scan
# ---------------------------------------------------------------------------

def scan_arbitrage(events: Iterable[ParsedEvent], now: datetime) -> List[EdgeAlert]:
    alerts = []
    for event in events:
        prices = best_prices(event.books)
        if prices is None:
            continue
        alert = detect_arbitrage(
            event.event_id, event.sport, event.home_team, event.away_team,
            prices["home_book"], prices["home_odds"],
            prices["away_book"], prices["away_odds"],
            now=now,
        )
        if alert is not None:
            alerts.append(alert)
    return alerts


def scan_steam(repo: LineRepository, sport: str, now: datetime) -> List[EdgeAlert]:
    since = now - timedelta(minutes=STEAM_MAX_MINUTES)
    alerts = []
    for event_id in repo.active_event_ids(sport, since):
        snapshots = repo.snapshots_since(event_id, since)
        if not snapshots:
            continue
        window = steam_window(
            snapshots,
            baselines=repo.book_lines_before(event_id, since),
            window_start=since,
        )
        if window is None:
            continue
        alert = detect_steam(
            event_id, sport, snapshots[0].home_team, snapshots[0].away_team,
            window.line_before, window.line_after,
            window.minutes_elapsed, window.books_moving,
            now=now,
        )
        if alert is not None:
            alerts.append(alert)
    return alerts


def scan_splits(
    repo: LineRepository,
    sport: str,
    now: datetime,
    rlm: bool = True,
    sharp_public: bool = True,
) -> List[EdgeAlert]:
    """RLM and sharp-vs-public from the newest split row per event."""
    alerts = []
    for split in repo.latest_splits(sport, now - SPLIT_LOOKBACK):
        latest = repo.latest_snapshot(split.event_id)
        home_team = split.home_team or (latest.home_team if latest is not None else None)
        away_team = split.away_team or (latest.away_team if latest is not None else None)
        if rlm:
            opening = repo.opening_snapshot(split.event_id)
            if (
                opening is not None and latest is not None
                and opening.spread_home is not None and latest.spread_home is not None
            ):
                alert = detect_rlm(
                    split.event_id, sport, home_team, away_team,
                    opening.spread_home, latest.spread_home, split.public_home_pct,
                    now=now,
                )
                if alert is not None:
                    alerts.append(alert)
        if sharp_public and split.money_home_pct is not None:
            alert = detect_sharp_public_split(
                split.event_id, sport, home_team, away_team,
                split.public_home_pct, split.money_home_pct,
                now=now,
            )
            if alert is not None:
                alerts.append(alert)
    return alerts


def run_edge_scan(
    sports: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
    client: Optional[OddsAPIClient] = None,
    db: Optional[Session] = None,
    config_store: Optional[EdgeConfigStore] = None,
) -> Dict:
    """
    Run every enabled detector for each sport, gate, dedupe, persist and
    notify.  Returns a summary with per-type counts.
    """
    sports = list(sports) if sports is not None else ingest_sports()
    now = now or datetime.utcnow()
    config = (config_store or get_edge_config_store()).snapshot()
    enabled = {t for t, cfg in config.items() if cfg.enabled}
    logger.info("Starting edge scan for %s (enabled: %s)", ",".join(sports), sorted(t.value for t in enabled))

    errors: List[str] = []
    candidates: List[EdgeAlert] = []

    owns_session = db is None
    db = db or SessionLocal()
    repo = LineRepository(db)

    try:
        if EdgeType.ARBITRAGE in enabled:
            if client is None:
                try:
                    client = OddsAPIClient()
                except ValueError as exc:
                    logger.error("Arbitrage scan skipped: %s", exc)
                    errors.append(str(exc))
            if client is not None:
                for events in fetch_by_sport(client, sports).values():
                    candidates.extend(scan_arbitrage(events, now))

        for sport in sports:
            try:
                if EdgeType.STEAM in enabled:
                    candidates.extend(scan_steam(repo, sport, now))
                if EdgeType.RLM in enabled or EdgeType.SHARP_PUBLIC in enabled:
                    candidates.extend(
                        scan_splits(
                            repo, sport, now,
                            rlm=EdgeType.RLM in enabled,
                            sharp_public=EdgeType.SHARP_PUBLIC in enabled,
                        )
                    )
            except SQLAlchemyError as exc:
                db.rollback()
                errors.append(f"{sport}: {exc}")
                logger.error("Edge scan read failed for %s: %s", sport, exc)

        admitted = [a for a in candidates if admit(a, config[a.type])]
        recent = get_active_alerts(db, now=now)
        stored = persist_alerts(db, dedupe_alerts(admitted, existing=recent))

        sent_ids = [
            alert.id
            for alert in stored
            if config[alert.type].notify and send_alert(alert) > 0
        ]
        if sent_ids:
            try:
                repo.mark_alerts_notified(sent_ids)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                errors.append(f"notified flags: {exc}")
                logger.error("Could not flag notified alerts %s: %s", sent_ids, exc)
    finally:
        if owns_session:
            db.close()

    by_type: Dict[str, int] = {}
    for alert in stored:
        by_type[alert.type.value] = by_type.get(alert.type.value, 0) + 1

    summary = {
        "candidates": len(candidates),
        "admitted": len(admitted),
        "persisted": len(stored),
        "notified": len(sent_ids),
        "by_type": by_type,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("Edge scan done: %s", summary)
    return summary
