from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zerospam.core.errors import StoreWriteError
from zerospam.core.ip import parse_ip
from zerospam.core.time import to_naive_utc, utcnow
from zerospam.models.log_entries import EventLogEntry

if TYPE_CHECKING:
    from zerospam.access.engine import Decision
    from zerospam.detectors.base import VisitorEvent


def _country_code(event: "VisitorEvent", decision: "Decision") -> str | None:
    code = event.metadata.get("country_code")
    if code:
        return code.upper()
    for verdict in decision.verdicts:
        value = verdict.details.get("country_code")
        if value:
            return str(value).upper()
    return None


def append_log_entry(db: Session, event: "VisitorEvent", decision: "Decision") -> EventLogEntry:
    entry = EventLogEntry(
        visitor_ip=event.ip,
        timestamp=event.timestamp,
        blocked=decision.blocked,
        triggering_detector=decision.triggering_detector,
        country_code=_country_code(event, decision),
        details={
            "whitelisted": decision.whitelisted,
            "cancelled": decision.cancelled,
            "metadata": dict(event.metadata),
            "verdicts": [verdict.to_dict() for verdict in decision.verdicts],
        },
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreWriteError("Failed to append event log entry") from exc
    db.refresh(entry)
    return entry


def query_log(
    db: Session,
    *,
    ip: str | None = None,
    blocked: bool | None = None,
    detector: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[EventLogEntry], int]:
    query = db.query(EventLogEntry)
    if ip:
        normalized = parse_ip(ip)
        if normalized:
            query = query.filter(EventLogEntry.visitor_ip == normalized)
        else:
            query = query.filter(EventLogEntry.visitor_ip.like(f"%{ip.strip()}%"))
    if blocked is not None:
        query = query.filter(EventLogEntry.blocked.is_(blocked))
    if detector:
        query = query.filter(EventLogEntry.triggering_detector == detector)
    if since is not None:
        query = query.filter(EventLogEntry.timestamp >= to_naive_utc(since))
    if until is not None:
        query = query.filter(EventLogEntry.timestamp <= to_naive_utc(until))
    total = query.count()
    page = max(1, page)
    page_size = max(1, page_size)
    items = (
        query.order_by(EventLogEntry.timestamp.desc(), EventLogEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def top_ips(db: Session, *, limit: int = 10) -> list[tuple[str, int]]:
    """Most detections by IP address."""
    rows = (
        db.query(EventLogEntry.visitor_ip, func.count(EventLogEntry.id).label("count"))
        .filter(EventLogEntry.blocked.is_(True))
        .group_by(EventLogEntry.visitor_ip)
        .order_by(func.count(EventLogEntry.id).desc(), EventLogEntry.visitor_ip.asc())
        .limit(limit)
        .all()
    )
    return [(row[0], int(row[1])) for row in rows]


def detections_by_country(db: Session) -> list[tuple[str, int]]:
    rows = (
        db.query(EventLogEntry.country_code, func.count(EventLogEntry.id))
        .filter(EventLogEntry.blocked.is_(True), EventLogEntry.country_code.isnot(None))
        .group_by(EventLogEntry.country_code)
        .order_by(func.count(EventLogEntry.id).desc(), EventLogEntry.country_code.asc())
        .all()
    )
    return [(row[0], int(row[1])) for row in rows]


def detections_by_day(db: Session, *, days: int = 30, now: datetime | None = None) -> list[tuple[str, int]]:
    """Blocked events per UTC day over the window, oldest first, zero-filled."""
    now = to_naive_utc(now) or utcnow()
    start_day = (now - timedelta(days=max(1, days) - 1)).date()
    rows = (
        db.query(EventLogEntry.timestamp)
        .filter(
            EventLogEntry.blocked.is_(True),
            EventLogEntry.timestamp >= datetime.combine(start_day, datetime.min.time()),
        )
        .all()
    )
    counts: dict[str, int] = {}
    for (timestamp,) in rows:
        day = timestamp.date().isoformat()
        counts[day] = counts.get(day, 0) + 1
    history = []
    for offset in range(max(1, days)):
        day = (start_day + timedelta(days=offset)).isoformat()
        history.append((day, counts.get(day, 0)))
    return history
