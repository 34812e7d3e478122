from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from zerospam.core.db import get_db
from zerospam.crud.log import detections_by_country, detections_by_day, query_log, top_ips
from zerospam.schemas.log import LogEntryList, LogReports

router = APIRouter(prefix="/log", tags=["log"])


@router.get("", response_model=LogEntryList)
def read_log(
    ip: Optional[str] = Query(default=None),
    blocked: Optional[bool] = Query(default=None),
    detector: Optional[str] = Query(default=None),
    since: Optional[datetime] = Query(default=None),
    until: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    items, total = query_log(
        db,
        ip=ip,
        blocked=blocked,
        detector=detector,
        since=since,
        until=until,
        page=page,
        page_size=page_size,
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# GET /log/reports
#
# Aggregates behind the dashboard charts: most-blocked IPs, detections per
# country and a zero-filled daily history.
@router.get("/reports", response_model=LogReports)
def read_reports(
    limit: int = Query(default=10, ge=1, le=100),
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db),
):
    return {
        "top_ips": [{"key": ip, "count": count} for ip, count in top_ips(db, limit=limit)],
        "countries": [{"key": code, "count": count} for code, count in detections_by_country(db)],
        "history": [{"key": day, "count": count} for day, count in detections_by_day(db, days=days)],
    }
