from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class LogEntryRead(BaseModel):
    id: int
    visitor_ip: str
    timestamp: datetime
    blocked: bool
    triggering_detector: Optional[str] = None
    country_code: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    class Config:
        from_attributes = True


class LogEntryList(BaseModel):
    items: list[LogEntryRead]
    total: int
    page: int
    page_size: int


class CountRow(BaseModel):
    key: str
    count: int


class LogReports(BaseModel):
    top_ips: list[CountRow]
    countries: list[CountRow]
    history: list[CountRow]
