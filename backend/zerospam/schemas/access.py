from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class AccessCheckRequest(BaseModel):
    # Defaults to the calling client's address when omitted.
    ip: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class VerdictRead(BaseModel):
    detector: str
    blocked: bool
    whitelisted: bool = False
    reason: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class DecisionRead(BaseModel):
    ip: str
    timestamp: datetime
    blocked: bool
    triggering_detector: Optional[str] = None
    whitelisted: bool = False
    cancelled: bool = False
    reasons: list[str] = Field(default_factory=list)
    verdicts: list[VerdictRead] = Field(default_factory=list)
