from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB

from zerospam.core.db import Base


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class EventLogEntry(Base):
    __tablename__ = "zerospam_log"
    __table_args__ = (
        Index("ix_zerospam_log_ip_timestamp", "visitor_ip", "timestamp"),
        Index("ix_zerospam_log_blocked_timestamp", "blocked", "timestamp"),
    )

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        index=True,
        autoincrement=True,
    )
    visitor_ip = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    blocked = Column(Boolean, nullable=False, default=False)
    triggering_detector = Column(String, nullable=True, index=True)
    country_code = Column(String, nullable=True)
    details = Column(JSON_TYPE, nullable=True)
