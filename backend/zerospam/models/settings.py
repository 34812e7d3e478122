from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from zerospam.core.db import Base
from zerospam.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class DetectorSetting(Base):
    __tablename__ = "zerospam_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, unique=True, index=True)
    value = Column(JSON_TYPE, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
