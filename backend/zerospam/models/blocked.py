from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from zerospam.core.db import Base
from zerospam.models.mixins import TimestampMixin


class BlockEntry(TimestampMixin, Base):
    __tablename__ = "zerospam_blocked"
    __table_args__ = (
        # Upserts are keyed on the exact match fields. NULLs are distinct in
        # unique constraints, so IP rows and key rows never collide.
        UniqueConstraint("user_ip", name="uq_zerospam_blocked_user_ip"),
        UniqueConstraint("key_type", "blocked_key", name="uq_zerospam_blocked_key"),
        Index("ix_zerospam_blocked_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    match_type = Column(String, nullable=False)
    user_ip = Column(String, nullable=True, index=True)
    key_type = Column(String, nullable=True)
    blocked_key = Column(String, nullable=True)
    blocked_type = Column(String, nullable=False)
    start_block = Column(DateTime, nullable=False)
    end_block = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=True)
    source = Column(String, nullable=False, default="manual")

    def describe(self) -> str:
        if self.match_type == "ip":
            return f"ip={self.user_ip}"
        return f"{self.key_type}={self.blocked_key}"
