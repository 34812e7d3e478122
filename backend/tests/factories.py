from datetime import timedelta
from threading import Event

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import zerospam.core.db as db_module
import zerospam.models  # noqa: F401
from zerospam.core.time import utcnow
from zerospam.crud.blocked import add_or_update_blocked
from zerospam.detectors import Detector, DetectorVerdict, VisitorEvent


def setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    db_module.Base.metadata.drop_all(bind=engine)
    db_module.Base.metadata.create_all(bind=engine)
    return SessionLocal


def make_event(ip: str = "203.0.113.5", **metadata) -> VisitorEvent:
    return VisitorEvent(ip=ip, metadata=metadata)


def block_ip(db, ip: str, *, blocked_type: str = "permanent", minutes: int | None = None, reason=None):
    now = utcnow()
    end = now + timedelta(minutes=minutes) if minutes is not None else None
    return add_or_update_blocked(
        db,
        user_ip=ip,
        blocked_type=blocked_type,
        start_block=now - timedelta(minutes=1),
        end_block=end,
        reason=reason,
    )


class StaticDetector(Detector):
    """Returns a fixed verdict; counts how often it ran."""

    def __init__(self, detector_id: str, *, blocked: bool = False, whitelisted: bool = False, veto: bool = False):
        self.id = detector_id
        self.veto = veto
        self._blocked = blocked
        self._whitelisted = whitelisted
        self.calls = 0

    def evaluate(self, visitor_ip, event_metadata, settings):
        self.calls += 1
        return DetectorVerdict(
            detector=self.id,
            blocked=self._blocked,
            whitelisted=self._whitelisted,
            reason=f"{self.id} says block" if self._blocked else None,
        )


class RaisingDetector(Detector):
    def __init__(self, detector_id: str = "broken"):
        self.id = detector_id

    def evaluate(self, visitor_ip, event_metadata, settings):
        raise RuntimeError("upstream exploded")


class SlowDetector(Detector):
    """Blocks until released, then reports a block."""

    def __init__(self, detector_id: str = "slow", *, timeout: float = 0.1):
        self.id = detector_id
        self._timeout = timeout
        self.release = Event()

    def timeout(self, settings):
        return self._timeout

    def evaluate(self, visitor_ip, event_metadata, settings):
        self.release.wait(5)
        return DetectorVerdict(detector=self.id, blocked=True, reason="too late")


class RecordingLogWriter:
    def __init__(self):
        self.entries = []

    def submit(self, event, decision):
        self.entries.append((event, decision))
