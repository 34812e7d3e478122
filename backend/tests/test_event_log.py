import os
from datetime import timedelta
from threading import Event

from sqlalchemy.exc import OperationalError

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from zerospam.access.engine import combine_verdicts, decide
from zerospam.access.log_writer import EventLogWriter
from zerospam.core.metrics import EVENT_LOG_WRITE_FAILURES_TOTAL
from zerospam.core.time import utcnow
from zerospam.crud.log import append_log_entry, detections_by_country, detections_by_day, query_log, top_ips
from zerospam.crud.settings import build_snapshot
from zerospam.detectors import DetectorVerdict, VisitorEvent
from zerospam.models.log_entries import EventLogEntry
from tests.factories import StaticDetector, make_event, setup_db


def _log(db, ip, *, blocked, country=None, detector="blocklist", when=None):
    event = VisitorEvent(ip=ip, timestamp=when or utcnow(), metadata={"country_code": country} if country else {})
    verdicts = [DetectorVerdict(detector=detector, blocked=blocked, reason="test" if blocked else None)]
    return append_log_entry(db, event, combine_verdicts(event, verdicts))


def test_append_and_query_log(tmp_path):
    SessionLocal = setup_db(f"sqlite:///{tmp_path / 'log.db'}")
    with SessionLocal() as db:
        entry = _log(db, "203.0.113.5", blocked=True, country="us")
        assert entry.triggering_detector == "blocklist"
        assert entry.country_code == "US"
        assert entry.details["verdicts"][0]["reason"] == "test"
        _log(db, "198.51.100.1", blocked=False)

        items, total = query_log(db)
        assert total == 2
        assert items[0].visitor_ip == "198.51.100.1"
        items, total = query_log(db, blocked=True)
        assert total == 1 and items[0].visitor_ip == "203.0.113.5"
        items, total = query_log(db, ip="203.0.113.5")
        assert total == 1
        items, total = query_log(db, detector="geo")
        assert total == 0


def test_reports(tmp_path):
    SessionLocal = setup_db(f"sqlite:///{tmp_path / 'reports.db'}")
    now = utcnow()
    with SessionLocal() as db:
        for _ in range(3):
            _log(db, "203.0.113.5", blocked=True, country="US", when=now)
        _log(db, "198.51.100.1", blocked=True, country="DE", when=now - timedelta(days=1))
        _log(db, "198.51.100.2", blocked=False, country="FR", when=now)

        assert top_ips(db, limit=1) == [("203.0.113.5", 3)]
        assert detections_by_country(db) == [("US", 3), ("DE", 1)]
        history = detections_by_day(db, days=3, now=now)
        assert len(history) == 3
        assert history[-1] == (now.date().isoformat(), 3)
        assert history[-2] == ((now - timedelta(days=1)).date().isoformat(), 1)
        assert history[0][1] == 0


def test_log_writer_failure_does_not_change_decision(tmp_path):
    def broken_session():
        raise OperationalError("INSERT", {}, Exception("db down"))

    writer = EventLogWriter(broken_session, asynchronous=False)
    decision = decide(
        make_event(),
        detectors=[StaticDetector("blocklist", blocked=True)],
        settings=build_snapshot(),
        log_writer=writer,
    )
    assert decision.blocked is True
    assert decision.triggering_detector == "blocklist"


def test_async_log_writer_flushes(tmp_path):
    SessionLocal = setup_db(f"sqlite:///{tmp_path / 'async_log.db'}")
    writer = EventLogWriter(asynchronous=True)
    try:
        decide(
            make_event("203.0.113.9"),
            detectors=[StaticDetector("allow")],
            settings=build_snapshot(),
            log_writer=writer,
        )
        writer.flush(timeout=5)
    finally:
        writer.shutdown()
    with SessionLocal() as db:
        rows = db.query(EventLogEntry).all()
        assert len(rows) == 1
        assert rows[0].visitor_ip == "203.0.113.9"
        assert rows[0].blocked is False


def test_async_log_writer_drops_writes_past_backlog_limit():
    release = Event()

    def stalled_session():
        release.wait(5)
        raise OperationalError("INSERT", {}, Exception("db down"))

    writer = EventLogWriter(stalled_session, asynchronous=True, max_pending=1)
    decision = combine_verdicts(make_event(), [])
    try:
        assert writer.submit(make_event(), decision) is not None
        before = EVENT_LOG_WRITE_FAILURES_TOTAL._value.get()
        assert writer.submit(make_event(), decision) is None
        assert EVENT_LOG_WRITE_FAILURES_TOTAL._value.get() == before + 1
    finally:
        release.set()
        writer.flush(timeout=5)
        writer.shutdown()
