import json
import logging
import os

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from zerospam.main import app  # noqa: E402
from zerospam.core.logging import JsonLogFormatter  # noqa: E402


def test_logging_includes_request_id_and_status(caplog):
    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        response = client.get("/ping", headers={"X-Request-ID": "req-123"})
        assert response.status_code == 200
        assert response.headers.get("X-Request-ID") == "req-123"

        records = [rec for rec in caplog.records if rec.getMessage() == "request.completed"]
        assert records, "Expected a structured request log entry"
        entry = records[-1]
        assert getattr(entry, "request_id", None) == "req-123"
        assert getattr(entry, "status_code", None) == 200
        assert getattr(entry, "route", None) == "/ping"
    finally:
        logger.removeHandler(caplog.handler)


def test_json_formatter_emits_extra_fields():
    record = logging.LogRecord("zerospam", logging.WARNING, __file__, 1, "detector.timeout", None, None)
    record.detector = "geo"
    record.visitor_ip = "203.0.113.5"
    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["message"] == "detector.timeout"
    assert payload["level"] == "WARNING"
    assert payload["detector"] == "geo"
    assert payload["visitor_ip"] == "203.0.113.5"
