import asyncio
import os
from threading import Event
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from zerospam.main import app
import zerospam.api.access as access_api
import zerospam.access.log_writer as log_writer_module
import zerospam.core.http as http_module
from zerospam.core.cache import reset_cache_backend
from zerospam.core.nonce import create_nonce
from tests.factories import setup_db


client = TestClient(app)


@pytest.fixture(autouse=True)
def _sync_log_writer(monkeypatch):
    monkeypatch.setattr(log_writer_module.settings, "EVENT_LOG_ASYNC", False)
    log_writer_module.reset_event_log_writer()
    reset_cache_backend()
    yield
    log_writer_module.reset_event_log_writer()
    reset_cache_backend()


def _block(ip="198.51.100.9", **extra):
    data = {"blocked_ip": ip, "blocked_type": "permanent", "zerospam": create_nonce(), **extra}
    return client.post("/blocked", data=data)


def test_ping():
    assert client.get("/ping").json() == {"message": "pong"}


def test_manual_block_then_access_check_blocks(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_block.db'}")
    resp = _block(blocked_reason="form spam")
    assert resp.status_code == 201
    body = resp.json()
    assert body["user_ip"] == "198.51.100.9"
    assert body["source"] == "manual"

    resp = client.post("/access/check", json={"ip": "198.51.100.9"})
    assert resp.status_code == 200
    decision = resp.json()
    assert decision["blocked"] is True
    assert decision["triggering_detector"] == "blocklist"
    assert "form spam" in decision["reasons"]

    resp = client.post("/access/check", json={"ip": "203.0.113.200"})
    assert resp.json()["blocked"] is False

    log = client.get("/log").json()
    assert log["total"] == 2
    reports = client.get("/log/reports").json()
    assert reports["top_ips"] == [{"key": "198.51.100.9", "count": 1}]


def test_manual_block_error_codes(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_codes.db'}")
    resp = client.post("/blocked", data={"blocked_ip": "198.51.100.9", "blocked_type": "permanent", "zerospam": "nope"})
    assert resp.status_code == 400
    assert resp.json()["code"] == 1
    assert resp.headers["X-Error-Code"] == "zerospam-error-1"

    resp = _block(ip="198.51.100.999")
    assert resp.status_code == 400
    assert resp.json()["code"] == 4

    resp = _block(blocked_type="temporary")
    assert resp.status_code == 400
    assert resp.json()["code"] == 6
    assert resp.json()["message"]


def test_blocked_list_detail_and_delete(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_list.db'}")
    entry_id = _block().json()["id"]
    listing = client.get("/blocked").json()
    assert listing["total"] == 1
    assert client.get(f"/blocked/{entry_id}").json()["id"] == entry_id
    assert client.delete(f"/blocked/{entry_id}").status_code == 204
    assert client.get(f"/blocked/{entry_id}").status_code == 404
    assert client.delete(f"/blocked/{entry_id}").status_code == 404


def test_nonce_endpoint_issues_valid_token(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_nonce.db'}")
    nonce = client.get("/blocked/nonce").json()["nonce"]
    resp = client.post("/blocked", data={"blocked_ip": "198.51.100.9", "blocked_type": "permanent", "zerospam": nonce})
    assert resp.status_code == 201


def test_access_check_rejects_invalid_ip(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_invalid.db'}")
    resp = client.post("/access/check", json={"ip": "not-an-ip"})
    assert resp.status_code == 422


def test_settings_round_trip_masks_credentials(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_settings.db'}")
    defaults = client.get("/settings").json()
    assert defaults["stop_forum_spam_confidence_min"] == 30

    resp = client.put("/settings", json={"stop_forum_spam": True, "ipstack_api": "secret-key"})
    assert resp.status_code == 200
    assert resp.json()["stop_forum_spam"] is True
    assert resp.json()["ipstack_api"] == "********"

    resp = client.put("/settings", json={"stop_forum_spam_confidence_min": 150})
    assert resp.status_code == 422
    resp = client.put("/settings", json={"detector_order": ["blocklist", "akismet"]})
    assert resp.status_code == 400


def test_stop_forum_spam_scenario(tmp_path, monkeypatch):
    setup_db(f"sqlite:///{tmp_path / 'api_sfs.db'}")

    class _Resp:
        status_code = 200

        def json(self):
            return {"success": 1, "ip": {"appears": 1, "frequency": 12, "confidence": 45}}

    calls = []

    def fake_get(url, params=None, timeout=None, headers=None):
        calls.append(params)
        return _Resp()

    monkeypatch.setattr(http_module.requests, "get", fake_get)
    client.put(
        "/settings",
        json={
            "stop_forum_spam": True,
            "stop_forum_spam_confidence_min": 10,
            "geo_blocking": False,
            "auto_block": False,
        },
    )
    decision = client.post("/access/check", json={"ip": "203.0.113.5"}).json()
    assert decision["blocked"] is True
    assert decision["triggering_detector"] == "stop_forum_spam"

    client.put("/settings", json={"stop_forum_spam_confidence_min": 50})
    decision = client.post("/access/check", json={"ip": "203.0.113.5"}).json()
    assert decision["blocked"] is False
    assert len(calls) == 1


def test_metrics_endpoint_exposes_decisions(tmp_path):
    setup_db(f"sqlite:///{tmp_path / 'api_metrics.db'}")
    client.post("/access/check", json={"ip": "203.0.113.7"})
    body = client.get("/metrics").text
    assert "zerospam_decisions_total" in body


def test_reputation_block_is_persisted_as_temporary_entry(tmp_path, monkeypatch):
    setup_db(f"sqlite:///{tmp_path / 'api_auto_block.db'}")

    class _Resp:
        status_code = 200

        def json(self):
            return {"success": 1, "ip": {"appears": 1, "confidence": 99}}

    monkeypatch.setattr(http_module.requests, "get", lambda *args, **kwargs: _Resp())
    client.put("/settings", json={"stop_forum_spam": True, "geo_blocking": False})
    assert client.post("/access/check", json={"ip": "203.0.113.66"}).json()["blocked"] is True

    listing = client.get("/blocked", params={"search": "203.0.113.66"}).json()
    assert listing["total"] == 1
    entry = listing["items"][0]
    assert entry["blocked_type"] == "temporary"
    assert entry["source"] == "stop_forum_spam"


class _DisconnectingRequest:
    def __init__(self, after: int):
        self.state = SimpleNamespace(client_ip="203.0.113.5")
        self.after = after
        self.polls = 0

    async def is_disconnected(self):
        self.polls += 1
        return self.polls >= self.after


def test_client_disconnect_sets_cancel_event(monkeypatch):
    monkeypatch.setattr(access_api, "DISCONNECT_POLL_SECONDS", 0)
    cancel_event = Event()
    request = _DisconnectingRequest(after=3)
    asyncio.run(access_api.watch_disconnect(request, cancel_event))
    assert cancel_event.is_set()
    assert request.polls == 3


def test_disconnect_watch_stops_once_decision_is_done():
    cancel_event = Event()
    cancel_event.set()
    request = _DisconnectingRequest(after=1)
    asyncio.run(access_api.watch_disconnect(request, cancel_event))
    assert request.polls == 0
