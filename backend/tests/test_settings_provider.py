import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from zerospam.crud.settings import (
    DEFAULT_SETTINGS,
    get_setting,
    get_settings_snapshot,
    is_enabled,
    public_settings,
    update_settings,
)
from tests.factories import setup_db


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), ("enabled", True), ("on", True), ("disabled", False), (None, False), (0, False)],
)
def test_is_enabled_accepts_legacy_checkbox_values(value, expected):
    assert is_enabled(value) is expected


def test_snapshot_merges_stored_values_over_defaults(tmp_path):
    SessionLocal = setup_db(f"sqlite:///{tmp_path / 'settings.db'}")
    with SessionLocal() as db:
        assert get_setting(db, "auto_block_minutes") == DEFAULT_SETTINGS["auto_block_minutes"]
        update_settings(db, {"auto_block_minutes": 15, "ip_whitelist": ["10.0.0.1"]})
        update_settings(db, {"auto_block_minutes": 20})
        snapshot = get_settings_snapshot(db)
        assert snapshot["auto_block_minutes"] == 20
        assert snapshot["ip_whitelist"] == ["10.0.0.1"]
        assert snapshot["stop_forum_spam_confidence_min"] == 30
        with pytest.raises(TypeError):
            snapshot["auto_block"] = True


def test_public_settings_masks_credentials():
    masked = public_settings({"ipstack_api": "abc", "ipinfo_access_token": None, "geo_timeout": 5})
    assert masked["ipstack_api"] == "********"
    assert masked["ipinfo_access_token"] is None
    assert masked["geo_timeout"] == 5
