from __future__ import annotations

from copy import deepcopy
from types import MappingProxyType
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zerospam.core.errors import StoreWriteError
from zerospam.models.settings import DetectorSetting


DEFAULT_SETTINGS: dict[str, Any] = {
    # Aggregator behaviour
    "detector_order": ["whitelist", "blocklist", "stop_forum_spam", "geo"],
    "stop_on_block": False,
    "auto_block": True,
    "auto_block_minutes": 60,
    "ip_whitelist": [],
    # Local block list
    "blocklist": True,
    "blocklist_key_types": ["location"],
    # Stop Forum Spam
    "stop_forum_spam": False,
    "stop_forum_spam_timeout": 5,
    "stop_forum_spam_confidence_min": 30,
    "stop_forum_spam_cache_ttl": 86400,
    # Geolocation
    "geo_blocking": True,
    "geo_provider": None,
    "ipstack_api": None,
    "ipinfo_access_token": None,
    "geo_timeout": 5,
    "geo_cache_ttl": 604800,
}

SECRET_SETTINGS = {"ipstack_api", "ipinfo_access_token"}


def is_enabled(value: Any) -> bool:
    """Accept booleans as well as the legacy "enabled" checkbox value."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"enabled", "true", "1", "yes", "on"}
    return False


def get_setting(db: Session, key: str) -> Any:
    row = db.query(DetectorSetting).filter(DetectorSetting.key == key).first()
    if row is not None:
        return row.value
    return deepcopy(DEFAULT_SETTINGS.get(key))


def get_settings_snapshot(db: Session) -> Mapping[str, Any]:
    """
    Read every stored option once and merge it over the defaults. The
    returned mapping is read-only so one evaluation sees a single, stable
    configuration.
    """
    values = deepcopy(DEFAULT_SETTINGS)
    for row in db.query(DetectorSetting).all():
        values[row.key] = row.value
    return MappingProxyType(values)


def build_snapshot(overrides: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    values = deepcopy(DEFAULT_SETTINGS)
    if overrides:
        values.update(overrides)
    return MappingProxyType(values)


def update_settings(db: Session, changes: Mapping[str, Any]) -> Mapping[str, Any]:
    for key, value in changes.items():
        row = db.query(DetectorSetting).filter(DetectorSetting.key == key).first()
        if row is None:
            row = DetectorSetting(key=key, value=value)
            db.add(row)
        else:
            row.value = value
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreWriteError("Failed to save settings") from exc
    return get_settings_snapshot(db)


def public_settings(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    """Settings safe to echo back over the API (credentials masked)."""
    result = dict(snapshot)
    for key in SECRET_SETTINGS:
        if result.get(key):
            result[key] = "********"
    return result
