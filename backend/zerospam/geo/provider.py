from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from zerospam.core.config import settings
from zerospam.core.errors import RemoteUnavailable
from zerospam.core.http import remote_get_json


@dataclass(frozen=True)
class GeoResult:
    country_code: Optional[str] = None
    region_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GeoResult":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _upper(value) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    return value.strip().upper() or None


class GeoProvider:
    name = "base"

    def lookup(self, ip_str: str, *, timeout: float) -> GeoResult:
        raise NotImplementedError


class IpstackGeoProvider(GeoProvider):
    name = "ipstack"

    def __init__(self, api_key: str, api_base_url: Optional[str] = None) -> None:
        self.api_key = api_key
        self.api_base_url = (api_base_url or settings.IPSTACK_ENDPOINT).rstrip("/")

    def lookup(self, ip_str: str, *, timeout: float) -> GeoResult:
        payload = remote_get_json(
            f"{self.api_base_url}/{ip_str}",
            params={"access_key": self.api_key},
            timeout=timeout,
        )
        if not isinstance(payload, dict):
            raise RemoteUnavailable("malformed", "ipstack returned a non-object body")
        # ipstack reports API errors with a 200 and success=false.
        if payload.get("success") is False or "error" in payload:
            error = payload.get("error") or {}
            info = error.get("info") if isinstance(error, dict) else None
            raise RemoteUnavailable("api_error", info or "ipstack lookup failed")
        return GeoResult(
            country_code=_upper(payload.get("country_code")),
            region_code=_upper(payload.get("region_code")),
            region=payload.get("region_name"),
            city=payload.get("city"),
            latitude=_to_float(payload.get("latitude")),
            longitude=_to_float(payload.get("longitude")),
        )


class IpinfoGeoProvider(GeoProvider):
    name = "ipinfo"

    def __init__(self, access_token: str, api_base_url: Optional[str] = None) -> None:
        self.access_token = access_token
        self.api_base_url = (api_base_url or settings.IPINFO_ENDPOINT).rstrip("/")

    def lookup(self, ip_str: str, *, timeout: float) -> GeoResult:
        payload = remote_get_json(
            f"{self.api_base_url}/{ip_str}/json",
            params={"token": self.access_token},
            timeout=timeout,
        )
        if not isinstance(payload, dict):
            raise RemoteUnavailable("malformed", "ipinfo returned a non-object body")
        if "error" in payload:
            raise RemoteUnavailable("api_error", str(payload.get("error")))
        latitude = longitude = None
        loc = payload.get("loc")
        if isinstance(loc, str) and "," in loc:
            lat_raw, lng_raw = loc.split(",", 1)
            latitude, longitude = _to_float(lat_raw), _to_float(lng_raw)
        return GeoResult(
            country_code=_upper(payload.get("country")),
            region_code=None,
            region=payload.get("region"),
            city=payload.get("city"),
            latitude=latitude,
            longitude=longitude,
        )


def get_geo_provider(options: Mapping[str, Any]) -> GeoProvider | None:
    """
    Pick the provider from a settings snapshot. Returns None when no
    credential is configured, which disables geo-blocking.
    """
    ipstack_key = options.get("ipstack_api")
    ipinfo_token = options.get("ipinfo_access_token")
    preferred = (options.get("geo_provider") or "").lower()
    if preferred == "ipstack":
        return IpstackGeoProvider(ipstack_key) if ipstack_key else None
    if preferred == "ipinfo":
        return IpinfoGeoProvider(ipinfo_token) if ipinfo_token else None
    if preferred:
        raise ValueError(f"Unsupported geo_provider: {preferred}")
    if ipstack_key:
        return IpstackGeoProvider(ipstack_key)
    if ipinfo_token:
        return IpinfoGeoProvider(ipinfo_token)
    return None
