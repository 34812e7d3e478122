from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zerospam.core.cache import CacheService, build_lookup_cache_key, get_cache_service
from zerospam.core.errors import RemoteUnavailable
from zerospam.core.http import effective_timeout
from zerospam.core.metrics import record_remote_failure
from zerospam.crud.blocked import find_active_match
from zerospam.crud.settings import is_enabled
from zerospam.detectors.base import DetectorVerdict, no_opinion, register_detector
from zerospam.detectors.blocklist import StoreBackedDetector, entry_verdict
from zerospam.geo.provider import GeoProvider, GeoResult, get_geo_provider


logger = logging.getLogger(__name__)

LOCATION_KEY_TYPE = "location"
DEFAULT_GEO_CACHE_TTL = 604800


@register_detector
class GeoDetector(StoreBackedDetector):
    """
    Resolves the visitor's country/region and checks location block entries.
    Without a provider credential the detector has no opinion.
    """

    id = "geo"

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        cache: CacheService | None = None,
        provider_factory: Callable[[Mapping[str, Any]], GeoProvider | None] | None = None,
    ) -> None:
        super().__init__(session_factory)
        self._cache = cache
        self._provider_factory = provider_factory or get_geo_provider

    def enabled(self, settings: Mapping[str, Any]) -> bool:
        return is_enabled(settings.get("geo_blocking", True))

    def timeout(self, settings: Mapping[str, Any]) -> float:
        return effective_timeout(settings.get("geo_timeout"))

    def _resolve(self, visitor_ip: str, provider: GeoProvider, settings: Mapping[str, Any]) -> tuple[GeoResult, bool]:
        cache = self._cache or get_cache_service()
        timeout = self.timeout(settings)
        try:
            ttl = int(settings.get("geo_cache_ttl") or DEFAULT_GEO_CACHE_TTL)
        except (TypeError, ValueError):
            ttl = DEFAULT_GEO_CACHE_TTL
        key = build_lookup_cache_key(self.id, visitor_ip, fingerprint={"provider": provider.name})
        payload, cached = cache.get_or_fetch(
            key,
            lambda: provider.lookup(visitor_ip, timeout=timeout).to_dict(),
            ttl=ttl,
            cache_name=self.id,
        )
        return GeoResult.from_dict(payload), cached

    def evaluate(
        self,
        visitor_ip: str,
        event_metadata: Mapping[str, str],
        settings: Mapping[str, Any],
    ) -> DetectorVerdict:
        try:
            provider = self._provider_factory(settings)
        except ValueError as exc:
            return no_opinion(self.id, "invalid_provider", message=str(exc))
        if provider is None:
            return no_opinion(self.id, "missing_credentials")

        try:
            location, cached = self._resolve(visitor_ip, provider, settings)
        except RemoteUnavailable as exc:
            record_remote_failure(self.id, exc.reason)
            logger.warning(
                "detector.remote_unavailable",
                extra={"detector": self.id, "visitor_ip": visitor_ip, "reason": exc.reason, "error": str(exc)},
            )
            return no_opinion(self.id, exc.reason, provider=provider.name, message=str(exc))

        evidence = {
            "provider": provider.name,
            "country_code": location.country_code,
            "region_code": location.region_code,
            "region": location.region,
            "city": location.city,
            "cached": cached,
        }
        keys = []
        for value in (location.country_code, location.region_code, location.region):
            if value and value not in keys:
                keys.append(value)
        if not keys:
            return no_opinion(self.id, "unresolved", **evidence)

        try:
            with self._session() as db:
                for value in keys:
                    entry = find_active_match(db, key_type=LOCATION_KEY_TYPE, key_value=value)
                    if entry is not None:
                        return entry_verdict(self.id, entry, **evidence)
        except SQLAlchemyError as exc:
            logger.warning(
                "detector.store_unavailable",
                extra={"detector": self.id, "visitor_ip": visitor_ip, "error": str(exc)},
            )
            return no_opinion(self.id, "store_unavailable", **evidence)
        return DetectorVerdict(detector=self.id, details=evidence)
