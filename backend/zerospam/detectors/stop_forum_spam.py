"""
Stop Forum Spam reputation check.

Queries https://api.stopforumspam.org/api?ip=<ip>&json= and blocks when the
IP appears in their database with a confidence at or above the configured
minimum. The raw response is cached per IP; the threshold is applied on
every read so editing it takes effect without flushing the cache.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from zerospam.core.cache import CacheService, build_lookup_cache_key, get_cache_service
from zerospam.core.config import settings as app_settings
from zerospam.core.errors import RemoteUnavailable
from zerospam.core.http import effective_timeout, remote_get_json
from zerospam.core.metrics import record_remote_failure
from zerospam.crud.settings import is_enabled
from zerospam.detectors.base import Detector, DetectorVerdict, no_opinion, register_detector


logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_MIN = 30.0


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def confidence_minimum(settings: Mapping[str, Any]) -> float:
    value = _to_float(settings.get("stop_forum_spam_confidence_min"))
    if value is None:
        return DEFAULT_CONFIDENCE_MIN
    return min(100.0, max(0.0, value))


@register_detector
class StopForumSpamDetector(Detector):
    id = "stop_forum_spam"
    persist_blocks = True

    def __init__(self, cache: CacheService | None = None) -> None:
        self._cache = cache

    def enabled(self, settings: Mapping[str, Any]) -> bool:
        return is_enabled(settings.get("stop_forum_spam"))

    def timeout(self, settings: Mapping[str, Any]) -> float:
        return effective_timeout(settings.get("stop_forum_spam_timeout"))

    def _fetch(self, visitor_ip: str, timeout: float) -> dict:
        payload = remote_get_json(
            app_settings.STOP_FORUM_SPAM_ENDPOINT,
            params={"ip": visitor_ip, "json": ""},
            timeout=timeout,
        )
        if not isinstance(payload, dict):
            raise RemoteUnavailable("malformed", "Stop Forum Spam returned a non-object body")
        if not payload.get("success"):
            raise RemoteUnavailable("api_error", str(payload.get("error") or "success flag not set"))
        return payload

    def evaluate(
        self,
        visitor_ip: str,
        event_metadata: Mapping[str, str],
        settings: Mapping[str, Any],
    ) -> DetectorVerdict:
        cache = self._cache or get_cache_service()
        timeout = self.timeout(settings)
        ttl = int(_to_float(settings.get("stop_forum_spam_cache_ttl")) or app_settings.CACHE_DEFAULT_TTL_SECONDS)
        key = build_lookup_cache_key(self.id, visitor_ip)
        try:
            response, cached = cache.get_or_fetch(
                key,
                lambda: self._fetch(visitor_ip, timeout),
                ttl=ttl,
                cache_name=self.id,
            )
        except RemoteUnavailable as exc:
            record_remote_failure(self.id, exc.reason)
            logger.warning(
                "detector.remote_unavailable",
                extra={"detector": self.id, "visitor_ip": visitor_ip, "reason": exc.reason, "error": str(exc)},
            )
            return no_opinion(self.id, exc.reason, message=str(exc))
        return self.verdict_from_response(response, settings, cached=cached)

    def verdict_from_response(
        self,
        response: Mapping[str, Any],
        settings: Mapping[str, Any],
        *,
        cached: bool = False,
    ) -> DetectorVerdict:
        ip_info = response.get("ip") if isinstance(response, Mapping) else None
        if not isinstance(ip_info, Mapping):
            return no_opinion(self.id, "malformed", cached=cached)
        if not response.get("success") or not ip_info.get("appears"):
            return DetectorVerdict(detector=self.id, details={"appears": False, "cached": cached})

        confidence = _to_float(ip_info.get("confidence"))
        minimum = confidence_minimum(settings)
        details = {**dict(ip_info), "confidence_min": minimum, "cached": cached}
        if confidence is None or confidence < minimum:
            return DetectorVerdict(detector=self.id, details=details)
        return DetectorVerdict(
            detector=self.id,
            blocked=True,
            details=details,
            reason=f"Stop Forum Spam confidence {confidence:g}% meets minimum {minimum:g}%",
        )
