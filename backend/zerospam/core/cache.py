from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from hashlib import sha1
from threading import Lock
from typing import Any, Callable, Protocol

from fastapi.encoders import jsonable_encoder

from zerospam.core.config import settings
from zerospam.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_cache_set,
)


logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    @property
    def backend_name(self) -> str:
        ...

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...

    def clear(self) -> None:
        ...


@dataclass
class _CacheEntry:
    expires_at: float | None
    value: str


class InMemoryCache:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int | None = None,
    ) -> None:
        self._store: dict[str, _CacheEntry] = {}
        self._lock = Lock()
        self._clock = clock
        self._max_entries = max_entries or settings.CACHE_MAX_ENTRIES

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _make_room(self) -> None:
        # Caller holds the lock.
        if len(self._store) < self._max_entries:
            return
        now = self._clock()
        expired = [
            key
            for key, entry in self._store.items()
            if entry.expires_at is not None and now > entry.expires_at
        ]
        for key in expired:
            del self._store[key]
        while len(self._store) >= self._max_entries:
            del self._store[next(iter(self._store))]

    @property
    def backend_name(self) -> str:
        return "memory"

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and self._clock() > entry.expires_at:
                self._store.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        with self._lock:
            # Re-inserting moves the key to the back of the eviction order.
            self._store.pop(key, None)
            self._make_room()
            self._store[key] = _CacheEntry(expires_at=expires_at, value=value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._store if key.startswith(prefix)]
            for key in keys:
                self._store.pop(key, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class NullCache:
    @property
    def backend_name(self) -> str:
        return "none"

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def delete_prefix(self, prefix: str) -> int:
        return 0

    def clear(self) -> None:
        return None


class RedisCache:
    def __init__(self, url: str) -> None:
        try:
            import redis  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("redis package is required for Redis cache backend") from exc
        self._client = redis.Redis.from_url(url, decode_responses=True)

    @property
    def backend_name(self) -> str:
        return "redis"

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl and ttl > 0:
            self._client.setex(key, ttl, value)
            return None
        self._client.set(key, value)
        return None

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        for key in self._client.scan_iter(f"{prefix}*"):
            self._client.delete(key)
            deleted += 1
        return deleted

    def clear(self) -> None:
        prefix = f"{settings.CACHE_NAMESPACE}:"
        for key in self._client.scan_iter(f"{prefix}*"):
            self._client.delete(key)


_CACHE_BACKEND: CacheBackend | None = None
_CACHE_SERVICE: "CacheService" | None = None
_INIT_LOCK = Lock()


def _resolve_backend_name() -> str:
    env_override = os.getenv("CACHE_BACKEND")
    return (env_override or settings.CACHE_BACKEND or "memory").lower()


def _build_backend() -> CacheBackend:
    backend_name = _resolve_backend_name()
    if backend_name in {"none", "disabled", "off"}:
        return NullCache()
    if backend_name == "redis":
        if not settings.REDIS_URL:
            logger.warning("Redis cache enabled but REDIS_URL is missing; using memory cache.")
            return InMemoryCache()
        try:
            return RedisCache(settings.REDIS_URL)
        except Exception as exc:
            logger.warning("Failed to initialize Redis cache; using memory cache. %s", exc)
            return InMemoryCache()
    return InMemoryCache()


def _get_backend() -> CacheBackend:
    global _CACHE_BACKEND
    if _CACHE_BACKEND is not None:
        return _CACHE_BACKEND
    with _INIT_LOCK:
        if _CACHE_BACKEND is None:
            _CACHE_BACKEND = _build_backend()
    return _CACHE_BACKEND


def _serialize(value: Any) -> str | None:
    try:
        encoded = jsonable_encoder(value)
        return json.dumps(encoded, sort_keys=True, separators=(",", ":"), default=str)
    except Exception:
        return None


def _deserialize(payload: str) -> Any | None:
    try:
        return json.loads(payload)
    except Exception:
        return None


class CacheService:
    """
    Thin service wrapper around the configured backend with JSON serialization
    and cache metrics collection.
    """

    def __init__(
        self,
        *,
        backend: CacheBackend | None = None,
        default_ttl: int | None = None,
    ) -> None:
        self._backend = backend
        self._default_ttl = (
            settings.CACHE_DEFAULT_TTL_SECONDS if default_ttl is None else default_ttl
        )

    def _active_backend(self) -> CacheBackend:
        return self._backend or _get_backend()

    @property
    def backend_name(self) -> str:
        return self._active_backend().backend_name

    def get(self, key: str, *, cache_name: str = "default") -> Any | None:
        try:
            payload = self._active_backend().get(key)
        except Exception as exc:
            logger.warning("cache.get_failed", extra={"cache_key": key, "error": str(exc)})
            payload = None
        if payload is None:
            record_cache_miss(cache_name)
            return None
        value = _deserialize(payload)
        if value is None:
            record_cache_miss(cache_name)
            return None
        record_cache_hit(cache_name)
        return value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        cache_name: str = "default",
    ) -> None:
        payload = _serialize(value)
        if payload is None:
            return None
        effective_ttl = self._default_ttl if ttl is None else ttl
        try:
            self._active_backend().set(key, payload, ttl=effective_ttl)
        except Exception as exc:
            logger.warning("cache.set_failed", extra={"cache_key": key, "error": str(exc)})
            return None
        record_cache_set(cache_name, len(payload))
        return None

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        *,
        ttl: int | None = None,
        cache_name: str = "default",
    ) -> tuple[Any, bool]:
        """
        Return (value, cached). On a miss `fetch_fn` runs and its result is
        stored; exceptions from `fetch_fn` propagate and nothing is cached.
        Falsy results are not cached either.
        """
        cached = self.get(key, cache_name=cache_name)
        if cached is not None:
            return cached, True
        value = fetch_fn()
        if value:
            self.set(key, value, ttl=ttl, cache_name=cache_name)
        return value, False

    def delete(self, key: str) -> None:
        self._active_backend().delete(key)

    def delete_prefix(self, prefix: str) -> int:
        return self._active_backend().delete_prefix(prefix)

    def clear(self) -> None:
        self._active_backend().clear()


def get_cache_service() -> CacheService:
    global _CACHE_SERVICE
    if _CACHE_SERVICE is None:
        _CACHE_SERVICE = CacheService()
    return _CACHE_SERVICE


def cache_get(key: str, *, cache_name: str = "default") -> Any | None:
    return get_cache_service().get(key, cache_name=cache_name)


def cache_set(
    key: str,
    value: Any,
    *,
    ttl: int | None = None,
    cache_name: str = "default",
) -> None:
    return get_cache_service().set(key, value, ttl=ttl, cache_name=cache_name)


def get_or_fetch(
    key: str,
    fetch_fn: Callable[[], Any],
    ttl: int | None = None,
    *,
    cache_name: str = "default",
) -> tuple[Any, bool]:
    return get_cache_service().get_or_fetch(key, fetch_fn, ttl=ttl, cache_name=cache_name)


def cache_clear() -> None:
    get_cache_service().clear()


def reset_cache_backend() -> None:
    global _CACHE_BACKEND, _CACHE_SERVICE
    _CACHE_BACKEND = None
    _CACHE_SERVICE = None


def settings_fingerprint(values: dict[str, Any]) -> str:
    encoded = jsonable_encoder(values)
    raw = json.dumps(encoded, sort_keys=True, separators=(",", ":"), default=str)
    return sha1(raw.encode("utf-8")).hexdigest()[:12]


def build_lookup_cache_key(
    detector: str,
    ip: str,
    *,
    fingerprint: dict[str, Any] | None = None,
) -> str:
    """
    Cache key for a remote lookup. Only settings that change the upstream
    request belong in the fingerprint; thresholds applied after the fetch
    must stay out so a cached response survives threshold edits.
    """
    key = f"{settings.CACHE_NAMESPACE}:lookup:{detector}:{ip.replace(':', '_')}"
    if fingerprint:
        key = f"{key}:{settings_fingerprint(fingerprint)}"
    return key


def lookup_cache_prefix(detector: str) -> str:
    return f"{settings.CACHE_NAMESPACE}:lookup:{detector}:"
