import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from zerospam.core.cache import (
    CacheService,
    InMemoryCache,
    NullCache,
    build_lookup_cache_key,
    cache_clear,
    cache_get,
    cache_set,
    get_cache_service,
    lookup_cache_prefix,
    reset_cache_backend,
)
from zerospam.core.errors import RemoteUnavailable
from zerospam.core.metrics import CACHE_HIT_TOTAL, CACHE_MISS_TOTAL, CACHE_SET_TOTAL


def _counter_value(counter, **labels):
    return counter.labels(**labels)._value.get()


@pytest.fixture(autouse=True)
def _enable_memory_cache():
    previous = os.environ.get("CACHE_BACKEND")
    os.environ["CACHE_BACKEND"] = "memory"
    reset_cache_backend()
    yield
    if previous is None:
        os.environ.pop("CACHE_BACKEND", None)
    else:
        os.environ["CACHE_BACKEND"] = previous
    reset_cache_backend()


def test_lookup_keys_are_namespaced_per_detector():
    key = build_lookup_cache_key("stop_forum_spam", "2001:db8::1")
    assert key == "zerospam:lookup:stop_forum_spam:2001_db8__1"
    assert key.startswith(lookup_cache_prefix("stop_forum_spam"))
    geo_a = build_lookup_cache_key("geo", "203.0.113.5", fingerprint={"provider": "ipstack"})
    geo_b = build_lookup_cache_key("geo", "203.0.113.5", fingerprint={"provider": "ipinfo"})
    assert geo_a != geo_b


def test_get_or_fetch_calls_upstream_once():
    cache = CacheService(backend=InMemoryCache())
    calls = []

    def fetch():
        calls.append(1)
        return {"appears": 1}

    first, first_cached = cache.get_or_fetch("k", fetch, ttl=60)
    second, second_cached = cache.get_or_fetch("k", fetch, ttl=60)
    assert first == second == {"appears": 1}
    assert (first_cached, second_cached) == (False, True)
    assert len(calls) == 1


def test_get_or_fetch_does_not_cache_failures():
    cache = CacheService(backend=InMemoryCache())

    def failing():
        raise RemoteUnavailable("timeout")

    with pytest.raises(RemoteUnavailable):
        cache.get_or_fetch("k", failing, ttl=60)
    assert cache.get("k") is None


def test_expired_entries_are_misses():
    now = [0.0]
    cache = CacheService(backend=InMemoryCache(clock=lambda: now[0]))
    cache.set("k", {"v": 1}, ttl=10)
    now[0] = 5
    assert cache.get("k") == {"v": 1}
    now[0] = 11
    assert cache.get("k") is None


def test_delete_prefix_only_touches_matching_keys():
    cache = CacheService(backend=InMemoryCache())
    cache.set(build_lookup_cache_key("geo", "203.0.113.5"), {"c": "US"})
    cache.set(build_lookup_cache_key("stop_forum_spam", "203.0.113.5"), {"a": 1})
    assert cache.delete_prefix(lookup_cache_prefix("geo")) == 1
    assert cache.get(build_lookup_cache_key("stop_forum_spam", "203.0.113.5")) == {"a": 1}


def test_null_cache_never_stores():
    cache = CacheService(backend=NullCache())
    cache.set("k", {"v": 1})
    assert cache.get("k") is None
    assert cache.backend_name == "none"


def test_module_helpers_share_the_configured_backend():
    assert get_cache_service().backend_name == "memory"
    cache_set("shared", [1, 2], ttl=30)
    assert cache_get("shared") == [1, 2]
    cache_clear()
    assert cache_get("shared") is None


def test_cache_metrics_record_hits_misses_and_sets():
    label = "unit-cache"
    hit_before = _counter_value(CACHE_HIT_TOTAL, cache=label)
    miss_before = _counter_value(CACHE_MISS_TOTAL, cache=label)
    set_before = _counter_value(CACHE_SET_TOTAL, cache=label)

    cache = CacheService(backend=InMemoryCache())
    cache.get("missing", cache_name=label)
    cache.set("present", {"v": 1}, cache_name=label)
    cache.get("present", cache_name=label)

    assert _counter_value(CACHE_HIT_TOTAL, cache=label) == hit_before + 1
    assert _counter_value(CACHE_MISS_TOTAL, cache=label) == miss_before + 1
    assert _counter_value(CACHE_SET_TOTAL, cache=label) == set_before + 1


def test_memory_cache_purges_expired_keys_without_reads():
    now = [0.0]
    backend = InMemoryCache(clock=lambda: now[0], max_entries=3)
    backend.set("a", "1", ttl=10)
    backend.set("b", "2", ttl=10)
    backend.set("c", "3", ttl=100)
    now[0] = 20
    backend.set("d", "4", ttl=100)
    assert len(backend) == 2
    assert backend.get("c") == "3"
    assert backend.get("d") == "4"


def test_memory_cache_evicts_oldest_when_full():
    backend = InMemoryCache(max_entries=2)
    backend.set("a", "1", ttl=60)
    backend.set("b", "2", ttl=60)
    backend.set("c", "3", ttl=60)
    assert len(backend) == 2
    assert backend.get("a") is None
    assert backend.get("b") == "2"
    assert backend.get("c") == "3"
