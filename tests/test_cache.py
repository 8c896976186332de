import threading
import time

import pytest

from pelico.metadata.cache import MetadataCache


def test_miss_then_hit(cache):
    assert cache.get("k") == (None, False)
    cache.set("k", [1, 2])
    assert cache.get("k") == ([1, 2], True)

    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)


def test_cached_empty_list_is_a_hit(cache):
    cache.set("nothing", [])
    assert cache.get("nothing") == ([], True)


def test_entry_expires_at_ttl(cache, clock):
    cache.set("k", "v")
    clock.advance(59.9)
    assert cache.get("k") == ("v", True)

    clock.advance(0.1)
    assert cache.get("k") == (None, False)
    stats = cache.stats()
    assert stats.evictions == 1
    assert stats.entries == 0


def test_set_resets_insert_time(cache, clock):
    cache.set("k", 1)
    clock.advance(50)
    cache.set("k", 2)
    clock.advance(50)
    assert cache.get("k") == (2, True)


def test_clear_drops_entries_and_stats(cache):
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")
    cache.clear()

    assert len(cache) == 0
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.evictions, stats.entries) == (0, 0, 0, 0)
    assert cache.ttl == 60.0


def test_sweep_removes_only_expired(cache, clock):
    cache.set("old", 1)
    clock.advance(40)
    cache.set("new", 2)
    clock.advance(25)

    assert cache.sweep() == 1
    assert "old" not in cache
    assert "new" in cache
    assert cache.stats().evictions == 1


def test_contains_does_not_touch_counters(cache):
    cache.set("k", 1)
    assert "k" in cache
    assert "x" not in cache
    stats = cache.stats()
    assert (stats.hits, stats.misses) == (0, 0)


@pytest.mark.parametrize("ttl,interval", [(0, None), (-1, None), (10, 0), (10, 10), (10, 20)])
def test_invalid_configuration(ttl, interval):
    with pytest.raises(ValueError):
        MetadataCache(ttl=ttl, sweep_interval=interval)


def test_default_sweep_interval_is_fraction_of_ttl():
    assert MetadataCache(ttl=60).sweep_interval == 10


def test_background_sweep_evicts_idle_entries():
    c = MetadataCache(ttl=0.2, sweep_interval=0.05)
    c.set("k", "v")
    with c:
        assert c.sweeping
        deadline = time.monotonic() + 3
        while len(c) and time.monotonic() < deadline:
            time.sleep(0.02)
    assert len(c) == 0
    assert not c.sweeping


def test_concurrent_access_keeps_counts_consistent(cache):
    n_threads, n_ops = 8, 200

    def worker(t):
        for k in range(n_ops):
            key = f"{t}-{k % 10}"
            cache.set(key, k)
            cache.get(key)

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(n_threads)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    stats = cache.stats()
    assert stats.hits == n_threads * n_ops
    assert stats.entries == n_threads * 10
