from datetime import datetime, timedelta

from cache import CachedReader, ReadCache, item_scope, list_scope
from storage import MemoryKeyValueStore


class CountingRemote:
    def __init__(self) -> None:
        self.list_calls = 0
        self.get_calls = 0

    def list(self, **filters):
        self.list_calls += 1
        return [{"id": "t1", "month": filters.get("month")}]

    def get(self, resource_id):
        self.get_calls += 1
        if resource_id == "missing":
            return None
        return {"id": resource_id}


def test_list_scope_is_stable_and_skips_empty_filters() -> None:
    assert list_scope({}) == "transactions"
    assert list_scope({"type": "expense", "month": "2025-01", "category_id": None}) == (
        "transactions?month=2025-01&type=expense"
    )
    assert item_scope("abc") == "transactions/abc"


def test_entries_expire_after_max_age() -> None:
    cache = ReadCache(MemoryKeyValueStore(), max_age_secs=60)
    t0 = datetime(2025, 1, 1, 8, 0)
    cache.put("transactions", [1, 2], now=t0)

    assert cache.get("transactions", now=t0 + timedelta(seconds=30)) == [1, 2]
    assert cache.get("transactions", now=t0 + timedelta(seconds=61)) is None
    assert cache.get("transactions", now=t0) is None


def test_invalidate_clears_every_view_under_scope() -> None:
    kv = MemoryKeyValueStore()
    cache = ReadCache(kv, max_age_secs=3600)
    cache.put("transactions", [])
    cache.put("transactions?month=2025-01", [])
    cache.put("transactions/abc", {"id": "abc"})
    cache.put("categories", [])

    assert cache.invalidate("transactions") == 3
    assert cache.get("transactions") is None
    assert cache.get("transactions/abc") is None
    assert cache.get("categories") == []


def test_reader_serves_repeat_reads_from_cache() -> None:
    remote = CountingRemote()
    reader = CachedReader(remote, ReadCache(MemoryKeyValueStore(), max_age_secs=3600))

    reader.list_transactions(month="2025-01")
    rows = reader.list_transactions(month="2025-01")
    reader.list_transactions(month="2025-02")

    assert rows == [{"id": "t1", "month": "2025-01"}]
    assert remote.list_calls == 2


def test_reader_does_not_cache_missing_items() -> None:
    remote = CountingRemote()
    reader = CachedReader(remote, ReadCache(MemoryKeyValueStore(), max_age_secs=3600))

    assert reader.get_transaction("missing") is None
    assert reader.get_transaction("missing") is None
    assert reader.get_transaction("abc") == {"id": "abc"}
    assert reader.get_transaction("abc") == {"id": "abc"}

    assert remote.get_calls == 3


def test_namespaces_keep_cached_reads_apart() -> None:
    kv = MemoryKeyValueStore()
    alice = CachedReader(CountingRemote(), ReadCache(kv, max_age_secs=3600, namespace="alice:"))
    empty = CountingRemote()
    empty.list = lambda **filters: []
    bob_cache = ReadCache(kv, max_age_secs=3600, namespace="bob:")
    bob = CachedReader(empty, bob_cache)

    assert alice.list_transactions() == [{"id": "t1", "month": None}]
    assert bob.list_transactions() == []

    assert bob_cache.invalidate() == 1
    assert alice.list_transactions() == [{"id": "t1", "month": None}]
    assert alice.remote.list_calls == 1


def test_read_overtaken_by_invalidation_is_not_cached() -> None:
    cache = ReadCache(MemoryKeyValueStore(), max_age_secs=3600)
    remote = CountingRemote()

    def list_then_invalidate(**filters):
        rows = [{"id": "stale"}]
        cache.invalidate()
        return rows

    remote.list = list_then_invalidate
    reader = CachedReader(remote, cache)

    assert reader.list_transactions() == [{"id": "stale"}]
    assert cache.get("transactions") is None


def test_put_with_current_generation_is_kept() -> None:
    cache = ReadCache(MemoryKeyValueStore(), max_age_secs=3600)
    cache.invalidate()
    generation = cache.generation

    assert cache.put("transactions", [1], generation=generation) is True
    assert cache.put("transactions", [2], generation=generation - 1) is False
    assert cache.get("transactions") == [1]
