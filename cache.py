from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Optional

from common import utcnow
from config import get_settings
from remote import RemoteStore
from storage import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_PREFIX = "txn_cache:"
TRANSACTIONS_SCOPE = "transactions"


def list_scope(filters: dict[str, Any]) -> str:
    parts = [f"{k}={filters[k]}" for k in sorted(filters) if filters[k] is not None]
    if not parts:
        return TRANSACTIONS_SCOPE
    return f"{TRANSACTIONS_SCOPE}?{'&'.join(parts)}"


def item_scope(resource_id: str) -> str:
    return f"{TRANSACTIONS_SCOPE}/{resource_id}"


class ReadCache:
    """Locally cached read views, keyed by scope.

    ``invalidate`` drops every entry whose scope starts with the given one,
    so invalidating ``transactions`` clears list and item views alike.
    ``namespace`` keeps cached views for different users apart in one store.

    Each invalidation bumps ``generation``. A reader that fetched its data
    under an older generation passes it to ``put`` and the write is dropped,
    so a read that raced a sync cannot bring back the pre-sync snapshot.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_age_secs: Optional[int] = None,
        namespace: str = "",
    ) -> None:
        self.kv = kv
        if max_age_secs is None:
            max_age_secs = get_settings().cache_max_age_secs
        self.max_age = timedelta(seconds=max_age_secs)
        self._prefix = f"{namespace}{CACHE_PREFIX}"
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def _key(self, scope: str) -> str:
        return f"{self._prefix}{scope}"

    def get(self, scope: str, now: Optional[datetime] = None) -> Optional[Any]:
        entry = self.kv.get(self._key(scope))
        if entry is None:
            return None
        cached_at = datetime.fromisoformat(entry["cached_at"])
        if (now or utcnow()) - cached_at > self.max_age:
            self.kv.delete(self._key(scope))
            return None
        return entry["data"]

    def put(
        self,
        scope: str,
        data: Any,
        now: Optional[datetime] = None,
        generation: Optional[int] = None,
    ) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.info(f"cache_put_skipped: scope={scope} reason=invalidated")
                return False
            self.kv.set(
                self._key(scope),
                {"data": data, "cached_at": (now or utcnow()).isoformat()},
            )
        return True

    def invalidate(self, scope: str = TRANSACTIONS_SCOPE) -> int:
        with self._lock:
            self._generation += 1
            keys = self.kv.list_keys(self._key(scope))
            for key in keys:
                self.kv.delete(key)
        if keys:
            logger.info(f"cache_invalidate: scope={scope} entries={len(keys)}")
        return len(keys)


class CachedReader:
    def __init__(self, remote: RemoteStore, cache: ReadCache) -> None:
        self.remote = remote
        self.cache = cache

    def list_transactions(self, **filters: Any) -> list[dict[str, Any]]:
        scope = list_scope(filters)
        cached = self.cache.get(scope)
        if cached is not None:
            return cached
        generation = self.cache.generation
        data = self.remote.list(**filters)
        self.cache.put(scope, data, generation=generation)
        return data

    def get_transaction(self, resource_id: str) -> Optional[dict[str, Any]]:
        scope = item_scope(resource_id)
        cached = self.cache.get(scope)
        if cached is not None:
            return cached
        generation = self.cache.generation
        data = self.remote.get(resource_id)
        if data is not None:
            self.cache.put(scope, data, generation=generation)
        return data
