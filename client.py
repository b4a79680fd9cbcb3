from __future__ import annotations

from typing import Any, Optional

import httpx

from cache import CachedReader, ReadCache
from config import get_settings
from monitor import ConnectivityMonitor
from queue_store import QueueStore
from remote import HttpRemoteStore
from scheduler import SyncScheduler
from schemas import DeadLetter, MutationAction, MutationRecord
from storage import KeyValueStore, SQLiteKeyValueStore
from sync import DrainResult, SyncEngine


class OfflineClient:
    """Wires the offline queue, sync engine and triggers for one user."""

    def __init__(
        self,
        kv: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.Client] = None,
        namespace: str = "",
        online: bool = False,
    ) -> None:
        settings = get_settings()
        self.kv = kv if kv is not None else SQLiteKeyValueStore(settings.queue_path)
        self.queue = QueueStore(self.kv, namespace=namespace)
        self.remote = HttpRemoteStore(client=http_client)
        self.cache = ReadCache(self.kv, namespace=namespace)
        self.reader = CachedReader(self.remote, self.cache)
        self.monitor = ConnectivityMonitor(online=online)
        self.engine = SyncEngine(
            self.queue, self.remote, self.cache, is_online=self.monitor.is_online
        )
        self.scheduler = SyncScheduler(self.engine, self.monitor, self.remote.ping)

    def create_transaction(self, payload: dict[str, Any]) -> MutationRecord:
        return self.engine.enqueue(MutationAction.create, payload)

    def update_transaction(self, resource_id: str, changes: dict[str, Any]) -> MutationRecord:
        return self.engine.enqueue(MutationAction.update, {**changes, "id": resource_id})

    def delete_transaction(self, resource_id: str) -> MutationRecord:
        return self.engine.enqueue(MutationAction.delete, {"id": resource_id})

    def sync_now(self) -> DrainResult:
        return self.scheduler.run_drain("explicit")

    def pending_count(self) -> int:
        return self.engine.pending_count()

    def dead_letters(self) -> list[DeadLetter]:
        return self.queue.list_dead_letters()

    def resync_dead_letter(self, record_id: str) -> MutationRecord:
        return self.queue.requeue_dead_letter(record_id)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()
        self.remote.close()
        if isinstance(self.kv, SQLiteKeyValueStore):
            self.kv.close()
