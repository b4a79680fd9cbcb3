"""Offline mutation queue replay.

``SyncEngine.drain`` walks the queue in enqueue order and replays each
mutation against the remote store, one at a time. Successful records are
removed and the read cache is invalidated. Failed ones keep their
idempotency key, get their retry count bumped and are retried on the next
drain after an exponential backoff. Records that exhaust their retries are
moved to the dead-letter area instead of being silently dropped.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cache import TRANSACTIONS_SCOPE, ReadCache
from config import get_settings
from queue_store import QueueStore, build_mutation
from remote import RemoteStore, RemoteStoreError
from schemas import MutationAction, MutationRecord
from storage import StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrainResult:
    synced: int = 0
    failed: int = 0
    remaining: int = 0
    skipped: bool = False


def backoff_delay_ms(retry_count: int, base_ms: int) -> int:
    """Delay after the ``retry_count``-th consecutive failure of a record."""
    if retry_count < 1:
        return 0
    return base_ms * 2 ** (retry_count - 1)


def _always_online() -> bool:
    return True


class SyncEngine:
    def __init__(
        self,
        queue: QueueStore,
        remote: RemoteStore,
        cache: Optional[ReadCache] = None,
        *,
        is_online: Callable[[], bool] = _always_online,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = get_settings()
        self.queue = queue
        self.remote = remote
        self.cache = cache
        self.is_online = is_online
        self.max_retries = (
            settings.sync_max_retries if max_retries is None else max_retries
        )
        self.retry_delay_ms = (
            settings.sync_retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        )
        self._sleep = sleep
        self._drain_lock = threading.Lock()

    def enqueue(
        self, action: MutationAction | str, payload: dict[str, Any]
    ) -> MutationRecord:
        record = build_mutation(action, payload)
        self.queue.enqueue(record)
        return record

    def pending_count(self) -> int:
        return self.queue.count()

    @property
    def draining(self) -> bool:
        return self._drain_lock.locked()

    def drain(self) -> DrainResult:
        if not self.is_online():
            logger.info("sync_drain: skipped reason=offline")
            return DrainResult(remaining=self.queue.count())
        if not self._drain_lock.acquire(blocking=False):
            logger.info("sync_drain: skipped reason=in_progress")
            return DrainResult(skipped=True)
        try:
            return self._drain_pass()
        finally:
            self._drain_lock.release()

    def _drain_pass(self) -> DrainResult:
        # Reading the queue is the one storage failure that aborts the pass.
        pending = self.queue.list_pending()
        synced = 0
        failed = 0
        # Resources with an earlier mutation still queued in this pass.
        blocked: set[str] = set()
        for record in pending:
            if record.resource_id in blocked:
                logger.info(
                    f"sync_deferred: id={record.id} resource={record.resource_id}"
                )
                continue
            if record.retry_count >= self.max_retries:
                self._abandon(record, record.last_error or "max retries exceeded")
                failed += 1
                continue
            try:
                self._dispatch(record)
            except RemoteStoreError as exc:
                failed += 1
                if exc.retryable:
                    self._record_failure(record, str(exc))
                    blocked.add(record.resource_id)
                else:
                    self._abandon(record, str(exc))
                continue
            if self._complete(record):
                synced += 1
            else:
                failed += 1

        remaining = self.queue.count()
        logger.info(
            f"sync_drain: synced={synced} failed={failed} remaining={remaining}"
        )
        return DrainResult(synced=synced, failed=failed, remaining=remaining)

    def _dispatch(self, record: MutationRecord) -> None:
        key = record.idempotency_key
        if record.action == MutationAction.create:
            self.remote.create(record.payload, key)
        elif record.action == MutationAction.update:
            self.remote.update(record.resource_id, record.body(), key)
        else:
            self.remote.delete(record.resource_id, key)

    def _complete(self, record: MutationRecord) -> bool:
        # The server already holds the write.
        if self.cache is not None:
            try:
                self.cache.invalidate(TRANSACTIONS_SCOPE)
            except StorageError:
                logger.exception(f"sync_cache_invalidate_failed: id={record.id}")
        try:
            self.queue.remove(record.id)
        except StorageError:
            # Stays queued; the replay reuses the key and is deduplicated.
            logger.exception(f"sync_remove_failed: id={record.id}")
            return False
        logger.info(
            f"sync_applied: id={record.id} action={record.action.value} resource={record.resource_id}"
        )
        return True

    def _record_failure(self, record: MutationRecord, error: str) -> None:
        retry_count = record.retry_count + 1
        try:
            self.queue.update(
                record.id, {"retry_count": retry_count, "last_error": error}
            )
        except StorageError:
            logger.exception(f"sync_retry_persist_failed: id={record.id}")
        delay_ms = backoff_delay_ms(retry_count, self.retry_delay_ms)
        logger.warning(
            f"sync_retry: id={record.id} action={record.action.value} "
            f"retry_count={retry_count} delay_ms={delay_ms} error={error}"
        )
        self._sleep(delay_ms / 1000)

    def _abandon(self, record: MutationRecord, reason: str) -> None:
        try:
            self.queue.dead_letter(record, reason)
        except StorageError:
            logger.exception(f"sync_dead_letter_failed: id={record.id}")
            return
        logger.error(
            f"sync_abandoned: id={record.id} action={record.action.value} "
            f"resource={record.resource_id} retry_count={record.retry_count} reason={reason}"
        )
