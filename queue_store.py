from __future__ import annotations

import logging
import threading
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from schemas import (
    DeadLetter,
    MutationAction,
    MutationRecord,
    TransactionIn,
    TransactionPatch,
)
from storage import KeyValueStore


logger = logging.getLogger(__name__)

PENDING_KEY = "pending_mutations"
DEAD_LETTER_KEY = "dead_letter_mutations"

_MUTABLE_FIELDS = frozenset({"retry_count", "last_error"})


class MutationValidationError(ValueError):
    pass


def _require_id(payload: dict[str, Any]) -> str:
    value = payload.get("id")
    if value is None or str(value).strip() == "":
        raise MutationValidationError("Mutation payload requires a resource id")
    return str(value).strip()


def build_mutation(action: MutationAction | str, payload: dict[str, Any]) -> MutationRecord:
    """Validate ``payload`` for ``action`` and wrap it in a fresh record.

    Creates get a client-side id when none is given so later queued updates
    and deletes can address the row before the server has seen it.
    """
    try:
        action = MutationAction(action)
    except ValueError as exc:
        raise MutationValidationError(f"Unknown mutation action: {action}") from exc
    payload = dict(payload or {})

    try:
        if action == MutationAction.create:
            data = TransactionIn.model_validate(payload)
            normalized = data.model_dump(mode="json", exclude_none=True)
            normalized.setdefault("id", str(uuid4()))
        elif action == MutationAction.update:
            resource_id = _require_id(payload)
            patch = TransactionPatch.model_validate(
                {k: v for k, v in payload.items() if k != "id"}
            )
            fields = patch.model_dump(mode="json", exclude_unset=True)
            if not fields:
                raise MutationValidationError("Update requires at least one field")
            normalized = {"id": resource_id, **fields}
        else:
            normalized = {"id": _require_id(payload)}
    except ValidationError as exc:
        raise MutationValidationError(str(exc)) from exc

    return MutationRecord(action=action, payload=normalized)


class QueueStore:
    """FIFO queue of pending mutations persisted in a key-value store.

    Each operation holds one lock around its read-modify-write, so an
    enqueue from the UI thread is never lost to a concurrent drain.
    ``namespace`` keeps queues for different users apart in one store.
    """

    def __init__(self, kv: KeyValueStore, namespace: str = "") -> None:
        self.kv = kv
        self._pending_key = f"{namespace}{PENDING_KEY}"
        self._dead_letter_key = f"{namespace}{DEAD_LETTER_KEY}"
        self._lock = threading.RLock()

    def _load_pending(self) -> list[MutationRecord]:
        raw = self.kv.get(self._pending_key) or []
        return [MutationRecord.model_validate(item) for item in raw]

    def _save_pending(self, records: list[MutationRecord]) -> None:
        self.kv.set(self._pending_key, [r.model_dump(mode="json") for r in records])

    def _load_dead_letters(self) -> list[DeadLetter]:
        raw = self.kv.get(self._dead_letter_key) or []
        return [DeadLetter.model_validate(item) for item in raw]

    def _save_dead_letters(self, letters: list[DeadLetter]) -> None:
        self.kv.set(self._dead_letter_key, [d.model_dump(mode="json") for d in letters])

    def enqueue(self, record: MutationRecord) -> None:
        with self._lock:
            records = self._load_pending()
            if any(r.id == record.id for r in records):
                raise ValueError(f"Mutation {record.id} is already queued")
            records.append(record)
            self._save_pending(records)
        logger.info(
            f"queue_enqueue: id={record.id} action={record.action.value} pending={len(records)}"
        )

    def list_pending(self) -> list[MutationRecord]:
        with self._lock:
            return self._load_pending()

    def count(self) -> int:
        return len(self.list_pending())

    def get(self, record_id: str) -> Optional[MutationRecord]:
        for record in self.list_pending():
            if record.id == record_id:
                return record
        return None

    def remove(self, record_id: str) -> bool:
        with self._lock:
            records = self._load_pending()
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            self._save_pending(remaining)
            return True

    def update(self, record_id: str, patch: dict[str, Any]) -> MutationRecord:
        illegal = set(patch) - _MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Cannot modify mutation fields: {', '.join(sorted(illegal))}")
        with self._lock:
            records = self._load_pending()
            for index, record in enumerate(records):
                if record.id == record_id:
                    updated = MutationRecord.model_validate(
                        {**record.model_dump(), **patch}
                    )
                    records[index] = updated
                    self._save_pending(records)
                    return updated
        raise ValueError("Mutation not found")

    def dead_letter(self, record: MutationRecord, reason: str) -> None:
        with self._lock:
            letters = self._load_dead_letters()
            if not any(d.record.id == record.id for d in letters):
                letters.append(DeadLetter(record=record, reason=reason))
                # Dead letter is written before the pending entry goes away.
                self._save_dead_letters(letters)
            records = self._load_pending()
            self._save_pending([r for r in records if r.id != record.id])

    def list_dead_letters(self) -> list[DeadLetter]:
        with self._lock:
            return self._load_dead_letters()

    def requeue_dead_letter(self, record_id: str) -> MutationRecord:
        with self._lock:
            letters = self._load_dead_letters()
            match = next((d for d in letters if d.record.id == record_id), None)
            if match is None:
                raise ValueError("Dead letter not found")
            record = match.record.model_copy(update={"retry_count": 0, "last_error": None})
            records = [r for r in self._load_pending() if r.id != record_id]
            records.append(record)
            self._save_pending(records)
            self._save_dead_letters([d for d in letters if d.record.id != record_id])
        logger.info(f"queue_requeue: id={record_id} key={record.idempotency_key}")
        return record

    def discard_dead_letter(self, record_id: str) -> None:
        with self._lock:
            letters = self._load_dead_letters()
            remaining = [d for d in letters if d.record.id != record_id]
            if len(remaining) == len(letters):
                raise ValueError("Dead letter not found")
            self._save_dead_letters(remaining)
