from typing import Any

import pytest

from queue_store import MutationValidationError, QueueStore, build_mutation
from schemas import MutationAction
from storage import MemoryKeyValueStore, SQLiteKeyValueStore, StorageError


def _create(amount: int = 50000) -> dict[str, Any]:
    return {"amount": amount, "type": "expense", "txn_date": "2025-01-05"}


def test_list_pending_preserves_enqueue_order() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    records = [build_mutation("create", _create(amount)) for amount in (100, 200, 300)]
    for record in records:
        queue.enqueue(record)

    assert [r.id for r in queue.list_pending()] == [r.id for r in records]
    assert queue.count() == 3


def test_queue_survives_restart(tmp_path) -> None:
    path = tmp_path / "offline_queue.db"
    kv = SQLiteKeyValueStore(path)
    record = build_mutation("create", _create())
    QueueStore(kv).enqueue(record)
    kv.close()

    reopened = SQLiteKeyValueStore(path)
    pending = QueueStore(reopened).list_pending()
    reopened.close()

    assert len(pending) == 1
    assert pending[0].id == record.id
    assert pending[0].idempotency_key == record.idempotency_key
    assert pending[0].enqueued_at == record.enqueued_at
    assert pending[0].payload == record.payload


def test_retry_count_persists_across_restart(tmp_path) -> None:
    path = tmp_path / "offline_queue.db"
    kv = SQLiteKeyValueStore(path)
    record = build_mutation("create", _create())
    queue = QueueStore(kv)
    queue.enqueue(record)
    queue.update(record.id, {"retry_count": 2, "last_error": "timeout"})
    kv.close()

    reopened = SQLiteKeyValueStore(path)
    pending = QueueStore(reopened).list_pending()
    reopened.close()

    assert pending[0].retry_count == 2
    assert pending[0].last_error == "timeout"


def test_update_rejects_immutable_fields() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    record = build_mutation("create", _create())
    queue.enqueue(record)

    with pytest.raises(ValueError):
        queue.update(record.id, {"idempotency_key": "other"})
    with pytest.raises(ValueError):
        queue.update(record.id, {"enqueued_at": "2020-01-01T00:00:00"})
    assert queue.get(record.id).idempotency_key == record.idempotency_key


def test_remove_unknown_record_is_noop() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    record = build_mutation("create", _create())
    queue.enqueue(record)

    assert queue.remove("missing") is False
    assert queue.remove(record.id) is True
    assert queue.list_pending() == []


def test_duplicate_enqueue_is_rejected() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    record = build_mutation("create", _create())
    queue.enqueue(record)

    with pytest.raises(ValueError):
        queue.enqueue(record)
    assert queue.count() == 1


def test_namespaces_keep_queues_apart() -> None:
    kv = MemoryKeyValueStore()
    alice = QueueStore(kv, namespace="user:1:")
    bob = QueueStore(kv, namespace="user:2:")
    alice.enqueue(build_mutation("create", _create()))

    assert alice.count() == 1
    assert bob.count() == 0


def test_dead_letter_round_trip_keeps_idempotency_key() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    record = build_mutation("create", _create())
    queue.enqueue(record)
    queue.update(record.id, {"retry_count": 3})

    queue.dead_letter(queue.get(record.id), "max retries exceeded")
    assert queue.count() == 0
    letters = queue.list_dead_letters()
    assert [d.record.id for d in letters] == [record.id]
    assert letters[0].reason == "max retries exceeded"

    requeued = queue.requeue_dead_letter(record.id)
    assert requeued.retry_count == 0
    assert requeued.idempotency_key == record.idempotency_key
    assert queue.list_dead_letters() == []
    assert [r.id for r in queue.list_pending()] == [record.id]


def test_discard_dead_letter() -> None:
    queue = QueueStore(MemoryKeyValueStore())
    record = build_mutation("delete", {"id": "abc"})
    queue.enqueue(record)
    queue.dead_letter(record, "rejected")

    queue.discard_dead_letter(record.id)
    assert queue.list_dead_letters() == []
    with pytest.raises(ValueError):
        queue.discard_dead_letter(record.id)


class FailingWrites(MemoryKeyValueStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def set(self, key: str, value: Any) -> None:
        if self.fail:
            raise StorageError("quota exceeded")
        super().set(key, value)


def test_storage_failure_propagates_and_keeps_contents() -> None:
    kv = FailingWrites()
    queue = QueueStore(kv)
    first = build_mutation("create", _create())
    queue.enqueue(first)

    kv.fail = True
    with pytest.raises(StorageError):
        queue.enqueue(build_mutation("create", _create(999)))

    assert [r.id for r in queue.list_pending()] == [first.id]


def test_build_create_assigns_client_id_and_normalizes() -> None:
    record = build_mutation(MutationAction.create, {"amount": 50000, "type": "expense"})

    assert record.action == MutationAction.create
    assert record.retry_count == 0
    assert record.payload["amount"] == 50000
    assert record.payload["type"] == "expense"
    assert record.resource_id
    assert "txn_date" in record.payload


def test_build_update_keeps_only_given_fields() -> None:
    record = build_mutation("update", {"id": "abc", "amount": 1200})

    assert record.payload == {"id": "abc", "amount": 1200}
    assert record.body() == {"amount": 1200}
    assert record.resource_id == "abc"


@pytest.mark.parametrize(
    "action, payload",
    [
        ("create", {"type": "expense"}),
        ("create", {"amount": 0, "type": "expense"}),
        ("create", {"amount": 100, "type": "transfer"}),
        ("update", {"amount": 100}),
        ("update", {"id": "abc"}),
        ("update", {"id": "abc", "amount": None}),
        ("delete", {}),
        ("delete", {"id": "  "}),
        ("archive", {"id": "abc"}),
    ],
)
def test_malformed_mutations_are_rejected(action, payload) -> None:
    with pytest.raises(MutationValidationError):
        build_mutation(action, payload)
