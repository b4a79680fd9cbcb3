from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from common import generate_idempotency_key
from database import Base
from idempotency import IdempotencyKeyReused, IdempotencyLedger, execute_idempotent
from models import IdempotencyRecord, Transaction, TransactionType
from schemas import TransactionIn
from services import TransactionService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine, autoflush=False, expire_on_commit=False)


def test_generated_keys_are_unique_and_timestamped() -> None:
    keys = {generate_idempotency_key() for _ in range(500)}
    assert len(keys) == 500

    stamp, _, random_part = next(iter(keys)).partition("_")
    assert stamp.isdigit()
    assert len(random_part) == 36


def test_ledger_returns_stored_response() -> None:
    with _session() as session:
        ledger = IdempotencyLedger(session, ttl_secs=86400)
        assert ledger.check("K1") is None

        ledger.store("K1", "POST /api/transactions", 201, {"data": {"id": "a"}})
        stored = ledger.check("K1")

        assert stored is not None
        assert stored.status_code == 201
        assert stored.body == {"data": {"id": "a"}}


def test_ledger_entries_expire_after_retention_window() -> None:
    with _session() as session:
        ledger = IdempotencyLedger(session, ttl_secs=24 * 3600)
        t0 = datetime(2025, 1, 1, 12, 0)
        ledger.store("K1", "POST /api/transactions", 201, {"ok": True}, now=t0)

        assert ledger.check("K1", now=t0 + timedelta(hours=23)) is not None
        assert ledger.check("K1", now=t0 + timedelta(hours=25)) is None
        assert session.scalar(select(func.count(IdempotencyRecord.id))) == 0


def test_purge_expired_removes_only_old_entries() -> None:
    with _session() as session:
        ledger = IdempotencyLedger(session, ttl_secs=3600)
        now = datetime(2025, 1, 2, 0, 0)
        ledger.store("old", "op", 200, {}, now=now - timedelta(hours=2))
        ledger.store("fresh", "op", 200, {}, now=now - timedelta(minutes=5))

        assert ledger.purge_expired(now=now) == 1
        keys = session.scalars(select(IdempotencyRecord.key)).all()
        assert keys == ["fresh"]


def _create_write(session: Session, calls: list[str]):
    def write():
        calls.append("write")
        txn = TransactionService(session).create(
            TransactionIn(amount=50000, type=TransactionType.expense)
        )
        return 201, {"id": txn.id, "amount": txn.amount}

    return write


def test_execute_idempotent_runs_write_once_per_key() -> None:
    with _session() as session:
        calls: list[str] = []
        write = _create_write(session, calls)

        first = execute_idempotent(session, "K1", "POST /api/transactions", write)
        second = execute_idempotent(session, "K1", "POST /api/transactions", write)

        assert calls == ["write"]
        assert first[0] == second[0] == 201
        assert first[1] == second[1]
        assert first[2] is False
        assert second[2] is True
        assert session.scalar(select(func.count(Transaction.id))) == 1


def test_execute_idempotent_without_key_always_runs() -> None:
    with _session() as session:
        calls: list[str] = []
        write = _create_write(session, calls)

        execute_idempotent(session, None, "POST /api/transactions", write)
        execute_idempotent(session, None, "POST /api/transactions", write)

        assert calls == ["write", "write"]
        assert session.scalar(select(func.count(Transaction.id))) == 2


def test_execute_idempotent_rejects_key_reuse_for_other_operation() -> None:
    with _session() as session:
        write = _create_write(session, [])
        execute_idempotent(session, "K1", "POST /api/transactions", write)

        with pytest.raises(IdempotencyKeyReused):
            execute_idempotent(session, "K1", "PATCH /api/transactions/x", write)


def test_failed_write_stores_nothing() -> None:
    with _session() as session:

        def failing():
            raise ValueError("Category not found")

        with pytest.raises(ValueError):
            execute_idempotent(session, "K1", "POST /api/transactions", failing)
        session.rollback()

        assert IdempotencyLedger(session).check("K1") is None
