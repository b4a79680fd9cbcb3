"""Idempotency keys and the server-side response ledger.

Clients generate one key per logical write and send it on every retry of
that write. The server records the first successful response for each key
and hands it back for repeats inside the retention window, so a retried
create or update is applied at most once.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common import utcnow
from config import get_settings
from models import IdempotencyRecord


logger = logging.getLogger(__name__)


class IdempotencyKeyReused(ValueError):
    pass


@dataclass(frozen=True)
class StoredResponse:
    operation: str
    status_code: int
    body: Any
    stored_at: datetime


class IdempotencyLedger:
    def __init__(self, session: Session, ttl_secs: Optional[int] = None) -> None:
        self.session = session
        if ttl_secs is None:
            ttl_secs = get_settings().idempotency_ttl_secs
        self.ttl = timedelta(seconds=ttl_secs)

    def _cutoff(self, now: Optional[datetime]) -> datetime:
        return (now or utcnow()) - self.ttl

    def check(self, key: str, now: Optional[datetime] = None) -> Optional[StoredResponse]:
        record = self.session.scalar(
            select(IdempotencyRecord).where(IdempotencyRecord.key == key)
        )
        if not record:
            return None
        if record.stored_at < self._cutoff(now):
            # Expired keys behave as if never seen and may be reused.
            self.session.delete(record)
            self.session.flush()
            return None
        return StoredResponse(
            operation=record.operation,
            status_code=record.status_code,
            body=json.loads(record.response),
            stored_at=record.stored_at,
        )

    def store(
        self,
        key: str,
        operation: str,
        status_code: int,
        response: Any,
        now: Optional[datetime] = None,
    ) -> None:
        self.session.add(
            IdempotencyRecord(
                key=key,
                operation=operation,
                status_code=status_code,
                response=json.dumps(response),
                stored_at=now or utcnow(),
            )
        )
        self.session.flush()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        result = self.session.execute(
            delete(IdempotencyRecord).where(
                IdempotencyRecord.stored_at < self._cutoff(now)
            )
        )
        return result.rowcount or 0


def _replay(stored: StoredResponse, key: str, operation: str) -> tuple[int, Any, bool]:
    if stored.operation != operation:
        raise IdempotencyKeyReused(
            f"Idempotency key already used for {stored.operation}"
        )
    logger.info(f"idempotency_replay: key={key} operation={operation}")
    return stored.status_code, stored.body, True


def execute_idempotent(
    session: Session,
    key: Optional[str],
    operation: str,
    fn: Callable[[], tuple[int, Any]],
    *,
    ledger: Optional[IdempotencyLedger] = None,
) -> tuple[int, Any, bool]:
    """Run a write at most once per idempotency key and commit it.

    ``fn`` performs the write on ``session`` without committing and returns
    ``(status_code, body)``. The body is stored under ``key`` in the same
    transaction as the write. Returns ``(status_code, body, replayed)``.
    Requests without a key run unguarded.
    """
    if not key:
        status_code, body = fn()
        session.commit()
        return status_code, body, False

    ledger = ledger or IdempotencyLedger(session)
    stored = ledger.check(key)
    if stored is not None:
        return _replay(stored, key, operation)

    status_code, body = fn()
    try:
        ledger.store(key, operation, status_code, body)
        session.commit()
    except IntegrityError:
        # A concurrent request with the same key committed first.
        session.rollback()
        stored = ledger.check(key)
        if stored is None:
            raise
        return _replay(stored, key, operation)
    return status_code, body, False
