"""Durable local key-value storage for the offline client.

Values are JSON documents. ``SQLiteKeyValueStore`` keeps them in a small
SQLite file next to the app data so they survive restarts;
``MemoryKeyValueStore`` is the ephemeral variant used in tests.
"""
from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from common import enable_sqlite_pragmas, utcnow


class StorageError(RuntimeError):
    pass


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "") -> list[str]: ...


kv_metadata = MetaData()

kv_entries = Table(
    "kv_entries",
    kv_metadata,
    Column("key", String(200), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)


class SQLiteKeyValueStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{self.path}", connect_args={"check_same_thread": False}
        )
        event.listen(self.engine, "connect", enable_sqlite_pragmas)
        try:
            kv_metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot open local store at {self.path}") from exc

    def get(self, key: str) -> Optional[Any]:
        try:
            with self.engine.connect() as conn:
                raw = conn.execute(
                    select(kv_entries.c.value).where(kv_entries.c.key == key)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read key {key}") from exc
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        stmt = sqlite_insert(kv_entries).values(
            key=key, value=json.dumps(value), updated_at=utcnow()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[kv_entries.c.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write key {key}") from exc

    def delete(self, key: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(kv_entries).where(kv_entries.c.key == key))
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to delete key {key}") from exc

    def list_keys(self, prefix: str = "") -> list[str]:
        stmt = select(kv_entries.c.key).order_by(kv_entries.c.key)
        if prefix:
            stmt = stmt.where(kv_entries.c.key.startswith(prefix, autoescape=True))
        try:
            with self.engine.connect() as conn:
                return list(conn.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise StorageError("Failed to list keys") from exc

    def close(self) -> None:
        self.engine.dispose()


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so callers see the same types as on disk.
        encoded = json.loads(json.dumps(value))
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))
