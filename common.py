"""Helpers shared by the offline client and the server.

Nothing here may import ``database`` or ``models``: the client side imports
this module and must not build the server's engine.
"""
import time
import uuid
from datetime import datetime, timezone
from enum import Enum


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


def utcnow() -> datetime:
    # Stored datetimes are naive and always hold UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_idempotency_key() -> str:
    return f"{time.time_ns()}_{uuid.uuid4()}"


def enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()
