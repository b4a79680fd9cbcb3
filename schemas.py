from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from common import TransactionType, generate_idempotency_key, utcnow


MAX_AMOUNT = 999_999_999_999
MAX_DESCRIPTION_LENGTH = 500


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(default=None, min_length=1, max_length=36)
    txn_date: date = Field(default_factory=date.today)
    type: TransactionType
    amount: int = Field(..., gt=0, le=MAX_AMOUNT)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)


class TransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    txn_date: Optional[date] = None
    type: Optional[TransactionType] = None
    amount: Optional[int] = Field(default=None, gt=0, le=MAX_AMOUNT)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "TransactionPatch":
        for name in ("txn_date", "type", "amount"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    txn_date: date
    type: TransactionType
    amount: int
    category_id: Optional[int]
    description: Optional[str]
    created_at: datetime
    updated_at: datetime


class MutationAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class MutationRecord(BaseModel):
    """One queued write intent, replayed until the remote store confirms it."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    idempotency_key: str = Field(default_factory=generate_idempotency_key)
    action: MutationAction
    payload: dict[str, Any]
    enqueued_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None

    @property
    def resource_id(self) -> Optional[str]:
        value = self.payload.get("id")
        return str(value) if value is not None else None

    def body(self) -> dict[str, Any]:
        """Payload without the target id, as sent in an update request."""
        return {k: v for k, v in self.payload.items() if k != "id"}


class DeadLetter(BaseModel):
    record: MutationRecord
    reason: str
    abandoned_at: datetime = Field(default_factory=utcnow)
