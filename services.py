from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Category, Transaction, TransactionType
from schemas import CategoryIn, TransactionIn, TransactionPatch


MONTH_RE = re.compile(r"^\d{4}-\d{2}$")


class TransactionNotFound(ValueError):
    pass


class TransactionConflict(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def _month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_range(month: str) -> tuple[date, date]:
    if not MONTH_RE.match(month):
        raise ValueError("Month must be formatted as YYYY-MM")
    year, month_num = (int(part) for part in month.split("-"))
    if not 1 <= month_num <= 12:
        raise ValueError("Month must be formatted as YYYY-MM")
    return _month_start(year, month_num), _month_end(year, month_num)


@dataclass
class TransactionFilters:
    month: Optional[str] = None
    category_id: Optional[int] = None
    type: Optional[TransactionType] = None


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return list(self.session.scalars(stmt))

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=name, type=data.type)
        self.session.add(category)
        self.session.flush()
        return category


class TransactionService:
    """Transaction writes for the API.

    Methods flush but never commit; the caller commits together with the
    idempotency ledger entry for the request.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _check_category(self, category_id: Optional[int], txn_type: TransactionType) -> None:
        if category_id is None:
            return
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.type != txn_type:
            raise ValueError("Category type mismatch")

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if filters.month:
            start, end = month_range(filters.month)
            stmt = stmt.where(Transaction.txn_date.between(start, end))
        if filters.category_id is not None:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.type is not None:
            stmt = stmt.where(Transaction.type == filters.type)
        stmt = stmt.order_by(Transaction.txn_date.desc(), Transaction.created_at.desc())
        return list(self.session.scalars(stmt))

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id, data.type)
        if data.id and self.session.get(Transaction, data.id) is not None:
            raise TransactionConflict("Transaction already exists")
        txn = Transaction(
            user_id=self.user_id,
            txn_date=data.txn_date,
            type=data.type,
            amount=data.amount,
            category_id=data.category_id,
            description=data.description,
        )
        if data.id:
            txn.id = data.id
        self.session.add(txn)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise TransactionConflict("Transaction already exists") from exc
        return txn

    def update(self, transaction_id: str, data: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        new_type = changes.get("type", txn.type)
        if "category_id" in changes or "type" in changes:
            self._check_category(changes.get("category_id", txn.category_id), new_type)
        for field, value in changes.items():
            setattr(txn, field, value)
        self.session.flush()
        return txn

    def delete(self, transaction_id: str) -> bool:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        return bool(result.rowcount)
