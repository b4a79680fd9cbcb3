import logging
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import SessionLocal
from idempotency import IdempotencyKeyReused, execute_idempotent
from models import Transaction, TransactionType
from maintenance import LedgerMaintenanceScheduler
from schemas import CategoryIn, CategoryOut, TransactionIn, TransactionOut, TransactionPatch
from services import (
    CategoryService,
    TransactionConflict,
    TransactionFilters,
    TransactionNotFound,
    TransactionService,
)


app = FastAPI(title="Expense Tracker Sync API")

NO_STORE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}
REPLAYED_HEADER = "Idempotent-Replayed"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


ledger_scheduler = LedgerMaintenanceScheduler()


@app.on_event("startup")
def startup_event():
    ledger_scheduler.start()


@app.on_event("shutdown")
def shutdown_event():
    ledger_scheduler.stop()


def serialize_transaction(txn: Transaction) -> dict[str, Any]:
    return TransactionOut.model_validate(txn).model_dump(mode="json")


def json_response(status_code: int, body: Any, replayed: bool = False) -> JSONResponse:
    headers = dict(NO_STORE_HEADERS)
    if replayed:
        headers[REPLAYED_HEADER] = "true"
    return JSONResponse(body, status_code=status_code, headers=headers)


def run_write(
    db: Session,
    idempotency_key: Optional[str],
    operation: str,
    fn: Callable[[], tuple[int, Any]],
) -> JSONResponse:
    try:
        status_code, body, replayed = execute_idempotent(
            db, idempotency_key, operation, fn
        )
    except IdempotencyKeyReused as exc:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except TransactionNotFound as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransactionConflict as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if replayed:
        logging.info(f"api_replayed: operation={operation} key={idempotency_key}")
    return json_response(status_code, body, replayed)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    categories = CategoryService(db).list_all()
    return {
        "data": [
            CategoryOut.model_validate(c).model_dump(mode="json") for c in categories
        ]
    }


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": CategoryOut.model_validate(category).model_dump(mode="json")}


@app.get("/api/transactions")
def list_transactions(
    month: Optional[str] = None,
    category_id: Optional[int] = None,
    type: Optional[TransactionType] = Query(default=None),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(month=month, category_id=category_id, type=type)
    try:
        txns = TransactionService(db).list(filters)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return json_response(200, {"data": [serialize_transaction(t) for t in txns]})


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return json_response(200, {"data": serialize_transaction(txn)})


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None),
):
    def write() -> tuple[int, Any]:
        txn = TransactionService(db).create(payload)
        return 201, {"data": serialize_transaction(txn)}

    return run_write(db, idempotency_key, "POST /api/transactions", write)


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    payload: TransactionPatch,
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None),
):
    def write() -> tuple[int, Any]:
        txn = TransactionService(db).update(transaction_id, payload)
        return 200, {"data": serialize_transaction(txn)}

    return run_write(
        db, idempotency_key, f"PATCH /api/transactions/{transaction_id}", write
    )


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None),
):
    def write() -> tuple[int, Any]:
        # Deleting an absent row succeeds, which makes retries harmless.
        deleted = TransactionService(db).delete(transaction_id)
        return 200, {"success": True, "deleted": deleted}

    return run_write(
        db, idempotency_key, f"DELETE /api/transactions/{transaction_id}", write
    )
