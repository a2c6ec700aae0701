# Overview: Persistence gateway; named collections of JSON documents over ledger_records.

from __future__ import annotations

import copy
from typing import Optional

from ..extensions import db
from ..models import LedgerRecord
from .concurrency import lock_for_update
from .errors import LedgerValidationError

PRODUCTS = "products"
SALE_INVOICES = "sale_invoices"
PURCHASE_INVOICES = "purchase_invoices"
CUSTOMERS = "customers"
SUPPLIERS = "suppliers"
EMPLOYEES = "employees"
EXPENSES = "expenses"
SERVICES = "services"
CUSTOMER_TRANSACTIONS = "customer_transactions"
SUPPLIER_TRANSACTIONS = "supplier_transactions"
PAYROLL_TRANSACTIONS = "payroll_transactions"
ACTIVITY_LOGS = "activity_logs"
STORE_SETTINGS = "store_settings"

COLLECTIONS = (
    PRODUCTS,
    SALE_INVOICES,
    PURCHASE_INVOICES,
    CUSTOMERS,
    SUPPLIERS,
    EMPLOYEES,
    EXPENSES,
    SERVICES,
    CUSTOMER_TRANSACTIONS,
    SUPPLIER_TRANSACTIONS,
    PAYROLL_TRANSACTIONS,
    ACTIVITY_LOGS,
    STORE_SETTINGS,
)


def _check(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise LedgerValidationError(f"Unknown collection: {collection}", {"collection": collection})


def _row(collection: str, record_id: str, *, lock: bool = False) -> Optional[LedgerRecord]:
    query = db.session.query(LedgerRecord).filter_by(collection=collection, record_id=str(record_id))
    if lock:
        query = lock_for_update(query)
    return query.one_or_none()


def get_all(collection: str) -> list[dict]:
    """All documents of a collection in insertion order (copies)."""
    _check(collection)
    rows = (
        db.session.query(LedgerRecord)
        .filter_by(collection=collection)
        .order_by(LedgerRecord.id.asc())
        .all()
    )
    return [copy.deepcopy(r.data) for r in rows]


def get_by_id(collection: str, record_id: str, *, lock: bool = False) -> Optional[dict]:
    _check(collection)
    if record_id is None or record_id == "":
        return None
    row = _row(collection, record_id, lock=lock)
    return copy.deepcopy(row.data) if row else None


def put(collection: str, record: dict) -> dict:
    """Insert or replace a document by its 'id'. Flushes so the write is visible."""
    _check(collection)
    record_id = record.get("id")
    if record_id is None or record_id == "":
        raise LedgerValidationError("Record id is required", {"collection": collection})

    data = copy.deepcopy(record)
    row = _row(collection, record_id)
    if row is None:
        row = LedgerRecord(collection=collection, record_id=str(record_id), data=data)
        db.session.add(row)
    elif row.data != data:
        row.data = data
    db.session.flush()
    return copy.deepcopy(data)


def delete(collection: str, record_id: str) -> bool:
    _check(collection)
    row = _row(collection, record_id)
    if row is None:
        return False
    db.session.delete(row)
    db.session.flush()
    return True


def clear(collection: str) -> int:
    _check(collection)
    rows = db.session.query(LedgerRecord).filter_by(collection=collection).all()
    for row in rows:
        db.session.delete(row)
    db.session.flush()
    return len(rows)


def count(collection: str) -> int:
    _check(collection)
    return db.session.query(LedgerRecord).filter_by(collection=collection).count()
