# Overview: Invoice numbering and the invoice index; per-prefix counters seeded from existing ids.

from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence, Invoice, InvoiceKind
from ..time_utils import parse_iso_datetime
from . import gateway
from .errors import NotFound


def _highest_existing_number(kind: InvoiceKind) -> int:
    pattern = re.compile(rf"^{re.escape(kind.prefix)}(\d+)$")
    highest = 0
    for record in gateway.get_all(kind.collection):
        match = pattern.match(str(record.get("id", "")))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def next_document_number(kind: InvoiceKind) -> str:
    """
    Allocate the next invoice id for a kind, e.g. F12, R3, P7, PR2.

    Must run inside a ledger command: the counter row is incremented in the
    same transaction that stores the invoice, so a rolled-back command does
    not consume a number. The first use of a prefix (and the first use after
    a restore) seeds the counter from max(existing numeric suffix) + 1.
    """
    prefix = kind.prefix
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.prefix == prefix)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(prefix=prefix)
            .scalar()
        )
        number = current - 1
    else:
        number = _highest_existing_number(kind) + 1
        db.session.add(DocumentSequence(prefix=prefix, next_number=number + 1))
        db.session.flush()
    return f"{prefix}{number}"


def reset_sequences() -> int:
    """Drop every counter so the next allocation reseeds from stored invoices."""
    sequences = db.session.query(DocumentSequence).all()
    for seq in sequences:
        db.session.delete(seq)
    db.session.flush()
    return len(sequences)


# =============================================================================
# Invoice Index
# =============================================================================

def load_invoice(collection: str, invoice_id: str, *, lock: bool = False) -> Invoice:
    record = gateway.get_by_id(collection, invoice_id, lock=lock)
    if not record:
        raise NotFound(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
    return Invoice.from_dict(record)


def list_invoices(
    kind: InvoiceKind | None = None,
    *,
    collection: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Invoice]:
    """
    Invoices ordered by timestamp.

    start/end are inclusive UTC-naive bounds on the invoice timestamp.
    """
    if kind is not None:
        collections = [kind.collection]
    elif collection is not None:
        collections = [collection]
    else:
        collections = [gateway.SALE_INVOICES, gateway.PURCHASE_INVOICES]

    invoices = []
    for name in collections:
        for record in gateway.get_all(name):
            if kind is not None and record.get("kind") != kind.value:
                continue
            if start or end:
                ts = parse_iso_datetime(record.get("timestamp"))
                if ts is None or (start and ts < start) or (end and ts > end):
                    continue
            invoices.append(Invoice.from_dict(record))
    invoices.sort(key=lambda inv: inv.timestamp)
    return invoices


def returns_for(invoice: Invoice) -> list[Invoice]:
    """Return invoices referencing invoice, oldest first."""
    if invoice.kind == InvoiceKind.SALE:
        return_kind = InvoiceKind.SALE_RETURN
    elif invoice.kind == InvoiceKind.PURCHASE:
        return_kind = InvoiceKind.PURCHASE_RETURN
    else:
        return []
    return [
        inv for inv in list_invoices(return_kind)
        if inv.original_invoice_id == invoice.id
    ]
