from .records import LedgerRecord, DocumentSequence
from .entities import (
    ALLOWED_TRANSACTION_KINDS,
    TRANSACTION_SIGNS,
    INVOICE_STATUS_COMMITTED,
    INVOICE_STATUS_EDITED,
    Activity,
    Allocation,
    Batch,
    Expense,
    Invoice,
    InvoiceKind,
    LineItem,
    LineType,
    Party,
    PartyKind,
    Product,
    Service,
    Transaction,
    TransactionKind,
    new_id,
)

__all__ = [
    'LedgerRecord', 'DocumentSequence',
    'ALLOWED_TRANSACTION_KINDS', 'TRANSACTION_SIGNS',
    'INVOICE_STATUS_COMMITTED', 'INVOICE_STATUS_EDITED',
    'Activity', 'Allocation', 'Batch', 'Expense', 'Invoice', 'InvoiceKind',
    'LineItem', 'LineType', 'Party', 'PartyKind', 'Product', 'Service',
    'Transaction', 'TransactionKind', 'new_id',
]
