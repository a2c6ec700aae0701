"""
Ledger entities as closed, typed documents.

Every entity round-trips through to_dict()/from_dict() into the plain JSON
documents the persistence gateway stores. Decimals are serialized as strings
so amounts survive storage without float drift; dates are ISO strings.

Variants are closed enums (InvoiceKind, PartyKind, TransactionKind). Fields
that only make sense for one variant are checked in __post_init__ so an
invoice without its required party, or a return without its original
invoice, cannot be constructed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def dec(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def dec_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return dec(value)


def dec_str(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(value)


# =============================================================================
# ENUMS
# =============================================================================

class LineType(str, Enum):
    PRODUCT = "product"
    SERVICE = "service"


class InvoiceKind(str, Enum):
    SALE = "sale"
    SALE_RETURN = "sale_return"
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"

    @property
    def collection(self) -> str:
        return _INVOICE_COLLECTIONS[self]

    @property
    def prefix(self) -> str:
        return _INVOICE_PREFIXES[self]

    @property
    def record_type(self) -> str:
        """Value of the stored 'type' field ('sale', 'purchase' or 'return')."""
        return "return" if self.is_return else self.value

    @property
    def is_return(self) -> bool:
        return self in (InvoiceKind.SALE_RETURN, InvoiceKind.PURCHASE_RETURN)

    @property
    def is_purchase_side(self) -> bool:
        return self in (InvoiceKind.PURCHASE, InvoiceKind.PURCHASE_RETURN)


_INVOICE_COLLECTIONS = {
    InvoiceKind.SALE: "sale_invoices",
    InvoiceKind.SALE_RETURN: "sale_invoices",
    InvoiceKind.PURCHASE: "purchase_invoices",
    InvoiceKind.PURCHASE_RETURN: "purchase_invoices",
}

_INVOICE_PREFIXES = {
    InvoiceKind.SALE: "F",
    InvoiceKind.SALE_RETURN: "R",
    InvoiceKind.PURCHASE: "P",
    InvoiceKind.PURCHASE_RETURN: "PR",
}


class PartyKind(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    EMPLOYEE = "employee"

    @property
    def collection(self) -> str:
        return _PARTY_COLLECTIONS[self]

    @property
    def transaction_collection(self) -> str:
        return _PARTY_TX_COLLECTIONS[self]


_PARTY_COLLECTIONS = {
    PartyKind.CUSTOMER: "customers",
    PartyKind.SUPPLIER: "suppliers",
    PartyKind.EMPLOYEE: "employees",
}

_PARTY_TX_COLLECTIONS = {
    PartyKind.CUSTOMER: "customer_transactions",
    PartyKind.SUPPLIER: "supplier_transactions",
    PartyKind.EMPLOYEE: "payroll_transactions",
}


class TransactionKind(str, Enum):
    CREDIT_SALE = "credit_sale"
    SALE_RETURN = "sale_return"
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    PAYMENT = "payment"
    ADVANCE = "advance"
    SALARY_PAYMENT = "salary_payment"
    OPENING_BALANCE = "opening_balance"
    ADJUSTMENT = "adjustment"


# Fixed balance direction per kind. Kinds missing here carry a caller-computed
# signed delta (opening balances, edit adjustments, salary settlement).
TRANSACTION_SIGNS = {
    TransactionKind.CREDIT_SALE: 1,
    TransactionKind.SALE_RETURN: -1,
    TransactionKind.PURCHASE: 1,
    TransactionKind.PURCHASE_RETURN: -1,
    TransactionKind.PAYMENT: -1,
    TransactionKind.ADVANCE: 1,
}

ALLOWED_TRANSACTION_KINDS = {
    PartyKind.CUSTOMER: {
        TransactionKind.CREDIT_SALE,
        TransactionKind.SALE_RETURN,
        TransactionKind.PAYMENT,
        TransactionKind.OPENING_BALANCE,
        TransactionKind.ADJUSTMENT,
    },
    PartyKind.SUPPLIER: {
        TransactionKind.PURCHASE,
        TransactionKind.PURCHASE_RETURN,
        TransactionKind.PAYMENT,
        TransactionKind.OPENING_BALANCE,
        TransactionKind.ADJUSTMENT,
    },
    PartyKind.EMPLOYEE: {
        TransactionKind.ADVANCE,
        TransactionKind.SALARY_PAYMENT,
        TransactionKind.ADJUSTMENT,
    },
}


# =============================================================================
# STOCK
# =============================================================================

@dataclass
class Allocation:
    """Quantity drawn from (or credited back to) one batch."""
    batch_id: str
    quantity: int
    unit_cost: Decimal
    lot_number: Optional[str] = None

    @property
    def cost(self) -> Decimal:
        return self.unit_cost * self.quantity

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "unit_cost": dec_str(self.unit_cost),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Allocation":
        return cls(
            batch_id=data["batch_id"],
            lot_number=data.get("lot_number"),
            quantity=int(data["quantity"]),
            unit_cost=dec(data.get("unit_cost")),
        )


@dataclass
class Batch:
    id: str
    lot_number: str
    quantity: int
    unit_cost: Decimal
    purchase_date: str
    expiry_date: Optional[str] = None
    purchase_invoice_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError(f"batch {self.lot_number} quantity cannot be negative")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "unit_cost": dec_str(self.unit_cost),
            "purchase_date": self.purchase_date,
            "expiry_date": self.expiry_date,
            "purchase_invoice_id": self.purchase_invoice_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Batch":
        return cls(
            id=data["id"],
            lot_number=data["lot_number"],
            quantity=int(data.get("quantity", 0)),
            unit_cost=dec(data.get("unit_cost")),
            purchase_date=data["purchase_date"],
            expiry_date=data.get("expiry_date"),
            purchase_invoice_id=data.get("purchase_invoice_id"),
        )


@dataclass
class Product:
    """Aggregate root for stock: a catalogue item and its batches."""
    id: str
    name: str
    sale_price: Decimal
    units_per_package: int = 1
    barcode: Optional[str] = None
    batches: list[Batch] = field(default_factory=list)
    created_at: Optional[str] = None

    @property
    def total_quantity(self) -> int:
        return sum(b.quantity for b in self.batches)

    @property
    def stock_value(self) -> Decimal:
        return sum((b.unit_cost * b.quantity for b in self.batches), Decimal("0"))

    def find_batch(self, batch_id: str) -> Optional[Batch]:
        return next((b for b in self.batches if b.id == batch_id), None)

    def find_lot(self, lot_number: str) -> Optional[Batch]:
        return next((b for b in self.batches if b.lot_number == lot_number), None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sale_price": dec_str(self.sale_price),
            "units_per_package": self.units_per_package,
            "barcode": self.barcode,
            "batches": [b.to_dict() for b in self.batches],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        return cls(
            id=data["id"],
            name=data["name"],
            sale_price=dec(data.get("sale_price")),
            units_per_package=int(data.get("units_per_package") or 1),
            barcode=data.get("barcode"),
            batches=[Batch.from_dict(b) for b in data.get("batches") or []],
            created_at=data.get("created_at"),
        )


@dataclass
class Service:
    """Non-stock item that can be sold on an invoice line."""
    id: str
    name: str
    price: Decimal

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "price": dec_str(self.price)}

    @classmethod
    def from_dict(cls, data: dict) -> "Service":
        return cls(id=data["id"], name=data["name"], price=dec(data.get("price")))


# =============================================================================
# INVOICES
# =============================================================================

@dataclass
class LineItem:
    """
    One invoice line.

    unit_price is what was actually charged (invoice currency); list_price is
    the catalogue price at the time, so list_price - unit_price is the
    per-unit discount. unit_cost is the blended base-currency cost of the
    batches the line drew from, and allocations records exactly which.
    """
    line_type: LineType
    item_id: str
    name: str
    quantity: int
    unit_price: Decimal
    list_price: Decimal
    unit_cost: Optional[Decimal] = None
    allocations: list[Allocation] = field(default_factory=list)
    lot_number: Optional[str] = None
    expiry_date: Optional[str] = None
    batch_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def list_total(self) -> Decimal:
        return self.list_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "line_type": self.line_type.value,
            "item_id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": dec_str(self.unit_price),
            "list_price": dec_str(self.list_price),
            "unit_cost": dec_str(self.unit_cost),
            "allocations": [a.to_dict() for a in self.allocations],
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date,
            "batch_id": self.batch_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            line_type=LineType(data["line_type"]),
            item_id=data["item_id"],
            name=data.get("name") or "",
            quantity=int(data["quantity"]),
            unit_price=dec(data.get("unit_price")),
            list_price=dec(data.get("list_price")),
            unit_cost=dec_or_none(data.get("unit_cost")),
            allocations=[Allocation.from_dict(a) for a in data.get("allocations") or []],
            lot_number=data.get("lot_number"),
            expiry_date=data.get("expiry_date"),
            batch_id=data.get("batch_id"),
        )


INVOICE_STATUS_COMMITTED = "committed"
INVOICE_STATUS_EDITED = "edited"


@dataclass
class Invoice:
    """
    Sale, sale return, purchase or purchase return.

    Totals are in the invoice currency; base_total is the amount converted
    once at commit time and is what the party ledger sees.
    """
    id: str
    kind: InvoiceKind
    lines: list[LineItem]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    base_total: Decimal
    timestamp: str
    currency: str
    exchange_rate: Optional[Decimal] = None
    status: str = INVOICE_STATUS_COMMITTED
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    original_invoice_id: Optional[str] = None
    cashier: Optional[str] = None
    invoice_number: Optional[str] = None
    edited_at: Optional[str] = None

    def __post_init__(self):
        if self.kind.is_purchase_side:
            if not self.supplier_id:
                raise ValueError(f"{self.kind.value} invoice requires supplier_id")
            if self.customer_id:
                raise ValueError(f"{self.kind.value} invoice cannot carry customer_id")
        elif self.supplier_id:
            raise ValueError(f"{self.kind.value} invoice cannot carry supplier_id")
        if self.kind.is_return and not self.original_invoice_id:
            raise ValueError(f"{self.kind.value} invoice requires original_invoice_id")
        if self.subtotal - self.discount != self.total:
            raise ValueError("invoice total must equal subtotal - discount")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "type": self.kind.record_type,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": dec_str(self.subtotal),
            "discount": dec_str(self.discount),
            "total": dec_str(self.total),
            "base_total": dec_str(self.base_total),
            "timestamp": self.timestamp,
            "currency": self.currency,
            "exchange_rate": dec_str(self.exchange_rate),
            "status": self.status,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "original_invoice_id": self.original_invoice_id,
            "cashier": self.cashier,
            "invoice_number": self.invoice_number,
            "edited_at": self.edited_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        return cls(
            id=data["id"],
            kind=InvoiceKind(data["kind"]),
            lines=[LineItem.from_dict(line) for line in data.get("lines") or []],
            subtotal=dec(data.get("subtotal")),
            discount=dec(data.get("discount")),
            total=dec(data.get("total")),
            base_total=dec(data.get("base_total")),
            timestamp=data["timestamp"],
            currency=data["currency"],
            exchange_rate=dec_or_none(data.get("exchange_rate")),
            status=data.get("status") or INVOICE_STATUS_COMMITTED,
            customer_id=data.get("customer_id"),
            supplier_id=data.get("supplier_id"),
            original_invoice_id=data.get("original_invoice_id"),
            cashier=data.get("cashier"),
            invoice_number=data.get("invoice_number"),
            edited_at=data.get("edited_at"),
        )


# =============================================================================
# PARTIES & TRANSACTIONS
# =============================================================================

@dataclass
class Party:
    """
    Customer, supplier or employee.

    balance is a cache of the sum of the party's transaction deltas; it is
    only ever moved together with an appended transaction.
    """
    id: str
    kind: PartyKind
    name: str
    balance: Decimal = Decimal("0")
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None
    monthly_salary: Optional[Decimal] = None
    created_at: Optional[str] = None

    def __post_init__(self):
        if self.kind == PartyKind.EMPLOYEE:
            if self.monthly_salary is None:
                raise ValueError("employee requires monthly_salary")
        elif self.monthly_salary is not None:
            raise ValueError(f"{self.kind.value} cannot carry monthly_salary")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "balance": dec_str(self.balance),
            "phone": self.phone,
            "contact_person": self.contact_person,
            "address": self.address,
            "monthly_salary": dec_str(self.monthly_salary),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Party":
        return cls(
            id=data["id"],
            kind=PartyKind(data["kind"]),
            name=data["name"],
            balance=dec(data.get("balance")),
            phone=data.get("phone"),
            contact_person=data.get("contact_person"),
            address=data.get("address"),
            monthly_salary=dec_or_none(data.get("monthly_salary")),
            created_at=data.get("created_at"),
        )


@dataclass(frozen=True)
class Transaction:
    """
    Immutable ledger entry.

    amount is the base-currency magnitude shown on statements; delta is the
    signed movement it applied to the party balance.
    """
    id: str
    party_id: str
    party_kind: PartyKind
    kind: TransactionKind
    amount: Decimal
    delta: Decimal
    timestamp: str
    description: str = ""
    invoice_id: Optional[str] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    original_amount: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_id": self.party_id,
            "party_kind": self.party_kind.value,
            "kind": self.kind.value,
            "amount": dec_str(self.amount),
            "delta": dec_str(self.delta),
            "timestamp": self.timestamp,
            "description": self.description,
            "invoice_id": self.invoice_id,
            "currency": self.currency,
            "exchange_rate": dec_str(self.exchange_rate),
            "original_amount": dec_str(self.original_amount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=data["id"],
            party_id=data["party_id"],
            party_kind=PartyKind(data["party_kind"]),
            kind=TransactionKind(data["kind"]),
            amount=dec(data.get("amount")),
            delta=dec(data.get("delta")),
            timestamp=data["timestamp"],
            description=data.get("description") or "",
            invoice_id=data.get("invoice_id"),
            currency=data.get("currency"),
            exchange_rate=dec_or_none(data.get("exchange_rate")),
            original_amount=dec_or_none(data.get("original_amount")),
        )


# =============================================================================
# STANDALONE RECORDS
# =============================================================================

@dataclass
class Expense:
    id: str
    date: str
    description: str
    amount: Decimal
    category: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "amount": dec_str(self.amount),
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Expense":
        return cls(
            id=data["id"],
            date=data["date"],
            description=data.get("description") or "",
            amount=dec(data.get("amount")),
            category=data.get("category") or "general",
        )


@dataclass
class Activity:
    id: str
    type: str
    description: str
    timestamp: str
    user: Optional[str] = None
    ref_id: Optional[str] = None
    ref_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "timestamp": self.timestamp,
            "user": self.user,
            "ref_id": self.ref_id,
            "ref_type": self.ref_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Activity":
        return cls(
            id=data["id"],
            type=data["type"],
            description=data.get("description") or "",
            timestamp=data["timestamp"],
            user=data.get("user"),
            ref_id=data.get("ref_id"),
            ref_type=data.get("ref_type"),
        )
