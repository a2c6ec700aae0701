# Overview: Service-layer operations for inventory; batch store, FIFO-by-expiry allocator and restock.

from __future__ import annotations

"""
Inventory invariants (authoritative)

Stock model:
- Stock lives in lot-numbered batches on the product document.
- Product quantity is SUM(batch.quantity); it is never stored separately.
- A batch quantity never goes below zero.

Allocation:
- Batches are consumed in order of expiry date, falling back to purchase
  date for batches without one (earliest first).
- Allocation is two-phase: plan_allocation() is pure and either returns the
  full plan or raises InsufficientStock; apply_allocation() then decrements.
  A failed plan never touches a batch.
- The plan records exactly which batches were drawn from at which cost so a
  later return can credit the same batches back.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from flask import current_app

from ..models import Allocation, Batch, LineType, Product, new_id
from ..time_utils import as_date, normalize_timestamp, utcnow
from ..validation import optional_date, optional_str, require_int, require_quantity, require_str
from . import gateway
from .activity_service import append_activity
from .concurrency import run_command
from .errors import InsufficientStock, InvalidState, LedgerValidationError, NotFound
from .money import ZERO, normalize_unit_cost, quantize_cost, to_decimal
from .settings_service import get_settings

RESTOCK_LOT = "RESTOCK"


@dataclass
class AllocationPlan:
    product_id: str
    quantity: int
    allocations: list[Allocation] = field(default_factory=list)
    total_cost: Decimal = ZERO

    @property
    def unit_cost(self) -> Decimal:
        """Blended per-unit cost of everything drawn."""
        if not self.quantity:
            return ZERO
        return quantize_cost(self.total_cost / self.quantity)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "allocations": [a.to_dict() for a in self.allocations],
            "total_cost": str(self.total_cost),
            "unit_cost": str(self.unit_cost),
        }


# =============================================================================
# LOADING
# =============================================================================

def load_product(product_id: str, *, lock: bool = False) -> Product:
    record = gateway.get_by_id(gateway.PRODUCTS, product_id, lock=lock)
    if not record:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    return Product.from_dict(record)


def save_product(product: Product) -> None:
    gateway.put(gateway.PRODUCTS, product.to_dict())


def get_product(product_id: str) -> Product:
    return load_product(product_id)


def list_products(search: Optional[str] = None) -> list[Product]:
    products = [Product.from_dict(r) for r in gateway.get_all(gateway.PRODUCTS)]
    if search:
        needle = search.strip().lower()
        products = [
            p for p in products
            if needle in p.name.lower() or (p.barcode and needle == p.barcode.lower())
        ]
    return products


# =============================================================================
# ALLOCATOR
# =============================================================================

def batch_sort_key(batch: Batch) -> tuple:
    """Earliest expiry first; batches without expiry sort by purchase date."""
    purchased = as_date(batch.purchase_date) or date.max
    expires = as_date(batch.expiry_date) or purchased
    return (expires, purchased)


def plan_allocation(product: Product, quantity: int) -> AllocationPlan:
    """
    Plan drawing quantity units from product batches without mutating them.

    Raises InsufficientStock (with requested/available/shortfall) if the
    batches together hold less than quantity.
    """
    quantity = require_quantity(quantity)
    available = product.total_quantity
    if available < quantity:
        raise InsufficientStock.for_product(product.id, quantity, available, product.name)

    plan = AllocationPlan(product_id=product.id, quantity=quantity)
    remaining = quantity
    for batch in sorted(product.batches, key=batch_sort_key):
        if remaining <= 0:
            break
        take = min(remaining, batch.quantity)
        if take <= 0:
            continue
        plan.allocations.append(
            Allocation(batch_id=batch.id, lot_number=batch.lot_number, quantity=take, unit_cost=batch.unit_cost)
        )
        plan.total_cost += batch.unit_cost * take
        remaining -= take
    return plan


def apply_allocation(product: Product, plan: AllocationPlan) -> Product:
    """Decrement the planned batches on product (in place)."""
    for alloc in plan.allocations:
        batch = product.find_batch(alloc.batch_id)
        if batch is None or batch.quantity < alloc.quantity:
            available = batch.quantity if batch else 0
            raise InsufficientStock.for_product(product.id, alloc.quantity, available, product.name)
    for alloc in plan.allocations:
        product.find_batch(alloc.batch_id).quantity -= alloc.quantity
    return product


def allocate(product_id: str, quantity: int) -> AllocationPlan:
    """Draw quantity from a stored product's batches and persist the result."""
    def _op():
        product = load_product(product_id, lock=True)
        plan = plan_allocation(product, quantity)
        apply_allocation(product, plan)
        save_product(product)
        return plan

    return run_command(_op, "allocate")


def restock_product(product: Product, quantity: int, allocations: Optional[list[Allocation]] = None) -> list[Allocation]:
    """
    Credit stock back onto product (in place) and return what was credited.

    With allocations, exactly those batches are credited (a batch that has
    since disappeared is reopened under its original id and lot). Without
    them the most recently purchased batch receives the stock, or a new
    RESTOCK lot is opened when the product has none.
    """
    quantity = require_quantity(quantity)

    if allocations:
        total = sum(a.quantity for a in allocations)
        if total != quantity:
            raise LedgerValidationError(
                "Restock quantity does not match allocations",
                {"product_id": product.id, "quantity": quantity, "allocated": total},
            )
        for alloc in allocations:
            batch = product.find_batch(alloc.batch_id)
            if batch is None:
                batch = Batch(
                    id=alloc.batch_id,
                    lot_number=alloc.lot_number or RESTOCK_LOT,
                    quantity=0,
                    unit_cost=alloc.unit_cost,
                    purchase_date=utcnow().date().isoformat(),
                )
                product.batches.append(batch)
            batch.quantity += alloc.quantity
        return [Allocation(a.batch_id, a.quantity, a.unit_cost, a.lot_number) for a in allocations]

    if product.batches:
        # max() keeps the first of equal dates; reversed() makes that the latest added
        batch = max(reversed(product.batches), key=lambda b: as_date(b.purchase_date) or date.min)
    else:
        batch = Batch(
            id=new_id(),
            lot_number=RESTOCK_LOT,
            quantity=0,
            unit_cost=ZERO,
            purchase_date=utcnow().date().isoformat(),
        )
        product.batches.append(batch)
    batch.quantity += quantity
    return [Allocation(batch.id, quantity, batch.unit_cost, batch.lot_number)]


def restock(product_id: str, quantity: int, allocations: Optional[list[Allocation]] = None) -> list[Allocation]:
    def _op():
        product = load_product(product_id, lock=True)
        credited = restock_product(product, quantity, allocations)
        save_product(product)
        return credited

    return run_command(_op, "restock")


# =============================================================================
# PRODUCT CATALOGUE
# =============================================================================

def _check_barcode_unique(barcode: Optional[str], product_id: Optional[str] = None) -> None:
    if not barcode:
        return
    for record in gateway.get_all(gateway.PRODUCTS):
        if record.get("barcode") == barcode and record.get("id") != product_id:
            raise LedgerValidationError(
                f"Barcode {barcode} already used by {record.get('name')}",
                {"barcode": barcode, "product_id": record.get("id")},
            )


def batch_from_payload(payload: dict, *, purchase_date: Optional[str] = None, purchase_invoice_id: Optional[str] = None) -> Batch:
    """Build a new batch from a payload; unit cost is converted into base currency."""
    return Batch(
        id=payload.get("id") or new_id(),
        lot_number=require_str(payload, "lot_number"),
        quantity=require_int(payload.get("quantity"), "quantity", minimum=0),
        unit_cost=normalize_unit_cost(
            payload.get("unit_cost", 0),
            payload.get("currency"),
            payload.get("exchange_rate"),
        ),
        purchase_date=purchase_date or optional_date(payload, "purchase_date") or utcnow().date().isoformat(),
        expiry_date=optional_date(payload, "expiry_date"),
        purchase_invoice_id=purchase_invoice_id,
    )


def create_product(payload: dict) -> Product:
    """
    Register a product, optionally with its first batch.

    payload: name, sale_price, units_per_package (default 1), barcode,
    initial_batch {lot_number, quantity, unit_cost, expiry_date,
    purchase_date, currency, exchange_rate}.
    """
    name = require_str(payload, "name")
    sale_price = to_decimal(payload.get("sale_price", 0), "sale_price")
    units = require_int(payload.get("units_per_package", 1), "units_per_package", minimum=1)
    barcode = optional_str(payload, "barcode")

    batches = []
    if payload.get("initial_batch"):
        batches.append(batch_from_payload(payload["initial_batch"]))

    product = Product(
        id=payload.get("id") or new_id(),
        name=name,
        sale_price=sale_price,
        units_per_package=units,
        barcode=barcode,
        batches=batches,
        created_at=normalize_timestamp(None),
    )

    def _op():
        if gateway.get_by_id(gateway.PRODUCTS, product.id):
            raise LedgerValidationError(f"Product {product.id} already exists", {"product_id": product.id})
        _check_barcode_unique(barcode)
        save_product(product)
        append_activity("inventory", f'New product "{product.name}" added', ref_id=product.id, ref_type="product")
        return product

    product = run_command(_op, "create_product")
    current_app.logger.info("Product created: %s (%s)", product.name, product.id)
    return product


def update_product(product_id: str, payload: dict) -> Product:
    """Edit catalogue fields. Batches only change through invoices."""
    def _op():
        product = load_product(product_id, lock=True)
        if "name" in payload:
            product.name = require_str(payload, "name")
        if "sale_price" in payload:
            product.sale_price = to_decimal(payload.get("sale_price"), "sale_price")
        if "units_per_package" in payload:
            product.units_per_package = require_int(payload.get("units_per_package"), "units_per_package", minimum=1)
        if "barcode" in payload:
            product.barcode = optional_str(payload, "barcode")
            _check_barcode_unique(product.barcode, product.id)
        save_product(product)
        return product

    return run_command(_op, "update_product")


def product_is_referenced(product_id: str) -> bool:
    for collection in (gateway.SALE_INVOICES, gateway.PURCHASE_INVOICES):
        for invoice in gateway.get_all(collection):
            for line in invoice.get("lines") or []:
                if line.get("line_type") == LineType.PRODUCT.value and line.get("item_id") == product_id:
                    return True
    return False


def delete_product(product_id: str) -> None:
    def _op():
        product = load_product(product_id, lock=True)
        if product_is_referenced(product_id):
            raise InvalidState(
                f"Product {product.name} is referenced by invoices and cannot be deleted",
                {"product_id": product_id},
            )
        gateway.delete(gateway.PRODUCTS, product_id)

    run_command(_op, "delete_product")


# =============================================================================
# STOCK QUERIES
# =============================================================================

def stock_level(product_id: str) -> dict:
    product = load_product(product_id)
    return {
        "product_id": product.id,
        "name": product.name,
        "quantity": product.total_quantity,
        "stock_value": str(product.stock_value),
        "batches": [b.to_dict() for b in sorted(product.batches, key=batch_sort_key)],
    }


def low_stock_products(threshold: Optional[int] = None) -> list[dict]:
    if threshold is None:
        threshold = int(get_settings()["low_stock_threshold"])
    return [
        {"product_id": p.id, "name": p.name, "quantity": p.total_quantity, "threshold": threshold}
        for p in list_products()
        if p.total_quantity <= threshold
    ]


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def expiring_batches(months: Optional[int] = None, today: Optional[date] = None) -> list[dict]:
    """In-stock batches expiring within the window, soonest first (expired included)."""
    if months is None:
        months = int(get_settings()["expiry_threshold_months"])
    today = today or utcnow().date()
    horizon = _add_months(today, months)

    rows = []
    for product in list_products():
        for batch in product.batches:
            expires = as_date(batch.expiry_date)
            if batch.quantity <= 0 or expires is None or expires > horizon:
                continue
            rows.append({
                "product_id": product.id,
                "name": product.name,
                "batch_id": batch.id,
                "lot_number": batch.lot_number,
                "quantity": batch.quantity,
                "expiry_date": batch.expiry_date,
                "expired": expires < today,
                "days_left": (expires - today).days,
            })
    rows.sort(key=lambda r: r["expiry_date"])
    return rows
