"""
Purchase Service - purchase invoices, purchase edits and purchase returns

WHY: Purchases are where stock enters the shop. Each purchase line opens
one lot-numbered batch costed in the base currency, and the supplier ledger
moves by the converted invoice total in the same command.

DESIGN:
- Purchases may be entered in a foreign currency; the total is converted
  once at commit and the rate is stored on the invoice.
- Edits adjust the batches they created retroactively and refuse any
  change that would drop stock already sold.
- Purchase returns take stock out of one named lot at the original
  invoice's rate.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from flask import current_app

from ..models import (
    INVOICE_STATUS_EDITED,
    Allocation,
    Batch,
    Invoice,
    InvoiceKind,
    LineItem,
    LineType,
    PartyKind,
    Product,
    TransactionKind,
    new_id,
)
from ..time_utils import as_date, normalize_timestamp
from ..validation import optional_date, optional_str, require_quantity, require_str, timestamp_field
from . import gateway
from .activity_service import append_activity
from .concurrency import run_command
from .document_service import load_invoice, next_document_number, returns_for
from .errors import InsufficientStock, InvalidState, LedgerValidationError, NotFound
from .inventory_service import load_product, save_product
from .ledger_service import apply_transaction, load_party
from .money import ZERO, Money, base_currency, is_base, normalize, normalize_unit_cost, to_decimal


def _parse_currency(payload: dict, default_currency: Optional[str] = None, default_rate=None) -> tuple[str, Optional[Decimal]]:
    currency = (payload.get("currency") or default_currency or base_currency()).strip().upper()
    if is_base(currency):
        return currency, None
    rate = payload.get("exchange_rate", default_rate)
    # Validates presence and sign of the rate
    money = Money.from_payload(0, currency, rate)
    return currency, money.exchange_rate


def _parse_purchase_lines(payload: dict) -> list[dict]:
    raw_lines = payload.get("lines") or []
    if not raw_lines:
        raise LedgerValidationError("Purchase has no lines", {"field": "lines"})

    parsed = []
    seen = set()
    for index, raw in enumerate(raw_lines):
        product_id = raw.get("product_id") or raw.get("item_id")
        if not product_id:
            raise LedgerValidationError("product_id is required", {"line": index})
        lot_number = require_str(raw, "lot_number")
        key = (str(product_id), lot_number)
        if key in seen:
            raise LedgerValidationError(
                f"Lot {lot_number} appears twice for the same product",
                {"line": index, "lot_number": lot_number},
            )
        seen.add(key)
        parsed.append({
            "product_id": str(product_id),
            "lot_number": lot_number,
            "quantity": require_quantity(raw.get("quantity"), f"lines[{index}].quantity"),
            "unit_cost": to_decimal(raw.get("unit_cost"), f"lines[{index}].unit_cost"),
            "expiry_date": optional_date(raw, "expiry_date"),
        })
    return parsed


def _load_products(product_ids, products: dict[str, Product]) -> dict[str, Product]:
    for product_id in product_ids:
        if product_id not in products:
            products[product_id] = load_product(product_id, lock=True)
    return products


def _purchase_line(item: dict, product: Product, batch: Batch, unit_cost_base: Decimal) -> LineItem:
    return LineItem(
        line_type=LineType.PRODUCT,
        item_id=product.id,
        name=product.name,
        quantity=item["quantity"],
        unit_price=item["unit_cost"],
        list_price=item["unit_cost"],
        unit_cost=unit_cost_base,
        lot_number=item["lot_number"],
        expiry_date=item["expiry_date"],
        batch_id=batch.id,
    )


def _supplier_tx(supplier_id: str, tx_kind: TransactionKind, invoice: Invoice, description: str, amount: Decimal, timestamp=None):
    return apply_transaction(
        PartyKind.SUPPLIER,
        supplier_id,
        tx_kind,
        amount,
        description,
        invoice_id=invoice.id,
        currency=invoice.currency,
        exchange_rate=invoice.exchange_rate,
        original_amount=None if is_base(invoice.currency) else invoice.total,
        timestamp=timestamp,
    )


# =============================================================================
# PURCHASES
# =============================================================================

def create_purchase(payload: dict) -> Invoice:
    """
    Commit a purchase invoice and open one batch per line.

    payload: supplier_id, invoice_number, currency, exchange_rate,
    timestamp, lines [{product_id, lot_number, quantity, unit_cost,
    expiry_date}]. unit_cost is in the invoice currency.
    """
    supplier_id = require_str(payload, "supplier_id")
    currency, rate = _parse_currency(payload)
    parsed = _parse_purchase_lines(payload)
    timestamp = timestamp_field(payload)
    invoice_number = optional_str(payload, "invoice_number")

    def _op() -> Invoice:
        supplier = load_party(PartyKind.SUPPLIER, supplier_id, lock=True)
        products = _load_products([p["product_id"] for p in parsed], {})
        invoice_id = next_document_number(InvoiceKind.PURCHASE)
        purchase_date = as_date(timestamp).isoformat()

        lines = []
        for item in parsed:
            product = products[item["product_id"]]
            if product.find_lot(item["lot_number"]):
                raise LedgerValidationError(
                    f"Lot {item['lot_number']} already exists for {product.name}",
                    {"product_id": product.id, "lot_number": item["lot_number"]},
                )
            unit_cost_base = normalize_unit_cost(item["unit_cost"], currency, rate)
            batch = Batch(
                id=new_id(),
                lot_number=item["lot_number"],
                quantity=item["quantity"],
                unit_cost=unit_cost_base,
                purchase_date=purchase_date,
                expiry_date=item["expiry_date"],
                purchase_invoice_id=invoice_id,
            )
            product.batches.append(batch)
            lines.append(_purchase_line(item, product, batch, unit_cost_base))

        total = sum((line.line_total for line in lines), ZERO)
        invoice = Invoice(
            id=invoice_id,
            kind=InvoiceKind.PURCHASE,
            lines=lines,
            subtotal=total,
            discount=ZERO,
            total=total,
            base_total=normalize(total, currency, rate),
            timestamp=timestamp,
            currency=currency,
            exchange_rate=rate,
            supplier_id=supplier.id,
            invoice_number=invoice_number,
        )
        gateway.put(gateway.PURCHASE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        _supplier_tx(supplier.id, TransactionKind.PURCHASE, invoice, f"Purchase invoice #{invoice.id}", invoice.base_total, timestamp)
        append_activity("purchase", f"Purchase invoice #{invoice.id} from {supplier.name}", ref_id=invoice.id, ref_type="purchase_invoice")
        return invoice

    invoice = run_command(_op, "create_purchase")
    current_app.logger.info(
        "Purchase %s committed: total=%s %s base_total=%s",
        invoice.id, invoice.total, invoice.currency, invoice.base_total,
    )
    return invoice


def edit_purchase(invoice_id: str, payload: dict) -> Invoice:
    """
    Replace the lines of a purchase and adjust its batches retroactively.

    Lines are matched to existing batches by (product_id, lot_number):
    - kept lots change quantity by the line delta and take the new unit
      cost; refused when more has been sold than the new quantity
    - new lots open batches
    - removed lots are dropped only when none of their stock has moved
    """
    parsed = _parse_purchase_lines(payload)

    def _op() -> Invoice:
        old = load_invoice(gateway.PURCHASE_INVOICES, invoice_id, lock=True)
        if old.kind != InvoiceKind.PURCHASE:
            raise InvalidState(f"Invoice {old.id} is not a purchase", {"invoice_id": old.id})
        if returns_for(old):
            raise InvalidState(
                f"Purchase {old.id} has returns and cannot be edited",
                {"invoice_id": old.id},
            )

        currency, rate = _parse_currency(payload, old.currency, old.exchange_rate)
        supplier_id = optional_str(payload, "supplier_id") or old.supplier_id
        supplier = load_party(PartyKind.SUPPLIER, supplier_id, lock=True)

        old_lines = {(l.item_id, l.lot_number): l for l in old.lines}
        new_keys = {(p["product_id"], p["lot_number"]) for p in parsed}
        products = _load_products(
            [l.item_id for l in old.lines] + [p["product_id"] for p in parsed], {}
        )

        for key, old_line in old_lines.items():
            if key in new_keys:
                continue
            product = products[old_line.item_id]
            batch = product.find_batch(old_line.batch_id)
            if batch is not None and batch.quantity != old_line.quantity:
                raise InvalidState(
                    f"Lot {old_line.lot_number} of {product.name} has moved stock and cannot be removed",
                    {"product_id": product.id, "lot_number": old_line.lot_number},
                )
            if batch is not None:
                product.batches.remove(batch)

        purchase_date = as_date(old.timestamp).isoformat()
        lines = []
        for item in parsed:
            product = products[item["product_id"]]
            unit_cost_base = normalize_unit_cost(item["unit_cost"], currency, rate)
            old_line = old_lines.get((item["product_id"], item["lot_number"]))
            if old_line is not None:
                batch = product.find_batch(old_line.batch_id)
                if batch is None:
                    raise InvalidState(
                        f"Batch for lot {old_line.lot_number} of {product.name} no longer exists",
                        {"product_id": product.id, "lot_number": old_line.lot_number},
                    )
                moved = old_line.quantity - batch.quantity
                if item["quantity"] < moved:
                    raise InvalidState(
                        f"{moved} units of lot {batch.lot_number} already sold; cannot reduce to {item['quantity']}",
                        {
                            "product_id": product.id,
                            "lot_number": batch.lot_number,
                            "sold": moved,
                            "requested": item["quantity"],
                        },
                    )
                batch.quantity += item["quantity"] - old_line.quantity
                batch.unit_cost = unit_cost_base
                batch.expiry_date = item["expiry_date"]
            else:
                if product.find_lot(item["lot_number"]):
                    raise LedgerValidationError(
                        f"Lot {item['lot_number']} already exists for {product.name}",
                        {"product_id": product.id, "lot_number": item["lot_number"]},
                    )
                batch = Batch(
                    id=new_id(),
                    lot_number=item["lot_number"],
                    quantity=item["quantity"],
                    unit_cost=unit_cost_base,
                    purchase_date=purchase_date,
                    expiry_date=item["expiry_date"],
                    purchase_invoice_id=old.id,
                )
                product.batches.append(batch)
            lines.append(_purchase_line(item, product, batch, unit_cost_base))

        total = sum((line.line_total for line in lines), ZERO)
        invoice = Invoice(
            id=old.id,
            kind=InvoiceKind.PURCHASE,
            lines=lines,
            subtotal=total,
            discount=ZERO,
            total=total,
            base_total=normalize(total, currency, rate),
            timestamp=old.timestamp,
            currency=currency,
            exchange_rate=rate,
            status=INVOICE_STATUS_EDITED,
            supplier_id=supplier.id,
            invoice_number=optional_str(payload, "invoice_number") or old.invoice_number,
            edited_at=normalize_timestamp(None),
        )
        gateway.put(gateway.PURCHASE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        if old.supplier_id == invoice.supplier_id:
            delta = invoice.base_total - old.base_total
            if delta:
                apply_transaction(
                    PartyKind.SUPPLIER,
                    invoice.supplier_id,
                    TransactionKind.ADJUSTMENT,
                    delta,
                    f"Edit of purchase invoice #{invoice.id}",
                    invoice_id=invoice.id,
                )
        else:
            apply_transaction(
                PartyKind.SUPPLIER,
                old.supplier_id,
                TransactionKind.ADJUSTMENT,
                -old.base_total,
                f"Purchase invoice #{old.id} moved to another supplier",
                invoice_id=old.id,
            )
            _supplier_tx(invoice.supplier_id, TransactionKind.PURCHASE, invoice, f"Purchase invoice #{invoice.id}", invoice.base_total)

        append_activity("purchase", f"Purchase invoice #{invoice.id} edited", ref_id=invoice.id, ref_type="purchase_invoice")
        return invoice

    return run_command(_op, "edit_purchase")


# =============================================================================
# RETURNS
# =============================================================================

def create_purchase_return(payload: dict) -> Invoice:
    """
    Send stock from named lots back to the supplier.

    payload: original_invoice_id, lines [{product_id, lot_number, quantity}],
    timestamp. Amounts use the original line cost, currency and rate.
    """
    original_id = require_str(payload, "original_invoice_id")
    raw_lines = payload.get("lines") or []
    if not raw_lines:
        raise LedgerValidationError("No items to return", {"field": "lines"})
    requested = []
    for index, raw in enumerate(raw_lines):
        product_id = raw.get("product_id") or raw.get("item_id")
        if not product_id:
            raise LedgerValidationError("product_id is required", {"line": index})
        requested.append({
            "product_id": str(product_id),
            "lot_number": require_str(raw, "lot_number"),
            "quantity": require_quantity(raw.get("quantity"), f"lines[{index}].quantity"),
        })
    timestamp = timestamp_field(payload)

    def _op() -> Invoice:
        try:
            original = load_invoice(gateway.PURCHASE_INVOICES, original_id, lock=True)
        except NotFound:
            raise NotFound(f"Original invoice {original_id} not found", {"original_invoice_id": original_id})
        if original.kind != InvoiceKind.PURCHASE:
            raise InvalidState(f"Invoice {original.id} is not a purchase", {"invoice_id": original.id})

        products = _load_products([r["product_id"] for r in requested], {})
        lines = []
        for item in requested:
            product = products[item["product_id"]]
            source = next(
                (l for l in original.lines if l.item_id == product.id and l.lot_number == item["lot_number"]),
                None,
            )
            if source is None:
                raise LedgerValidationError(
                    f"Lot {item['lot_number']} of {product.name} is not on invoice {original.id}",
                    {"product_id": product.id, "lot_number": item["lot_number"]},
                )
            batch = product.find_batch(source.batch_id) or product.find_lot(item["lot_number"])
            available = batch.quantity if batch else 0
            if available < item["quantity"]:
                raise InsufficientStock(
                    f"Lot {item['lot_number']} of {product.name} holds {available}, cannot return {item['quantity']}",
                    {
                        "product_id": product.id,
                        "lot_number": item["lot_number"],
                        "requested": item["quantity"],
                        "available": available,
                        "shortfall": item["quantity"] - available,
                    },
                )
            batch.quantity -= item["quantity"]
            lines.append(LineItem(
                line_type=LineType.PRODUCT,
                item_id=product.id,
                name=product.name,
                quantity=item["quantity"],
                unit_price=source.unit_price,
                list_price=source.unit_price,
                unit_cost=batch.unit_cost,
                allocations=[Allocation(batch.id, item["quantity"], batch.unit_cost, batch.lot_number)],
                lot_number=batch.lot_number,
                expiry_date=batch.expiry_date,
                batch_id=batch.id,
            ))

        total = sum((line.line_total for line in lines), ZERO)
        invoice = Invoice(
            id=next_document_number(InvoiceKind.PURCHASE_RETURN),
            kind=InvoiceKind.PURCHASE_RETURN,
            lines=lines,
            subtotal=total,
            discount=ZERO,
            total=total,
            base_total=normalize(total, original.currency, original.exchange_rate),
            timestamp=timestamp,
            currency=original.currency,
            exchange_rate=original.exchange_rate,
            supplier_id=original.supplier_id,
            original_invoice_id=original.id,
            invoice_number=f"R-{original.invoice_number or original.id}",
        )
        gateway.put(gateway.PURCHASE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        _supplier_tx(
            original.supplier_id,
            TransactionKind.PURCHASE_RETURN,
            invoice,
            f"Purchase return #{invoice.id} of invoice #{original.id}",
            invoice.base_total,
            timestamp,
        )
        append_activity("purchase", f"Purchase return #{invoice.id} of invoice #{original.id}", ref_id=invoice.id, ref_type="purchase_invoice")
        return invoice

    invoice = run_command(_op, "create_purchase_return")
    current_app.logger.info("Purchase return %s committed against %s", invoice.id, invoice.original_invoice_id)
    return invoice


def get_purchase(invoice_id: str) -> Invoice:
    return load_invoice(gateway.PURCHASE_INVOICES, invoice_id)
