"""
Sales Service - sale invoices, sale edits and sale returns

WHY: A sale touches stock, the invoice log and (for credit sales) the
customer ledger. All three are written in one command so a failure leaves
none of them changed.

DESIGN:
- Sales are recorded in the base currency.
- Every product line is allocated FIFO-by-expiry against a working copy of
  the product; the line keeps the exact allocations and the blended cost.
- Returns credit stock back to the batches the sold units came from and
  never mutate the original invoice.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..models import (
    INVOICE_STATUS_EDITED,
    Allocation,
    Invoice,
    InvoiceKind,
    LineItem,
    LineType,
    PartyKind,
    Product,
    TransactionKind,
)
from ..time_utils import normalize_timestamp
from ..validation import optional_str, require_quantity, require_str, timestamp_field
from . import gateway
from .activity_service import append_activity
from .concurrency import run_command
from .document_service import load_invoice, next_document_number, returns_for
from .errors import InsufficientStock, InvalidState, LedgerValidationError, NotFound
from .inventory_service import apply_allocation, load_product, plan_allocation, restock_product, save_product
from .ledger_service import apply_transaction, load_party
from .money import ZERO, base_currency, is_base, to_decimal
from .settings_service import get_service


# =============================================================================
# CART PARSING
# =============================================================================

def _line_type(value) -> LineType:
    try:
        return LineType(str(value or LineType.PRODUCT.value).lower())
    except ValueError:
        raise LedgerValidationError(f"Unknown line type: {value}", {"field": "line_type"})


def _parse_cart(payload: dict) -> list[dict]:
    """Validate cart lines before anything is read or written."""
    raw_lines = payload.get("lines") or []
    if not raw_lines:
        raise LedgerValidationError("Cart is empty", {"field": "lines"})

    parsed = []
    for index, raw in enumerate(raw_lines):
        line_type = _line_type(raw.get("line_type"))
        item_id = raw.get("item_id")
        if not item_id:
            raise LedgerValidationError("item_id is required", {"line": index})
        unit_price = None
        if raw.get("unit_price") is not None:
            if line_type == LineType.SERVICE:
                raise LedgerValidationError("Service lines use the catalogue price", {"line": index})
            unit_price = to_decimal(raw.get("unit_price"), "unit_price")
        parsed.append({
            "line_type": line_type,
            "item_id": str(item_id),
            "quantity": require_quantity(raw.get("quantity"), f"lines[{index}].quantity"),
            "unit_price": unit_price,
        })
    return parsed


def _check_base_currency(payload: dict) -> None:
    currency = payload.get("currency")
    if currency and not is_base(currency):
        raise LedgerValidationError(
            f"Sales are recorded in {base_currency()}",
            {"currency": currency, "base_currency": base_currency()},
        )


def _build_lines(parsed: list[dict], products: dict[str, Product]) -> list[LineItem]:
    """Price cart lines from the catalogue; products are loaded into products."""
    lines = []
    for item in parsed:
        if item["line_type"] == LineType.PRODUCT:
            product = products.get(item["item_id"])
            if product is None:
                product = load_product(item["item_id"], lock=True)
                products[product.id] = product
            name, list_price = product.name, product.sale_price
        else:
            service = get_service(item["item_id"])
            name, list_price = service.name, service.price
        unit_price = item["unit_price"] if item["unit_price"] is not None else list_price
        lines.append(LineItem(
            line_type=item["line_type"],
            item_id=item["item_id"],
            name=name,
            quantity=item["quantity"],
            unit_price=unit_price,
            list_price=list_price,
        ))
    return lines


def _validate_on_hand(lines: list[LineItem], products: dict[str, Product]) -> None:
    """Aggregate every shortfall in the cart into one InsufficientStock."""
    product_totals: dict[str, int] = {}
    for line in lines:
        if line.line_type == LineType.PRODUCT:
            product_totals[line.item_id] = product_totals.get(line.item_id, 0) + line.quantity

    insufficient = []
    for product_id, qty in product_totals.items():
        product = products[product_id]
        available = product.total_quantity
        if available < qty:
            insufficient.append({
                "product_id": product_id,
                "name": product.name,
                "requested": qty,
                "available": available,
                "shortfall": qty - available,
            })

    if insufficient:
        raise InsufficientStock.aggregate(insufficient)


def _allocate_lines(lines: list[LineItem], products: dict[str, Product]) -> None:
    _validate_on_hand(lines, products)
    for line in lines:
        if line.line_type != LineType.PRODUCT:
            continue
        product = products[line.item_id]
        plan = plan_allocation(product, line.quantity)
        apply_allocation(product, plan)
        line.allocations = plan.allocations
        line.unit_cost = plan.unit_cost


def _totals(lines: list[LineItem]) -> tuple[Decimal, Decimal, Decimal]:
    subtotal = sum((line.list_total for line in lines), ZERO)
    total = sum((line.line_total for line in lines), ZERO)
    return subtotal, subtotal - total, total


def _load_customer(customer_id: str | None):
    if not customer_id:
        return None
    return load_party(PartyKind.CUSTOMER, customer_id, lock=True)


# =============================================================================
# SALES
# =============================================================================

def create_sale(payload: dict) -> Invoice:
    """
    Commit a sale invoice.

    payload: lines [{line_type, item_id, quantity, unit_price?}],
    customer_id (credit sale), cashier, timestamp.

    Raises InsufficientStock listing every short product before any batch
    is touched.
    """
    _check_base_currency(payload)
    parsed = _parse_cart(payload)
    customer_id = optional_str(payload, "customer_id")
    cashier = optional_str(payload, "cashier")
    timestamp = timestamp_field(payload)

    def _op() -> Invoice:
        customer = _load_customer(customer_id)
        products: dict[str, Product] = {}
        lines = _build_lines(parsed, products)
        _allocate_lines(lines, products)
        subtotal, discount, total = _totals(lines)

        invoice = Invoice(
            id=next_document_number(InvoiceKind.SALE),
            kind=InvoiceKind.SALE,
            lines=lines,
            subtotal=subtotal,
            discount=discount,
            total=total,
            base_total=total,
            timestamp=timestamp,
            currency=base_currency(),
            customer_id=customer.id if customer else None,
            cashier=cashier,
        )
        gateway.put(gateway.SALE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        if customer:
            apply_transaction(
                PartyKind.CUSTOMER,
                customer.id,
                TransactionKind.CREDIT_SALE,
                invoice.base_total,
                f"Sale invoice #{invoice.id}",
                invoice_id=invoice.id,
                timestamp=timestamp,
            )
        append_activity("sale", f"Sale invoice #{invoice.id} for {invoice.total}", user=cashier, ref_id=invoice.id, ref_type="sale_invoice")
        return invoice

    invoice = run_command(_op, "create_sale")
    current_app.logger.info("Sale %s committed: total=%s lines=%d", invoice.id, invoice.total, len(invoice.lines))
    return invoice


def _product_line_shape(lines: list[LineItem]) -> list[tuple[str, int]]:
    return [(line.item_id, line.quantity) for line in lines if line.line_type == LineType.PRODUCT]


def edit_sale(invoice_id: str, payload: dict) -> Invoice:
    """
    Replace the lines of a committed sale.

    Refused for returns and for sales that already have returns. Price-only
    edits keep the original allocations; quantity changes restock the
    original batches and allocate again.
    """
    _check_base_currency(payload)
    parsed = _parse_cart(payload)

    def _op() -> Invoice:
        old = load_invoice(gateway.SALE_INVOICES, invoice_id, lock=True)
        if old.kind != InvoiceKind.SALE:
            raise InvalidState(f"Invoice {old.id} is not a sale", {"invoice_id": old.id, "kind": old.kind.value})
        if returns_for(old):
            raise InvalidState(
                f"Sale {old.id} has returns and cannot be edited",
                {"invoice_id": old.id},
            )

        customer_id = optional_str(payload, "customer_id") if "customer_id" in payload else old.customer_id
        new_customer = _load_customer(customer_id)

        products: dict[str, Product] = {}
        for line in old.lines:
            if line.line_type == LineType.PRODUCT and line.item_id not in products:
                products[line.item_id] = load_product(line.item_id, lock=True)
        lines = _build_lines(parsed, products)

        old_products = [l for l in old.lines if l.line_type == LineType.PRODUCT]
        if _product_line_shape(lines) == _product_line_shape(old.lines):
            new_products = [l for l in lines if l.line_type == LineType.PRODUCT]
            for new_line, old_line in zip(new_products, old_products):
                new_line.allocations = old_line.allocations
                new_line.unit_cost = old_line.unit_cost
        else:
            for old_line in old_products:
                restock_product(products[old_line.item_id], old_line.quantity, old_line.allocations or None)
            _allocate_lines(lines, products)

        subtotal, discount, total = _totals(lines)
        invoice = Invoice(
            id=old.id,
            kind=InvoiceKind.SALE,
            lines=lines,
            subtotal=subtotal,
            discount=discount,
            total=total,
            base_total=total,
            timestamp=old.timestamp,
            currency=old.currency,
            status=INVOICE_STATUS_EDITED,
            customer_id=new_customer.id if new_customer else None,
            cashier=optional_str(payload, "cashier") or old.cashier,
            edited_at=normalize_timestamp(None),
        )
        gateway.put(gateway.SALE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        _post_sale_edit(old, invoice)
        append_activity("sale", f"Sale invoice #{invoice.id} edited", user=invoice.cashier, ref_id=invoice.id, ref_type="sale_invoice")
        return invoice

    return run_command(_op, "edit_sale")


def _post_sale_edit(old: Invoice, new: Invoice) -> None:
    """Move customer balances by the effect of an edit."""
    if old.customer_id and old.customer_id == new.customer_id:
        delta = new.base_total - old.base_total
        if delta:
            apply_transaction(
                PartyKind.CUSTOMER,
                new.customer_id,
                TransactionKind.ADJUSTMENT,
                delta,
                f"Edit of sale invoice #{new.id}",
                invoice_id=new.id,
            )
        return

    if old.customer_id:
        apply_transaction(
            PartyKind.CUSTOMER,
            old.customer_id,
            TransactionKind.ADJUSTMENT,
            -old.base_total,
            f"Sale invoice #{old.id} moved to another customer",
            invoice_id=old.id,
        )
    if new.customer_id:
        apply_transaction(
            PartyKind.CUSTOMER,
            new.customer_id,
            TransactionKind.CREDIT_SALE,
            new.base_total,
            f"Sale invoice #{new.id}",
            invoice_id=new.id,
        )


# =============================================================================
# RETURNS
# =============================================================================

def _take_allocations(line: LineItem, skip: int, quantity: int) -> list[Allocation]:
    """
    Allocations to credit for returning quantity units of line.

    Units come back last-drawn first; skip is how many units of this line
    earlier returns already credited, so repeated returns stay net.
    """
    taken = []
    for alloc in reversed(line.allocations):
        available = alloc.quantity
        if skip:
            used = min(skip, available)
            skip -= used
            available -= used
        if quantity <= 0:
            break
        take = min(quantity, available)
        if take > 0:
            taken.append(Allocation(alloc.batch_id, take, alloc.unit_cost, alloc.lot_number))
            quantity -= take
    return taken


def _returned_quantities(original: Invoice) -> dict[tuple[str, str], int]:
    returned: dict[tuple[str, str], int] = {}
    for ret in returns_for(original):
        for line in ret.lines:
            key = (line.line_type.value, line.item_id)
            returned[key] = returned.get(key, 0) + line.quantity
    return returned


def create_sale_return(payload: dict) -> Invoice:
    """
    Commit a return against a sale.

    payload: original_invoice_id, lines [{line_type, item_id, quantity}],
    cashier, timestamp. Each returned quantity is capped by what was sold
    minus what earlier returns took back.
    """
    original_id = require_str(payload, "original_invoice_id")
    raw_lines = payload.get("lines") or []
    if not raw_lines:
        raise LedgerValidationError("No items to return", {"field": "lines"})
    requested: dict[tuple[str, str], int] = {}
    for index, raw in enumerate(raw_lines):
        key = (_line_type(raw.get("line_type")).value, str(raw.get("item_id") or ""))
        if not key[1]:
            raise LedgerValidationError("item_id is required", {"line": index})
        requested[key] = requested.get(key, 0) + require_quantity(raw.get("quantity"), f"lines[{index}].quantity")
    cashier = optional_str(payload, "cashier")
    timestamp = timestamp_field(payload)

    def _op() -> Invoice:
        try:
            original = load_invoice(gateway.SALE_INVOICES, original_id, lock=True)
        except NotFound:
            raise NotFound(f"Original invoice {original_id} not found", {"original_invoice_id": original_id})
        if original.kind != InvoiceKind.SALE:
            raise InvalidState(f"Invoice {original.id} is not a sale", {"invoice_id": original.id})

        already = _returned_quantities(original)
        products: dict[str, Product] = {}
        lines: list[LineItem] = []

        for key, quantity in requested.items():
            line_type, item_id = key
            sold_lines = [l for l in original.lines if (l.line_type.value, l.item_id) == key]
            if not sold_lines:
                raise LedgerValidationError(
                    f"Item {item_id} is not on invoice {original.id}",
                    {"item_id": item_id, "original_invoice_id": original.id},
                )
            sold = sum(l.quantity for l in sold_lines)
            returned = already.get(key, 0)
            if quantity > sold - returned:
                raise LedgerValidationError(
                    f"Cannot return {quantity} of {sold_lines[0].name}; {sold - returned} returnable",
                    {"item_id": item_id, "requested": quantity, "sold": sold, "returned": returned},
                )

            # Earlier returns consumed the sold lines in order; continue after them
            skip_total, remaining = returned, quantity
            for sold_line in sold_lines:
                skip = min(skip_total, sold_line.quantity)
                skip_total -= skip
                take = min(remaining, sold_line.quantity - skip)
                if take <= 0:
                    continue
                remaining -= take
                ret_line = LineItem(
                    line_type=sold_line.line_type,
                    item_id=sold_line.item_id,
                    name=sold_line.name,
                    quantity=take,
                    unit_price=sold_line.unit_price,
                    list_price=sold_line.unit_price,
                    unit_cost=sold_line.unit_cost,
                )
                if sold_line.line_type == LineType.PRODUCT:
                    product = products.get(item_id)
                    if product is None:
                        product = products[item_id] = load_product(item_id, lock=True)
                    credit = _take_allocations(sold_line, skip, take) or None
                    ret_line.allocations = restock_product(product, take, credit)
                lines.append(ret_line)
                if remaining <= 0:
                    break

        total = sum((l.line_total for l in lines), ZERO)
        invoice = Invoice(
            id=next_document_number(InvoiceKind.SALE_RETURN),
            kind=InvoiceKind.SALE_RETURN,
            lines=lines,
            subtotal=total,
            discount=ZERO,
            total=total,
            base_total=total,
            timestamp=timestamp,
            currency=original.currency,
            customer_id=original.customer_id,
            original_invoice_id=original.id,
            cashier=cashier,
        )
        gateway.put(gateway.SALE_INVOICES, invoice.to_dict())
        for product in products.values():
            save_product(product)

        if original.customer_id:
            apply_transaction(
                PartyKind.CUSTOMER,
                original.customer_id,
                TransactionKind.SALE_RETURN,
                invoice.base_total,
                f"Return #{invoice.id} of invoice #{original.id}",
                invoice_id=invoice.id,
                timestamp=timestamp,
            )
        append_activity("sale", f"Return #{invoice.id} of invoice #{original.id}", user=cashier, ref_id=invoice.id, ref_type="sale_invoice")
        return invoice

    invoice = run_command(_op, "create_sale_return")
    current_app.logger.info("Sale return %s committed against %s", invoice.id, invoice.original_invoice_id)
    return invoice


def get_sale(invoice_id: str) -> Invoice:
    return load_invoice(gateway.SALE_INVOICES, invoice_id)

