# Overview: Service-layer read models for reporting; sales, inventory and financial position.

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from ..models import InvoiceKind, LineType, PartyKind
from ..time_utils import parse_iso_datetime, to_utc_z
from .document_service import list_invoices
from .errors import LedgerValidationError
from .inventory_service import expiring_batches, list_products, low_stock_products
from .ledger_service import list_parties
from .money import ZERO
from .payroll_service import list_expenses

TOP_N = 5


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """Inclusive range; a date-only end covers that whole day."""
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise LedgerValidationError("start/end must be ISO-8601 dates", {"start": start, "end": end})
    if end_dt is not None and len(end.strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    if start_dt and end_dt and start_dt > end_dt:
        raise LedgerValidationError("start must not be after end", {"start": start, "end": end})
    return start_dt, end_dt


def _line_cost(line) -> Decimal:
    if line.allocations:
        return sum((a.cost for a in line.allocations), ZERO)
    return (line.unit_cost or ZERO) * line.quantity


def sales_summary(start: str | None = None, end: str | None = None) -> dict:
    """
    Revenue, returns, COGS and profit for sales in [start, end].

    COGS is taken from the batch costs recorded on each line; returns
    reverse both their revenue and their cost.
    """
    start_dt, end_dt = _parse_range(start, end)
    invoices = list_invoices(collection="sale_invoices", start=start_dt, end=end_dt)

    gross = returns = discounts = cogs = ZERO
    sale_count = return_count = 0
    products: dict[str, dict] = {}
    by_cashier: dict[str, Decimal] = {}

    for invoice in invoices:
        sign = -1 if invoice.kind == InvoiceKind.SALE_RETURN else 1
        if invoice.kind == InvoiceKind.SALE:
            gross += invoice.total
            discounts += invoice.discount
            sale_count += 1
        else:
            returns += invoice.total
            return_count += 1
        cashier = invoice.cashier or "unknown"
        by_cashier[cashier] = by_cashier.get(cashier, ZERO) + invoice.total * sign

        for line in invoice.lines:
            if line.line_type == LineType.PRODUCT:
                cogs += _line_cost(line) * sign
            row = products.setdefault(line.item_id, {
                "item_id": line.item_id,
                "name": line.name,
                "line_type": line.line_type.value,
                "quantity": 0,
                "revenue": ZERO,
            })
            row["quantity"] += line.quantity * sign
            row["revenue"] += line.line_total * sign

    expenses = sum((e.amount for e in list_expenses(start_dt, end_dt)), ZERO)
    net_revenue = gross - returns
    gross_profit = net_revenue - cogs

    top = sorted(products.values(), key=lambda r: r["revenue"], reverse=True)[:TOP_N]
    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "sale_count": sale_count,
        "return_count": return_count,
        "gross_revenue": str(gross),
        "returns": str(returns),
        "discounts": str(discounts),
        "net_revenue": str(net_revenue),
        "cogs": str(cogs),
        "gross_profit": str(gross_profit),
        "expenses": str(expenses),
        "net_income": str(gross_profit - expenses),
        "top_products": [dict(r, revenue=str(r["revenue"])) for r in top],
        "sales_by_cashier": {k: str(v) for k, v in sorted(by_cashier.items())},
    }


def inventory_summary() -> dict:
    rows = []
    total_units = 0
    total_value = ZERO
    for product in list_products():
        quantity = product.total_quantity
        value = product.stock_value
        total_units += quantity
        total_value += value
        rows.append({
            "product_id": product.id,
            "name": product.name,
            "quantity": quantity,
            "stock_value": str(value),
            "batch_count": len([b for b in product.batches if b.quantity > 0]),
        })
    rows.sort(key=lambda r: r["name"].lower())
    return {"products": rows, "total_units": total_units, "total_value": str(total_value)}


def financial_position() -> dict:
    """Inventory value plus receivables and advances, less payables."""
    inventory_value = sum((p.stock_value for p in list_products()), ZERO)
    customers = list_parties(PartyKind.CUSTOMER)
    suppliers = list_parties(PartyKind.SUPPLIER)
    employees = list_parties(PartyKind.EMPLOYEE)

    receivables = sum((c.balance for c in customers if c.balance > 0), ZERO)
    payables = sum((s.balance for s in suppliers if s.balance > 0), ZERO)
    advances = sum((e.balance for e in employees if e.balance > 0), ZERO)

    debtors = sorted((c for c in customers if c.balance > 0), key=lambda c: c.balance, reverse=True)[:TOP_N]
    return {
        "inventory_value": str(inventory_value),
        "receivables": str(receivables),
        "employee_advances": str(advances),
        "payables": str(payables),
        "net_capital": str(inventory_value + receivables + advances - payables),
        "top_debtors": [{"customer_id": c.id, "name": c.name, "balance": str(c.balance)} for c in debtors],
    }


def stock_alerts() -> dict:
    return {
        "low_stock": low_stock_products(),
        "expiring": expiring_batches(),
    }
