"""
Sale invoice tests: commit, edit and return.
"""

from decimal import Decimal

import pytest

from shopledger.models import InvoiceKind, LineType
from shopledger.services import (
    document_service,
    gateway,
    inventory_service,
    ledger_service,
    sales_service,
    settings_service,
)
from shopledger.services.errors import (
    InsufficientStock,
    InvalidState,
    LedgerValidationError,
    NotFound,
)


@pytest.fixture
def stocked(make_product):
    # Lot A expires first, so sales draw from it before B
    return make_product(name="Ibuprofen", sale_price="20", batches=[
        ("A", 3, "10", "2026-01-01", "2027-01-31"),
        ("B", 10, "12", "2026-02-01", "2027-06-30"),
    ])


def _lots(product_id):
    return {b.lot_number: b.quantity for b in inventory_service.get_product(product_id).batches}


def _sale(product, quantity, **extra):
    return sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": quantity}], **extra})


def test_cash_sale_allocates_and_records_costs(stocked):
    invoice = _sale(stocked, 5, cashier="admin")

    assert invoice.id == "F1"
    assert invoice.kind == InvoiceKind.SALE
    assert invoice.total == Decimal("100")
    assert invoice.discount == Decimal("0")
    assert invoice.customer_id is None
    line = invoice.lines[0]
    assert [(a.lot_number, a.quantity) for a in line.allocations] == [("A", 3), ("B", 2)]
    # (3*10 + 2*12) / 5
    assert line.unit_cost == Decimal("10.80")
    assert _lots(stocked.id) == {"A": 0, "B": 8}

    stored = sales_service.get_sale("F1")
    assert stored.to_dict() == invoice.to_dict()
    assert stored.to_dict()["type"] == "sale"


def test_charged_price_below_list_is_a_discount(stocked):
    invoice = sales_service.create_sale({"lines": [{"item_id": stocked.id, "quantity": 2, "unit_price": "18"}]})

    assert invoice.subtotal == Decimal("40")
    assert invoice.total == Decimal("36")
    assert invoice.discount == Decimal("4")


def test_credit_sale_posts_to_customer(stocked, make_customer):
    customer = make_customer()
    invoice = _sale(stocked, 2, customer_id=customer.id)

    assert ledger_service.get_party("customer", customer.id).balance == Decimal("40")
    txs = ledger_service.list_transactions("customer", customer.id)
    assert [(t.kind.value, t.amount, t.invoice_id) for t in txs] == [("credit_sale", Decimal("40"), invoice.id)]


def test_unknown_customer_is_rejected_before_stock_moves(stocked):
    with pytest.raises(NotFound):
        _sale(stocked, 2, customer_id="nobody")
    assert _lots(stocked.id) == {"A": 3, "B": 10}


def test_shortfalls_are_reported_together_and_nothing_is_written(stocked, make_product):
    other = make_product(name="Cetirizine", batches=[("C", 1, "5", "2026-01-01", None)])

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale({"lines": [
            {"item_id": stocked.id, "quantity": 14},
            {"item_id": other.id, "quantity": 3},
        ]})

    items = {i["product_id"]: i for i in exc.value.details["items"]}
    assert items[stocked.id]["shortfall"] == 1
    assert items[other.id]["shortfall"] == 2
    assert _lots(stocked.id) == {"A": 3, "B": 10}
    assert gateway.get_all(gateway.SALE_INVOICES) == []


def test_same_product_on_two_lines_is_checked_in_aggregate(stocked):
    with pytest.raises(InsufficientStock):
        sales_service.create_sale({"lines": [
            {"item_id": stocked.id, "quantity": 7},
            {"item_id": stocked.id, "quantity": 7},
        ]})


def test_service_lines_do_not_touch_stock(stocked):
    service = settings_service.add_service({"name": "Blood pressure check", "price": "50"})
    invoice = sales_service.create_sale({"lines": [
        {"line_type": "service", "item_id": service.id, "quantity": 1},
        {"item_id": stocked.id, "quantity": 1},
    ]})

    assert invoice.total == Decimal("70")
    service_line = invoice.lines[0]
    assert service_line.line_type == LineType.SERVICE
    assert service_line.allocations == []
    assert _lots(stocked.id) == {"A": 2, "B": 10}


@pytest.mark.parametrize("payload", [
    {"lines": []},
    {"lines": [{"item_id": "x", "quantity": 0}]},
    {"lines": [{"item_id": "x", "quantity": "2.5"}]},
    {"lines": [{"line_type": "voucher", "item_id": "x", "quantity": 1}]},
    {"lines": [{"item_id": "x", "quantity": 1}], "currency": "USD"},
])
def test_malformed_carts_are_rejected(db_session, payload):
    with pytest.raises(LedgerValidationError):
        sales_service.create_sale(payload)


def test_invoice_numbers_increase(stocked):
    assert [_sale(stocked, 1).id for _ in range(3)] == ["F1", "F2", "F3"]


# =============================================================================
# EDITS
# =============================================================================

def test_price_only_edit_keeps_allocations_and_adjusts_balance(stocked, make_customer):
    customer = make_customer()
    original = _sale(stocked, 5, customer_id=customer.id)

    edited = sales_service.edit_sale(original.id, {
        "lines": [{"item_id": stocked.id, "quantity": 5, "unit_price": "18"}],
    })

    assert edited.id == original.id
    assert edited.status == "edited"
    assert edited.total == Decimal("90")
    assert edited.lines[0].allocations == original.lines[0].allocations
    assert _lots(stocked.id) == {"A": 0, "B": 8}
    assert ledger_service.get_party("customer", customer.id).balance == Decimal("90")
    kinds = [(t.kind.value, t.delta) for t in ledger_service.list_transactions("customer", customer.id)]
    assert kinds == [("credit_sale", Decimal("100")), ("adjustment", Decimal("-10"))]


def test_quantity_edit_restocks_and_reallocates(stocked):
    original = _sale(stocked, 5)

    edited = sales_service.edit_sale(original.id, {"lines": [{"item_id": stocked.id, "quantity": 2}]})

    assert [(a.lot_number, a.quantity) for a in edited.lines[0].allocations] == [("A", 2)]
    assert _lots(stocked.id) == {"A": 1, "B": 10}


def test_edit_can_use_stock_freed_by_the_original(stocked):
    original = _sale(stocked, 13)

    edited = sales_service.edit_sale(original.id, {"lines": [{"item_id": stocked.id, "quantity": 12}]})

    assert edited.total == Decimal("240")
    assert _lots(stocked.id) == {"A": 0, "B": 1}


def test_edit_moving_sale_between_customers(stocked, make_customer):
    first = make_customer("First")
    second = make_customer("Second")
    original = _sale(stocked, 2, customer_id=first.id)

    sales_service.edit_sale(original.id, {
        "lines": [{"item_id": stocked.id, "quantity": 2}],
        "customer_id": second.id,
    })

    assert ledger_service.get_party("customer", first.id).balance == Decimal("0")
    assert ledger_service.get_party("customer", second.id).balance == Decimal("40")


def test_edit_to_cash_sale_clears_customer_balance(stocked, make_customer):
    customer = make_customer()
    original = _sale(stocked, 2, customer_id=customer.id)

    edited = sales_service.edit_sale(original.id, {
        "lines": [{"item_id": stocked.id, "quantity": 2}],
        "customer_id": None,
    })

    assert edited.customer_id is None
    assert ledger_service.get_party("customer", customer.id).balance == Decimal("0")


def test_sale_with_returns_cannot_be_edited(stocked):
    original = _sale(stocked, 2)
    sales_service.create_sale_return({
        "original_invoice_id": original.id,
        "lines": [{"item_id": stocked.id, "quantity": 1}],
    })

    with pytest.raises(InvalidState):
        sales_service.edit_sale(original.id, {"lines": [{"item_id": stocked.id, "quantity": 1}]})


def test_failed_edit_changes_nothing(stocked, make_customer):
    customer = make_customer()
    original = _sale(stocked, 2, customer_id=customer.id)

    with pytest.raises(InsufficientStock):
        sales_service.edit_sale(original.id, {"lines": [{"item_id": stocked.id, "quantity": 50}]})

    assert sales_service.get_sale(original.id).to_dict() == original.to_dict()
    assert _lots(stocked.id) == {"A": 1, "B": 10}
    assert ledger_service.get_party("customer", customer.id).balance == Decimal("40")


# =============================================================================
# RETURNS
# =============================================================================

def test_return_credits_the_batches_the_sale_drew_from(stocked):
    sale = _sale(stocked, 5)  # A3, B2

    first = sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 1}],
    })
    assert first.id == "R1"
    assert first.to_dict()["type"] == "return"
    assert _lots(stocked.id) == {"A": 0, "B": 9}

    sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 4}],
    })
    assert _lots(stocked.id) == {"A": 3, "B": 10}


def test_return_never_mutates_the_original(stocked):
    sale = _sale(stocked, 5)
    sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 2}],
    })

    assert sales_service.get_sale(sale.id).to_dict() == sale.to_dict()
    assert [r.id for r in document_service.returns_for(sale)] == ["R1"]


def test_return_quantity_is_capped_by_earlier_returns(stocked):
    sale = _sale(stocked, 3)
    sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 2}],
    })

    with pytest.raises(LedgerValidationError) as exc:
        sales_service.create_sale_return({
            "original_invoice_id": sale.id,
            "lines": [{"item_id": stocked.id, "quantity": 2}],
        })
    assert exc.value.details["returned"] == 2


def test_return_of_item_not_on_invoice_is_rejected(stocked, make_product):
    other = make_product(name="Other", batches=[("O", 5, "1", "2026-01-01", None)])
    sale = _sale(stocked, 1)

    with pytest.raises(LedgerValidationError):
        sales_service.create_sale_return({
            "original_invoice_id": sale.id,
            "lines": [{"item_id": other.id, "quantity": 1}],
        })


def test_return_of_credit_sale_reduces_customer_balance(stocked, make_customer):
    customer = make_customer()
    sale = _sale(stocked, 3, customer_id=customer.id)

    ret = sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 1}],
    })

    assert ret.customer_id == customer.id
    assert ret.total == Decimal("20")
    assert ledger_service.get_party("customer", customer.id).balance == Decimal("40")
    assert ledger_service.list_transactions("customer", customer.id)[-1].kind.value == "sale_return"


def test_return_against_a_return_is_refused(stocked):
    sale = _sale(stocked, 2)
    ret = sales_service.create_sale_return({
        "original_invoice_id": sale.id,
        "lines": [{"item_id": stocked.id, "quantity": 1}],
    })

    with pytest.raises(InvalidState):
        sales_service.create_sale_return({
            "original_invoice_id": ret.id,
            "lines": [{"item_id": stocked.id, "quantity": 1}],
        })


def test_balances_match_history_after_mixed_activity(stocked, make_customer):
    customer = make_customer(opening_balance={"amount": "500", "type": "debtor"})
    sale = _sale(stocked, 4, customer_id=customer.id)
    sales_service.edit_sale(sale.id, {"lines": [{"item_id": stocked.id, "quantity": 6}]})
    second = _sale(stocked, 1, customer_id=customer.id)
    sales_service.create_sale_return({
        "original_invoice_id": second.id,
        "lines": [{"item_id": stocked.id, "quantity": 1}],
    })
    ledger_service.record_payment("customer", customer.id, {"amount": "100"})

    assert ledger_service.reconcile_balances() == []
    assert ledger_service.get_party("customer", customer.id).balance == Decimal("520")
