"""
Purchase invoice tests: commit, currency conversion, edits and returns.
"""

from decimal import Decimal

import pytest

from shopledger.services import gateway, inventory_service, ledger_service, purchase_service, sales_service
from shopledger.services.errors import (
    InsufficientStock,
    InvalidState,
    LedgerValidationError,
    MissingExchangeRate,
    NotFound,
)


@pytest.fixture
def product(make_product):
    return make_product(name="Amoxicillin", sale_price="900")


@pytest.fixture
def supplier(make_supplier):
    return make_supplier()


def _purchase(supplier, product, quantity=10, unit_cost="10", lot="L1", **extra):
    return purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "lines": [{
            "product_id": product.id,
            "lot_number": lot,
            "quantity": quantity,
            "unit_cost": unit_cost,
            "expiry_date": "2028-01-31",
        }],
        **extra,
    })


def _batch(product_id, lot):
    return inventory_service.get_product(product_id).find_lot(lot)


def test_base_currency_purchase_opens_batch_and_credits_supplier(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="150")

    assert invoice.id == "P1"
    assert invoice.total == Decimal("1500")
    assert invoice.base_total == Decimal("1500")
    assert invoice.exchange_rate is None
    batch = _batch(product.id, "L1")
    assert batch.quantity == 10
    assert batch.unit_cost == Decimal("150")
    assert batch.purchase_invoice_id == "P1"
    assert batch.expiry_date == "2028-01-31"
    assert invoice.lines[0].batch_id == batch.id
    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("1500")


def test_foreign_purchase_is_converted_once(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="10", currency="usd", exchange_rate="70")

    assert invoice.currency == "USD"
    assert invoice.total == Decimal("100")
    assert invoice.base_total == Decimal("7000")
    assert invoice.exchange_rate == Decimal("70")
    assert _batch(product.id, "L1").unit_cost == Decimal("700.00")

    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("7000")
    tx = ledger_service.list_transactions("supplier", supplier.id)[-1]
    assert tx.kind.value == "purchase"
    assert tx.amount == Decimal("7000")
    assert tx.original_amount == Decimal("100")
    assert tx.currency == "USD"


def test_missing_rate_writes_nothing(supplier, product):
    with pytest.raises(MissingExchangeRate):
        _purchase(supplier, product, currency="USD")

    assert gateway.get_all(gateway.PURCHASE_INVOICES) == []
    assert inventory_service.get_product(product.id).batches == []
    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("0")


def test_unknown_supplier(db_session, product):
    with pytest.raises(NotFound):
        purchase_service.create_purchase({
            "supplier_id": "ghost",
            "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 1, "unit_cost": "1"}],
        })


def test_lot_numbers_are_unique_per_product(supplier, product):
    with pytest.raises(LedgerValidationError):
        purchase_service.create_purchase({
            "supplier_id": supplier.id,
            "lines": [
                {"product_id": product.id, "lot_number": "L1", "quantity": 1, "unit_cost": "1"},
                {"product_id": product.id, "lot_number": "L1", "quantity": 2, "unit_cost": "1"},
            ],
        })

    _purchase(supplier, product, lot="L1")
    with pytest.raises(LedgerValidationError):
        _purchase(supplier, product, lot="L1")


def test_purchased_stock_is_sold_by_expiry(supplier, make_product):
    product = make_product(name="Insulin", sale_price="100")
    purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "lines": [
            {"product_id": product.id, "lot_number": "LATE", "quantity": 5, "unit_cost": "50", "expiry_date": "2029-01-01"},
            {"product_id": product.id, "lot_number": "SOON", "quantity": 5, "unit_cost": "60", "expiry_date": "2027-01-01"},
        ],
    })

    sale = sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": 6}]})

    assert [(a.lot_number, a.quantity) for a in sale.lines[0].allocations] == [("SOON", 5), ("LATE", 1)]


# =============================================================================
# EDITS
# =============================================================================

def test_edit_increases_quantity_and_adjusts_supplier(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="100")

    edited = purchase_service.edit_purchase(invoice.id, {
        "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 12, "unit_cost": "100"}],
    })

    assert edited.status == "edited"
    assert edited.total == Decimal("1200")
    assert _batch(product.id, "L1").quantity == 12
    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("1200")
    assert ledger_service.list_transactions("supplier", supplier.id)[-1].kind.value == "adjustment"


def test_edit_keeps_sold_units_out_of_the_batch(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="100")
    sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": 4}]})

    purchase_service.edit_purchase(invoice.id, {
        "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 8, "unit_cost": "90"}],
    })

    batch = _batch(product.id, "L1")
    assert batch.quantity == 4
    assert batch.unit_cost == Decimal("90")


def test_edit_cannot_reduce_below_sold(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="100")
    sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": 6}]})

    with pytest.raises(InvalidState) as exc:
        purchase_service.edit_purchase(invoice.id, {
            "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 5, "unit_cost": "100"}],
        })

    assert exc.value.details["sold"] == 6
    assert _batch(product.id, "L1").quantity == 4


def test_edit_removing_an_untouched_lot(supplier, product):
    invoice = purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "lines": [
            {"product_id": product.id, "lot_number": "L1", "quantity": 2, "unit_cost": "10"},
            {"product_id": product.id, "lot_number": "L2", "quantity": 3, "unit_cost": "10"},
        ],
    })

    purchase_service.edit_purchase(invoice.id, {
        "lines": [
            {"product_id": product.id, "lot_number": "L1", "quantity": 2, "unit_cost": "10"},
            {"product_id": product.id, "lot_number": "L3", "quantity": 1, "unit_cost": "10"},
        ],
    })

    lots = sorted(b.lot_number for b in inventory_service.get_product(product.id).batches)
    assert lots == ["L1", "L3"]
    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("30")


def test_edit_cannot_remove_a_lot_with_sales(supplier, product):
    invoice = _purchase(supplier, product, quantity=3)
    sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": 1}]})

    with pytest.raises(InvalidState):
        purchase_service.edit_purchase(invoice.id, {
            "lines": [{"product_id": product.id, "lot_number": "L9", "quantity": 3, "unit_cost": "10"}],
        })


def test_edit_moving_purchase_between_suppliers(supplier, make_supplier, product):
    other = make_supplier("Herat Medical")
    invoice = _purchase(supplier, product, quantity=10, unit_cost="10")

    purchase_service.edit_purchase(invoice.id, {
        "supplier_id": other.id,
        "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 10, "unit_cost": "10"}],
    })

    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("0")
    assert ledger_service.get_party("supplier", other.id).balance == Decimal("100")
    assert ledger_service.reconcile_balances() == []


# =============================================================================
# RETURNS
# =============================================================================

def test_purchase_return_uses_original_rate(supplier, product):
    invoice = _purchase(supplier, product, quantity=10, unit_cost="10", currency="USD",
                        exchange_rate="70", invoice_number="INV-1")

    ret = purchase_service.create_purchase_return({
        "original_invoice_id": invoice.id,
        "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 3}],
    })

    assert ret.id == "PR1"
    assert ret.to_dict()["type"] == "return"
    assert ret.to_dict()["kind"] == "purchase_return"
    assert ret.invoice_number == "R-INV-1"
    assert ret.total == Decimal("30")
    assert ret.base_total == Decimal("2100")
    assert ret.exchange_rate == Decimal("70")
    assert _batch(product.id, "L1").quantity == 7
    assert ledger_service.get_party("supplier", supplier.id).balance == Decimal("4900")
    assert purchase_service.get_purchase(invoice.id).to_dict() == invoice.to_dict()


def test_purchase_return_cannot_exceed_lot_stock(supplier, product):
    invoice = _purchase(supplier, product, quantity=5)
    sales_service.create_sale({"lines": [{"item_id": product.id, "quantity": 4}]})

    with pytest.raises(InsufficientStock) as exc:
        purchase_service.create_purchase_return({
            "original_invoice_id": invoice.id,
            "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 2}],
        })

    assert exc.value.details["available"] == 1
    assert exc.value.details["shortfall"] == 1


def test_purchase_return_of_lot_not_on_invoice(supplier, product):
    invoice = _purchase(supplier, product, lot="L1")
    _purchase(supplier, product, lot="L2")

    with pytest.raises(LedgerValidationError):
        purchase_service.create_purchase_return({
            "original_invoice_id": invoice.id,
            "lines": [{"product_id": product.id, "lot_number": "L2", "quantity": 1}],
        })


def test_purchase_with_returns_cannot_be_edited(supplier, product):
    invoice = _purchase(supplier, product, quantity=5)
    purchase_service.create_purchase_return({
        "original_invoice_id": invoice.id,
        "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 1}],
    })

    with pytest.raises(InvalidState):
        purchase_service.edit_purchase(invoice.id, {
            "lines": [{"product_id": product.id, "lot_number": "L1", "quantity": 6, "unit_cost": "10"}],
        })


@pytest.mark.parametrize("unit_cost,rate", [
    ("1e30", "70"),
    ("999999999999999", "999999999999999"),
])
def test_oversized_cost_is_rejected_without_burning_a_number(supplier, product, unit_cost, rate):
    with pytest.raises(LedgerValidationError):
        _purchase(supplier, product, unit_cost=unit_cost, currency="USD", exchange_rate=rate)

    assert gateway.get_all(gateway.PURCHASE_INVOICES) == []
    assert _purchase(supplier, product).id == "P1"
