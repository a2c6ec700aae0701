"""
HTTP surface tests: status codes and JSON error bodies.
"""

import pytest


@pytest.fixture
def product_id(client, db_session):
    response = client.post("/api/products/", json={
        "name": "Paracetamol 500mg",
        "sale_price": "25",
        "initial_batch": {"lot_number": "L1", "quantity": 5, "unit_cost": "12", "expiry_date": "2027-06-30"},
    })
    assert response.status_code == 201
    return response.get_json()["product"]["id"]


def test_health(client, db_session):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["base_currency"] == "AFN"


def test_product_lifecycle(client, product_id):
    listed = client.get("/api/products/?search=parac").get_json()["products"]
    assert [p["id"] for p in listed] == [product_id]

    stock = client.get(f"/api/products/{product_id}/stock").get_json()
    assert stock["quantity"] == 5
    assert stock["stock_value"] == "60"

    updated = client.put(f"/api/products/{product_id}", json={"sale_price": "30"})
    assert updated.status_code == 200
    assert updated.get_json()["product"]["sale_price"] == "30"

    assert client.delete(f"/api/products/{product_id}").status_code == 200
    assert client.get(f"/api/products/{product_id}").status_code == 404


def test_sale_and_return_over_http(client, product_id):
    sale = client.post("/api/sales/", json={"lines": [{"item_id": product_id, "quantity": 3}], "cashier": "admin"})
    assert sale.status_code == 201
    invoice = sale.get_json()["invoice"]
    assert invoice["id"] == "F1"
    assert invoice["total"] == "75"

    ret = client.post("/api/sales/returns", json={
        "original_invoice_id": "F1",
        "lines": [{"item_id": product_id, "quantity": 1}],
    })
    assert ret.status_code == 201
    assert ret.get_json()["invoice"]["id"] == "R1"

    detail = client.get("/api/sales/F1").get_json()
    assert [r["id"] for r in detail["returns"]] == ["R1"]
    assert [i["id"] for i in client.get("/api/sales/?returns=true").get_json()["invoices"]] == ["R1"]

    # Referenced products stay
    assert client.delete(f"/api/products/{product_id}").status_code == 409


def test_insufficient_stock_is_a_conflict(client, product_id):
    response = client.post("/api/sales/", json={"lines": [{"item_id": product_id, "quantity": 9}]})

    assert response.status_code == 409
    body = response.get_json()
    assert body["error"] == "insufficient_stock"
    assert body["details"]["shortfall"] == 4


def test_validation_and_not_found(client, db_session):
    assert client.get("/api/sales/F404").status_code == 404

    response = client.post("/api/sales/", json={"lines": []})
    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"

    assert client.post("/api/sales/", json=["not", "an", "object"]).status_code == 400
    assert client.get("/api/parties/vendor").status_code == 400


def test_missing_exchange_rate(client, db_session):
    supplier = client.post("/api/parties/supplier", json={"name": "Kabul Pharma"}).get_json()["party"]

    response = client.post(f"/api/parties/supplier/{supplier['id']}/payments", json={"amount": "5", "currency": "USD"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "missing_exchange_rate"


def test_party_statement_and_delete_guard(client, db_session):
    created = client.post("/api/parties/customer", json={
        "name": "Ahmad",
        "opening_balance": {"amount": "100", "type": "debtor"},
    })
    assert created.status_code == 201
    customer_id = created.get_json()["party"]["id"]

    conflict = client.delete(f"/api/parties/customer/{customer_id}")
    assert conflict.status_code == 409
    assert conflict.get_json()["error"] == "non_zero_balance"

    paid = client.post(f"/api/parties/customer/{customer_id}/payments", json={"amount": "100"})
    assert paid.status_code == 201

    statement = client.get(f"/api/parties/customer/{customer_id}/statement").get_json()
    assert [t["running_balance"] for t in statement["transactions"]] == ["100", "0"]
    assert client.delete(f"/api/parties/customer/{customer_id}").status_code == 200


def test_payroll_run(client, db_session):
    employee = client.post("/api/parties/employee", json={"name": "Karim", "monthly_salary": "5000"}).get_json()["party"]
    advance = client.post(f"/api/parties/employee/{employee['id']}/advances", json={"amount": "1200"})
    assert advance.status_code == 201

    result = client.post("/api/payroll/run", json={}).get_json()

    assert result["processed"] is True
    assert result["total_paid"] == "3800"
    expenses = client.get("/api/payroll/expenses?category=salary").get_json()["expenses"]
    assert [e["amount"] for e in expenses] == ["3800"]


def test_reports_respond(client, product_id):
    for path in ("/api/reports/sales", "/api/reports/inventory", "/api/reports/financial-position",
                 "/api/reports/stock-alerts", "/api/reports/activities"):
        assert client.get(path).status_code == 200


def test_settings_round_trip(client, db_session):
    response = client.put("/api/settings", json={"store_name": "Central Pharmacy", "low_stock_threshold": 5})
    assert response.status_code == 200

    settings = client.get("/api/settings").get_json()["settings"]
    assert settings["store_name"] == "Central Pharmacy"
    assert settings["low_stock_threshold"] == 5
    assert client.put("/api/settings", json={"low_stock_threshold": -1}).status_code == 400


def test_restore_requires_confirm(client, product_id):
    backup = client.get("/api/backup/export").get_json()

    refused = client.post("/api/backup/restore", json={"backup": backup})
    assert refused.status_code == 400

    restored = client.post("/api/backup/restore", json={"backup": backup, "confirm": True})
    assert restored.status_code == 200
    assert restored.get_json()["restored"]["products"] == 1
