# Overview: Flask API routes for purchase invoices and purchase returns.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, ledger_endpoint
from ..models import InvoiceKind
from ..services import document_service, purchase_service


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.get("/")
@ledger_endpoint("list purchases")
def list_purchases_route():
    kind = InvoiceKind.PURCHASE_RETURN if request.args.get("returns", "false").lower() == "true" else InvoiceKind.PURCHASE
    invoices = document_service.list_invoices(kind)
    return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200


@purchases_bp.post("/")
@ledger_endpoint("create purchase")
def create_purchase_route():
    """
    Commit a purchase.

    Request body:
    {
        "supplier_id": "...",
        "invoice_number": "INV-884",  (optional, supplier reference)
        "currency": "USD",  (optional, default: base currency)
        "exchange_rate": "70",  (required for foreign currency)
        "lines": [{"product_id": "...", "lot_number": "L7", "quantity": 10, "unit_cost": "10", "expiry_date": "2027-01-31"}]
    }
    """
    invoice = purchase_service.create_purchase(json_body())
    return jsonify({"invoice": invoice.to_dict()}), 201


@purchases_bp.get("/<invoice_id>")
@ledger_endpoint("get purchase")
def get_purchase_route(invoice_id: str):
    invoice = purchase_service.get_purchase(invoice_id)
    returns = document_service.returns_for(invoice)
    return jsonify({"invoice": invoice.to_dict(), "returns": [r.to_dict() for r in returns]}), 200


@purchases_bp.put("/<invoice_id>")
@ledger_endpoint("edit purchase")
def edit_purchase_route(invoice_id: str):
    invoice = purchase_service.edit_purchase(invoice_id, json_body())
    return jsonify({"invoice": invoice.to_dict()}), 200


@purchases_bp.post("/returns")
@ledger_endpoint("create purchase return")
def create_purchase_return_route():
    invoice = purchase_service.create_purchase_return(json_body())
    return jsonify({"invoice": invoice.to_dict()}), 201
