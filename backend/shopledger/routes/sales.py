# Overview: Flask API routes for sale invoices and sale returns.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, ledger_endpoint
from ..models import InvoiceKind
from ..services import document_service, sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/")
@ledger_endpoint("list sales")
def list_sales_route():
    kind = InvoiceKind.SALE_RETURN if request.args.get("returns", "false").lower() == "true" else InvoiceKind.SALE
    invoices = document_service.list_invoices(kind)
    return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200


@sales_bp.post("/")
@ledger_endpoint("create sale")
def create_sale_route():
    """
    Commit a sale.

    Request body:
    {
        "lines": [{"line_type": "product", "item_id": "...", "quantity": 2, "unit_price": "20"}],
        "customer_id": "...",  (optional, credit sale)
        "cashier": "admin"  (optional)
    }

    Returns:
        201: Invoice committed
        409: Insufficient stock (details list every short product)
    """
    invoice = sales_service.create_sale(json_body())
    return jsonify({"invoice": invoice.to_dict()}), 201


@sales_bp.get("/<invoice_id>")
@ledger_endpoint("get sale")
def get_sale_route(invoice_id: str):
    invoice = sales_service.get_sale(invoice_id)
    returns = document_service.returns_for(invoice)
    return jsonify({"invoice": invoice.to_dict(), "returns": [r.to_dict() for r in returns]}), 200


@sales_bp.put("/<invoice_id>")
@ledger_endpoint("edit sale")
def edit_sale_route(invoice_id: str):
    invoice = sales_service.edit_sale(invoice_id, json_body())
    return jsonify({"invoice": invoice.to_dict()}), 200


@sales_bp.post("/returns")
@ledger_endpoint("create sale return")
def create_sale_return_route():
    """
    Request body:
    {
        "original_invoice_id": "F12",
        "lines": [{"line_type": "product", "item_id": "...", "quantity": 1}],
        "cashier": "admin"  (optional)
    }
    """
    invoice = sales_service.create_sale_return(json_body())
    return jsonify({"invoice": invoice.to_dict()}), 201
