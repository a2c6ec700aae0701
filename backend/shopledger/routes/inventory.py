# Overview: Flask API routes for products and batch stock; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, ledger_endpoint
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/products")


@inventory_bp.get("/")
@ledger_endpoint("list products")
def list_products_route():
    products = inventory_service.list_products(request.args.get("search"))
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@inventory_bp.post("/")
@ledger_endpoint("create product")
def create_product_route():
    """
    Register a product.

    Request body:
    {
        "name": "Paracetamol 500mg",
        "sale_price": "25",
        "units_per_package": 10,  (optional, default: 1)
        "barcode": "6260000000001",  (optional)
        "initial_batch": {"lot_number": "L1", "quantity": 50, "unit_cost": "12", "expiry_date": "2027-06-30"}  (optional)
    }
    """
    product = inventory_service.create_product(json_body())
    return jsonify({"product": product.to_dict()}), 201


@inventory_bp.get("/<product_id>")
@ledger_endpoint("get product")
def get_product_route(product_id: str):
    return jsonify({"product": inventory_service.get_product(product_id).to_dict()}), 200


@inventory_bp.put("/<product_id>")
@ledger_endpoint("update product")
def update_product_route(product_id: str):
    product = inventory_service.update_product(product_id, json_body())
    return jsonify({"product": product.to_dict()}), 200


@inventory_bp.delete("/<product_id>")
@ledger_endpoint("delete product")
def delete_product_route(product_id: str):
    inventory_service.delete_product(product_id)
    return jsonify({"deleted": product_id}), 200


@inventory_bp.get("/<product_id>/stock")
@ledger_endpoint("get stock level")
def stock_level_route(product_id: str):
    return jsonify(inventory_service.stock_level(product_id)), 200
