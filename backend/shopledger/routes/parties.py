# Overview: Flask API routes for customers, suppliers and employees and their ledgers.

from flask import Blueprint, jsonify

from ..decorators import json_body, ledger_endpoint
from ..services import ledger_service


parties_bp = Blueprint("parties", __name__, url_prefix="/api/parties")


@parties_bp.get("/<kind>")
@ledger_endpoint("list parties")
def list_parties_route(kind: str):
    parties = ledger_service.list_parties(kind)
    return jsonify({"parties": [p.to_dict() for p in parties]}), 200


@parties_bp.post("/<kind>")
@ledger_endpoint("create party")
def create_party_route(kind: str):
    """
    Register a customer, supplier or employee.

    Request body:
    {
        "name": "Ahmad",
        "phone": "0700000000",  (optional)
        "monthly_salary": "5000",  (employees)
        "opening_balance": {"amount": "1500", "type": "debtor", "currency": "AFN"}  (optional)
    }
    """
    party = ledger_service.create_party(kind, json_body())
    return jsonify({"party": party.to_dict()}), 201


@parties_bp.get("/<kind>/<party_id>")
@ledger_endpoint("get party")
def get_party_route(kind: str, party_id: str):
    return jsonify({"party": ledger_service.get_party(kind, party_id).to_dict()}), 200


@parties_bp.put("/<kind>/<party_id>")
@ledger_endpoint("update party")
def update_party_route(kind: str, party_id: str):
    party = ledger_service.update_party(kind, party_id, json_body())
    return jsonify({"party": party.to_dict()}), 200


@parties_bp.delete("/<kind>/<party_id>")
@ledger_endpoint("delete party")
def delete_party_route(kind: str, party_id: str):
    ledger_service.delete_party(kind, party_id)
    return jsonify({"deleted": party_id}), 200


@parties_bp.get("/<kind>/<party_id>/statement")
@ledger_endpoint("get statement")
def statement_route(kind: str, party_id: str):
    return jsonify(ledger_service.get_statement(kind, party_id)), 200


@parties_bp.post("/<kind>/<party_id>/payments")
@ledger_endpoint("record payment")
def record_payment_route(kind: str, party_id: str):
    tx = ledger_service.record_payment(kind, party_id, json_body())
    return jsonify({"transaction": tx.to_dict()}), 201


@parties_bp.post("/employee/<party_id>/advances")
@ledger_endpoint("record advance")
def record_advance_route(party_id: str):
    tx = ledger_service.record_advance(party_id, json_body())
    return jsonify({"transaction": tx.to_dict()}), 201
