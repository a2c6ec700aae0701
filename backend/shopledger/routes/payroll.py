# Overview: Flask API routes for payroll runs and expenses.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, ledger_endpoint
from ..services import payroll_service


payroll_bp = Blueprint("payroll", __name__, url_prefix="/api/payroll")


@payroll_bp.post("/run")
@ledger_endpoint("process payroll")
def run_payroll_route():
    result = payroll_service.process_payroll(json_body())
    return jsonify(result.to_dict()), 200


@payroll_bp.get("/expenses")
@ledger_endpoint("list expenses")
def list_expenses_route():
    expenses = payroll_service.list_expenses(
        start=request.args.get("start"),
        end=request.args.get("end"),
        category=request.args.get("category"),
    )
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@payroll_bp.post("/expenses")
@ledger_endpoint("add expense")
def add_expense_route():
    expense = payroll_service.add_expense(json_body())
    return jsonify({"expense": expense.to_dict()}), 201
