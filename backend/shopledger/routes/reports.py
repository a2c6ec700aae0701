from flask import Blueprint, jsonify, request

from ..decorators import ledger_endpoint
from ..services import activity_service, reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@ledger_endpoint("build sales report")
def sales_report():
    report = reporting_service.sales_summary(
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(report), 200


@reports_bp.get("/inventory")
@ledger_endpoint("build inventory report")
def inventory_report():
    return jsonify(reporting_service.inventory_summary()), 200


@reports_bp.get("/financial-position")
@ledger_endpoint("build financial position")
def financial_position_report():
    return jsonify(reporting_service.financial_position()), 200


@reports_bp.get("/stock-alerts")
@ledger_endpoint("build stock alerts")
def stock_alerts_report():
    return jsonify(reporting_service.stock_alerts()), 200


@reports_bp.get("/activities")
@ledger_endpoint("list activities")
def activities_report():
    limit = request.args.get("limit", 100, type=int)
    return jsonify({"activities": activity_service.recent_activities(limit)}), 200
