# backend/shopledger/routes/system.py
"""
System health, store settings and the services catalogue.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..decorators import json_body, ledger_endpoint
from ..extensions import db
from ..models import LedgerRecord
from ..services import settings_service
from ..services.money import base_currency

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a cheap count.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        record_count = db.session.query(LedgerRecord).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"records": record_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "base_currency": base_currency(),
        "checks": {"database": database},
    }), status_code


@system_bp.get("/api/settings")
@ledger_endpoint("get settings")
def get_settings_route():
    return jsonify({"settings": settings_service.get_settings()}), 200


@system_bp.put("/api/settings")
@ledger_endpoint("update settings")
def update_settings_route():
    return jsonify({"settings": settings_service.update_settings(json_body())}), 200


@system_bp.get("/api/services")
@ledger_endpoint("list services")
def list_services_route():
    return jsonify({"services": settings_service.list_services()}), 200


@system_bp.post("/api/services")
@ledger_endpoint("add service")
def add_service_route():
    service = settings_service.add_service(json_body())
    return jsonify({"service": service.to_dict()}), 201


@system_bp.delete("/api/services/<service_id>")
@ledger_endpoint("delete service")
def delete_service_route(service_id: str):
    settings_service.delete_service(service_id)
    return jsonify({"deleted": service_id}), 200
