# Overview: Flask API routes for ledger export and restore.

from flask import Blueprint, jsonify

from ..decorators import json_body, ledger_endpoint
from ..services import backup_service


backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("/export")
@ledger_endpoint("export backup")
def export_backup_route():
    return jsonify(backup_service.export_backup()), 200


@backup_bp.post("/restore")
@ledger_endpoint("restore backup")
def restore_backup_route():
    """
    Replace all ledger data with a backup.

    Request body:
    {
        "confirm": true,
        "backup": {"schema_version": 1, "exported_at": "...", "collections": {...}}
    }

    Returns:
        200: Restored record counts per collection
        400: Missing confirmation or malformed backup
    """
    data = json_body()
    result = backup_service.restore_backup(data.get("backup"), confirm=data.get("confirm") is True)
    return jsonify(result), 200
