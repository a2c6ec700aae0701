# Overview: Route decorators that translate ledger exceptions into JSON responses.

from functools import wraps

from flask import current_app, jsonify, request

from .services.errors import LedgerError, LedgerValidationError


def ledger_endpoint(description: str):
    """
    Map service failures to JSON error bodies.

    - LedgerError -> its to_dict() with the error's HTTP status
    - anything else -> logged with traceback, 500
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except LedgerError as exc:
                if exc.http_status >= 500:
                    current_app.logger.error("%s failed: %s", description, exc.message)
                return jsonify(exc.to_dict()), exc.http_status
            except Exception:
                current_app.logger.exception("Failed to %s", description)
                return jsonify({"error": "internal_error", "message": "Internal server error"}), 500

        return decorated_function

    return decorator


def json_body() -> dict:
    """Request JSON object (empty dict when the body is missing)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise LedgerValidationError("Request body must be a JSON object")
    return data
