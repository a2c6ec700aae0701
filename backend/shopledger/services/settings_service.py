# Overview: Store settings record and the non-stock services catalogue.

from __future__ import annotations

from ..models import Service, new_id
from . import gateway
from .concurrency import run_command
from .errors import LedgerValidationError, NotFound
from .money import base_currency, to_decimal

SETTINGS_ID = "current"

EDITABLE_FIELDS = (
    "store_name",
    "address",
    "phone",
    "low_stock_threshold",
    "expiry_threshold_months",
    "currency_name",
    "currency_symbol",
)


def default_settings() -> dict:
    return {
        "id": SETTINGS_ID,
        "store_name": "",
        "address": "",
        "phone": "",
        "low_stock_threshold": 10,
        "expiry_threshold_months": 3,
        "currency_name": base_currency(),
        "currency_symbol": base_currency(),
    }


def get_settings() -> dict:
    settings = default_settings()
    stored = gateway.get_by_id(gateway.STORE_SETTINGS, SETTINGS_ID)
    if stored:
        settings.update({k: v for k, v in stored.items() if k in EDITABLE_FIELDS})
    return settings


def _non_negative_int(value, field: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise LedgerValidationError(f"{field} must be an integer", {"field": field})
    if parsed < 0:
        raise LedgerValidationError(f"{field} cannot be negative", {"field": field})
    return parsed


def update_settings(payload: dict) -> dict:
    unknown = sorted(set(payload) - set(EDITABLE_FIELDS) - {"id"})
    if unknown:
        raise LedgerValidationError("Unknown settings fields", {"fields": unknown})

    updates = {}
    for field in EDITABLE_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if field in ("low_stock_threshold", "expiry_threshold_months"):
            value = _non_negative_int(value, field)
        elif value is not None:
            value = str(value).strip()
        updates[field] = value

    def _op():
        settings = get_settings()
        settings.update(updates)
        gateway.put(gateway.STORE_SETTINGS, settings)
        return settings

    return run_command(_op, "update_settings")


# =============================================================================
# SERVICES CATALOGUE
# =============================================================================

def list_services() -> list[dict]:
    return gateway.get_all(gateway.SERVICES)


def get_service(service_id: str) -> Service:
    record = gateway.get_by_id(gateway.SERVICES, service_id)
    if not record:
        raise NotFound(f"Service {service_id} not found", {"service_id": service_id})
    return Service.from_dict(record)


def add_service(payload: dict) -> Service:
    name = (payload.get("name") or "").strip()
    if not name:
        raise LedgerValidationError("Service name is required", {"field": "name"})
    service = Service(
        id=payload.get("id") or new_id(),
        name=name,
        price=to_decimal(payload.get("price"), "price"),
    )
    run_command(lambda: gateway.put(gateway.SERVICES, service.to_dict()), "add_service")
    return service


def delete_service(service_id: str) -> None:
    def _op():
        if not gateway.delete(gateway.SERVICES, service_id):
            raise NotFound(f"Service {service_id} not found", {"service_id": service_id})

    run_command(_op, "delete_service")
