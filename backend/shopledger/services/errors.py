# Overview: Structured ledger exceptions shared by every service and mapped to HTTP by the routes.

from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for every business-rule failure.

    kind is a stable machine-readable tag; details carries the structured
    context a caller needs to render the failure (ids, quantities, ...).
    """
    kind = "ledger_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "details": self.details}


class InsufficientStock(LedgerError):
    """
    Requested quantity exceeds what the batches hold.

    Single-product form carries product_id/requested/available/shortfall;
    the aggregate form raised for a whole cart carries them per item under
    "items".
    """
    kind = "insufficient_stock"
    http_status = 409

    @classmethod
    def for_product(cls, product_id: str, requested: int, available: int, name: str | None = None):
        shortfall = requested - available
        label = name or product_id
        return cls(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            {
                "product_id": product_id,
                "requested": requested,
                "available": available,
                "shortfall": shortfall,
            },
        )

    @classmethod
    def aggregate(cls, items: list[dict]):
        if len(items) == 1:
            item = items[0]
            return cls.for_product(item["product_id"], item["requested"], item["available"], item.get("name"))
        names = ", ".join(str(i.get("name") or i["product_id"]) for i in items)
        return cls(f"Insufficient stock for: {names}", {"items": items})


class MissingExchangeRate(LedgerError):
    kind = "missing_exchange_rate"
    http_status = 400


class NonZeroBalance(LedgerError):
    kind = "non_zero_balance"
    http_status = 409


class NotFound(LedgerError):
    kind = "not_found"
    http_status = 404


class PersistenceFailure(LedgerError):
    """Storage failed; the command was rolled back and nothing was written."""
    kind = "persistence_failure"
    http_status = 503


class LedgerValidationError(LedgerError):
    kind = "validation_error"
    http_status = 400


class InvalidState(LedgerError):
    kind = "invalid_state"
    http_status = 409
