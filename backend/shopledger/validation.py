from __future__ import annotations

from typing import Any, Optional

from .services.errors import LedgerValidationError
from .time_utils import as_date, normalize_timestamp


def require_int(value: Any, field: str, *, minimum: Optional[int] = None) -> int:
    """
    Strict integer coercion for payload fields.

    Rejects bools, floats, decimal points and scientific notation instead of
    silently truncating them.
    """
    if isinstance(value, bool) or value is None:
        raise LedgerValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise LedgerValidationError(f"{field} must be an integer", {"field": field})
        try:
            parsed = int(stripped)
        except ValueError:
            raise LedgerValidationError(f"{field} must be an integer", {"field": field})
    else:
        raise LedgerValidationError(f"{field} must be an integer", {"field": field})

    if minimum is not None and parsed < minimum:
        raise LedgerValidationError(
            f"{field} must be at least {minimum}",
            {"field": field, "value": parsed},
        )
    return parsed


def require_quantity(value: Any, field: str = "quantity") -> int:
    return require_int(value, field, minimum=1)


def require_str(payload: dict, field: str) -> str:
    value = payload.get(field)
    if value is None or not str(value).strip():
        raise LedgerValidationError(f"{field} is required", {"field": field})
    return str(value).strip()


def optional_str(payload: dict, field: str) -> Optional[str]:
    value = payload.get(field)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def optional_date(payload: dict, field: str) -> Optional[str]:
    """ISO date string (YYYY-MM-DD) or None."""
    value = payload.get(field)
    if value is None or value == "":
        return None
    try:
        parsed = as_date(value)
    except ValueError:
        raise LedgerValidationError(f"{field} must be an ISO date", {"field": field, "value": str(value)})
    return parsed.isoformat() if parsed else None


def timestamp_field(payload: dict, field: str = "timestamp") -> str:
    try:
        return normalize_timestamp(payload.get(field))
    except ValueError:
        raise LedgerValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})
