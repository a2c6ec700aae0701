# Overview: Currency normalization into the base currency; all amounts are Decimal.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from flask import current_app, has_app_context

from ..config import Config
from .errors import LedgerValidationError, MissingExchangeRate

ZERO = Decimal("0")
WHOLE_UNIT = Decimal("1")
CENT = Decimal("0.01")
# Upper bound for any single amount or rate; keeps cent quantization inside decimal precision
MAX_AMOUNT = Decimal("1e15")


def base_currency() -> str:
    if has_app_context():
        return str(current_app.config.get("BASE_CURRENCY") or Config.BASE_CURRENCY).upper()
    return Config.BASE_CURRENCY


def to_decimal(value: Any, field: str = "amount", *, allow_negative: bool = False) -> Decimal:
    """
    Parse a payload amount into Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises LedgerValidationError
    for anything non-numeric (and for negatives unless allowed).
    """
    if isinstance(value, bool) or value is None:
        raise LedgerValidationError(f"{field} is required", {"field": field})
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"{field} must be a number", {"field": field, "value": str(value)})
    if not result.is_finite():
        raise LedgerValidationError(f"{field} must be a number", {"field": field, "value": str(value)})
    if result < 0 and not allow_negative:
        raise LedgerValidationError(f"{field} cannot be negative", {"field": field, "value": str(value)})
    if abs(result) >= MAX_AMOUNT:
        raise LedgerValidationError(f"{field} is too large", {"field": field, "value": str(value)})
    return result


def _quantize(value: Decimal, exponent: Decimal, field: str = "amount") -> Decimal:
    try:
        return value.quantize(exponent, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise LedgerValidationError(f"{field} is too large", {"field": field, "value": str(value)})


def is_base(currency: Optional[str]) -> bool:
    return not currency or currency.strip().upper() == base_currency()


def _checked_rate(currency: str, rate: Any) -> Decimal:
    if rate is None or rate == "":
        raise MissingExchangeRate(
            f"Exchange rate required for {currency}",
            {"currency": currency},
        )
    parsed = to_decimal(rate, "exchange_rate", allow_negative=True)
    if parsed <= 0:
        raise MissingExchangeRate(
            f"Exchange rate for {currency} must be positive",
            {"currency": currency, "exchange_rate": str(parsed)},
        )
    return parsed


def normalize(amount: Any, currency: Optional[str] = None, rate: Any = None) -> Decimal:
    """
    Convert an amount into the base currency.

    Base-currency amounts pass through unchanged. Foreign amounts need a
    positive rate and are rounded half-up to a whole base unit.
    """
    value = to_decimal(amount, allow_negative=True)
    if is_base(currency):
        return value
    parsed = _checked_rate(currency.strip().upper(), rate)
    return _quantize(value * parsed, WHOLE_UNIT)


def normalize_unit_cost(amount: Any, currency: Optional[str] = None, rate: Any = None) -> Decimal:
    """Per-unit batch cost in base currency; foreign costs keep two decimals."""
    value = to_decimal(amount, "unit_cost")
    if is_base(currency):
        return value
    parsed = _checked_rate(currency.strip().upper(), rate)
    return _quantize(value * parsed, CENT, "unit_cost")


def quantize_cost(value: Decimal) -> Decimal:
    return _quantize(value, CENT, "unit_cost")


@dataclass(frozen=True)
class Money:
    """An amount with the currency and rate it was entered in."""
    amount: Decimal
    currency: str
    exchange_rate: Optional[Decimal] = None

    @classmethod
    def from_payload(cls, amount: Any, currency: Optional[str] = None, rate: Any = None) -> "Money":
        cur = (currency or base_currency()).strip().upper()
        parsed_rate = None
        if not is_base(cur):
            parsed_rate = _checked_rate(cur, rate)
        return cls(amount=to_decimal(amount), currency=cur, exchange_rate=parsed_rate)

    @property
    def is_base(self) -> bool:
        return is_base(self.currency)

    def to_base(self) -> Decimal:
        return normalize(self.amount, self.currency, self.exchange_rate)
