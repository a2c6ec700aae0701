# Overview: Service-layer operations for the party ledger; balances backed by append-only transactions.

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from flask import current_app

from ..models import (
    ALLOWED_TRANSACTION_KINDS,
    TRANSACTION_SIGNS,
    Party,
    PartyKind,
    Transaction,
    TransactionKind,
    new_id,
)
from ..time_utils import normalize_timestamp
from ..validation import optional_str, require_str, timestamp_field
from . import gateway
from .activity_service import append_activity
from .concurrency import run_command
from .errors import LedgerValidationError, NonZeroBalance, NotFound
from .money import ZERO, Money, base_currency, to_decimal
"""
Party Ledger Invariants (authoritative)

- Transactions are append-only: never updated, never deleted.
- party.balance == SUM(transaction.delta) for that party at every commit.
- A transaction and the balance move it causes are written in the same
  command; there is no path that changes one without the other.
- Sign convention: positive balance means the customer owes us, we owe the
  supplier, or the employee holds an unsettled advance.
"""

# Opening balance direction per party kind
_OPENING_SIGNS = {
    PartyKind.CUSTOMER: {"debtor": 1, "creditor": -1},
    PartyKind.SUPPLIER: {"creditor": 1, "debtor": -1},
}


def party_kind(kind) -> PartyKind:
    if isinstance(kind, PartyKind):
        return kind
    try:
        return PartyKind(str(kind).strip().lower())
    except ValueError:
        raise LedgerValidationError(f"Unknown party kind: {kind}", {"kind": str(kind)})


def transaction_kind(kind) -> TransactionKind:
    if isinstance(kind, TransactionKind):
        return kind
    try:
        return TransactionKind(str(kind).strip().lower())
    except ValueError:
        raise LedgerValidationError(f"Unknown transaction kind: {kind}", {"kind": str(kind)})


# =============================================================================
# PARTIES
# =============================================================================

def load_party(kind, party_id: str, *, lock: bool = False) -> Party:
    kind = party_kind(kind)
    record = gateway.get_by_id(kind.collection, party_id, lock=lock)
    if not record:
        raise NotFound(f"{kind.value.title()} {party_id} not found", {"kind": kind.value, "party_id": party_id})
    return Party.from_dict(record)


def save_party(party: Party) -> None:
    gateway.put(party.kind.collection, party.to_dict())


def get_party(kind, party_id: str) -> Party:
    return load_party(kind, party_id)


def list_parties(kind) -> list[Party]:
    kind = party_kind(kind)
    return [Party.from_dict(r) for r in gateway.get_all(kind.collection)]


def _apply_party_fields(party: Party, payload: dict) -> None:
    if "name" in payload:
        party.name = require_str(payload, "name")
    for field in ("phone", "contact_person", "address"):
        if field in payload:
            setattr(party, field, optional_str(payload, field))
    if "monthly_salary" in payload:
        if party.kind != PartyKind.EMPLOYEE:
            raise LedgerValidationError("Only employees have a monthly salary", {"field": "monthly_salary"})
        party.monthly_salary = to_decimal(payload.get("monthly_salary"), "monthly_salary")


def create_party(kind, payload: dict) -> Party:
    """
    Register a customer, supplier or employee.

    Customers and suppliers may carry an opening balance:
    {"amount", "type": "debtor"|"creditor", "currency", "exchange_rate"}.
    It is posted as an opening_balance transaction so the balance stays
    backed by history.
    """
    kind = party_kind(kind)
    party = Party(
        id=payload.get("id") or new_id(),
        kind=kind,
        name=require_str(payload, "name"),
        monthly_salary=(
            to_decimal(payload.get("monthly_salary", 0), "monthly_salary")
            if kind == PartyKind.EMPLOYEE else None
        ),
        created_at=normalize_timestamp(None),
    )
    # Employee salary is already parsed; other kinds must reach the salary check
    fields = {k: v for k, v in payload.items() if kind != PartyKind.EMPLOYEE or k != "monthly_salary"}
    _apply_party_fields(party, fields)

    opening = payload.get("opening_balance")
    opening_money = None
    opening_sign = 0
    if opening and kind == PartyKind.EMPLOYEE:
        raise LedgerValidationError("Employees do not take an opening balance", {"field": "opening_balance"})
    if opening:
        direction = str(opening.get("type") or "").lower()
        if direction not in _OPENING_SIGNS[kind]:
            raise LedgerValidationError(
                "opening_balance.type must be 'debtor' or 'creditor'",
                {"field": "opening_balance.type"},
            )
        opening_money = Money.from_payload(opening.get("amount"), opening.get("currency"), opening.get("exchange_rate"))
        opening_sign = _OPENING_SIGNS[kind][direction]

    def _op():
        if gateway.get_by_id(kind.collection, party.id):
            raise LedgerValidationError(f"{kind.value.title()} {party.id} already exists", {"party_id": party.id})
        save_party(party)
        if opening_money is not None and opening_money.amount:
            base = opening_money.to_base()
            apply_transaction(
                kind,
                party.id,
                TransactionKind.OPENING_BALANCE,
                base,
                "Opening balance",
                delta=base * opening_sign,
                currency=opening_money.currency,
                exchange_rate=opening_money.exchange_rate,
                original_amount=None if opening_money.is_base else opening_money.amount,
            )
        append_activity(kind.value, f'New {kind.value} "{party.name}" registered', ref_id=party.id, ref_type=kind.value)
        return load_party(kind, party.id)

    return run_command(_op, f"create_{kind.value}")


def update_party(kind, party_id: str, payload: dict) -> Party:
    """Edit contact fields. The balance only moves through transactions."""
    if "balance" in payload:
        raise LedgerValidationError("balance cannot be edited directly", {"field": "balance"})

    def _op():
        party = load_party(kind, party_id, lock=True)
        _apply_party_fields(party, payload)
        save_party(party)
        return party

    return run_command(_op, "update_party")


def delete_party(kind, party_id: str) -> None:
    """Remove a party whose balance is exactly zero; its history stays."""
    def _op():
        party = load_party(kind, party_id, lock=True)
        if party.balance != ZERO:
            raise NonZeroBalance(
                f"{party.name} has a non-zero balance of {party.balance}",
                {"party_id": party.id, "kind": party.kind.value, "balance": str(party.balance)},
            )
        gateway.delete(party.kind.collection, party.id)

    run_command(_op, "delete_party")


# =============================================================================
# TRANSACTIONS
# =============================================================================

def apply_transaction(
    kind,
    party_id: str,
    tx_kind,
    amount,
    description: str = "",
    *,
    delta: Optional[Decimal] = None,
    invoice_id: Optional[str] = None,
    currency: Optional[str] = None,
    exchange_rate: Optional[Decimal] = None,
    original_amount: Optional[Decimal] = None,
    timestamp=None,
) -> Transaction:
    """
    Append one transaction and move the party balance by its delta.

    amount is in base currency. Kinds with a fixed direction (credit_sale,
    payment, ...) derive delta from it; opening_balance, adjustment and
    salary_payment take an explicit signed delta (or a signed amount).
    """
    kind = party_kind(kind)
    tx_kind = transaction_kind(tx_kind)
    if tx_kind not in ALLOWED_TRANSACTION_KINDS[kind]:
        raise LedgerValidationError(
            f"{tx_kind.value} is not a valid {kind.value} transaction",
            {"kind": kind.value, "transaction_kind": tx_kind.value},
        )

    value = to_decimal(amount, "amount", allow_negative=True)
    if tx_kind in TRANSACTION_SIGNS:
        if value < 0:
            raise LedgerValidationError("amount cannot be negative", {"field": "amount"})
        movement = value * TRANSACTION_SIGNS[tx_kind]
    else:
        movement = value if delta is None else to_decimal(delta, "delta", allow_negative=True)
        value = abs(value)

    def _op():
        party = load_party(kind, party_id, lock=True)
        tx = Transaction(
            id=new_id(),
            party_id=party.id,
            party_kind=kind,
            kind=tx_kind,
            amount=value,
            delta=movement,
            timestamp=normalize_timestamp(timestamp),
            description=description or "",
            invoice_id=invoice_id,
            currency=currency or base_currency(),
            exchange_rate=exchange_rate,
            original_amount=original_amount,
        )
        gateway.put(kind.transaction_collection, tx.to_dict())
        party.balance += movement
        save_party(party)
        return tx

    return run_command(_op, "apply_transaction")


def record_payment(kind, party_id: str, payload: dict) -> Transaction:
    """
    Money received from a customer or paid to a supplier.

    payload: amount, currency, exchange_rate, description, timestamp.
    """
    kind = party_kind(kind)
    if kind == PartyKind.EMPLOYEE:
        raise LedgerValidationError("Employees are settled through payroll", {"kind": kind.value})
    money = Money.from_payload(payload.get("amount"), payload.get("currency"), payload.get("exchange_rate"))
    if money.amount <= 0:
        raise LedgerValidationError("Payment amount must be positive", {"field": "amount"})
    timestamp = timestamp_field(payload)

    def _op():
        party = load_party(kind, party_id, lock=True)
        base = money.to_base()
        default_desc = "Payment received" if kind == PartyKind.CUSTOMER else "Payment to supplier"
        tx = apply_transaction(
            kind,
            party.id,
            TransactionKind.PAYMENT,
            base,
            payload.get("description") or default_desc,
            currency=money.currency,
            exchange_rate=money.exchange_rate,
            original_amount=None if money.is_base else money.amount,
            timestamp=timestamp,
        )
        append_activity(kind.value, f"Payment of {base} recorded for {party.name}", ref_id=party.id, ref_type=kind.value)
        return tx

    return run_command(_op, "record_payment")


def record_advance(employee_id: str, payload: dict) -> Transaction:
    """Salary advance handed to an employee; settled by the next payroll run."""
    amount = to_decimal(payload.get("amount"), "amount")
    if amount <= 0:
        raise LedgerValidationError("Advance amount must be positive", {"field": "amount"})
    timestamp = timestamp_field(payload)

    def _op():
        employee = load_party(PartyKind.EMPLOYEE, employee_id, lock=True)
        tx = apply_transaction(
            PartyKind.EMPLOYEE,
            employee.id,
            TransactionKind.ADVANCE,
            amount,
            payload.get("description") or "Salary advance",
            timestamp=timestamp,
        )
        append_activity("payroll", f"Advance of {amount} to {employee.name}", ref_id=employee.id, ref_type="employee")
        return tx

    return run_command(_op, "record_advance")


def list_transactions(kind, party_id: Optional[str] = None) -> list[Transaction]:
    kind = party_kind(kind)
    records = gateway.get_all(kind.transaction_collection)
    txs = [Transaction.from_dict(r) for r in records if party_id is None or r.get("party_id") == party_id]
    # sort() is stable, so equal timestamps keep insertion order
    txs.sort(key=lambda t: t.timestamp)
    return txs


def get_statement(kind, party_id: str) -> dict:
    """Ordered transaction history with running balance. Pure read."""
    party = load_party(kind, party_id)
    running = ZERO
    rows = []
    for tx in list_transactions(party.kind, party.id):
        running += tx.delta
        row = tx.to_dict()
        row["running_balance"] = str(running)
        rows.append(row)
    return {
        "party": party.to_dict(),
        "transactions": rows,
        "balance": str(party.balance),
        "computed_balance": str(running),
    }


def reconcile_balances(kind=None, *, fix: bool = False) -> list[dict]:
    """
    Fold every party's transactions and report balances that drifted.

    With fix=True the cached balances are rewritten to the folded value in
    one command.
    """
    kinds = [party_kind(kind)] if kind else list(PartyKind)

    def _scan() -> list[dict]:
        drifts = []
        for k in kinds:
            totals: dict[str, Decimal] = {}
            for tx in gateway.get_all(k.transaction_collection):
                totals[tx["party_id"]] = totals.get(tx["party_id"], ZERO) + Decimal(str(tx.get("delta") or "0"))
            for party in list_parties(k):
                computed = totals.get(party.id, ZERO)
                if computed != party.balance:
                    drifts.append({
                        "kind": k.value,
                        "party_id": party.id,
                        "name": party.name,
                        "cached": str(party.balance),
                        "computed": str(computed),
                        "drift": str(party.balance - computed),
                    })
        return drifts

    if not fix:
        return _scan()

    def _op():
        drifts = _scan()
        for row in drifts:
            party = load_party(row["kind"], row["party_id"], lock=True)
            party.balance = Decimal(row["computed"])
            save_party(party)
        return drifts

    drifts = run_command(_op, "reconcile_balances")
    if drifts:
        current_app.logger.warning("Repaired %d drifted party balances", len(drifts))
    return drifts
