# Overview: Service-layer operations for payroll settlement and shop expenses.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from flask import current_app

from ..models import Expense, PartyKind, Transaction, TransactionKind, new_id
from ..time_utils import as_date, normalize_timestamp
from ..validation import optional_date, optional_str, require_str, timestamp_field
from . import gateway
from .activity_service import append_activity
from .concurrency import run_command
from .errors import LedgerValidationError
from .ledger_service import apply_transaction, list_parties
from .money import ZERO, to_decimal

SALARY_CATEGORY = "salary"
NOTHING_TO_PROCESS = "No salaries are due; nothing to process"


@dataclass
class PayrollResult:
    processed: bool
    message: str
    total_paid: Decimal = ZERO
    transactions: list[Transaction] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    expense: Optional[Expense] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "message": self.message,
            "total_paid": str(self.total_paid),
            "transactions": [t.to_dict() for t in self.transactions],
            "skipped": self.skipped,
            "expense": self.expense.to_dict() if self.expense else None,
        }


def process_payroll(payload: Optional[dict] = None) -> PayrollResult:
    """
    Settle every employee's monthly salary in one command.

    For each employee net_due = monthly_salary - balance (balance is the
    outstanding advance). Employees with a positive net_due receive a
    salary_payment of net_due whose delta clears their balance to zero;
    everyone else is skipped and keeps their balance. The total paid is
    booked as one 'salary' expense. Nothing due means no writes at all.
    """
    payload = payload or {}
    timestamp = timestamp_field(payload)
    description = optional_str(payload, "description")

    def _op() -> PayrollResult:
        due = []
        skipped = []
        for employee in list_parties(PartyKind.EMPLOYEE):
            salary = employee.monthly_salary or ZERO
            net_due = salary - employee.balance
            if net_due > 0:
                due.append((employee, net_due))
            else:
                skipped.append({
                    "employee_id": employee.id,
                    "name": employee.name,
                    "monthly_salary": str(salary),
                    "balance": str(employee.balance),
                })

        if not due:
            return PayrollResult(processed=False, message=NOTHING_TO_PROCESS, skipped=skipped)

        transactions = []
        total = ZERO
        for employee, net_due in due:
            tx = apply_transaction(
                PartyKind.EMPLOYEE,
                employee.id,
                TransactionKind.SALARY_PAYMENT,
                net_due,
                f"Salary payment ({employee.monthly_salary} less advances {employee.balance})",
                delta=ZERO - employee.balance,
                timestamp=timestamp,
            )
            transactions.append(tx)
            total += net_due

        expense = Expense(
            id=new_id(),
            date=timestamp[:10],
            description=description or f"Salaries for {len(transactions)} employee(s)",
            amount=total,
            category=SALARY_CATEGORY,
        )
        gateway.put(gateway.EXPENSES, expense.to_dict())
        append_activity("payroll", f"Payroll processed: {total} to {len(transactions)} employee(s)", ref_id=expense.id, ref_type="expense")
        return PayrollResult(
            processed=True,
            message=f"Paid {total} to {len(transactions)} employee(s)",
            total_paid=total,
            transactions=transactions,
            skipped=skipped,
            expense=expense,
        )

    result = run_command(_op, "process_payroll")
    if result.processed:
        current_app.logger.info("Payroll processed: %s paid to %d employees", result.total_paid, len(result.transactions))
    else:
        current_app.logger.info("Payroll skipped: nothing due")
    return result


# =============================================================================
# EXPENSES
# =============================================================================

def add_expense(payload: dict) -> Expense:
    amount = to_decimal(payload.get("amount"), "amount")
    if amount <= 0:
        raise LedgerValidationError("Expense amount must be positive", {"field": "amount"})
    expense = Expense(
        id=payload.get("id") or new_id(),
        date=optional_date(payload, "date") or normalize_timestamp(None)[:10],
        description=require_str(payload, "description"),
        amount=amount,
        category=(optional_str(payload, "category") or "general").lower(),
    )

    def _op():
        gateway.put(gateway.EXPENSES, expense.to_dict())
        append_activity("expense", f"Expense {expense.description}: {expense.amount}", ref_id=expense.id, ref_type="expense")
        return expense

    return run_command(_op, "add_expense")


def list_expenses(start=None, end=None, category: Optional[str] = None) -> list[Expense]:
    """Expenses ordered by date; start/end are inclusive dates or datetimes."""
    start_day = as_date(start)
    end_day = as_date(end)
    expenses = []
    for record in gateway.get_all(gateway.EXPENSES):
        expense = Expense.from_dict(record)
        day = as_date(expense.date)
        if start_day and day < start_day:
            continue
        if end_day and day > end_day:
            continue
        if category and expense.category != category.lower():
            continue
        expenses.append(expense)
    expenses.sort(key=lambda e: e.date)
    return expenses
