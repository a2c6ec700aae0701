"""
Payroll settlement and expense tests.
"""

from decimal import Decimal

import pytest

from shopledger.services import gateway, ledger_service, payroll_service
from shopledger.services.errors import LedgerValidationError


def test_payroll_nets_advances_and_clears_balance(make_employee):
    employee = make_employee(monthly_salary="5000")
    ledger_service.record_advance(employee.id, {"amount": "1200"})

    result = payroll_service.process_payroll()

    assert result.processed is True
    assert result.total_paid == Decimal("3800")
    tx = result.transactions[0]
    assert tx.kind.value == "salary_payment"
    assert tx.amount == Decimal("3800")
    assert tx.delta == Decimal("-1200")
    assert ledger_service.get_party("employee", employee.id).balance == Decimal("0")
    assert result.expense.amount == Decimal("3800")
    assert result.expense.category == "salary"
    assert ledger_service.reconcile_balances("employee") == []


def test_employee_with_larger_advance_is_skipped(make_employee):
    paid = make_employee("Karim", monthly_salary="5000")
    owing = make_employee("Nadia", monthly_salary="3000")
    ledger_service.record_advance(owing.id, {"amount": "3500"})

    result = payroll_service.process_payroll()

    assert [t.party_id for t in result.transactions] == [paid.id]
    assert [s["employee_id"] for s in result.skipped] == [owing.id]
    assert ledger_service.get_party("employee", owing.id).balance == Decimal("3500")
    assert result.total_paid == Decimal("5000")


def test_nothing_due_writes_nothing(make_employee):
    employee = make_employee(monthly_salary="1000")
    ledger_service.record_advance(employee.id, {"amount": "1000"})
    before = len(gateway.get_all(gateway.PAYROLL_TRANSACTIONS))

    result = payroll_service.process_payroll()

    assert result.processed is False
    assert result.message == payroll_service.NOTHING_TO_PROCESS
    assert result.to_dict()["expense"] is None
    assert gateway.get_all(gateway.EXPENSES) == []
    assert len(gateway.get_all(gateway.PAYROLL_TRANSACTIONS)) == before


def test_no_employees(db_session):
    assert payroll_service.process_payroll().processed is False


def test_expenses_filter_by_date_and_category(db_session):
    payroll_service.add_expense({"date": "2026-01-10", "description": "Rent", "amount": "8000", "category": "Rent"})
    payroll_service.add_expense({"date": "2026-02-10", "description": "Rent", "amount": "8000", "category": "rent"})
    payroll_service.add_expense({"date": "2026-02-12", "description": "Power", "amount": "600"})

    february = payroll_service.list_expenses("2026-02-01", "2026-02-28")
    assert [e.amount for e in february] == [Decimal("8000"), Decimal("600")]
    assert [e.date for e in payroll_service.list_expenses(category="RENT")] == ["2026-01-10", "2026-02-10"]
    assert payroll_service.list_expenses(category="general")[0].description == "Power"


@pytest.mark.parametrize("payload", [
    {"description": "Rent", "amount": "0"},
    {"description": "Rent", "amount": "-1"},
    {"amount": "10"},
    {"description": "Rent", "amount": "10", "date": "yesterday"},
])
def test_invalid_expenses(db_session, payload):
    with pytest.raises(LedgerValidationError):
        payroll_service.add_expense(payload)


@pytest.mark.parametrize("failure", [
    LedgerValidationError("ledger refused"),
    RuntimeError("storage went away"),
])
def test_payroll_is_all_or_nothing(make_employee, monkeypatch, failure):
    first = make_employee("Karim", monthly_salary="5000")
    second = make_employee("Nadia", monthly_salary="4000")
    ledger_service.record_advance(first.id, {"amount": "1000"})
    transactions_before = gateway.get_all(gateway.PAYROLL_TRANSACTIONS)

    real_apply = payroll_service.apply_transaction
    calls = []

    def _fail_on_second(*args, **kwargs):
        calls.append(args[1])
        if len(calls) == 2:
            raise failure
        return real_apply(*args, **kwargs)

    monkeypatch.setattr(payroll_service, "apply_transaction", _fail_on_second)

    with pytest.raises(type(failure)):
        payroll_service.process_payroll()

    assert calls == [first.id, second.id]
    assert gateway.get_all(gateway.PAYROLL_TRANSACTIONS) == transactions_before
    assert gateway.get_all(gateway.EXPENSES) == []
    assert ledger_service.get_party("employee", first.id).balance == Decimal("1000")
    assert ledger_service.get_party("employee", second.id).balance == Decimal("0")
