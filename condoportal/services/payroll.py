from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..constants import (
    EXPENSE_APPROVED,
    FUNDING_CURRENT_REVENUE,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYROLL_EXPENSE_CATEGORY,
)
from ..models.models import Condominium, Employee, Expense, PayrollEntry
from ..utils.currency import ensure_decimal
from ..utils.pdf_utils import month_label

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

DEDUCTION_FIELDS = (
    "deductions",
    "social_security_deduction",
    "income_tax_deduction",
    "other_deductions",
)
SALARY_COMPONENT_FIELDS = ("base_salary", "allowances", "overtime_amount") + DEDUCTION_FIELDS
OVERTIME_FIELDS = ("overtime_hours", "overtime_rate")
EDITABLE_FIELDS = SALARY_COMPONENT_FIELDS + OVERTIME_FIELDS + ("notes",)

EMPLOYEE_FIELDS = (
    "name",
    "position",
    "base_salary",
    "document_number",
    "phone",
    "email",
    "address",
    "hire_date",
    "is_active",
)


@dataclass(frozen=True)
class SalaryTotals:
    gross_salary: Decimal
    total_deductions: Decimal
    net_salary: Decimal


def compute_salary_totals(
    *,
    base_salary: Any = 0,
    allowances: Any = 0,
    overtime_amount: Any = 0,
    deductions: Any = 0,
    social_security_deduction: Any = 0,
    income_tax_deduction: Any = 0,
    other_deductions: Any = 0,
) -> SalaryTotals:
    gross = ensure_decimal(base_salary) + ensure_decimal(allowances) + ensure_decimal(overtime_amount)
    total_deductions = (
        ensure_decimal(deductions)
        + ensure_decimal(social_security_deduction)
        + ensure_decimal(income_tax_deduction)
        + ensure_decimal(other_deductions)
    )
    return SalaryTotals(gross_salary=gross, total_deductions=total_deductions, net_salary=gross - total_deductions)


def _first_of_month(value: date) -> date:
    return value.replace(day=1)


def generate_monthly_payroll(session: Session, condominium_id: int, reference_month: date) -> Dict[str, Any]:
    condominium = session.get(Condominium, condominium_id)
    if condominium is None:
        return {"success": False, "error": "Condominium not found.", "code": "NOT_FOUND"}

    reference_month = _first_of_month(reference_month)
    existing = {
        employee_id
        for (employee_id,) in session.query(PayrollEntry.employee_id).filter(
            PayrollEntry.condominium_id == condominium_id,
            PayrollEntry.reference_month == reference_month,
        )
    }
    employees = (
        session.query(Employee)
        .filter(Employee.condominium_id == condominium_id, Employee.is_active.is_(True))
        .order_by(Employee.name.asc())
        .all()
    )

    created = 0
    total = ZERO
    for employee in employees:
        if employee.id in existing:
            continue
        base = ensure_decimal(employee.base_salary)
        session.add(
            PayrollEntry(
                condominium_id=condominium_id,
                employee_id=employee.id,
                reference_month=reference_month,
                base_salary=base,
                gross_salary=base,
                net_salary=base,
                payment_status=PAYMENT_PENDING,
            )
        )
        created += 1
        total += base
    session.commit()
    logger.info(
        "Generated %s payroll entries for condominium %s (%s)",
        created,
        condominium_id,
        reference_month.isoformat(),
    )
    return {
        "success": True,
        "entries_created": created,
        "total_amount": total,
        "currency": condominium.currency,
        "reference_month": reference_month,
    }


def list_payroll_entries(
    session: Session,
    condominium_id: int,
    reference_month: Optional[date] = None,
) -> List[PayrollEntry]:
    query = (
        session.query(PayrollEntry)
        .options(joinedload(PayrollEntry.employee))
        .filter(PayrollEntry.condominium_id == condominium_id)
    )
    if reference_month is not None:
        query = query.filter(PayrollEntry.reference_month == _first_of_month(reference_month))
    return query.order_by(PayrollEntry.reference_month.desc(), PayrollEntry.id.asc()).all()


def update_payroll_entry(session: Session, entry: PayrollEntry, updates: Mapping[str, Any]) -> PayrollEntry:
    """Apply edits and keep the gross and net totals consistent.

    Totals are recomputed over the stored values overlaid with the edits.
    Changing hours or rate without an explicit amount recomputes the
    overtime amount from them.
    """
    unknown = set(updates) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if entry.payment_status == PAYMENT_PAID:
        raise ValueError("Paid payroll entries cannot be edited")

    merged: Dict[str, Any] = {
        field: getattr(entry, field) for field in SALARY_COMPONENT_FIELDS + OVERTIME_FIELDS
    }
    merged.update({key: value for key, value in updates.items() if key != "notes"})

    if any(field in updates for field in OVERTIME_FIELDS) and "overtime_amount" not in updates:
        merged["overtime_amount"] = ensure_decimal(merged["overtime_hours"]) * ensure_decimal(merged["overtime_rate"])

    for field, value in merged.items():
        setattr(entry, field, ensure_decimal(value))
    if "notes" in updates:
        entry.notes = updates["notes"]

    if any(field in updates for field in SALARY_COMPONENT_FIELDS + OVERTIME_FIELDS):
        totals = compute_salary_totals(**{field: merged[field] for field in SALARY_COMPONENT_FIELDS})
        entry.gross_salary = totals.gross_salary
        entry.net_salary = totals.net_salary

    session.commit()
    session.refresh(entry)
    return entry


def process_payroll_payment(
    session: Session,
    payroll_id: int,
    actor_user_id: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Mark the entry paid and book its net salary as an approved expense.

    Both writes happen in one transaction.
    """
    entry = (
        session.query(PayrollEntry)
        .options(joinedload(PayrollEntry.employee))
        .filter(PayrollEntry.id == payroll_id)
        .first()
    )
    if entry is None:
        return {"success": False, "error": "Payroll entry not found.", "code": "NOT_FOUND"}
    if entry.payment_status == PAYMENT_PAID:
        return {"success": False, "error": "Payroll entry is already paid.", "code": "ALREADY_PAID"}

    today = today or date.today()
    amount = ensure_decimal(entry.net_salary)
    try:
        expense = Expense(
            condominium_id=entry.condominium_id,
            category=PAYROLL_EXPENSE_CATEGORY,
            description=f"Salário - {entry.employee.name} - {month_label(entry.reference_month)}",
            amount=amount,
            expense_date=today,
            funding_source=FUNDING_CURRENT_REVENUE,
            status=EXPENSE_APPROVED,
            created_by_user_id=actor_user_id,
        )
        session.add(expense)
        session.flush()
        entry.payment_status = PAYMENT_PAID
        entry.payment_date = today
        entry.expense_id = expense.id
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Payroll payment %s failed", payroll_id)
        raise
    logger.info("Payroll entry %s paid with expense %s", payroll_id, expense.id)
    return {"success": True, "expense_id": expense.id, "amount": amount}


def payroll_stats(entries: Iterable[PayrollEntry], reference_month: Optional[date] = None) -> Dict[str, Any]:
    selected = [
        entry
        for entry in entries
        if reference_month is None or entry.reference_month == _first_of_month(reference_month)
    ]
    return {
        "total_entries": len(selected),
        "total_gross": sum((ensure_decimal(entry.gross_salary) for entry in selected), ZERO),
        "total_net": sum((ensure_decimal(entry.net_salary) for entry in selected), ZERO),
        "total_deductions": sum(
            (sum((ensure_decimal(getattr(entry, field)) for field in DEDUCTION_FIELDS), ZERO) for entry in selected),
            ZERO,
        ),
        "paid_count": sum(1 for entry in selected if entry.payment_status == PAYMENT_PAID),
        "pending_count": sum(1 for entry in selected if entry.payment_status == PAYMENT_PENDING),
    }


def list_employees(session: Session, condominium_id: int, active_only: bool = False) -> List[Employee]:
    query = session.query(Employee).filter(Employee.condominium_id == condominium_id)
    if active_only:
        query = query.filter(Employee.is_active.is_(True))
    return query.order_by(Employee.name.asc()).all()


def get_employee(session: Session, condominium_id: int, employee_id: int) -> Optional[Employee]:
    return (
        session.query(Employee)
        .filter(Employee.id == employee_id, Employee.condominium_id == condominium_id)
        .first()
    )


def create_employee(session: Session, condominium_id: int, data: Mapping[str, Any]) -> Employee:
    if ensure_decimal(data.get("base_salary")) < 0:
        raise ValueError("Base salary cannot be negative")
    employee = Employee(
        condominium_id=condominium_id,
        **{key: value for key, value in data.items() if key in EMPLOYEE_FIELDS},
    )
    session.add(employee)
    session.commit()
    session.refresh(employee)
    return employee


def update_employee(session: Session, employee: Employee, updates: Mapping[str, Any]) -> Employee:
    if "base_salary" in updates and ensure_decimal(updates["base_salary"]) < 0:
        raise ValueError("Base salary cannot be negative")
    for key, value in updates.items():
        if key in EMPLOYEE_FIELDS:
            setattr(employee, key, value)
    session.commit()
    session.refresh(employee)
    return employee


def toggle_employee_active(session: Session, employee: Employee) -> Employee:
    employee.is_active = not employee.is_active
    session.commit()
    session.refresh(employee)
    return employee


def delete_employee(session: Session, employee: Employee) -> None:
    session.delete(employee)
    session.commit()


def total_monthly_salaries(session: Session, condominium_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(Employee.base_salary), 0))
        .filter(Employee.condominium_id == condominium_id, Employee.is_active.is_(True))
        .scalar()
    )
    return ensure_decimal(total)
