import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import (
    EXPENSE_APPROVED,
    EXPENSE_PENDING,
    FUNDING_CARRYOVER,
    FUNDING_CURRENT_REVENUE,
    FUNDING_SOURCES,
    PAYMENT_PAID,
)
from ..models.models import AnnualCarryover, Expense, Payment
from ..utils.currency import ensure_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _rejection(error: str, code: str, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": False, "error": error, "code": code}
    payload.update(extra)
    return payload


def _year_bounds(year: int):
    return date(year, 1, 1), date(year, 12, 31)


def revenue_for_year(session: Session, condominium_id: int, year: int) -> Decimal:
    start, end = _year_bounds(year)
    total = (
        session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(
            Payment.condominium_id == condominium_id,
            Payment.status == PAYMENT_PAID,
            Payment.reference_month >= start,
            Payment.reference_month <= end,
        )
        .scalar()
    )
    return ensure_decimal(total)


def approved_expenses_for_year(session: Session, condominium_id: int, year: int) -> Decimal:
    start, end = _year_bounds(year)
    total = (
        session.query(func.coalesce(func.sum(Expense.amount), 0))
        .filter(
            Expense.condominium_id == condominium_id,
            Expense.status == EXPENSE_APPROVED,
            Expense.funding_source == FUNDING_CURRENT_REVENUE,
            Expense.expense_date >= start,
            Expense.expense_date <= end,
        )
        .scalar()
    )
    return ensure_decimal(total)


def carryover_total_before(session: Session, condominium_id: int, year: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(AnnualCarryover.current_balance), 0))
        .filter(
            AnnualCarryover.condominium_id == condominium_id,
            AnnualCarryover.reference_year < year,
        )
        .scalar()
    )
    return ensure_decimal(total)


def get_available_balance(
    session: Session,
    condominium_id: int,
    year: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Balance snapshot for a year (the current one by default).

    Available balance is the year's paid revenue, less expenses approved
    against that revenue, plus whatever earlier years carried over.
    """
    year = year or (today or date.today()).year
    current_revenue = revenue_for_year(session, condominium_id, year)
    approved_expenses = approved_expenses_for_year(session, condominium_id, year)
    carryover_total = carryover_total_before(session, condominium_id, year)
    return {
        "year": year,
        "current_revenue": current_revenue,
        "approved_expenses": approved_expenses,
        "carryover_total": carryover_total,
        "available_balance": current_revenue - approved_expenses + carryover_total,
    }


def source_balance(session: Session, condominium_id: int, funding_source: str, year: int) -> Decimal:
    if funding_source == FUNDING_CARRYOVER:
        return carryover_total_before(session, condominium_id, year)
    return revenue_for_year(session, condominium_id, year) - approved_expenses_for_year(
        session, condominium_id, year
    )


def _consume_carryover(session: Session, condominium_id: int, amount: Decimal, before_year: int) -> None:
    remaining = amount
    rows = (
        session.query(AnnualCarryover)
        .filter(
            AnnualCarryover.condominium_id == condominium_id,
            AnnualCarryover.reference_year < before_year,
            AnnualCarryover.current_balance > 0,
        )
        .order_by(AnnualCarryover.reference_year.asc())
        .all()
    )
    for row in rows:
        if remaining <= 0:
            break
        available = ensure_decimal(row.current_balance)
        used = min(available, remaining)
        row.amount_used = ensure_decimal(row.amount_used) + used
        row.current_balance = available - used
        remaining -= used
    session.flush()


def create_expense_with_validation(
    session: Session,
    condominium_id: int,
    *,
    category: str,
    description: str,
    amount: Any,
    expense_date: date,
    funding_source: str = FUNDING_CURRENT_REVENUE,
    service_provider_id: Optional[int] = None,
    created_by_user_id: Optional[int] = None,
) -> Dict[str, Any]:
    amount = ensure_decimal(amount)
    if amount <= 0:
        return _rejection("Expense amount must be greater than zero.", "INVALID_AMOUNT")
    if funding_source not in FUNDING_SOURCES:
        return _rejection(f"Unknown funding source: {funding_source}", "INVALID_FUNDING_SOURCE")

    available = source_balance(session, condominium_id, funding_source, expense_date.year)
    status = EXPENSE_APPROVED if available >= amount else EXPENSE_PENDING
    expense = Expense(
        condominium_id=condominium_id,
        category=category,
        description=description,
        amount=amount,
        expense_date=expense_date,
        funding_source=funding_source,
        status=status,
        service_provider_id=service_provider_id,
        created_by_user_id=created_by_user_id,
    )
    session.add(expense)
    session.flush()
    if status == EXPENSE_APPROVED and funding_source == FUNDING_CARRYOVER:
        _consume_carryover(session, condominium_id, amount, expense_date.year)
    session.commit()

    if status == EXPENSE_APPROVED:
        message = "Expense approved."
    else:
        message = "Insufficient balance in the selected source; expense recorded as pending."
    logger.info(
        "Expense %s created for condominium %s with status %s (source balance %s)",
        expense.id,
        condominium_id,
        status,
        available,
    )
    return {
        "success": True,
        "status": status,
        "message": message,
        "expense_id": expense.id,
        "validation": {"funding_source": funding_source, "source_balance": available},
    }


def approve_pending_expense(session: Session, condominium_id: int, expense_id: int) -> Dict[str, Any]:
    expense = (
        session.query(Expense)
        .filter(Expense.id == expense_id, Expense.condominium_id == condominium_id)
        .first()
    )
    if expense is None:
        return _rejection("Expense not found.", "NOT_FOUND")
    if expense.status == EXPENSE_APPROVED:
        return _rejection("Expense is already approved.", "ALREADY_APPROVED")

    amount = ensure_decimal(expense.amount)
    available = source_balance(session, condominium_id, expense.funding_source, expense.expense_date.year)
    if available < amount:
        return _rejection(
            "Insufficient balance to approve this expense.",
            "INSUFFICIENT_BALANCE",
            validation={"funding_source": expense.funding_source, "source_balance": available},
        )

    expense.status = EXPENSE_APPROVED
    if expense.funding_source == FUNDING_CARRYOVER:
        _consume_carryover(session, condominium_id, amount, expense.expense_date.year)
    session.commit()
    logger.info("Pending expense %s approved for condominium %s", expense_id, condominium_id)
    return {"success": True, "expense_id": expense.id, "message": "Expense approved."}


def process_annual_carryover(
    session: Session,
    condominium_id: int,
    year: int,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Close a finished year and store what remains of it as carryover."""
    today = today or date.today()
    if year >= today.year:
        return _rejection("Only finished years can be carried over.", "YEAR_NOT_CLOSED")

    received = revenue_for_year(session, condominium_id, year)
    expenses = approved_expenses_for_year(session, condominium_id, year)
    carryover_amount = max(received - expenses, ZERO)

    row = (
        session.query(AnnualCarryover)
        .filter(AnnualCarryover.condominium_id == condominium_id, AnnualCarryover.reference_year == year)
        .first()
    )
    if row is None:
        row = AnnualCarryover(condominium_id=condominium_id, reference_year=year, amount_used=ZERO)
        session.add(row)
    row.amount_received = received
    row.amount_expenses = expenses
    row.carryover_amount = carryover_amount
    row.current_balance = max(carryover_amount - ensure_decimal(row.amount_used), ZERO)
    session.commit()
    logger.info("Carryover for %s processed for condominium %s: %s", year, condominium_id, carryover_amount)
    return {
        "success": True,
        "year": year,
        "amount_received": received,
        "amount_expenses": expenses,
        "carryover_amount": carryover_amount,
        "current_balance": ensure_decimal(row.current_balance),
    }


def record_carryover_usage(session: Session, condominium_id: int, origin_year: int, amount: Any) -> Dict[str, Any]:
    amount = ensure_decimal(amount)
    if amount <= 0:
        return _rejection("Amount must be greater than zero.", "INVALID_AMOUNT")
    row = (
        session.query(AnnualCarryover)
        .filter(
            AnnualCarryover.condominium_id == condominium_id,
            AnnualCarryover.reference_year == origin_year,
        )
        .first()
    )
    if row is None:
        return _rejection(f"No carryover recorded for {origin_year}.", "NOT_FOUND")
    balance = ensure_decimal(row.current_balance)
    if amount > balance:
        return _rejection(
            "Carryover balance is insufficient for this amount.",
            "INSUFFICIENT_CARRYOVER",
            current_balance=balance,
        )
    row.amount_used = ensure_decimal(row.amount_used) + amount
    row.current_balance = balance - amount
    session.commit()
    return {
        "success": True,
        "origin_year": origin_year,
        "amount_used": ensure_decimal(row.amount_used),
        "current_balance": ensure_decimal(row.current_balance),
    }


def list_carryovers(session: Session, condominium_id: int) -> List[AnnualCarryover]:
    return (
        session.query(AnnualCarryover)
        .filter(AnnualCarryover.condominium_id == condominium_id)
        .order_by(AnnualCarryover.reference_year.desc())
        .all()
    )
