from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session

from ..api.dependencies import (
    get_db,
    get_resident_for_user,
    load_condominium,
    require_manager,
    resolve_condominium_id,
)
from ..auth.jwt import get_current_user
from ..constants import PAYMENT_PAID, ROLE_RESIDENT
from ..core.errors import BusinessRuleRejection, ensure_success
from ..models.models import Expense, Resident, User
from ..schemas.schemas import (
    BalanceRead,
    CarryoverProcessRequest,
    CarryoverRead,
    CarryoverUsageRequest,
    ExpenseCreate,
    ExpenseRead,
    FinancialOverview,
    MonthlyPaymentsRequest,
    MonthlyPaymentsResult,
    PaymentRead,
    PaymentRecordRead,
)
from ..services import balance as balance_service
from ..services.audit import audit_log
from ..services.financial_sync import compute_financial_stats, fetch_payment_records, mark_payment_as_paid
from ..services.payments import generate_monthly_payments, get_payment_for_condominium
from ..utils.csv_utils import payments_to_csv
from ..utils.pdf_utils import generate_payment_receipt_pdf

router = APIRouter()


def _rejection_status(result: dict) -> int:
    return 404 if result.get("code") == "NOT_FOUND" else 400


@router.get("/summary", response_model=FinancialOverview)
def financial_summary(
    condominium_id: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    load_condominium(db, condominium_id)
    stats, payments = compute_financial_stats(db, condominium_id, month=month, year=year)
    return {"stats": stats.as_dict(), "payments": payments}


@router.get("/payments", response_model=List[PaymentRecordRead])
def list_payments(
    condominium_id: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    if month is None and year is None:
        return fetch_payment_records(db, condominium_id)
    _, payments = compute_financial_stats(db, condominium_id, month=month, year=year)
    return payments


@router.get("/payments/mine", response_model=List[PaymentRecordRead])
def list_my_payments(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    resident = get_resident_for_user(db, user)
    if not resident:
        raise HTTPException(status_code=404, detail="Resident record not found for user")
    return [record for record in fetch_payment_records(db, resident.condominium_id) if record.resident_id == resident.id]


@router.get("/payments/export.csv")
def export_payments_csv(
    condominium_id: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
) -> StreamingResponse:
    condominium_id = resolve_condominium_id(user, condominium_id)
    if month is None and year is None:
        records = fetch_payment_records(db, condominium_id)
    else:
        _, records = compute_financial_stats(db, condominium_id, month=month, year=year)
    filename = f"payments-{condominium_id}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(iter([payments_to_csv(records)]), media_type="text/csv", headers=headers)


@router.post("/payments/generate", response_model=MonthlyPaymentsResult, status_code=201)
def generate_payments(
    payload: MonthlyPaymentsRequest,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    try:
        created = generate_monthly_payments(
            db,
            condominium_id,
            payload.reference_month,
            amount=payload.amount,
            description=payload.description,
            due_days=payload.due_days,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="payments.generate",
        target_entity_type="Condominium",
        target_entity_id=str(condominium_id),
        after={"reference_month": payload.reference_month.isoformat(), "created": created},
    )
    db.commit()
    return MonthlyPaymentsResult(created=created, reference_month=payload.reference_month.replace(day=1))


@router.post("/payments/{payment_id}/mark-paid", response_model=PaymentRead)
def mark_paid(
    payment_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    payment = get_payment_for_condominium(db, resolve_condominium_id(actor, condominium_id), payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.status == PAYMENT_PAID:
        raise BusinessRuleRejection("Payment is already paid.", code="ALREADY_PAID")
    before = {"status": payment.status}
    payment = mark_payment_as_paid(db, payment.id)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="payment.mark_paid",
        target_entity_type="Payment",
        target_entity_id=str(payment.id),
        before=before,
        after={"status": payment.status, "payment_date": payment.payment_date},
    )
    db.commit()
    return payment


@router.get("/payments/{payment_id}/receipt")
def payment_receipt(
    payment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> FileResponse:
    if user.condominium_id is None:
        raise HTTPException(status_code=403, detail="Your profile is not linked to a condominium")
    payment = get_payment_for_condominium(db, user.condominium_id, payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if user.has_role(ROLE_RESIDENT):
        resident = get_resident_for_user(db, user)
        if not resident or resident.id != payment.resident_id:
            raise HTTPException(status_code=403, detail="Not authorized for this payment")
    if payment.status != PAYMENT_PAID:
        raise HTTPException(status_code=400, detail="Receipts are only issued for paid payments.")
    resident = db.get(Resident, payment.resident_id)
    pdf_path = generate_payment_receipt_pdf(payment, resident, payment.condominium)
    return FileResponse(path=pdf_path, media_type="application/pdf", filename=f"recibo_{payment.id}.pdf")


@router.get("/balance", response_model=BalanceRead)
def available_balance(
    condominium_id: Optional[int] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    return balance_service.get_available_balance(db, condominium_id, year=year)


@router.get("/expenses", response_model=List[ExpenseRead])
def list_expenses(
    condominium_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(Expense).filter(Expense.condominium_id == condominium_id)
    if status:
        query = query.filter(Expense.status == status)
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()


@router.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = balance_service.create_expense_with_validation(
        db,
        condominium_id,
        category=payload.category,
        description=payload.description,
        amount=payload.amount,
        expense_date=payload.expense_date,
        funding_source=payload.funding_source,
        service_provider_id=payload.service_provider_id,
        created_by_user_id=actor.id,
    )
    return ensure_success(result)


@router.post("/expenses/{expense_id}/approve")
def approve_expense(
    expense_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = balance_service.approve_pending_expense(db, condominium_id, expense_id)
    ensure_success(result, status_code=_rejection_status(result))
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="expense.approve",
        target_entity_type="Expense",
        target_entity_id=str(expense_id),
    )
    db.commit()
    return result


@router.get("/carryovers", response_model=List[CarryoverRead])
def list_carryovers(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    return balance_service.list_carryovers(db, resolve_condominium_id(user, condominium_id))


@router.post("/carryovers/process")
def process_carryover(
    payload: CarryoverProcessRequest,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = balance_service.process_annual_carryover(db, condominium_id, payload.year)
    return ensure_success(result)


@router.post("/carryovers/usage")
def use_carryover(
    payload: CarryoverUsageRequest,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = balance_service.record_carryover_usage(db, condominium_id, payload.origin_year, payload.amount)
    return ensure_success(result, status_code=_rejection_status(result))
