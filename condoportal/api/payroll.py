from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session, joinedload

from ..api.dependencies import get_db, load_condominium, require_manager, resolve_condominium_id
from ..core.errors import ensure_success
from ..models.models import Employee, PayrollEntry, User
from ..schemas.schemas import (
    EmployeeCreate,
    EmployeeRead,
    EmployeeUpdate,
    PayrollEntryRead,
    PayrollEntryUpdate,
    PayrollGenerateRequest,
    PayrollGenerateResult,
    PayrollPaymentResult,
    PayrollStatsRead,
)
from ..services import payroll as payroll_service
from ..services.audit import audit_log
from ..utils.pdf_utils import generate_payslip_pdf

router = APIRouter()


def _load_employee(db: Session, condominium_id: int, employee_id: int) -> Employee:
    employee = payroll_service.get_employee(db, condominium_id, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")
    return employee


def _load_entry(db: Session, condominium_id: int, entry_id: int) -> PayrollEntry:
    entry = (
        db.query(PayrollEntry)
        .options(joinedload(PayrollEntry.employee))
        .filter(PayrollEntry.id == entry_id, PayrollEntry.condominium_id == condominium_id)
        .first()
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Payroll entry not found")
    return entry


@router.get("/employees", response_model=List[EmployeeRead])
def list_employees(
    condominium_id: Optional[int] = Query(None),
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    return payroll_service.list_employees(db, resolve_condominium_id(user, condominium_id), active_only=active_only)


@router.get("/employees/total-salaries")
def total_salaries(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
) -> dict:
    condominium_id = resolve_condominium_id(user, condominium_id)
    condominium = load_condominium(db, condominium_id)
    return {
        "total": payroll_service.total_monthly_salaries(db, condominium_id),
        "currency": condominium.currency,
    }


@router.post("/employees", response_model=EmployeeRead, status_code=201)
def create_employee(
    payload: EmployeeCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    try:
        employee = payroll_service.create_employee(db, condominium_id, payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="employee.create",
        target_entity_type="Employee",
        target_entity_id=str(employee.id),
        after={"name": employee.name, "base_salary": employee.base_salary},
    )
    db.commit()
    return employee


@router.put("/employees/{employee_id}", response_model=EmployeeRead)
def update_employee(
    employee_id: int,
    payload: EmployeeUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    employee = _load_employee(db, resolve_condominium_id(actor, condominium_id), employee_id)
    updates = payload.model_dump(exclude_unset=True)
    try:
        return payroll_service.update_employee(db, employee, updates)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/employees/{employee_id}/toggle-active", response_model=EmployeeRead)
def toggle_employee(
    employee_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    employee = _load_employee(db, resolve_condominium_id(actor, condominium_id), employee_id)
    return payroll_service.toggle_employee_active(db, employee)


@router.delete("/employees/{employee_id}", status_code=204)
def delete_employee(
    employee_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
) -> None:
    employee = _load_employee(db, resolve_condominium_id(actor, condominium_id), employee_id)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="employee.delete",
        target_entity_type="Employee",
        target_entity_id=str(employee.id),
        before={"name": employee.name},
    )
    payroll_service.delete_employee(db, employee)


@router.post("/generate", response_model=PayrollGenerateResult)
def generate_payroll(
    payload: PayrollGenerateRequest,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = payroll_service.generate_monthly_payroll(db, condominium_id, payload.reference_month)
    return ensure_success(result, status_code=404)


@router.get("/entries", response_model=List[PayrollEntryRead])
def list_entries(
    condominium_id: Optional[int] = Query(None),
    reference_month: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    return payroll_service.list_payroll_entries(db, condominium_id, reference_month)


@router.get("/stats", response_model=PayrollStatsRead)
def stats(
    condominium_id: Optional[int] = Query(None),
    reference_month: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    entries = payroll_service.list_payroll_entries(db, condominium_id, reference_month)
    return payroll_service.payroll_stats(entries)


@router.put("/entries/{entry_id}", response_model=PayrollEntryRead)
def update_entry(
    entry_id: int,
    payload: PayrollEntryUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    entry = _load_entry(db, resolve_condominium_id(actor, condominium_id), entry_id)
    try:
        return payroll_service.update_payroll_entry(db, entry, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/entries/{entry_id}/pay", response_model=PayrollPaymentResult)
def pay_entry(
    entry_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    entry = _load_entry(db, resolve_condominium_id(actor, condominium_id), entry_id)
    result = payroll_service.process_payroll_payment(db, entry.id, actor_user_id=actor.id)
    ensure_success(result)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="payroll.pay",
        target_entity_type="PayrollEntry",
        target_entity_id=str(entry_id),
        after={"expense_id": result["expense_id"], "amount": result["amount"]},
    )
    db.commit()
    return result


@router.get("/entries/{entry_id}/payslip")
def payslip(
    entry_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
) -> FileResponse:
    condominium_id = resolve_condominium_id(user, condominium_id)
    entry = _load_entry(db, condominium_id, entry_id)
    pdf_path = generate_payslip_pdf(entry, entry.employee, load_condominium(db, condominium_id))
    return FileResponse(path=pdf_path, media_type="application/pdf", filename=f"recibo_vencimento_{entry.id}.pdf")
