from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, require_manager, resolve_condominium_id
from ..auth.jwt import get_current_user
from ..constants import MANAGER_ROLES
from ..core.errors import ensure_success
from ..models.models import Occurrence, User
from ..schemas.schemas import OccurrenceCreate, OccurrenceRead, OccurrenceStatus, OccurrenceUpdate
from ..services import occurrences as occurrence_service
from ..services.audit import audit_log

router = APIRouter()


def _own_reports_only(user: User) -> Optional[int]:
    # Residents only ever see what they reported themselves.
    return None if user.has_any_role(*MANAGER_ROLES) else user.id


def _load_occurrence(db: Session, user: User, condominium_id: int, occurrence_id: int) -> Occurrence:
    occurrence = (
        db.query(Occurrence)
        .filter(Occurrence.id == occurrence_id, Occurrence.condominium_id == condominium_id)
        .first()
    )
    reporter_id = _own_reports_only(user)
    if not occurrence or (reporter_id is not None and occurrence.reported_by_user_id != reporter_id):
        raise HTTPException(status_code=404, detail="Occurrence not found")
    return occurrence


@router.get("/", response_model=List[OccurrenceRead])
def list_occurrences(
    status: Optional[OccurrenceStatus] = Query(None),
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return occurrence_service.list_occurrences(
        db,
        resolve_condominium_id(user, condominium_id),
        status=status,
        reported_by_user_id=_own_reports_only(user),
    )


@router.get("/summary", response_model=Dict[str, int])
def occurrence_summary(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return occurrence_service.count_by_status(
        db, resolve_condominium_id(user, condominium_id), reported_by_user_id=_own_reports_only(user)
    )


@router.post("/", response_model=OccurrenceRead, status_code=201)
def report_occurrence(
    payload: OccurrenceCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    occurrence = occurrence_service.create_occurrence(db, condominium_id, user.id, payload.model_dump())
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="occurrence.create",
        target_entity_type="Occurrence",
        target_entity_id=str(occurrence.id),
        after={"occurrence_number": occurrence.occurrence_number, "category": occurrence.category},
    )
    db.commit()
    db.refresh(occurrence)
    return occurrence


@router.get("/{occurrence_id}", response_model=OccurrenceRead)
def get_occurrence(
    occurrence_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _load_occurrence(db, user, resolve_condominium_id(user, condominium_id), occurrence_id)


@router.put("/{occurrence_id}", response_model=OccurrenceRead)
def update_occurrence(
    occurrence_id: int,
    payload: OccurrenceUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    occurrence = _load_occurrence(db, actor, resolve_condominium_id(actor, condominium_id), occurrence_id)
    result = ensure_success(
        occurrence_service.update_occurrence(db, occurrence, payload.model_dump(exclude_unset=True))
    )
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="occurrence.update",
        target_entity_type="Occurrence",
        target_entity_id=str(occurrence.id),
        before=result["before"],
        after=result["after"],
    )
    db.commit()
    db.refresh(occurrence)
    return occurrence
