from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..api.dependencies import (
    get_db,
    get_resident_for_user,
    require_manager,
    require_resident_record,
    resolve_condominium_id,
)
from ..auth.jwt import get_current_user
from ..constants import MANAGER_ROLES
from ..core.errors import ensure_success
from ..models.models import (
    Announcement,
    Document,
    Resident,
    ServiceProvider,
    SpaceReservation,
    User,
    Visitor,
    utcnow,
)
from ..schemas.schemas import (
    AnnouncementCreate,
    AnnouncementRead,
    AnnouncementUpdate,
    ApprovalDecision,
    DocumentCreate,
    DocumentRead,
    ReservationCreate,
    ReservationRead,
    ResidentRead,
    ResidentUpdate,
    ServiceProviderCreate,
    ServiceProviderRead,
    ServiceProviderUpdate,
    VisitorCreate,
    VisitorPassCreate,
    VisitorPassRead,
    VisitorPassScan,
    VisitorRead,
)
from ..services import visitors as visitor_service
from ..services.audit import audit_log
from ..services.storage import document_path, storage_service

router = APIRouter()

PASS_REJECTION_STATUS = {"NOT_FOUND": 404, "WRONG_CONDOMINIUM": 403}


def _get_scoped(db: Session, model, record_id: int, condominium_id: int, label: str):
    record = db.query(model).filter(model.id == record_id, model.condominium_id == condominium_id).first()
    if not record:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


# --- Residents ---


@router.get("/residents/me", response_model=ResidentRead)
def my_resident_record(resident: Resident = Depends(require_resident_record)):
    return resident


@router.put("/residents/me", response_model=ResidentRead)
def update_my_resident_record(
    payload: ResidentUpdate,
    db: Session = Depends(get_db),
    resident: Resident = Depends(require_resident_record),
):
    updates = payload.model_dump(exclude_unset=True, exclude={"is_owner"})
    for field, value in updates.items():
        setattr(resident, field, value)
    db.commit()
    db.refresh(resident)
    return resident


# --- Announcements ---


@router.get("/announcements", response_model=List[AnnouncementRead])
def list_announcements(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(Announcement).filter(Announcement.condominium_id == condominium_id)
    if not user.has_any_role(*MANAGER_ROLES):
        now = utcnow().replace(tzinfo=None)
        query = query.filter(
            Announcement.published.is_(True),
            or_(Announcement.expires_at.is_(None), Announcement.expires_at > now),
        )
    return query.order_by(
        Announcement.is_urgent.desc(),
        Announcement.priority.desc(),
        Announcement.created_at.desc(),
    ).all()


@router.post("/announcements", response_model=AnnouncementRead, status_code=201)
def create_announcement(
    payload: AnnouncementCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    announcement = Announcement(
        condominium_id=resolve_condominium_id(actor, condominium_id),
        created_by_user_id=actor.id,
        **payload.model_dump(),
    )
    if announcement.published:
        announcement.published_at = utcnow()
    db.add(announcement)
    db.commit()
    db.refresh(announcement)
    return announcement


@router.put("/announcements/{announcement_id}", response_model=AnnouncementRead)
def update_announcement(
    announcement_id: int,
    payload: AnnouncementUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    announcement = _get_scoped(
        db, Announcement, announcement_id, resolve_condominium_id(actor, condominium_id), "Announcement"
    )
    updates = payload.model_dump(exclude_unset=True)
    was_published = announcement.published
    for field, value in updates.items():
        setattr(announcement, field, value)
    if announcement.published and not was_published:
        announcement.published_at = utcnow()
    db.commit()
    db.refresh(announcement)
    return announcement


@router.delete("/announcements/{announcement_id}", status_code=204)
def delete_announcement(
    announcement_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
) -> Response:
    announcement = _get_scoped(
        db, Announcement, announcement_id, resolve_condominium_id(actor, condominium_id), "Announcement"
    )
    db.delete(announcement)
    db.commit()
    return Response(status_code=204)


# --- Documents ---


@router.get("/documents", response_model=List[DocumentRead])
def list_documents(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(Document).filter(Document.condominium_id == condominium_id)
    if not user.has_any_role(*MANAGER_ROLES):
        query = query.filter(Document.is_public.is_(True))
    return query.order_by(Document.created_at.desc()).all()


@router.post("/documents", response_model=DocumentRead, status_code=201)
def create_document(
    payload: DocumentCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    document = Document(
        condominium_id=resolve_condominium_id(actor, condominium_id),
        uploaded_by_user_id=actor.id,
        **payload.model_dump(),
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


@router.post("/documents/upload", response_model=DocumentRead, status_code=201)
async def upload_document(
    title: str = Form(...),
    description: Optional[str] = Form(None),
    is_public: bool = Form(False),
    file: UploadFile = File(...),
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    contents = await file.read()
    stored = storage_service.save_file(
        document_path(condominium_id, file.filename), contents, content_type=file.content_type
    )
    document = Document(
        condominium_id=condominium_id,
        title=title.strip() or file.filename or "Documento",
        description=description,
        file_path=stored.relative_path,
        file_type=stored.content_type,
        file_size=stored.size,
        is_public=is_public,
        uploaded_by_user_id=actor.id,
    )
    db.add(document)
    db.flush()
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="document.upload",
        target_entity_type="Document",
        target_entity_id=str(document.id),
        after={"title": document.title, "file_size": stored.size, "is_public": is_public},
    )
    db.commit()
    db.refresh(document)
    return document


@router.get("/documents/{document_id}/download")
def download_document(
    document_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    document = _get_scoped(db, Document, document_id, resolve_condominium_id(user, condominium_id), "Document")
    if not document.is_public and not user.has_any_role(*MANAGER_ROLES):
        raise HTTPException(status_code=404, detail="Document not found")
    stored = storage_service.retrieve_file(document.file_path)
    filename = document.file_path.rsplit("/", 1)[-1]
    return Response(
        content=stored.content,
        media_type=document.file_type or stored.content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(
    document_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
) -> Response:
    document = _get_scoped(db, Document, document_id, resolve_condominium_id(actor, condominium_id), "Document")
    file_path = document.file_path
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="document.delete",
        target_entity_type="Document",
        target_entity_id=str(document.id),
        before={"title": document.title, "file_path": document.file_path},
    )
    db.delete(document)
    db.commit()
    storage_service.delete_file(file_path)
    return Response(status_code=204)


# --- Service providers ---


@router.get("/providers", response_model=List[ServiceProviderRead])
def list_providers(
    condominium_id: Optional[int] = Query(None),
    authorized_only: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(ServiceProvider).filter(ServiceProvider.condominium_id == condominium_id)
    if authorized_only:
        query = query.filter(ServiceProvider.is_authorized.is_(True))
    return query.order_by(ServiceProvider.name.asc()).all()


@router.post("/providers", response_model=ServiceProviderRead, status_code=201)
def create_provider(
    payload: ServiceProviderCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    provider = ServiceProvider(condominium_id=resolve_condominium_id(actor, condominium_id), **payload.model_dump())
    db.add(provider)
    db.commit()
    db.refresh(provider)
    return provider


@router.put("/providers/{provider_id}", response_model=ServiceProviderRead)
def update_provider(
    provider_id: int,
    payload: ServiceProviderUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    provider = _get_scoped(
        db, ServiceProvider, provider_id, resolve_condominium_id(actor, condominium_id), "Service provider"
    )
    updates = payload.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(provider, field, value)
    if "is_authorized" in updates:
        audit_log(
            db_session=db,
            actor_user_id=actor.id,
            action="service_provider.authorization",
            target_entity_type="ServiceProvider",
            target_entity_id=str(provider.id),
            after={"is_authorized": provider.is_authorized},
        )
    db.commit()
    db.refresh(provider)
    return provider


@router.delete("/providers/{provider_id}", status_code=204)
def delete_provider(
    provider_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
) -> Response:
    provider = _get_scoped(
        db, ServiceProvider, provider_id, resolve_condominium_id(actor, condominium_id), "Service provider"
    )
    db.delete(provider)
    db.commit()
    return Response(status_code=204)


# --- Space reservations ---


@router.get("/reservations", response_model=List[ReservationRead])
def list_reservations(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(SpaceReservation).filter(SpaceReservation.condominium_id == condominium_id)
    if not user.has_any_role(*MANAGER_ROLES):
        resident = get_resident_for_user(db, user)
        if not resident:
            return []
        query = query.filter(SpaceReservation.resident_id == resident.id)
    return query.order_by(SpaceReservation.reservation_date.desc(), SpaceReservation.start_time.asc()).all()


@router.post("/reservations", response_model=ReservationRead, status_code=201)
def create_reservation(
    payload: ReservationCreate,
    db: Session = Depends(get_db),
    resident: Resident = Depends(require_resident_record),
):
    overlapping = (
        db.query(SpaceReservation.id)
        .filter(
            SpaceReservation.condominium_id == resident.condominium_id,
            SpaceReservation.space_name == payload.space_name,
            SpaceReservation.reservation_date == payload.reservation_date,
            SpaceReservation.approved.isnot(False),
            SpaceReservation.start_time < payload.end_time,
            SpaceReservation.end_time > payload.start_time,
        )
        .first()
    )
    if overlapping is not None:
        raise HTTPException(status_code=409, detail="The space is already reserved for that period.")
    reservation = SpaceReservation(
        condominium_id=resident.condominium_id,
        resident_id=resident.id,
        **payload.model_dump(),
    )
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    return reservation


@router.post("/reservations/{reservation_id}/decision", response_model=ReservationRead)
def decide_reservation(
    reservation_id: int,
    payload: ApprovalDecision,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    reservation = _get_scoped(
        db, SpaceReservation, reservation_id, resolve_condominium_id(actor, condominium_id), "Reservation"
    )
    if not payload.approved and not (payload.rejection_reason or "").strip():
        raise HTTPException(status_code=400, detail="A rejection reason is required.")
    reservation.approved = payload.approved
    reservation.approved_at = utcnow()
    reservation.approved_by_user_id = actor.id
    reservation.rejection_reason = None if payload.approved else payload.rejection_reason.strip()
    db.commit()
    db.refresh(reservation)
    return reservation


# --- Visitors ---


@router.get("/visitors", response_model=List[VisitorRead])
def list_visitors(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    query = db.query(Visitor).filter(Visitor.condominium_id == condominium_id)
    if not user.has_any_role(*MANAGER_ROLES):
        resident = get_resident_for_user(db, user)
        if not resident:
            return []
        query = query.filter(Visitor.resident_id == resident.id)
    return query.order_by(Visitor.visit_date.desc(), Visitor.id.desc()).all()


@router.post("/visitors", response_model=VisitorRead, status_code=201)
def register_visitor(
    payload: VisitorCreate,
    db: Session = Depends(get_db),
    resident: Resident = Depends(require_resident_record),
):
    visitor = Visitor(condominium_id=resident.condominium_id, resident_id=resident.id, **payload.model_dump())
    db.add(visitor)
    db.commit()
    db.refresh(visitor)
    return visitor


@router.post("/visitors/{visitor_id}/decision", response_model=VisitorRead)
def decide_visitor(
    visitor_id: int,
    payload: ApprovalDecision,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    visitor = _get_scoped(db, Visitor, visitor_id, resolve_condominium_id(actor, condominium_id), "Visitor")
    return visitor_service.approve_visitor(db, visitor, actor.id, approved=payload.approved)


def _visitor_for_pass(db: Session, user: User, visitor_id: int) -> Visitor:
    visitor = _get_scoped(db, Visitor, visitor_id, resolve_condominium_id(user, None), "Visitor")
    if not user.has_any_role(*MANAGER_ROLES):
        resident = get_resident_for_user(db, user)
        if not resident or resident.id != visitor.resident_id:
            raise HTTPException(status_code=403, detail="Not authorized for this visitor")
    return visitor


@router.post("/visitors/{visitor_id}/passes", response_model=VisitorPassRead, status_code=201)
def issue_pass(
    visitor_id: int,
    payload: VisitorPassCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    visitor = _visitor_for_pass(db, user, visitor_id)
    if visitor.approved is False:
        raise HTTPException(status_code=400, detail="Visitor was not approved.")
    return visitor_service.issue_visitor_pass(db, visitor, created_by_user_id=user.id, hours=payload.hours)


@router.get("/visitors/{visitor_id}/passes", response_model=List[VisitorPassRead])
def list_active_passes(
    visitor_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    visitor = _visitor_for_pass(db, user, visitor_id)
    return visitor_service.active_passes(db, visitor.id)


@router.post("/passes/validate")
def validate_pass(
    payload: VisitorPassScan,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
) -> dict:
    result = visitor_service.validate_visitor_pass(db, payload.token, resolve_condominium_id(actor, condominium_id))
    if result["success"]:
        audit_log(
            db_session=db,
            actor_user_id=actor.id,
            action="visitor_pass.validate",
            target_entity_type="VisitorPass",
            target_entity_id=str(result["pass"]["id"]),
        )
        db.commit()
    return ensure_success(result, status_code=PASS_REJECTION_STATUS.get(result.get("code"), 400))
