from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..api.dependencies import get_db, load_condominium, require_manager, resolve_condominium_id
from ..auth.jwt import get_password_hash, require_roles
from ..constants import ROLE_COORDINATOR, ROLE_SUPER_ADMIN
from ..core.errors import ensure_success
from ..models.models import Condominium, Profile, Resident, User
from ..schemas.schemas import (
    CondominiumCreate,
    CondominiumRead,
    CondominiumUpdate,
    CoordinatorCreate,
    CoordinatorPasswordReset,
    CoordinatorPasswordResetResult,
    LinkingCodeRegenerated,
    ProfileRead,
    ResidentRead,
    ResidentUpdate,
)
from ..services.audit import audit_log
from ..services.linking_codes import regenerate_linking_code, unique_linking_code
from ..services.provisioning import reset_coordinator_password

router = APIRouter()

require_super_admin = require_roles(ROLE_SUPER_ADMIN)


@router.get("/", response_model=List[CondominiumRead])
def list_condominiums(
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    query = db.query(Condominium)
    if not user.has_role(ROLE_SUPER_ADMIN):
        query = query.filter(Condominium.id == user.condominium_id)
    return query.order_by(Condominium.name.asc()).all()


@router.post("/", response_model=CondominiumRead, status_code=201)
def create_condominium(
    payload: CondominiumCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_super_admin),
):
    condominium = Condominium(**payload.model_dump(), resident_linking_code=unique_linking_code(db))
    db.add(condominium)
    db.flush()
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="condominium.create",
        target_entity_type="Condominium",
        target_entity_id=str(condominium.id),
        after={"name": condominium.name, "currency": condominium.currency},
    )
    db.commit()
    db.refresh(condominium)
    return condominium


@router.get("/{condominium_id}", response_model=CondominiumRead)
def get_condominium(
    condominium_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    return load_condominium(db, resolve_condominium_id(user, condominium_id))


@router.put("/{condominium_id}", response_model=CondominiumRead)
def update_condominium(
    condominium_id: int,
    payload: CondominiumUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium = load_condominium(db, resolve_condominium_id(actor, condominium_id))
    updates = payload.model_dump(exclude_unset=True)
    before = {field: getattr(condominium, field) for field in updates}
    for field, value in updates.items():
        setattr(condominium, field, value)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="condominium.update",
        target_entity_type="Condominium",
        target_entity_id=str(condominium.id),
        before=before,
        after=updates,
    )
    db.commit()
    db.refresh(condominium)
    return condominium


@router.delete("/{condominium_id}", status_code=204)
def delete_condominium(
    condominium_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_super_admin),
) -> None:
    condominium = load_condominium(db, condominium_id)
    if db.query(Profile.id).filter(Profile.condominium_id == condominium_id).first() is not None:
        raise HTTPException(status_code=400, detail="Condominium still has linked profiles.")
    db.delete(condominium)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="condominium.delete",
        target_entity_type="Condominium",
        target_entity_id=str(condominium_id),
        before={"name": condominium.name},
    )
    db.commit()


@router.post("/{condominium_id}/linking-code/regenerate", response_model=LinkingCodeRegenerated)
def regenerate_code(
    condominium_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    result = regenerate_linking_code(db, condominium_id, actor_user_id=actor.id)
    status_code = 404 if result.get("code") == "NOT_FOUND" else 400
    return ensure_success(result, status_code=status_code)


@router.get("/{condominium_id}/coordinators", response_model=List[ProfileRead])
def list_coordinators(
    condominium_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_super_admin),
):
    return (
        db.query(Profile)
        .filter(Profile.condominium_id == condominium_id, Profile.role == ROLE_COORDINATOR)
        .order_by(Profile.first_name.asc())
        .all()
    )


@router.post("/{condominium_id}/coordinators", response_model=ProfileRead, status_code=201)
def create_coordinator(
    condominium_id: int,
    payload: CoordinatorCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_super_admin),
):
    load_condominium(db, condominium_id)
    email = payload.email.lower()
    if db.query(User.id).filter(func.lower(User.email) == email).first() is not None:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=email,
        hashed_password=get_password_hash(payload.password),
        user_metadata={"first_name": payload.first_name, "last_name": payload.last_name},
    )
    db.add(user)
    db.flush()
    # Created with its profile in the same commit, so provisioning leaves it alone.
    profile = Profile(
        user_id=user.id,
        condominium_id=condominium_id,
        role=ROLE_COORDINATOR,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        must_change_password=True,
    )
    db.add(profile)
    db.flush()
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="coordinator.create",
        target_entity_type="User",
        target_entity_id=str(user.id),
        after={"email": email, "condominium_id": condominium_id},
    )
    db.commit()
    db.refresh(profile)
    return profile


@router.post(
    "/{condominium_id}/coordinators/{user_id}/reset-password",
    response_model=CoordinatorPasswordResetResult,
)
def reset_password(
    condominium_id: int,
    user_id: int,
    payload: Optional[CoordinatorPasswordReset] = None,
    db: Session = Depends(get_db),
    actor: User = Depends(require_super_admin),
):
    load_condominium(db, condominium_id)
    new_password = payload.new_password if payload else None
    result = ensure_success(
        reset_coordinator_password(db, condominium_id, user_id, new_password),
        status_code=404,
    )
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="coordinator.reset_password",
        target_entity_type="User",
        target_entity_id=str(user_id),
        after={"must_change_password": True},
    )
    db.commit()
    return result


@router.get("/{condominium_id}/residents", response_model=List[ResidentRead])
def list_residents(
    condominium_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(user, condominium_id)
    return (
        db.query(Resident)
        .options(joinedload(Resident.profile))
        .filter(Resident.condominium_id == condominium_id)
        .order_by(Resident.apartment_number.asc())
        .all()
    )


@router.put("/{condominium_id}/residents/{resident_id}", response_model=ResidentRead)
def update_resident(
    condominium_id: int,
    resident_id: int,
    payload: ResidentUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    resident = (
        db.query(Resident)
        .filter(Resident.id == resident_id, Resident.condominium_id == condominium_id)
        .first()
    )
    if not resident:
        raise HTTPException(status_code=404, detail="Resident not found")
    updates = payload.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(resident, field, value)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="resident.update",
        target_entity_type="Resident",
        target_entity_id=str(resident.id),
        after=updates,
    )
    db.commit()
    db.refresh(resident)
    return resident
