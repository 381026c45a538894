from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user, get_db, require_roles
from ..constants import MANAGER_ROLES, ROLE_SUPER_ADMIN
from ..models.models import Condominium, Resident, User

__all__ = [
    "get_db",
    "get_resident_for_user",
    "require_manager",
    "require_resident_record",
    "resolve_condominium_id",
    "load_condominium",
]

require_manager = require_roles(*MANAGER_ROLES)


def resolve_condominium_id(user: User, condominium_id: Optional[int] = None) -> int:
    """The condominium a request operates on.

    Super admins may target any condominium; everyone else is pinned to
    their own.
    """
    if user.has_role(ROLE_SUPER_ADMIN):
        if condominium_id is not None:
            return condominium_id
        if user.condominium_id is not None:
            return user.condominium_id
        raise HTTPException(status_code=400, detail="condominium_id is required")
    if user.condominium_id is None:
        raise HTTPException(status_code=403, detail="Your profile is not linked to a condominium")
    if condominium_id is not None and condominium_id != user.condominium_id:
        raise HTTPException(status_code=403, detail="Not authorized for this condominium")
    return user.condominium_id


def load_condominium(db: Session, condominium_id: int) -> Condominium:
    condominium = db.get(Condominium, condominium_id)
    if condominium is None:
        raise HTTPException(status_code=404, detail="Condominium not found")
    return condominium


def get_resident_for_user(db: Session, user: User) -> Optional[Resident]:
    if not user.profile:
        return None
    return db.query(Resident).filter(Resident.profile_id == user.profile.id).first()


def require_resident_record(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> Resident:
    resident = get_resident_for_user(db, user)
    if not resident:
        raise HTTPException(status_code=404, detail="Resident record not found for user")
    return resident
