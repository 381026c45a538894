import logging
import secrets
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.jwt import get_password_hash
from ..constants import ROLE_COORDINATOR, ROLE_RESIDENT, TEMP_PASSWORD_ALPHABET, TEMP_PASSWORD_LENGTH
from ..models.models import Condominium, Profile, Resident
from .change_feed import INSERT, ChangeEvent, ChangeFeed, change_feed
from .linking_codes import normalize_linking_code

logger = logging.getLogger(__name__)


def _name_parts(metadata: Mapping[str, Any], email: str):
    first_name = (metadata.get("first_name") or "").strip()
    last_name = (metadata.get("last_name") or "").strip()
    if not first_name:
        first_name = (email or "").split("@")[0] or "Resident"
    return first_name, last_name


def provision_user(session: Session, user_id: int, email: str, metadata: Mapping[str, Any]) -> Profile:
    """Create the profile and, when a linking code is attached, the resident row.

    Users that already have a profile are left untouched.
    """
    existing = session.query(Profile).filter(Profile.user_id == user_id).first()
    if existing is not None:
        return existing

    condominium = None
    code = normalize_linking_code(metadata.get("linking_code"))
    if code:
        condominium = session.query(Condominium).filter(Condominium.resident_linking_code == code).first()
        if condominium is None:
            logger.warning("User %s signed up with unknown linking code", user_id)

    apartment = (metadata.get("apartment_number") or "").strip() or None
    floor = (metadata.get("floor") or "").strip() or None
    first_name, last_name = _name_parts(metadata, email)
    profile = Profile(
        user_id=user_id,
        condominium_id=condominium.id if condominium else None,
        role=ROLE_RESIDENT,
        first_name=first_name,
        last_name=last_name,
        phone=(metadata.get("phone") or "").strip() or None,
        apartment_number=apartment,
        floor=floor,
    )
    session.add(profile)
    session.flush()

    if condominium is not None and apartment:
        taken = (
            session.query(Resident.id)
            .filter(
                Resident.condominium_id == condominium.id,
                func.lower(Resident.apartment_number) == apartment.lower(),
            )
            .first()
        )
        if taken is not None:
            logger.warning("Apartment %s already taken in condominium %s", apartment, condominium.id)
        else:
            session.add(
                Resident(
                    profile_id=profile.id,
                    condominium_id=condominium.id,
                    apartment_number=apartment,
                    floor=floor,
                    family_members=list(metadata.get("family_members") or []),
                    parking_spaces=list(metadata.get("parking_spaces") or []),
                    is_owner=False,
                )
            )
    return profile


def handle_user_created(bind: Any, change: ChangeEvent) -> None:
    row = change.new
    session = Session(bind=bind)
    try:
        provision_user(session, row["id"], row.get("email") or "", row.get("user_metadata") or {})
        session.commit()
        logger.info("Provisioned profile for user %s", row["id"])
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def install_provisioning_trigger(feed: ChangeFeed = change_feed) -> None:
    feed.register_trigger("users", INSERT, handle_user_created)


def generate_temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))


def reset_coordinator_password(
    session: Session,
    condominium_id: int,
    user_id: int,
    new_password: Optional[str] = None,
) -> Dict[str, Any]:
    """Give a coordinator a new password they must change at the next login.

    A temporary password is generated when none is supplied. The caller
    commits.
    """
    profile = (
        session.query(Profile)
        .filter(
            Profile.user_id == user_id,
            Profile.condominium_id == condominium_id,
            Profile.role == ROLE_COORDINATOR,
        )
        .first()
    )
    if profile is None:
        return {"success": False, "error": "Coordinator not found.", "code": "USER_NOT_FOUND"}

    password = new_password or generate_temporary_password()
    profile.user.hashed_password = get_password_hash(password)
    profile.must_change_password = True
    session.flush()
    logger.info("Password reset for coordinator %s", user_id)
    return {"success": True, "new_password": password, "must_change_password": True}
