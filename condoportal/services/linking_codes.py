import logging
import secrets
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import LINKING_CODE_ALPHABET, LINKING_CODE_LENGTH
from ..models.models import Condominium, Resident
from .audit import audit_log

logger = logging.getLogger(__name__)


def normalize_linking_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def is_valid_linking_code_format(code: str) -> bool:
    return len(code) == LINKING_CODE_LENGTH and all(char in LINKING_CODE_ALPHABET for char in code)


def generate_linking_code() -> str:
    return "".join(secrets.choice(LINKING_CODE_ALPHABET) for _ in range(LINKING_CODE_LENGTH))


def _code_in_use(session: Session, code: str) -> bool:
    return session.query(Condominium.id).filter(Condominium.resident_linking_code == code).first() is not None


def unique_linking_code(session: Session, generator: Callable[[], str] = generate_linking_code) -> str:
    for _ in range(settings.linking_code_max_attempts):
        candidate = generator()
        if not _code_in_use(session, candidate):
            return candidate
    raise RuntimeError("Could not generate an unused linking code")


def validate_linking_code_and_apartment(session: Session, code: Optional[str], apartment: Optional[str]) -> Dict[str, Any]:
    normalized = normalize_linking_code(code)
    apartment = (apartment or "").strip()
    if not normalized or not apartment:
        return {
            "success": False,
            "error": "Linking code and apartment number are required.",
            "code": "MISSING_FIELDS",
        }
    if not is_valid_linking_code_format(normalized):
        return {
            "success": False,
            "error": f"Linking code must be {LINKING_CODE_LENGTH} letters or digits.",
            "code": "INVALID_FORMAT",
        }

    condominium = session.query(Condominium).filter(Condominium.resident_linking_code == normalized).first()
    if condominium is None:
        return {"success": False, "error": "Linking code not found.", "code": "CODE_NOT_FOUND"}

    taken = (
        session.query(Resident.id)
        .filter(
            Resident.condominium_id == condominium.id,
            func.lower(Resident.apartment_number) == apartment.lower(),
        )
        .first()
    )
    if taken is not None:
        return {
            "success": False,
            "error": f"Apartment {apartment} is already registered in this condominium.",
            "code": "APARTMENT_TAKEN",
        }

    return {
        "success": True,
        "condominium_id": condominium.id,
        "condominium_name": condominium.name,
        "message": "Linking code is valid.",
    }


def regenerate_linking_code(
    session: Session,
    condominium_id: int,
    actor_user_id: Optional[int] = None,
    generator: Callable[[], str] = generate_linking_code,
    max_attempts: Optional[int] = None,
) -> Dict[str, Any]:
    condominium = session.get(Condominium, condominium_id)
    if condominium is None:
        return {"success": False, "error": "Condominium not found.", "code": "NOT_FOUND"}

    old_code = condominium.resident_linking_code
    max_attempts = max_attempts or settings.linking_code_max_attempts
    for attempt in range(1, max_attempts + 1):
        candidate = generator()
        if candidate == old_code or _code_in_use(session, candidate):
            continue
        condominium.resident_linking_code = candidate
        audit_log(
            session,
            actor_user_id=actor_user_id,
            action="condominium.linking_code.regenerate",
            target_entity_type="Condominium",
            target_entity_id=condominium.id,
            before={"resident_linking_code": old_code},
            after={"resident_linking_code": candidate},
        )
        session.commit()
        logger.info("Linking code regenerated for condominium %s after %s attempt(s)", condominium_id, attempt)
        return {"success": True, "old_code": old_code, "new_code": candidate, "attempts": attempt}

    logger.warning("Linking code regeneration exhausted %s attempts for condominium %s", max_attempts, condominium_id)
    return {
        "success": False,
        "error": "Could not generate a new linking code. Try again.",
        "code": "GENERATION_FAILED",
    }
