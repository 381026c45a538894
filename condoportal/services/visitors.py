import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from ..constants import VISITOR_PASS_DEFAULT_HOURS
from ..models.models import Resident, Visitor, VisitorPass, utcnow

logger = logging.getLogger(__name__)


def _as_naive_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; compare everything as naive UTC.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def generate_pass_token() -> str:
    return secrets.token_urlsafe(24)


def issue_visitor_pass(
    session: Session,
    visitor: Visitor,
    created_by_user_id: Optional[int] = None,
    hours: int = VISITOR_PASS_DEFAULT_HOURS,
    now: Optional[datetime] = None,
) -> VisitorPass:
    if hours <= 0:
        raise ValueError("Pass validity must be at least one hour")
    now = now or utcnow()
    token = generate_pass_token()
    while session.query(VisitorPass.id).filter(VisitorPass.token == token).first() is not None:
        token = generate_pass_token()
    visitor_pass = VisitorPass(
        visitor_id=visitor.id,
        condominium_id=visitor.condominium_id,
        token=token,
        expires_at=_as_naive_utc(now) + timedelta(hours=hours),
        created_by_user_id=created_by_user_id,
    )
    session.add(visitor_pass)
    session.commit()
    session.refresh(visitor_pass)
    logger.info("Visitor pass %s issued for visitor %s", visitor_pass.id, visitor.id)
    return visitor_pass


def _visitor_payload(visitor: Visitor, entry_time: datetime) -> Dict[str, Any]:
    resident: Optional[Resident] = visitor.resident
    return {
        "id": visitor.id,
        "name": visitor.name,
        "phone": visitor.phone,
        "document_number": visitor.document_number,
        "purpose": visitor.purpose,
        "apartment_number": resident.apartment_number if resident else None,
        "resident_name": resident.display_name if resident else None,
        "entry_time": entry_time,
    }


def validate_visitor_pass(
    session: Session,
    token: str,
    scanner_condominium_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Admit a visitor by pass token. A token is accepted once, before expiry."""
    now = _as_naive_utc(now or utcnow())
    visitor_pass = (
        session.query(VisitorPass)
        .options(joinedload(VisitorPass.visitor).joinedload(Visitor.resident).joinedload(Resident.profile))
        .filter(VisitorPass.token == (token or "").strip())
        .first()
    )
    if visitor_pass is None:
        return {"success": False, "error": "Pass not found.", "code": "NOT_FOUND"}
    if visitor_pass.condominium_id != scanner_condominium_id:
        return {"success": False, "error": "Pass belongs to another condominium.", "code": "WRONG_CONDOMINIUM"}
    if visitor_pass.used_at is not None:
        return {"success": False, "error": "Pass has already been used.", "code": "ALREADY_USED"}
    if _as_naive_utc(visitor_pass.expires_at) <= now:
        return {"success": False, "error": "Pass has expired.", "code": "EXPIRED"}

    visitor_pass.used_at = now
    session.commit()
    logger.info("Visitor pass %s used", visitor_pass.id)
    return {
        "success": True,
        "visitor": _visitor_payload(visitor_pass.visitor, now),
        "pass": {
            "id": visitor_pass.id,
            "created_at": visitor_pass.created_at,
            "expires_at": visitor_pass.expires_at,
            "used_at": visitor_pass.used_at,
        },
    }


def active_passes(session: Session, visitor_id: int, now: Optional[datetime] = None) -> List[VisitorPass]:
    now = _as_naive_utc(now or utcnow())
    return (
        session.query(VisitorPass)
        .filter(
            VisitorPass.visitor_id == visitor_id,
            VisitorPass.used_at.is_(None),
            VisitorPass.expires_at > now,
        )
        .order_by(VisitorPass.created_at.desc())
        .all()
    )


def approve_visitor(session: Session, visitor: Visitor, approved_by_user_id: int, approved: bool = True) -> Visitor:
    visitor.approved = approved
    visitor.approved_at = utcnow()
    visitor.approved_by_user_id = approved_by_user_id
    session.commit()
    session.refresh(visitor)
    return visitor
