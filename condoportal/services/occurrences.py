import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..constants import OCCURRENCE_NUMBER_ATTEMPTS, OCCURRENCE_RESOLVED, OCCURRENCE_STATUSES
from ..models.models import Occurrence, User, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "priority", "assigned_to", "resolution_notes")


def next_occurrence_number(session: Session, condominium_id: int) -> int:
    """Occurrences are numbered 1, 2, 3... separately in each condominium."""
    current = (
        session.query(func.coalesce(func.max(Occurrence.occurrence_number), 0))
        .filter(Occurrence.condominium_id == condominium_id)
        .scalar()
    )
    return int(current) + 1


def format_occurrence_number(number: int) -> str:
    return f"#{number:03d}"


def create_occurrence(
    session: Session,
    condominium_id: int,
    reported_by_user_id: int,
    data: Mapping[str, Any],
) -> Occurrence:
    for attempt in range(1, OCCURRENCE_NUMBER_ATTEMPTS + 1):
        occurrence = Occurrence(
            condominium_id=condominium_id,
            reported_by_user_id=reported_by_user_id,
            occurrence_number=next_occurrence_number(session, condominium_id),
            **data,
        )
        session.add(occurrence)
        try:
            session.commit()
        except IntegrityError:
            # Another report took the same number first.
            session.rollback()
            logger.warning(
                "Occurrence number clash in condominium %s (attempt %s)", condominium_id, attempt
            )
            continue
        session.refresh(occurrence)
        logger.info(
            "Occurrence %s reported in condominium %s",
            format_occurrence_number(occurrence.occurrence_number),
            condominium_id,
        )
        return occurrence
    raise RuntimeError(f"Could not number a new occurrence for condominium {condominium_id}")


def list_occurrences(
    session: Session,
    condominium_id: int,
    status: Optional[str] = None,
    reported_by_user_id: Optional[int] = None,
) -> List[Occurrence]:
    query = (
        session.query(Occurrence)
        .options(joinedload(Occurrence.reporter).joinedload(User.profile))
        .filter(Occurrence.condominium_id == condominium_id)
    )
    if status:
        query = query.filter(Occurrence.status == status)
    if reported_by_user_id is not None:
        query = query.filter(Occurrence.reported_by_user_id == reported_by_user_id)
    return query.order_by(Occurrence.created_at.desc(), Occurrence.id.desc()).all()


def count_by_status(
    session: Session,
    condominium_id: int,
    reported_by_user_id: Optional[int] = None,
) -> Dict[str, int]:
    query = session.query(Occurrence.status, func.count(Occurrence.id)).filter(
        Occurrence.condominium_id == condominium_id
    )
    if reported_by_user_id is not None:
        query = query.filter(Occurrence.reported_by_user_id == reported_by_user_id)
    counts = {status: 0 for status in OCCURRENCE_STATUSES}
    for status, total in query.group_by(Occurrence.status):
        counts[status] = total
    return counts


def update_occurrence(
    session: Session,
    occurrence: Occurrence,
    updates: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Apply a coordinator's changes to an occurrence.

    Resolving requires resolution notes and stamps ``resolved_at``; moving a
    resolved occurrence back to another status clears the stamp.
    """
    changes = {field: updates[field] for field in UPDATABLE_FIELDS if field in updates}
    status = changes.get("status", occurrence.status)
    notes = changes.get("resolution_notes", occurrence.resolution_notes)
    if status == OCCURRENCE_RESOLVED and not (notes or "").strip():
        return {
            "success": False,
            "error": "Resolution notes are required to resolve an occurrence.",
            "code": "RESOLUTION_NOTES_REQUIRED",
        }

    before = {field: getattr(occurrence, field) for field in changes}
    for field, value in changes.items():
        setattr(occurrence, field, value)
    if status == OCCURRENCE_RESOLVED and occurrence.resolved_at is None:
        occurrence.resolved_at = now or utcnow()
    elif status != OCCURRENCE_RESOLVED:
        occurrence.resolved_at = None
    session.flush()
    return {"success": True, "occurrence": occurrence, "before": before, "after": changes}
