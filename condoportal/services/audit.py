import json
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models.models import AuditLog, utcnow


def _serialize(data: Any) -> Optional[str]:
    if data is None:
        return None
    try:
        return json.dumps(data, default=str)
    except TypeError:
        return str(data)


def audit_log(
    db_session: Session,
    actor_user_id: Optional[int],
    action: str,
    target_entity_type: Optional[str] = None,
    target_entity_id: Optional[str] = None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Record an audit entry inside the caller's transaction.

    The entry is flushed, not committed, so it lands or rolls back together
    with the change it describes.
    """
    entry = AuditLog(
        timestamp=utcnow(),
        actor_user_id=actor_user_id,
        action=action,
        target_entity_type=target_entity_type,
        target_entity_id=str(target_entity_id) if target_entity_id is not None else None,
        before=_serialize(before),
        after=_serialize(after),
    )
    db_session.add(entry)
    db_session.flush()
    return entry
