from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import require_roles
from ..config import settings
from ..constants import ROLE_SUPER_ADMIN
from ..core.version import get_version_info
from ..services.change_feed import change_feed

router = APIRouter()

require_super_admin = require_roles(ROLE_SUPER_ADMIN)


@router.get("/health")
def health(db: Session = Depends(get_db)) -> Dict[str, str]:
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@router.get("/version")
def version() -> Dict[str, str]:
    return get_version_info()


@router.get("/runtime", dependencies=[Depends(require_super_admin)])
def get_runtime_diagnostics() -> Dict[str, Any]:
    """Expose non-sensitive runtime settings for debugging."""
    return {
        "default_currency": settings.default_currency,
        "trigger_dispatch": change_feed.dispatch,
        "realtime_debounce_ms": settings.realtime_debounce_ms,
        "active_subscriptions": change_feed.subscription_count(),
        "registration_confirm_attempts": settings.registration_confirm_attempts,
        "registration_confirm_delay_seconds": settings.registration_confirm_delay_seconds,
        "log_json": settings.log_json,
    }
