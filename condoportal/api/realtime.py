from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, get_resident_for_user
from ..auth.jwt import user_from_token
from ..constants import ROLE_SUPER_ADMIN
from ..services.change_feed import RealtimeClient, realtime_websocket_handler

router = APIRouter()


@router.websocket("/ws")
async def realtime_changes(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
) -> None:
    if not token:
        await websocket.close(code=4401)
        return
    user = user_from_token(db, token)
    if user is None:
        await websocket.close(code=4401)
        return

    target = user.condominium_id
    if condominium_id is not None and condominium_id != target:
        if not user.has_role(ROLE_SUPER_ADMIN):
            await websocket.close(code=4403)
            return
        target = condominium_id
    if target is None:
        await websocket.close(code=4403)
        return

    resident = get_resident_for_user(db, user)
    client = RealtimeClient(
        user_id=user.id,
        role=user.role,
        websocket=websocket,
        resident_id=resident.id if resident else None,
    )
    db.close()
    await realtime_websocket_handler(target, client)
