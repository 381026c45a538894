from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session, joinedload

from ..api.dependencies import get_db
from ..auth.jwt import get_current_user
from ..constants import ROLE_SUPER_ADMIN
from ..models.models import User
from ..schemas.schemas import ConversationSummary, MessageCreate, MessageRead, ProfileRead
from ..services import chat as chat_service

router = APIRouter()


def _ensure_can_message(db: Session, sender: User, recipient_id: int) -> None:
    recipient = db.query(User).options(joinedload(User.profile)).filter(User.id == recipient_id).first()
    if not recipient or not recipient.is_active:
        raise HTTPException(status_code=404, detail="Recipient not found")
    if sender.has_role(ROLE_SUPER_ADMIN) or recipient.has_role(ROLE_SUPER_ADMIN):
        return
    if sender.condominium_id is None or sender.condominium_id != recipient.condominium_id:
        raise HTTPException(status_code=403, detail="Recipient belongs to another condominium")


@router.post("/", response_model=MessageRead, status_code=201)
def send_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _ensure_can_message(db, user, payload.recipient_id)
    try:
        return chat_service.send_message(
            db,
            sender_id=user.id,
            recipient_id=payload.recipient_id,
            content=payload.content,
            client_message_id=payload.client_message_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/conversations", response_model=List[ConversationSummary])
def list_conversations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return chat_service.list_conversations(db, user.id)


@router.get("/conversations/{peer_id}", response_model=List[MessageRead])
def conversation(
    peer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return chat_service.list_conversation(db, user.id, peer_id)


@router.post("/conversations/{peer_id}/read")
def mark_conversation_read(
    peer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return {"updated": chat_service.mark_conversation_read(db, user.id, peer_id)}


@router.get("/unread-count")
def unread_count(
    peer_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return {"unread": chat_service.unread_count(db, user.id, peer_id)}


@router.get("/support-contact", response_model=ProfileRead)
def support_contact(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    profile = chat_service.find_super_admin(db)
    if not profile:
        raise HTTPException(status_code=404, detail="No administrator available")
    return profile


@router.post("/{message_id}/read", response_model=MessageRead)
def mark_message_read(
    message_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    message = chat_service.mark_message_read(db, message_id, user.id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.delete("/{message_id}", status_code=204)
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Response:
    try:
        deleted = chat_service.delete_message(db, message_id, user.id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=403, detail="Only the sender can delete a message")
    return Response(status_code=204)
