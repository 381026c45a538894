from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..api.dependencies import get_db
from ..auth.jwt import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_password_hash,
    verify_password,
)
from ..config import settings
from ..models.models import User
from ..schemas.schemas import PasswordChange, Token, TokenRefreshRequest, UserRead
from ..services.audit import audit_log

router = APIRouter()


def _build_token_response(user: User) -> Token:
    access_payload = {
        "sub": str(user.id),
        "role": user.role,
        "condominium_id": user.condominium_id,
        "type": "access",
    }
    return Token(
        access_token=create_access_token(access_payload),
        refresh_token=create_refresh_token(str(user.id)),
        token_type="bearer",
        role=user.role,
        condominium_id=user.condominium_id,
        expires_in=settings.access_token_expire_minutes * 60,
        refresh_expires_in=settings.refresh_token_expire_minutes * 60,
    )


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    user = (
        db.query(User)
        .options(joinedload(User.profile))
        .filter(func.lower(User.email) == form_data.username.strip().lower())
        .first()
    )
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive.")
    if user.profile is None:
        # The provisioning trigger has not caught up with this account yet.
        raise HTTPException(status_code=409, detail="Account setup is still in progress. Try again shortly.")
    return _build_token_response(user)


@router.post("/refresh", response_model=Token)
def refresh_token(
    payload: TokenRefreshRequest,
    db: Session = Depends(get_db),
):
    credentials_exception = HTTPException(status_code=401, detail="Invalid refresh token")
    try:
        decoded = decode_token(payload.refresh_token)
    except JWTError as exc:
        raise credentials_exception from exc

    if decoded.get("type") != "refresh" or not decoded.get("sub"):
        raise credentials_exception

    user = (
        db.query(User)
        .options(joinedload(User.profile))
        .filter(User.id == int(decoded["sub"]))
        .first()
    )
    if not user or not user.is_active or user.profile is None:
        raise credentials_exception
    return _build_token_response(user)


@router.get("/me", response_model=UserRead)
def read_current_user(user: User = Depends(get_current_user)):
    return user


@router.post("/change-password", status_code=204)
def change_password(
    payload: PasswordChange,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> None:
    if not verify_password(payload.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")
    user.hashed_password = get_password_hash(payload.new_password)
    if user.profile is not None:
        user.profile.must_change_password = False
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="user.password.change",
        target_entity_type="User",
        target_entity_id=str(user.id),
    )
    db.commit()
