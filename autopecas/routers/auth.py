from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import get_current_user
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.auth import clear_session_cookie, create_session, set_session_cookie
from autopecas.services.login_attempts import check_login_lock, clear_login_attempts, register_failed_login
from autopecas.services.passwords import verify_password
from autopecas.services.users import (
    accept_invite,
    get_user_by_email,
    get_user_by_invite,
    invite_status,
    serialize_user,
)

router = APIRouter(prefix="/api", tags=["auth"])
logger = logging.getLogger(__name__)

LOCKED_DETAIL = "Muitas tentativas. Tente novamente em alguns minutos."


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class InviteAcceptPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(..., min_length=1)
    confirm_password: str | None = Field(None, alias="confirmPassword")


def _audit_login(db: Session, user: User | None, action: str, email: str) -> None:
    log_action(
        db,
        user_id=user.id if user else None,
        action=action,
        entity_type="user",
        entity_id=user.id if user else None,
        meta={"email": email},
    )


@router.post("/auth/login")
def login(
    payload: LoginPayload,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    normalized_email = payload.email.strip().lower()

    locked, _ = check_login_lock(db, normalized_email)
    if locked:
        _audit_login(db, get_user_by_email(db, normalized_email), "login_locked", normalized_email)
        db.commit()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=LOCKED_DETAIL)

    user = get_user_by_email(db, normalized_email)
    password_is_valid = bool(user and user.password_hash and verify_password(payload.password, user.password_hash))
    if not user or not user.active or not password_is_valid:
        _, locked_after = register_failed_login(db, normalized_email)
        _audit_login(db, user, "login_failed", normalized_email)
        if locked_after:
            _audit_login(db, user, "login_locked", normalized_email)
        db.commit()
        if locked_after:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=LOCKED_DETAIL)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciais inválidas")

    token = create_session({"user_id": user.id, "role": user.role})
    set_session_cookie(response, token, request)

    clear_login_attempts(db, normalized_email)
    _audit_login(db, user, "login_success", normalized_email)
    db.commit()
    logger.info("Login ok user_id=%s role=%s", user.id, user.role)
    return serialize_user(user)


@router.post("/auth/logout")
def logout(response: Response, request: Request):
    clear_session_cookie(response, request)
    return {"ok": True}


@router.get("/auth/user")
def current_user(user: User = Depends(get_current_user)):
    return serialize_user(user)


def _get_invited_user_or_404(db: Session, token: str) -> User:
    user = get_user_by_invite(db, token)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Convite não encontrado")
    return user


@router.get("/invite/{token}")
def get_invite(token: str, db: Session = Depends(get_db)):
    return invite_status(_get_invited_user_or_404(db, token))


@router.post("/invite/{token}/accept")
def post_invite_accept(
    token: str,
    payload: InviteAcceptPayload,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    user = _get_invited_user_or_404(db, token)
    if payload.confirm_password is not None and payload.confirm_password != payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="As senhas não coincidem")

    try:
        accept_invite(db, user, payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="invite_accepted", entity_type="user", entity_id=user.id)
    db.commit()
    db.refresh(user)

    set_session_cookie(response, create_session({"user_id": user.id, "role": user.role}), request)
    return serialize_user(user)
