from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.core.request_context import set_request_context
from autopecas.models.user import User
from autopecas.services.auth import SESSION_COOKIE_NAME, decode_session
from autopecas.services.users import has_permission

logger = logging.getLogger(__name__)


def _normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()


def _log_access_denied(*, reason: str, user: User, request: Request) -> None:
    logger.warning(
        "Access denied (%s): user_id=%s user_role=%s endpoint=%s",
        reason,
        getattr(user, "id", None),
        getattr(user, "role", None),
        f"{request.method} {request.url.path}",
    )


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    payload = getattr(request.state, "session_payload", None)
    if payload is None:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Não autenticado")
        payload = decode_session(token)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão expirada")

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão inválida")

    user = db.query(User).filter(User.id == int(user_id), User.active.is_(True)).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuário não encontrado")

    set_request_context(user_id=str(user.id))
    return user


def require_role(roles: Iterable[str]):
    allowed = {_normalize_role(role) for role in roles}

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if _normalize_role(user.role) not in allowed:
            _log_access_denied(reason="role_denied", user=user, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissão insuficiente")
        return user

    return _dependency


def require_permission(permission: str):
    """DEV tem todas as permissões; os demais dependem do JSON de permissões."""

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if not has_permission(user, permission):
            _log_access_denied(reason=f"missing_{permission}", user=user, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissão insuficiente")
        return user

    return _dependency
