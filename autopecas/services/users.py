from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from autopecas.core.config import INVITE_EXPIRE_DAYS
from autopecas.models.user import User
from autopecas.services.passwords import generate_invite_token, hash_password, validate_password_strength

logger = logging.getLogger(__name__)

ROLES = ("dev", "administrador", "gerente", "vendedor")
ROLE_LABELS = {
    "dev": "Desenvolvedor",
    "administrador": "Administrador",
    "gerente": "Gerente",
    "vendedor": "Vendedor",
}

PERMISSION_KEYS = (
    "viewStock",
    "editProducts",
    "viewReports",
    "manageUsers",
    "adminAccess",
    "apiConfig",
    "canCreateDev",
    "canCreateAdmin",
    "editOwnProfile",
)

ROLE_PERMISSIONS: dict[str, dict[str, bool]] = {
    "dev": {
        "viewStock": True,
        "editProducts": True,
        "viewReports": True,
        "manageUsers": True,
        "adminAccess": True,
        "apiConfig": True,
        "canCreateDev": True,
        "canCreateAdmin": True,
        "editOwnProfile": True,
    },
    "administrador": {
        "viewStock": True,
        "editProducts": True,
        "viewReports": True,
        "manageUsers": True,
        "adminAccess": True,
        "apiConfig": False,
        "canCreateAdmin": True,
        "editOwnProfile": True,
    },
    "gerente": {
        "viewStock": True,
        "editProducts": True,
        "viewReports": True,
        "manageUsers": True,
        "adminAccess": False,
        "apiConfig": False,
        "canCreateAdmin": False,
        "editOwnProfile": True,
    },
    "vendedor": {
        "viewStock": True,
        "editProducts": False,
        "viewReports": False,
        "manageUsers": False,
        "adminAccess": False,
        "apiConfig": False,
        "editOwnProfile": True,
    },
}

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "profile_image_url",
    "company_name",
    "company_address",
    "company_description",
    "system_name",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def normalize_role(role: Optional[str]) -> str:
    value = (role or "").strip().lower()
    if value not in ROLES:
        raise ValueError("Função inválida")
    return value


def default_permissions(role: str) -> dict[str, bool]:
    return dict(ROLE_PERMISSIONS.get(role, ROLE_PERMISSIONS["vendedor"]))


def clean_permissions(permissions: Optional[Mapping[str, Any]]) -> dict[str, bool]:
    if not permissions:
        return {}
    return {key: bool(value) for key, value in permissions.items() if key in PERMISSION_KEYS}


def has_permission(user: User, permission: str) -> bool:
    if (user.role or "") == "dev":
        return True
    return bool((user.permissions_json or {}).get(permission) is True)


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "fullName": user.full_name,
        "phone": user.phone,
        "profileImageUrl": user.profile_image_url,
        "role": user.role,
        "roleLabel": ROLE_LABELS.get(user.role, user.role),
        "permissions": user.permissions_json or {},
        "isActive": bool(user.active),
        "isInvitePending": bool(user.invite_pending),
        "inviteExpiresAt": user.invite_expires_at.isoformat() if user.invite_expires_at else None,
        "companyName": user.company_name,
        "companyAddress": user.company_address,
        "companyDescription": user.company_description,
        "systemName": user.system_name,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    normalized = (email or "").strip().lower()
    return db.query(User).filter(func.lower(User.email) == normalized).first()


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def ensure_can_assign_role(actor: User, role: str) -> None:
    """DEV só é criado por DEV com canCreateDev; administrador exige canCreateAdmin."""
    if role == "dev" and not (actor.role == "dev" and has_permission(actor, "canCreateDev")):
        raise PermissionError("Apenas usuários DEV podem criar outros usuários DEV.")
    if role == "administrador" and not has_permission(actor, "canCreateAdmin"):
        raise PermissionError("Permissão insuficiente para criar administradores.")


def create_invited_user(
    db: Session,
    *,
    actor: User,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    role: str = "vendedor",
    permissions: Optional[Mapping[str, Any]] = None,
) -> User:
    normalized_email = (email or "").strip().lower()
    role = normalize_role(role)
    ensure_can_assign_role(actor, role)

    if get_user_by_email(db, normalized_email):
        raise ValueError("Este email já está em uso. Por favor, utilize outro email.")

    user = User(
        email=normalized_email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
        permissions_json={**default_permissions(role), **clean_permissions(permissions)},
        active=False,
        invite_token=generate_invite_token(),
        invite_expires_at=_now() + timedelta(days=INVITE_EXPIRE_DAYS),
        invite_pending=True,
    )
    db.add(user)
    db.flush()
    logger.info("Invite created user_id=%s role=%s expires_in_days=%s", user.id, role, INVITE_EXPIRE_DAYS)
    return user


def get_user_by_invite(db: Session, token: str) -> Optional[User]:
    if not token:
        return None
    return db.query(User).filter(User.invite_token == token).first()


def invite_status(user: User) -> dict[str, Any]:
    expired = bool(user.invite_expires_at and _as_utc(user.invite_expires_at) < _now())
    return {
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role,
        "roleLabel": ROLE_LABELS.get(user.role, user.role),
        "isExpired": expired,
        "isActivated": not user.invite_pending,
        "expiresAt": user.invite_expires_at.isoformat() if user.invite_expires_at else None,
    }


def accept_invite(db: Session, user: User, password: str) -> User:
    status = invite_status(user)
    if status["isActivated"]:
        raise ValueError("Convite já utilizado")
    if status["isExpired"]:
        raise ValueError("Convite expirado")
    validate_password_strength(password)

    user.password_hash = hash_password(password)
    user.invite_pending = False
    user.invite_token = None
    user.active = True
    db.add(user)
    return user


def update_user(db: Session, user: User, changes: Mapping[str, Any]) -> User:
    for field in PROFILE_FIELDS:
        if field in changes:
            setattr(user, field, changes[field])
    if "active" in changes and changes["active"] is not None:
        user.active = bool(changes["active"])
    db.add(user)
    return user


def update_permissions(db: Session, user: User, permissions: Mapping[str, Any]) -> User:
    user.permissions_json = {**(user.permissions_json or {}), **clean_permissions(permissions)}
    db.add(user)
    return user


def change_role(db: Session, user: User, role: str, *, reset_permissions: bool = True) -> User:
    user.role = normalize_role(role)
    if reset_permissions:
        user.permissions_json = default_permissions(user.role)
    db.add(user)
    return user


def promote_to_admin(db: Session, user: User) -> User:
    return change_role(db, user, "administrador")


def demote_to_seller(db: Session, user: User) -> User:
    if user.role == "dev":
        raise ValueError("Usuário DEV não pode ser rebaixado")
    return change_role(db, user, "vendedor")


def deactivate_user(db: Session, user: User) -> User:
    user.active = False
    user.invite_token = None
    db.add(user)
    return user


def ensure_dev_admin(db: Session, *, email: str, password: str) -> Optional[User]:
    """Cria (ou reativa) o usuário DEV inicial; retorna None se já existe ativo."""
    normalized_email = (email or "").strip().lower()
    user = get_user_by_email(db, normalized_email)
    if user and user.active and user.password_hash:
        return None
    if user is None:
        user = User(email=normalized_email, first_name="Admin", role="dev")
    user.role = "dev"
    user.permissions_json = default_permissions("dev")
    user.password_hash = hash_password(password)
    user.active = True
    user.invite_pending = False
    user.invite_token = None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
