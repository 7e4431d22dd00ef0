from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import get_current_user, require_permission, require_role
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.users import (
    create_invited_user,
    deactivate_user,
    demote_to_seller,
    ensure_can_assign_role,
    get_user,
    list_users,
    normalize_role,
    promote_to_admin,
    serialize_user,
    update_permissions,
    update_user,
    change_role,
)

router = APIRouter(prefix="/api", tags=["users"])
logger = logging.getLogger(__name__)


class UserInvite(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    phone: Optional[str] = None
    role: str = "vendedor"
    permissions: Optional[Dict[str, Any]] = None


class UserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    phone: Optional[str] = None
    profile_image_url: Optional[str] = Field(None, alias="profileImageUrl")
    active: Optional[bool] = Field(None, alias="isActive")


class PermissionsUpdate(BaseModel):
    permissions: Dict[str, Any]


class RoleUpdate(BaseModel):
    role: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    phone: Optional[str] = None
    profile_image_url: Optional[str] = Field(None, alias="profileImageUrl")
    company_name: Optional[str] = Field(None, alias="companyName")
    company_address: Optional[str] = Field(None, alias="companyAddress")
    company_description: Optional[str] = Field(None, alias="companyDescription")
    system_name: Optional[str] = Field(None, alias="systemName")


def _get_user_or_404(db: Session, user_id: int) -> User:
    target = get_user(db, user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuário não encontrado")
    return target


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", what)
        raise HTTPException(status_code=500, detail="Erro ao salvar usuário") from exc


@router.get("/users")
def get_users(
    _user: User = Depends(require_permission("manageUsers")),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [serialize_user(entry) for entry in list_users(db)]


@router.post("/users", status_code=status.HTTP_201_CREATED)
def invite_user(
    payload: UserInvite,
    user: User = Depends(require_permission("manageUsers")),
    db: Session = Depends(get_db),
):
    try:
        invited = create_invited_user(
            db,
            actor=user,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            role=payload.role,
            permissions=payload.permissions,
        )
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(
        db,
        user_id=user.id,
        action="invite_user",
        entity_type="user",
        entity_id=invited.id,
        meta={"email": invited.email, "role": invited.role},
    )
    _commit(db, "invite user")
    db.refresh(invited)

    data = serialize_user(invited)
    data["inviteToken"] = invited.invite_token
    data["inviteUrl"] = f"/invite/{invited.invite_token}"
    return data


@router.patch("/users/{user_id}")
def patch_user(
    user_id: int,
    payload: UserUpdate,
    user: User = Depends(require_permission("manageUsers")),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    update_user(db, target, payload.model_dump(exclude_unset=True))
    log_action(db, user_id=user.id, action="update_user", entity_type="user", entity_id=target.id)
    _commit(db, "update user")
    db.refresh(target)
    return serialize_user(target)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    user: User = Depends(require_permission("manageUsers")),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    if target.id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Não é possível remover o próprio usuário")
    if target.role == "dev" and user.role != "dev":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissão insuficiente")

    deactivate_user(db, target)
    log_action(db, user_id=user.id, action="deactivate_user", entity_type="user", entity_id=target.id)
    _commit(db, "deactivate user")
    return {"ok": True}


@router.patch("/users/{user_id}/permissions")
def patch_permissions(
    user_id: int,
    payload: PermissionsUpdate,
    user: User = Depends(require_permission("manageUsers")),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    update_permissions(db, target, payload.permissions)
    log_action(
        db,
        user_id=user.id,
        action="update_permissions",
        entity_type="user",
        entity_id=target.id,
        meta=payload.permissions,
    )
    _commit(db, "update permissions")
    db.refresh(target)
    return serialize_user(target)


@router.patch("/users/{user_id}/role")
def patch_role(
    user_id: int,
    payload: RoleUpdate,
    user: User = Depends(require_role(["dev", "administrador"])),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    try:
        role = normalize_role(payload.role)
        ensure_can_assign_role(user, role)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    previous = target.role
    change_role(db, target, role)
    log_action(
        db,
        user_id=user.id,
        action="change_role",
        entity_type="user",
        entity_id=target.id,
        meta={"from": previous, "to": role},
    )
    _commit(db, "change role")
    db.refresh(target)
    return serialize_user(target)


@router.post("/admin/users/{user_id}/promote")
def promote_user(
    user_id: int,
    user: User = Depends(require_role(["dev", "administrador"])),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    try:
        ensure_can_assign_role(user, "administrador")
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    promote_to_admin(db, target)
    log_action(db, user_id=user.id, action="promote_user", entity_type="user", entity_id=target.id)
    _commit(db, "promote user")
    db.refresh(target)
    return serialize_user(target)


@router.post("/admin/users/{user_id}/demote")
def demote_user(
    user_id: int,
    user: User = Depends(require_role(["dev", "administrador"])),
    db: Session = Depends(get_db),
):
    target = _get_user_or_404(db, user_id)
    try:
        demote_to_seller(db, target)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="demote_user", entity_type="user", entity_id=target.id)
    _commit(db, "demote user")
    db.refresh(target)
    return serialize_user(target)


@router.get("/admin/profile")
def get_profile(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.put("/admin/profile")
def put_profile(
    payload: ProfileUpdate,
    user: User = Depends(require_permission("editOwnProfile")),
    db: Session = Depends(get_db),
):
    update_user(db, user, payload.model_dump(exclude_unset=True))
    log_action(db, user_id=user.id, action="update_profile", entity_type="user", entity_id=user.id)
    _commit(db, "update profile")
    db.refresh(user)
    return serialize_user(user)
