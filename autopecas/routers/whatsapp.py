from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import require_permission
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.whatsapp_config import (
    connection_check,
    get_whatsapp_config,
    serialize_whatsapp_config,
    update_whatsapp_config,
)

router = APIRouter(prefix="/api/admin", tags=["admin-whatsapp"])
logger = logging.getLogger(__name__)


class WorkingHours(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    days: Optional[List[str]] = None


class WhatsAppConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(None, alias="apiKey")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    company_name: Optional[str] = Field(None, alias="companyName")
    welcome_message: Optional[str] = Field(None, alias="welcomeMessage")
    away_message: Optional[str] = Field(None, alias="awayMessage")
    working_hours: Optional[WorkingHours] = Field(None, alias="workingHours")
    is_active: Optional[bool] = Field(None, alias="isActive")
    bot: Optional[Dict[str, Any]] = None


@router.get("/whatsapp-config")
def get_config(
    _user: User = Depends(require_permission("adminAccess")),
    db: Session = Depends(get_db),
):
    return serialize_whatsapp_config(get_whatsapp_config(db))


@router.put("/whatsapp-config")
def put_config(
    payload: WhatsAppConfigUpdate,
    user: User = Depends(require_permission("adminAccess")),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    try:
        config = update_whatsapp_config(db, changes)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    db.flush()
    log_action(
        db,
        user_id=user.id,
        action="update_whatsapp_config",
        entity_type="whatsapp_config",
        entity_id=config.id,
        meta={key: value for key, value in changes.items() if key != "api_key"},
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update WhatsApp config")
        raise HTTPException(status_code=500, detail="Erro ao salvar configuração") from exc
    db.refresh(config)
    return serialize_whatsapp_config(config)


@router.post("/whatsapp-test")
def post_connection_test(
    user: User = Depends(require_permission("adminAccess")),
    db: Session = Depends(get_db),
):
    config = get_whatsapp_config(db)
    result = connection_check(config)
    log_action(
        db,
        user_id=user.id,
        action="whatsapp_test",
        entity_type="whatsapp_config",
        entity_id=config.id if config else None,
        meta={"success": result["success"]},
    )
    db.commit()
    return result
