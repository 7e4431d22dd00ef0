from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import get_current_user, require_permission
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.bot_settings import (
    PAYMENT_METHOD_OPTIONS,
    get_bot_settings,
    get_or_create_bot_settings,
    router_settings,
    serialize_bot_settings,
    update_bot_settings,
)
from autopecas.services.intent_router import route_message
from autopecas.services.products import inventory_snapshot, list_products, serialize_product

router = APIRouter(prefix="/api/bot", tags=["bot"])
logger = logging.getLogger(__name__)


class BotChatPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    conversation_id: Optional[int] = Field(None, alias="conversationId")


class BotSettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    welcome_message: Optional[str] = Field(None, alias="welcomeMessage")
    payment_methods: Optional[List[str]] = Field(None, alias="paymentMethods")
    business_hours: Optional[Dict[str, Any]] = Field(None, alias="businessHours")
    company_info: Optional[Dict[str, Any]] = Field(None, alias="companyInfo")
    active: Optional[bool] = Field(None, alias="isActive")


@router.post("/chat")
def bot_chat(
    payload: BotChatPayload,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reply = route_message(payload.message, inventory_snapshot(db), router_settings(get_bot_settings(db)))
    logger.info("[BOT] chat reply type=%s", reply.type, extra={"conversation_id": payload.conversation_id})
    return reply.to_dict()


@router.get("/inventory")
def bot_inventory(
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [serialize_product(p) for p in list_products(db) if (p.stock or 0) > 0]


@router.get("/settings")
def get_settings(
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = serialize_bot_settings(get_or_create_bot_settings(db))
    data["paymentMethodOptions"] = list(PAYMENT_METHOD_OPTIONS)
    return data


@router.post("/settings")
def post_settings(
    payload: BotSettingsUpdate,
    user: User = Depends(require_permission("adminAccess")),
    db: Session = Depends(get_db),
):
    settings = get_or_create_bot_settings(db)
    try:
        update_bot_settings(db, settings, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_action(db, user_id=user.id, action="update_bot_settings", entity_type="bot_settings", entity_id=settings.id)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update bot settings")
        raise HTTPException(status_code=500, detail="Erro ao salvar configurações") from exc
    db.refresh(settings)
    return serialize_bot_settings(settings)
