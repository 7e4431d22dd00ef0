from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from autopecas.ai.schema import ChatContext, Ok, VehicleInfo
from autopecas.ai.service import (
    AIBotService,
    get_ai_config,
    history_from_messages,
    intent_or_default,
    knowledge_from_settings,
    mask_api_key,
    recommendations_or_first,
    reply_or_handoff,
)
from autopecas.core.config import BOT_SENDER_ID
from autopecas.core.database import get_db
from autopecas.deps import get_current_user, require_permission, require_role
from autopecas.models.ai_message_log import AIMessageLog
from autopecas.models.user import User
from autopecas.services.audit import log_action
from autopecas.services.bot_settings import get_bot_settings
from autopecas.services.chat import deliver_message
from autopecas.services.messages import get_conversation, recent_history
from autopecas.services.products import inventory_snapshot

router = APIRouter(prefix="/api", tags=["ai"])
logger = logging.getLogger(__name__)


class AIResponsePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    conversation_id: Optional[int] = Field(None, alias="conversationId")
    context: Optional[ChatContext] = None


class AnalyzeIntentPayload(BaseModel):
    message: str = Field(..., min_length=1)


class RecommendPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vehicle_info: VehicleInfo = Field(default_factory=VehicleInfo, alias="vehicleInfo")
    products: Optional[List[Dict[str, Any]]] = None


class AIConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: Optional[str] = None
    enabled: Optional[bool] = None
    api_key: Optional[str] = Field(None, alias="apiKey")
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(None, ge=1, le=4000, alias="maxTokens")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")


ALLOWED_PROVIDERS = {"openai", "mock"}


def _service(db: Session) -> AIBotService:
    service = AIBotService(db)
    service.knowledge = knowledge_from_settings(get_bot_settings(db), service.knowledge)
    return service


def _serialize_config(config) -> Dict[str, Any]:
    return {
        "id": config.id,
        "provider": config.provider,
        "enabled": bool(config.enabled),
        "apiKey": mask_api_key(config.api_key),
        "hasApiKey": bool(config.api_key),
        "model": config.model,
        "maxTokens": config.max_tokens,
        "temperature": config.temperature,
        "systemPrompt": config.system_prompt,
    }


def _ai_reply(db: Session, payload: AIResponsePayload) -> str:
    data = payload.context.model_dump() if payload.context else {}
    if payload.conversation_id is not None:
        conversation = get_conversation(db, payload.conversation_id)
        if conversation is None:
            raise LookupError("Conversa não encontrada")
        if not data.get("history"):
            data["history"] = history_from_messages(recent_history(db, conversation.id))
        if not data.get("customer_name"):
            data["customer_name"] = conversation.customer_name

    result = _service(db).generate_response(
        payload.message,
        ChatContext.model_validate(data),
        inventory_snapshot(db),
        conversation_id=payload.conversation_id,
    )
    return reply_or_handoff(result)


@router.post("/chat/ai-response")
async def ai_response(
    payload: AIResponsePayload,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        text = await run_in_threadpool(_ai_reply, db, payload)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    if payload.conversation_id is None:
        return {"response": text}

    try:
        stored = await deliver_message(
            db,
            payload.conversation_id,
            content=text,
            sender_type="bot",
            sender_id=BOT_SENDER_ID,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("[AI] failed to store reply", extra={"conversation_id": payload.conversation_id})
        raise HTTPException(status_code=500, detail="Erro ao salvar resposta") from exc
    return {"response": text, "message": stored[0]}


@router.post("/chat/analyze-intent")
def analyze_intent(
    payload: AnalyzeIntentPayload,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    analysis = intent_or_default(_service(db).analyze_intent(payload.message))
    return analysis.model_dump(by_alias=True)


@router.post("/chat/recommend-products")
def recommend_products(
    payload: RecommendPayload,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    products = payload.products if payload.products is not None else inventory_snapshot(db)
    result = _service(db).recommend_products(payload.vehicle_info, products)
    return {"products": recommendations_or_first(result, products)}


@router.post("/admin/test-ai")
def test_ai(
    payload: AnalyzeIntentPayload,
    _user: User = Depends(require_permission("adminAccess")),
    db: Session = Depends(get_db),
):
    service = _service(db)
    result = service.generate_response(payload.message, ChatContext(), inventory_snapshot(db))
    return {
        "provider": service.provider.name,
        "ok": isinstance(result, Ok),
        "response": reply_or_handoff(result),
        "error": getattr(result, "reason", None),
    }


@router.get("/admin/openai-config")
def get_openai_config(
    _user: User = Depends(require_role(["dev"])),
    db: Session = Depends(get_db),
):
    return _serialize_config(get_ai_config(db))


@router.put("/admin/openai-config")
def put_openai_config(
    payload: AIConfigUpdate,
    user: User = Depends(require_role(["dev"])),
    db: Session = Depends(get_db),
):
    config = get_ai_config(db)
    changes = payload.model_dump(exclude_unset=True)

    provider = changes.get("provider")
    if provider is not None:
        provider = provider.strip().lower()
        if provider not in ALLOWED_PROVIDERS:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provedor inválido")
        changes["provider"] = provider
    if "api_key" in changes:
        # chave vazia remove a chave salva
        changes["api_key"] = (changes["api_key"] or "").strip() or None

    for field, value in changes.items():
        setattr(config, field, value)
    db.add(config)
    log_action(
        db,
        user_id=user.id,
        action="update_ai_config",
        entity_type="ai_config",
        entity_id=config.id,
        meta={key: value for key, value in changes.items() if key != "api_key"},
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update AI config")
        raise HTTPException(status_code=500, detail="Erro ao salvar configuração") from exc
    db.refresh(config)
    return _serialize_config(config)


@router.get("/admin/ai/logs")
def get_ai_logs(
    limit: int = Query(50, ge=1, le=500),
    conversation_id: Optional[int] = Query(None, alias="conversationId"),
    _user: User = Depends(require_permission("apiConfig")),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    query = db.query(AIMessageLog)
    if conversation_id is not None:
        query = query.filter(AIMessageLog.conversation_id == conversation_id)
    logs = query.order_by(AIMessageLog.created_at.desc(), AIMessageLog.id.desc()).limit(limit).all()
    return [
        {
            "id": log.id,
            "conversationId": log.conversation_id,
            "operation": log.operation,
            "provider": log.provider,
            "prompt": log.prompt,
            "rawResponse": log.raw_response,
            "error": log.error,
            "createdAt": log.created_at.isoformat() if log.created_at else None,
        }
        for log in logs
    ]
