from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.core.database import get_db
from autopecas.deps import get_current_user
from autopecas.models.user import User
from autopecas.services.chat import deliver_message
from autopecas.services.messages import (
    assign_conversation,
    create_conversation,
    get_conversation,
    list_conversations,
    list_messages,
    mark_messages_read,
    serialize_conversation,
    serialize_message,
    unread_count,
    update_conversation_status,
)
from autopecas.services.users import get_user

router = APIRouter(prefix="/api/conversations", tags=["conversations"])
logger = logging.getLogger(__name__)


class ConversationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(..., min_length=1, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    customer_avatar: Optional[str] = Field(None, alias="customerAvatar")
    status: str = "active"
    assigned_user_id: Optional[int] = Field(None, alias="assignedUserId")


class MessageCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., min_length=1)
    sender_type: str = Field("seller", alias="senderType")
    message_type: str = Field("text", alias="messageType")
    metadata: Optional[Dict[str, Any]] = None


class ConversationAssign(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[int] = Field(None, alias="userId")


class ConversationStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


def _get_conversation_or_404(db: Session, conversation_id: int):
    conversation = get_conversation(db, conversation_id)
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversa não encontrada")
    return conversation


def _conversation_with_unread(db: Session, conversation) -> Dict[str, Any]:
    data = serialize_conversation(conversation)
    data["unreadCount"] = unread_count(db, conversation.id)
    return data


@router.get("")
def get_conversations(
    status_filter: Optional[str] = Query(None, alias="status"),
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [_conversation_with_unread(db, c) for c in list_conversations(db, status=status_filter)]


@router.post("", status_code=status.HTTP_201_CREATED)
def post_conversation(
    payload: ConversationCreate,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        conversation = create_conversation(
            db,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            customer_avatar=payload.customer_avatar,
            status=payload.status,
            assigned_user_id=payload.assigned_user_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create conversation")
        raise HTTPException(status_code=500, detail="Erro ao criar conversa") from exc
    return serialize_conversation(conversation)


@router.get("/{conversation_id}")
def get_conversation_detail(
    conversation_id: int,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _conversation_with_unread(db, _get_conversation_or_404(db, conversation_id))


@router.get("/{conversation_id}/messages")
def get_messages(
    conversation_id: int,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    _get_conversation_or_404(db, conversation_id)
    return [serialize_message(m) for m in list_messages(db, conversation_id)]


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    conversation_id: int,
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sender_id = str(user.id) if payload.sender_type == "seller" else None
    try:
        stored = await deliver_message(
            db,
            conversation_id,
            content=payload.content,
            sender_type=payload.sender_type,
            sender_id=sender_id,
            message_type=payload.message_type,
            metadata=payload.metadata,
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to store message", extra={"conversation_id": conversation_id})
        raise HTTPException(status_code=500, detail="Erro ao enviar mensagem") from exc
    return stored[0]


@router.patch("/{conversation_id}/assign")
def patch_assign(
    conversation_id: int,
    payload: ConversationAssign,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversation = _get_conversation_or_404(db, conversation_id)
    if payload.user_id is not None and not get_user(db, payload.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuário não encontrado")
    return serialize_conversation(assign_conversation(db, conversation, payload.user_id))


@router.patch("/{conversation_id}/status")
def patch_status(
    conversation_id: int,
    payload: ConversationStatusUpdate,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversation = _get_conversation_or_404(db, conversation_id)
    try:
        conversation = update_conversation_status(db, conversation, payload.status.strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return serialize_conversation(conversation)


@router.post("/{conversation_id}/read")
def post_read(
    conversation_id: int,
    _user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_conversation_or_404(db, conversation_id)
    return {"ok": True, "updated": mark_messages_read(db, conversation_id)}
