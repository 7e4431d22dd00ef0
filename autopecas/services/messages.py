from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from autopecas.models.conversation import Conversation
from autopecas.models.message import Message

logger = logging.getLogger(__name__)

SENDER_TYPES = {"customer", "bot", "seller"}
MESSAGE_TYPES = {"text", "product", "image"}
CONVERSATION_STATUSES = {"active", "waiting", "resolved", "closed"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite devolve datetime sem tzinfo
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    normalized = _as_utc(value)
    return normalized.isoformat() if normalized else None


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "customerName": conversation.customer_name,
        "customerPhone": conversation.customer_phone,
        "customerAvatar": conversation.customer_avatar,
        "status": conversation.status,
        "assignedUserId": conversation.assigned_user_id,
        "lastMessageAt": _iso(conversation.last_message_at),
        "createdAt": _iso(conversation.created_at),
        "updatedAt": _iso(conversation.updated_at),
    }


def serialize_message(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "senderId": message.sender_id,
        "senderType": message.sender_type,
        "content": message.content,
        "messageType": message.message_type,
        "metadata": message.message_metadata,
        "isRead": bool(message.is_read),
        "createdAt": _iso(message.created_at),
    }


def get_conversation(db: Session, conversation_id: int) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def list_conversations(db: Session, *, status: Optional[str] = None) -> list[Conversation]:
    query = db.query(Conversation)
    if status:
        query = query.filter(Conversation.status == status)
    return query.order_by(Conversation.last_message_at.desc(), Conversation.id.desc()).all()


def create_conversation(
    db: Session,
    *,
    customer_name: str,
    customer_phone: Optional[str] = None,
    customer_avatar: Optional[str] = None,
    status: str = "active",
    assigned_user_id: Optional[int] = None,
) -> Conversation:
    if not (customer_name or "").strip():
        raise ValueError("Nome do cliente é obrigatório")
    if status not in CONVERSATION_STATUSES:
        raise ValueError("Status inválido")

    now = utcnow()
    conversation = Conversation(
        customer_name=customer_name.strip(),
        customer_phone=(customer_phone or "").strip() or None,
        customer_avatar=customer_avatar,
        status=status,
        assigned_user_id=assigned_user_id,
        last_message_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def list_messages(db: Session, conversation_id: int) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def create_message(
    db: Session,
    *,
    conversation: Conversation,
    content: str,
    sender_type: str,
    sender_id: Optional[str] = None,
    message_type: str = "text",
    metadata: Optional[dict[str, Any]] = None,
) -> Message:
    """Grava a mensagem e avança ``last_message_at`` da conversa.

    ``last_message_at`` nunca anda para trás: fica no máximo entre o valor
    atual e o ``created_at`` da nova mensagem.
    """
    if not (content or "").strip():
        raise ValueError("Mensagem vazia")
    if sender_type not in SENDER_TYPES:
        raise ValueError("Tipo de remetente inválido")
    if message_type not in MESSAGE_TYPES:
        raise ValueError("Tipo de mensagem inválido")

    created_at = utcnow()
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        sender_type=sender_type,
        content=content,
        message_type=message_type,
        message_metadata=metadata,
        is_read=False,
        created_at=created_at,
    )
    db.add(message)

    current = _as_utc(conversation.last_message_at)
    conversation.last_message_at = created_at if current is None else max(current, created_at)
    conversation.updated_at = created_at
    db.add(conversation)

    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    logger.info(
        "Message stored sender_type=%s message_type=%s",
        sender_type,
        message_type,
        extra={"conversation_id": conversation.id},
    )
    return message


def mark_messages_read(db: Session, conversation_id: int) -> int:
    updated = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id, Message.is_read.is_(False))
        .update({Message.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def unread_count(db: Session, conversation_id: int) -> int:
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.is_read.is_(False),
            Message.sender_type == "customer",
        )
        .count()
    )


def assign_conversation(db: Session, conversation: Conversation, user_id: Optional[int]) -> Conversation:
    conversation.assigned_user_id = user_id
    conversation.updated_at = utcnow()
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def update_conversation_status(db: Session, conversation: Conversation, status: str) -> Conversation:
    if status not in CONVERSATION_STATUSES:
        raise ValueError("Status inválido")
    conversation.status = status
    conversation.updated_at = utcnow()
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def recent_history(db: Session, conversation_id: int, limit: int = 10) -> list[dict[str, str]]:
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    return [{"sender_type": row.sender_type, "content": row.content} for row in reversed(rows)]
