from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from autopecas.core import config
from autopecas.core.request_context import bind_conversation
from autopecas.models.conversation import Conversation
from autopecas.models.message import Message
from autopecas.services.bot_settings import get_bot_settings, router_settings
from autopecas.services.broadcast import BroadcastHub, broadcast_hub
from autopecas.services.intent_router import build_input, select_rule
from autopecas.services.messages import create_message, get_conversation, serialize_message
from autopecas.services.products import inventory_snapshot

logger = logging.getLogger(__name__)
BOT_PREFIX = "[BOT]"

# entrada some quando nenhuma entrega segura mais o lock
_conversation_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(conversation_id: int) -> asyncio.Lock:
    lock = _conversation_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _conversation_locks[conversation_id] = lock
    return lock


def is_bot_operated(db: Session, conversation: Conversation) -> bool:
    if not config.BOT_AUTO_REPLY or conversation.assigned_user_id is not None:
        return False
    settings = get_bot_settings(db)
    return settings is None or bool(settings.active)


def bot_reply(db: Session, conversation: Conversation, text: str) -> Message:
    settings = get_bot_settings(db)
    data = build_input(text, inventory_snapshot(db), router_settings(settings))
    rule = select_rule(data)
    reply = rule.respond(data)
    logger.info("%s reply rule=%s type=%s", BOT_PREFIX, rule.name, reply.type, extra={"conversation_id": conversation.id})
    return create_message(
        db,
        conversation=conversation,
        content=reply.message,
        sender_type="bot",
        sender_id=config.BOT_SENDER_ID,
        message_type=reply.type,
        metadata=reply.metadata,
    )


def store_message(
    db: Session,
    conversation_id: int,
    *,
    content: str,
    sender_type: str,
    sender_id: Optional[str] = None,
    message_type: str = "text",
    metadata: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    conversation = get_conversation(db, conversation_id)
    if conversation is None:
        raise LookupError("Conversa não encontrada")

    message = create_message(
        db,
        conversation=conversation,
        content=content,
        sender_type=sender_type,
        sender_id=sender_id,
        message_type=message_type,
        metadata=metadata,
    )
    return serialize_message(message)


def store_bot_reply(db: Session, conversation_id: int, text: str) -> Optional[dict[str, Any]]:
    """Resposta automática para uma mensagem de cliente já gravada.

    Falha de banco aqui não desfaz a mensagem do cliente: o erro é logado e
    a conversa fica sem resposta do bot.
    """
    try:
        conversation = get_conversation(db, conversation_id)
        if conversation is None or not is_bot_operated(db, conversation):
            return None
        return serialize_message(bot_reply(db, conversation, text))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s reply failed", BOT_PREFIX, extra={"conversation_id": conversation_id})
        return None


async def deliver_message(
    db: Session,
    conversation_id: int,
    *,
    hub: BroadcastHub = broadcast_hub,
    **fields: Any,
) -> list[dict[str, Any]]:
    if await run_in_threadpool(get_conversation, db, conversation_id) is None:
        raise LookupError("Conversa não encontrada")

    # gravação e broadcast serializados por conversa: ordem de envio = ordem de gravação
    async with _lock_for(conversation_id):
        with bind_conversation(conversation_id):
            message = await run_in_threadpool(store_message, db, conversation_id, **fields)
            await hub.broadcast_message(message)
            stored = [message]

            if fields.get("sender_type") == "customer":
                reply = await run_in_threadpool(store_bot_reply, db, conversation_id, fields.get("content") or "")
                if reply is not None:
                    await hub.broadcast_message(reply)
                    stored.append(reply)
    return stored
