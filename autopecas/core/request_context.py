"""Campos de contexto que os logs JSON herdam sem precisar de ``extra``.

Request id e usuário valem pela requisição inteira. A conversa é amarrada
só enquanto uma entrega de mensagem está em andamento.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("autopecas_request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("autopecas_user_id", default=None)
_conversation_id: ContextVar[Optional[int]] = ContextVar("autopecas_conversation_id", default=None)


def set_request_context(*, request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id is not None:
        _request_id.set(request_id)
    if user_id is not None:
        _user_id.set(user_id)


def clear_request_context() -> None:
    for var in (_request_id, _user_id, _conversation_id):
        var.set(None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def get_user_id() -> Optional[str]:
    return _user_id.get()


def get_conversation_id() -> Optional[int]:
    return _conversation_id.get()


@contextmanager
def bind_conversation(conversation_id: int) -> Iterator[None]:
    token = _conversation_id.set(conversation_id)
    try:
        yield
    finally:
        _conversation_id.reset(token)
