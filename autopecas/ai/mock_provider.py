from __future__ import annotations

import json
from typing import Optional

from autopecas.services.intent_router import fold

# ordem importa: a primeira intenção cujas palavras aparecem vence
_INTENT_WORDS = (
    ("transfer_request", ("vendedor", "atendente", "humano", "pessoa")),
    ("complaint", ("reclama", "problema", "defeito", "errad", "quebr")),
    ("order", ("quero comprar", "pedido", "fechar", "comprar")),
    ("price_inquiry", ("preco", "quanto custa", "valor", "custa")),
    ("product_search", ("filtro", "oleo", "pneu", "bateria", "vela", "freio", "pastilha", "amortecedor", "disco", "peca")),
    ("greeting", ("ola", "oi", "bom dia", "boa tarde", "boa noite")),
)

_RECOMMENDATION_MARKER = "Produtos disponíveis:"


def _last_user_message(messages: list[dict[str, str]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or ""
    return ""


def classify_offline(text: str) -> tuple[str, float]:
    normalized = fold(text)
    for intent, words in _INTENT_WORDS:
        if any(word in normalized for word in words):
            return intent, 0.7
    return "general_info", 0.4


class MockProvider:
    """Provedor determinístico usado quando a IA está desligada ou sem chave."""

    name = "mock"

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        text = _last_user_message(messages)

        if json_mode:
            intent, confidence = classify_offline(text)
            return json.dumps({"intent": intent, "confidence": confidence, "extractedInfo": {}}, ensure_ascii=False)

        if _RECOMMENDATION_MARKER in text:
            listing = text.split(_RECOMMENDATION_MARKER, 1)[1]
            names = [line.split(" - ", 1)[0].strip() for line in listing.splitlines() if line.strip()]
            return "\n".join(names[:5])

        return (
            "Olá! Sou o assistente virtual da loja. 🚗 "
            "Para indicar a peça certa, me informe a marca, o modelo e o ano do seu veículo."
        )
