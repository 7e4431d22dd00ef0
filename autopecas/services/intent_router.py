"""Roteador de intenções do bot de atendimento.

Decide a resposta automática para uma mensagem de cliente a partir de uma
lista ordenada de regras ``(nome, predicado, resposta)``. A primeira regra
cujo predicado casar responde. O casamento é puramente léxico: texto em
minúsculas, sem acentos, testado por substring. Não há stemming, fuzzy
match nem tratamento de negação ("não quero filtro" ainda casa "filtro").

A função é pura: recebe o snapshot do estoque e as configurações do bot,
não faz I/O e não lança exceção para entrada ``str``.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Sequence

GREETING_WORDS = ("ola", "oi", "bom dia")
CATEGORY_KEYWORDS = (
    "filtro",
    "oleo",
    "pneu",
    "bateria",
    "vela",
    "freio",
    "embreagem",
    "amortecedor",
    "pastilha",
    "disco",
)
PURCHASE_WORDS = ("quero", "compra", "pedido")
PAYMENT_WORDS = ("pagamento", "pagar")
HOURS_WORDS = ("horario", "funcionamento")

MAX_CATEGORY_RESULTS = 3

# "cod123" só casa quando o token começa com dígito; "referencia" não é código
CODE_PATTERN = re.compile(r"\b(?:codigo|cod|ref)(?:[.:#\s]+|(?=\d))([a-z0-9][a-z0-9\-/]*)")

DEFAULT_WELCOME_MESSAGE = (
    "Olá! 👋 Bem-vindo à AutoPeças Brasil! Como posso ajudar? "
    "Você pode informar o código da peça ou o tipo de produto que procura."
)
DEFAULT_HOURS_TEXT = "Segunda a Sexta: 8h às 18h, Sábado: 8h às 12h"

_WEEKDAYS = (
    ("monday", "Segunda"),
    ("tuesday", "Terça"),
    ("wednesday", "Quarta"),
    ("thursday", "Quinta"),
    ("friday", "Sexta"),
    ("saturday", "Sábado"),
    ("sunday", "Domingo"),
)


@dataclass(frozen=True)
class BotReply:
    message: str
    type: str = "text"
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "type": self.type}
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


@dataclass(frozen=True)
class RouterInput:
    text: str
    normalized: str
    products: tuple[Mapping[str, Any], ...]
    settings: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rule:
    name: str
    matches: Callable[[RouterInput], bool]
    respond: Callable[[RouterInput], BotReply]


def fold(text: Any) -> str:
    if text is None:
        return ""
    value = unicodedata.normalize("NFKD", str(text).lower())
    return "".join(char for char in value if not unicodedata.combining(char))


def _contains_any(text: str, words: Sequence[str]) -> bool:
    return any(word in text for word in words)


def _format_price(value: Any) -> str:
    try:
        return str(Decimal(str(value)).quantize(Decimal("0.01")))
    except (InvalidOperation, ValueError):
        return str(value)


def _stock(product: Mapping[str, Any]) -> int:
    try:
        return int(product.get("stock") or 0)
    except (TypeError, ValueError):
        return 0


def _is_active(product: Mapping[str, Any]) -> bool:
    return product.get("active", True) is not False


def _product_card(product: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": product.get("id"),
        "code": product.get("code"),
        "name": product.get("name"),
        "brand": product.get("brand"),
        "category": product.get("category"),
        "price": _format_price(product.get("price")),
        "stock": _stock(product),
    }


def extract_code(normalized: str) -> str | None:
    for match in CODE_PATTERN.finditer(normalized):
        token = match.group(1).strip("-/")
        if token:
            return token
    return None


def find_by_code(code: str, products: Sequence[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    needle = fold(code)
    if not needle:
        return None
    partial = None
    for product in products:
        product_code = fold(product.get("code"))
        if not product_code:
            continue
        if product_code == needle:
            return product
        if partial is None and needle in product_code:
            partial = product
    return partial


def matched_category(normalized: str) -> str | None:
    for keyword in CATEGORY_KEYWORDS:
        if keyword in normalized:
            return keyword
    return None


def products_for_category(keyword: str, products: Sequence[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    found: list[Mapping[str, Any]] = []
    for product in products:
        if _stock(product) <= 0:
            continue
        haystack = " ".join(
            fold(product.get(key)) for key in ("name", "description", "category")
        )
        if keyword in haystack:
            found.append(product)
            if len(found) >= MAX_CATEGORY_RESULTS:
                break
    return found


def _reply_greeting(data: RouterInput) -> BotReply:
    welcome = str(data.settings.get("welcome_message") or "").strip()
    return BotReply(message=welcome or DEFAULT_WELCOME_MESSAGE)


def _reply_code(data: RouterInput) -> BotReply:
    code = extract_code(data.normalized) or ""
    product = find_by_code(code, data.products)
    if product is None:
        return BotReply(
            message=(
                f"Não encontrei nenhum produto com o código {code.upper()}. 😕\n"
                "Confira o código ou me diga o tipo de peça e o veículo "
                "(marca, modelo e ano) que eu te ajudo a encontrar."
            )
        )

    card = _product_card(product)
    stock = card["stock"]
    availability = f"{stock} unidades" if stock > 0 else "0 unidades (sem estoque no momento)"
    lines = [
        f"🔧 *{card['name']}*",
        f"Código: {card['code']}",
    ]
    if card["brand"]:
        lines.append(f"Marca: {card['brand']}")
    lines.append(f"Preço: R$ {card['price']}")
    lines.append(f"Estoque: {availability}")
    lines.append("")
    lines.append("Para comprar, me informe a quantidade desejada.")
    return BotReply(message="\n".join(lines), type="product", metadata={"product": card})


def _reply_category(data: RouterInput) -> BotReply:
    keyword = matched_category(data.normalized) or ""
    found = products_for_category(keyword, data.products)
    if not found:
        return BotReply(
            message=(
                f"No momento não temos produtos de {keyword} disponíveis em estoque. "
                "Posso transferir você para um vendedor verificar a encomenda?"
            ),
            metadata={"category": keyword, "products": []},
        )

    cards = [_product_card(product) for product in found]
    lines = [f"Encontrei estas opções de {keyword}:", ""]
    for index, card in enumerate(cards, start=1):
        lines.append(
            f"{index}. {card['name']} (cód. {card['code']}) - R$ {card['price']} - {card['stock']} em estoque"
        )
    lines.append("")
    lines.append("Informe o código do produto para ver os detalhes.")
    return BotReply(
        message="\n".join(lines),
        type="product",
        metadata={"category": keyword, "products": cards},
    )


def _reply_purchase(_data: RouterInput) -> BotReply:
    return BotReply(
        message=(
            "Ótimo! Para montar seu pedido, envie o código do produto e a quantidade.\n"
            "Exemplo: cód FO-123, 2 unidades."
        )
    )


def _reply_payment(data: RouterInput) -> BotReply:
    methods = [str(method).strip() for method in data.settings.get("payment_methods") or [] if str(method).strip()]
    if not methods:
        return BotReply(message="Consulte um de nossos vendedores sobre as formas de pagamento disponíveis.")
    lines = ["Aceitamos as seguintes formas de pagamento:"]
    lines.extend(f"• {method}" for method in methods)
    return BotReply(message="\n".join(lines))


def format_business_hours(hours: Mapping[str, Any] | None) -> str:
    if not hours:
        return DEFAULT_HOURS_TEXT
    lines = []
    for key, label in _WEEKDAYS:
        entry = hours.get(key)
        if not isinstance(entry, Mapping):
            continue
        opens = str(entry.get("open") or "").strip()
        closes = str(entry.get("close") or "").strip()
        if not opens or opens.lower() == "closed" or not closes or closes.lower() == "closed":
            lines.append(f"{label}: Fechado")
        else:
            lines.append(f"{label}: {opens} às {closes}")
    return "\n".join(lines) if lines else DEFAULT_HOURS_TEXT


def _reply_hours(data: RouterInput) -> BotReply:
    return BotReply(
        message=f"Nosso horário de funcionamento:\n{format_business_hours(data.settings.get('business_hours'))}"
    )


def _reply_fallback(_data: RouterInput) -> BotReply:
    return BotReply(
        message=(
            "Posso te ajudar com:\n"
            "• Consultar produto pelo código (ex: cód FO-123)\n"
            "• Buscar peças por tipo (filtro, óleo, pneu, bateria, freio...)\n"
            "• Formas de pagamento\n"
            "• Horário de funcionamento\n"
            "Ou digite *vendedor* para falar com um atendente."
        )
    )


RULES: tuple[Rule, ...] = (
    Rule("greeting", lambda data: _contains_any(data.normalized, GREETING_WORDS), _reply_greeting),
    Rule("product_code", lambda data: extract_code(data.normalized) is not None, _reply_code),
    Rule("category", lambda data: matched_category(data.normalized) is not None, _reply_category),
    Rule("purchase", lambda data: _contains_any(data.normalized, PURCHASE_WORDS), _reply_purchase),
    Rule("payment", lambda data: _contains_any(data.normalized, PAYMENT_WORDS), _reply_payment),
    Rule("hours", lambda data: _contains_any(data.normalized, HOURS_WORDS), _reply_hours),
)
FALLBACK_RULE = Rule("fallback", lambda _data: True, _reply_fallback)


def build_input(
    text: str,
    products: Sequence[Mapping[str, Any]] | None,
    settings: Mapping[str, Any] | None,
) -> RouterInput:
    active = tuple(product for product in products or () if _is_active(product))
    return RouterInput(text=text or "", normalized=fold(text), products=active, settings=settings or {})


def select_rule(data: RouterInput) -> Rule:
    for rule in RULES:
        if rule.matches(data):
            return rule
    return FALLBACK_RULE


def classify(text: str) -> str:
    return select_rule(build_input(text, (), None)).name


def route_message(
    text: str,
    products: Sequence[Mapping[str, Any]] | None,
    settings: Mapping[str, Any] | None,
) -> BotReply:
    data = build_input(text, products, settings)
    return select_rule(data).respond(data)
