from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopecas.ai.base import LLMProvider, ProviderError
from autopecas.ai.mock_provider import MockProvider
from autopecas.ai.openai_provider import OpenAIProvider
from autopecas.ai.schema import INTENT_NAMES, ChatContext, Err, IntentAnalysis, LLMResult, Ok, VehicleInfo
from autopecas.core.config import OPENAI_API_KEY, OPENAI_MODEL
from autopecas.models.ai_config import AIConfig
from autopecas.models.ai_message_log import AIMessageLog
from autopecas.models.bot_settings import BotSettings
from autopecas.services.intent_router import format_business_hours

logger = logging.getLogger(__name__)
AI_PREFIX = "[AI]"

HANDOFF_MESSAGE = (
    "Desculpe, estou com problemas técnicos no momento. "
    "Vou transferir você para um vendedor humano que pode te ajudar melhor! 😊"
)
DEFAULT_INTENT_CONFIDENCE = 0.3
MAX_RECOMMENDATIONS = 5
HISTORY_LIMIT = 10


@dataclass
class BusinessKnowledge:
    company_name: str = "AutoPeças Brasil"
    business_type: str = "Distribuidora de autopeças"
    specialties: list[str] = field(
        default_factory=lambda: ["Peças originais", "Peças nacionais", "Filtros", "Óleos", "Pneus", "Baterias"]
    )
    common_products: list[str] = field(
        default_factory=lambda: [
            "Filtro de óleo",
            "Pastilha de freio",
            "Amortecedor",
            "Correia dentada",
            "Vela de ignição",
        ]
    )
    working_hours: str = "Segunda a Sexta: 8h às 18h, Sábado: 8h às 12h"
    policies: list[str] = field(
        default_factory=lambda: [
            "Garantia de 90 dias em peças nacionais",
            "Garantia de 1 ano em peças originais",
            "Entrega grátis para pedidos acima de R$ 200",
            "Troca garantida em caso de peça errada",
        ]
    )
    promotions: list[str] = field(default_factory=list)


def knowledge_from_settings(settings: Optional[BotSettings], base: Optional[BusinessKnowledge] = None) -> BusinessKnowledge:
    knowledge = base or BusinessKnowledge()
    if settings is None:
        return knowledge
    company = settings.company_info_json or {}
    changes: dict[str, Any] = {}
    if company.get("name"):
        changes["company_name"] = str(company["name"])
    if settings.business_hours_json:
        changes["working_hours"] = format_business_hours(settings.business_hours_json).replace("\n", ", ")
    return replace(knowledge, **changes)


def get_ai_config(db: Session) -> AIConfig:
    config = db.query(AIConfig).order_by(AIConfig.id.asc()).first()
    if not config:
        config = AIConfig(
            provider="openai" if OPENAI_API_KEY else "mock",
            enabled=bool(OPENAI_API_KEY),
            model=OPENAI_MODEL,
            max_tokens=500,
            temperature=0.7,
        )
        db.add(config)
        db.commit()
        db.refresh(config)
    return config


def get_provider(config: AIConfig) -> LLMProvider:
    provider = (config.provider or "mock").strip().lower()
    api_key = (config.api_key or OPENAI_API_KEY or "").strip()
    if provider == "openai" and config.enabled and api_key:
        return OpenAIProvider(api_key)
    return MockProvider()


def mask_api_key(api_key: Optional[str]) -> str:
    return f"***{api_key[-4:]}" if api_key else ""


def _product_value(product: Mapping[str, Any], *keys: str, default: Any = "") -> Any:
    for key in keys:
        value = product.get(key)
        if value not in (None, ""):
            return value
    return default


def _strip_list_marker(line: str) -> str:
    return re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip()


class AIBotService:
    """Respostas por LLM com resultado explícito.

    Nenhuma das operações públicas lança exceção para quem chama: falhas do
    provedor viram ``Err(motivo)`` e toda chamada fica registrada em
    ``AIMessageLog``. O fallback (pedido de desculpas, intenção padrão,
    primeiros produtos) é aplicado por quem consome o resultado.
    """

    def __init__(
        self,
        db: Session,
        *,
        provider: Optional[LLMProvider] = None,
        config: Optional[AIConfig] = None,
        knowledge: Optional[BusinessKnowledge] = None,
    ) -> None:
        self.db = db
        self.config = config or get_ai_config(db)
        self.provider = provider or get_provider(self.config)
        self.knowledge = knowledge or BusinessKnowledge()

    @property
    def model(self) -> str:
        return self.config.model or OPENAI_MODEL

    def update_business_knowledge(self, **changes: Any) -> BusinessKnowledge:
        known = {key: value for key, value in changes.items() if value is not None and hasattr(self.knowledge, key)}
        self.knowledge = replace(self.knowledge, **known)
        return self.knowledge

    def build_system_prompt(self) -> str:
        if self.config.system_prompt and self.config.system_prompt.strip():
            return self.config.system_prompt.strip()

        k = self.knowledge
        promotions = f"\n- Promoções ativas: {' | '.join(k.promotions)}" if k.promotions else ""
        return (
            f"Você é um assistente especializado em autopeças da {k.company_name}, uma {k.business_type}.\n\n"
            "INFORMAÇÕES SOBRE A EMPRESA:\n"
            f"- Especialidades: {', '.join(k.specialties)}\n"
            f"- Produtos mais comuns: {', '.join(k.common_products)}\n"
            f"- Horário de funcionamento: {k.working_hours}\n"
            f"- Políticas: {' | '.join(k.policies)}{promotions}\n\n"
            "INSTRUÇÕES:\n"
            "1. Seja sempre cordial, profissional e prestativo\n"
            "2. Use linguagem brasileira natural e acessível\n"
            "3. Ajude com identificação de peças, compatibilidade, preços e pedidos\n"
            "4. Sempre pergunte sobre o veículo (marca, modelo, ano) para dar recomendações precisas\n"
            "5. Ofereça alternativas quando a peça procurada não estiver disponível\n"
            "6. Mencione garantias e políticas quando relevante\n"
            "7. Se não souber algo específico, seja honesto e ofereça transferir para um vendedor humano\n"
            "8. Para pedidos, colete: peça desejada, quantidade, dados do veículo, endereço de entrega\n"
            "9. Seja proativo em sugerir peças relacionadas\n"
            "10. Use emojis ocasionalmente para ser mais amigável 🚗\n\n"
            "Responda sempre de forma útil e focada no atendimento ao cliente de autopeças."
        )

    def _log_call(
        self,
        *,
        operation: str,
        prompt: str,
        raw_response: Optional[str] = None,
        error: Optional[str] = None,
        conversation_id: Optional[int] = None,
    ) -> None:
        entry = AIMessageLog(
            conversation_id=conversation_id,
            operation=operation,
            provider=self.provider.name,
            prompt=prompt,
            raw_response=raw_response,
            error=error,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("%s failed to store log operation=%s", AI_PREFIX, operation)

    def _call(
        self,
        operation: str,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        conversation_id: Optional[int] = None,
    ) -> LLMResult[str]:
        prompt = json.dumps(messages, ensure_ascii=False)
        try:
            raw = self.provider.complete(
                messages,
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                json_mode=json_mode,
            )
        except ProviderError as exc:
            reason = f"provider_error: {exc}"
        except Exception as exc:
            logger.exception("%s provider crashed operation=%s", AI_PREFIX, operation)
            reason = f"unexpected_error: {exc.__class__.__name__}"
        else:
            self._log_call(operation=operation, prompt=prompt, raw_response=raw, conversation_id=conversation_id)
            return Ok(raw)

        logger.warning("%s operation=%s provider=%s failed: %s", AI_PREFIX, operation, self.provider.name, reason)
        self._log_call(operation=operation, prompt=prompt, error=reason, conversation_id=conversation_id)
        return Err(reason)

    def generate_response(
        self,
        user_message: str,
        context: ChatContext | Mapping[str, Any] | None = None,
        available_products: Optional[Sequence[Mapping[str, Any]]] = None,
        *,
        conversation_id: Optional[int] = None,
    ) -> LLMResult[str]:
        try:
            chat_context = context if isinstance(context, ChatContext) else ChatContext.model_validate(context or {})
        except ValidationError as exc:
            return Err(f"invalid_context: {exc.error_count()} errors")

        messages = [{"role": "system", "content": self.build_system_prompt()}]
        if chat_context.customer_name:
            messages.append({"role": "system", "content": f"Nome do cliente: {chat_context.customer_name}"})
        if available_products:
            lines = [
                f"- {_product_value(p, 'name')} ({_product_value(p, 'brand')}) - R$ {_product_value(p, 'price')}"
                f" - Estoque: {_product_value(p, 'stock', default=0)} unidades"
                for p in available_products
            ]
            messages.append({"role": "system", "content": "PRODUTOS DISPONÍVEIS EM ESTOQUE:\n" + "\n".join(lines)})
        for entry in chat_context.history[-HISTORY_LIMIT:]:
            messages.append({"role": entry.role, "content": entry.content})
        messages.append({"role": "user", "content": user_message})

        return self._call(
            "generate_response",
            messages,
            max_tokens=self.config.max_tokens or 500,
            temperature=self.config.temperature if self.config.temperature is not None else 0.7,
            conversation_id=conversation_id,
        )

    def analyze_intent(self, message: str) -> LLMResult[IntentAnalysis]:
        messages = [
            {
                "role": "system",
                "content": (
                    "Analise a intenção do cliente em uma loja de autopeças e extraia informações relevantes.\n\n"
                    "Classifique a intenção como:\n"
                    "- greeting: saudações, cumprimentos\n"
                    "- product_search: procurando peças específicas\n"
                    "- price_inquiry: perguntando preços\n"
                    "- order: quer fazer um pedido\n"
                    "- complaint: reclamações ou problemas\n"
                    "- general_info: informações gerais (horário, endereço, etc)\n"
                    "- transfer_request: quer falar com vendedor humano\n\n"
                    "Extraia também: nome da peça, marca/modelo/ano do veículo se mencionados.\n\n"
                    'Responda em JSON: { "intent": "...", "confidence": 0.0-1.0, "extractedInfo": {...} }'
                ),
            },
            {"role": "user", "content": message},
        ]
        result = self._call("analyze_intent", messages, max_tokens=200, json_mode=True)
        if isinstance(result, Err):
            return result

        try:
            payload = json.loads(result.value)
        except ValueError:
            return Err("invalid_json")
        if not isinstance(payload, dict):
            return Err("invalid_json")

        intent = payload.get("intent")
        try:
            confidence = float(payload.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        extracted = payload.get("extractedInfo") or payload.get("extracted_info") or {}
        try:
            analysis = IntentAnalysis(
                intent=intent if intent in INTENT_NAMES else "general_info",
                confidence=max(0.0, min(1.0, confidence)),
                extractedInfo=extracted if isinstance(extracted, dict) else {},
            )
        except ValidationError as exc:
            return Err(f"validation_error: {exc.error_count()} errors")
        return Ok(analysis)

    def recommend_products(
        self,
        vehicle_info: VehicleInfo | Mapping[str, Any],
        products: Sequence[Mapping[str, Any]],
    ) -> LLMResult[list[Mapping[str, Any]]]:
        vehicle = vehicle_info if isinstance(vehicle_info, VehicleInfo) else VehicleInfo.model_validate(vehicle_info or {})
        listing = "\n".join(
            f"{_product_value(p, 'name')} - {_product_value(p, 'brand')} - Compatível: "
            f"{_product_value(p, 'vehicleModel', 'vehicle_model', default='Universal')} - R$ {_product_value(p, 'price')}"
            for p in products
        )
        messages = [
            {
                "role": "system",
                "content": (
                    "Você é um especialista em autopeças. Recomende até 5 produtos mais adequados "
                    "para o veículo especificado.\n\n"
                    "Considere:\n"
                    "- Compatibilidade com o veículo\n"
                    "- Itens de manutenção preventiva comum\n"
                    "- Peças que costumam ser trocadas juntas\n"
                    "- Produtos mais vendidos para esse tipo de veículo\n\n"
                    "Responda apenas com os nomes dos produtos recomendados, um por linha."
                ),
            },
            {
                "role": "user",
                "content": f"Veículo: {vehicle.brand} {vehicle.model} {vehicle.year}\n\nProdutos disponíveis:\n{listing}",
            },
        ]
        result = self._call("recommend_products", messages, max_tokens=300)
        if isinstance(result, Err):
            return result

        names = [_strip_list_marker(line).lower() for line in result.value.splitlines()]
        names = [name for name in names if name]
        picked = []
        for product in products:
            product_name = str(_product_value(product, "name")).lower()
            if not product_name:
                continue
            if any(name in product_name or product_name in name for name in names):
                picked.append(product)
        return Ok(picked[:MAX_RECOMMENDATIONS])


def reply_or_handoff(result: LLMResult[str]) -> str:
    return result.value if isinstance(result, Ok) else HANDOFF_MESSAGE


def intent_or_default(result: LLMResult[IntentAnalysis]) -> IntentAnalysis:
    if isinstance(result, Ok):
        return result.value
    return IntentAnalysis(intent="general_info", confidence=DEFAULT_INTENT_CONFIDENCE)


def recommendations_or_first(
    result: LLMResult[list[Mapping[str, Any]]],
    products: Sequence[Mapping[str, Any]],
) -> list[Mapping[str, Any]]:
    if isinstance(result, Ok):
        return list(result.value)
    return list(products[:MAX_RECOMMENDATIONS])


def history_from_messages(rows: Sequence[Mapping[str, str]]) -> list[dict[str, str]]:
    return [
        {"role": "user" if row.get("sender_type") == "customer" else "assistant", "content": row.get("content") or ""}
        for row in rows
    ]
