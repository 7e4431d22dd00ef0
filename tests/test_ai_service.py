import json

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autopecas.ai.base import ProviderError
from autopecas.ai.mock_provider import MockProvider, classify_offline
from autopecas.ai.openai_provider import OpenAIProvider
from autopecas.ai.schema import ChatContext, Err, Ok
from autopecas.ai.service import (
    DEFAULT_INTENT_CONFIDENCE,
    HANDOFF_MESSAGE,
    AIBotService,
    get_provider,
    history_from_messages,
    intent_or_default,
    knowledge_from_settings,
    mask_api_key,
    recommendations_or_first,
    reply_or_handoff,
)
from autopecas.core.database import Base
from autopecas.models.ai_config import AIConfig
from autopecas.models.ai_message_log import AIMessageLog
from autopecas.models.bot_settings import BotSettings
from tests.fixtures_data import CATALOG, ROUTER_SETTINGS


class FailingProvider:
    name = "failing"

    def complete(self, messages, **kwargs):
        raise ProviderError("timeout")


class CrashingProvider:
    name = "crashing"

    def complete(self, messages, **kwargs):
        raise KeyError("boom")


class ScriptedProvider:
    name = "scripted"

    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    def complete(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        return self.answer


def _db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _service(provider):
    db = _db()
    config = AIConfig(provider="openai", enabled=True, model="gpt-4o", max_tokens=500, temperature=0.7)
    db.add(config)
    db.commit()
    return AIBotService(db, provider=provider, config=config), db


def test_provider_failure_becomes_err_and_handoff():
    service, db = _service(FailingProvider())

    result = service.generate_response("Preciso de pastilha para Gol 2015", {"customerName": "Maria"})

    assert isinstance(result, Err)
    assert result.reason == "provider_error: timeout"
    assert reply_or_handoff(result) == HANDOFF_MESSAGE

    log = db.query(AIMessageLog).one()
    assert log.operation == "generate_response"
    assert log.provider == "failing"
    assert log.error == "provider_error: timeout"
    assert log.raw_response is None


def test_unexpected_provider_error_is_still_an_err():
    service, db = _service(CrashingProvider())

    result = service.analyze_intent("oi")

    assert isinstance(result, Err)
    assert result.reason == "unexpected_error: KeyError"
    assert db.query(AIMessageLog).count() == 1


def test_intent_falls_back_to_general_info():
    service, _db = _service(FailingProvider())

    analysis = intent_or_default(service.analyze_intent("qual o horário?"))

    assert analysis.intent == "general_info"
    assert analysis.confidence == DEFAULT_INTENT_CONFIDENCE


def test_recommendations_fall_back_to_first_five():
    service, _db = _service(FailingProvider())
    products = [{"name": f"Peça {i}", "price": "10.00"} for i in range(8)]

    picked = recommendations_or_first(service.recommend_products({"brand": "VW"}, products), products)

    assert picked == products[:5]


@pytest.mark.parametrize("answer", ["isso não é json", "[1, 2]"])
def test_malformed_intent_payload_is_err(answer):
    service, _db = _service(ScriptedProvider(answer))

    result = service.analyze_intent("oi")

    assert result == Err("invalid_json")


def test_intent_payload_is_validated_and_clamped():
    answer = json.dumps({"intent": "dance", "confidence": 3, "extractedInfo": {"vehicleModel": "Gol"}})
    service, _db = _service(ScriptedProvider(answer))

    result = service.analyze_intent("quero dançar")

    assert isinstance(result, Ok)
    assert result.value.intent == "general_info"
    assert result.value.confidence == 1.0
    assert result.value.extracted_info.vehicle_model == "Gol"


def test_intent_accepts_numeric_vehicle_year():
    answer = json.dumps(
        {"intent": "product_search", "confidence": 0.9, "extractedInfo": {"productName": "filtro", "vehicleYear": 2015}}
    )
    service, _db = _service(ScriptedProvider(answer))

    result = service.analyze_intent("filtro para gol 2015")

    assert isinstance(result, Ok)
    assert result.value.intent == "product_search"
    assert result.value.confidence == 0.9
    assert result.value.extracted_info.vehicle_year == "2015"


def test_recommendations_accept_numeric_vehicle_year():
    service, _db = _service(ScriptedProvider("Filtro de Óleo Tecfil"))
    products = [{"name": "Filtro de Óleo Tecfil", "price": "45.90"}, {"name": "Vela NGK", "price": "19.90"}]

    result = service.recommend_products({"brand": "VW", "model": "Gol", "year": 2015}, products)

    assert result == Ok([products[0]])
    assert "VW Gol 2015" in service.provider.calls[0][0][1]["content"]


def test_log_write_failure_does_not_escape(monkeypatch):
    service, db = _service(ScriptedProvider("Olá! Como posso ajudar?"))

    def broken_commit():
        raise OperationalError("INSERT INTO ai_message_logs", {}, Exception("db down"))

    monkeypatch.setattr(db, "commit", broken_commit)

    assert service.generate_response("oi") == Ok("Olá! Como posso ajudar?")
    assert service.analyze_intent("oi") == Err("invalid_json")
    assert service.recommend_products({"brand": "VW"}, []) == Ok([])


def test_generate_response_builds_prompt_with_products_and_history():
    provider = ScriptedProvider("Temos sim!")
    service, db = _service(provider)
    context = ChatContext.model_validate(
        {
            "customerName": "Maria",
            "conversationHistory": [
                {"role": "user", "content": "oi"},
                {"role": "assistant", "content": "Olá!"},
            ],
        }
    )

    result = service.generate_response("tem filtro?", context, CATALOG[:2], conversation_id=42)

    assert result == Ok("Temos sim!")
    messages, kwargs = provider.calls[0]
    assert messages[0]["role"] == "system"
    assert "Nome do cliente: Maria" in messages[1]["content"]
    assert "Filtro de Óleo Tecfil (Tecfil) - R$ 45.90 - Estoque: 12 unidades" in messages[2]["content"]
    assert [m["role"] for m in messages[3:]] == ["user", "assistant", "user"]
    assert kwargs["max_tokens"] == 500
    assert db.query(AIMessageLog).one().conversation_id == 42


def test_invalid_context_is_err_without_calling_provider():
    provider = ScriptedProvider("nunca")
    service, _db = _service(provider)

    result = service.generate_response("oi", {"conversationHistory": [{"role": "robot", "content": "x"}]})

    assert isinstance(result, Err)
    assert result.reason.startswith("invalid_context")
    assert provider.calls == []


def test_recommendations_match_names_from_answer():
    service, _db = _service(ScriptedProvider("1. Filtro de Ar Mann\n- filtro de cabine wega\n"))

    result = service.recommend_products({"brand": "VW", "model": "Gol", "year": "2015"}, CATALOG)

    assert isinstance(result, Ok)
    assert [p["id"] for p in result.value] == [2, 4]


def test_mock_provider_paths():
    provider = MockProvider()

    intent = json.loads(provider.complete([{"role": "user", "content": "quero falar com um vendedor"}], model="m", max_tokens=10, json_mode=True))
    assert intent["intent"] == "transfer_request"

    listing = "Veículo: VW\n\nProdutos disponíveis:\nFiltro A - X - Compatível: Universal - R$ 1\nFiltro B - Y - Compatível: Gol - R$ 2"
    assert provider.complete([{"role": "user", "content": listing}], model="m", max_tokens=10) == "Filtro A\nFiltro B"

    assert "marca, o modelo e o ano" in provider.complete([{"role": "user", "content": "oi"}], model="m", max_tokens=10)


def test_classify_offline_defaults_to_general_info():
    assert classify_offline("quanto custa a vela?") == ("price_inquiry", 0.7)
    assert classify_offline("xyz") == ("general_info", 0.4)


def test_get_provider_uses_mock_without_key(monkeypatch):
    monkeypatch.setattr("autopecas.ai.service.OPENAI_API_KEY", "")

    assert isinstance(get_provider(AIConfig(provider="openai", enabled=True)), MockProvider)
    assert isinstance(get_provider(AIConfig(provider="openai", enabled=False, api_key="sk-1")), MockProvider)
    assert isinstance(get_provider(AIConfig(provider="openai", enabled=True, api_key="sk-1")), OpenAIProvider)


def test_mask_api_key():
    assert mask_api_key("sk-abcdef1234") == "***1234"
    assert mask_api_key(None) == ""


def test_knowledge_from_settings_uses_company_and_hours():
    settings = BotSettings(
        welcome_message="",
        payment_methods_json=[],
        business_hours_json=ROUTER_SETTINGS["business_hours"],
        company_info_json={"name": "Auto Peças Teste"},
    )

    knowledge = knowledge_from_settings(settings)

    assert knowledge.company_name == "Auto Peças Teste"
    assert "Domingo: Fechado" in knowledge.working_hours


def test_history_from_messages_maps_roles():
    rows = [{"sender_type": "customer", "content": "oi"}, {"sender_type": "bot", "content": "Olá"}]

    assert history_from_messages(rows) == [
        {"role": "user", "content": "oi"},
        {"role": "assistant", "content": "Olá"},
    ]


def _openai(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return OpenAIProvider("sk-test", api_url="https://llm.test/v1/chat/completions", client=client)


def test_openai_provider_sends_json_mode_and_reads_content():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "{\"intent\": \"greeting\"}"}}]})

    content = _openai(handler).complete([{"role": "user", "content": "oi"}], model="gpt-4o", max_tokens=200, json_mode=True)

    assert content == '{"intent": "greeting"}'
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert "temperature" not in seen["body"]


@pytest.mark.parametrize(
    "response, reason",
    [
        (httpx.Response(500, json={}), "http_status_500"),
        (httpx.Response(200, json={"choices": []}), "unexpected_response_shape"),
        (httpx.Response(200, json={"choices": [{"message": {"content": "  "}}]}), "empty_response"),
        (httpx.Response(200, content=b"<html>"), "invalid_json_body"),
    ],
)
def test_openai_provider_failures_raise_provider_error(response, reason):
    provider = _openai(lambda request: response)

    with pytest.raises(ProviderError) as exc_info:
        provider.complete([{"role": "user", "content": "oi"}], model="gpt-4o", max_tokens=10)

    assert str(exc_info.value) == reason


def test_openai_provider_requires_key():
    with pytest.raises(ProviderError):
        OpenAIProvider("")
