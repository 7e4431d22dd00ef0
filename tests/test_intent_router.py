import pytest

from autopecas.services.intent_router import (
    CATEGORY_KEYWORDS,
    DEFAULT_WELCOME_MESSAGE,
    MAX_CATEGORY_RESULTS,
    classify,
    extract_code,
    fold,
    format_business_hours,
    route_message,
)
from tests.fixtures_data import CATALOG, ROUTER_SETTINGS, WELCOME_MESSAGE


@pytest.mark.parametrize("text", ["Oi", "olá, tudo bem?", "Bom dia!", "OLA pessoal"])
def test_greeting_returns_configured_welcome_verbatim(text):
    reply = route_message(text, CATALOG, ROUTER_SETTINGS)

    assert reply.message == WELCOME_MESSAGE
    assert reply.type == "text"
    assert reply.metadata is None


def test_greeting_without_configured_message_uses_default():
    reply = route_message("oi", CATALOG, {"welcome_message": "   "})

    assert reply.message == DEFAULT_WELCOME_MESSAGE


def test_greeting_wins_over_later_rules():
    assert classify("Olá, vocês têm filtro?") == "greeting"


def test_greeting_substring_inside_words_still_matches():
    assert classify("preciso de dois filtros") == "greeting"


@pytest.mark.parametrize(
    "text",
    ["cód FO-123", "Qual o preço do codigo: fo-123?", "tem o COD#FO-123 ai?", "código FO-123"],
)
def test_code_lookup_embeds_code_price_and_stock(text):
    reply = route_message(text, CATALOG, ROUTER_SETTINGS)

    assert reply.type == "product"
    assert reply.metadata["product"]["code"] == "FO-123"
    assert "FO-123" in reply.message
    assert "R$ 45.90" in reply.message
    assert "12 unidades" in reply.message


def test_code_lookup_by_ref_keyword():
    reply = route_message("ref FA-200", CATALOG, ROUTER_SETTINGS)

    assert reply.metadata["product"]["id"] == 2
    assert "R$ 38.50" in reply.message
    assert "4 unidades" in reply.message


def test_code_lookup_reports_zero_stock():
    reply = route_message("cod PF-77", CATALOG, ROUTER_SETTINGS)

    assert reply.metadata["product"]["stock"] == 0
    assert "sem estoque" in reply.message


@pytest.mark.parametrize("text", ["cod ABC999", "código XYZ-1", "cod BAT-60"])
def test_unknown_or_inactive_code_returns_not_found_without_product(text):
    reply = route_message(text, CATALOG, ROUTER_SETTINGS)

    assert reply.type == "text"
    assert "Não encontrei" in reply.message
    assert not (reply.metadata or {}).get("product")


def test_extract_code_ignores_words_that_only_start_with_keyword():
    assert extract_code(fold("Qual a referencia do pedido?")) is None
    assert extract_code(fold("cod123")) == "123"
    assert extract_code(fold("codigo: fo-123/")) == "fo-123"


@pytest.mark.parametrize("keyword", CATEGORY_KEYWORDS)
def test_category_results_are_capped_and_contain_keyword(keyword):
    reply = route_message(f"vocês têm {keyword}?", CATALOG, ROUTER_SETTINGS)

    products = reply.metadata["products"]
    assert reply.metadata["category"] == keyword
    assert len(products) <= MAX_CATEGORY_RESULTS
    by_id = {item["id"]: item for item in CATALOG}
    for card in products:
        source = by_id[card["id"]]
        haystack = " ".join(fold(source.get(key)) for key in ("name", "description", "category"))
        assert keyword in haystack


def test_category_lists_first_three_in_stock_products():
    reply = route_message("Preciso de um filtro", CATALOG, ROUTER_SETTINGS)

    assert reply.type == "product"
    assert [card["id"] for card in reply.metadata["products"]] == [1, 2, 3]


def test_category_with_no_stock_returns_empty_list():
    reply = route_message("tem pastilha?", CATALOG, ROUTER_SETTINGS)

    assert reply.type == "text"
    assert reply.metadata == {"category": "pastilha", "products": []}


def test_first_keyword_in_fixed_order_wins():
    reply = route_message("freio e filtro", CATALOG, ROUTER_SETTINGS)

    assert reply.metadata["category"] == "filtro"


def test_negation_is_not_handled():
    assert classify("não quero filtro") == "category"


def test_purchase_payment_hours_and_fallback_rules():
    assert classify("quero fazer um pedido") == "purchase"

    payment = route_message("como faço o pagamento?", CATALOG, ROUTER_SETTINGS)
    assert "• PIX" in payment.message
    assert "• Dinheiro" in payment.message

    hours = route_message("qual o horário?", CATALOG, ROUTER_SETTINGS)
    assert "Sábado: 08:00 às 16:00" in hours.message
    assert "Domingo: Fechado" in hours.message

    assert classify("asdfgh") == "fallback"


def test_payment_without_configured_methods_points_to_seller():
    reply = route_message("formas de pagar", CATALOG, {})

    assert "vendedores" in reply.message


def test_business_hours_default_text_when_missing():
    assert format_business_hours(None).startswith("Segunda a Sexta")


@pytest.mark.parametrize("text", ["oi", "cód FO-123", "filtro", "pagamento", "", "¿¿??"])
def test_router_is_idempotent(text):
    first = route_message(text, CATALOG, ROUTER_SETTINGS)
    second = route_message(text, CATALOG, ROUTER_SETTINGS)

    assert first == second
    assert first.to_dict() == second.to_dict()


def test_router_does_not_mutate_inputs():
    catalog = [dict(item) for item in CATALOG]
    settings = dict(ROUTER_SETTINGS)

    route_message("filtro", catalog, settings)

    assert catalog == CATALOG
    assert settings == ROUTER_SETTINGS


def test_to_dict_omits_metadata_when_absent():
    assert "metadata" not in route_message("oi", CATALOG, ROUTER_SETTINGS).to_dict()
