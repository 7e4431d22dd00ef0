from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autopecas.core.database import Base, get_db
from autopecas.deps import get_current_user
from autopecas.models.audit_log import AuditLog
from autopecas.models.order import Order
from autopecas.models.product import Product
from autopecas.models.user import User
from autopecas.routers.orders import router as orders_router
from autopecas.services.orders import create_order, default_payment_status, update_order_status
from tests.fixtures_data import CATALOG, ORDER_PAYLOAD, SELLER_USER


def _seed(db):
    db.add(User(**SELLER_USER, permissions_json={}))
    for item in CATALOG:
        db.add(Product(**{**item, "price": Decimal(item["price"])}))
    db.commit()


def _build_client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    _seed(db)

    app = FastAPI()
    app.include_router(orders_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: db.query(User).filter(User.id == SELLER_USER["id"]).first()
    return TestClient(app), db


def _stock(db, product_id):
    db.expire_all()
    return db.query(Product).filter(Product.id == product_id).one().stock


def test_create_order_decrements_stock_and_recomputes_total():
    client, db = _build_client()

    response = client.post("/api/orders", json=ORDER_PAYLOAD)

    assert response.status_code == 201
    body = response.json()
    assert body["totalAmount"] == "130.30"
    assert body["sellerId"] == SELLER_USER["id"]
    assert body["status"] == "confirmed"
    assert body["items"][0] == {"product_id": 1, "name": "Filtro de Óleo Tecfil", "quantity": 2, "price": "45.90"}
    assert _stock(db, 1) == 10
    assert _stock(db, 2) == 3
    assert db.query(AuditLog).filter(AuditLog.action == "create_order").count() == 1


def test_pix_order_waits_for_payment_and_other_methods_are_paid():
    client, _db = _build_client()

    pix = client.post("/api/orders", json=ORDER_PAYLOAD).json()
    card = client.post("/api/orders", json={**ORDER_PAYLOAD, "paymentMethod": "Cartão de Crédito"}).json()

    assert pix["paymentStatus"] == "pending"
    assert card["paymentStatus"] == "paid"
    assert default_payment_status(None) == "paid"


def test_order_that_would_oversell_is_rejected_whole():
    client, db = _build_client()
    payload = {
        **ORDER_PAYLOAD,
        "items": [{"productId": 1, "quantity": 1}, {"productId": 2, "quantity": 5}],
    }

    response = client.post("/api/orders", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "Estoque insuficiente para Filtro de Ar Mann"
    assert _stock(db, 1) == 12
    assert _stock(db, 2) == 4
    assert db.query(Order).count() == 0


def test_repeated_product_lines_are_summed_before_stock_check():
    _client, db = _build_client()

    with pytest.raises(ValueError):
        create_order(
            db,
            seller_id=None,
            customer_name="João",
            items=[{"productId": 2, "quantity": 3}, {"productId": 2, "quantity": 2}],
        )
    db.rollback()

    assert _stock(db, 2) == 4


@pytest.mark.parametrize(
    "items, detail",
    [
        ([{"productId": 6, "quantity": 1}], "Produto não encontrado"),
        ([{"productId": 1, "quantity": 0}], "Quantidade inválida"),
        ([{"name": "Serviço", "quantity": 1}], "Preço inválido"),
    ],
)
def test_invalid_items_are_rejected(items, detail):
    client, _db = _build_client()

    response = client.post("/api/orders", json={**ORDER_PAYLOAD, "items": items})

    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_empty_items_fail_validation():
    client, _db = _build_client()

    assert client.post("/api/orders", json={**ORDER_PAYLOAD, "items": []}).status_code == 422


def test_free_text_item_without_catalog_product():
    _client, db = _build_client()

    order = create_order(
        db,
        seller_id=None,
        customer_name="João",
        items=[{"name": "Mão de obra", "quantity": 1, "price": "80,00"}],
        payment_method="Dinheiro",
    )

    assert order.total_amount == Decimal("80.00")
    assert order.items_json[0]["product_id"] is None


def test_cancel_restocks_and_cannot_reopen():
    client, db = _build_client()
    order_id = client.post("/api/orders", json=ORDER_PAYLOAD).json()["id"]

    cancelled = client.patch(f"/api/orders/{order_id}/status", json={"status": "cancelled"})
    reopen = client.patch(f"/api/orders/{order_id}/status", json={"status": "confirmed"})

    assert cancelled.json()["status"] == "cancelled"
    assert _stock(db, 1) == 12
    assert _stock(db, 2) == 4
    assert reopen.status_code == 400


def test_cancelling_twice_restocks_once():
    _client, db = _build_client()
    order = create_order(db, seller_id=None, customer_name="João", items=ORDER_PAYLOAD["items"])
    db.commit()

    update_order_status(db, order, "cancelled")
    update_order_status(db, order, "cancelled")
    db.commit()

    assert _stock(db, 1) == 12


def test_finalize_and_list_by_status():
    client, db = _build_client()
    first = client.post("/api/orders", json=ORDER_PAYLOAD).json()["id"]
    client.post("/api/orders", json={**ORDER_PAYLOAD, "items": [{"productId": 3, "quantity": 1}]})

    finalized = client.patch(f"/api/orders/{first}/finalize")
    listed = client.get("/api/orders", params={"status": "finalized"}).json()

    assert finalized.json()["status"] == "finalized"
    assert [o["id"] for o in listed] == [first]
    assert db.query(AuditLog).filter(AuditLog.action == "order_status").count() == 1


def test_unknown_order_and_invalid_status():
    client, _db = _build_client()
    order_id = client.post("/api/orders", json=ORDER_PAYLOAD).json()["id"]

    assert client.patch("/api/orders/999/finalize").status_code == 404
    assert client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"}).status_code == 400
