from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from autopecas.models.order import Order
from autopecas.models.product import Product
from autopecas.services.products import adjust_stock, format_price, parse_price

logger = logging.getLogger(__name__)

ORDER_STATUSES = {"pending", "confirmed", "finalized", "delivered", "cancelled"}
PAYMENT_STATUSES = {"pending", "paid", "failed"}
# pix fica pendente até a confirmação manual do pagamento
PENDING_PAYMENT_METHODS = {"pix"}


def _get(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in d and d[key] not in (None, ""):
            return d[key]
    return default


def default_payment_status(payment_method: Optional[str]) -> str:
    return "pending" if (payment_method or "").strip().lower() in PENDING_PAYMENT_METHODS else "paid"


def serialize_order(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "conversationId": order.conversation_id,
        "sellerId": order.seller_id,
        "customerName": order.customer_name,
        "customerPhone": order.customer_phone,
        "deliveryAddress": order.delivery_address,
        "items": order.items_json or [],
        "totalAmount": format_price(order.total_amount),
        "paymentMethod": order.payment_method,
        "paymentStatus": order.payment_status,
        "status": order.status,
        "notes": order.notes,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "updatedAt": order.updated_at.isoformat() if order.updated_at else None,
    }


def _normalize_items(db: Session, items: Iterable[Mapping[str, Any]]) -> tuple[list[dict[str, Any]], Decimal, list[tuple[Product, int]]]:
    normalized: list[dict[str, Any]] = []
    reservations: list[tuple[Product, int]] = []
    total = Decimal("0.00")

    for entry in items:
        try:
            quantity = int(_get(entry, "quantity", "qty", default=0))
        except (TypeError, ValueError) as exc:
            raise ValueError("Quantidade inválida") from exc
        if quantity <= 0:
            raise ValueError("Quantidade inválida")

        product_id = _get(entry, "product_id", "productId")
        product = None
        if product_id is not None:
            product = db.query(Product).filter(Product.id == int(product_id)).first()
            if product is None or not product.active:
                raise ValueError("Produto não encontrado")

        raw_price = _get(entry, "price", default=product.price if product is not None else None)
        if raw_price is None:
            raise ValueError("Preço inválido")
        price = parse_price(raw_price)
        name = str(_get(entry, "name", "product_name", "productName", default=product.name if product else "")).strip()
        if not name:
            raise ValueError("Item sem nome")

        normalized.append(
            {
                "product_id": product.id if product is not None else None,
                "name": name,
                "quantity": quantity,
                "price": format_price(price),
            }
        )
        total += price * quantity
        if product is not None:
            reservations.append((product, quantity))

    if not normalized:
        raise ValueError("Pedido sem itens")
    return normalized, total, reservations


def create_order(
    db: Session,
    *,
    seller_id: Optional[int],
    customer_name: str,
    items: Iterable[Mapping[str, Any]],
    conversation_id: Optional[int] = None,
    customer_phone: Optional[str] = None,
    delivery_address: Optional[str] = None,
    payment_method: Optional[str] = None,
    payment_status: Optional[str] = None,
    status: str = "confirmed",
    notes: Optional[str] = None,
) -> Order:
    """Cria o pedido e baixa o estoque dos produtos do catálogo.

    O total é sempre recalculado a partir dos itens. A baixa de estoque é
    leitura-e-escrita simples, sem lock de linha; pedido que deixaria o
    estoque negativo é rejeitado inteiro.
    """
    if not (customer_name or "").strip():
        raise ValueError("Nome do cliente é obrigatório")
    if status not in ORDER_STATUSES:
        raise ValueError("Status inválido")
    resolved_payment_status = payment_status or default_payment_status(payment_method)
    if resolved_payment_status not in PAYMENT_STATUSES:
        raise ValueError("Status de pagamento inválido")

    normalized, total, reservations = _normalize_items(db, items)

    needed: dict[int, int] = {}
    for product, quantity in reservations:
        needed[product.id] = needed.get(product.id, 0) + quantity
    for product, _ in reservations:
        if (product.stock or 0) < needed[product.id]:
            raise ValueError(f"Estoque insuficiente para {product.name}")

    applied: set[int] = set()
    for product, _ in reservations:
        if product.id in applied:
            continue
        adjust_stock(db, product, -needed[product.id])
        applied.add(product.id)

    order = Order(
        conversation_id=conversation_id,
        seller_id=seller_id,
        customer_name=customer_name.strip(),
        customer_phone=customer_phone,
        delivery_address=delivery_address,
        items_json=normalized,
        total_amount=total,
        payment_method=payment_method,
        payment_status=resolved_payment_status,
        status=status,
        notes=notes,
    )
    db.add(order)
    db.flush()
    logger.info("Order created order_id=%s items=%s total=%s", order.id, len(normalized), format_price(total))
    return order


def list_orders(db: Session, *, status: Optional[str] = None) -> list[Order]:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def update_order_status(db: Session, order: Order, status: str) -> Order:
    if status not in ORDER_STATUSES:
        raise ValueError("Status inválido")
    if order.status == "cancelled" and status != "cancelled":
        raise ValueError("Pedido cancelado não pode ser reaberto")

    if status == "cancelled" and order.status != "cancelled":
        _restock(db, order)

    order.status = status
    db.add(order)
    return order


def finalize_order(db: Session, order: Order) -> Order:
    return update_order_status(db, order, "finalized")


def _restock(db: Session, order: Order) -> None:
    for item in order.items_json or []:
        product_id = item.get("product_id")
        if product_id is None:
            continue
        product = db.query(Product).filter(Product.id == int(product_id)).first()
        if product is not None:
            adjust_stock(db, product, int(item.get("quantity") or 0))
