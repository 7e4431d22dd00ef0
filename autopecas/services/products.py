from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from autopecas.core.config import LOW_STOCK_THRESHOLD, MEDIUM_STOCK_THRESHOLD
from autopecas.models.product import Product

EDITABLE_FIELDS = (
    "code",
    "name",
    "description",
    "brand",
    "category",
    "supplier",
    "vehicle_model",
    "vehicle_year",
    "price",
    "stock",
    "active",
)


def parse_price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError("Preço inválido") from exc
    if not price.is_finite() or price < 0:
        raise ValueError("Preço inválido")
    return price.quantize(Decimal("0.01"))


def format_price(value: Any) -> str:
    if value is None:
        return "0.00"
    return str(Decimal(str(value)).quantize(Decimal("0.01")))


def stock_status(stock: Optional[int]) -> str:
    value = stock or 0
    if value < LOW_STOCK_THRESHOLD:
        return "Baixo"
    if value < MEDIUM_STOCK_THRESHOLD:
        return "Médio"
    return "Alto"


def serialize_product(product: Product) -> dict[str, Any]:
    return {
        "id": product.id,
        "code": product.code,
        "name": product.name,
        "description": product.description,
        "brand": product.brand,
        "category": product.category,
        "supplier": product.supplier,
        "vehicleModel": product.vehicle_model,
        "vehicleYear": product.vehicle_year,
        "price": format_price(product.price),
        "stock": product.stock or 0,
        "stockStatus": stock_status(product.stock),
        "isActive": bool(product.active),
        "createdAt": product.created_at.isoformat() if product.created_at else None,
        "updatedAt": product.updated_at.isoformat() if product.updated_at else None,
    }


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def list_products(db: Session, *, search: Optional[str] = None, include_inactive: bool = False) -> list[Product]:
    query = db.query(Product)
    if not include_inactive:
        query = query.filter(Product.active.is_(True))
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.code.ilike(pattern),
                Product.brand.ilike(pattern),
                Product.category.ilike(pattern),
            )
        )
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def inventory_snapshot(db: Session) -> list[dict[str, Any]]:
    """Produtos ativos com estoque, no formato consumido pelo roteador do bot."""
    rows = (
        db.query(Product)
        .filter(Product.active.is_(True), Product.stock > 0)
        .order_by(Product.id.asc())
        .all()
    )
    return [
        {
            "id": row.id,
            "code": row.code,
            "name": row.name,
            "description": row.description,
            "brand": row.brand,
            "category": row.category,
            "price": format_price(row.price),
            "stock": row.stock or 0,
            "active": True,
        }
        for row in rows
    ]


def _apply_changes(product: Product, data: Mapping[str, Any]) -> None:
    for field in EDITABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field == "price":
            value = parse_price(value)
        elif field == "stock":
            value = int(value)
            if value < 0:
                raise ValueError("Estoque não pode ser negativo")
        elif field == "code":
            value = str(value).strip() or None
        elif field == "name":
            value = str(value).strip()
            if not value:
                raise ValueError("Nome do produto é obrigatório")
        setattr(product, field, value)


def _ensure_unique_code(db: Session, code: Optional[str], product_id: Optional[int] = None) -> None:
    if not code:
        return
    query = db.query(Product).filter(Product.code == code)
    if product_id is not None:
        query = query.filter(Product.id != product_id)
    if query.first():
        raise ValueError("Código já cadastrado")


def create_product(db: Session, data: Mapping[str, Any]) -> Product:
    if not str(data.get("name") or "").strip():
        raise ValueError("Nome do produto é obrigatório")
    if data.get("price") is None:
        raise ValueError("Preço inválido")
    product = Product(stock=0, active=True)
    _apply_changes(product, data)
    _ensure_unique_code(db, product.code)
    db.add(product)
    db.flush()
    return product


def update_product(db: Session, product: Product, data: Mapping[str, Any]) -> Product:
    _apply_changes(product, data)
    _ensure_unique_code(db, product.code, product.id)
    db.add(product)
    return product


def soft_delete_product(db: Session, product: Product) -> Product:
    product.active = False
    db.add(product)
    return product


def adjust_stock(db: Session, product: Product, delta: int) -> Product:
    new_stock = (product.stock or 0) + delta
    if new_stock < 0:
        raise ValueError(f"Estoque insuficiente para {product.name}")
    product.stock = new_stock
    db.add(product)
    return product


def low_stock_count(db: Session) -> int:
    return (
        db.query(Product)
        .filter(Product.active.is_(True), Product.stock < LOW_STOCK_THRESHOLD)
        .count()
    )
