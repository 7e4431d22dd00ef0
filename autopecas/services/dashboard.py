from __future__ import annotations

from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from autopecas.models.conversation import Conversation
from autopecas.models.order import Order
from autopecas.models.product import Product
from autopecas.services.products import format_price, low_stock_count


def _today_bounds() -> tuple[datetime, datetime]:
    today = datetime.now(timezone.utc).date()
    return (
        datetime.combine(today, time.min, tzinfo=timezone.utc),
        datetime.combine(today, time.max, tzinfo=timezone.utc),
    )


def dashboard_stats(db: Session) -> dict[str, Any]:
    start, end = _today_bounds()

    total_products = db.query(func.count(Product.id)).filter(Product.active.is_(True)).scalar() or 0
    today_sales = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.created_at >= start, Order.created_at <= end, Order.status != "cancelled")
        .scalar()
    )
    total_sales = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.status != "cancelled")
        .scalar()
    )
    active_conversations = (
        db.query(func.count(Conversation.id)).filter(Conversation.status == "active").scalar() or 0
    )

    return {
        "totalProducts": int(total_products),
        "lowStockProducts": low_stock_count(db),
        "todaySales": format_price(Decimal(str(today_sales or 0))),
        "activeConversations": int(active_conversations),
        "totalSales": format_price(Decimal(str(total_sales or 0))),
    }
