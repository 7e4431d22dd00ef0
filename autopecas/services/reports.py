from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Any, Callable, Optional

import pandas as pd
from sqlalchemy.orm import Session

from autopecas.models.conversation import Conversation
from autopecas.models.order import Order
from autopecas.models.product import Product
from autopecas.models.user import User
from autopecas.services.products import format_price, stock_status

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_NAME = "Relatório"


def _date_br(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def _sales_rows(db: Session) -> list[dict[str, Any]]:
    rows = []
    for order in db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).all():
        items = order.items_json if isinstance(order.items_json, list) else []
        rows.append(
            {
                "ID": order.id,
                "Cliente": order.customer_name or "",
                "Produtos": ", ".join(str(item.get("name") or "") for item in items) or "N/A",
                "Quantidade Total": sum(int(item.get("quantity") or 0) for item in items),
                "Valor Total (R$)": format_price(order.total_amount),
                "Pagamento": order.payment_method or "",
                "Status": order.status or "",
                "Data da Venda": _date_br(order.created_at),
            }
        )
    return rows


def _products_rows(db: Session) -> list[dict[str, Any]]:
    rows = []
    for product in db.query(Product).order_by(Product.name.asc()).all():
        application = f"{product.vehicle_model or ''} {product.vehicle_year or ''}".strip()
        rows.append(
            {
                "Código": product.code or "",
                "Descrição": product.description or product.name or "",
                "Marca": product.brand or "",
                "Categoria": product.category or "",
                "Aplicação": application,
                "Preço de Venda (R$)": format_price(product.price),
                "Estoque Atual": product.stock or 0,
                "Status do Estoque": stock_status(product.stock),
                "Fornecedor": product.supplier or "",
                "Status": "Ativo" if product.active else "Inativo",
                "Data de Cadastro": _date_br(product.created_at),
            }
        )
    return rows


def _conversations_rows(db: Session) -> list[dict[str, Any]]:
    rows = []
    for conversation in db.query(Conversation).order_by(Conversation.last_message_at.desc()).all():
        rows.append(
            {
                "ID": conversation.id,
                "Cliente": conversation.customer_name,
                "Telefone": conversation.customer_phone or "",
                "Status": conversation.status,
                "Vendedor Responsável": conversation.assigned_user_id or "",
                "Última Mensagem": _date_br(conversation.last_message_at),
                "Data de Criação": _date_br(conversation.created_at),
            }
        )
    return rows


def _users_rows(db: Session) -> list[dict[str, Any]]:
    rows = []
    for user in db.query(User).order_by(User.id.asc()).all():
        rows.append(
            {
                "Nome": user.first_name or "",
                "Sobrenome": user.last_name or "",
                "Email": user.email or "",
                "Telefone": user.phone or "",
                "Função": user.role or "",
                "Empresa": user.company_name or "",
                "Status": "Ativo" if user.active else "Inativo",
                "Data de Criação": _date_br(user.created_at),
            }
        )
    return rows


def _inventory_rows(db: Session) -> list[dict[str, Any]]:
    rows = []
    for product in db.query(Product).filter(Product.active.is_(True)).order_by(Product.name.asc()).all():
        rows.append(
            {
                "Nome do Produto": product.name,
                "Categoria": product.category or "",
                "Marca": product.brand or "",
                "Estoque Atual": product.stock or 0,
                "Preço (R$)": format_price(product.price),
                "Status do Estoque": stock_status(product.stock),
                "Última Atualização": _date_br(product.updated_at),
            }
        )
    return rows


REPORT_BUILDERS: dict[str, Callable[[Session], list[dict[str, Any]]]] = {
    "sales": _sales_rows,
    "products": _products_rows,
    "conversations": _conversations_rows,
    "users": _users_rows,
    "inventory": _inventory_rows,
}


def build_report_rows(db: Session, report_type: str) -> list[dict[str, Any]]:
    builder = REPORT_BUILDERS.get(report_type)
    if builder is None:
        raise ValueError("Tipo de relatório inválido")
    return builder(db)


def rows_to_xlsx(rows: list[dict[str, Any]]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=SHEET_NAME, index=False)
    return buffer.getvalue()


def rows_to_csv(rows: list[dict[str, Any]]) -> str:
    output = io.StringIO()
    if rows:
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    return output.getvalue()


def report_filename(report_type: str, period: Optional[str], extension: str) -> str:
    suffix = f"_{period}" if period else ""
    return f"relatorio_{report_type}{suffix}.{extension}"
