"""Importação da planilha de estoque (.xlsx).

Layout fixo do ERP de origem: duas linhas de cabeçalho e, a partir da
linha 3, as colunas codigo, descricao, marca, estoque, fabricante e
preco_unitario. Produtos são identificados pela descrição (sem
diferenciar maiúsculas); com ``remove_duplicates`` a linha repetida
atualiza o produto existente, senão é apenas contada.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

import pandas as pd
from sqlalchemy.orm import Session

from autopecas.models.product import Product
from autopecas.services.products import create_product, parse_price, update_product

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = ["codigo", "descricao", "marca", "estoque", "fabricante", "preco_unitario"]
HEADER_ROWS = 2


@dataclass
class ImportRow:
    code: Optional[str]
    description: str
    brand: Optional[str]
    stock: int
    supplier: Optional[str]
    price: Decimal


@dataclass
class ImportSummary:
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _cell_text(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _cell_int(value: Any) -> int:
    text = _cell_text(value).replace(",", ".")
    try:
        return max(int(float(text)), 0) if text else 0
    except ValueError:
        return 0


def read_workbook(content: bytes) -> pd.DataFrame:
    frame = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, skiprows=HEADER_ROWS, dtype=object)
    frame = frame.iloc[:, : len(IMPORT_COLUMNS)]
    frame.columns = IMPORT_COLUMNS[: len(frame.columns)]
    for column in IMPORT_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    return frame


def parse_rows(frame: pd.DataFrame, summary: ImportSummary) -> list[ImportRow]:
    rows: list[ImportRow] = []
    for _, record in frame.iterrows():
        code = _cell_text(record.get("codigo"))
        description = _cell_text(record.get("descricao"))
        if not code and not description:
            continue

        try:
            price = parse_price(_cell_text(record.get("preco_unitario")) or "0")
        except ValueError:
            price = Decimal("0")

        if not description or price <= 0:
            summary.skipped += 1
            continue

        rows.append(
            ImportRow(
                code=code or None,
                description=description,
                brand=_cell_text(record.get("marca")) or None,
                stock=_cell_int(record.get("estoque")),
                supplier=_cell_text(record.get("fabricante")) or None,
                price=price,
            )
        )
    return rows


def _import_rows(
    db: Session,
    rows: Iterable[ImportRow],
    *,
    remove_duplicates: bool,
    summary: ImportSummary,
) -> ImportSummary:
    by_description: dict[str, Product] = {}
    by_code: dict[str, Product] = {}
    for product in db.query(Product).all():
        by_description[(product.description or product.name or "").lower()] = product
        if product.code:
            by_code[product.code.lower()] = product

    for row in rows:
        data = {
            "code": row.code,
            "name": row.description,
            "description": row.description,
            "brand": row.brand,
            "stock": row.stock,
            "supplier": row.supplier,
            "price": row.price,
            "active": True,
        }
        key = row.description.lower()
        existing = by_description.get(key)
        code_owner = by_code.get(row.code.lower()) if row.code else None

        # código já usado por outro produto conta como duplicata
        if existing is None and code_owner is not None:
            existing = code_owner
        elif code_owner is not None and code_owner is not existing:
            data.pop("code")

        try:
            if existing is not None:
                if not remove_duplicates:
                    summary.duplicates += 1
                    continue
                update_product(db, existing, data)
                summary.updated += 1
                product = existing
            else:
                product = create_product(db, data)
                summary.imported += 1
        except ValueError as exc:
            summary.errors.append(f"{row.description}: {exc}")
            continue

        by_description[key] = product
        if product.code:
            by_code[product.code.lower()] = product

    logger.info(
        "Inventory import finished imported=%s updated=%s duplicates=%s skipped=%s errors=%s",
        summary.imported,
        summary.updated,
        summary.duplicates,
        summary.skipped,
        len(summary.errors),
    )
    return summary


def import_workbook(db: Session, content: bytes, *, remove_duplicates: bool = False) -> ImportSummary:
    try:
        frame = read_workbook(content)
    except Exception as exc:
        logger.warning("Inventory import could not read workbook: %s", exc)
        raise ValueError("Arquivo Excel inválido") from exc

    summary = ImportSummary()
    rows = parse_rows(frame, summary)
    return _import_rows(db, rows, remove_duplicates=remove_duplicates, summary=summary)
